"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi.py flask db upgrade
"""

from atlas import create_app

app = create_app()
