"""
Digital Health Atlas — Governance Service
SQLAlchemy extension handle shared by every model module.

Usage:
    from atlas.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
