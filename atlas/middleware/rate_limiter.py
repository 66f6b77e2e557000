"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in atlas/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from atlas.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Governance administration:  60/minute
        - Intake + review lifecycle:   200/minute

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("governance")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("intake")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    app.logger.info("Rate limiter configured — governance: %s, intake: %s", WRITE_LIMIT, READ_LIMIT)
