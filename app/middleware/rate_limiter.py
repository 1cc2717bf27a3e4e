"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies limits per blueprint.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LAUNCH_API_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Launch API:    RATELIMIT_LAUNCH (default 120/minute)
        - Health check:  exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    launch_limit = app.config.get("RATELIMIT_LAUNCH", LAUNCH_API_LIMIT)
    bp = app.blueprints.get("launch")
    if bp:
        limiter.limit(launch_limit)(bp)

    # Health check is exempt
    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — launch: %s", launch_limit)
