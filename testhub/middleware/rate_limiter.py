"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in testhub/__init__.py with no default
limits; this module applies limits per route category.

Usage:
    from testhub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Public capability-token portals: guessing tokens must stay expensive
PORTAL_BLUEPRINTS = ("uat_pm", "uat_review")
INTERNAL_BLUEPRINTS = ("uat",)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Token portals:  PORTAL_RATE_LIMIT   (default 120/minute)
        - Internal API:   INTERNAL_RATE_LIMIT (default 300/minute)
        - Health check:   exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    portal_limit = app.config.get("PORTAL_RATE_LIMIT", "120/minute")
    internal_limit = app.config.get("INTERNAL_RATE_LIMIT", "300/minute")

    for bp_name in PORTAL_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(portal_limit)(bp)

    for bp_name in INTERNAL_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(internal_limit)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: portals=%s internal=%s", portal_limit, internal_limit,
    )
