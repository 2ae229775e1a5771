"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in workpro/__init__.py with no default limits; this module applies
granular limits per route category, keyed by tenant when a context exists.

Usage:
    from workpro.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "120/minute"
READ_LIMIT = "600/minute"


def tenant_rate_limit_key():
    """Rate limit key: tenant id when a context exists, else remote IP."""
    ctx = getattr(g, "ctx", None)
    if ctx is not None:
        return f"tenant:{ctx.tenant_id}"
    return flask_request.remote_addr or "unknown"


def _is_read():
    return flask_request.method in ("GET", "HEAD", "OPTIONS")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant):
        - Mutations (POST/PATCH/PUT/DELETE): 120/minute
        - Reads (GET):                       600/minute
        - Health check:                      exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("work_order_bp", "work_order_parts_bp", "work_order_template_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=tenant_rate_limit_key, exempt_when=_is_read)(bp)
            limiter.limit(READ_LIMIT, key_func=tenant_rate_limit_key,
                          exempt_when=lambda: not _is_read())(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
