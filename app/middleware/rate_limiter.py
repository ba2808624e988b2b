"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter
instance is created in app/__init__.py with no default limits; this module
applies the limits per route category, keyed by tenant when the caller
identity is known and by remote IP otherwise.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_LIMIT = "300/minute"


def tenant_rate_limit_key():
    """Dynamic rate limit key: tenant_id if available, else remote IP."""
    tenant_id = getattr(g, "tenant_id", None)
    if tenant_id:
        return f"tenant:{tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per tenant, falling back to remote IP):
        - workflow + case routes:  WORKFLOW_RATE_LIMIT (default 300/minute;
          several limits may be joined with ";", e.g. "300/minute;20/second")

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.debug("Rate limiter disabled (TESTING=True)")
        return

    overall = app.config.get("WORKFLOW_RATE_LIMIT", DEFAULT_WORKFLOW_LIMIT)
    for bp_name in ("workflow", "cases"):
        bp = app.blueprints.get(bp_name)
        if bp is None:
            continue
        limiter.limit(overall, key_func=tenant_rate_limit_key)(bp)

    app.logger.info("Rate limiter configured — workflow: %s", overall)
