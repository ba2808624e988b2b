"""
Tenant Context Middleware — resolves caller identity for API requests.

Authentication transport lives in front of this service (gateway / SSO);
it forwards the authenticated identity as headers:

    X-Tenant-Id:  integer tenant id
    X-User-Id:    integer user id

This middleware:
  1. Parses both headers (400 when missing or malformed)
  2. Verifies the tenant exists and is active (403 otherwise)
  3. Sets g.tenant, g.tenant_id and g.actor_user_id for the route handler

Case-level authorisation is NOT done here — the services call
app.services.case_access.ensure_case_role for every operation.

Chain order:
  timing.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from app.models import db
from app.models.auth import Tenant
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip identity resolution
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _int_header(name):
    raw = request.headers.get(name, "").strip()
    if not raw or not raw.isdigit():
        return None
    return int(raw)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.tenant_id = None
        g.actor_user_id = None

        if not request.path.startswith("/api/v1/"):
            return None

        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id = _int_header("X-Tenant-Id")
        user_id = _int_header("X-User-Id")
        if tenant_id is None or user_id is None:
            return api_error(
                E.VALIDATION_REQUIRED,
                "X-Tenant-Id and X-User-Id headers are required",
                status=400,
            )

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning(
                "Rejected request for unknown or inactive tenant %s", tenant_id,
                extra={"tenant_id": tenant_id},
            )
            return api_error(E.FORBIDDEN, "Tenant not found or inactive")

        g.tenant = tenant
        g.tenant_id = tenant_id
        g.actor_user_id = user_id
        return None

    logger.debug("Tenant context middleware installed")
