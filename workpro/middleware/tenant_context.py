"""
Tenant Context Middleware — builds the request context for API calls.

Authentication happens upstream (gateway / auth service). It forwards the
resolved identity as headers:

    X-Tenant-Id  (required)   tenant the caller acts in
    X-Site-Id    (optional)   narrows every query to one site
    X-User-Id    (optional)   recorded as actor on timeline entries/movements

This middleware verifies the tenant exists and is active, checks the site
belongs to it, and stores a ``RequestContext`` on ``g.ctx``. Missing or
invalid context is rejected with 403 before any view runs.

Chain order:
  timing.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from workpro.core.context import RequestContext
from workpro.models import db
from workpro.models.tenant import Site, Tenant
from workpro.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip tenant context
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def _int_header(name):
    raw = request.headers.get(name)
    if raw is None or raw.strip() == "":
        return None, False
    raw = raw.strip()
    if not raw.isdigit():
        return None, True
    return int(raw), False


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.ctx = None
        g.tenant = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        tenant_id, bad_tenant = _int_header("X-Tenant-Id")
        site_id, bad_site = _int_header("X-Site-Id")
        if tenant_id is None or bad_tenant or bad_site:
            logger.warning("Missing or malformed tenant context",
                           extra={"path": request.path, "request_id": getattr(g, "request_id", None)})
            return api_error(E.FORBIDDEN, "Tenant context required")

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_active:
            logger.warning("Tenant %s not found or inactive", tenant_id,
                           extra={"tenant_id": tenant_id})
            return api_error(E.FORBIDDEN, "Tenant not found or deactivated")

        if site_id is not None:
            site = db.session.get(Site, site_id)
            if site is None or site.tenant_id != tenant_id:
                logger.warning("Site %s is not part of tenant %s", site_id, tenant_id,
                               extra={"tenant_id": tenant_id, "site_id": site_id})
                return api_error(E.FORBIDDEN, "Site not available for this tenant")

        user_id = (request.headers.get("X-User-Id") or "").strip() or None
        g.tenant = tenant
        g.ctx = RequestContext(tenant_id=tenant_id, site_id=site_id, user_id=user_id)
        return None

    logger.info("Tenant context middleware installed")
