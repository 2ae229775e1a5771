"""
Tenant-scoped query helpers.

Every get-by-id in WorkPro goes through these helpers instead of
``db.session.get(Model, pk)``. A direct ``.get()`` bypasses tenant isolation.

Two failure modes exist, and callers pick the one that fits the reference:

* ``get_scoped`` — the aggregate the URL names (a work order, a template).
  Missing and cross-tenant records are indistinguishable: both raise
  ``NotFoundError`` (404), so the response never confirms existence.
* ``require_in_scope`` — a record referenced *from* an aggregate (a stock
  item, a line item). A reference that does not resolve inside the caller's
  scope raises ``ScopeViolationError`` (400) instead of being silently
  ignored.

Usage:
    wo = get_scoped(WorkOrder, work_order_id, tenant_id=ctx.tenant_id, site_id=ctx.site_id)
    stock = require_in_scope(PartStock, stock_id, ctx)
"""

import logging

from sqlalchemy import select

from workpro.core.exceptions import NotFoundError, ScopeViolationError
from workpro.models import db

logger = logging.getLogger(__name__)


def _scoped_select(model, pk, scopes: dict):
    applicable = {field: value for field, value in scopes.items() if value is not None}
    if "tenant_id" not in applicable:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope. "
            "Unscoped lookups are forbidden."
        )
    missing = [field for field in applicable if not hasattr(model, field)]
    if missing:
        raise ValueError(f"{model.__name__} has no scope column(s) {sorted(missing)}")

    stmt = select(model).where(model.id == pk)
    for field, value in applicable.items():
        stmt = stmt.where(getattr(model, field) == value)
    return stmt


def get_scoped(model, pk: int, *, tenant_id: int | None = None, site_id: int | None = None):
    """Fetch a single entity by PK inside the tenant (and site, if given).

    Raises:
        ValueError: If no tenant scope is provided or a scope column is missing.
        NotFoundError: If the entity does not exist OR belongs to another scope.
    """
    stmt = _scoped_select(model, pk, {"tenant_id": tenant_id, "site_id": site_id})
    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.debug("get_scoped: %s id=%s not found (tenant=%s site=%s)",
                     model.__name__, pk, tenant_id, site_id)
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None = None, site_id: int | None = None):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, site_id=site_id)
    except NotFoundError:
        return None


def require_in_scope(model, pk, ctx):
    """Resolve a referenced record inside ``ctx`` or raise ScopeViolationError."""
    if pk is None:
        raise ScopeViolationError(resource=model.__name__, resource_id=pk)
    stmt = _scoped_select(model, pk, ctx.scope_filters())
    result = db.session.execute(stmt).scalar_one_or_none()
    if result is None:
        logger.warning(
            "Scope violation",
            extra={"resource": model.__name__, "resource_id": pk,
                   "tenant_id": ctx.tenant_id, "site_id": ctx.site_id},
        )
        raise ScopeViolationError(resource=model.__name__, resource_id=pk)
    return result
