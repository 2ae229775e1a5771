"""
Request context consumed by every service call.

Authentication and tenant resolution happen upstream; by the time a request
reaches WorkPro the caller's tenant, optional site and user are known.
``workpro.middleware.tenant_context`` builds a ``RequestContext`` from the
forwarded headers and stores it on ``flask.g``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class RequestContext:
    tenant_id: int
    site_id: int | None = None
    user_id: str | None = None

    def within(self, record) -> "RequestContext":
        """Narrow to the tenant/site of an already scoped record.

        A tenant-wide caller acting on a site-bound work order may only
        reference records of that same site.
        """
        return replace(self, tenant_id=record.tenant_id, site_id=record.site_id)

    def scope_filters(self) -> dict:
        """Column filters for a tenant/site-scoped lookup."""
        filters = {"tenant_id": self.tenant_id}
        if self.site_id is not None:
            filters["site_id"] = self.site_id
        return filters
