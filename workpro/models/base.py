"""
TenantModel — Abstract base class for tenant/site-scoped models.

Every WorkPro aggregate lives inside a tenant and optionally a site.
Inheriting from TenantModel adds:
  - tenant_id FK column with index
  - site_id FK column (nullable, indexed)
"""

from workpro.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    site_id = db.Column(
        db.Integer,
        db.ForeignKey("sites.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
