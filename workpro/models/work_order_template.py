"""
WorkPro Maintenance Core
Work order templates — reusable intake defaults.

``defaults`` keys understood by intake:
    priority, description, required_permit_types,
    approval_steps (list of step names), sla_response_minutes,
    sla_resolve_minutes, sla_escalations (list of rule dicts)
"""

from datetime import datetime, timezone

from workpro.models import db
from workpro.models.base import TenantModel


TEMPLATE_DEFAULT_KEYS = {
    "priority", "description", "required_permit_types", "approval_steps",
    "sla_response_minutes", "sla_resolve_minutes", "sla_escalations",
}


class WorkOrderTemplate(TenantModel):
    __tablename__ = "work_order_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    defaults = db.Column(db.JSON, default=dict)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_wo_template_tenant_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "site_id": self.site_id,
            "name": self.name,
            "description": self.description,
            "defaults": self.defaults or {},
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<WorkOrderTemplate {self.id}: {self.name}>"
