"""
WorkPro Maintenance Core
Work order aggregate — lifecycle, approvals, SLA, safety and cost fields.

Models:
    - WorkOrder:               tenant/site-scoped aggregate root
    - WorkOrderApprovalStep:   ordered approval chain (step 1..n)
    - SlaEscalationRule:       breach escalation rule with an ``escalated_at`` guard
    - WorkOrderTimelineEntry:  append-only audit trail

Architecture:
    WorkOrder ──1:N──▶ WorkOrderApprovalStep
    WorkOrder ──1:N──▶ SlaEscalationRule
    WorkOrder ──1:N──▶ WorkOrderTimelineEntry
    WorkOrder ──1:N──▶ WorkOrderPartLineItem   (see models/inventory.py)

Lifecycle states:
    WorkOrder:  requested → assigned → in_progress → completed
                on_hold / pending_approval from any open state, back to assigned / in_progress
                cancelled from any open state; completed and cancelled are terminal
"""

from datetime import datetime, timezone

from workpro.models import db
from workpro.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ORDER_STATUSES = {
    "requested", "assigned", "in_progress", "on_hold",
    "pending_approval", "completed", "cancelled",
}

TERMINAL_STATUSES = {"completed", "cancelled"}

PRIORITIES = {"low", "medium", "high", "critical"}

APPROVAL_STATUSES = {"not_required", "pending", "approved", "rejected"}

APPROVAL_STEP_STATUSES = {"pending", "approved", "rejected"}

SLA_TRIGGERS = {"response", "resolve"}

TIMELINE_TYPES = {"status", "approval", "sla", "parts", "comment", "system"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STATUS_TRANSITIONS = {
    "requested":        ["assigned", "on_hold", "pending_approval", "cancelled"],
    "assigned":         ["in_progress", "on_hold", "pending_approval", "cancelled"],
    "in_progress":      ["completed", "on_hold", "pending_approval", "cancelled"],
    "on_hold":          ["assigned", "in_progress", "pending_approval", "cancelled"],
    "pending_approval": ["assigned", "in_progress", "on_hold", "cancelled"],
    "completed":        [],
    "cancelled":        [],
}


def validate_status_transition(old_status, new_status):
    """Return True if WorkOrder status transition is valid."""
    return new_status in STATUS_TRANSITIONS.get(old_status, [])


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# WORK ORDER
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrder(TenantModel):
    """
    Maintenance work order.

    ``version`` is bumped by the service layer on every committed mutation and
    is what offline clients compare against when they replay queued edits.
    """

    __tablename__ = "work_orders"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(30), nullable=False, default="requested",
        comment="requested | assigned | in_progress | on_hold | pending_approval | completed | cancelled",
    )
    priority = db.Column(db.String(20), nullable=False, default="medium")
    assigned_to = db.Column(db.String(150), nullable=True, index=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("work_order_templates.id", ondelete="SET NULL"), nullable=True,
    )

    # Approval chain
    approval_status = db.Column(db.String(20), nullable=False, default="not_required")
    current_approval_step = db.Column(db.Integer, nullable=True)

    # SLA
    sla_response_due_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    sla_resolve_due_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    sla_responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sla_breach_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Safety preconditions
    required_permit_types = db.Column(db.JSON, default=list)
    permit_approvals = db.Column(db.JSON, default=list, comment="[{type, status}]")
    lockout_tagout = db.Column(db.JSON, default=list, comment="[{step, verified_at}]")

    # Costs (parts_cost mirrors parts_cost_total for legacy readers)
    parts_cost_total = db.Column(db.Float, nullable=False, default=0.0)
    parts_cost = db.Column(db.Float, nullable=False, default=0.0)
    labor_cost = db.Column(db.Float, nullable=False, default=0.0)
    misc_cost = db.Column(db.Float, nullable=False, default=0.0)
    total_cost = db.Column(db.Float, nullable=False, default=0.0)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    approval_steps = db.relationship(
        "WorkOrderApprovalStep", back_populates="work_order",
        order_by="WorkOrderApprovalStep.step", cascade="all, delete-orphan",
    )
    sla_escalations = db.relationship(
        "SlaEscalationRule", back_populates="work_order",
        order_by="SlaEscalationRule.id", cascade="all, delete-orphan",
    )
    timeline = db.relationship(
        "WorkOrderTimelineEntry", back_populates="work_order",
        order_by="[WorkOrderTimelineEntry.created_at, WorkOrderTimelineEntry.id]",
        cascade="all, delete-orphan",
    )
    part_line_items = db.relationship(
        "WorkOrderPartLineItem", back_populates="work_order", lazy="select",
    )

    __table_args__ = (
        db.Index("ix_work_orders_tenant_status", "tenant_id", "status"),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def current_step(self):
        """Approval step matching ``current_approval_step``, or None."""
        for step in self.approval_steps:
            if step.step == self.current_approval_step:
                return step
        return None

    def add_timeline(self, label, *, type="system", notes=None, created_by=None, at=None):
        entry = WorkOrderTimelineEntry(
            label=label,
            type=type,
            notes=notes,
            created_by=created_by,
            created_at=at or datetime.now(timezone.utc),
        )
        self.timeline.append(entry)
        return entry

    def bump_version(self):
        self.version = (self.version or 0) + 1

    def to_dict(self, include_children=True):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "site_id": self.site_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "template_id": self.template_id,
            "approval_status": self.approval_status,
            "current_approval_step": self.current_approval_step,
            "sla_response_due_at": _iso(self.sla_response_due_at),
            "sla_resolve_due_at": _iso(self.sla_resolve_due_at),
            "sla_responded_at": _iso(self.sla_responded_at),
            "sla_resolved_at": _iso(self.sla_resolved_at),
            "sla_breach_at": _iso(self.sla_breach_at),
            "required_permit_types": self.required_permit_types or [],
            "permit_approvals": self.permit_approvals or [],
            "lockout_tagout": self.lockout_tagout or [],
            "parts_cost_total": float(self.parts_cost_total or 0),
            "parts_cost": float(self.parts_cost or 0),
            "labor_cost": float(self.labor_cost or 0),
            "misc_cost": float(self.misc_cost or 0),
            "total_cost": float(self.total_cost or 0),
            "version": self.version,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            d["approval_steps"] = [s.to_dict() for s in self.approval_steps]
            d["sla_escalations"] = [r.to_dict() for r in self.sla_escalations]
        return d

    def __repr__(self):
        return f"<WorkOrder {self.id}: {self.title[:40]} [{self.status}]>"


class WorkOrderApprovalStep(db.Model):
    __tablename__ = "work_order_approval_steps"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(200), default="")
    status = db.Column(db.String(20), nullable=False, default="pending")
    approver = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    note = db.Column(db.Text, nullable=True)

    work_order = db.relationship("WorkOrder", back_populates="approval_steps")

    __table_args__ = (
        db.UniqueConstraint("work_order_id", "step", name="uq_wo_approval_step"),
    )

    def to_dict(self):
        return {
            "step": self.step,
            "name": self.name,
            "status": self.status,
            "approver": self.approver,
            "approved_at": _iso(self.approved_at),
            "note": self.note,
        }


class SlaEscalationRule(db.Model):
    """
    Escalation rule evaluated by the SLA monitor.

    Fires once ``threshold_minutes`` past the due date of its trigger; a
    non-null ``escalated_at`` means the rule has fired and is never re-evaluated.
    """

    __tablename__ = "work_order_sla_escalations"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    trigger = db.Column(db.String(20), nullable=False, comment="response | resolve")
    threshold_minutes = db.Column(db.Integer, nullable=False, default=0)
    escalate_to = db.Column(db.JSON, default=list, comment="User ids to notify")
    priority = db.Column(db.String(20), nullable=True, comment="Priority override on escalation")
    reassign = db.Column(db.String(150), nullable=True, comment="New assignee on escalation")
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    work_order = db.relationship("WorkOrder", back_populates="sla_escalations")

    def to_dict(self):
        return {
            "id": self.id,
            "trigger": self.trigger,
            "threshold_minutes": self.threshold_minutes,
            "escalate_to": self.escalate_to or [],
            "priority": self.priority,
            "reassign": self.reassign,
            "escalated_at": _iso(self.escalated_at),
        }


class WorkOrderTimelineEntry(db.Model):
    """Append-only audit entry. Rows are never updated or deleted by services."""

    __tablename__ = "work_order_timeline"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    label = db.Column(db.String(300), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(20), nullable=False, default="system")
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    work_order = db.relationship("WorkOrder", back_populates="timeline")

    def to_dict(self):
        return {
            "id": self.id,
            "label": self.label,
            "notes": self.notes,
            "type": self.type,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }
