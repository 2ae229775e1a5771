"""
Work order lifecycle — intake, status transitions, approvals, SLA stamps and
offline sync.

Every mutating operation:
    1. loads the work order inside the caller's tenant/site (NotFoundError otherwise)
    2. validates, running the safety gate where a status changes
    3. applies the change together with a timeline entry
    4. bumps ``version`` and commits
    5. returns an ``OperationResult`` whose ``notifications`` the caller
       dispatches after the commit
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import select

from workpro.core.exceptions import (
    InvalidTransitionError,
    NoPendingApprovalError,
    ValidationError,
)
from workpro.models import db
from workpro.models.work_order import (
    PRIORITIES,
    SLA_TRIGGERS,
    WORK_ORDER_STATUSES,
    SlaEscalationRule,
    WorkOrder,
    WorkOrderApprovalStep,
    validate_status_transition,
)
from workpro.services import safety_gate
from workpro.services.conflict_resolver import (
    resolve_work_order_conflict,
    resolve_work_order_conflict_by_timestamp,
)
from workpro.services.helpers.scoped_queries import get_scoped
from workpro.services.notification import NotificationEvent
from workpro.services.parts_ledger import recompute_totals
from workpro.services.work_order_template_service import get_template
from workpro.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

# Fields an offline client may edit; status, approvals and costs derived
# from parts go through their own operations.
SYNC_EDITABLE_FIELDS = (
    "title", "description", "priority", "assigned_to",
    "labor_cost", "misc_cost",
    "required_permit_types", "permit_approvals", "lockout_tagout",
)


@dataclass
class OperationResult:
    work_order: WorkOrder
    notifications: list[NotificationEvent] = field(default_factory=list)


@dataclass
class SyncResult:
    work_order: WorkOrder
    merged: dict
    conflicts: list[str]
    applied: bool

    def to_dict(self) -> dict:
        return {
            "work_order": self.work_order.to_dict(),
            "merged": self.merged,
            "conflicts": self.conflicts,
            "applied": self.applied,
        }


def _load(ctx, work_order_id) -> WorkOrder:
    return get_scoped(WorkOrder, work_order_id, tenant_id=ctx.tenant_id, site_id=ctx.site_id)


def _commit(work_order: WorkOrder) -> None:
    work_order.bump_version()
    db.session.commit()


def _event(work_order, user_id, message, *, title, category, severity="info", **meta):
    return NotificationEvent(
        user_id=str(user_id),
        message=message,
        meta={
            "title": title,
            "category": category,
            "severity": severity,
            "tenant_id": work_order.tenant_id,
            "work_order_id": work_order.id,
            **meta,
        },
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Intake
# ═══════════════════════════════════════════════════════════════════════════


def apply_approval_steps(work_order: WorkOrder, steps, created_by=None) -> None:
    """Initialise the approval chain from a list of step names or dicts."""
    if not steps:
        work_order.approval_status = "not_required"
        work_order.current_approval_step = None
        return
    for index, raw in enumerate(steps, start=1):
        if isinstance(raw, str):
            raw = {"name": raw}
        if not isinstance(raw, dict):
            raise ValidationError("approval_steps entries must be names or objects")
        work_order.approval_steps.append(WorkOrderApprovalStep(
            step=index,
            name=raw.get("name") or f"Step {index}",
            approver=raw.get("approver"),
            status="pending",
        ))
    work_order.current_approval_step = 1
    work_order.approval_status = "pending"
    work_order.add_timeline("Approval workflow initialized", type="approval", created_by=created_by)


def apply_sla_timers(work_order: WorkOrder, response_minutes=None, resolve_minutes=None,
                     escalations=None, created_by=None) -> None:
    """Compute SLA due dates from minute targets and attach escalation rules."""
    if not response_minutes and not resolve_minutes and not escalations:
        return
    start = as_utc(work_order.created_at) or utcnow()
    if response_minutes:
        work_order.sla_response_due_at = start + timedelta(minutes=response_minutes)
    if resolve_minutes:
        work_order.sla_resolve_due_at = start + timedelta(minutes=resolve_minutes)
    for raw in escalations or []:
        if not isinstance(raw, dict) or raw.get("trigger") not in SLA_TRIGGERS:
            raise ValidationError("sla_escalations entries need a trigger of response or resolve")
        priority = raw.get("priority")
        if priority is not None and priority not in PRIORITIES:
            raise ValidationError(f"Invalid escalation priority: '{priority}'")
        work_order.sla_escalations.append(SlaEscalationRule(
            trigger=raw["trigger"],
            threshold_minutes=int(raw.get("threshold_minutes") or 0),
            escalate_to=[str(u) for u in raw.get("escalate_to") or []],
            priority=priority,
            reassign=raw.get("reassign"),
        ))
    work_order.add_timeline("SLA timers initialized", type="sla", created_by=created_by)


def create_work_order(ctx, req) -> OperationResult:
    """Create a work order directly or from a template; request fields win."""
    defaults = {}
    if req.template_id is not None:
        defaults = dict(get_template(ctx, req.template_id).defaults or {})

    site_id = req.site_id if req.site_id is not None else ctx.site_id
    if ctx.site_id is not None and site_id != ctx.site_id:
        raise ValidationError("site_id must match the current site")

    def pick(name):
        value = getattr(req, name)
        return value if value is not None else defaults.get(name)

    now = utcnow()
    work_order = WorkOrder(
        tenant_id=ctx.tenant_id,
        site_id=site_id,
        title=req.title,
        description=pick("description") or "",
        priority=pick("priority") or "medium",
        assigned_to=req.assigned_to,
        template_id=req.template_id,
        required_permit_types=list(pick("required_permit_types") or []),
        permit_approvals=list(req.permit_approvals or []),
        lockout_tagout=list(req.lockout_tagout or []),
        labor_cost=req.labor_cost or 0.0,
        misc_cost=req.misc_cost or 0.0,
        status="assigned" if req.assigned_to else "requested",
        version=1,
        created_by=ctx.user_id,
        created_at=now,
    )
    db.session.add(work_order)
    work_order.add_timeline("Work order created", type="status", created_by=ctx.user_id, at=now)
    apply_approval_steps(work_order, pick("approval_steps"), created_by=ctx.user_id)
    apply_sla_timers(
        work_order,
        response_minutes=pick("sla_response_minutes"),
        resolve_minutes=pick("sla_resolve_minutes"),
        escalations=pick("sla_escalations"),
        created_by=ctx.user_id,
    )
    work_order.total_cost = round((work_order.labor_cost or 0.0) + (work_order.misc_cost or 0.0), 2)
    db.session.commit()

    events = []
    if work_order.assigned_to:
        events.append(_event(
            work_order, work_order.assigned_to, f"You have been assigned {work_order.title}",
            title="Work order assigned", category="system",
        ))
    logger.info("Work order created", extra={"tenant_id": ctx.tenant_id,
                                             "work_order_id": work_order.id})
    return OperationResult(work_order, events)


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════


def get_work_order(ctx, work_order_id) -> WorkOrder:
    return _load(ctx, work_order_id)


def list_work_orders(ctx, status=None):
    """Statement for the caller's work orders, newest first."""
    if status is not None and status not in WORK_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: '{status}'. Allowed: {sorted(WORK_ORDER_STATUSES)}")
    stmt = select(WorkOrder).where(WorkOrder.tenant_id == ctx.tenant_id)
    if ctx.site_id is not None:
        stmt = stmt.where(WorkOrder.site_id == ctx.site_id)
    if status:
        stmt = stmt.where(WorkOrder.status == status)
    return stmt.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())


# ═══════════════════════════════════════════════════════════════════════════
#  Status / approval / SLA
# ═══════════════════════════════════════════════════════════════════════════


def update_status(ctx, work_order_id, status, note=None) -> OperationResult:
    if status not in WORK_ORDER_STATUSES:
        raise ValidationError(f"Invalid status: '{status}'. Allowed: {sorted(WORK_ORDER_STATUSES)}")
    work_order = _load(ctx, work_order_id)

    safety_gate.enforce(work_order, status)
    if not validate_status_transition(work_order.status, status):
        raise InvalidTransitionError(work_order.status, status)

    previous = work_order.status
    work_order.status = status
    if status == "completed" and work_order.sla_resolved_at is None:
        work_order.sla_resolved_at = utcnow()
    work_order.add_timeline(f"Status changed to {status}", type="status",
                            notes=note, created_by=ctx.user_id)
    _commit(work_order)

    logger.info("Work order status changed",
                extra={"tenant_id": ctx.tenant_id, "work_order_id": work_order.id,
                       "from_status": previous, "to_status": status})
    return OperationResult(work_order)


def advance_approval(ctx, work_order_id, approved, note=None, approver_id=None) -> OperationResult:
    work_order = _load(ctx, work_order_id)
    approver = approver_id or ctx.user_id
    outcome = "approved" if approved else "rejected"
    events = []

    if not work_order.approval_steps:
        work_order.approval_status = outcome
    else:
        step = work_order.current_step()
        if step is None or step.status != "pending":
            raise NoPendingApprovalError(work_order.current_approval_step)

        step.status = outcome
        step.approved_at = utcnow()
        step.approver = approver
        if note is not None:
            step.note = note

        later = [s for s in work_order.approval_steps if s.step > step.step]
        if approved and later:
            next_step = min(later, key=lambda s: s.step)
            work_order.current_approval_step = next_step.step
            if next_step.approver:
                events.append(_event(
                    work_order, next_step.approver,
                    f"Approval required for {work_order.title}",
                    title="Work order approval needed", category="approval",
                    step=next_step.step,
                ))
        else:
            work_order.approval_status = outcome

    work_order.add_timeline(f"Approval {outcome}", type="approval",
                            notes=note, created_by=approver)
    _commit(work_order)

    logger.info("Work order approval recorded",
                extra={"tenant_id": ctx.tenant_id, "work_order_id": work_order.id,
                       "outcome": outcome, "current_step": work_order.current_approval_step})
    return OperationResult(work_order, events)


def acknowledge_sla(ctx, work_order_id, kind, at=None) -> OperationResult:
    if kind not in SLA_TRIGGERS:
        raise ValidationError(f"Invalid kind: '{kind}'. Allowed: {sorted(SLA_TRIGGERS)}")
    work_order = _load(ctx, work_order_id)
    timestamp = as_utc(at) or utcnow()
    if kind == "response":
        work_order.sla_responded_at = timestamp
        label = "Response acknowledged"
    else:
        work_order.sla_resolved_at = timestamp
        label = "Resolution recorded"
    work_order.add_timeline(label, type="sla", notes=f"at {timestamp.isoformat()}",
                            created_by=ctx.user_id)
    _commit(work_order)
    return OperationResult(work_order)


# ═══════════════════════════════════════════════════════════════════════════
#  Offline sync
# ═══════════════════════════════════════════════════════════════════════════


def snapshot_of(work_order: WorkOrder) -> dict:
    data = work_order.to_dict(include_children=False)
    return {
        "id": work_order.id,
        "version": work_order.version,
        "updated_at": data["updated_at"],
        "payload": {key: data[key] for key in SYNC_EDITABLE_FIELDS},
    }


def _validate_sync_payload(payload: dict) -> None:
    unknown = sorted(set(payload) - set(SYNC_EDITABLE_FIELDS))
    if unknown:
        raise ValidationError("Fields cannot be changed through sync",
                              details={key: "Not editable offline" for key in unknown})
    if "title" in payload and not (isinstance(payload["title"], str) and payload["title"].strip()):
        raise ValidationError("title must be a non-empty string")
    if "priority" in payload and payload["priority"] not in PRIORITIES:
        raise ValidationError(f"Invalid priority: '{payload['priority']}'")
    for key in ("labor_cost", "misc_cost"):
        value = payload.get(key)
        if key in payload and (isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0):
            raise ValidationError(f"{key} must be a non-negative number")
    for key in ("required_permit_types", "permit_approvals", "lockout_tagout"):
        if key in payload and not isinstance(payload[key], list):
            raise ValidationError(f"{key} must be a list")


def sync_offline_change(ctx, work_order_id, version, payload, client_updated_at=None) -> SyncResult:
    """Merge a replayed offline edit; persist only when it applies cleanly.

    Clients that send a version are resolved by version. ``client_updated_at``
    is used on its own only when ``version`` is 0, the marker for clients that
    never saw a server version.
    """
    _validate_sync_payload(payload)
    work_order = _load(ctx, work_order_id)
    snapshot = snapshot_of(work_order)
    change = {"id": work_order.id, "version": version, "payload": payload,
              "client_updated_at": client_updated_at}

    if version == 0 and client_updated_at is not None:
        resolution = resolve_work_order_conflict_by_timestamp(snapshot, change)
    else:
        resolution = resolve_work_order_conflict(snapshot, change)

    if resolution.apply_change:
        for key in payload:
            setattr(work_order, key, resolution.merged[key])
        if "labor_cost" in payload or "misc_cost" in payload:
            recompute_totals(work_order)
        work_order.add_timeline("Offline changes synced", type="system",
                                notes=", ".join(sorted(payload)), created_by=ctx.user_id)
        _commit(work_order)
        logger.info("Offline change applied",
                    extra={"tenant_id": ctx.tenant_id, "work_order_id": work_order.id,
                           "fields": sorted(payload)})
    else:
        logger.info("Offline change rejected with conflicts",
                    extra={"tenant_id": ctx.tenant_id, "work_order_id": work_order.id,
                           "conflicts": resolution.conflicts})

    return SyncResult(
        work_order=work_order,
        merged=resolution.merged,
        conflicts=list(resolution.conflicts),
        applied=resolution.apply_change,
    )
