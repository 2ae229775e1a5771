"""
Typed request contracts for the work order API.

Each contract is a dataclass whose fields carry a ``kind`` (and optionally
``required`` / ``choices``) in their metadata. ``parse(Contract, body)`` turns
a JSON body into an instance, collecting every problem into one
``ValidationError``:

    - fields the contract does not declare  → "Unknown field"
    - required fields that are absent/null  → "Field is required"
    - values of the wrong shape             → a per-field message

Usage:
    req = parse(StatusUpdateRequest, request.get_json(silent=True))
    result = work_order_lifecycle.update_status(ctx, wo_id, req.status, req.note)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from workpro.core.exceptions import ValidationError
from workpro.models.work_order import PRIORITIES, SLA_TRIGGERS, WORK_ORDER_STATUSES
from workpro.utils.helpers import parse_datetime


def _f(kind, *, required=False, choices=None, default=None, default_factory=None):
    metadata = {"kind": kind, "required": required, "choices": choices}
    if default_factory is not None:
        return field(default_factory=default_factory, metadata=metadata)
    return field(default=default, metadata=metadata)


def _coerce(name, kind, value, choices=None):
    if kind == "str":
        if not isinstance(value, str):
            raise ValueError("Must be a string")
        value = value.strip()
        if choices and value not in choices:
            raise ValueError(f"Invalid {name}: '{value}'. Allowed: {sorted(choices)}")
        return value
    if kind in ("int", "positive_int"):
        if isinstance(value, bool):
            raise ValueError("Must be an integer")
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        if not isinstance(value, int):
            raise ValueError("Must be an integer")
        if kind == "positive_int" and value <= 0:
            raise ValueError("Must be greater than zero")
        return value
    if kind == "money":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("Must be a number")
        if value < 0:
            raise ValueError("Must not be negative")
        return float(value)
    if kind == "bool":
        if not isinstance(value, bool):
            raise ValueError("Must be true or false")
        return value
    if kind == "datetime":
        return parse_datetime(value)
    if kind == "dict":
        if not isinstance(value, dict):
            raise ValueError("Must be an object")
        return value
    if kind == "list":
        if not isinstance(value, list):
            raise ValueError("Must be a list")
        return value
    raise ValueError(f"Unsupported field kind {kind!r}")


def parse(contract, payload):
    """Build ``contract`` from a JSON body or raise ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    declared = {f.name: f for f in fields(contract)}
    errors = {key: "Unknown field" for key in payload if key not in declared}
    values = {}
    for name, f in declared.items():
        meta = f.metadata
        raw = payload.get(name)
        if raw is None:
            if meta.get("required"):
                errors[name] = "Field is required"
            continue
        try:
            values[name] = _coerce(name, meta["kind"], raw, meta.get("choices"))
        except ValueError as exc:
            errors[name] = str(exc)

    if errors:
        raise ValidationError("Invalid request body", details=errors)
    return contract(**values)


# ── Lifecycle ────────────────────────────────────────────────────────────────


@dataclass
class StatusUpdateRequest:
    status: str = _f("str", required=True, choices=WORK_ORDER_STATUSES)
    note: str | None = _f("str")


@dataclass
class ApprovalRequest:
    approved: bool = _f("bool", required=True)
    note: str | None = _f("str")
    approver_id: str | None = _f("str")


@dataclass
class SlaAckRequest:
    kind: str = _f("str", required=True, choices=SLA_TRIGGERS)
    at: object = _f("datetime")


@dataclass
class WorkOrderCreateRequest:
    title: str = _f("str", required=True)
    description: str | None = _f("str")
    priority: str | None = _f("str", choices=PRIORITIES)
    assigned_to: str | None = _f("str")
    template_id: int | None = _f("int")
    site_id: int | None = _f("int")
    required_permit_types: list | None = _f("list")
    permit_approvals: list | None = _f("list")
    lockout_tagout: list | None = _f("list")
    approval_steps: list | None = _f("list")
    sla_response_minutes: int | None = _f("positive_int")
    sla_resolve_minutes: int | None = _f("positive_int")
    sla_escalations: list | None = _f("list")
    labor_cost: float | None = _f("money")
    misc_cost: float | None = _f("money")


@dataclass
class SyncRequest:
    version: int = _f("int", required=True)
    payload: dict = _f("dict", required=True)
    client_updated_at: object = _f("datetime")


# ── Parts ledger ─────────────────────────────────────────────────────────────


@dataclass
class PartsReserveRequest:
    stock_id: int = _f("int", required=True)
    quantity: int = _f("positive_int", required=True)
    unit_cost: float | None = _f("money")


@dataclass
class PartsQuantityRequest:
    stock_id: int = _f("int", required=True)
    quantity: int = _f("positive_int", required=True)


# ── Templates ────────────────────────────────────────────────────────────────


@dataclass
class TemplateCreateRequest:
    name: str = _f("str", required=True)
    description: str | None = _f("str")
    defaults: dict = _f("dict", default_factory=dict)
    site_id: int | None = _f("int")


@dataclass
class TemplateUpdateRequest:
    name: str | None = _f("str")
    description: str | None = _f("str")
    defaults: dict | None = _f("dict")

    def changes(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}
