"""
Safety gate for work order status transitions.

Checks run in a fixed order and the first failure wins:

    1. every required permit type has an approved permit      → PermitsRequiredError
    2. every lockout/tagout step carries ``verified_at``       → LotoIncompleteError
    3. completion requires the current approval step approved  → ApprovalPendingError

Checks 1 and 2 apply to every requested status. The gate never mutates the
work order.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workpro.core.exceptions import (
    ApprovalPendingError,
    LotoIncompleteError,
    PermitsRequiredError,
)


@dataclass(frozen=True)
class GateResult:
    pending_permits: list[str] = field(default_factory=list)
    unverified_loto: int = 0
    approval_blocked: bool = False
    current_step: int | None = None

    @property
    def passed(self) -> bool:
        return not (self.pending_permits or self.unverified_loto or self.approval_blocked)


def pending_permits(work_order) -> list[str]:
    """Required permit types without an approved permit, in declared order."""
    approved = {
        p.get("type")
        for p in (work_order.permit_approvals or [])
        if isinstance(p, dict) and p.get("status") == "approved"
    }
    seen = set()
    missing = []
    for permit_type in work_order.required_permit_types or []:
        if permit_type not in approved and permit_type not in seen:
            missing.append(permit_type)
            seen.add(permit_type)
    return missing


def unverified_loto_count(work_order) -> int:
    return sum(
        1 for entry in (work_order.lockout_tagout or [])
        if not (isinstance(entry, dict) and entry.get("verified_at"))
    )


def evaluate(work_order, requested_status: str) -> GateResult:
    """Compute every gate check without raising."""
    permits = pending_permits(work_order)
    loto = unverified_loto_count(work_order)

    blocked = False
    if requested_status == "completed" and work_order.approval_steps:
        step = work_order.current_step()
        blocked = step is None or step.status != "approved"

    return GateResult(
        pending_permits=permits,
        unverified_loto=loto,
        approval_blocked=blocked,
        current_step=work_order.current_approval_step,
    )


def enforce(work_order, requested_status: str) -> GateResult:
    """Raise the first failing check for ``requested_status``."""
    result = evaluate(work_order, requested_status)
    if result.pending_permits:
        raise PermitsRequiredError(result.pending_permits)
    if result.unverified_loto:
        raise LotoIncompleteError(result.unverified_loto)
    if result.approval_blocked:
        raise ApprovalPendingError(result.current_step)
    return result
