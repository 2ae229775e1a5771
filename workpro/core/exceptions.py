"""
Platform-wide exception hierarchy.

Services raise these types; the app-level error handler registered in
``workpro.create_app`` turns every ``WorkProError`` into the standard
``{"success": false, "message": ..., "code": ...}`` envelope with the
class's ``status``. Blueprints never catch them individually.

Usage:
    from workpro.core.exceptions import NotFoundError, InsufficientStockError

    raise NotFoundError(resource="WorkOrder", resource_id=42)
    raise InsufficientStockError(stock_id=7, requested=5, available=2)
"""


class WorkProError(Exception):
    """Base for every domain error that maps to an HTTP response."""

    status = 400
    code = "ERR_BAD_REQUEST"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ── Lookup / input ──────────────────────────────────────────────────────────


class NotFoundError(WorkProError):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and work orders that belong to
    another tenant, so the response never confirms the record exists.

    Args:
        resource: Human-readable entity name (e.g. "WorkOrder").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional scope that was enforced. For debug logging only.
    """

    status = 404
    code = "ERR_NOT_FOUND"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(WorkProError):
    """Raised when input is malformed or violates a field-level rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    status = 400
    code = "ERR_VALIDATION_INVALID"


class ScopeViolationError(WorkProError):
    """A referenced record exists outside the caller's tenant or site."""

    status = 400
    code = "ERR_SCOPE_VIOLATION"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"{resource} id={resource_id} is outside the current tenant/site scope"
        )


class ConflictError(WorkProError):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    status = 409
    code = "ERR_CONFLICT_DUPLICATE"

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


# ── Lifecycle / gating ──────────────────────────────────────────────────────


class InvalidTransitionError(WorkProError):
    status = 409
    code = "ERR_CONFLICT_STATE"

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot transition work order from '{current}' to '{requested}'",
            details={"current": current, "requested": requested},
        )


class NoPendingApprovalError(WorkProError):
    status = 400
    code = "ERR_NO_PENDING_APPROVAL"

    def __init__(self, step: int | None = None) -> None:
        self.step = step
        super().__init__("No pending approval step", details={"current_step": step})


class PermitsRequiredError(WorkProError):
    """Required permits are not all approved."""

    status = 409
    code = "ERR_PERMITS_REQUIRED"

    def __init__(self, missing_types: list[str]) -> None:
        self.missing_types = list(missing_types)
        super().__init__(
            "Approved permits required: " + ", ".join(self.missing_types),
            details={"missing_permits": self.missing_types},
        )


class LotoIncompleteError(WorkProError):
    """At least one lockout/tagout step has not been verified."""

    status = 409
    code = "ERR_LOTO_INCOMPLETE"

    def __init__(self, unverified: int = 1) -> None:
        self.unverified = unverified
        super().__init__(
            "Lockout/tagout verification incomplete",
            details={"unverified_steps": unverified},
        )


class ApprovalPendingError(WorkProError):
    status = 409
    code = "ERR_APPROVAL_PENDING"

    def __init__(self, step: int | None = None) -> None:
        self.step = step
        super().__init__(
            "Work order cannot be completed until the current approval step is approved",
            details={"current_step": step},
        )


# ── Parts ledger ────────────────────────────────────────────────────────────


class InsufficientStockError(WorkProError):
    status = 400
    code = "ERR_INSUFFICIENT_STOCK"

    def __init__(self, stock_id: int, requested: int, available: int | None = None) -> None:
        self.stock_id = stock_id
        self.requested = requested
        self.available = available
        super().__init__(
            "Insufficient on-hand quantity",
            details={"stock_id": stock_id, "requested": requested, "available": available},
        )


class OverIssueError(WorkProError):
    """Requested quantity exceeds what the line item still holds."""

    status = 400
    code = "ERR_OVER_ISSUE"

    def __init__(self, message: str, requested: int, allowed: int) -> None:
        self.requested = requested
        self.allowed = allowed
        super().__init__(message, details={"requested": requested, "allowed": allowed})
