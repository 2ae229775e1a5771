"""Standardised API response envelope.

Every JSON response from the ``/api/v1`` surface has the shape::

    {"success": true,  "data": ...}
    {"success": false, "message": "...", "code": "ERR_...", "details": {...}}

Usage
-----
    from workpro.utils.errors import api_ok, api_error, E

    return api_ok(work_order.to_dict())
    return api_ok(template.to_dict(), status=201)
    return api_error(E.NOT_FOUND, "Work order not found")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes not owned by a ``WorkProError`` subclass."""

    # Validation – HTTP 400
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    SYNC_CONFLICT = "ERR_SYNC_CONFLICT"

    # Context – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Misc
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_DUPLICATE: 409,
    E.SYNC_CONFLICT: 409,
    E.FORBIDDEN: 403,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_ok(data=None, *, status: int = 200, message: str | None = None):
    """Return a success envelope."""
    body: dict = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
    data=None,
):
    """Return a failure envelope.

    Parameters
    ----------
    code : str
        Machine-readable error code (``E.*`` or ``WorkProError.code``).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing permits, allowed quantity, ...).
    data : optional
        Payload for failures that still return content (sync conflicts).
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "message": message,
        "code": code,
    }
    if details:
        body["details"] = details
    if data is not None:
        body["data"] = data

    return jsonify(body), http_status
