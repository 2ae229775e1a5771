"""
Offline edit conflict resolution.

Mobile clients queue edits while disconnected and replay them later. Each
replayed change carries the work order version (or client timestamp) it was
made against. Resolution is a pure point-in-time merge against whatever the
server holds at replay time:

    change not stale  → payloads merged, change wins, no conflicts, apply
    change stale      → every changed key whose server value differs is a
                        conflict; the merged view still shows the change's
                        values, but ``apply_change`` is False while any
                        conflict remains

No I/O, no mutation of the inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from workpro.core.exceptions import ValidationError
from workpro.utils.helpers import as_utc, parse_datetime

_MISSING = object()


@dataclass(frozen=True)
class ConflictResolution:
    merged: dict
    conflicts: list[str] = field(default_factory=list)
    apply_change: bool = True

    def to_dict(self) -> dict:
        return {
            "merged": self.merged,
            "conflicts": list(self.conflicts),
            "apply_change": self.apply_change,
        }


def _check_ids(snapshot: Mapping[str, Any], change: Mapping[str, Any]) -> None:
    if snapshot.get("id") != change.get("id"):
        raise ValidationError(
            "Change does not target the given record",
            details={"snapshot_id": snapshot.get("id"), "change_id": change.get("id")},
        )


def _merge(snapshot: Mapping[str, Any], change: Mapping[str, Any], stale: bool) -> ConflictResolution:
    server = dict(snapshot.get("payload") or {})
    incoming = dict(change.get("payload") or {})

    conflicts = []
    if stale:
        conflicts = [
            key for key, value in incoming.items()
            if server.get(key, _MISSING) != value
        ]

    merged = {**server, **incoming}
    return ConflictResolution(merged=merged, conflicts=conflicts, apply_change=not conflicts)


def _timestamp(record: Mapping[str, Any], key: str):
    try:
        return as_utc(parse_datetime(record.get(key)))
    except ValueError as exc:
        raise ValidationError(str(exc), details={key: "Invalid datetime"}) from exc


def resolve_work_order_conflict(snapshot: Mapping[str, Any], change: Mapping[str, Any]) -> ConflictResolution:
    """Version-based merge. ``change.version < snapshot.version`` is stale."""
    _check_ids(snapshot, change)
    stale = int(change.get("version") or 0) < int(snapshot.get("version") or 0)
    return _merge(snapshot, change, stale)


def resolve_work_order_conflict_by_timestamp(
    snapshot: Mapping[str, Any], change: Mapping[str, Any]
) -> ConflictResolution:
    """Timestamp-based merge for clients that do not track versions.

    Stale when ``change.client_updated_at`` precedes ``snapshot.updated_at``.
    A change without a client timestamp is stale whenever the server copy has
    one; a server copy without ``updated_at`` never makes a change stale.
    Unparseable timestamps raise ValidationError.
    """
    _check_ids(snapshot, change)
    server_ts = _timestamp(snapshot, "updated_at")
    client_ts = _timestamp(change, "client_updated_at")
    if server_ts is None:
        stale = False
    elif client_ts is None:
        stale = True
    else:
        stale = client_ts < server_ts
    return _merge(snapshot, change, stale)
