"""
Tests for workpro/services/conflict_resolver.py

Pure functions; no database access.
"""

import copy

import pytest

from workpro.core.exceptions import ValidationError
from workpro.services.conflict_resolver import (
    resolve_work_order_conflict,
    resolve_work_order_conflict_by_timestamp,
)


def _snapshot(version=5, **payload):
    return {"id": 1, "version": version, "updated_at": "2026-05-01T10:00:00+00:00",
            "payload": payload or {"priority": "low"}}


def _change(version=5, **payload):
    return {"id": 1, "version": version, "payload": payload or {"priority": "high"}}


class TestVersionResolution:

    def test_stale_change_with_different_value_conflicts(self):
        res = resolve_work_order_conflict(_snapshot(5, priority="low"), _change(3, priority="high"))
        assert res.conflicts == ["priority"]
        assert res.apply_change is False
        assert res.merged["priority"] == "high"

    def test_current_change_applies_and_wins(self):
        res = resolve_work_order_conflict(
            _snapshot(5, priority="low", title="Pump"), _change(5, priority="high"),
        )
        assert res.apply_change is True
        assert res.conflicts == []
        assert res.merged == {"priority": "high", "title": "Pump"}

    def test_newer_client_version_is_not_stale(self):
        res = resolve_work_order_conflict(_snapshot(5), _change(6))
        assert res.apply_change

    def test_stale_change_matching_server_is_not_a_conflict(self):
        res = resolve_work_order_conflict(
            _snapshot(5, priority="high", title="Pump"),
            _change(2, priority="high", title="Fan"),
        )
        assert res.conflicts == ["title"]

    def test_stale_change_to_field_server_lacks_is_conflict(self):
        res = resolve_work_order_conflict(_snapshot(5, priority="low"), _change(1, misc_cost=3.0))
        assert res.conflicts == ["misc_cost"]

    def test_is_deterministic_and_does_not_mutate_inputs(self):
        snapshot, change = _snapshot(5, priority="low"), _change(3, priority="high")
        before = (copy.deepcopy(snapshot), copy.deepcopy(change))
        first = resolve_work_order_conflict(snapshot, change)
        second = resolve_work_order_conflict(snapshot, change)
        assert first == second
        assert (snapshot, change) == before

    def test_mismatched_ids_rejected(self):
        change = {**_change(), "id": 2}
        with pytest.raises(ValidationError):
            resolve_work_order_conflict(_snapshot(), change)

    def test_to_dict(self):
        res = resolve_work_order_conflict(_snapshot(5), _change(3))
        assert res.to_dict() == {"merged": {"priority": "high"}, "conflicts": ["priority"],
                                 "apply_change": False}


class TestTimestampResolution:

    @pytest.mark.parametrize("client_ts, stale", [
        ("2026-05-01T09:59:59Z", True),
        ("2026-05-01T10:00:00Z", False),
        ("2026-05-01T12:00:00+02:00", False),
        ("2026-05-01T11:00:00+02:00", True),
    ])
    def test_staleness_by_client_timestamp(self, client_ts, stale):
        change = {**_change(0), "client_updated_at": client_ts}
        res = resolve_work_order_conflict_by_timestamp(_snapshot(5), change)
        assert res.apply_change is not stale

    def test_missing_client_timestamp_is_stale(self):
        res = resolve_work_order_conflict_by_timestamp(_snapshot(5), _change(0))
        assert res.conflicts == ["priority"]

    @pytest.mark.parametrize("client_ts", [None, "2020-01-01T00:00:00Z"])
    def test_server_without_timestamp_never_stale(self, client_ts):
        snapshot = {**_snapshot(5), "updated_at": None}
        change = {**_change(0), "client_updated_at": client_ts}
        res = resolve_work_order_conflict_by_timestamp(snapshot, change)
        assert res.apply_change
        assert res.conflicts == []
        assert res.merged["priority"] == "high"

    @pytest.mark.parametrize("side", ["snapshot", "change"])
    def test_unparseable_timestamp_rejected(self, side):
        snapshot, change = _snapshot(5), _change(0)
        if side == "snapshot":
            snapshot["updated_at"] = "last tuesday"
        else:
            change["client_updated_at"] = "last tuesday"
        with pytest.raises(ValidationError):
            resolve_work_order_conflict_by_timestamp(snapshot, change)
