"""
Tests: parts reservation ledger.

Covers:
    - reserve / issue / return balances and cost totals (worked example)
    - soft delete releasing an unissued reservation
    - insufficient stock and over-issue / over-return rejections
    - cross-tenant and cross-site stock references → ScopeViolationError
    - requests interleaved on the same line item never double-count
    - conservation: on_hand + reserved + consumed stays equal to the opening balance
    - movement log carries post-movement balances

The `session` autouse fixture recreates tables after every test.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from workpro.core.context import RequestContext
from workpro.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    OverIssueError,
    ScopeViolationError,
    ValidationError,
)
from workpro.models import db as _db
from workpro.models.inventory import InventoryMovement, PartStock, WorkOrderPartLineItem
from workpro.models.tenant import Site
from workpro.models.work_order import WorkOrder
from workpro.services import parts_ledger as ledger


def _reload_stock(stock_id):
    _db.session.expire_all()
    return _db.session.get(PartStock, stock_id)


def _reload_wo(work_order_id):
    _db.session.expire_all()
    return _db.session.get(WorkOrder, work_order_id)


# ═════════════════════════════════════════════════════════════════════════════
# 1. HAPPY PATH
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_reserve_issue_return_worked_example(ctx, make_stock, make_work_order):
    """10 on hand → reserve 3 @ 5 → issue 2 → return 1 leaves 8 / 1 and cost 5."""
    stock = make_stock(ctx, on_hand=10, unit_cost=5.0)
    wo = make_work_order(ctx)

    ledger.reserve(ctx, wo.id, stock.id, 3, unit_cost=5.0)
    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (7, 3)

    line = ledger.issue(ctx, wo.id, stock.id, 2)
    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (7, 1)
    assert line.qty_issued == 2

    line = ledger.return_parts(ctx, wo.id, stock.id, 1)
    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (8, 1)
    assert line.qty_returned == 1

    w = _reload_wo(wo.id)
    assert w.parts_cost_total == 5.0
    assert w.parts_cost == 5.0
    assert w.total_cost == 5.0


@pytest.mark.unit
def test_reserve_twice_accumulates_on_one_line_item(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)

    first = ledger.reserve(ctx, wo.id, stock.id, 2)
    second = ledger.reserve(ctx, wo.id, stock.id, 3)

    assert first.id == second.id
    assert second.quantity == 5
    assert len(ledger.list_line_items(ctx, wo.id)) == 1


@pytest.mark.unit
def test_reserve_defaults_unit_cost_from_stock(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, unit_cost=12.5)
    wo = make_work_order(ctx)
    line = ledger.reserve(ctx, wo.id, stock.id, 1)
    assert line.unit_cost == 12.5


@pytest.mark.unit
def test_total_cost_includes_labor_and_misc(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, unit_cost=4.0)
    wo = make_work_order(ctx, labor_cost=100.0, misc_cost=10.0)
    assert wo.total_cost == 110.0

    ledger.reserve(ctx, wo.id, stock.id, 3)
    ledger.issue(ctx, wo.id, stock.id, 3)

    w = _reload_wo(wo.id)
    assert w.parts_cost_total == 12.0
    assert w.total_cost == 122.0


@pytest.mark.unit
def test_reserve_only_does_not_count_towards_cost(ctx, make_stock, make_work_order):
    """Only consumed (issued − returned) quantity is costed."""
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 4)
    assert _reload_wo(wo.id).parts_cost_total == 0.0


@pytest.mark.unit
def test_unreserve_releases_outstanding_quantity(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 4)

    line = ledger.unreserve(ctx, wo.id, stock.id, 3)

    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (9, 1)
    assert line.quantity == 1


@pytest.mark.unit
def test_each_operation_bumps_version_and_appends_timeline(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    start_version = wo.version
    start_entries = len(wo.timeline)

    ledger.reserve(ctx, wo.id, stock.id, 2)
    ledger.issue(ctx, wo.id, stock.id, 1)

    w = _reload_wo(wo.id)
    assert w.version == start_version + 2
    parts_entries = [e for e in w.timeline if e.type == "parts"]
    assert len(w.timeline) == start_entries + 2
    assert parts_entries[0].label == "Reserved 2 x P-100"


# ═════════════════════════════════════════════════════════════════════════════
# 2. SOFT DELETE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_delete_line_item_restores_reservation(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)
    line = ledger.reserve(ctx, wo.id, stock.id, 2)

    ledger.delete_line_item(ctx, wo.id, line.id)

    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (10, 0)
    assert _reload_wo(wo.id).parts_cost_total == 0.0
    assert ledger.list_line_items(ctx, wo.id) == []
    kept = _db.session.get(WorkOrderPartLineItem, line.id)
    assert kept is not None and kept.is_deleted


@pytest.mark.unit
def test_delete_line_item_excludes_cost_of_issued_parts(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=10, unit_cost=3.0)
    wo = make_work_order(ctx)
    line = ledger.reserve(ctx, wo.id, stock.id, 3)
    ledger.issue(ctx, wo.id, stock.id, 2)

    ledger.delete_line_item(ctx, wo.id, line.id)

    s = _reload_stock(stock.id)
    # Only the unissued unit goes back on hand.
    assert (s.on_hand, s.reserved) == (8, 0)
    assert _reload_wo(wo.id).parts_cost_total == 0.0


@pytest.mark.unit
def test_delete_line_item_twice_is_not_found(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    line = ledger.reserve(ctx, wo.id, stock.id, 1)
    ledger.delete_line_item(ctx, wo.id, line.id)

    with pytest.raises(NotFoundError):
        ledger.delete_line_item(ctx, wo.id, line.id)


@pytest.mark.unit
def test_delete_line_item_of_other_work_order_is_not_found(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo_a = make_work_order(ctx, title="A")
    wo_b = make_work_order(ctx, title="B")
    line = ledger.reserve(ctx, wo_a.id, stock.id, 1)

    with pytest.raises(NotFoundError):
        ledger.delete_line_item(ctx, wo_b.id, line.id)


@pytest.mark.unit
def test_reserve_after_delete_starts_new_line_item(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    old = ledger.reserve(ctx, wo.id, stock.id, 2)
    ledger.delete_line_item(ctx, wo.id, old.id)

    new = ledger.reserve(ctx, wo.id, stock.id, 1)
    assert new.id != old.id
    assert new.quantity == 1


# ═════════════════════════════════════════════════════════════════════════════
# 3. REJECTIONS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_reserve_more_than_on_hand_fails_and_leaves_stock(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=2)
    wo = make_work_order(ctx)

    with pytest.raises(InsufficientStockError) as exc:
        ledger.reserve(ctx, wo.id, stock.id, 3)

    assert exc.value.message == "Insufficient on-hand quantity"
    assert exc.value.status == 400
    _db.session.rollback()
    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (2, 0)


@pytest.mark.unit
def test_competing_reservations_never_go_negative(ctx, make_stock, make_work_order):
    """Two work orders draw on the same 5 units; the second over-ask fails."""
    stock = make_stock(ctx, on_hand=5)
    wo_a = make_work_order(ctx, title="A")
    wo_b = make_work_order(ctx, title="B")

    ledger.reserve(ctx, wo_a.id, stock.id, 4)
    with pytest.raises(InsufficientStockError):
        ledger.reserve(ctx, wo_b.id, stock.id, 2)
    _db.session.rollback()
    ledger.reserve(ctx, wo_b.id, stock.id, 1)

    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (0, 5)


@pytest.mark.unit
def test_issue_more_than_reserved_fails(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 2)

    with pytest.raises(OverIssueError, match="Cannot issue more than reserved") as exc:
        ledger.issue(ctx, wo.id, stock.id, 3)
    assert exc.value.details == {"requested": 3, "allowed": 2}


@pytest.mark.unit
def test_issue_without_reservation_fails(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    with pytest.raises(OverIssueError):
        ledger.issue(ctx, wo.id, stock.id, 1)


@pytest.mark.unit
def test_return_more_than_issued_fails(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 3)
    ledger.issue(ctx, wo.id, stock.id, 1)

    with pytest.raises(OverIssueError, match="Cannot return more than issued"):
        ledger.return_parts(ctx, wo.id, stock.id, 2)


@pytest.mark.unit
def test_unreserve_more_than_outstanding_fails(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 3)
    ledger.issue(ctx, wo.id, stock.id, 2)

    with pytest.raises(OverIssueError, match="Cannot unreserve more than reserved"):
        ledger.unreserve(ctx, wo.id, stock.id, 2)


@pytest.mark.unit
@pytest.mark.parametrize("quantity", [0, -1, True, 1.5])
def test_non_positive_or_non_integer_quantity_rejected(ctx, make_stock, make_work_order, quantity):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    with pytest.raises(ValidationError):
        ledger.reserve(ctx, wo.id, stock.id, quantity)


# ═════════════════════════════════════════════════════════════════════════════
# 4. SCOPE
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_reserve_with_other_tenant_stock_is_scope_violation(ctx, other_ctx, make_stock,
                                                             make_work_order):
    foreign = make_stock(other_ctx, part_id="X-1")
    wo = make_work_order(ctx)

    with pytest.raises(ScopeViolationError) as exc:
        ledger.reserve(ctx, wo.id, foreign.id, 1)
    assert exc.value.status == 400
    _db.session.rollback()
    assert _reload_stock(foreign.id).on_hand == 10


@pytest.mark.unit
def test_work_order_of_other_tenant_is_not_found(ctx, other_ctx, make_stock, make_work_order):
    stock = make_stock(other_ctx)
    foreign_wo = make_work_order(ctx)
    with pytest.raises(NotFoundError):
        ledger.reserve(other_ctx, foreign_wo.id, stock.id, 1)


@pytest.mark.unit
def test_tenant_wide_caller_cannot_use_stock_of_another_site(ctx, tenant, make_stock,
                                                           make_work_order):
    depot = Site(tenant_id=tenant.id, name="Depot 2")
    _db.session.add(depot)
    _db.session.commit()
    depot_stock = make_stock(RequestContext(tenant_id=tenant.id, site_id=depot.id), part_id="D-1")
    wo = make_work_order(ctx)
    planner = RequestContext(tenant_id=tenant.id, user_id="planner-1")

    with pytest.raises(ScopeViolationError):
        ledger.reserve(planner, wo.id, depot_stock.id, 1)
    _db.session.rollback()
    assert _reload_stock(depot_stock.id).on_hand == 10

    local = make_stock(ctx, part_id="L-1")
    line = ledger.reserve(planner, wo.id, local.id, 1)
    assert line.site_id == wo.site_id == local.site_id


@pytest.mark.unit
def test_missing_stock_is_scope_violation(ctx, make_work_order):
    wo = make_work_order(ctx)
    with pytest.raises(ScopeViolationError):
        ledger.reserve(ctx, wo.id, 99999, 1)


# ═════════════════════════════════════════════════════════════════════════════
# 5. CONSERVATION + MOVEMENTS
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.unit
def test_quantities_are_conserved_across_operations(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=20)
    wo = make_work_order(ctx)

    ledger.reserve(ctx, wo.id, stock.id, 8)
    ledger.issue(ctx, wo.id, stock.id, 5)
    ledger.return_parts(ctx, wo.id, stock.id, 2)
    ledger.unreserve(ctx, wo.id, stock.id, 1)

    s = _reload_stock(stock.id)
    line = ledger.list_line_items(ctx, wo.id)[0]
    assert s.on_hand + s.reserved + line.qty_consumed == 20
    assert s.reserved == line.qty_outstanding


@pytest.mark.unit
def test_movements_record_post_movement_balances(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 3)
    ledger.issue(ctx, wo.id, stock.id, 2)
    ledger.return_parts(ctx, wo.id, stock.id, 1)

    moves = ledger.list_movements(ctx, wo.id)
    assert [(m.type, m.quantity, m.on_hand_after, m.reserved_after) for m in moves] == [
        ("reserve", 3, 7, 3),
        ("issue", 2, 7, 1),
        ("return", 1, 8, 1),
    ]
    assert all(m.created_by == "tech-1" for m in moves)


@pytest.mark.unit
def test_failed_operation_records_no_movement(ctx, make_stock, make_work_order):
    stock = make_stock(ctx, on_hand=1)
    wo = make_work_order(ctx)
    with pytest.raises(InsufficientStockError):
        ledger.reserve(ctx, wo.id, stock.id, 2)
    _db.session.rollback()
    assert InventoryMovement.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# 6. INTERLEAVED REQUESTS
# ═════════════════════════════════════════════════════════════════════════════


def _interleave(monkeypatch, competing):
    """Run ``competing`` to completion right after the next request reads its line item."""
    original = ledger._active_line_item
    pending = [competing]

    def _read_then_compete(work_order, stock_id):
        line = original(work_order, stock_id)
        if pending:
            pending.pop()()
        return line

    monkeypatch.setattr(ledger, "_active_line_item", _read_then_compete)


@pytest.mark.unit
def test_interleaved_returns_cannot_return_issued_parts_twice(ctx, make_stock, make_work_order,
                                                              monkeypatch):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 2)
    ledger.issue(ctx, wo.id, stock.id, 2)

    _interleave(monkeypatch, lambda: ledger.return_parts(ctx, wo.id, stock.id, 2))
    with pytest.raises(OverIssueError):
        ledger.return_parts(ctx, wo.id, stock.id, 2)
    _db.session.rollback()

    s = _reload_stock(stock.id)
    assert (s.on_hand, s.reserved) == (10, 0)
    line = ledger.list_line_items(ctx, wo.id)[0]
    assert (line.qty_issued, line.qty_returned) == (2, 2)
    assert [m.type for m in ledger.list_movements(ctx, wo.id)] == ["reserve", "issue", "return"]


@pytest.mark.unit
def test_interleaved_issues_cannot_consume_one_reservation_twice(ctx, make_stock,
                                                                 make_work_order, monkeypatch):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 2)

    _interleave(monkeypatch, lambda: ledger.issue(ctx, wo.id, stock.id, 2))
    with pytest.raises(OverIssueError):
        ledger.issue(ctx, wo.id, stock.id, 2)
    _db.session.rollback()

    s = _reload_stock(stock.id)
    line = ledger.list_line_items(ctx, wo.id)[0]
    assert (s.on_hand, s.reserved) == (8, 0)
    assert line.qty_issued == 2
    assert s.on_hand + s.reserved + line.qty_consumed == 10


@pytest.mark.unit
def test_interleaved_first_reservations_keep_one_line_item(ctx, make_stock, make_work_order,
                                                           monkeypatch):
    stock = make_stock(ctx, on_hand=10)
    wo = make_work_order(ctx)

    _interleave(monkeypatch, lambda: ledger.reserve(ctx, wo.id, stock.id, 2))
    with pytest.raises(ConflictError):
        ledger.reserve(ctx, wo.id, stock.id, 3)

    s = _reload_stock(stock.id)
    items = ledger.list_line_items(ctx, wo.id)
    assert (s.on_hand, s.reserved) == (8, 2)
    assert [i.quantity for i in items] == [2]


@pytest.mark.unit
def test_second_active_line_item_for_same_stock_is_rejected(ctx, make_stock, make_work_order):
    stock = make_stock(ctx)
    wo = make_work_order(ctx)
    ledger.reserve(ctx, wo.id, stock.id, 1)

    _db.session.add(WorkOrderPartLineItem(
        tenant_id=wo.tenant_id, site_id=wo.site_id, work_order_id=wo.id, stock_id=stock.id,
    ))
    with pytest.raises(IntegrityError):
        _db.session.flush()
    _db.session.rollback()
