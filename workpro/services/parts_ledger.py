"""
Parts reservation ledger.

Every counter change is a single conditional UPDATE. The line item moves
first, then the stock row:

    reserve    line quantity   += q                            stock on_hand -= q, reserved += q   WHERE on_hand  >= q
    unreserve  line quantity   -= q  WHERE outstanding >= q    stock on_hand += q, reserved -= q   WHERE reserved >= q
    issue      line qty_issued += q  WHERE outstanding >= q    stock               reserved -= q   WHERE reserved >= q
    return     line qty_returned += q WHERE consumed >= q      stock on_hand += q

A statement that matches no row means the condition failed, so neither the
stock balances nor the line item counters can be driven past their limits
by requests racing on the same rows. Line item updates also require the row
to be active, and a partial unique index keeps one active line item per
(work order, stock) pair. Each operation appends one immutable
``InventoryMovement`` carrying the post-movement balances and recomputes the
work order's cost totals from its active line items before committing. A
failure after the first write rolls the session back.

Scope rules:
    - the work order must be inside the caller's tenant/site  → NotFoundError
    - the stock / line item must be inside the work order's   → ScopeViolationError
      own tenant/site
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from workpro.core.exceptions import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    OverIssueError,
    ValidationError,
)
from workpro.models import db
from workpro.models.inventory import InventoryMovement, PartStock, WorkOrderPartLineItem
from workpro.models.work_order import WorkOrder
from workpro.services.helpers.scoped_queries import get_scoped, require_in_scope

logger = logging.getLogger(__name__)

Line = WorkOrderPartLineItem


# ═══════════════════════════════════════════════════════════════════════════
#  Internals
# ═══════════════════════════════════════════════════════════════════════════


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer",
                              details={"quantity": "Must be greater than zero"})
    return quantity


def _load_work_order(ctx, work_order_id) -> WorkOrder:
    return get_scoped(WorkOrder, work_order_id, tenant_id=ctx.tenant_id, site_id=ctx.site_id)


def _load_stock(ctx, work_order, stock_id) -> PartStock:
    return require_in_scope(PartStock, stock_id, ctx.within(work_order))


def _apply_stock_delta(stock: PartStock, *, on_hand: int = 0, reserved: int = 0):
    """Apply deltas atomically. Returns ``(on_hand, reserved)`` after, or None."""
    stmt = update(PartStock).where(
        PartStock.id == stock.id,
        PartStock.tenant_id == stock.tenant_id,
    )
    if on_hand < 0:
        stmt = stmt.where(PartStock.on_hand >= -on_hand)
    if reserved < 0:
        stmt = stmt.where(PartStock.reserved >= -reserved)
    stmt = (
        stmt.values(on_hand=PartStock.on_hand + on_hand, reserved=PartStock.reserved + reserved)
        .returning(PartStock.on_hand, PartStock.reserved)
        .execution_options(synchronize_session=False)
    )
    row = db.session.execute(stmt).one_or_none()
    # The ORM copy is stale after a Core UPDATE.
    db.session.expire(stock, ["on_hand", "reserved"])
    if row is None:
        return None
    return row[0], row[1]


def _apply_line_delta(line, *, quantity: int = 0, issued: int = 0, returned: int = 0) -> bool:
    """Apply line item deltas atomically. Returns False when a limit would be crossed."""
    stmt = update(Line).where(Line.id == line.id, Line.active_clause())
    if quantity < 0 or issued > 0:
        stmt = stmt.where(Line.quantity - Line.qty_issued >= issued - quantity)
    if returned > 0:
        stmt = stmt.where(Line.qty_issued - Line.qty_returned >= returned)
    stmt = (
        stmt.values(
            quantity=Line.quantity + quantity,
            qty_issued=Line.qty_issued + issued,
            qty_returned=Line.qty_returned + returned,
        )
        .returning(Line.id)
        .execution_options(synchronize_session=False)
    )
    row = db.session.execute(stmt).one_or_none()
    db.session.expire(line, ["quantity", "qty_issued", "qty_returned", "deleted_at"])
    return row is not None


def _active_line_item(work_order: WorkOrder, stock_id: int):
    stmt = select(Line).where(
        Line.work_order_id == work_order.id,
        Line.stock_id == stock_id,
        Line.active_clause(),
    )
    return db.session.execute(stmt).scalars().first()


def _open_line_item(ctx, work_order, stock):
    line = _active_line_item(work_order, stock.id)
    if line is not None:
        return line
    line = Line(
        tenant_id=work_order.tenant_id,
        site_id=work_order.site_id,
        work_order_id=work_order.id,
        stock_id=stock.id,
        quantity=0,
        qty_issued=0,
        qty_returned=0,
        unit_cost=stock.unit_cost or 0.0,
        created_by=ctx.user_id,
    )
    db.session.add(line)
    try:
        db.session.flush()
    except IntegrityError:
        # Another request opened the line item first.
        db.session.rollback()
        raise ConflictError("WorkOrderPartLineItem", "stock_id", str(stock.id))
    return line


def _fail(exc):
    db.session.rollback()
    raise exc


def _record_movement(ctx, work_order, stock, line_item, movement_type, quantity, balances):
    movement = InventoryMovement(
        tenant_id=work_order.tenant_id,
        site_id=work_order.site_id,
        work_order_id=work_order.id,
        stock_id=stock.id,
        line_item_id=line_item.id if line_item is not None else None,
        type=movement_type,
        quantity=quantity,
        on_hand_after=balances[0],
        reserved_after=balances[1],
        created_by=ctx.user_id,
    )
    db.session.add(movement)
    return movement


def _finish(ctx, work_order, label, log_msg, **log_extra):
    recompute_totals(work_order)
    work_order.add_timeline(label, type="parts", created_by=ctx.user_id)
    work_order.bump_version()
    db.session.commit()
    logger.info(log_msg, extra={"tenant_id": ctx.tenant_id, "work_order_id": work_order.id,
                                **log_extra})


def recompute_totals(work_order: WorkOrder) -> WorkOrder:
    """Recompute cost totals from the work order's active line items."""
    stmt = select(Line).where(
        Line.work_order_id == work_order.id,
        Line.active_clause(),
    )
    items = db.session.execute(stmt).scalars().all()
    parts_total = round(sum(item.line_cost for item in items), 2)
    work_order.parts_cost_total = parts_total
    work_order.parts_cost = parts_total
    work_order.total_cost = round(
        (work_order.labor_cost or 0.0) + parts_total + (work_order.misc_cost or 0.0), 2
    )
    return work_order


# ═══════════════════════════════════════════════════════════════════════════
#  Operations
# ═══════════════════════════════════════════════════════════════════════════


def reserve(ctx, work_order_id, stock_id, quantity, unit_cost=None) -> WorkOrderPartLineItem:
    """Move ``quantity`` from on-hand to reserved for this work order."""
    quantity = _validate_quantity(quantity)
    work_order = _load_work_order(ctx, work_order_id)
    stock = _load_stock(ctx, work_order, stock_id)
    available = stock.on_hand

    line = _open_line_item(ctx, work_order, stock)
    if not _apply_line_delta(line, quantity=quantity):
        _fail(ConflictError("WorkOrderPartLineItem", "id", str(line.id)))
    if unit_cost is not None:
        line.unit_cost = float(unit_cost)

    balances = _apply_stock_delta(stock, on_hand=-quantity, reserved=quantity)
    if balances is None:
        _fail(InsufficientStockError(stock_id=stock_id, requested=quantity, available=available))

    _record_movement(ctx, work_order, stock, line, "reserve", quantity, balances)
    _finish(ctx, work_order, f"Reserved {quantity} x {stock.part_id}", "Parts reserved",
            stock_id=stock.id, quantity=quantity)
    return line


def unreserve(ctx, work_order_id, stock_id, quantity) -> WorkOrderPartLineItem:
    """Release part of an unissued reservation back to on-hand."""
    quantity = _validate_quantity(quantity)
    work_order = _load_work_order(ctx, work_order_id)
    stock = _load_stock(ctx, work_order, stock_id)
    line = _active_line_item(work_order, stock.id)
    outstanding = line.qty_outstanding if line is not None else 0
    if line is None or not _apply_line_delta(line, quantity=-quantity):
        raise OverIssueError("Cannot unreserve more than reserved", quantity, outstanding)

    balances = _apply_stock_delta(stock, on_hand=quantity, reserved=-quantity)
    if balances is None:
        _fail(OverIssueError("Stock reservation is lower than the line item's",
                             quantity, outstanding))

    _record_movement(ctx, work_order, stock, line, "unreserve", quantity, balances)
    _finish(ctx, work_order, f"Released {quantity} x {stock.part_id}", "Parts unreserved",
            stock_id=stock.id, quantity=quantity)
    return line


def issue(ctx, work_order_id, stock_id, quantity) -> WorkOrderPartLineItem:
    """Consume reserved quantity. Issued parts leave the stock record."""
    quantity = _validate_quantity(quantity)
    work_order = _load_work_order(ctx, work_order_id)
    stock = _load_stock(ctx, work_order, stock_id)
    line = _active_line_item(work_order, stock.id)
    outstanding = line.qty_outstanding if line is not None else 0
    if line is None or not _apply_line_delta(line, issued=quantity):
        raise OverIssueError("Cannot issue more than reserved", quantity, outstanding)

    balances = _apply_stock_delta(stock, reserved=-quantity)
    if balances is None:
        _fail(OverIssueError("Stock reservation is lower than the line item's",
                             quantity, outstanding))

    _record_movement(ctx, work_order, stock, line, "issue", quantity, balances)
    _finish(ctx, work_order, f"Issued {quantity} x {stock.part_id}", "Parts issued",
            stock_id=stock.id, quantity=quantity)
    return line


def return_parts(ctx, work_order_id, stock_id, quantity) -> WorkOrderPartLineItem:
    """Put issued, unused parts back on hand.

    Only previously issued quantity can come back; any outstanding
    reservation on the line item is left as it is.
    """
    quantity = _validate_quantity(quantity)
    work_order = _load_work_order(ctx, work_order_id)
    stock = _load_stock(ctx, work_order, stock_id)
    line = _active_line_item(work_order, stock.id)
    returnable = line.qty_consumed if line is not None else 0
    if line is None or not _apply_line_delta(line, returned=quantity):
        raise OverIssueError("Cannot return more than issued", quantity, returnable)

    balances = _apply_stock_delta(stock, on_hand=quantity)

    _record_movement(ctx, work_order, stock, line, "return", quantity, balances)
    _finish(ctx, work_order, f"Returned {quantity} x {stock.part_id}", "Parts returned",
            stock_id=stock.id, quantity=quantity)
    return line


def delete_line_item(ctx, work_order_id, line_item_id) -> None:
    """Soft-delete a line item, releasing its unissued reservation."""
    work_order = _load_work_order(ctx, work_order_id)
    line = require_in_scope(Line, line_item_id, ctx.within(work_order))
    if line.work_order_id != work_order.id:
        raise NotFoundError(resource="WorkOrderPartLineItem", resource_id=line_item_id)

    # Deactivate and read the outstanding reservation in one statement.
    row = db.session.execute(
        update(Line)
        .where(Line.id == line.id, Line.active_clause())
        .values(deleted_at=datetime.now(timezone.utc))
        .returning(Line.quantity - Line.qty_issued)
        .execution_options(synchronize_session=False)
    ).one_or_none()
    db.session.expire(line, ["deleted_at"])
    if row is None:
        raise NotFoundError(resource="WorkOrderPartLineItem", resource_id=line_item_id)
    outstanding = row[0]

    stock = line.stock
    if outstanding > 0:
        balances = _apply_stock_delta(stock, on_hand=outstanding, reserved=-outstanding)
        if balances is None:
            _fail(OverIssueError("Stock reservation is lower than the line item's",
                                 outstanding, outstanding))
        _record_movement(ctx, work_order, stock, line, "unreserve", outstanding, balances)

    _finish(ctx, work_order, f"Removed line item for {stock.part_id}", "Parts line item deleted",
            line_item_id=line.id, released=outstanding)


def list_line_items(ctx, work_order_id) -> list[WorkOrderPartLineItem]:
    work_order = _load_work_order(ctx, work_order_id)
    stmt = (
        select(Line)
        .where(Line.work_order_id == work_order.id, Line.active_clause())
        .order_by(Line.id)
    )
    return list(db.session.execute(stmt).scalars())


def list_movements(ctx, work_order_id) -> list[InventoryMovement]:
    work_order = _load_work_order(ctx, work_order_id)
    stmt = (
        select(InventoryMovement)
        .where(InventoryMovement.work_order_id == work_order.id)
        .order_by(InventoryMovement.created_at, InventoryMovement.id)
    )
    return list(db.session.execute(stmt).scalars())
