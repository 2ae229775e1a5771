"""
WorkPro Maintenance Core
Parts inventory & reservation ledger models.

Models:
    - PartStock:              per-site stock record; on_hand is unreserved availability
    - WorkOrderPartLineItem:  parts reserved/issued/returned against one work order
    - InventoryMovement:      immutable movement log with post-movement balances

Quantities move between the two stock buckets only:
    reserve   on_hand  → reserved
    unreserve reserved → on_hand
    issue     reserved → consumed (leaves the stock record)
    return    consumed → on_hand
"""

from datetime import datetime, timezone

from workpro.models import db
from workpro.models.base import TenantModel
from workpro.models.soft_delete import SoftDeleteMixin


# ── Constants ────────────────────────────────────────────────────────────────

MOVEMENT_TYPES = {"reserve", "unreserve", "issue", "return"}


class PartStock(TenantModel):
    __tablename__ = "part_stocks"

    id = db.Column(db.Integer, primary_key=True)
    part_id = db.Column(db.String(100), nullable=False, comment="Catalogue part number")
    part_name = db.Column(db.String(300), default="")
    on_hand = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("on_hand >= 0", name="ck_part_stock_on_hand_non_negative"),
        db.CheckConstraint("reserved >= 0", name="ck_part_stock_reserved_non_negative"),
        db.UniqueConstraint("tenant_id", "site_id", "part_id", name="uq_part_stock_scope_part"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "site_id": self.site_id,
            "part_id": self.part_id,
            "part_name": self.part_name,
            "on_hand": self.on_hand,
            "reserved": self.reserved,
            "unit_cost": self.unit_cost,
        }

    def __repr__(self):
        return f"<PartStock {self.part_id} on_hand={self.on_hand} reserved={self.reserved}>"


class WorkOrderPartLineItem(SoftDeleteMixin, TenantModel):
    """
    Parts booked against a work order.

    ``quantity`` is the cumulative reservation; ``qty_issued`` never exceeds it
    and ``qty_returned`` never exceeds ``qty_issued``.
    """

    __tablename__ = "work_order_part_line_items"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stock_id = db.Column(
        db.Integer, db.ForeignKey("part_stocks.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    quantity = db.Column(db.Integer, nullable=False, default=0)
    qty_issued = db.Column(db.Integer, nullable=False, default=0)
    qty_returned = db.Column(db.Integer, nullable=False, default=0)
    unit_cost = db.Column(db.Float, nullable=False, default=0.0)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    work_order = db.relationship("WorkOrder", back_populates="part_line_items")
    stock = db.relationship("PartStock")

    __table_args__ = (
        db.CheckConstraint("qty_issued <= quantity", name="ck_line_item_issued_le_quantity"),
        db.CheckConstraint("qty_returned <= qty_issued", name="ck_line_item_returned_le_issued"),
        db.Index(
            "uq_line_item_active_stock", "work_order_id", "stock_id", unique=True,
            sqlite_where=db.text("deleted_at IS NULL"),
            postgresql_where=db.text("deleted_at IS NULL"),
        ),
    )

    @property
    def qty_outstanding(self):
        """Reserved quantity not yet issued."""
        return (self.quantity or 0) - (self.qty_issued or 0)

    @property
    def qty_consumed(self):
        return (self.qty_issued or 0) - (self.qty_returned or 0)

    @property
    def line_cost(self):
        return round((self.unit_cost or 0.0) * self.qty_consumed, 2)

    def to_dict(self):
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "stock_id": self.stock_id,
            "part_id": self.stock.part_id if self.stock else None,
            "quantity": self.quantity,
            "qty_issued": self.qty_issued,
            "qty_returned": self.qty_returned,
            "qty_outstanding": self.qty_outstanding,
            "unit_cost": self.unit_cost,
            "line_cost": self.line_cost,
            "created_by": self.created_by,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }


class InventoryMovement(TenantModel):
    """Immutable record of one ledger operation. Never updated or deleted."""

    __tablename__ = "inventory_movements"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stock_id = db.Column(
        db.Integer, db.ForeignKey("part_stocks.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    line_item_id = db.Column(
        db.Integer, db.ForeignKey("work_order_part_line_items.id", ondelete="SET NULL"), nullable=True,
    )
    type = db.Column(db.String(20), nullable=False, comment="reserve | unreserve | issue | return")
    quantity = db.Column(db.Integer, nullable=False)
    on_hand_after = db.Column(db.Integer, nullable=False)
    reserved_after = db.Column(db.Integer, nullable=False)
    created_by = db.Column(db.String(150), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "stock_id": self.stock_id,
            "line_item_id": self.line_item_id,
            "type": self.type,
            "quantity": self.quantity,
            "on_hand_after": self.on_hand_after,
            "reserved_after": self.reserved_after,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
