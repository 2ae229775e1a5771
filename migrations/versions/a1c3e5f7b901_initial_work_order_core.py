"""Initial work-order core tables.

Revision ID: a1c3e5f7b901
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "a1c3e5f7b901"
down_revision = None
branch_labels = None
depends_on = None


def _scope_columns():
    return [
        sa.Column("tenant_id", sa.Integer,
                  sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("site_id", sa.Integer,
                  sa.ForeignKey("sites.id", ondelete="SET NULL"), nullable=True, index=True),
    ]


def upgrade():
    # ── Tenants & sites ──
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("settings", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "sites",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer,
                  sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "name", name="uq_site_tenant_name"),
    )

    # ── Templates ──
    op.create_table(
        "work_order_templates",
        sa.Column("id", sa.Integer, primary_key=True),
        *_scope_columns(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("defaults", sa.JSON, nullable=True),
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "name", name="uq_wo_template_tenant_name"),
    )

    # ── Work orders ──
    op.create_table(
        "work_orders",
        sa.Column("id", sa.Integer, primary_key=True),
        *_scope_columns(),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("description", sa.Text, server_default=""),
        sa.Column("status", sa.String(30), nullable=False, server_default="requested"),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("assigned_to", sa.String(150), nullable=True, index=True),
        sa.Column("template_id", sa.Integer,
                  sa.ForeignKey("work_order_templates.id", ondelete="SET NULL"), nullable=True),
        sa.Column("approval_status", sa.String(20), nullable=False, server_default="not_required"),
        sa.Column("current_approval_step", sa.Integer, nullable=True),
        sa.Column("sla_response_due_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("sla_resolve_due_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column("sla_responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_breach_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("required_permit_types", sa.JSON, nullable=True),
        sa.Column("permit_approvals", sa.JSON, nullable=True),
        sa.Column("lockout_tagout", sa.JSON, nullable=True),
        sa.Column("parts_cost_total", sa.Float, nullable=False, server_default="0"),
        sa.Column("parts_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("labor_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("misc_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_work_orders_tenant_status", "work_orders", ["tenant_id", "status"])

    op.create_table(
        "work_order_approval_steps",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("work_order_id", sa.Integer,
                  sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("step", sa.Integer, nullable=False),
        sa.Column("name", sa.String(200), server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("approver", sa.String(150), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("note", sa.Text, nullable=True),
        sa.UniqueConstraint("work_order_id", "step", name="uq_wo_approval_step"),
    )
    op.create_table(
        "work_order_sla_escalations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("work_order_id", sa.Integer,
                  sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("trigger", sa.String(20), nullable=False),
        sa.Column("threshold_minutes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("escalate_to", sa.JSON, nullable=True),
        sa.Column("priority", sa.String(20), nullable=True),
        sa.Column("reassign", sa.String(150), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "work_order_timeline",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("work_order_id", sa.Integer,
                  sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("label", sa.String(300), nullable=False),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="system"),
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )

    # ── Parts ledger ──
    op.create_table(
        "part_stocks",
        sa.Column("id", sa.Integer, primary_key=True),
        *_scope_columns(),
        sa.Column("part_id", sa.String(100), nullable=False),
        sa.Column("part_name", sa.String(300), server_default=""),
        sa.Column("on_hand", sa.Integer, nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("on_hand >= 0", name="ck_part_stock_on_hand_non_negative"),
        sa.CheckConstraint("reserved >= 0", name="ck_part_stock_reserved_non_negative"),
        sa.UniqueConstraint("tenant_id", "site_id", "part_id", name="uq_part_stock_scope_part"),
    )
    op.create_table(
        "work_order_part_line_items",
        sa.Column("id", sa.Integer, primary_key=True),
        *_scope_columns(),
        sa.Column("work_order_id", sa.Integer,
                  sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("stock_id", sa.Integer,
                  sa.ForeignKey("part_stocks.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("qty_issued", sa.Integer, nullable=False, server_default="0"),
        sa.Column("qty_returned", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True, index=True),
        sa.CheckConstraint("qty_issued <= quantity", name="ck_line_item_issued_le_quantity"),
        sa.CheckConstraint("qty_returned <= qty_issued", name="ck_line_item_returned_le_issued"),
    )
    op.create_index(
        "uq_line_item_active_stock", "work_order_part_line_items", ["work_order_id", "stock_id"],
        unique=True,
        sqlite_where=sa.text("deleted_at IS NULL"),
        postgresql_where=sa.text("deleted_at IS NULL"),
    )
    op.create_table(
        "inventory_movements",
        sa.Column("id", sa.Integer, primary_key=True),
        *_scope_columns(),
        sa.Column("work_order_id", sa.Integer,
                  sa.ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("stock_id", sa.Integer,
                  sa.ForeignKey("part_stocks.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("line_item_id", sa.Integer,
                  sa.ForeignKey("work_order_part_line_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("on_hand_after", sa.Integer, nullable=False),
        sa.Column("reserved_after", sa.Integer, nullable=False),
        sa.Column("created_by", sa.String(150), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    )

    # ── Notifications & scheduling ──
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tenant_id", sa.Integer,
                  sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("recipient", sa.String(150), nullable=False, index=True),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text, server_default=""),
        sa.Column("category", sa.String(30), server_default="system"),
        sa.Column("severity", sa.String(20), server_default="info"),
        sa.Column("work_order_id", sa.Integer, nullable=True, index=True),
        sa.Column("meta", sa.JSON, nullable=True),
        sa.Column("is_read", sa.Boolean, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("job_name", sa.String(100), unique=True, nullable=False),
        sa.Column("description", sa.String(500), server_default=""),
        sa.Column("schedule_type", sa.String(30), server_default="interval"),
        sa.Column("schedule_config", sa.JSON, nullable=True),
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("is_enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_run_status", sa.String(20), nullable=True),
        sa.Column("last_run_duration_ms", sa.Integer, nullable=True),
        sa.Column("last_run_result", sa.JSON, nullable=True),
        sa.Column("run_count", sa.Integer, server_default="0"),
        sa.Column("error_count", sa.Integer, server_default="0"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("owner", sa.String(200), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade():
    op.drop_table("job_locks")
    op.drop_table("scheduled_jobs")
    op.drop_table("notifications")
    op.drop_table("inventory_movements")
    op.drop_index("uq_line_item_active_stock", table_name="work_order_part_line_items")
    op.drop_table("work_order_part_line_items")
    op.drop_table("part_stocks")
    op.drop_table("work_order_timeline")
    op.drop_table("work_order_sla_escalations")
    op.drop_table("work_order_approval_steps")
    op.drop_index("ix_work_orders_tenant_status", table_name="work_orders")
    op.drop_table("work_orders")
    op.drop_table("work_order_templates")
    op.drop_table("sites")
    op.drop_table("tenants")
