"""
WorkPro Maintenance Core
Blueprint helpers shared by the API modules.
"""

from flask import g, request
from sqlalchemy import func, select

from workpro.models import db


def current_ctx():
    """Request context set by the tenant context middleware."""
    return g.ctx


def json_body():
    return request.get_json(silent=True)


def paginate_stmt(stmt, default_limit=100, max_limit=500):
    """Apply limit/offset pagination to a ``select()`` statement.

    Query params:
        limit  — max items (default 100, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = db.session.execute(stmt.limit(limit).offset(offset)).scalars().all()
    return items, total
