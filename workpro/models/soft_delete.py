"""
Soft Delete Mixin

Adds a ``deleted_at`` timestamp column and a filter helper. Part line items
use it so a removed reservation stays on record for the movement history
while dropping out of listings and cost totals.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    select(MyModel).where(MyModel.active_clause())
"""

from workpro.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, default=None, index=True)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def active_clause(cls):
        """WHERE clause for ``select()`` and ``update()`` statements."""
        return cls.deleted_at.is_(None)
