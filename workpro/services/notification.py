"""
WorkPro Maintenance Core
Notification Service.

Lifecycle and SLA operations never deliver notifications themselves. They
return ``NotificationEvent`` objects; the caller hands them to
``dispatch_notifications`` once the database transaction has committed.
Delivery is best-effort: a failing recipient is logged and skipped, and never
surfaces to the caller.

The delivery hook is ``notify_user(user_id, message, meta)``. The default
implementation persists an in-app ``Notification`` row; deployments swap it
by setting ``app.extensions["notify_user"]``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from flask import current_app

from workpro.models import db
from workpro.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass
class NotificationEvent:
    user_id: str
    message: str
    meta: dict = field(default_factory=dict)


class NotificationService:
    """Stateless service class for in-app notification records."""

    @staticmethod
    def create(*, recipient, title, message="", category="system", severity="info",
               tenant_id=None, work_order_id=None, meta=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        notif = Notification(
            tenant_id=tenant_id,
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            work_order_id=work_order_id,
            meta=meta or {},
        )
        db.session.add(notif)
        db.session.commit()
        return notif


def default_notify_user(user_id: str, message: str, meta: dict) -> None:
    """Persist an in-app notification for ``user_id``."""
    NotificationService.create(
        recipient=str(user_id),
        title=meta.get("title") or message[:300],
        message=message,
        category=meta.get("category", "system"),
        severity=meta.get("severity", "info"),
        tenant_id=meta.get("tenant_id"),
        work_order_id=meta.get("work_order_id"),
        meta=meta,
    )


def get_notifier() -> Callable[[str, str, dict], None]:
    return current_app.extensions.get("notify_user", default_notify_user)


def dispatch_notifications(events: Iterable[NotificationEvent]) -> int:
    """Deliver events through the configured hook. Returns the delivered count."""
    notify = get_notifier()
    delivered = 0
    for event in events:
        try:
            notify(event.user_id, event.message, event.meta)
            delivered += 1
        except Exception:
            # Delivery is best-effort; the originating operation already committed.
            db.session.rollback()
            logger.warning(
                "Notification delivery failed",
                exc_info=True,
                extra={"recipient": event.user_id,
                       "work_order_id": event.meta.get("work_order_id")},
            )
    return delivered
