"""
SLA monitor — recurring sweep for upcoming deadlines and breach escalation.

Each tick:
    1. acquires the ``sla_monitor`` job lock; if another process holds it the
       tick is skipped silently
    2. upcoming pass: reminds the assignee of every open work order whose
       response or resolve deadline falls inside the lookahead window
    3. breach pass: fires escalation rules whose ``due + threshold`` has
       passed and whose ``escalated_at`` is still empty
    4. releases the lock

Each work order is handled and committed on its own, so a bad record is
rolled back and logged while the rest of the batch continues. Notifications
go out after that record's commit.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

from sqlalchemy import and_, or_, select

from workpro.models import db
from workpro.models.work_order import TERMINAL_STATUSES, WorkOrder
from workpro.services.job_lock import JobLockService
from workpro.services.notification import NotificationEvent, dispatch_notifications
from workpro.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"
JOB_NAME = "sla_monitor"


class SlaMonitor:
    """Configured once per app; ``start()`` runs ticks on a daemon thread."""

    def __init__(
        self,
        app,
        *,
        interval_seconds: int = 300,
        lookahead_minutes: int = 60,
        lock_ttl_seconds: int = 240,
        lock_name: str = JOB_NAME,
        lock_service: JobLockService | None = None,
        clock=utcnow,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.app = app
        self.interval_seconds = interval_seconds
        self.lookahead = timedelta(minutes=lookahead_minutes)
        self.lock_ttl_seconds = lock_ttl_seconds
        self.lock_name = lock_name
        self.lock_service = lock_service or JobLockService()
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ── Timer ────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sla-monitor", daemon=True)
        self._thread.start()
        logger.info("SLA monitor started",
                    extra={"interval_seconds": self.interval_seconds,
                           "lookahead_minutes": int(self.lookahead.total_seconds() // 60)})

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.safe_tick()

    def safe_tick(self) -> dict | None:
        """Run one tick; errors are logged, never raised.

        Goes through the app's scheduler when one is registered so the run is
        recorded on the job row and honours a disabled job.
        """
        scheduler = self.app.extensions.get("scheduler")
        try:
            if scheduler is not None:
                return scheduler.run_job(JOB_NAME)
            with self.app.app_context():
                return self.run_tick()
        except Exception:
            logger.exception("SLA monitor tick failed")
            return None

    # ── Sweep ────────────────────────────────────────────────────────────

    def run_tick(self, now=None) -> dict:
        now = as_utc(now) or self.clock()
        if not self.lock_service.acquire(self.lock_name, self.lock_ttl_seconds, now=now):
            logger.debug("SLA monitor tick skipped; lock held elsewhere")
            return {"status": "skipped"}
        try:
            upcoming = self.notify_upcoming(now)
            breaches = self.process_breaches(now)
        finally:
            self.lock_service.release(self.lock_name)
        summary = {"status": "completed", **upcoming, **breaches}
        logger.info("SLA monitor tick completed", extra=summary)
        return summary

    def notify_upcoming(self, now) -> dict:
        window_end = now + self.lookahead
        response_soon = and_(
            WorkOrder.sla_response_due_at.is_not(None),
            WorkOrder.sla_response_due_at >= now,
            WorkOrder.sla_response_due_at <= window_end,
            WorkOrder.sla_responded_at.is_(None),
        )
        resolve_soon = and_(
            WorkOrder.sla_resolve_due_at.is_not(None),
            WorkOrder.sla_resolve_due_at >= now,
            WorkOrder.sla_resolve_due_at <= window_end,
            WorkOrder.sla_resolved_at.is_(None),
        )
        stmt = select(WorkOrder).where(
            WorkOrder.status.not_in(TERMINAL_STATUSES),
            or_(response_soon, resolve_soon),
        ).order_by(WorkOrder.id)

        counters = {"upcoming": 0, "reminders_sent": 0, "upcoming_errors": 0}
        for work_order in db.session.execute(stmt).scalars().all():
            counters["upcoming"] += 1
            try:
                if not work_order.assigned_to:
                    continue
                due = self._nearest_due(work_order, now, window_end)
                event = NotificationEvent(
                    user_id=work_order.assigned_to,
                    message=f"SLA deadline approaching for {work_order.title} (due {due.isoformat()})",
                    meta={
                        "title": "SLA deadline approaching",
                        "category": "sla",
                        "severity": "warning",
                        "tenant_id": work_order.tenant_id,
                        "work_order_id": work_order.id,
                        "due_at": due.isoformat(),
                    },
                )
                counters["reminders_sent"] += dispatch_notifications([event])
            except Exception:
                counters["upcoming_errors"] += 1
                logger.exception("SLA reminder failed", extra={"work_order_id": work_order.id})
        return counters

    @staticmethod
    def _nearest_due(work_order, now, window_end):
        candidates = []
        if work_order.sla_responded_at is None and work_order.sla_response_due_at is not None:
            candidates.append(as_utc(work_order.sla_response_due_at))
        if work_order.sla_resolved_at is None and work_order.sla_resolve_due_at is not None:
            candidates.append(as_utc(work_order.sla_resolve_due_at))
        in_window = [c for c in candidates if now <= c <= window_end]
        return min(in_window or candidates)

    def process_breaches(self, now) -> dict:
        response_late = and_(
            WorkOrder.sla_response_due_at.is_not(None),
            WorkOrder.sla_response_due_at < now,
            WorkOrder.sla_responded_at.is_(None),
        )
        resolve_late = and_(
            WorkOrder.sla_resolve_due_at.is_not(None),
            WorkOrder.sla_resolve_due_at < now,
            WorkOrder.sla_resolved_at.is_(None),
        )
        stmt = select(WorkOrder.id).where(
            WorkOrder.status.not_in(TERMINAL_STATUSES),
            or_(response_late, resolve_late),
        ).order_by(WorkOrder.id)
        ids = list(db.session.execute(stmt).scalars())

        counters = {"breached": len(ids), "escalations_fired": 0,
                    "escalation_notifications": 0, "breach_errors": 0}
        for work_order_id in ids:
            try:
                work_order = db.session.get(WorkOrder, work_order_id)
                events, fired = self.escalate(work_order, now)
                if fired:
                    work_order.bump_version()
                    db.session.commit()
                    counters["escalations_fired"] += fired
                    counters["escalation_notifications"] += dispatch_notifications(events)
            except Exception:
                db.session.rollback()
                counters["breach_errors"] += 1
                logger.exception("SLA escalation failed", extra={"work_order_id": work_order_id})
        return counters

    @staticmethod
    def escalate(work_order: WorkOrder, now) -> tuple[list[NotificationEvent], int]:
        """Fire every due, not-yet-fired rule on ``work_order`` (no commit)."""
        events: list[NotificationEvent] = []
        fired = 0
        for rule in work_order.sla_escalations:
            if rule.escalated_at is not None:
                continue
            if rule.trigger == "response":
                due, done = work_order.sla_response_due_at, work_order.sla_responded_at
            else:
                due, done = work_order.sla_resolve_due_at, work_order.sla_resolved_at
            if due is None or done is not None:
                continue
            if now < as_utc(due) + timedelta(minutes=rule.threshold_minutes or 0):
                continue

            if work_order.sla_breach_at is None:
                work_order.sla_breach_at = now
            if rule.priority:
                work_order.priority = rule.priority
            if rule.reassign:
                work_order.assigned_to = rule.reassign
            recipients = [str(u) for u in rule.escalate_to or []]
            work_order.add_timeline(
                "SLA escalated", type="sla", created_by=SYSTEM_USER, at=now,
                notes=f"{rule.trigger} SLA breached; escalated to {', '.join(recipients) or 'nobody'}",
            )
            for user_id in recipients:
                events.append(NotificationEvent(
                    user_id=user_id,
                    message=f"SLA breached for {work_order.title} ({rule.trigger})",
                    meta={
                        "title": "SLA escalation",
                        "category": "sla",
                        "severity": "error",
                        "tenant_id": work_order.tenant_id,
                        "work_order_id": work_order.id,
                        "trigger": rule.trigger,
                    },
                ))
            rule.escalated_at = now
            fired += 1
        return events, fired


def monitor_from_config(app) -> SlaMonitor:
    """Build a monitor from ``SLA_*`` config keys."""
    return SlaMonitor(
        app,
        interval_seconds=int(app.config.get("SLA_SWEEP_INTERVAL_SECONDS", 300)),
        lookahead_minutes=int(app.config.get("SLA_LOOKAHEAD_MINUTES", 60)),
        lock_ttl_seconds=int(app.config.get("SLA_LOCK_TTL_SECONDS", 240)),
    )
