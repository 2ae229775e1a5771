"""
WorkPro Maintenance Core
Scheduler Service.

Background jobs register with ``@register_job`` and always run through
``SchedulerService.run_job``: the SLA monitor's timer thread, the
``flask sla-sweep`` CLI command and tests take the same path. Each job has
one ``ScheduledJob`` row that records its runs; clearing ``is_enabled`` on
that row pauses the job without stopping the process.

Run outcomes:
    success   job returned normally
    skipped   job is disabled, or reported ``{"status": "skipped"}``
              (e.g. the SLA lock is held by another process)
    failed    job raised; the error is logged and counted on the row
    error     unknown job or scheduler not initialised (nothing recorded)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from flask import Flask

from workpro.models import db
from workpro.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobSpec:
    fn: Callable
    interval_key: str | None = None
    default_interval_seconds: int = 3600


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, *, interval_key: str | None = None, default_interval_seconds: int = 3600):
    """Register ``fn(app)`` as job ``name``.

    ``interval_key`` names the config key holding the job's interval in
    seconds; it only seeds the ``ScheduledJob`` row's schedule.

    Usage:
        @register_job("sla_monitor", interval_key="SLA_SWEEP_INTERVAL_SECONDS")
        def run_sla_sweep(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = JobSpec(fn, interval_key, default_interval_seconds)
        return fn
    return decorator


class SchedulerService:
    """Runs registered jobs inside the app context and records each run."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ``ScheduledJob`` row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            existing = {name for (name,) in db.session.query(ScheduledJob.job_name)}
            for name, spec in _job_registry.items():
                if name in existing:
                    continue
                seconds = int(cls._app.config.get(spec.interval_key, spec.default_interval_seconds)
                              if spec.interval_key else spec.default_interval_seconds)
                job = ScheduledJob(
                    job_name=name,
                    description=(spec.fn.__doc__ or name).strip()[:500],
                    schedule_type="interval",
                    schedule_config={"seconds": seconds},
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created),
                            extra={"jobs": [j.job_name for j in created]})
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Run one job now. Returns job_name, status, duration_ms, result and error."""
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is not None and not record.is_enabled:
                logger.info("Job %s is disabled; run skipped", job_name)
                return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                        "result": {"status": "skipped", "reason": "disabled"}, "error": None}

            start = time.monotonic()
            result, error = None, None
            try:
                result = spec.fn(cls._app)
            except Exception as exc:
                db.session.rollback()
                error = str(exc)
                logger.exception("Job %s failed", job_name)
            duration_ms = int((time.monotonic() - start) * 1000)

            if error is not None:
                status = "failed"
            elif isinstance(result, dict) and result.get("status") == "skipped":
                status = "skipped"
            else:
                status = "success"
            cls._record_run(job_name, status, duration_ms, result, error)

        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @staticmethod
    def _record_run(job_name, status, duration_ms, result, error) -> None:
        try:
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is None:
                return
            record.record_run(
                status=status,
                duration_ms=duration_ms,
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=error,
            )
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Failed to update job record for %s", job_name)
