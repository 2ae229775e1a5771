"""
WorkPro Maintenance Core
Scheduled Jobs.

Jobs:
    - sla_monitor: one SLA sweep (upcoming reminders + breach escalation)
"""

from __future__ import annotations

from typing import Any

from workpro.services.scheduler_service import register_job
from workpro.services.sla_monitor import JOB_NAME, monitor_from_config


@register_job(JOB_NAME, interval_key="SLA_SWEEP_INTERVAL_SECONDS", default_interval_seconds=300)
def run_sla_sweep(app) -> dict[str, Any]:
    """Run one SLA sweep under the shared job lock."""
    monitor = app.extensions.get("sla_monitor") or monitor_from_config(app)
    return monitor.run_tick()
