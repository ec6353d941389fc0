"""Celery tasks driving the order sweeps.

Beat schedules them (``CELERY_BEAT_SCHEDULE``); each task runs the
registered ``PeriodicTask``, which owns locking and the soft deadline.
The Celery soft limit sits a little above the sweep's own deadline and
only fires when a single unit of work hangs.
"""

import structlog
from celery import shared_task
from celery.exceptions import SoftTimeLimitExceeded
from django.conf import settings

from modules.core.periodic import periodic_tasks

logger = structlog.get_logger(__name__)

TASK_SOFT_LIMIT = settings.SWEEP_SOFT_TIMEOUT_SECONDS + 30


def _run_sweep(name: str) -> dict:
    try:
        report = periodic_tasks.get(name).run()
    except SoftTimeLimitExceeded:
        logger.error("sweep.hard_timeout", sweep=name)
        return {"name": name, "timed_out": True}
    return report.as_dict()


@shared_task(name="orders.process_payment_reminders", soft_time_limit=TASK_SOFT_LIMIT)
def process_payment_reminders():
    """Reminders, deadline warnings and auto-cancellation of unpaid orders."""
    return _run_sweep("payment_reminders")


@shared_task(name="orders.process_pickup_reminders", soft_time_limit=TASK_SOFT_LIMIT)
def process_pickup_reminders():
    """H-1 and same-day pickup reminders."""
    return _run_sweep("pickup_reminders")
