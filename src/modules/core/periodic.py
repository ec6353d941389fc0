"""Periodic task abstraction shared by every scheduled sweep.

A ``PeriodicTask`` pairs a sweep function with its cadence and soft
timeout.  The same object is driven by Celery beat (through the tasks in
``modules.orders.tasks``), by an external cron hitting the HTTP trigger,
or by the in-process ticker (``run_forever``) used by
``manage.py run_sweep --loop``.  Whatever the trigger, a run:

- refuses to start while another run of the same sweep holds the lock
  (the lock lives in the shared cache, so this holds across processes);
- receives a ``Deadline`` and stops between orders once it expires;
- walks its candidates batch by batch (``iter_batches``) until they are
  exhausted or the deadline hits;
- returns a ``SweepReport`` describing what happened.

No state survives between runs except what the sweep itself persisted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

import structlog
from django.core.cache import cache
from django.utils import timezone

logger = structlog.get_logger(__name__)

LOCK_KEY = "periodic:{name}:lock"
LAST_RUN_KEY = "periodic:{name}:last_run"


class Deadline:
    """Soft time budget checked between units of work."""

    def __init__(self, seconds: Optional[float]) -> None:
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @classmethod
    def never(cls) -> Deadline:
        return cls(None)

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at


@dataclass
class SweepReport:
    """Outcome of one sweep (or of one sub-sweep inside it)."""

    name: str
    started_at: datetime = field(default_factory=timezone.now)
    finished_at: Optional[datetime] = None
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    timed_out: bool = False
    overlapped: bool = False
    error: Optional[str] = None
    failed_order_ids: List[str] = field(default_factory=list)
    children: Dict[str, "SweepReport"] = field(default_factory=dict)

    def record_failure(self, order_id: Any) -> None:
        self.failed += 1
        self.failed_order_ids.append(str(order_id))

    def add_child(self, child: SweepReport) -> None:
        self.children[child.name] = child
        self.found += child.found
        self.processed += child.processed
        self.skipped += child.skipped
        self.failed += child.failed
        self.failed_order_ids.extend(child.failed_order_ids)
        self.timed_out = self.timed_out or child.timed_out
        self.error = self.error or child.error

    def finish(self) -> SweepReport:
        self.finished_at = timezone.now()
        return self

    def as_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "found": self.found,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "timed_out": self.timed_out,
            "overlapped": self.overlapped,
            "error": self.error,
            "failed_order_ids": list(self.failed_order_ids),
        }
        if self.children:
            data["children"] = {
                key: child.as_dict() for key, child in self.children.items()
            }
        return data


Cursor = Tuple[datetime, Any]


def iter_batches(
    fetch: Callable[[Optional[Cursor], int], List[Any]], batch_size: int
) -> Iterator[Any]:
    """Yield every candidate of a sweep query, one batch at a time.

    ``fetch(after, limit)`` returns up to ``limit`` rows ordered by
    ``(created_at, id)`` and strictly after the ``after`` cursor.  Rows
    already handled (or skipped) never hold back the ones behind them.
    """
    after: Optional[Cursor] = None
    while True:
        batch = fetch(after, batch_size)
        yield from batch
        if len(batch) < batch_size:
            return
        last = batch[-1]
        after = (last.created_at, last.id)


SweepFunction = Callable[..., SweepReport]
StatsFunction = Callable[..., Dict[str, Any]]


@dataclass(frozen=True)
class PeriodicTask:
    """A sweep function plus the policy it runs under."""

    name: str
    func: SweepFunction
    interval: timedelta
    soft_timeout: float
    stats: Optional[StatsFunction] = None

    def run(self, now: Optional[datetime] = None) -> SweepReport:
        """Run the sweep once, unless another run of it is in flight."""
        lock_key = LOCK_KEY.format(name=self.name)
        token = uuid4().hex
        # The lock outlives a crashed run by at most twice the soft timeout.
        if not cache.add(lock_key, token, timeout=int(self.soft_timeout * 2) or 1):
            logger.warning("sweep.overlap_skipped", sweep=self.name)
            report = SweepReport(name=self.name, overlapped=True)
            return report.finish()

        structlog.contextvars.bind_contextvars(sweep=self.name, run_id=token)
        try:
            logger.info("sweep.started")
            report = self.func(now=now, deadline=Deadline(self.soft_timeout))
            report.finish()
            cache.set(
                LAST_RUN_KEY.format(name=self.name),
                report.finished_at.isoformat(),
                timeout=None,
            )
            logger.info(
                "sweep.finished",
                found=report.found,
                processed=report.processed,
                skipped=report.skipped,
                failed=report.failed,
                timed_out=report.timed_out,
            )
            return report
        finally:
            if cache.get(lock_key) == token:
                cache.delete(lock_key)
            structlog.contextvars.unbind_contextvars("sweep", "run_id")

    def run_forever(self, stop_event: threading.Event) -> None:
        """In-process ticker: run, then wait out the rest of the interval."""
        interval = self.interval.total_seconds()
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.run()
            except Exception:
                # Next tick retries; the ticker itself must survive.
                logger.exception("sweep.run_crashed", sweep=self.name)
            stop_event.wait(max(0.0, interval - (time.monotonic() - started)))

    def get_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        if self.stats is None:
            return {}
        return self.stats(now=now)


class PeriodicTaskRegistry:
    """Name → ``PeriodicTask`` lookup used by every trigger."""

    def __init__(self) -> None:
        self._tasks: Dict[str, PeriodicTask] = {}

    def register(self, task: PeriodicTask) -> PeriodicTask:
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> PeriodicTask:
        try:
            return self._tasks[name]
        except KeyError:
            raise KeyError(f"Unknown periodic task '{name}'.") from None

    def names(self) -> List[str]:
        return sorted(self._tasks)

    def __contains__(self, name: object) -> bool:
        return name in self._tasks


def last_run(name: str) -> Optional[str]:
    """ISO timestamp of the last completed run of *name*, if any."""
    return cache.get(LAST_RUN_KEY.format(name=name))


periodic_tasks = PeriodicTaskRegistry()
