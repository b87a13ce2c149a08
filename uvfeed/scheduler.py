"""
Scheduler module for the UV Feed application.

Drives the foreground ingestion loop behind the in-app location list:
- fires once immediately, then on a fixed period (1 second by default)
- never starts a cycle while the previous one is still running
- keeps the last good readings when a cycle fails
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .fetcher import Reading
from .ingestion import IngestionService, IngestResult

logger = logging.getLogger(__name__)

FOREGROUND_REFRESH_SECONDS = 1.0
REFRESH_JOB_ID = "foreground_refresh"


@dataclass
class ListState:
    """What the location list renders."""
    locations: List[Reading] = field(default_factory=list)
    last_update_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_loading: bool = False
    error_message: Optional[str] = None


class ForegroundRefresher:
    """
    Periodic refresher owning the location list state.

    The refresh job is an explicit handle created in start() and cancelled
    in stop(). A tick that arrives while a cycle is in flight is dropped.
    """

    def __init__(
        self,
        ingestion: IngestionService,
        interval_seconds: float = FOREGROUND_REFRESH_SECONDS
    ):
        self.ingestion = ingestion
        self.interval_seconds = interval_seconds
        self.scheduler: Optional[BackgroundScheduler] = None
        self._job = None

        self._fetch_guard = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = ListState()
        self._skipped_ticks = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start refreshing: one tick now, then every interval."""
        if self.is_running:
            logger.warning("Refresher already running")
            return

        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            timezone=timezone.utc
        )
        self._job = self.scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=REFRESH_JOB_ID,
            name="UV feed refresh",
            next_run_time=datetime.now(timezone.utc),
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Refresher started: every {self.interval_seconds}s")

    def stop(self) -> None:
        """Cancel the refresh job. An in-flight cycle is allowed to finish."""
        if not self.is_running:
            return
        if self._job is not None:
            self._job.remove()
            self._job = None
        self.scheduler.shutdown(wait=True)
        self.scheduler = None
        logger.info("Refresher stopped")

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    # =========================================================================
    # Refreshing
    # =========================================================================

    def tick(self) -> Optional[IngestResult]:
        """
        Run one cycle unless one is already in flight.

        Returns:
            The cycle result, or None when the tick was skipped.
        """
        if not self._fetch_guard.acquire(blocking=False):
            with self._state_lock:
                self._skipped_ticks += 1
            logger.debug("Previous refresh still running, skipping tick")
            return None
        try:
            return self.fetch_data()
        finally:
            self._fetch_guard.release()

    def refresh_now(self) -> Optional[IngestResult]:
        """Manual retry, subject to the same in-flight guard as ticks."""
        return self.tick()

    def fetch_data(self) -> IngestResult:
        """
        Run one cycle and fold its outcome into the list state.

        An unexpected exception from a collaborator is shown as the error
        message and then re-raised; the loading flag is always cleared.
        """
        with self._state_lock:
            self._state.is_loading = True

        try:
            result = self.ingestion.run_once()
        except Exception as e:
            logger.error(f"Refresh failed unexpectedly: {e}")
            with self._state_lock:
                self._state.error_message = f"Failed to fetch UV data: {e}"
            raise
        finally:
            with self._state_lock:
                self._state.is_loading = False

        with self._state_lock:
            if result.success:
                self._state.locations = list(result.snapshot.readings)
                self._state.last_update_time = result.snapshot.fetched_at
                self._state.error_message = None
            else:
                self._state.error_message = f"Failed to fetch UV data: {result.error.cause}"

        return result

    @property
    def is_fetching(self) -> bool:
        return self._fetch_guard.locked()

    @property
    def skipped_ticks(self) -> int:
        with self._state_lock:
            return self._skipped_ticks

    # =========================================================================
    # State access
    # =========================================================================

    def state(self) -> ListState:
        """Copy of the current list state."""
        with self._state_lock:
            return ListState(
                locations=list(self._state.locations),
                last_update_time=self._state.last_update_time,
                is_loading=self._state.is_loading,
                error_message=self._state.error_message
            )

    def relative_time_string(self, now: Optional[datetime] = None) -> str:
        """Human readable age of the displayed data, e.g. "5 seconds ago"."""
        now = now or datetime.now(timezone.utc)
        with self._state_lock:
            last = self._state.last_update_time
        return format_relative(now - last)


def format_relative(delta: timedelta) -> str:
    """Largest whole unit of an age, e.g. "2 minutes ago"."""
    seconds = int(delta.total_seconds())
    if seconds < 1:
        return "just now"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60), ("second", 1)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"
