"""
Ingestion module for the UV Feed application.

Runs one fetch -> parse -> store cycle and reports the outcome.
Retrying is left to whoever schedules the next cycle.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .database import StoreError
from .fetcher import (
    FetchError,
    MalformedFeedError,
    Snapshot,
    UVFeedFetcher,
    UVFeedParser,
)
from .store import ReadingStore

logger = logging.getLogger(__name__)


class IngestStage(Enum):
    """Pipeline stage at which an ingestion cycle failed."""
    FETCH = "fetch"
    PARSE = "parse"
    STORE = "store"


class IngestError(Exception):
    """A failed ingestion cycle, tagged with the failing stage."""

    def __init__(self, stage: IngestStage, cause: Exception):
        super().__init__(f"{stage.value} failed: {cause}")
        self.stage = stage
        self.cause = cause


@dataclass(frozen=True)
class IngestResult:
    """Outcome of one ingestion cycle."""
    started_at: datetime
    duration_ms: int
    snapshot: Optional[Snapshot] = None
    error: Optional[IngestError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def entries_count(self) -> int:
        return len(self.snapshot) if self.snapshot is not None else 0


class IngestionService:
    """
    Orchestrates the ingestion pipeline against injected collaborators.

    The first failing stage short-circuits the cycle; readings from a
    failed cycle are never written.
    """

    def __init__(
        self,
        fetcher: UVFeedFetcher,
        store: ReadingStore,
        parser: Optional[UVFeedParser] = None
    ):
        self.fetcher = fetcher
        self.store = store
        self.parser = parser or UVFeedParser()

        self._stats_lock = threading.Lock()
        self._last_result: Optional[IngestResult] = None
        self._success_count = 0
        self._failure_count = 0

    def run_once(self) -> IngestResult:
        """Run one ingestion cycle and return its result."""
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        try:
            snapshot = self._ingest()
        except IngestError as e:
            logger.error(f"Ingestion failed at {e.stage.value} stage: {e.cause}")
            result = IngestResult(
                started_at=started_at,
                duration_ms=_elapsed_ms(start),
                error=e
            )
        else:
            logger.info(f"Ingestion complete: {len(snapshot)} readings")
            result = IngestResult(
                started_at=started_at,
                duration_ms=_elapsed_ms(start),
                snapshot=snapshot
            )

        self._record(result)
        return result

    def _ingest(self) -> Snapshot:
        try:
            content = self.fetcher.fetch()
        except FetchError as e:
            raise IngestError(IngestStage.FETCH, e) from e

        fetched_at = datetime.now(timezone.utc)

        try:
            readings = self.parser.parse(content)
        except MalformedFeedError as e:
            raise IngestError(IngestStage.PARSE, e) from e

        snapshot = Snapshot(readings=tuple(readings), fetched_at=fetched_at)

        try:
            self.store.upsert_all(snapshot)
        except StoreError as e:
            raise IngestError(IngestStage.STORE, e) from e

        return snapshot

    def _record(self, result: IngestResult) -> None:
        with self._stats_lock:
            self._last_result = result
            if result.success:
                self._success_count += 1
            else:
                self._failure_count += 1

    @property
    def last_result(self) -> Optional[IngestResult]:
        with self._stats_lock:
            return self._last_result

    def get_stats(self) -> dict:
        """Cycle counters for health reporting."""
        with self._stats_lock:
            total = self._success_count + self._failure_count
            return {
                "runs": total,
                "successes": self._success_count,
                "failures": self._failure_count,
                "reliability_percent": round(self._success_count / total * 100, 1) if total else 0.0,
            }


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
