"""
Widget timeline provider for the UV Feed application.

Read-only path for the home-screen widget. The host asks for an entry and
is told when to ask again; nothing here fetches the feed or schedules work
on its own.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from .database import StoreError
from .presentation import UVCategory, category_for, format_index
from .store import ReadingStore

logger = logging.getLogger(__name__)

WIDGET_REFRESH_MINUTES = 5

LOADING_NAME = "Loading..."
NO_DATA_NAME = "No data"
ERROR_NAME = "Error loading"


class WidgetFamily(Enum):
    """Widget sizes and how many locations each one shows."""
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def max_locations(self) -> int:
        return {"small": 1, "medium": 3, "large": 6}[self.value]


@dataclass(frozen=True)
class WidgetLocation:
    location_name: str
    index: float
    full_time: str

    @property
    def category(self) -> UVCategory:
        return category_for(self.index)

    @property
    def display_index(self) -> str:
        return format_index(self.index)


@dataclass(frozen=True)
class TimelineEntry:
    date: datetime
    locations: List[WidgetLocation]

    def locations_for(self, family: WidgetFamily) -> List[WidgetLocation]:
        return self.locations[:family.max_locations]


@dataclass(frozen=True)
class Timeline:
    entries: List[TimelineEntry]
    refresh_after: datetime


def _marker(name: str) -> WidgetLocation:
    return WidgetLocation(location_name=name, index=0.0, full_time="")


class WidgetTimelineProvider:
    """Builds widget timeline entries from the reading store."""

    def __init__(
        self,
        store: ReadingStore,
        refresh_interval: timedelta = timedelta(minutes=WIDGET_REFRESH_MINUTES),
        limit: Optional[int] = None
    ):
        self.store = store
        self.refresh_interval = refresh_interval
        self.limit = limit

    def placeholder(self, now: Optional[datetime] = None) -> TimelineEntry:
        return TimelineEntry(date=now or _utcnow(), locations=[_marker(LOADING_NAME)])

    def get_snapshot(self, now: Optional[datetime] = None) -> TimelineEntry:
        return TimelineEntry(date=now or _utcnow(), locations=self._load_locations())

    def get_timeline(self, now: Optional[datetime] = None) -> Timeline:
        """One entry for now, and the instant the host should ask again."""
        now = now or _utcnow()
        entry = self.get_snapshot(now)
        return Timeline(entries=[entry], refresh_after=now + self.refresh_interval)

    def _load_locations(self) -> List[WidgetLocation]:
        try:
            readings = self.store.read_latest(self.limit)
        except StoreError as e:
            logger.error(f"Widget failed to read readings: {e}")
            return [_marker(ERROR_NAME)]

        if not readings:
            return [_marker(NO_DATA_NAME)]

        return [
            WidgetLocation(
                location_name=reading.location_name,
                index=reading.index,
                full_time=reading.full_time
            )
            for reading in readings
        ]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
