"""
UV Feed Application

Keeps UV index readings for a set of locations up to date:
- ARPANSA XML feed fetching and streaming parsing
- Document store caching of the latest reading per location
- Foreground refresh loop for the location list
- Host-driven widget timeline
- REST API for data access
"""

from .database import Database, StoreError
from .fetcher import (
    UVFeedFetcher,
    UVFeedParser,
    Reading,
    Snapshot,
    FetchError,
    MalformedFeedError,
)
from .store import ReadingStore
from .ingestion import IngestionService, IngestResult, IngestError, IngestStage
from .scheduler import ForegroundRefresher, ListState
from .widget import WidgetTimelineProvider, WidgetFamily, Timeline, TimelineEntry
from .presentation import UVCategory, category_for

__version__ = "1.0.0"

__all__ = [
    "Database",
    "StoreError",
    "UVFeedFetcher",
    "UVFeedParser",
    "Reading",
    "Snapshot",
    "FetchError",
    "MalformedFeedError",
    "ReadingStore",
    "IngestionService",
    "IngestResult",
    "IngestError",
    "IngestStage",
    "ForegroundRefresher",
    "ListState",
    "WidgetTimelineProvider",
    "WidgetFamily",
    "Timeline",
    "TimelineEntry",
    "UVCategory",
    "category_for",
]
