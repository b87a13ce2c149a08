"""
Reading store for the UV Feed application.

Maps Readings onto documents in the injected document store:
- ``readings/<location id>``: latest observation per location
- ``metadata/lastUpdate``: instant of the last successful ingestion
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import Database, StoreError
from .fetcher import Reading, Snapshot

logger = logging.getLogger(__name__)

READINGS_COLLECTION = "readings"
METADATA_COLLECTION = "metadata"
LAST_UPDATE_DOCUMENT = "lastUpdate"


class ReadingStore:
    """
    Publishes snapshots to the document store and reads them back.

    Writes are sequential and not transactional: if one reading fails,
    earlier ones stay written and the last update marker is not touched.
    """

    def __init__(self, database: Database):
        self.database = database

    def upsert_all(self, snapshot: Snapshot) -> None:
        """
        Write every reading keyed by id, then stamp the last update marker.

        Raises:
            StoreError: on the first failed write.
        """
        stamp = _format_timestamp(snapshot.fetched_at)

        for reading in snapshot.readings:
            self.database.set_document(READINGS_COLLECTION, reading.id, {
                "locationName": reading.location_name,
                "index": reading.index,
                "fullTime": reading.full_time,
                "lastUpdate": stamp,
            })

        self.database.set_document(METADATA_COLLECTION, LAST_UPDATE_DOCUMENT, {
            "timestamp": stamp,
        })
        logger.info(f"Stored {len(snapshot.readings)} readings, last update {stamp}")

    def read_latest(self, limit: Optional[int] = None) -> List[Reading]:
        """
        Return up to ``limit`` readings in store order.

        An empty store yields an empty list. Documents missing a field or
        holding a field of the wrong type are skipped.

        Raises:
            StoreError: if the store cannot be read.
        """
        readings = []
        for document in self.database.list_documents(READINGS_COLLECTION, limit=limit):
            reading = _reading_from_document(document)
            if reading is None:
                logger.warning(f"Skipping incomplete reading document {document.get('id')}")
                continue
            readings.append(reading)
        return readings

    def last_update(self) -> Optional[datetime]:
        """Timestamp of the last successful ingestion, if any."""
        document = self.database.get_document(METADATA_COLLECTION, LAST_UPDATE_DOCUMENT)
        if not document or not isinstance(document.get("timestamp"), str):
            return None
        try:
            return datetime.fromisoformat(document["timestamp"])
        except ValueError as e:
            raise StoreError(f"Invalid last update timestamp: {document['timestamp']!r}") from e


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _reading_from_document(document: Dict[str, Any]) -> Optional[Reading]:
    name = document.get("locationName")
    index = document.get("index")
    full_time = document.get("fullTime")

    if not isinstance(name, str) or not isinstance(full_time, str):
        return None
    if isinstance(index, bool) or not isinstance(index, (int, float)):
        return None

    return Reading(
        id=document["id"],
        location_name=name,
        index=float(index),
        full_time=full_time
    )
