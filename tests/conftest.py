from __future__ import annotations

from typing import Iterator, List, Optional

import pytest

from uvfeed.database import Database
from uvfeed.fetcher import FetchError
from uvfeed.store import ReadingStore


SAMPLE_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<locations>
  <location>
    <locationName>Sydney</locationName>
    <index>7.5</index>
    <fullTime>2024-01-01T12:00:00</fullTime>
  </location>
  <location>
    <fullTime>2024-01-01T12:00:00</fullTime>
    <index>3.2</index>
    <status>ok</status>
    <locationName>Melbourne</locationName>
  </location>
  <location>
    <locationName>Alice Springs</locationName>
    <index>11.4</index>
    <fullTime>2024-01-01T12:00:00</fullTime>
  </location>
</locations>
"""


class StubFetcher:
    """Returns queued payloads or raises queued errors, one per call."""

    def __init__(self, payloads: Optional[List[object]] = None, url: str = "http://feed.test/uv.xml") -> None:
        self.url = url
        self.payloads = list(payloads or [SAMPLE_FEED])
        self.calls = 0
        self.closed = False

    def fetch(self) -> bytes:
        self.calls += 1
        payload = self.payloads[0] if len(self.payloads) == 1 else self.payloads.pop(0)
        if isinstance(payload, Exception):
            raise payload
        return payload

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sample_feed() -> bytes:
    return SAMPLE_FEED


@pytest.fixture
def database(tmp_path) -> Iterator[Database]:
    db = Database(db_path=str(tmp_path / "uv.db"))
    yield db
    db.close()


@pytest.fixture
def store(database) -> ReadingStore:
    return ReadingStore(database)


@pytest.fixture
def stub_fetcher() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def failing_fetcher() -> StubFetcher:
    return StubFetcher([FetchError("Connection error - source unavailable")])
