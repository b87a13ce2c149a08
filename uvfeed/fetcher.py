"""
Feed fetcher and parser module for the UV Feed application.

Handles retrieval and decoding of the ARPANSA UV index feed:
- HTTP download with a retrying session and a configurable timeout
- Streaming, token-based XML parsing into Reading records
- Per-field degradation (a bad index never fails the whole feed)
- Stable location identifiers so store upserts converge
"""

import hashlib
import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
RETRY_BACKOFF = 0.5
USER_AGENT = "UVFeedFetcher/1.0"
CHUNK_SIZE = 64 * 1024

UV_FEED_URL = "https://uvdata.arpansa.gov.au/xml/uvvalues.xml"

# Feed element names
LOCATION_TAG = "location"
NAME_TAG = "locationName"
INDEX_TAG = "index"
TIME_TAG = "fullTime"


@dataclass(frozen=True)
class Reading:
    """One location's UV index observation from a single fetch."""
    id: str
    location_name: str
    index: float
    full_time: str  # Opaque feed timestamp, display only


@dataclass(frozen=True)
class Snapshot:
    """All readings produced by one ingestion cycle."""
    readings: Tuple[Reading, ...]
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self.readings)


class FetchError(Exception):
    """Raised when the feed cannot be downloaded."""
    pass


class MalformedFeedError(Exception):
    """Raised when the feed markup cannot be tokenized at all."""
    pass


# =============================================================================
# Identifiers and field parsing
# =============================================================================

def location_id(name: str, feed_id: Optional[str] = None) -> str:
    """
    Derive a stable document id for a location.

    A feed-supplied identifier wins; otherwise the id is a slug of the
    display name so repeated fetches overwrite the same document.
    """
    source = (feed_id or "").strip() or name.strip()
    slug = re.sub(r"[^a-z0-9]+", "-", source.lower()).strip("-")
    if slug:
        return slug
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def parse_index(text: str, default: Optional[float] = 0.0) -> Optional[float]:
    """Parse a UV index value, returning ``default`` when missing or invalid."""
    try:
        value = float(text)
    except (TypeError, ValueError):
        return default
    if math.isnan(value) or math.isinf(value) or value < 0:
        return default
    return value


# =============================================================================
# Streaming XML Parsing
# =============================================================================

class TokenKind(Enum):
    """Token types produced by the feed tokenizer."""
    START = "start"
    TEXT = "text"
    END = "end"


@dataclass(frozen=True)
class Token:
    """One start, text or end event from the feed tokenizer."""
    kind: TokenKind
    name: str = ""
    text: str = ""
    attrs: Dict[str, str] = field(default_factory=dict)


def tokenize(content: bytes, chunk_size: int = CHUNK_SIZE) -> Iterator[Token]:
    """
    Yield (start, text, end) tokens for the document in ``content``.

    The document is fed to the pull parser in chunks and finished elements
    are cleared as soon as their tokens are emitted.

    Raises:
        MalformedFeedError: if the markup cannot be tokenized.
    """
    parser = ET.XMLPullParser(events=("start", "end"))
    try:
        for offset in range(0, len(content), chunk_size):
            parser.feed(content[offset:offset + chunk_size])
            yield from _drain(parser)
        parser.close()
        yield from _drain(parser)
    except ET.ParseError as e:
        raise MalformedFeedError(f"XML parsing failed: {e}") from e


def _drain(parser: ET.XMLPullParser) -> Iterator[Token]:
    """Turn pending pull-parser events into tokens, clearing finished elements."""
    for event, elem in parser.read_events():
        if event == "start":
            yield Token(TokenKind.START, name=elem.tag, attrs=dict(elem.attrib))
        else:
            if elem.text:
                yield Token(TokenKind.TEXT, text=elem.text)
            yield Token(TokenKind.END, name=elem.tag)
            elem.clear()


class UVFeedParser:
    """
    State machine turning feed tokens into Reading records.

    Child elements of a ``location`` may appear in any order and unknown
    elements are ignored. A location without a name is dropped.
    """

    def parse(self, content: bytes) -> List[Reading]:
        """
        Parse raw feed bytes.

        Returns:
            Readings in feed order.

        Raises:
            MalformedFeedError: if the document cannot be tokenized.
        """
        readings: List[Reading] = []
        dropped = 0

        scratch = ""
        name = index = full_time = ""
        feed_id: Optional[str] = None

        for token in tokenize(content):
            if token.kind is TokenKind.START:
                scratch = ""
                if token.name == LOCATION_TAG:
                    name = index = full_time = ""
                    feed_id = token.attrs.get("id")
            elif token.kind is TokenKind.TEXT:
                scratch += token.text.strip()
            else:
                if token.name == NAME_TAG:
                    name = scratch
                elif token.name == INDEX_TAG:
                    index = scratch
                elif token.name == TIME_TAG:
                    full_time = scratch
                elif token.name == LOCATION_TAG:
                    if name:
                        readings.append(self._build_reading(name, index, full_time, feed_id))
                    else:
                        dropped += 1
                scratch = ""

        seen: Dict[str, str] = {}
        for reading in readings:
            other = seen.setdefault(reading.id, reading.location_name)
            if other != reading.location_name:
                logger.warning(
                    f"Locations {other!r} and {reading.location_name!r} share id "
                    f"{reading.id!r}, the later one overwrites the earlier in the store"
                )

        if dropped:
            logger.warning(f"Dropped {dropped} location entries without a name")
        logger.debug(f"Parsed {len(readings)} readings")
        return readings

    def _build_reading(
        self,
        name: str,
        index_text: str,
        full_time: str,
        feed_id: Optional[str]
    ) -> Reading:
        index = parse_index(index_text, default=None)
        if index is None:
            logger.warning(f"Invalid UV index {index_text!r} for {name}, using 0.0")
            index = 0.0
        return Reading(
            id=location_id(name, feed_id),
            location_name=name,
            index=index,
            full_time=full_time
        )


# =============================================================================
# HTTP Fetching
# =============================================================================

class UVFeedFetcher:
    """
    Downloader for the UV index feed.

    Transient HTTP failures are retried by the session adapter; anything
    still failing surfaces as FetchError.
    """

    def __init__(
        self,
        url: str = UV_FEED_URL,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with retry strategy."""
        session = requests.Session()

        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/xml, text/xml, */*"
        })

        return session

    def fetch(self) -> bytes:
        """
        Download the feed document.

        Raises:
            FetchError: on timeout, connection or HTTP failure.
        """
        try:
            response = self._session.get(self.url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
            return response.content

        except requests.Timeout as e:
            raise FetchError(f"Request timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise FetchError(f"Connection error - source unavailable: {e}") from e
        except requests.HTTPError as e:
            raise FetchError(f"HTTP error {e.response.status_code}") from e
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {e}") from e

    def close(self) -> None:
        """Close HTTP session."""
        self._session.close()
