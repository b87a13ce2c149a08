from __future__ import annotations

import logging

import pytest
import requests

from uvfeed.fetcher import (
    FetchError,
    MalformedFeedError,
    Token,
    TokenKind,
    UVFeedFetcher,
    UVFeedParser,
    _drain,
    location_id,
    parse_index,
    tokenize,
)


def _location(name: str, index: str = "1.0", full_time: str = "2024-01-01T12:00:00") -> str:
    return (
        f"<location><locationName>{name}</locationName>"
        f"<index>{index}</index><fullTime>{full_time}</fullTime></location>"
    )


def _feed(*locations: str) -> bytes:
    return ("<locations>" + "".join(locations) + "</locations>").encode("utf-8")


def test_parse_single_location_scenario() -> None:
    content = (
        b"<locations><location><locationName>Sydney</locationName><index>7.5</index>"
        b"<fullTime>2024-01-01T12:00:00</fullTime></location></locations>"
    )

    readings = UVFeedParser().parse(content)

    assert len(readings) == 1
    reading = readings[0]
    assert reading.location_name == "Sydney"
    assert reading.index == 7.5
    assert reading.full_time == "2024-01-01T12:00:00"
    assert reading.id == "sydney"


def test_parse_preserves_feed_order(sample_feed) -> None:
    readings = UVFeedParser().parse(sample_feed)

    assert [r.location_name for r in readings] == ["Sydney", "Melbourne", "Alice Springs"]
    assert [r.index for r in readings] == [7.5, 3.2, 11.4]


def test_parse_tolerates_child_order_and_unknown_elements(sample_feed) -> None:
    melbourne = UVFeedParser().parse(sample_feed)[1]

    assert melbourne.location_name == "Melbourne"
    assert melbourne.index == 3.2
    assert melbourne.full_time == "2024-01-01T12:00:00"


def test_parse_drops_locations_without_name() -> None:
    content = _feed(
        _location("Perth"),
        _location("   "),
        "<location><index>4.0</index></location>",
        _location("Hobart"),
    )

    readings = UVFeedParser().parse(content)

    assert [r.location_name for r in readings] == ["Perth", "Hobart"]


@pytest.mark.parametrize("raw", ["not-a-number", "", "nan", "-2", "inf"])
def test_parse_invalid_index_defaults_to_zero(raw) -> None:
    content = _feed(_location("Darwin", index=raw, full_time="12:00"), _location("Cairns", index="9.1"))

    readings = UVFeedParser().parse(content)

    assert len(readings) == 2
    assert readings[0].location_name == "Darwin"
    assert readings[0].index == 0.0
    assert readings[0].full_time == "12:00"
    assert readings[1].index == 9.1


def test_parse_missing_index_defaults_to_zero() -> None:
    content = b"<locations><location><locationName>Canberra</locationName></location></locations>"

    readings = UVFeedParser().parse(content)

    assert readings[0].index == 0.0
    assert readings[0].full_time == ""


def test_parse_trims_whitespace() -> None:
    content = _feed(_location("\n   Brisbane  \n", index=" 6.0 ", full_time="  2:00 PM "))

    reading = UVFeedParser().parse(content)[0]

    assert reading.location_name == "Brisbane"
    assert reading.index == 6.0
    assert reading.full_time == "2:00 PM"


def test_parse_ids_are_stable_across_parses(sample_feed) -> None:
    parser = UVFeedParser()

    first = [r.id for r in parser.parse(sample_feed)]
    second = [r.id for r in parser.parse(sample_feed)]

    assert first == second
    assert first == ["sydney", "melbourne", "alice-springs"]


def test_parse_prefers_feed_supplied_id() -> None:
    content = (
        b'<locations><location id="adl"><locationName>Adelaide</locationName>'
        b"<index>2.0</index><fullTime>t</fullTime></location></locations>"
    )

    reading = UVFeedParser().parse(content)[0]

    assert reading.id == "adl"
    assert reading.location_name == "Adelaide"


def test_parse_empty_feed_yields_no_readings() -> None:
    assert UVFeedParser().parse(b"<locations/>") == []


@pytest.mark.parametrize(
    "content",
    [b"", b"<locations><location>", b"not xml at all", b"<a></b>"],
)
def test_parse_untokenizable_document_raises(content) -> None:
    with pytest.raises(MalformedFeedError):
        UVFeedParser().parse(content)


def test_parse_handles_documents_larger_than_one_chunk() -> None:
    locations = [_location(f"Site {i}", index=str(i % 12)) for i in range(3000)]
    content = _feed(*locations)
    assert len(content) > 64 * 1024

    readings = UVFeedParser().parse(content)

    assert len(readings) == 3000
    assert readings[-1].location_name == "Site 2999"


def test_parse_logs_invalid_index(caplog) -> None:
    content = _feed(_location("Darwin", index="n/a"))

    with caplog.at_level(logging.WARNING, logger="uvfeed.fetcher"):
        UVFeedParser().parse(content)

    assert any("Invalid UV index" in record.getMessage() for record in caplog.records)


def test_parse_warns_when_names_collapse_to_same_id(caplog) -> None:
    content = _feed(_location("St. Kilda"), _location("St Kilda"), _location("Hobart"))

    with caplog.at_level(logging.WARNING, logger="uvfeed.fetcher"):
        readings = UVFeedParser().parse(content)

    assert [r.id for r in readings] == ["st-kilda", "st-kilda", "hobart"]
    messages = [record.getMessage() for record in caplog.records]
    assert any("share id 'st-kilda'" in message for message in messages)


def test_parse_does_not_warn_for_distinct_ids(caplog, sample_feed) -> None:
    with caplog.at_level(logging.WARNING, logger="uvfeed.fetcher"):
        UVFeedParser().parse(sample_feed)

    assert not any("share id" in record.getMessage() for record in caplog.records)


def test_tokenize_emits_start_text_end_tokens() -> None:
    tokens = list(tokenize(b"<a><b>hi</b></a>"))

    assert [(t.kind, t.name, t.text) for t in tokens] == [
        (TokenKind.START, "a", ""),
        (TokenKind.START, "b", ""),
        (TokenKind.TEXT, "", "hi"),
        (TokenKind.END, "b", ""),
        (TokenKind.END, "a", ""),
    ]
    assert Token.__doc__ and _drain.__doc__


def test_location_id_slug_and_fallback() -> None:
    assert location_id("Alice Springs") == "alice-springs"
    assert location_id("Sydney", feed_id="SYD") == "syd"
    assert location_id("Sydney", feed_id="  ") == "sydney"
    fallback = location_id("東京")
    assert len(fallback) == 16
    assert fallback == location_id("東京")


def test_parse_index_values() -> None:
    assert parse_index("7.25") == 7.25
    assert parse_index("bad") == 0.0
    assert parse_index("bad", default=None) is None


# =============================================================================
# HTTP fetching
# =============================================================================


class StubResponse:
    def __init__(self, status_code: int = 200, content: bytes = b"<locations/>") -> None:
        self.status_code = status_code
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class StubSession:
    def __init__(self, response: StubResponse | None = None, error: Exception | None = None) -> None:
        self.response = response or StubResponse()
        self.error = error
        self.requests: list[tuple[str, float]] = []
        self.closed = False

    def get(self, url: str, timeout: float, allow_redirects: bool = True) -> StubResponse:
        self.requests.append((url, timeout))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


def test_fetch_returns_body_and_passes_timeout() -> None:
    session = StubSession(StubResponse(content=b"<locations/>"))
    fetcher = UVFeedFetcher(url="http://feed.test/uv.xml", timeout=2.5, session=session)

    assert fetcher.fetch() == b"<locations/>"
    assert session.requests == [("http://feed.test/uv.xml", 2.5)]


def test_fetch_http_error_raises_fetch_error() -> None:
    fetcher = UVFeedFetcher(session=StubSession(StubResponse(status_code=503)))

    with pytest.raises(FetchError, match="HTTP error 503"):
        fetcher.fetch()


@pytest.mark.parametrize(
    "error, message",
    [
        (requests.Timeout("slow"), "timed out"),
        (requests.ConnectionError("refused"), "Connection error"),
        (requests.RequestException("boom"), "Request failed"),
    ],
)
def test_fetch_transport_errors_raise_fetch_error(error, message) -> None:
    fetcher = UVFeedFetcher(session=StubSession(error=error))

    with pytest.raises(FetchError, match=message):
        fetcher.fetch()


def test_default_session_has_retrying_adapter() -> None:
    fetcher = UVFeedFetcher()
    try:
        adapter = fetcher._session.get_adapter("https://uvdata.arpansa.gov.au/xml/uvvalues.xml")
        assert adapter.max_retries.total == 3
        assert 503 in adapter.max_retries.status_forcelist
    finally:
        fetcher.close()


def test_close_closes_session() -> None:
    session = StubSession()
    UVFeedFetcher(session=session).close()
    assert session.closed
