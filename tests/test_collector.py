"""Tests for the threat collector."""

import asyncio

import httpx
import pytest

from threatsync.errors import SourceFetchError, UnsupportedFormatError
from threatsync.feeds.collector import ThreatCollector
from threatsync.feeds.sources import ThreatSource
from tests.conftest import FIXED_NOW, Clock

FEEDS = {
    "https://feeds.test/a.txt": "# feed A\n8.8.8.8\n1.1.1.1\nevil.example.com\n",
    "https://feeds.test/b.txt": "8.8.8.8\n9.9.9.9\n10.0.0.1\n",
    "https://feeds.test/hosts": "0.0.0.0 malware.example.net\n0.0.0.0 evil.example.com\n",
}


def feed_handler(request: httpx.Request) -> httpx.Response:
    url = str(request.url)
    if url in FEEDS:
        return httpx.Response(200, text=FEEDS[url])
    if url.endswith("/broken"):
        return httpx.Response(503, text="unavailable")
    return httpx.Response(404)


def source(name: str, url: str, **kwargs) -> ThreatSource:
    return ThreatSource(name=name, url=url, **kwargs)


@pytest.fixture
def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(feed_handler))


class TestThreatCollector:
    """Tests for concurrent collection with failure isolation."""

    @pytest.mark.asyncio
    async def test_weights_accumulate_across_sources(self, http_client):
        collector = ThreatCollector(
            [
                source("A", "https://feeds.test/a.txt", weight=8),
                source("B", "https://feeds.test/b.txt", weight=7),
            ],
            http_client=http_client,
            clock=Clock(),
        )

        result = await collector.collect()

        shared = result.indicators["8.8.8.8"]
        assert shared.score == 15
        assert sorted(shared.sources) == ["A", "B"]
        assert result.indicators["1.1.1.1"].score == 8
        assert result.indicators["9.9.9.9"].sources == ["B"]
        assert "10.0.0.1" not in result.indicators
        assert result.stats.unique_ips == 3
        assert result.stats.unique_domains == 1
        assert result.stats.successful_sources == ["A", "B"]

    @pytest.mark.asyncio
    async def test_score_is_capped(self, http_client):
        collector = ThreatCollector(
            [
                source("A", "https://feeds.test/a.txt", weight=80),
                source("B", "https://feeds.test/b.txt", weight=70),
            ],
            http_client=http_client,
        )

        result = await collector.collect()

        assert result.indicators["8.8.8.8"].score == 100

    @pytest.mark.asyncio
    async def test_failed_source_is_isolated(self, http_client):
        collector = ThreatCollector(
            [
                source("A", "https://feeds.test/a.txt", weight=5),
                source("Broken", "https://feeds.test/broken", weight=5),
            ],
            http_client=http_client,
        )

        result = await collector.collect()

        assert result.stats.successful_sources == ["A"]
        assert result.stats.failed_sources == ["Broken"]
        assert "HTTP 503" in result.stats.errors[0]
        assert "8.8.8.8" in result.indicators
        assert all(i.sources == ["A"] for i in result.indicators.values())

    @pytest.mark.asyncio
    async def test_unsupported_format_is_not_a_failure(self, http_client):
        collector = ThreatCollector(
            [
                source("A", "https://feeds.test/a.txt"),
                source("CSV", "https://feeds.test/b.txt", format="csv"),
            ],
            http_client=http_client,
        )

        result = await collector.collect()

        assert result.stats.unsupported_sources == ["CSV"]
        assert result.stats.failed_sources == []
        assert "9.9.9.9" not in result.indicators

    @pytest.mark.asyncio
    async def test_disabled_sources_are_skipped(self, http_client):
        collector = ThreatCollector(
            [
                source("A", "https://feeds.test/a.txt"),
                source("B", "https://feeds.test/b.txt", enabled=False),
            ],
            http_client=http_client,
        )

        result = await collector.collect()

        assert result.stats.total_sources == 1
        assert "9.9.9.9" not in result.indicators

    @pytest.mark.asyncio
    async def test_extraction_flags(self, http_client):
        collector = ThreatCollector(
            [source("Hosts", "https://feeds.test/hosts", extract_ips=False)],
            http_client=http_client,
        )

        result = await collector.collect()

        assert set(result.indicators) == {"malware.example.net", "evil.example.com"}

    @pytest.mark.asyncio
    async def test_validity_window(self, http_client):
        clock = Clock()
        collector = ThreatCollector(
            [source("A", "https://feeds.test/a.txt")],
            http_client=http_client,
            clock=clock,
            ttl_hours=24,
        )

        result = await collector.collect()

        indicator = result.indicators["8.8.8.8"]
        assert indicator.first_seen == FIXED_NOW
        assert indicator.last_seen == FIXED_NOW
        assert (indicator.expires_at - FIXED_NOW).total_seconds() == 24 * 3600

    @pytest.mark.asyncio
    async def test_timeout_raises_fetch_error(self):
        async def slow_handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200, text="8.8.8.8")

        client = httpx.AsyncClient(transport=httpx.MockTransport(slow_handler))
        collector = ThreatCollector([], http_client=client)

        with pytest.raises(SourceFetchError, match="timed out"):
            await collector.fetch_and_parse(
                client, source("Slow", "https://feeds.test/slow", timeout=0.05)
            )

    @pytest.mark.asyncio
    async def test_unsupported_format_rejected_before_fetch(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        collector = ThreatCollector([], http_client=client)

        with pytest.raises(UnsupportedFormatError, match="json format not implemented"):
            await collector.fetch_and_parse(
                client, source("JSON", "https://feeds.test/j", format="json")
            )
        assert requests == []


class TestReplaceSources:
    """Tests for wholesale source replacement."""

    def test_returns_previous_configuration(self):
        old = [source("A", "https://feeds.test/a.txt")]
        new = [source("B", "https://feeds.test/b.txt")]
        collector = ThreatCollector(old)

        previous = collector.replace_sources(new)

        assert [s.name for s in previous] == ["A"]
        assert [s.name for s in collector.sources] == ["B"]
