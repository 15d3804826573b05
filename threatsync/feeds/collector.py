"""Concurrent collection of indicators from all configured threat sources."""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

import httpx

from threatsync.errors import SourceFetchError, UnsupportedFormatError
from threatsync.feeds.models import (
    CollectionResult,
    CollectionStats,
    Indicator,
    IndicatorKind,
    IndicatorSet,
    clamp_score,
)
from threatsync.feeds.parsers import ExtractedIndicators, get_parser
from threatsync.feeds.sources import ThreatSource
from threatsync.metrics import SOURCE_FAILURES

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


class ThreatCollector:
    """
    Fetches and parses every enabled threat source.

    All sources are requested concurrently, each bounded by its own timeout.
    A failing source is recorded in the collection stats and contributes no
    indicators; it never fails the whole pass.
    """

    def __init__(
        self,
        sources: Iterable[ThreatSource],
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
        ttl_hours: float = 24,
    ):
        """
        Initialize the collector.

        Args:
            sources: Source configuration owned by this collector.
            http_client: Optional shared client; a short-lived one is created
                per pass otherwise.
            clock: Returns the current UTC time.
            ttl_hours: Validity window applied on every sighting.
        """
        self._sources: list[ThreatSource] = list(sources)
        self._http_client = http_client
        self._clock = clock or utcnow
        self.ttl = timedelta(hours=ttl_hours)

    @property
    def sources(self) -> list[ThreatSource]:
        """All configured sources, enabled or not."""
        return list(self._sources)

    @property
    def active_sources(self) -> list[ThreatSource]:
        """Sources that take part in collection."""
        return [source for source in self._sources if source.enabled]

    def replace_sources(self, sources: Iterable[ThreatSource]) -> list[ThreatSource]:
        """
        Replace the source configuration wholesale.

        Returns:
            The previous configuration.
        """
        previous = self._sources
        self._sources = list(sources)
        logger.info(
            f"Replaced source configuration: {len(previous)} -> {len(self._sources)} sources"
        )
        return previous

    async def collect(self) -> CollectionResult:
        """Collect indicators from all enabled sources."""
        start_time = time.perf_counter()
        sources = self.active_sources
        stats = CollectionStats(total_sources=len(sources))

        logger.info(f"Starting collection from {len(sources)} sources")

        if self._http_client is not None:
            outcomes = await self._fetch_all(self._http_client, sources)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                outcomes = await self._fetch_all(client, sources)

        indicators: IndicatorSet = {}
        now = self._clock()
        expires_at = now + self.ttl

        # Results are applied in source-list order
        for source, outcome in zip(sources, outcomes, strict=True):
            if isinstance(outcome, UnsupportedFormatError):
                logger.warning(f"{outcome}; source contributes no indicators")
                stats.unsupported_sources.append(source.name)
                continue

            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Failed to fetch {source.name}: {outcome}")
                SOURCE_FAILURES.labels(source=source.name).inc()
                stats.failed_sources.append(source.name)
                stats.errors.append(str(outcome))
                continue

            stats.successful_sources.append(source.name)
            stats.total_raw_indicators += len(outcome)

            for ip in outcome.ips:
                self._add_indicator(indicators, ip, "ip", source, now, expires_at)
            for domain in outcome.domains:
                self._add_indicator(indicators, domain, "domain", source, now, expires_at)

        for indicator in indicators.values():
            if indicator.type == "ip":
                stats.unique_ips += 1
            else:
                stats.unique_domains += 1

        stats.processing_time_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"Collection complete: {len(stats.successful_sources)}/{stats.total_sources} "
            f"sources successful, {stats.unique_ips} unique IPs and "
            f"{stats.unique_domains} unique domains"
        )

        return CollectionResult(indicators=indicators, stats=stats)

    async def _fetch_all(
        self, client: httpx.AsyncClient, sources: list[ThreatSource]
    ) -> list[ExtractedIndicators | BaseException]:
        tasks = [
            asyncio.create_task(
                self.fetch_and_parse(client, source), name=f"fetch_{source.name}"
            )
            for source in sources
        ]
        return await asyncio.gather(*tasks, return_exceptions=True)

    async def fetch_and_parse(
        self, client: httpx.AsyncClient, source: ThreatSource
    ) -> ExtractedIndicators:
        """
        Fetch one source and extract its indicators.

        Raises:
            UnsupportedFormatError: If the declared format has no parser.
            SourceFetchError: On network errors, timeouts or non-2xx responses.
        """
        parser = get_parser(source)

        logger.info(f"Fetching {source.name} from {source.url}")

        try:
            response = await asyncio.wait_for(
                client.get(
                    source.url,
                    headers={
                        "User-Agent": source.user_agent,
                        "Accept": "text/plain, text/html, */*",
                    },
                    timeout=source.timeout,
                ),
                timeout=source.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceFetchError(
                source.name, f"HTTP {e.response.status_code}"
            ) from e
        except TimeoutError as e:
            raise SourceFetchError(
                source.name, f"timed out after {source.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(source.name, f"{type(e).__name__}: {e}") from e

        text = response.text
        logger.debug(f"{source.name}: fetched {len(text)} bytes")

        result = parser.parse(text, source)
        logger.info(
            f"{source.name}: extracted {len(result.ips)} IPs and "
            f"{len(result.domains)} domains"
        )
        return result

    @staticmethod
    def _add_indicator(
        indicators: IndicatorSet,
        value: str,
        kind: IndicatorKind,
        source: ThreatSource,
        now: datetime,
        expires_at: datetime,
    ) -> None:
        """Add a sighting, accumulating sources and weights per value."""
        existing = indicators.get(value)

        if existing is None:
            indicators[value] = Indicator(
                value=value,
                type=kind,
                score=source.weight,
                sources=[source.name],
                first_seen=now,
                last_seen=now,
                expires_at=expires_at,
            )
            return

        if source.name not in existing.sources:
            existing.sources.append(source.name)
            existing.score = clamp_score(existing.score + source.weight)
        existing.last_seen = now
        existing.expires_at = expires_at
