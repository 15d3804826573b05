"""Data models for indicator collection, storage and publishing."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

MAX_SCORE = 100.0

IndicatorKind = Literal["ip", "domain"]


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string."""
    return value.astimezone(UTC).isoformat()


def clamp_score(score: float) -> float:
    """Keep a score inside the 0-100 range."""
    return max(0.0, min(MAX_SCORE, float(score)))


@dataclass
class Indicator:
    """A single IP address or domain with aggregated threat metadata."""

    value: str
    type: IndicatorKind
    score: float  # 0-100 scale
    sources: list[str]  # order-insensitive, deduplicated
    first_seen: datetime
    last_seen: datetime
    expires_at: datetime

    def __post_init__(self) -> None:
        self.score = clamp_score(self.score)
        self.sources = list(dict.fromkeys(self.sources))

    def is_expired(self, now: datetime) -> bool:
        """An indicator expires once ``expires_at`` is reached."""
        return self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "value": self.value,
            "type": self.type,
            "score": self.score,
            "sources": list(self.sources),
            "first_seen": format_timestamp(self.first_seen),
            "last_seen": format_timestamp(self.last_seen),
            "expires_at": format_timestamp(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Indicator":
        """Build an indicator from its serialized form."""
        return cls(
            value=data["value"],
            type=data["type"],
            score=data["score"],
            sources=list(data.get("sources", [])),
            first_seen=parse_timestamp(data["first_seen"]),
            last_seen=parse_timestamp(data["last_seen"]),
            expires_at=parse_timestamp(data["expires_at"]),
        )


# Canonical indicator value -> Indicator. Iteration order carries no meaning.
IndicatorSet = dict[str, Indicator]


@dataclass
class CollectionStats:
    """Statistics for one collection pass."""

    total_sources: int = 0
    successful_sources: list[str] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    unsupported_sources: list[str] = field(default_factory=list)
    total_raw_indicators: int = 0
    unique_ips: int = 0
    unique_domains: int = 0
    processing_time_ms: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class CollectionResult:
    """Indicators gathered from all sources plus per-source statistics."""

    indicators: IndicatorSet
    stats: CollectionStats


@dataclass
class ChunkIndex:
    """Describes how a serialized indicator set was split across store entries."""

    total_chunks: int
    total_size: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class FeedMetadata:
    """Identity and counters of the downstream feed."""

    feed_id: str
    name: str
    description: str
    created_at: str
    last_updated: str
    total_indicators: int = 0
    active_indicators: int = 0
    update_frequency: str = "24h"
    sources: list[str] = field(default_factory=list)
    partition_list_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedMetadata":
        """Build metadata from its serialized form, ignoring unknown keys."""
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class RunResult:
    """Outcome of one update cycle."""

    success: bool
    feed_id: str = ""
    indicators_added: int = 0
    indicators_updated: int = 0
    indicators_removed: int = 0
    processing_time_ms: float = 0.0
    errors: list[str] = field(default_factory=list)
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunResult":
        """Build a run result from its serialized form, ignoring unknown keys."""
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class ListItem:
    """A downstream list entry."""

    value: str
    annotation: str

    def to_payload(self) -> dict[str, str]:
        """Wire format of the Gateway list API."""
        return {"value": self.value, "description": self.annotation}


@dataclass
class ListPartition:
    """A contiguous slice of indicators assigned to one downstream list."""

    index: int  # 1-based
    total: int
    name: str
    indicators: list[Indicator]

    def __len__(self) -> int:
        return len(self.indicators)


@dataclass
class UploadResult:
    """Result of publishing an indicator set downstream."""

    success: bool
    mode: Literal["single", "multi"] = "single"
    list_ids: list[str] = field(default_factory=list)
    items_uploaded: int = 0
    items_failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
