"""Validation of backup payloads before they replace stored state."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from threatsync.errors import ConfigurationError
from threatsync.feeds.models import FeedMetadata, Indicator, IndicatorSet
from threatsync.utils.validators import normalize_indicator


class IndicatorRecord(BaseModel):
    """Serialized indicator as found in a backup."""

    model_config = ConfigDict(extra="ignore")

    value: str = Field(..., min_length=1)
    type: Literal["ip", "domain"]
    score: float = Field(..., ge=0, le=100)
    sources: list[str] = Field(default_factory=list)
    first_seen: datetime
    last_seen: datetime
    expires_at: datetime

    @field_validator("value")
    @classmethod
    def normalize_value(cls, v: str) -> str:
        normalized, kind = normalize_indicator(v)
        if kind is None:
            raise ValueError(f"{v!r} is neither an IPv4 address nor a domain")
        return normalized

    def to_indicator(self) -> Indicator:
        return Indicator.from_dict(self.model_dump())


class BackupPayload(BaseModel):
    """Feed metadata, indicator set and source configuration snapshot."""

    model_config = ConfigDict(extra="ignore")

    metadata: dict[str, Any] | None = None
    indicators: list[IndicatorRecord] = Field(default_factory=list)
    sources: list[dict[str, Any]] | None = None
    timestamp: str | None = None

    @field_validator("indicators", mode="before")
    @classmethod
    def unwrap_snapshot(cls, v: Any) -> Any:
        """Accept the store snapshot form ``{"indicators": [...]}`` as well."""
        if isinstance(v, dict) and "indicators" in v:
            return v["indicators"]
        return v

    def indicator_set(self) -> IndicatorSet:
        indicators: IndicatorSet = {}
        for record in self.indicators:
            indicators[record.value] = record.to_indicator()
        return indicators

    def feed_metadata(self) -> FeedMetadata | None:
        if self.metadata is None:
            return None
        try:
            return FeedMetadata.from_dict(self.metadata)
        except TypeError as e:
            raise ConfigurationError("Invalid backup", [f"metadata: {e}"]) from e


def parse_backup(payload: Any) -> BackupPayload:
    """
    Validate a backup payload.

    Raises:
        ConfigurationError: With one message per invalid field.
    """
    if not isinstance(payload, dict):
        raise ConfigurationError("Invalid backup", ["backup must be an object"])
    try:
        return BackupPayload.model_validate(payload)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc']) or 'backup'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigurationError("Invalid backup", errors) from e
