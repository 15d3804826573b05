"""Threat source configuration and boundary validation."""

import json
import logging
import os
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from threatsync.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ThreatSync/1.0"


class ThreatSource(BaseModel):
    """An external feed contributing raw indicator values."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1, description="Unique source name")
    url: str = Field(..., description="HTTP(S) URL of the feed")
    format: Literal["plain", "csv", "json"] = Field(default="plain")
    weight: float = Field(default=1.0, ge=0, description="Score contribution")
    timeout: float = Field(default=30.0, gt=0, description="Fetch timeout in seconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    enabled: bool = Field(default=True)
    extract_ips: bool = Field(default=True)
    extract_domains: bool = Field(default=True)

    @field_validator("name", "user_agent")
    @classmethod
    def strip_text(cls, v: str) -> str:
        """Strip surrounding whitespace."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Only http and https feeds can be fetched."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must use http or https")
        return v

    @field_validator("format", mode="before")
    @classmethod
    def lowercase_format(cls, v: Any) -> Any:
        """Accept format names in any case."""
        return v.lower() if isinstance(v, str) else v


def validate_sources(payload: Any) -> list[ThreatSource]:
    """
    Validate a loosely-typed source configuration.

    Args:
        payload: Sequence of mappings, usually decoded from JSON or YAML.

    Returns:
        Validated sources in their original order.

    Raises:
        ConfigurationError: With one message per invalid entry.
    """
    if not isinstance(payload, list):
        raise ConfigurationError(
            "Invalid sources configuration", ["sources must be a list"]
        )

    sources: list[ThreatSource] = []
    errors: list[str] = []
    seen: set[str] = set()

    for position, entry in enumerate(payload):
        if isinstance(entry, ThreatSource):
            source = entry
        else:
            try:
                source = ThreatSource.model_validate(entry)
            except ValidationError as e:
                for err in e.errors():
                    location = ".".join(str(part) for part in err["loc"]) or "entry"
                    errors.append(f"sources[{position}].{location}: {err['msg']}")
                continue

        if source.name in seen:
            errors.append(f"sources[{position}].name: duplicate source {source.name!r}")
            continue
        seen.add(source.name)
        sources.append(source)

    if errors:
        raise ConfigurationError("Invalid sources configuration", errors)

    return sources


def default_sources() -> list[ThreatSource]:
    """Built-in public blocklists used when nothing is configured."""
    return [
        ThreatSource(
            name="Abuse.ch Feodo Tracker",
            url="https://feodotracker.abuse.ch/downloads/ipblocklist.txt",
            weight=8,
            extract_domains=False,
        ),
        ThreatSource(
            name="Emerging Threats Compromised IPs",
            url="https://rules.emergingthreats.net/fwrules/emerging-Block-IPs.txt",
            weight=9,
            extract_domains=False,
        ),
        ThreatSource(
            name="URLhaus Hostfile",
            url="https://urlhaus.abuse.ch/downloads/hostfile/",
            weight=7,
            extract_ips=False,
        ),
        ThreatSource(
            name="CINS Army",
            url="https://cinsscore.com/list/ci-badguys.txt",
            weight=6,
            extract_domains=False,
        ),
    ]


def load_sources(raw_json: str = "", config_path: str = "") -> list[ThreatSource]:
    """
    Load sources from a JSON string or a YAML file, falling back to defaults.

    A malformed configuration raises ``ConfigurationError`` rather than
    silently falling back, so a typo never disables every feed.
    """
    if raw_json.strip():
        try:
            payload = json.loads(raw_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                "Invalid sources configuration", [f"invalid JSON: {e}"]
            ) from e
        sources = validate_sources(payload)
        logger.info(f"Loaded {len(sources)} sources from environment")
        return sources

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                "Invalid sources configuration", [f"{config_path}: {e}"]
            ) from e

        payload = config.get("sources", []) if isinstance(config, dict) else config
        sources = validate_sources(payload)
        logger.info(f"Loaded {len(sources)} sources from {config_path}")
        return sources

    logger.info("Using default threat sources")
    return default_sources()
