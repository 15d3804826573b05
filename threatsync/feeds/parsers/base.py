"""Base class for feed parsers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from threatsync.feeds.sources import ThreatSource


@dataclass
class ExtractedIndicators:
    """Raw values extracted from one source payload."""

    ips: list[str] = field(default_factory=list)
    domains: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.ips) + len(self.domains)


class BaseFeedParser(ABC):
    """
    Abstract base class for threat feed parsers.

    A parser turns the text body of a source into IP and domain values,
    honouring the source's ``extract_ips`` / ``extract_domains`` flags.
    """

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Source format handled by this parser."""
        ...

    @abstractmethod
    def parse(self, text: str, source: ThreatSource) -> ExtractedIndicators:
        """
        Parse a feed body.

        Args:
            text: Decoded response body.
            source: Source the body was fetched from.

        Returns:
            Extracted, validated and deduplicated values.
        """
        ...
