"""
ThreatSync Feeds Module - collection and merging of threat indicators.

Fetches line-oriented blocklists, extracts public IPv4 addresses and
domains, and merges each pass into the stored indicator set.
"""

from threatsync.feeds.collector import ThreatCollector
from threatsync.feeds.merger import merge_indicators
from threatsync.feeds.models import (
    CollectionResult,
    CollectionStats,
    Indicator,
    IndicatorSet,
)
from threatsync.feeds.sources import ThreatSource, load_sources, validate_sources

__all__ = [
    "CollectionResult",
    "CollectionStats",
    "Indicator",
    "IndicatorSet",
    "ThreatCollector",
    "ThreatSource",
    "load_sources",
    "merge_indicators",
    "validate_sources",
]
