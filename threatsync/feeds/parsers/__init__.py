"""Feed parsers for the supported source formats."""

from threatsync.errors import UnsupportedFormatError
from threatsync.feeds.parsers.base import BaseFeedParser, ExtractedIndicators
from threatsync.feeds.parsers.plain import PlainTextParser
from threatsync.feeds.sources import ThreatSource

# csv and json are accepted in configuration but have no parser yet
PARSERS: dict[str, BaseFeedParser] = {
    "plain": PlainTextParser(),
}


def get_parser(source: ThreatSource) -> BaseFeedParser:
    """Return the parser for a source's declared format."""
    parser = PARSERS.get(source.format)
    if parser is None:
        raise UnsupportedFormatError(source.name, source.format)
    return parser


__all__ = [
    "BaseFeedParser",
    "ExtractedIndicators",
    "PlainTextParser",
    "PARSERS",
    "get_parser",
]
