"""Line-oriented plain text feed parser."""

from threatsync.feeds.parsers.base import BaseFeedParser, ExtractedIndicators
from threatsync.feeds.sources import ThreatSource
from threatsync.utils.validators import extract_domains, extract_ips


class PlainTextParser(BaseFeedParser):
    """
    Parser for plain text blocklists.

    Handles one value per line, hosts files and lines carrying URLs.
    Comment lines starting with ``#`` or ``//`` are ignored.
    """

    @property
    def format_name(self) -> str:
        return "plain"

    def parse(self, text: str, source: ThreatSource) -> ExtractedIndicators:
        result = ExtractedIndicators()
        if source.extract_ips:
            result.ips = extract_ips(text)
        if source.extract_domains:
            result.domains = extract_domains(text)
        return result
