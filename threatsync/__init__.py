"""
ThreatSync - Threat intelligence feed synchronizer.

Collects IP and domain indicators from public blocklists, scores and
deduplicates them, keeps the aggregate in a key/value store and republishes
it to capacity-limited Cloudflare Gateway lists.
"""

__version__ = "1.0.0"
__author__ = "ThreatSync Team"
__email__ = "team@threatsync.dev"

from threatsync.config import settings

__all__ = ["settings"]
