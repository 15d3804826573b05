"""Utility functions and helpers."""

from threatsync.utils.validators import (
    extract_domains,
    extract_ips,
    is_private_ip,
    is_valid_domain,
    is_valid_ip,
    normalize_indicator,
)

__all__ = [
    "extract_domains",
    "extract_ips",
    "is_private_ip",
    "is_valid_domain",
    "is_valid_ip",
    "normalize_indicator",
]
