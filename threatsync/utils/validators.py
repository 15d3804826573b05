"""Validation and extraction of IPv4 and domain indicators."""

import ipaddress
import re
from typing import Literal

IndicatorType = Literal["ip", "domain"]

IP_REGEX = re.compile(
    r"^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$"
)
IP_SEARCH_REGEX = re.compile(
    r"\b(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
)
DOMAIN_REGEX = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?\.)*"
    r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$"
)
EMBEDDED_URL_REGEX = re.compile(r"https?://([a-zA-Z0-9.-]+)")
TOKEN_SPLIT_REGEX = re.compile(r"[\s,;|]+")
IP_SHAPED_REGEX = re.compile(r"^\d+(?:\.\d+){3}$")

MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63
TRAILING_CHARS = ". \t\r\n"

# Ranges never published: private, loopback, link-local, multicast and reserved
EXCLUDED_IP_RANGES = [
    ipaddress.ip_network("0.0.0.0/8"),  # "This network", used by hosts files
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local
    ipaddress.ip_network("224.0.0.0/3"),  # Multicast 224/4 and reserved 240/4
]


def is_valid_ip(value: str) -> bool:
    """Check that a string is a dotted-quad IPv4 address."""
    return bool(value) and IP_REGEX.match(value) is not None


def is_private_ip(value: str) -> bool:
    """Check if an IPv4 address lies in a range that must not be published."""
    if not is_valid_ip(value):
        return False
    ip = ipaddress.IPv4Address(".".join(str(int(octet)) for octet in value.split(".")))
    return any(ip in network for network in EXCLUDED_IP_RANGES)


def is_valid_domain(value: str) -> bool:
    """
    Validate a domain name.

    Rules:
    - At most 253 characters (a single trailing dot is tolerated)
    - At least two labels
    - Each label 1-63 alphanumeric or hyphen characters
    - No label starts or ends with a hyphen
    - Not shaped like an IPv4 address, even an out-of-range one
    """
    if not value or len(value) > MAX_DOMAIN_LENGTH:
        return False

    domain = value[:-1] if value.endswith(".") else value
    if IP_SHAPED_REGEX.match(domain) or not DOMAIN_REGEX.match(domain):
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False

    for label in labels:
        if not 0 < len(label) <= MAX_LABEL_LENGTH:
            return False
        if label.startswith("-") or label.endswith("-"):
            return False

    return True


def _content_lines(text: str):
    """Yield stripped lines, skipping blanks and comments."""
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "//")):
            continue
        yield stripped


def extract_ips(text: str) -> list[str]:
    """Extract unique public IPv4 addresses from line-oriented text."""
    ips: dict[str, None] = {}

    for line in _content_lines(text):
        for match in IP_SEARCH_REGEX.findall(line):
            if is_valid_ip(match) and not is_private_ip(match):
                ips.setdefault(match, None)

    return list(ips)


def _strip_url_prefix(token: str) -> str:
    token = re.sub(r"^https?://", "", token, flags=re.IGNORECASE)
    token = re.sub(r"^www\.", "", token, flags=re.IGNORECASE)
    return token.split("/")[0].split(":")[0]


def _domain_candidate(token: str) -> str | None:
    candidate = _strip_url_prefix(token)
    if not is_valid_domain(candidate):
        return None
    return candidate.rstrip(".").lower()


def extract_domains(text: str) -> list[str]:
    """
    Extract unique domain names from line-oriented text.

    The first token of each line is taken as the candidate after removing
    ``http(s)://`` and ``www.`` prefixes, path and port. Hosts-file lines
    (``0.0.0.0 evil.example``) use the token following the address. URLs
    embedded anywhere in the line are scanned as well.
    """
    domains: dict[str, None] = {}

    for line in _content_lines(text):
        tokens = [t for t in TOKEN_SPLIT_REGEX.split(line) if t]
        if not tokens:
            continue

        first = tokens[0]
        if is_valid_ip(first) and len(tokens) > 1:
            first = tokens[1]

        candidate = _domain_candidate(first)
        if candidate:
            domains.setdefault(candidate, None)

        for host in EMBEDDED_URL_REGEX.findall(line):
            candidate = _domain_candidate(host)
            if candidate:
                domains.setdefault(candidate, None)

    return list(domains)


def normalize_indicator(value: str) -> tuple[str, IndicatorType | None]:
    """
    Normalize an indicator value and detect its type.

    Returns:
        Tuple of (normalized value, "ip" | "domain" | None)
    """
    normalized = value.strip().lower().rstrip(TRAILING_CHARS)

    if is_valid_ip(normalized):
        return normalized, "ip"
    if is_valid_domain(normalized):
        return normalized, "domain"
    return normalized, None
