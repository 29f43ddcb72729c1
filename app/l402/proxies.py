# app/l402/proxies.py
"""
Trusted reverse proxy handling for client IP resolution.

X-Forwarded-For and X-Real-IP are only honoured when the connecting peer is
listed in L402_TRUSTED_PROXIES. Otherwise any client could pick a fresh
address per request and sidestep the per-IP challenge rate limit.

Configuration (via environment):
- L402_TRUSTED_PROXIES: Comma-separated IPs and CIDR ranges of reverse proxies
"""
import ipaddress
import logging
from typing import Set

from app.core.config import settings

logger = logging.getLogger(__name__)


def parse_ip_list(ip_string: str) -> Set[str]:
    """
    Parse a comma-separated list of IPs and CIDR ranges.

    Invalid entries are logged and skipped.
    """
    if not ip_string or not ip_string.strip():
        return set()

    result = set()
    for item in ip_string.split(","):
        item = item.strip()
        if not item:
            continue

        try:
            if "/" in item:
                result.add(str(ipaddress.ip_network(item, strict=False)))
            else:
                result.add(str(ipaddress.ip_address(item)))
        except ValueError as e:
            logger.warning(f"Invalid IP address/range in L402_TRUSTED_PROXIES: {item} - {e}")

    return result


def ip_matches_list(ip: str, ip_list: Set[str]) -> bool:
    """Check if an IP equals an entry of ip_list or falls inside one of its ranges."""
    if not ip_list:
        return False

    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        # Peers such as unix sockets or test clients have no IP
        return False

    for entry in ip_list:
        if "/" in entry:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        elif str(address) == entry:
            return True

    return False


def get_trusted_proxies() -> Set[str]:
    return parse_ip_list(settings.L402_TRUSTED_PROXIES)

