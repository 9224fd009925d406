"""
Client device metadata for sessions.

Best-effort parsing of user-agent strings and client addresses. Everything
here is advisory (shown on the sessions page); none of it feeds a security
decision.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from starlette.requests import Request

UNKNOWN = "Unknown"

# Order matters: Edge and Opera UAs also contain "Chrome", Chrome UAs contain "Safari".
_BROWSERS = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/")),
    ("Opera", re.compile(r"OPR/|Opera")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Safari", re.compile(r"Version/[\d.]+.*Safari/")),
    ("curl", re.compile(r"^curl/")),
)

_OPERATING_SYSTEMS = (
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Android", re.compile(r"Android")),
    ("Windows", re.compile(r"Windows NT")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("ChromeOS", re.compile(r"CrOS")),
    ("Linux", re.compile(r"Linux")),
)

_TABLET = re.compile(r"iPad|Tablet|Android(?!.*Mobile)")
_MOBILE = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile")
_BOT = re.compile(r"bot|crawler|spider|curl|python-requests|httpx", re.IGNORECASE)


@dataclass
class DeviceInfo:
    os: str = UNKNOWN
    browser: str = UNKNOWN
    device: str = UNKNOWN

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def _first_match(table, user_agent: str) -> str:
    for name, pattern in table:
        if pattern.search(user_agent):
            return name
    return UNKNOWN


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """Derive OS, browser and device class from a user-agent string."""
    ua = (user_agent or "").strip()
    if not ua:
        return DeviceInfo()

    if _TABLET.search(ua):
        device = "Tablet"
    elif _MOBILE.search(ua):
        device = "Mobile"
    elif _BOT.search(ua):
        device = "Bot"
    else:
        device = "Desktop"

    return DeviceInfo(
        os=_first_match(_OPERATING_SYSTEMS, ua),
        browser=_first_match(_BROWSERS, ua),
        device=device,
    )


def get_client_ip(request: Request) -> str:
    """Extract client IP from request (first X-Forwarded-For hop wins)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    """Extract user agent from request."""
    return request.headers.get("User-Agent", "")[:512]


# RFC 1918 and IPv6 unique-local. ipaddress.is_private also covers the
# documentation ranges, which are public address space for this purpose.
_LOCAL_NETWORKS = [
    ipaddress.ip_network(cidr)
    for cidr in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
]


def coarse_location(ip_address: Optional[str]) -> str:
    """Coarse, offline location label for a client address."""
    try:
        ip = ipaddress.ip_address((ip_address or "").strip())
    except ValueError:
        return UNKNOWN
    if ip.is_loopback or ip.is_link_local or any(ip in net for net in _LOCAL_NETWORKS):
        return "Local network"
    return UNKNOWN


@dataclass
class ClientInfo:
    """Who is calling, as far as the transport can tell."""
    ip_address: str = "unknown"
    user_agent: str = ""

    @classmethod
    def from_request(cls, request: Request) -> "ClientInfo":
        return cls(ip_address=get_client_ip(request), user_agent=get_user_agent(request))

    @property
    def device(self) -> DeviceInfo:
        return parse_user_agent(self.user_agent)

    @property
    def location(self) -> str:
        return coarse_location(self.ip_address)
