"""
analytics/classify.py -- Derive report buckets from raw request metadata.

address_bucket() maps a network address to a coarse location bucket. There is
no GeoIP database in the stack, so the bucket is the network prefix (/16 for
IPv4, /48 for IPv6) with named buckets for loopback and private ranges. Two
logins from the same office or ISP block land in the same bucket.

parse_client() reduces a User-Agent string to (browser, os, is_mobile) with a
small ordered rule table. Order matters: Edge and Opera advertise "Chrome",
and Chrome advertises "Safari".
"""

import ipaddress
import re
from typing import NamedTuple

UNKNOWN = "Unknown"


class ClientInfo(NamedTuple):
    browser: str
    os: str
    is_mobile: bool


# (label, pattern) -- first match wins.
_BROWSERS: list[tuple[str, re.Pattern]] = [
    ("Edge", re.compile(r"Edg(e|A|iOS)?/")),
    ("Opera", re.compile(r"OPR/|Opera")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Safari", re.compile(r"Safari/")),
    ("curl", re.compile(r"^curl/")),
]

_OPERATING_SYSTEMS: list[tuple[str, re.Pattern]] = [
    ("Windows", re.compile(r"Windows")),
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("Linux", re.compile(r"Linux|X11")),
]

_MOBILE = re.compile(r"Mobi|Android|iPhone|iPod")


def address_bucket(ip: str) -> str:
    """Return a coarse location bucket for `ip`, or "Unknown" if it does not parse."""
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return UNKNOWN
    if addr.is_loopback:
        return "loopback"
    if addr.is_private:
        return "private"
    prefix = 16 if addr.version == 4 else 48
    return str(ipaddress.ip_network(f"{addr}/{prefix}", strict=False))


def _first_match(rules: list[tuple[str, re.Pattern]], text: str) -> str:
    for label, pattern in rules:
        if pattern.search(text):
            return label
    return UNKNOWN


def parse_client(user_agent: str) -> ClientInfo:
    ua = user_agent or ""
    return ClientInfo(
        browser=_first_match(_BROWSERS, ua),
        os=_first_match(_OPERATING_SYSTEMS, ua),
        is_mobile=bool(_MOBILE.search(ua)),
    )
