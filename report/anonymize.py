# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: privacy reduction for shared threat intelligence. IPs lose their host part and the only
location we ever attach is a country code guessed from the host timezone.
"""

from __future__ import annotations

import os
from pathlib import Path

# IANA zone -> ISO 3166 country code; anything else is reported as UNKNOWN
TIMEZONE_REGIONS: dict[str, str] = {
    "Asia/Taipei": "TW",
    "Asia/Tokyo": "JP",
    "Asia/Seoul": "KR",
    "Asia/Shanghai": "CN",
    "Asia/Hong_Kong": "HK",
    "Asia/Singapore": "SG",
    "America/New_York": "US",
    "America/Chicago": "US",
    "America/Denver": "US",
    "America/Los_Angeles": "US",
    "Europe/London": "GB",
    "Europe/Berlin": "DE",
    "Europe/Paris": "FR",
    "Australia/Sydney": "AU",
}


def anonymize_ip(ip: str) -> str:
    """zero the last IPv4 octet or the last IPv6 segment; non-IP strings pass through"""
    if not ip or ip == "unknown":
        return ip
    if ":" in ip:
        parts = ip.split(":")
        parts[-1] = "0"
        return ":".join(parts)
    parts = ip.split(".")
    if len(parts) == 4:
        parts[3] = "0"
        return ".".join(parts)
    return ip


def region_from_timezone(tz_name: str | None) -> str:
    return TIMEZONE_REGIONS.get(tz_name or "", "UNKNOWN")


def host_timezone() -> str:
    # TZ env var first, then the /etc/localtime symlink that most unix hosts use
    tz = os.environ.get("TZ", "").lstrip(":")
    if tz:
        return tz
    try:
        target = str(Path("/etc/localtime").resolve())
        marker = "zoneinfo/"
        if marker in target:
            return target.split(marker, 1)[1]
    except OSError:
        pass
    return "UTC"
