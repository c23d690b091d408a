# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: static safety tables consulted before every destructive action, plus the input
validators that keep attacker-influenced evidence from reaching an OS command. configuration
can add whitelist IPs but never removes entries or shrinks the protected sets.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import ipaddress  # for validating and canonicalizing IP literals
import re  # for the username allow-list pattern
from collections.abc import Iterable  # type hint for operator-supplied whitelist entries

WHITELISTED_IPS: frozenset[str] = frozenset({"127.0.0.1", "::1", "localhost", "0.0.0.0"})

PROTECTED_PROCESSES: frozenset[str] = frozenset(
    {
        # unix
        "sshd",
        "systemd",
        "init",
        "launchd",
        "loginwindow",
        "kernel_task",
        "windowserver",
        # windows
        "explorer.exe",
        "svchost.exe",
        "csrss.exe",
        "lsass.exe",
        "services.exe",
        "winlogon.exe",
        "wininit.exe",
        "smss.exe",
        "system",
        # the agent itself
        "vigilguard",
        "vigilguard.exe",
    }
)

PROTECTED_PIDS: frozenset[int] = frozenset({0, 1})

PROTECTED_ACCOUNTS: frozenset[str] = frozenset(
    {"root", "administrator", "admin", "system", "localsystem"}
)

MAX_AUTO_BLOCK_DURATION_SEC = 24 * 60 * 60  # auto blocks expire after a day
NETWORK_ISOLATION_MIN_CONFIDENCE = 95

USERNAME_RE = re.compile(r"[a-zA-Z0-9._-]+")


def merged_whitelist(extra: Iterable[str] = ()) -> frozenset[str]:
    # static entries always stay; operator entries are only ever added
    merged = set(WHITELISTED_IPS)
    for ip in extra:
        ip = str(ip).strip()
        if ip:
            merged.add(ip)
            canon = canonical_ip(ip)
            if canon:
                merged.add(canon)
    return frozenset(merged)


def canonical_ip(ip: str) -> str | None:
    """compressed canonical form of an IP literal, None when it is not one"""
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError:
        return None


def is_valid_ip(ip: str) -> bool:
    return canonical_ip(ip) is not None and ip == ip.strip()


def is_whitelisted_ip(ip: str, whitelist: Iterable[str] = WHITELISTED_IPS) -> bool:
    allowed = set(whitelist)
    if ip in allowed:
        return True
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    if str(addr) in allowed:
        return True
    # ::ffff:a.b.c.d reaches the same host as a.b.c.d
    mapped = getattr(addr, "ipv4_mapped", None)
    return mapped is not None and str(mapped) in allowed


def is_protected_process(name: str | None) -> bool:
    if not name:
        return False
    return name.strip().lower() in PROTECTED_PROCESSES


def is_protected_pid(pid: int) -> bool:
    return pid in PROTECTED_PIDS


def is_protected_account(username: str) -> bool:
    return username.strip().lower() in PROTECTED_ACCOUNTS


def is_valid_username(username: str) -> bool:
    return USERNAME_RE.fullmatch(username) is not None


def safety_tables() -> dict:
    # read-only view for the status API
    return {
        "whitelisted_ips": sorted(WHITELISTED_IPS),
        "protected_processes": sorted(PROTECTED_PROCESSES),
        "protected_pids": sorted(PROTECTED_PIDS),
        "protected_accounts": sorted(PROTECTED_ACCOUNTS),
        "max_auto_block_duration_sec": MAX_AUTO_BLOCK_DURATION_SEC,
        "network_isolation_min_confidence": NETWORK_ISOLATION_MIN_CONFIDENCE,
    }
