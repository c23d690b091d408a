# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: platform-specific OS commands behind one ActionExecutor interface. the respond engine
never branches on the OS; it asks the executor chosen once at startup by select_executor().

every command is an argument vector run directly (never through a shell) with a 10 second
timeout. callers get CalledProcessError / TimeoutExpired / OSError / UnsupportedPlatformError
and turn them into failed ResponseResults.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import subprocess  # for running firewall and account commands
import sys  # for the platform probe

import psutil  # for graceful process termination

COMMAND_TIMEOUT_SEC = 10  # a hung OS command must not stall the pipeline
BLOCK_TABLE = "vigilguard_blocked"  # pf table that holds blocked addresses on macOS
RULE_PREFIX = "VigilGuard_Block_"  # windows firewall rule name prefix


class UnsupportedPlatformError(RuntimeError):
    pass


def run_command(argv: list[str], timeout: float = COMMAND_TIMEOUT_SEC) -> str:
    # check=True so a non-zero exit is a failure, not a silent success
    proc = subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=True)
    return proc.stdout


class ActionExecutor:
    """base executor: knows how to terminate processes, but has no firewall/account commands"""

    platform = "unsupported"

    def block_ip_argv(self, ip: str) -> list[str]:
        raise UnsupportedPlatformError(f"IP blocking is not supported on {sys.platform}")

    def unblock_ip_argv(self, ip: str) -> list[str]:
        raise UnsupportedPlatformError(f"IP unblocking is not supported on {sys.platform}")

    def disable_account_argv(self, username: str) -> list[str]:
        raise UnsupportedPlatformError(f"account disabling is not supported on {sys.platform}")

    def run(self, argv: list[str]) -> str:
        return run_command(argv)

    def block_ip(self, ip: str) -> str:
        return self.run(self.block_ip_argv(ip))

    def unblock_ip(self, ip: str) -> str:
        return self.run(self.unblock_ip_argv(ip))

    def disable_account(self, username: str) -> str:
        return self.run(self.disable_account_argv(username))

    def terminate(self, pid: int) -> None:
        # SIGTERM on posix, TerminateProcess on windows
        psutil.Process(pid).terminate()


class DarwinExecutor(ActionExecutor):
    platform = "darwin"

    def block_ip_argv(self, ip: str) -> list[str]:
        return ["/sbin/pfctl", "-t", BLOCK_TABLE, "-T", "add", ip]

    def unblock_ip_argv(self, ip: str) -> list[str]:
        return ["/sbin/pfctl", "-t", BLOCK_TABLE, "-T", "delete", ip]

    def disable_account_argv(self, username: str) -> list[str]:
        return [
            "/usr/bin/dscl",
            ".",
            "-create",
            f"/Users/{username}",
            "AuthenticationAuthority",
            ";DisabledUser;",
        ]


class LinuxExecutor(ActionExecutor):
    platform = "linux"

    def block_ip_argv(self, ip: str) -> list[str]:
        return ["/sbin/iptables", "-A", "INPUT", "-s", ip, "-j", "DROP"]

    def unblock_ip_argv(self, ip: str) -> list[str]:
        return ["/sbin/iptables", "-D", "INPUT", "-s", ip, "-j", "DROP"]

    def disable_account_argv(self, username: str) -> list[str]:
        return ["/usr/sbin/usermod", "-L", username]


class WindowsExecutor(ActionExecutor):
    platform = "win32"

    def block_ip_argv(self, ip: str) -> list[str]:
        return [
            "netsh",
            "advfirewall",
            "firewall",
            "add",
            "rule",
            f"name={RULE_PREFIX}{ip}",
            "dir=in",
            "action=block",
            f"remoteip={ip}",
        ]

    def unblock_ip_argv(self, ip: str) -> list[str]:
        return ["netsh", "advfirewall", "firewall", "delete", "rule", f"name={RULE_PREFIX}{ip}"]

    def disable_account_argv(self, username: str) -> list[str]:
        return ["net", "user", username, "/active:no"]


def select_executor(platform: str | None = None) -> ActionExecutor:
    plat = platform or sys.platform
    if plat == "darwin":
        return DarwinExecutor()
    if plat.startswith("linux"):
        return LinuxExecutor()
    if plat == "win32":
        return WindowsExecutor()
    return ActionExecutor()
