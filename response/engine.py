# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: turn a ThreatVerdict into at most one real-world action, and never an unsafe one.

decision order (first match wins):
1. learning mode                          -> log_only (nothing is ever executed while learning)
2. confidence >= policy.auto_respond      -> execute verdict.recommended_action
3. confidence >= policy.notify_and_wait   -> notify (no side effect)
4. otherwise                              -> log_only

each executor pulls its target out of the evidence list (first item carrying the field wins),
checks it against the safety tables, and only then touches the OS. respond() never raises:
refusals, missing targets, OS failures and timeouts all come back as ResponseResult values.
details of a safety refusal start with "Refused:" and an OS failure with "Failed:" so the log
makes the difference obvious even though the result shape is the same.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for refusal/failure audit lines
import os  # for our own pid
import subprocess  # for the exceptions raised by OS commands
import threading  # for the action counter and block ledger
import time  # for block expiry
from collections.abc import Callable, Iterable  # type hints for injected clock and whitelist
from dataclasses import dataclass  # for policy and ledger values

import psutil  # for resolving a pid to a process name

from core.models import ResponseResult, TargetKind, ThreatVerdict, extract_target, iso_now
from response import safety
from response.executors import ActionExecutor, UnsupportedPlatformError, select_executor
from response.quarantine import FileQuarantine

log = logging.getLogger("vigilguard.respond")

MODES = ("learning", "protection")


@dataclass(frozen=True)
class ActionPolicy:
    auto_respond: float = 85
    notify_and_wait: float = 50


@dataclass(frozen=True)
class BlockRecord:
    ip: str
    blocked_at: float
    expires_at: float
    reason: str

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "blocked_at": iso_now(self.blocked_at),
            "expires_at": iso_now(self.expires_at),
            "reason": self.reason,
        }


def _refused(action: str, details: str, target: str | None = None) -> ResponseResult:
    log.warning(f"Refused: {action} {target or ''} - {details}".rstrip())
    return ResponseResult(action=action, success=False, details=f"Refused: {details}", target=target)


def _failed(action: str, details: str, target: str | None = None) -> ResponseResult:
    log.error(f"Failed: {action} {target or ''} - {details}".rstrip())
    return ResponseResult(action=action, success=False, details=f"Failed: {details}", target=target)


def _os_error_text(e: BaseException) -> str:
    if isinstance(e, subprocess.TimeoutExpired):
        return f"command timed out after {e.timeout}s"
    if isinstance(e, subprocess.CalledProcessError):
        err = (e.stderr or "").strip() if isinstance(e.stderr, str) else ""
        return f"command exited with status {e.returncode}" + (f": {err}" if err else "")
    return str(e) or e.__class__.__name__


class RespondEngine:
    def __init__(
        self,
        policy: ActionPolicy | None = None,
        mode: str = "learning",
        extra_whitelist: Iterable[str] = (),
        executor: ActionExecutor | None = None,
        quarantine: FileQuarantine | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.policy = policy or ActionPolicy()
        self._mode = "learning"
        self.set_mode(mode)
        self.whitelist = safety.merged_whitelist(extra_whitelist)
        self.executor = executor or select_executor()
        self.quarantine = quarantine
        self._clock = clock
        self._lock = threading.Lock()
        self._action_count = 0
        self._blocked: dict[str, BlockRecord] = {}

    # --- state ---

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in MODES:
            raise ValueError(f"unknown mode: {mode}")
        if mode != getattr(self, "_mode", None):
            log.info(f"Respond engine mode: {mode}")
        self._mode = mode

    @property
    def action_count(self) -> int:
        return self._action_count

    def blocked_ips(self) -> list[BlockRecord]:
        with self._lock:
            return list(self._blocked.values())

    # --- decision ---

    def respond(self, verdict: ThreatVerdict) -> ResponseResult:
        if self._mode == "learning":
            return ResponseResult("log_only", True, "Learning mode: observing only")

        if verdict.confidence >= self.policy.auto_respond:
            action = verdict.recommended_action
            try:
                return self.execute_action(action, verdict)
            except Exception as e:
                # last line of defence: nothing escapes respond()
                log.exception(f"Unexpected error while executing {action}")
                return _failed(action, f"unexpected error: {e}")

        if verdict.confidence >= self.policy.notify_and_wait:
            return ResponseResult(
                "notify",
                True,
                f"Confidence {verdict.confidence:g} below auto-respond threshold, operator notified",
            )

        return ResponseResult(
            "log_only", True, f"Confidence {verdict.confidence:g} below notify threshold"
        )

    def execute_action(self, action: str, verdict: ThreatVerdict) -> ResponseResult:
        with self._lock:
            self._action_count += 1
        if action == "block_ip":
            return self._block_ip(verdict)
        if action == "kill_process":
            return self._kill_process(verdict)
        if action == "disable_account":
            return self._disable_account(verdict)
        if action == "isolate_file":
            return self._isolate_file(verdict)
        # notify, log_only and anything unknown carry no side effect
        return ResponseResult(action, True, f"Action {action} recorded")

    # --- executors ---

    def _block_ip(self, verdict: ThreatVerdict) -> ResponseResult:
        target = extract_target(verdict, TargetKind.IP)
        if not target.found:
            return _failed("block_ip", "no IP address found in evidence")
        ip = str(target.value)

        if safety.is_whitelisted_ip(ip, self.whitelist):
            return _refused("block_ip", f"IP {ip} is whitelisted", ip)
        if not safety.is_valid_ip(ip):
            return _refused("block_ip", f"invalid IP address format: {ip!r}", ip)

        with self._lock:
            if ip in self._blocked:
                return ResponseResult("block_ip", True, f"IP {ip} is already blocked", target=ip)

        try:
            self.executor.block_ip(ip)
        except (subprocess.SubprocessError, OSError, UnsupportedPlatformError) as e:
            return _failed("block_ip", _os_error_text(e), ip)

        now = self._clock()
        record = BlockRecord(
            ip=ip,
            blocked_at=now,
            expires_at=now + safety.MAX_AUTO_BLOCK_DURATION_SEC,
            reason=verdict.reasoning or "auto-response",
        )
        with self._lock:
            self._blocked[ip] = record
        log.info(f"Blocked IP {ip} until {iso_now(record.expires_at)}")
        return ResponseResult(
            "block_ip", True, f"IP {ip} blocked until {iso_now(record.expires_at)}", target=ip
        )

    def _kill_process(self, verdict: ThreatVerdict) -> ResponseResult:
        target = extract_target(verdict, TargetKind.PID)
        if not target.found:
            return _failed("kill_process", "no PID found in evidence")
        label = str(target.value)

        try:
            pid = int(target.value)
        except (TypeError, ValueError):
            return _refused("kill_process", f"invalid PID: {label!r}", label)
        if isinstance(target.value, bool) or str(pid) != label.strip() or pid < 0:
            return _refused("kill_process", f"invalid PID: {label!r}", label)

        if pid == os.getpid():
            return _refused("kill_process", "cannot kill the agent's own process", label)
        if safety.is_protected_pid(pid):
            return _refused("kill_process", f"PID {pid} is a protected system process", label)

        try:
            name = psutil.Process(pid).name()
        except psutil.NoSuchProcess:
            return _failed("kill_process", f"process {pid} not found", label)
        except (psutil.AccessDenied, psutil.ZombieProcess) as e:
            return _failed("kill_process", f"cannot inspect process {pid}: {e}", label)

        if safety.is_protected_process(name):
            return _refused("kill_process", f"process {name} (PID {pid}) is protected", label)

        try:
            self.executor.terminate(pid)
        except psutil.NoSuchProcess:
            return _failed("kill_process", f"process {pid} exited before termination", label)
        except (psutil.Error, OSError) as e:
            return _failed("kill_process", f"could not terminate {name} (PID {pid}): {e}", label)

        log.info(f"Terminated process {name} (PID {pid})")
        return ResponseResult(
            "kill_process", True, f"Sent termination signal to {name} (PID {pid})", target=label
        )

    def _disable_account(self, verdict: ThreatVerdict) -> ResponseResult:
        target = extract_target(verdict, TargetKind.USERNAME)
        if not target.found:
            return _failed("disable_account", "no username found in evidence")
        username = str(target.value)

        if safety.is_protected_account(username):
            return _refused("disable_account", f"account {username} is protected", username)
        if not safety.is_valid_username(username):
            return _refused("disable_account", f"invalid username format: {username!r}", username)

        try:
            self.executor.disable_account(username)
        except (subprocess.SubprocessError, OSError, UnsupportedPlatformError) as e:
            return _failed("disable_account", _os_error_text(e), username)

        log.info(f"Disabled account {username}")
        return ResponseResult(
            "disable_account", True, f"Account {username} disabled", target=username
        )

    def _isolate_file(self, verdict: ThreatVerdict) -> ResponseResult:
        target = extract_target(verdict, TargetKind.FILE_PATH)
        if not target.found:
            return _failed("isolate_file", "no file path found in evidence")
        path = str(target.value)
        if self.quarantine is None:
            return _failed("isolate_file", "no quarantine directory configured", path)

        try:
            record = self.quarantine.quarantine(path, reason=verdict.reasoning)
        except ValueError as e:
            return _refused("isolate_file", str(e), path)
        except OSError as e:
            return _failed("isolate_file", _os_error_text(e), path)

        return ResponseResult(
            "isolate_file",
            True,
            f"File quarantined to {record.quarantine_path} (id {record.id})",
            target=path,
        )

    # --- block expiry ---

    def unblock_ip(self, ip: str, reason: str = "manual") -> tuple[bool, str]:
        with self._lock:
            if ip not in self._blocked:
                return True, f"IP {ip} is not blocked"
        try:
            self.executor.unblock_ip(ip)
        except (subprocess.SubprocessError, OSError, UnsupportedPlatformError) as e:
            msg = _os_error_text(e)
            log.error(f"Failed: unblock {ip} - {msg}")
            return False, f"Failed: {msg}"
        with self._lock:
            self._blocked.pop(ip, None)
        log.info(f"Unblocked IP {ip} ({reason})")
        return True, f"IP {ip} unblocked"

    def release_expired_blocks(self, now: float | None = None) -> list[str]:
        current = self._clock() if now is None else now
        with self._lock:
            expired = [r.ip for r in self._blocked.values() if r.expires_at <= current]
        released = []
        for ip in expired:
            ok, _ = self.unblock_ip(ip, reason="block duration expired")
            if ok:
                released.append(ip)
        return released
