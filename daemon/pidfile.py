# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: PID file for the running agent. a stale file (process gone) reads as "not running".
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psutil  # pid_exists is a zero-signal probe on posix

log = logging.getLogger("vigilguard.daemon")

PID_FILE_NAME = "vigilguard.pid"


class PidFile:
    def __init__(self, data_dir: str | Path) -> None:
        self.path = Path(data_dir) / PID_FILE_NAME

    def write(self, pid: int | None = None) -> int:
        # OSError propagates: not being able to write the pid file is fatal for the supervisor
        value = os.getpid() if pid is None else pid
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(value), encoding="utf-8")
        log.info(f"PID file written: {self.path} (PID {value})")
        return value

    def read(self) -> int | None:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def is_running(self) -> bool:
        pid = self.read()
        if pid is None or pid <= 0:
            return False
        try:
            return psutil.pid_exists(pid)
        except Exception:
            return False

    def remove(self) -> None:
        try:
            self.path.unlink()
            log.info("PID file removed")
        except FileNotFoundError:
            pass
        except OSError as e:
            log.error(f"Failed to remove PID file {self.path}: {e}")
