# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: isolate suspicious files. a quarantined file is moved into the quarantine directory under
a timestamp-prefixed name, its permissions are locked down, and a JSON manifest records where it
came from plus its SHA-256 so it can be identified later or restored to its original location.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import hashlib  # for the evidence hash of the quarantined file
import json  # for the manifest
import logging  # for quarantine audit lines
import os  # for chmod
import secrets  # for the short random part of record ids
import shutil  # for moving files across filesystems
import sys  # for skipping chmod on windows
import threading  # for serializing manifest updates
import time  # for the timestamp prefix
from dataclasses import asdict, dataclass, replace  # manifest records
from pathlib import Path  # for file paths
from typing import Any  # type hint for flexible dictionary values

from core.models import iso_now

log = logging.getLogger("vigilguard.respond")

MANIFEST_NAME = "manifest.json"


@dataclass(frozen=True)
class QuarantineRecord:
    id: str
    original_path: str
    quarantine_path: str
    sha256: str
    file_size: int
    reason: str
    quarantined_at: str
    restored_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


class FileQuarantine:
    def __init__(self, quarantine_dir: str | Path) -> None:
        self.quarantine_dir = Path(quarantine_dir).expanduser().resolve()
        self.manifest_path = self.quarantine_dir / MANIFEST_NAME
        self._lock = threading.Lock()

    def _ensure_dir(self) -> None:
        self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        if sys.platform != "win32":
            try:
                os.chmod(self.quarantine_dir, 0o700)
            except OSError:
                pass  # not our directory to tighten, keep going

    def _load(self) -> list[QuarantineRecord]:
        if not self.manifest_path.exists():
            return []
        try:
            data = json.loads(self.manifest_path.read_text(encoding="utf-8") or "{}")
            return [QuarantineRecord(**r) for r in data.get("records", [])]
        except Exception as e:
            log.warning(f"Quarantine manifest unreadable ({e}), starting a new one")
            return []

    def _save(self, records: list[QuarantineRecord]) -> None:
        payload = {"version": 1, "records": [r.to_dict() for r in records]}
        self.manifest_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def is_inside(self, path: Path) -> bool:
        try:
            path.relative_to(self.quarantine_dir)
            return True
        except ValueError:
            return False

    def quarantine(self, file_path: str | Path, reason: str = "") -> QuarantineRecord:
        """move a file into quarantine. raises OSError/ValueError; the caller reports it"""
        src = Path(file_path).expanduser().resolve()
        if self.is_inside(src):
            raise ValueError(f"{src} is already inside the quarantine directory")
        if not src.is_file():
            raise FileNotFoundError(f"no such file: {src}")

        with self._lock:
            self._ensure_dir()
            digest = _sha256(src)
            size = src.stat().st_size
            record_id = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
            dest = self.quarantine_dir / f"{record_id}_{src.name}"
            shutil.move(str(src), str(dest))  # single move, not retried on failure
            if sys.platform != "win32":
                os.chmod(dest, 0o000)

            record = QuarantineRecord(
                id=record_id,
                original_path=str(src),
                quarantine_path=str(dest),
                sha256=digest,
                file_size=size,
                reason=reason,
                quarantined_at=iso_now(),
            )
            try:
                records = self._load()
                records.append(record)
                self._save(records)
            except Exception as e:
                # the file is already isolated; a missing manifest entry only affects restore
                log.error(f"Failed to update quarantine manifest for {dest}: {e}")

        log.info(f"Quarantined {src} -> {dest} (SHA-256 {digest[:16]}...)")
        return record

    def restore(self, record_id: str) -> tuple[bool, str]:
        with self._lock:
            records = self._load()
            idx = next((i for i, r in enumerate(records) if r.id == record_id), None)
            if idx is None:
                return False, f"Quarantine record not found: {record_id}"
            record = records[idx]
            if record.restored_at:
                return False, f"File already restored at {record.restored_at}"
            try:
                if sys.platform != "win32":
                    os.chmod(record.quarantine_path, 0o644)
                Path(record.original_path).parent.mkdir(parents=True, exist_ok=True)
                shutil.move(record.quarantine_path, record.original_path)
                records[idx] = replace(record, restored_at=iso_now())
                self._save(records)
            except Exception as e:
                log.error(f"Restore of {record_id} failed: {e}")
                return False, f"Restore failed: {e}"

        log.info(f"Restored {record.quarantine_path} -> {record.original_path}")
        return True, f"File restored to {record.original_path}"

    def records(self) -> list[QuarantineRecord]:
        with self._lock:
            return self._load()

    def active_records(self) -> list[QuarantineRecord]:
        return [r for r in self.records() if not r.restored_at]
