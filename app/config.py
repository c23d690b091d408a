# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: configuration loader for the agent. settings come from environment variables, then the
JSON file in the data directory, then defaults. returns a frozen Config dataclass with every path
and threshold the guard engine needs. the safety tables are not configurable; operators can only
add whitelist IPs.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from response.engine import MODES, ActionPolicy

ENV_PREFIX = "VIGILGUARD_"


class ConfigError(ValueError):
    pass


# per-user data directory unless VIGILGUARD_DATA_DIR or --data-dir say otherwise
def _default_data_dir() -> Path:
    return Path.home() / ".vigilguard"


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    data_dir: Path  # holds baseline, audit log, pid file and quarantine
    mode: str  # learning | protection
    learning_days: int  # length of the learning period
    auto_respond: float  # confidence at or above which actions run automatically
    notify_and_wait: float  # confidence at or above which the operator is notified
    whitelist_ips: tuple[str, ...]  # operator additions to the static IP whitelist
    watchdog_enabled: bool
    watchdog_interval_sec: float
    heartbeat_interval_sec: float  # how often the engine reports alive to the watchdog
    learning_check_interval_sec: float
    dashboard_enabled: bool
    host: str  # status API host address
    port: int  # status API port number
    timezone: str  # overrides host timezone detection for region codes
    log_level: str

    @property
    def baseline_path(self) -> Path:
        return self.data_dir / "baseline.json"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "events.jsonl"

    @property
    def quarantine_dir(self) -> Path:
        return self.data_dir / "quarantine"

    @property
    def policy(self) -> ActionPolicy:
        return ActionPolicy(auto_respond=self.auto_respond, notify_and_wait=self.notify_and_wait)


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    env = os.getenv(f"{ENV_PREFIX}{key.upper()}")
    if env is not None:
        # bool before int: bool is a subclass of int
        if isinstance(default, bool):
            return _truthy(env)
        if isinstance(default, int):
            try:
                return int(env)
            except Exception:
                return default
        if isinstance(default, float):
            try:
                return float(env)
            except Exception:
                return default
        if isinstance(default, (list, tuple)):
            return [part.strip() for part in env.split(",") if part.strip()]
        return env
    value = obj.get(key, default)
    if isinstance(default, bool) and isinstance(value, str):
        return _truthy(value)  # JSON may carry "false" as a string
    return value


def _read_json(cfg_file: Path) -> dict:
    if not cfg_file.exists():
        return {}
    try:
        obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
    except Exception:
        # if JSON is broken, just use empty dict (all defaults)
        return {}
    return obj if isinstance(obj, dict) else {}


def load_config(data_dir: str | Path | None = None, mode: str | None = None) -> Config:
    base = Path(data_dir or os.getenv(f"{ENV_PREFIX}DATA_DIR") or _default_data_dir()).expanduser()
    obj = _read_json(base / "config.json")

    whitelist = _get(obj, "whitelist_ips", [])
    if isinstance(whitelist, str):
        whitelist = [w.strip() for w in whitelist.split(",") if w.strip()]

    try:
        cfg = Config(
            data_dir=base,
            mode=str(mode or _get(obj, "mode", "learning")),
            learning_days=int(_get(obj, "learning_days", 7)),
            auto_respond=float(_get(obj, "auto_respond", 85.0)),
            notify_and_wait=float(_get(obj, "notify_and_wait", 50.0)),
            whitelist_ips=tuple(str(w) for w in whitelist),
            watchdog_enabled=bool(_get(obj, "watchdog_enabled", True)),
            watchdog_interval_sec=float(_get(obj, "watchdog_interval_sec", 60.0)),
            heartbeat_interval_sec=float(_get(obj, "heartbeat_interval_sec", 5.0)),
            learning_check_interval_sec=float(_get(obj, "learning_check_interval_sec", 60.0)),
            dashboard_enabled=bool(_get(obj, "dashboard_enabled", True)),
            host=str(_get(obj, "host", "127.0.0.1")),
            port=int(_get(obj, "port", 8766)),
            timezone=str(_get(obj, "timezone", "")),
            log_level=str(_get(obj, "log_level", "INFO")).upper(),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid configuration value: {e}") from e

    validate(cfg)
    return cfg


def validate(cfg: Config) -> None:
    if cfg.mode not in MODES:
        raise ConfigError(f"mode must be one of {', '.join(MODES)}, got {cfg.mode!r}")
    if cfg.learning_days < 0:
        raise ConfigError("learning_days must not be negative")
    for name in ("auto_respond", "notify_and_wait"):
        value = getattr(cfg, name)
        if not 0 <= value <= 100:
            raise ConfigError(f"{name} must be between 0 and 100, got {value:g}")
    if cfg.auto_respond < cfg.notify_and_wait:
        raise ConfigError(
            f"auto_respond ({cfg.auto_respond:g}) must be >= notify_and_wait ({cfg.notify_and_wait:g})"
        )
