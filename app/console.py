# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: command line launcher for VigilGuard. `start` runs the guard engine (and the local status
API in a background thread) until Ctrl+C / SIGTERM; the other commands inspect or manage an
installed agent: status, stop, install, uninstall, summary and restore.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import argparse  # for parsing command line arguments
import json  # for printing summaries
import logging  # for the agent log level
import signal  # for orderly shutdown on Ctrl+C / SIGTERM
import sys  # for the executable path and exit codes
import threading  # for running the dashboard in the background
from pathlib import Path  # for the data directory

import psutil  # for signalling a running agent in `stop`
from dotenv import load_dotenv

from app.config import Config, ConfigError, load_config
from app.engine import GuardEngine
from app.logs import setup_logging
from daemon.pidfile import PidFile
from daemon.service import ServiceInstallError, get_service_manager
from memory.baseline import load_baseline
from memory.learning import baseline_summary, learning_progress, remaining_days
from report.engine import ReportEngine
from response.quarantine import FileQuarantine

log = logging.getLogger("vigilguard.engine")


# --- colors ---
def _colors() -> dict[str, str]:
    # use ANSI color codes if available (Windows via colorama), otherwise plain text
    try:
        from colorama import just_fix_windows_console

        just_fix_windows_console()  # enable ANSI color codes on Windows terminals
        return {
            "cyan": "\x1b[36m",
            "mag": "\x1b[35m",
            "red": "\x1b[31m",
            "green": "\x1b[32m",
            "dim": "\x1b[2m",
            "bold": "\x1b[1m",
            "reset": "\x1b[0m",
        }
    except Exception:
        return dict.fromkeys(("cyan", "mag", "red", "green", "dim", "bold", "reset"), "")


def print_banner(cfg: Config) -> None:
    c = _colors()
    print(
        f"""
{c['dim']}┌────────────────────────────────────────────────────────────┐{c['reset']}
{c['dim']}│{c['reset']}{c['cyan']}{c['bold']}               V  i  g  i  l  G  u  a  r  d{c['reset']}{c['dim']}                  │{c['reset']}
{c['dim']}├────────────────────────────────────────────────────────────┤{c['reset']}
  mode      {c['mag']}{cfg.mode}{c['reset']}
  data dir  {cfg.data_dir}
  policy    auto-respond >= {cfg.auto_respond:g}, notify >= {cfg.notify_and_wait:g}
{c['dim']}├────────────────────────────────────────────────────────────┤{c['reset']}
{c['dim']}│{c['reset']}  Tip: press {c['cyan']}Ctrl+C{c['reset']} to stop the agent.                       {c['dim']}│{c['reset']}
{c['dim']}└────────────────────────────────────────────────────────────┘{c['reset']}
"""
    )


def _fail(msg: str) -> int:
    c = _colors()
    print(f"{c['red']}error:{c['reset']} {msg}", file=sys.stderr)
    return 1


def _exec_path() -> str:
    # the installed console script, or the frozen executable when packaged
    if getattr(sys, "frozen", False):
        return sys.executable
    return str(Path(sys.argv[0]).resolve())


# --- commands ---


def cmd_start(cfg: Config) -> int:
    pid_file = PidFile(cfg.data_dir)
    if pid_file.is_running():
        return _fail(f"VigilGuard is already running (PID {pid_file.read()})")

    print_banner(cfg)
    engine = GuardEngine(cfg, pid_file=pid_file)

    def _handle_signal(signum, frame):
        # Ctrl+C / SIGTERM: orderly shutdown, second signal is ignored while stopping
        log.info(f"Received signal {signum}, shutting down")
        threading.Thread(target=engine.stop, name="vigilguard-shutdown", daemon=True).start()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    engine.start()
    if cfg.dashboard_enabled:
        from dashboard.app import run_dashboard

        threading.Thread(
            target=run_dashboard,
            args=(engine, cfg.host, cfg.port),
            name="vigilguard-dashboard",
            daemon=True,
        ).start()
        log.info(f"Status API on http://{cfg.host}:{cfg.port}/api/status")

    engine.wait()
    # a watchdog restart exits non-zero so the service manager brings us back
    return 2 if engine.restart_requested else 0


def cmd_status(cfg: Config) -> int:
    pid_file = PidFile(cfg.data_dir)
    running = pid_file.is_running()
    baseline = load_baseline(cfg.baseline_path)
    info = {
        "running": running,
        "pid": pid_file.read() if running else None,
        "learning_progress": learning_progress(baseline, cfg.learning_days),
        "learning_remaining_days": remaining_days(baseline, cfg.learning_days),
        "baseline": baseline_summary(baseline).to_dict(),
    }
    print(json.dumps(info, indent=2))
    return 0


def cmd_stop(cfg: Config) -> int:
    pid_file = PidFile(cfg.data_dir)
    if not pid_file.is_running():
        print("VigilGuard is not running")
        return 0
    pid = pid_file.read()
    try:
        psutil.Process(pid).terminate()  # SIGTERM on posix
    except psutil.Error as e:
        return _fail(f"could not signal PID {pid}: {e}")
    print(f"Sent SIGTERM to VigilGuard (PID {pid})")
    return 0


def cmd_install(cfg: Config) -> int:
    try:
        where = get_service_manager().install(_exec_path(), str(cfg.data_dir))
    except ServiceInstallError as e:
        return _fail(f"service install failed: {e}")
    print(f"Service installed: {where}")
    return 0


def cmd_uninstall(cfg: Config) -> int:
    try:
        where = get_service_manager().uninstall()
    except ServiceInstallError as e:
        return _fail(f"service uninstall failed: {e}")
    print(f"Service removed: {where}")
    return 0


def cmd_summary(cfg: Config, hours: float) -> int:
    engine = ReportEngine(cfg.log_path, mode=cfg.mode)
    print(json.dumps(engine.generate_summary(hours).to_dict(), indent=2))
    return 0


def cmd_restore(cfg: Config, record_id: str) -> int:
    ok, msg = FileQuarantine(cfg.quarantine_dir).restore(record_id)
    if not ok:
        return _fail(msg)
    print(msg)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vigilguard", description="VigilGuard endpoint agent")
    parser.add_argument("--data-dir", help="data directory (default ~/.vigilguard)")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="run the agent in the foreground")
    start.add_argument("--mode", choices=("learning", "protection"), help="override mode")
    start.add_argument("--data-dir", dest="data_dir_sub", help=argparse.SUPPRESS)

    sub.add_parser("status", help="show whether the agent runs and the baseline state")
    sub.add_parser("stop", help="stop a running agent")
    sub.add_parser("install", help="install as a system service")
    sub.add_parser("uninstall", help="remove the system service")

    summary = sub.add_parser("summary", help="print an audit log summary")
    summary.add_argument("--hours", type=float, default=24.0, help="window size (default 24)")

    restore = sub.add_parser("restore", help="restore a quarantined file")
    restore.add_argument("record_id", help="quarantine record id")
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()  # load .env file if it exists
    args = build_parser().parse_args(argv)
    data_dir = getattr(args, "data_dir_sub", None) or args.data_dir

    try:
        cfg = load_config(data_dir, mode=getattr(args, "mode", None))
    except ConfigError as e:
        return _fail(str(e))
    setup_logging(cfg.log_level)

    if args.command == "start":
        return cmd_start(cfg)
    if args.command == "status":
        return cmd_status(cfg)
    if args.command == "stop":
        return cmd_stop(cfg)
    if args.command == "install":
        return cmd_install(cfg)
    if args.command == "uninstall":
        return cmd_uninstall(cfg)
    if args.command == "summary":
        return cmd_summary(cfg, args.hours)
    if args.command == "restore":
        return cmd_restore(cfg, args.record_id)
    return _fail(f"unknown command: {args.command}")


if __name__ == "__main__":
    sys.exit(main())
