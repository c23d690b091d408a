# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: register the agent with the host's service manager so it starts at boot and is restarted
when it dies.

- macOS: user launch agent (plist in ~/Library/LaunchAgents, loaded with launchctl)
- Linux: systemd unit in /etc/systemd/system, then daemon-reload, enable, start
- Windows: service control manager via sc.exe create + start

each install/uninstall is a fixed sequence of commands. the first command that fails aborts the
sequence with a single ServiceInstallError, so the caller never mistakes a half-installed
service for a working one.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for install/uninstall lines
import subprocess  # for launchctl / systemctl / sc
import sys  # for the platform probe
from abc import ABC, abstractmethod  # for the service manager interface
from pathlib import Path  # for descriptor paths
from xml.sax.saxutils import escape  # for plist string values

log = logging.getLogger("vigilguard.daemon")

SERVICE_LABEL = "com.vigilguard.guard"  # launchd label
SERVICE_NAME = "vigilguard-guard"  # systemd unit / windows service name
SERVICE_DISPLAY_NAME = "VigilGuard Endpoint Protection"
SERVICE_TIMEOUT_SEC = 15


class ServiceInstallError(RuntimeError):
    pass


def run_service_command(argv: list[str], timeout: float = SERVICE_TIMEOUT_SEC) -> None:
    try:
        subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=True)
    except subprocess.CalledProcessError as e:
        err = (e.stderr or "").strip()
        raise ServiceInstallError(
            f"{' '.join(argv)} exited with status {e.returncode}" + (f": {err}" if err else "")
        ) from e
    except subprocess.TimeoutExpired as e:
        raise ServiceInstallError(f"{' '.join(argv)} timed out after {timeout}s") from e
    except OSError as e:
        raise ServiceInstallError(f"{' '.join(argv)} could not be run: {e}") from e


class ServiceManager(ABC):
    name = "unknown"

    def __init__(self, runner=run_service_command) -> None:
        self._run = runner

    @abstractmethod
    def install(self, exec_path: str, data_dir: str) -> str:
        """install and start the service, returns the descriptor path or service name"""

    @abstractmethod
    def uninstall(self) -> str:
        """stop and remove the service"""

    def _write(self, path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise ServiceInstallError(f"cannot write {path}: {e}") from e

    def _delete(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ServiceInstallError(f"cannot remove {path}: {e}") from e


class LaunchdServiceManager(ServiceManager):
    name = "launchd"

    def __init__(self, runner=run_service_command, agents_dir: Path | None = None) -> None:
        super().__init__(runner)
        self.agents_dir = agents_dir or Path.home() / "Library" / "LaunchAgents"

    @property
    def plist_path(self) -> Path:
        return self.agents_dir / f"{SERVICE_LABEL}.plist"

    def render(self, exec_path: str, data_dir: str) -> str:
        out_log = Path(data_dir) / "vigilguard.log"
        err_log = Path(data_dir) / "vigilguard-error.log"
        return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
  <key>Label</key>
  <string>{SERVICE_LABEL}</string>
  <key>ProgramArguments</key>
  <array>
    <string>{escape(exec_path)}</string>
    <string>start</string>
    <string>--data-dir</string>
    <string>{escape(data_dir)}</string>
  </array>
  <key>RunAtLoad</key>
  <true/>
  <key>KeepAlive</key>
  <true/>
  <key>StandardOutPath</key>
  <string>{escape(str(out_log))}</string>
  <key>StandardErrorPath</key>
  <string>{escape(str(err_log))}</string>
</dict>
</plist>
"""

    def install(self, exec_path: str, data_dir: str) -> str:
        self._write(self.plist_path, self.render(exec_path, data_dir))
        self._run(["/bin/launchctl", "load", str(self.plist_path)])
        log.info(f"launchd service installed at {self.plist_path}")
        return str(self.plist_path)

    def uninstall(self) -> str:
        if self.plist_path.exists():
            self._run(["/bin/launchctl", "unload", str(self.plist_path)])
            self._delete(self.plist_path)
            log.info("launchd service uninstalled")
        return str(self.plist_path)


class SystemdServiceManager(ServiceManager):
    name = "systemd"

    def __init__(self, runner=run_service_command, unit_dir: Path | None = None) -> None:
        super().__init__(runner)
        self.unit_dir = unit_dir or Path("/etc/systemd/system")

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / f"{SERVICE_NAME}.service"

    def render(self, exec_path: str, data_dir: str) -> str:
        return f"""[Unit]
Description={SERVICE_DISPLAY_NAME}
After=network.target

[Service]
Type=simple
ExecStart="{exec_path}" start --data-dir "{data_dir}"
Restart=always
RestartSec=10
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""

    def install(self, exec_path: str, data_dir: str) -> str:
        self._write(self.unit_path, self.render(exec_path, data_dir))
        self._run(["/bin/systemctl", "daemon-reload"])
        self._run(["/bin/systemctl", "enable", SERVICE_NAME])
        self._run(["/bin/systemctl", "start", SERVICE_NAME])
        log.info(f"systemd service installed at {self.unit_path}")
        return str(self.unit_path)

    def uninstall(self) -> str:
        self._run(["/bin/systemctl", "stop", SERVICE_NAME])
        self._run(["/bin/systemctl", "disable", SERVICE_NAME])
        if self.unit_path.exists():
            self._delete(self.unit_path)
            self._run(["/bin/systemctl", "daemon-reload"])
        log.info("systemd service uninstalled")
        return str(self.unit_path)


class WindowsServiceManager(ServiceManager):
    name = "sc"

    def install(self, exec_path: str, data_dir: str) -> str:
        # sc.exe wants "key=" and the value as separate arguments
        self._run(
            [
                "sc",
                "create",
                SERVICE_NAME,
                "binPath=",
                f'"{exec_path}" start --data-dir "{data_dir}"',
                "DisplayName=",
                SERVICE_DISPLAY_NAME,
                "start=",
                "auto",
            ]
        )
        self._run(["sc", "start", SERVICE_NAME])
        log.info("Windows service installed")
        return SERVICE_NAME

    def uninstall(self) -> str:
        try:
            self._run(["sc", "stop", SERVICE_NAME])
        except ServiceInstallError as e:
            log.warning(f"sc stop failed, deleting anyway: {e}")  # already stopped is fine
        self._run(["sc", "delete", SERVICE_NAME])
        log.info("Windows service uninstalled")
        return SERVICE_NAME


def get_service_manager(platform: str | None = None) -> ServiceManager:
    plat = platform or sys.platform
    if plat == "darwin":
        return LaunchdServiceManager()
    if plat.startswith("linux"):
        return SystemdServiceManager()
    if plat == "win32":
        return WindowsServiceManager()
    raise ServiceInstallError(f"unsupported platform: {plat}")
