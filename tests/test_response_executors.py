"""
Tests for response.executors - platform command selection and execution
"""

from __future__ import annotations

import subprocess
from unittest.mock import Mock, patch

import pytest

from response.executors import (
    COMMAND_TIMEOUT_SEC,
    ActionExecutor,
    DarwinExecutor,
    LinuxExecutor,
    UnsupportedPlatformError,
    WindowsExecutor,
    run_command,
    select_executor,
)


class TestSelectExecutor:
    """Tests for select_executor"""

    @pytest.mark.parametrize(
        "plat, cls",
        [("darwin", DarwinExecutor), ("linux", LinuxExecutor), ("win32", WindowsExecutor)],
    )
    def test_known_platforms(self, plat, cls):
        """Test platform dispatch"""
        assert type(select_executor(plat)) is cls

    def test_unknown_platform_raises_on_use(self):
        """Test that unsupported platforms fail per command, not at selection"""
        ex = select_executor("freebsd13")
        assert type(ex) is ActionExecutor
        with pytest.raises(UnsupportedPlatformError):
            ex.block_ip("203.0.113.9")
        with pytest.raises(UnsupportedPlatformError):
            ex.disable_account("bob")


class TestArgv:
    """Tests for the argument vectors (never a shell string)"""

    def test_linux(self):
        """Test iptables and usermod commands"""
        ex = LinuxExecutor()
        assert ex.block_ip_argv("203.0.113.9") == [
            "/sbin/iptables", "-A", "INPUT", "-s", "203.0.113.9", "-j", "DROP",
        ]
        assert ex.unblock_ip_argv("203.0.113.9")[1] == "-D"
        assert ex.disable_account_argv("bob") == ["/usr/sbin/usermod", "-L", "bob"]

    def test_darwin(self):
        """Test pfctl and dscl commands"""
        ex = DarwinExecutor()
        assert ex.block_ip_argv("203.0.113.9")[:2] == ["/sbin/pfctl", "-t"]
        assert ex.block_ip_argv("203.0.113.9")[-2:] == ["add", "203.0.113.9"]
        assert "/Users/bob" in ex.disable_account_argv("bob")

    def test_windows(self):
        """Test netsh and net user commands"""
        ex = WindowsExecutor()
        argv = ex.block_ip_argv("203.0.113.9")
        assert argv[0] == "netsh"
        assert "remoteip=203.0.113.9" in argv
        assert ex.disable_account_argv("bob") == ["net", "user", "bob", "/active:no"]


class TestRunCommand:
    """Tests for run_command"""

    def test_uses_argv_and_timeout(self):
        """Test that commands run without a shell and with the bounded timeout"""
        with patch("response.executors.subprocess.run") as mock_run:
            mock_run.return_value = Mock(stdout="ok")
            assert run_command(["/sbin/iptables", "-L"]) == "ok"
        args, kwargs = mock_run.call_args
        assert args[0] == ["/sbin/iptables", "-L"]
        assert kwargs["timeout"] == COMMAND_TIMEOUT_SEC == 10
        assert kwargs["check"] is True
        assert kwargs.get("shell", False) is False

    def test_timeout_propagates(self):
        """Test that a timeout reaches the caller"""
        with patch(
            "response.executors.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["x"], 10),
        ):
            with pytest.raises(subprocess.TimeoutExpired):
                run_command(["x"])

    def test_terminate_uses_psutil(self):
        """Test that terminate sends a graceful signal through psutil"""
        with patch("response.executors.psutil.Process") as mock_proc:
            ActionExecutor().terminate(4242)
        mock_proc.assert_called_once_with(4242)
        mock_proc.return_value.terminate.assert_called_once()
