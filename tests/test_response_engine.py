"""
Tests for response.engine - confidence gating and safety-guarded executors
OS commands and psutil are always mocked; nothing here touches the host.
"""

from __future__ import annotations

import os
import subprocess
from unittest.mock import MagicMock, patch

import psutil
import pytest

from response import safety
from response.engine import ActionPolicy, RespondEngine
from response.executors import ActionExecutor, UnsupportedPlatformError
from response.quarantine import FileQuarantine

POLICY = ActionPolicy(auto_respond=90, notify_and_wait=50)


@pytest.fixture
def executor():
    """Mock executor with the ActionExecutor interface"""
    return MagicMock(spec=ActionExecutor)


@pytest.fixture
def engine(executor, tmp_path):
    """Protection-mode engine with a mocked executor"""
    return RespondEngine(
        policy=POLICY,
        mode="protection",
        executor=executor,
        quarantine=FileQuarantine(tmp_path / "quarantine"),
        clock=lambda: 1_000_000.0,
    )


class TestDecision:
    """Tests for the confidence-gated decision order"""

    @pytest.mark.parametrize("confidence", [0, 49, 50, 89, 90, 99, 100])
    @pytest.mark.parametrize("action", ["block_ip", "kill_process", "disable_account", "isolate_file"])
    def test_learning_mode_always_log_only(self, executor, make_verdict, confidence, action):
        """Test that learning mode never executes anything"""
        eng = RespondEngine(policy=POLICY, mode="learning", executor=executor)
        result = eng.respond(
            make_verdict(confidence=confidence, action=action, evidence=[{"ip": "203.0.113.9"}])
        )
        assert result.action == "log_only"
        assert result.success is True
        assert eng.action_count == 0
        executor.block_ip.assert_not_called()

    def test_notify_band(self, engine, executor, make_verdict):
        """Test notify between the two thresholds"""
        result = engine.respond(make_verdict(confidence=60, evidence=[{"ip": "203.0.113.9"}]))
        assert result.action == "notify"
        assert result.success is True
        executor.block_ip.assert_not_called()

    def test_notify_threshold_inclusive(self, engine, make_verdict):
        """Test that confidence == notify_and_wait notifies"""
        assert engine.respond(make_verdict(confidence=50)).action == "notify"

    def test_below_notify_logs(self, engine, make_verdict):
        """Test log_only below notify_and_wait"""
        result = engine.respond(make_verdict(confidence=49.9))
        assert result.action == "log_only"
        assert result.success is True

    def test_auto_threshold_inclusive(self, engine, executor, make_verdict):
        """Test that confidence == auto_respond executes"""
        result = engine.respond(make_verdict(confidence=90, evidence=[{"ip": "203.0.113.9"}]))
        assert result.action == "block_ip"
        executor.block_ip.assert_called_once_with("203.0.113.9")

    def test_set_mode(self, engine, make_verdict):
        """Test switching back to learning at runtime"""
        engine.set_mode("learning")
        assert engine.respond(make_verdict(confidence=100)).action == "log_only"
        with pytest.raises(ValueError):
            engine.set_mode("panic")

    def test_notify_and_unknown_actions_succeed(self, engine, make_verdict):
        """Test that non-destructive recommended actions fall through"""
        assert engine.respond(make_verdict(confidence=95, action="notify")).success
        result = engine.respond(make_verdict(confidence=95, action="reboot_host"))
        assert result.success is True
        assert result.action == "reboot_host"

    def test_action_counter(self, engine, make_verdict):
        """Test that executed actions are counted, notify/log-only decisions are not"""
        engine.respond(make_verdict(confidence=95, evidence=[{"ip": "203.0.113.9"}]))
        engine.respond(make_verdict(confidence=95, evidence=[{"ip": "203.0.113.10"}]))
        engine.respond(make_verdict(confidence=60))
        assert engine.action_count == 2

    def test_unexpected_error_is_contained(self, engine, make_verdict):
        """Test that respond() never raises"""
        with patch.object(engine, "_block_ip", side_effect=RuntimeError("boom")):
            result = engine.respond(make_verdict(confidence=95))
        assert result.success is False
        assert "boom" in result.details


class TestBlockIp:
    """Tests for the block_ip executor"""

    def test_blocks_and_records(self, engine, executor, make_verdict):
        """Test a successful block"""
        result = engine.respond(make_verdict(confidence=96, evidence=[{"ip": "203.0.113.9"}]))
        assert result.success is True
        assert result.target == "203.0.113.9"
        assert [r.ip for r in engine.blocked_ips()] == ["203.0.113.9"]
        rec = engine.blocked_ips()[0]
        assert rec.expires_at - rec.blocked_at == safety.MAX_AUTO_BLOCK_DURATION_SEC

    @pytest.mark.parametrize("ip", sorted(safety.WHITELISTED_IPS))
    def test_whitelist_never_blocked(self, engine, executor, make_verdict, ip):
        """Test safety non-bypass for every whitelisted IP"""
        result = engine.respond(make_verdict(confidence=100, evidence=[{"ip": ip}]))
        assert result.success is False
        assert "whitelisted" in result.details
        assert result.details.startswith("Refused:")
        executor.block_ip.assert_not_called()

    def test_ipv4_mapped_localhost_never_blocked(self, engine, executor, make_verdict):
        """Test that ::ffff:127.0.0.1 cannot sneak past the whitelist"""
        result = engine.respond(make_verdict(confidence=100, evidence=[{"ip": "::ffff:127.0.0.1"}]))
        assert result.success is False
        assert "whitelisted" in result.details
        executor.block_ip.assert_not_called()

    def test_operator_whitelist(self, executor, make_verdict):
        """Test that operator-supplied IPs are honoured"""
        eng = RespondEngine(POLICY, "protection", ["192.0.2.50"], executor)
        result = eng.respond(make_verdict(confidence=100, evidence=[{"ip": "192.0.2.50"}]))
        assert result.success is False
        executor.block_ip.assert_not_called()

    @pytest.mark.parametrize("ip", ["1.2.3.4; reboot", "$(id)", "not-an-ip", "1.2.3.4\n-F"])
    def test_invalid_ip_refused(self, engine, executor, make_verdict, ip):
        """Test that injection-shaped targets never reach the OS"""
        result = engine.respond(make_verdict(confidence=100, evidence=[{"ip": ip}]))
        assert result.success is False
        assert "invalid IP" in result.details
        executor.block_ip.assert_not_called()

    def test_missing_ip(self, engine, executor, make_verdict):
        """Test that missing evidence is a reported failure without a target"""
        result = engine.respond(make_verdict(confidence=100, evidence=[{"pid": 12}]))
        assert result.success is False
        assert result.target is None
        assert "no IP" in result.details

    def test_already_blocked(self, engine, executor, make_verdict):
        """Test that a second block is a no-op success"""
        v = make_verdict(confidence=100, evidence=[{"ip": "203.0.113.9"}])
        engine.respond(v)
        result = engine.respond(v)
        assert result.success is True
        assert "already blocked" in result.details
        assert executor.block_ip.call_count == 1

    @pytest.mark.parametrize(
        "error",
        [
            subprocess.TimeoutExpired(["iptables"], 10),
            subprocess.CalledProcessError(1, ["iptables"], stderr="permission denied"),
            FileNotFoundError("iptables"),
            UnsupportedPlatformError("nope"),
        ],
    )
    def test_os_failure_reported(self, engine, executor, make_verdict, error):
        """Test that OS failures become failed results and are not retried"""
        executor.block_ip.side_effect = error
        result = engine.respond(make_verdict(confidence=100, evidence=[{"ip": "203.0.113.9"}]))
        assert result.success is False
        assert result.details.startswith("Failed:")
        assert result.target == "203.0.113.9"
        assert executor.block_ip.call_count == 1
        assert engine.blocked_ips() == []

    def test_timeout_message(self, engine, executor, make_verdict):
        """Test that a timeout says so"""
        executor.block_ip.side_effect = subprocess.TimeoutExpired(["iptables"], 10)
        result = engine.respond(make_verdict(confidence=100, evidence=[{"ip": "203.0.113.9"}]))
        assert "timed out" in result.details


class TestBlockExpiry:
    """Tests for unblock and expiry"""

    def test_release_expired(self, engine, executor, make_verdict):
        """Test that expired blocks are removed from the firewall and the ledger"""
        engine.respond(make_verdict(confidence=100, evidence=[{"ip": "203.0.113.9"}]))
        assert engine.release_expired_blocks(now=1_000_000.0 + 60) == []
        released = engine.release_expired_blocks(
            now=1_000_000.0 + safety.MAX_AUTO_BLOCK_DURATION_SEC
        )
        assert released == ["203.0.113.9"]
        executor.unblock_ip.assert_called_once_with("203.0.113.9")
        assert engine.blocked_ips() == []

    def test_unblock_failure_keeps_record(self, engine, executor, make_verdict):
        """Test that a failed unblock keeps the ledger entry for the next sweep"""
        engine.respond(make_verdict(confidence=100, evidence=[{"ip": "203.0.113.9"}]))
        executor.unblock_ip.side_effect = subprocess.CalledProcessError(1, ["iptables"])
        ok, msg = engine.unblock_ip("203.0.113.9")
        assert ok is False
        assert msg.startswith("Failed:")
        assert len(engine.blocked_ips()) == 1

    def test_unblock_unknown(self, engine, executor):
        """Test unblocking an IP that was never blocked"""
        ok, _ = engine.unblock_ip("198.51.100.1")
        assert ok is True
        executor.unblock_ip.assert_not_called()


class TestKillProcess:
    """Tests for the kill_process executor"""

    def _proc(self, name):
        proc = MagicMock()
        proc.name.return_value = name
        return proc

    def test_kills_unprotected(self, engine, executor, make_verdict):
        """Test a graceful kill of an ordinary process"""
        with patch("response.engine.psutil.Process", return_value=self._proc("xmrig")):
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": 4242}])
            )
        assert result.success is True
        assert result.target == "4242"
        executor.terminate.assert_called_once_with(4242)

    def test_string_pid_accepted(self, engine, executor, make_verdict):
        """Test that a numeric string pid is accepted"""
        with patch("response.engine.psutil.Process", return_value=self._proc("nc")):
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": "777"}])
            )
        assert result.success is True
        executor.terminate.assert_called_once_with(777)

    @pytest.mark.parametrize("name", ["sshd", "lsass.exe", "SYSTEMD"])
    def test_protected_name_refused(self, engine, executor, make_verdict, name):
        """Test that protected processes are never killed"""
        with patch("response.engine.psutil.Process", return_value=self._proc(name)):
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": 555}])
            )
        assert result.success is False
        assert result.details.startswith("Refused:")
        executor.terminate.assert_not_called()

    def test_self_kill_refused(self, engine, executor, make_verdict):
        """Test that the agent never kills itself"""
        result = engine.respond(
            make_verdict(confidence=100, action="kill_process", evidence=[{"pid": os.getpid()}])
        )
        assert result.success is False
        assert "own process" in result.details
        executor.terminate.assert_not_called()

    @pytest.mark.parametrize("pid", [0, 1])
    def test_protected_pid_refused(self, engine, executor, make_verdict, pid):
        """Test that pid 0/1 are refused without lookup"""
        with patch("response.engine.psutil.Process") as mock_proc:
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": pid}])
            )
        assert result.success is False
        mock_proc.assert_not_called()
        executor.terminate.assert_not_called()

    @pytest.mark.parametrize("pid", ["12; rm", "abc", 3.5, True, -1, "-42"])
    def test_invalid_pid_refused(self, engine, executor, make_verdict, pid):
        """Test that non-integer and negative pids are refused before any lookup"""
        with patch("response.engine.psutil.Process") as mock_proc:
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": pid}])
            )
        assert result.success is False
        assert result.details.startswith("Refused:")
        assert "invalid PID" in result.details
        mock_proc.assert_not_called()
        executor.terminate.assert_not_called()

    def test_missing_process(self, engine, executor, make_verdict):
        """Test a pid that no longer exists"""
        with patch("response.engine.psutil.Process", side_effect=psutil.NoSuchProcess(4242)):
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": 4242}])
            )
        assert result.success is False
        assert "not found" in result.details

    def test_terminate_access_denied(self, engine, executor, make_verdict):
        """Test that a failed signal is reported"""
        executor.terminate.side_effect = psutil.AccessDenied(4242)
        with patch("response.engine.psutil.Process", return_value=self._proc("evil")):
            result = engine.respond(
                make_verdict(confidence=100, action="kill_process", evidence=[{"pid": 4242}])
            )
        assert result.success is False
        assert result.details.startswith("Failed:")

    def test_missing_pid(self, engine, make_verdict):
        """Test a verdict without pid evidence"""
        result = engine.respond(make_verdict(confidence=100, action="kill_process"))
        assert result.success is False
        assert result.target is None


class TestDisableAccount:
    """Tests for the disable_account executor"""

    def test_disables(self, engine, executor, make_verdict):
        """Test a successful disable"""
        result = engine.respond(
            make_verdict(confidence=100, action="disable_account", evidence=[{"username": "eve"}])
        )
        assert result.success is True
        assert result.target == "eve"
        executor.disable_account.assert_called_once_with("eve")

    @pytest.mark.parametrize("user", ["root", "Administrator", "admin", "SYSTEM", "LocalSystem"])
    def test_protected_never_disabled(self, engine, executor, make_verdict, user):
        """Test safety non-bypass for protected accounts"""
        result = engine.respond(
            make_verdict(confidence=100, action="disable_account", evidence=[{"username": user}])
        )
        assert result.success is False
        assert "protected" in result.details
        executor.disable_account.assert_not_called()

    @pytest.mark.parametrize("user", ["eve; id", "eve bob", "../../x", "$(whoami)"])
    def test_invalid_username_refused(self, engine, executor, make_verdict, user):
        """Test injection-shaped usernames"""
        result = engine.respond(
            make_verdict(confidence=100, action="disable_account", evidence=[{"username": user}])
        )
        assert result.success is False
        assert "invalid username" in result.details
        executor.disable_account.assert_not_called()

    def test_command_failure(self, engine, executor, make_verdict):
        """Test that a failing usermod is reported"""
        executor.disable_account.side_effect = subprocess.CalledProcessError(6, ["usermod"])
        result = engine.respond(
            make_verdict(confidence=100, action="disable_account", evidence=[{"username": "eve"}])
        )
        assert result.success is False
        assert "status 6" in result.details


class TestIsolateFile:
    """Tests for the isolate_file executor"""

    def test_quarantines(self, engine, make_verdict, tmp_path):
        """Test a file is moved into quarantine under a timestamped name"""
        victim = tmp_path / "dropper.sh"
        victim.write_text("#!/bin/sh\n", encoding="utf-8")
        result = engine.respond(
            make_verdict(confidence=100, action="isolate_file", evidence=[{"filePath": str(victim)}])
        )
        assert result.success is True
        assert result.target == str(victim)
        assert not victim.exists()
        moved = [p for p in (tmp_path / "quarantine").iterdir() if p.name != "manifest.json"]
        assert len(moved) == 1
        assert moved[0].name.endswith("_dropper.sh")
        assert moved[0].name.split("-", 1)[0].isdigit()

    def test_missing_file(self, engine, make_verdict, tmp_path):
        """Test that a missing file is a failure, not a crash"""
        result = engine.respond(
            make_verdict(
                confidence=100,
                action="isolate_file",
                evidence=[{"filePath": str(tmp_path / "gone.bin")}],
            )
        )
        assert result.success is False
        assert result.details.startswith("Failed:")

    def test_no_quarantine_configured(self, executor, make_verdict, tmp_path):
        """Test an engine without a quarantine directory"""
        eng = RespondEngine(POLICY, "protection", executor=executor)
        result = eng.respond(
            make_verdict(confidence=100, action="isolate_file", evidence=[{"filePath": "/x"}])
        )
        assert result.success is False
