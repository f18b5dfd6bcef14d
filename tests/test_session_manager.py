"""Tests for SessionManager against real /bin/sh processes."""

import asyncio
import os
import signal
import sys

import pytest

from devcontrol.errors import TerminationError, UnknownSessionError
from devcontrol.models import SessionState
from devcontrol.terminal import SessionManager
from tests.utils import SHELL, wait_until_finished

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


class TestExecuteCommand:
    async def test_quick_command_completes_inline(self, manager):
        result = await manager.execute_command("echo hello", timeout_ms=5000)
        assert result.is_blocked is False
        assert result.pid > 0
        assert "hello" in result.output

    async def test_stderr_is_captured(self, manager):
        result = await manager.execute_command("echo oops 1>&2", timeout_ms=5000)
        assert "oops" in result.output

    async def test_completed_session_is_not_listed(self, manager):
        result = await manager.execute_command("echo done", timeout_ms=5000)
        assert result.pid not in [s.pid for s in manager.list_sessions()]
        assert result.pid in [s.pid for s in manager.list_completed()]

    async def test_slow_command_is_blocked_and_keeps_running(self, manager):
        result = await manager.execute_command("sleep 0.5; echo finished", timeout_ms=100)
        assert result.is_blocked is True
        assert result.pid > 0

        listed = {s.pid: s for s in manager.list_sessions()}
        assert result.pid in listed
        assert listed[result.pid].is_blocked is True
        assert listed[result.pid].runtime >= 0

        output, final = await wait_until_finished(manager, result.pid)
        assert "finished" in output
        assert final.exit_code == 0
        assert final.state == SessionState.COMPLETED
        assert final.is_blocked is False
        assert result.pid not in [s.pid for s in manager.list_sessions()]

    async def test_output_before_timeout_is_returned(self, manager):
        result = await manager.execute_command("echo start; sleep 5", timeout_ms=500)
        assert result.is_blocked is True
        assert "start" in result.output
        # The initial output was delivered; it is not repeated
        assert manager.read_output(result.pid).output == ""
        await manager.force_terminate(result.pid)

    async def test_nonzero_exit_code(self, manager):
        result = await manager.execute_command("echo partial; exit 3", timeout_ms=5000)
        assert result.is_blocked is False
        assert "partial" in result.output
        final = manager.read_output(result.pid)
        assert final.completed
        assert final.exit_code == 3

    async def test_missing_shell_reports_pid_minus_one(self, manager):
        result = await manager.execute_command("echo hi", shell="/nonexistent/shell")
        assert result.pid == -1
        assert result.is_blocked is False
        assert "shell not found" in result.output
        assert manager.list_sessions() == []
        assert manager.list_completed() == []

    async def test_missing_working_directory_reports_pid_minus_one(self, manager, tmp_path):
        result = await manager.execute_command("pwd", cwd=str(tmp_path / "missing"))
        assert result.pid == -1
        assert "working directory does not exist" in result.output

    async def test_working_directory(self, manager, tmp_path):
        result = await manager.execute_command("pwd", timeout_ms=5000, cwd=str(tmp_path))
        assert str(tmp_path.resolve()) in result.output

    async def test_default_timeout_is_used(self):
        async with SessionManager(default_shell=SHELL, default_timeout_ms=50) as mgr:
            result = await mgr.execute_command("sleep 2")
            assert result.is_blocked is True

    async def test_large_output_is_truncated(self):
        async with SessionManager(default_shell=SHELL, max_output=100) as mgr:
            result = await mgr.execute_command("printf '%0500d' 0", timeout_ms=5000)
            assert result.is_blocked is False
            assert result.truncated is True
            assert len(result.output) == 100

    async def test_background_child_does_not_hold_session_open(self, manager):
        # The shell exits at once; the backgrounded sleep keeps the pipe open
        result = await manager.execute_command("sleep 4 & echo started", timeout_ms=2000)
        assert result.is_blocked is False
        assert "started" in result.output
        assert result.pid not in [s.pid for s in manager.list_sessions()]
        final = manager.read_output(result.pid)
        assert final.state == SessionState.COMPLETED
        assert final.exit_code == 0

    async def test_session_completes_when_shell_is_killed_externally(self, manager):
        result = await manager.execute_command("sleep 30 & wait", timeout_ms=100)
        assert result.is_blocked is True
        os.kill(result.pid, signal.SIGKILL)
        _, final = await wait_until_finished(manager, result.pid, timeout=5.0)
        assert final.state == SessionState.COMPLETED
        assert final.exit_code == -signal.SIGKILL
        # The orphaned sleep is still in the session's process group
        os.killpg(result.pid, signal.SIGKILL)

    @pytest.mark.parametrize("timeout_ms", ["5000", -1, True])
    async def test_invalid_timeout_starts_nothing(self, manager, timeout_ms):
        with pytest.raises(ValueError):
            await manager.execute_command("sleep 5", timeout_ms=timeout_ms)
        assert manager.list_sessions() == []
        assert manager.list_completed() == []

    async def test_concurrent_sessions(self, manager):
        results = await asyncio.gather(*(
            manager.execute_command(f"sleep 0.3; echo job{i}", timeout_ms=50)
            for i in range(3)
        ))
        pids = {r.pid for r in results}
        assert len(pids) == 3
        assert all(r.is_blocked for r in results)
        assert pids <= {s.pid for s in manager.list_sessions()}

        for i, r in enumerate(results):
            output, final = await wait_until_finished(manager, r.pid)
            assert f"job{i}" in output
            assert final.exit_code == 0


class TestReadOutput:
    async def test_repeated_reads_do_not_duplicate(self, manager):
        result = await manager.execute_command("sleep 5", timeout_ms=50)
        first = manager.read_output(result.pid)
        second = manager.read_output(result.pid)
        assert first.output == ""
        assert second.output == ""
        assert second.is_blocked is True
        await manager.force_terminate(result.pid)

    async def test_incremental_reads(self, manager):
        result = await manager.execute_command(
            "echo one; sleep 0.8; echo two; sleep 5", timeout_ms=300,
        )
        assert "one" in result.output
        await asyncio.sleep(1.0)
        delta = manager.read_output(result.pid)
        assert "two" in delta.output
        assert "one" not in delta.output
        await manager.force_terminate(result.pid)

    async def test_evicted_output_is_flagged_on_incremental_read(self):
        async with SessionManager(default_shell=SHELL, max_output=100, terminate_grace=0.5) as mgr:
            result = await mgr.execute_command(
                "sleep 0.3; printf '%0500d' 0; sleep 5", timeout_ms=100,
            )
            assert result.is_blocked is True
            assert result.truncated is False
            await asyncio.sleep(0.8)

            delta = mgr.read_output(result.pid)
            assert delta.truncated is True
            assert len(delta.output) == 100
            assert delta.to_dict()["truncated"] is True

            assert mgr.read_output(result.pid).truncated is False

    async def test_terminal_read_happens_once(self, manager):
        result = await manager.execute_command("echo hi", timeout_ms=5000)
        final = manager.read_output(result.pid)
        assert final.completed
        assert final.output == ""  # already delivered by execute_command
        with pytest.raises(UnknownSessionError):
            manager.read_output(result.pid)

    async def test_unknown_pid(self, manager):
        with pytest.raises(UnknownSessionError) as excinfo:
            manager.read_output(999_999_999)
        assert "999999999" in str(excinfo.value)

    async def test_completed_sessions_expire(self):
        async with SessionManager(default_shell=SHELL, completed_ttl=0) as mgr:
            result = await mgr.execute_command("true", timeout_ms=5000)
            assert result.is_blocked is False
            with pytest.raises(UnknownSessionError):
                mgr.read_output(result.pid)


class TestForceTerminate:
    async def test_terminate_running_session(self, manager):
        result = await manager.execute_command("echo before; sleep 30", timeout_ms=200)
        assert result.is_blocked is True

        assert await manager.force_terminate(result.pid) is True
        assert result.pid not in [s.pid for s in manager.list_sessions()]

        final = manager.read_output(result.pid)
        assert final.completed
        assert final.state == SessionState.TERMINATED
        assert final.exit_code == 143

    async def test_partial_output_survives_termination(self, manager):
        result = await manager.execute_command("sleep 0.2; echo late; sleep 30", timeout_ms=50)
        await asyncio.sleep(0.5)
        await manager.force_terminate(result.pid)
        final = manager.read_output(result.pid)
        assert "late" in final.output

    async def test_escalates_to_sigkill(self, manager):
        # Ignored SIGTERM is inherited by the sleep child as well
        result = await manager.execute_command("trap '' TERM; sleep 30", timeout_ms=100)
        assert result.is_blocked is True

        assert await manager.force_terminate(result.pid) is True
        final = manager.read_output(result.pid)
        assert final.state == SessionState.TERMINATED
        assert final.exit_code == 137

    async def test_undeliverable_signal_leaves_session_active(self, manager, monkeypatch):
        result = await manager.execute_command("sleep 30", timeout_ms=50)

        def refuse(process, force=False):
            raise PermissionError(1, "Operation not permitted")

        monkeypatch.setattr("devcontrol.terminal.manager.signal_tree", refuse)
        with pytest.raises(TerminationError):
            await manager.force_terminate(result.pid)
        assert result.pid in [s.pid for s in manager.list_sessions()]

        monkeypatch.undo()
        assert await manager.force_terminate(result.pid) is True
        assert result.pid not in [s.pid for s in manager.list_sessions()]
        assert manager.read_output(result.pid).state == SessionState.TERMINATED

    async def test_already_completed_is_confirmed(self, manager):
        result = await manager.execute_command("true", timeout_ms=5000)
        assert await manager.force_terminate(result.pid) is True
        # Terminating a finished session does not change how it ended
        final = manager.read_output(result.pid)
        assert final.state == SessionState.COMPLETED
        assert final.exit_code == 0

    async def test_unknown_pid(self, manager):
        with pytest.raises(UnknownSessionError):
            await manager.force_terminate(999_999_999)


class TestLifecycle:
    async def test_pid_is_in_exactly_one_place(self, manager):
        result = await manager.execute_command("sleep 0.3", timeout_ms=50)
        active = {s.pid for s in manager.list_sessions()}
        completed = {s.pid for s in manager.list_completed()}
        assert (result.pid in active) != (result.pid in completed)

        await wait_until_finished(manager, result.pid)
        assert result.pid not in {s.pid for s in manager.list_sessions()}

    async def test_shutdown_terminates_active_sessions(self):
        mgr = SessionManager(default_shell=SHELL, terminate_grace=0.5)
        result = await mgr.execute_command("sleep 30", timeout_ms=50)
        assert result.is_blocked is True

        await mgr.shutdown()
        assert mgr.closed
        assert mgr.list_sessions() == []
        with pytest.raises(UnknownSessionError):
            mgr.read_output(result.pid)
        with pytest.raises(RuntimeError):
            await mgr.execute_command("echo too late")

    async def test_shutdown_is_idempotent(self):
        mgr = SessionManager(default_shell=SHELL)
        await mgr.shutdown()
        await mgr.shutdown()
        assert mgr.closed
