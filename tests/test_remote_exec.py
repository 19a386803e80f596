from __future__ import annotations

from pathlib import Path

import pytest

from dbaas.services.errors import RemoteExecutionException
from dbaas.services.remote_exec import RemoteExecutor
from tests.fakes import ScriptedRunner, completed


def test_run_builds_ssh_invocation_and_trims_output() -> None:
    runner = ScriptedRunner(lambda cmd: completed(cmd, stdout="  10.5.21-MariaDB \n"))
    executor = RemoteExecutor(user="ops", port=2222, key_file=Path("/keys/id_ed25519"), runner=runner)

    out = executor.run("db01", "mysql --version")

    assert out == "10.5.21-MariaDB"
    cmd = runner.calls[0]
    assert cmd[0] == "ssh"
    assert "BatchMode=yes" in cmd
    assert cmd[cmd.index("-p") + 1] == "2222"
    assert cmd[cmd.index("-i") + 1] == "/keys/id_ed25519"
    assert cmd[-2:] == ["ops@db01", "mysql --version"]


def test_run_flags_connection_failures() -> None:
    runner = ScriptedRunner(
        lambda cmd: completed(cmd, returncode=255, stderr="ssh: Could not resolve hostname db01")
    )
    executor = RemoteExecutor(user="ops", runner=runner)

    with pytest.raises(RemoteExecutionException) as exc_info:
        executor.run("db01", "true")
    assert exc_info.value.connection_failed is True
    assert exc_info.value.kind == "RemoteExecutionFailure"


def test_run_reports_remote_exit_status() -> None:
    runner = ScriptedRunner(lambda cmd: completed(cmd, returncode=100, stderr="E: Unable to locate package"))
    executor = RemoteExecutor(user="ops", runner=runner)

    with pytest.raises(RemoteExecutionException) as exc_info:
        executor.run("db01", "sudo apt-get install -y nothing")
    assert exc_info.value.connection_failed is False
    assert "Unable to locate package" in str(exc_info.value)


def test_is_reachable() -> None:
    up = RemoteExecutor(user="ops", runner=ScriptedRunner())
    down = RemoteExecutor(user="ops", runner=ScriptedRunner(lambda cmd: completed(cmd, returncode=255)))
    assert up.is_reachable("db01") is True
    assert down.is_reachable("db01") is False


def test_per_call_timeout_overrides_executor_timeout() -> None:
    runner = ScriptedRunner()
    executor = RemoteExecutor(user="ops", timeout_sec=900, runner=runner)

    executor.run("db01", "mysql --version")
    executor.is_reachable("db01", timeout=4)

    assert runner.timeouts == [900, 4]
