from __future__ import annotations

import pytest

from dbaas.services.bootstrap import (
    INSTALL_IF_MISSING,
    START_IF_STOPPED,
    DatabaseBootstrapper,
    build_database_sql,
    validate_identifier,
)
from dbaas.services.errors import (
    DatabaseBootstrapException,
    InvalidRequestException,
    RemoteExecutionException,
)
from dbaas.services.remote_exec import RemoteExecutor
from tests.fakes import ScriptedRunner, completed


def _bootstrapper(runner: ScriptedRunner) -> DatabaseBootstrapper:
    return DatabaseBootstrapper(executor=RemoteExecutor(user="ops", runner=runner))


def _remote_commands(runner: ScriptedRunner) -> list[str]:
    return [cmd[-1] for cmd in runner.calls]


def test_bootstrap_installs_starts_and_configures_database() -> None:
    runner = ScriptedRunner()
    _bootstrapper(runner).bootstrap("db01", "app", "appuser", "secret")

    commands = _remote_commands(runner)
    assert commands[:2] == [INSTALL_IF_MISSING, START_IF_STOPPED]
    assert len(commands) == 3
    assert commands[2].startswith("sudo mysql -e ")
    assert "CREATE DATABASE IF NOT EXISTS `app`" in commands[2]
    assert "CREATE USER IF NOT EXISTS 'appuser'@'%'" in commands[2]
    assert "GRANT ALL PRIVILEGES ON `app`.* TO 'appuser'@'%'" in commands[2]
    assert all(cmd[-2] == "ops@db01" for cmd in runner.calls)


def test_bootstrap_twice_issues_the_same_guarded_commands() -> None:
    runner = ScriptedRunner()
    bootstrapper = _bootstrapper(runner)

    bootstrapper.bootstrap("db01", "app", "appuser", "secret")
    first = _remote_commands(runner)
    bootstrapper.bootstrap("db01", "app", "appuser", "secret")

    assert _remote_commands(runner) == first + first


def test_bootstrap_without_database_only_prepares_engine() -> None:
    runner = ScriptedRunner()
    _bootstrapper(runner).bootstrap("db01", None)
    assert _remote_commands(runner) == [INSTALL_IF_MISSING, START_IF_STOPPED]


@pytest.mark.parametrize(
    ("database_name", "username", "password", "message"),
    [
        ("app;drop", "appuser", "secret", "Database name"),
        ("app", "app user", "secret", "Database user"),
        ("app", None, "secret", "Database user required"),
        ("app", "appuser", "", "Database password required"),
        ("x" * 65, "appuser", "secret", "Database name"),
    ],
)
def test_bootstrap_rejects_invalid_input_before_touching_host(database_name, username, password, message) -> None:
    runner = ScriptedRunner()
    with pytest.raises(InvalidRequestException) as exc_info:
        _bootstrapper(runner).bootstrap("db01", database_name, username, password)
    assert message in str(exc_info.value)
    assert runner.calls == []


def test_validate_identifier_accepts_boundaries() -> None:
    assert validate_identifier("a", label="Database name") == "a"
    assert validate_identifier("A_9" * 21 + "z", label="Database name") == "A_9" * 21 + "z"


def test_bootstrap_wraps_remote_failures() -> None:
    def handler(cmd):
        if "apt-get" in cmd[-1]:
            return completed(cmd, returncode=100, stderr="E: Could not get lock /var/lib/dpkg/lock-frontend")
        return completed(cmd)

    with pytest.raises(DatabaseBootstrapException) as exc_info:
        _bootstrapper(ScriptedRunner(handler)).bootstrap("db01", "app", "appuser", "secret")
    assert "failed to install database engine" in str(exc_info.value)
    assert exc_info.value.kind == "DatabaseBootstrapFailure"


def test_bootstrap_passes_connection_failures_through() -> None:
    runner = ScriptedRunner(lambda cmd: completed(cmd, returncode=255, stderr="ssh: connect to host db01 port 22: No route to host"))
    with pytest.raises(RemoteExecutionException) as exc_info:
        _bootstrapper(runner).bootstrap("db01", "app", "appuser", "secret")
    assert exc_info.value.connection_failed is True


@pytest.mark.parametrize("password", ["s3cretpw", "it's-a-secret"])
def test_bootstrap_failure_does_not_leak_password(password: str) -> None:
    def handler(cmd):
        if cmd[-1].startswith("sudo mysql"):
            return completed(cmd, returncode=1, stderr="ERROR 1396 (HY000): Operation CREATE USER failed")
        return completed(cmd)

    with pytest.raises(DatabaseBootstrapException) as exc_info:
        _bootstrapper(ScriptedRunner(handler)).bootstrap("db01", "app", "appuser", password)
    message = str(exc_info.value)
    assert "CREATE USER failed" in message
    assert password not in message
    assert "secret" not in message


def test_build_database_sql_escapes_password_quotes() -> None:
    sql = build_database_sql("app", "appuser", "it's")
    assert "IDENTIFIED BY 'it\\'s'" in sql
