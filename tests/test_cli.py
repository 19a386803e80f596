from __future__ import annotations

from typing import Any

import yaml

from dbaas.services.audit import JsonlAuditSink
from dbaas.services.errors import HypervisorException
from dbaas.settings import get_settings


def _stdout(result) -> str:
    return getattr(result, "stdout", result.output)


def _parse_yaml_stdout(result) -> Any:
    return yaml.safe_load(_stdout(result))


def test_cli_vm_lifecycle(cli_runner, harness):
    runner, app = cli_runner

    result = runner.invoke(
        app,
        ["provision", "db01", "--db-name", "app", "--db-user", "appuser"],
        env={"DBAAS_DB_PASSWORD": "secret"},
    )
    assert result.exit_code == 0, result.output
    outcome = _parse_yaml_stdout(result)
    assert outcome["success"] is True
    assert outcome["message"] == "VM db01 created and MariaDB configured"
    assert harness.bootstrapper.calls[0][1]["password"] == "secret"

    result = runner.invoke(app, ["list-vms"])
    assert result.exit_code == 0
    assert _parse_yaml_stdout(result)["data"] == ["db01"]

    result = runner.invoke(app, ["describe-vm", "db01"])
    assert result.exit_code == 0
    assert _parse_yaml_stdout(result) == {"name": "db01", "state": "running"}

    result = runner.invoke(app, ["decommission", "db01"])
    assert result.exit_code == 0
    assert _parse_yaml_stdout(result)["message"] == "VM db01 deleted"
    assert harness.hypervisor.vms == []


def test_cli_failure_exits_non_zero(cli_runner, harness):
    runner, app = cli_runner
    harness.hypervisor.raise_on_list = HypervisorException("VBoxSVC unavailable")

    result = runner.invoke(app, ["list-vms"])

    assert result.exit_code == 1
    assert "Error: failed to list VMs: VBoxSVC unavailable" in result.output


def test_cli_rejects_credentials_without_database(cli_runner, harness):
    runner, app = cli_runner

    result = runner.invoke(app, ["provision", "db01", "--db-user", "appuser", "--db-password", "secret"])

    assert result.exit_code == 1
    assert "Database credentials given without a database name" in result.output
    assert harness.hypervisor.calls == []


def test_cli_audit_log(cli_runner):
    runner, app = cli_runner
    with JsonlAuditSink(get_settings().audit_log_path) as sink:
        sink.record("create", "VM: db01, DB: app")
        sink.record("view", "Listed VMs")

    result = runner.invoke(app, ["audit-log", "--limit", "1"])

    assert result.exit_code == 0
    records = _parse_yaml_stdout(result)
    assert [(r["action"], r["details"]) for r in records] == [("view", "Listed VMs")]
