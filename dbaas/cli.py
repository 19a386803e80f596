from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import Iterator

import typer
import uvicorn
import yaml
from fastapi.encoders import jsonable_encoder

from dbaas.logging_config import configure_logging
from dbaas.models import ProvisionRequest, WorkflowOutcome
from dbaas.services.audit import build_audit_sink
from dbaas.services.errors import DbaasException
from dbaas.services.orchestrator import ProvisioningOrchestrator
from dbaas.settings import get_settings

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="dbaas CLI", pretty_exceptions_show_locals=False)


@contextmanager
def _orchestrator() -> Iterator[ProvisioningOrchestrator]:
    settings = get_settings()
    with build_audit_sink(settings) as audit:
        yield ProvisioningOrchestrator.from_settings(settings, audit=audit)


def _exit_for_domain_error(exc: DbaasException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


def _echo_outcome(outcome: WorkflowOutcome) -> None:
    if not outcome.success:
        typer.echo(f"Error: {outcome.message}", err=True)
        raise typer.Exit(code=1)
    _echo_yaml_entity(outcome)


@app.command("provision")
def provision(
    vm_name: str,
    db_name: str | None = typer.Option(None, "--db-name", help="Database to create inside the VM."),
    db_user: str | None = typer.Option(None, "--db-user", help="User granted full privileges on the database."),
    db_password: str | None = typer.Option(
        None,
        "--db-password",
        envvar="DBAAS_DB_PASSWORD",
        help="Password for --db-user (may be supplied via DBAAS_DB_PASSWORD).",
    ),
) -> None:
    request = ProvisionRequest(
        vm_name=vm_name,
        database_name=db_name,
        database_user=db_user,
        database_password=db_password,
    )
    with _orchestrator() as orchestrator:
        outcome = orchestrator.provision(request)
    _echo_outcome(outcome)


@app.command("decommission")
def decommission(vm_name: str) -> None:
    with _orchestrator() as orchestrator:
        outcome = orchestrator.decommission(vm_name)
    _echo_outcome(outcome)


@app.command("list-vms")
def list_vms() -> None:
    with _orchestrator() as orchestrator:
        outcome = orchestrator.enumerate()
    _echo_outcome(outcome)


@app.command("describe-vm")
def describe_vm(vm_name: str) -> None:
    with _orchestrator() as orchestrator:
        try:
            descriptor = orchestrator.describe(vm_name)
        except DbaasException as e:
            _exit_for_domain_error(e)
    _echo_yaml_entity(descriptor)


@app.command("audit-log")
def audit_log(limit: int = typer.Option(100, "--limit", min=1, help="Most recent records to show.")) -> None:
    with build_audit_sink(get_settings()) as audit:
        _echo_yaml_entity(audit.list_records(limit=limit))


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8080, "--port"),
) -> None:
    uvicorn.run("dbaas.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
