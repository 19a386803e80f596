from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient
from typer.testing import CliRunner

from dbaas.api.dependencies import get_orchestrator
from dbaas.services.orchestrator import ProvisioningOrchestrator, ReadinessPolicy
from dbaas.settings import get_settings
from tests.fakes import FakeBootstrapper, FakeExecutor, FakeHypervisor, RecordingAuditSink


@dataclass
class Harness:
    hypervisor: FakeHypervisor
    bootstrapper: FakeBootstrapper
    executor: FakeExecutor
    audit: RecordingAuditSink

    def orchestrator(self, **kwargs) -> ProvisioningOrchestrator:
        kwargs.setdefault("readiness", ReadinessPolicy(timeout_sec=0, interval_sec=0, max_interval_sec=0))
        return ProvisioningOrchestrator(
            hypervisor=self.hypervisor,
            bootstrapper=self.bootstrapper,
            executor=self.executor,
            audit=self.audit,
            **kwargs,
        )


@pytest.fixture
def harness() -> Harness:
    return Harness(
        hypervisor=FakeHypervisor(),
        bootstrapper=FakeBootstrapper(),
        executor=FakeExecutor(),
        audit=RecordingAuditSink(),
    )


@pytest.fixture
def memory_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DBAAS_AUDIT_LOG_PATH", str(tmp_path / "logs" / "activity.log"))
    monkeypatch.setenv("DBAAS_DATABASE_URL", f"sqlite:///{tmp_path / 'dbaas.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client(harness):
    from dbaas.main import app

    orchestrator = harness.orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture()
def cli_runner(harness, monkeypatch):
    import dbaas.cli as cli

    orchestrator = harness.orchestrator()

    @contextmanager
    def fake_orchestrator():
        yield orchestrator

    monkeypatch.setattr(cli, "_orchestrator", fake_orchestrator)
    return CliRunner(), cli.app
