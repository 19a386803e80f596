from __future__ import annotations

from starlette.requests import Request

from dbaas.services.orchestrator import ProvisioningOrchestrator


def get_orchestrator(request: Request) -> ProvisioningOrchestrator:
    return request.app.state.orchestrator
