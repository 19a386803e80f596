from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from dbaas.api.dependencies import get_orchestrator
from dbaas.models import CommandRequest, WorkflowOutcome
from dbaas.services.errors import InvalidRequestException
from dbaas.services.orchestrator import ProvisioningOrchestrator

router = APIRouter(tags=["command"])
logger = logging.getLogger(__name__)


@router.post("/command", response_model=WorkflowOutcome)
def handle_command(
    payload: CommandRequest,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
) -> WorkflowOutcome:
    """Run one workflow; application failures come back as ``success=false`` with HTTP 200."""
    logger.info("Received command action=%s vm_name=%s", payload.action, payload.vm_name)
    if payload.action == "create":
        return orchestrator.provision(payload.to_provision_request())
    if payload.action == "delete":
        return orchestrator.decommission(payload.vm_name)
    if payload.action == "view":
        return orchestrator.enumerate()
    return WorkflowOutcome(success=False, message="Unknown action", error=InvalidRequestException.kind)
