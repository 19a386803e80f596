from __future__ import annotations

from fastapi import APIRouter, Depends

from dbaas.api.dependencies import get_orchestrator
from dbaas.models import VM_STATE_ABSENT, VMDescriptor, WorkflowOutcome
from dbaas.services.errors import NotFoundException
from dbaas.services.orchestrator import ProvisioningOrchestrator

router = APIRouter(prefix="/vms", tags=["vms"])


@router.get("", response_model=WorkflowOutcome)
def list_vms(orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator)) -> WorkflowOutcome:
    return orchestrator.enumerate()


@router.get("/{vm_name}", response_model=VMDescriptor)
def describe_vm(vm_name: str, orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator)) -> VMDescriptor:
    descriptor = orchestrator.describe(vm_name)
    if descriptor.state == VM_STATE_ABSENT:
        raise NotFoundException(f"VM {vm_name} not found")
    return descriptor


@router.post("/{vm_name}/cancel", response_model=WorkflowOutcome)
def cancel_workflow(vm_name: str, orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator)) -> WorkflowOutcome:
    if orchestrator.cancel(vm_name):
        return WorkflowOutcome(success=True, message=f"Cancellation requested for VM {vm_name}")
    return WorkflowOutcome(success=False, message=f"No workflow in progress for VM {vm_name}")
