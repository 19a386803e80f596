from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Callable

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_exponential

from dbaas.models import ProvisionRequest, VMDescriptor, WorkflowOutcome
from dbaas.proc import CommandRunner
from dbaas.services.audit import AuditSink
from dbaas.services.bootstrap import DatabaseBootstrapper, validate_identifier
from dbaas.services.errors import (
    DbaasException,
    InvalidRequestException,
    RemoteExecutionException,
    WorkflowCancelledException,
)
from dbaas.services.hypervisor import VBoxAdapter
from dbaas.services.inflight import InFlightRegistry
from dbaas.services.remote_exec import RemoteExecutor
from dbaas.settings import Settings

logger = logging.getLogger(__name__)

Compensation = tuple[str, Callable[[], None]]

_MIN_PROBE_TIMEOUT_SEC = 1.0


@dataclass(frozen=True)
class ReadinessPolicy:
    timeout_sec: float = 300.0
    interval_sec: float = 2.0
    max_interval_sec: float = 30.0
    # Upper bound for a single reachability check.
    probe_timeout_sec: float = 20.0


class ProvisioningOrchestrator:
    """Runs the provision, decommission and enumerate workflows.

    Steps inside a workflow run strictly one after the other and the first
    failure ends the workflow. Provisioning is not atomic: unless
    ``rollback_on_failure`` is set, a VM created before a later step failed is
    left in place and the outcome message says so.
    """

    def __init__(
        self,
        *,
        hypervisor: VBoxAdapter,
        bootstrapper: DatabaseBootstrapper,
        executor: RemoteExecutor,
        audit: AuditSink,
        registry: InFlightRegistry | None = None,
        readiness: ReadinessPolicy | None = None,
        rollback_on_failure: bool = False,
    ) -> None:
        self._hypervisor = hypervisor
        self._bootstrapper = bootstrapper
        self._executor = executor
        self._audit = audit
        self._registry = registry or InFlightRegistry()
        self._readiness = readiness or ReadinessPolicy()
        self._rollback_on_failure = rollback_on_failure

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        audit: AuditSink,
        runner: CommandRunner | None = None,
    ) -> "ProvisioningOrchestrator":
        executor = RemoteExecutor(
            user=settings.ssh_user,
            port=settings.ssh_port,
            key_file=settings.ssh_key_file,
            connect_timeout_sec=settings.ssh_connect_timeout_sec,
            timeout_sec=settings.remote_timeout_sec,
            ssh_executable=settings.ssh_executable,
            runner=runner,
        )
        return cls(
            hypervisor=VBoxAdapter.from_settings(settings, runner=runner),
            bootstrapper=DatabaseBootstrapper(executor=executor),
            executor=executor,
            audit=audit,
            readiness=ReadinessPolicy(
                timeout_sec=settings.ready_timeout_sec,
                interval_sec=settings.ready_interval_sec,
                max_interval_sec=settings.ready_max_interval_sec,
                probe_timeout_sec=settings.ssh_connect_timeout_sec * 2,
            ),
            rollback_on_failure=settings.rollback_on_failure,
        )

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    def provision(self, request: ProvisionRequest, *, cancel: threading.Event | None = None) -> WorkflowOutcome:
        try:
            self._validate_provision(request)
            with self._registry.admit(request.vm_name, cancel) as event:
                return self._run_provision(request, event)
        except DbaasException as exc:
            return self._failure(exc)

    def decommission(self, vm_name: str, *, cancel: threading.Event | None = None) -> WorkflowOutcome:
        try:
            _require_vm_name(vm_name)
            with self._registry.admit(vm_name, cancel) as event:
                try:
                    self._hypervisor.delete_vm(vm_name, cancel=event)
                except DbaasException as exc:
                    return self._failure(exc, stage="failed to delete VM")
        except DbaasException as exc:
            return self._failure(exc)

        self._audit_success("delete", f"VM: {vm_name}")
        return WorkflowOutcome(success=True, message=f"VM {vm_name} deleted")

    def enumerate(self, *, cancel: threading.Event | None = None) -> WorkflowOutcome:
        try:
            names = self._hypervisor.list_vms(cancel=cancel)
        except DbaasException as exc:
            return self._failure(exc, stage="failed to list VMs")

        self._audit_success("view", "Listed VMs")
        return WorkflowOutcome(success=True, message="VMs listed", data=names)

    def describe(self, vm_name: str) -> VMDescriptor:
        _require_vm_name(vm_name)
        return self._hypervisor.describe_vm(vm_name)

    def cancel(self, vm_name: str) -> bool:
        return self._registry.cancel(vm_name)

    def _validate_provision(self, request: ProvisionRequest) -> None:
        _require_vm_name(request.vm_name)
        if request.database_name:
            validate_identifier(request.database_name, label="Database name")
            validate_identifier(request.database_user, label="Database user")
            if not request.database_password:
                raise InvalidRequestException("Database password required")
        elif request.database_user or request.database_password:
            raise InvalidRequestException("Database credentials given without a database name")

    def _run_provision(self, request: ProvisionRequest, cancel: threading.Event) -> WorkflowOutcome:
        name = request.vm_name
        compensations: list[Compensation] = []
        delete_vm = (f"delete VM {name}", lambda: self._hypervisor.delete_vm(name))

        try:
            self._hypervisor.create_vm(name, cancel=cancel)
        except DbaasException as exc:
            steps = exc.completed_steps
            if "register" in steps:
                compensations.append(delete_vm)
            # unregistervm --delete only removes disks that are attached.
            if "create-disk" in steps and "attach-disk" not in steps:
                compensations.append((f"delete disk of VM {name}", lambda: self._hypervisor.delete_disk(name)))
            left_behind = f"VM {name} was left partially created" if compensations else None
            return self._failure(exc, stage="failed to create VM", compensations=compensations, left_behind=left_behind)
        compensations.append(delete_vm)

        credential = request.credential
        if credential is not None:
            left_behind = f"VM {name} was left running without database configuration"
            try:
                self._wait_until_reachable(name, cancel)
            except DbaasException as exc:
                return self._failure(exc, stage="VM not reachable", compensations=compensations, left_behind=left_behind)
            try:
                self._bootstrapper.bootstrap(
                    name,
                    credential.database_name,
                    credential.username,
                    credential.password,
                    cancel=cancel,
                )
            except DbaasException as exc:
                return self._failure(
                    exc, stage="failed to configure database", compensations=compensations, left_behind=left_behind
                )

        self._audit_success("create", f"VM: {name}, DB: {request.database_name or ''}")
        if credential is None:
            return WorkflowOutcome(success=True, message=f"VM {name} created")
        return WorkflowOutcome(success=True, message=f"VM {name} created and MariaDB configured")

    def _wait_until_reachable(self, host: str, cancel: threading.Event) -> None:
        policy = self._readiness
        deadline = time.monotonic() + policy.timeout_sec

        def sleep(seconds: float) -> None:
            if cancel.wait(seconds):
                raise WorkflowCancelledException(f"Waiting for {host} was cancelled")

        def probe() -> bool:
            remaining = max(deadline - time.monotonic(), _MIN_PROBE_TIMEOUT_SEC)
            return self._executor.is_reachable(host, cancel=cancel, timeout=min(policy.probe_timeout_sec, remaining))

        retrying = Retrying(
            stop=stop_after_delay(policy.timeout_sec),
            wait=wait_exponential(multiplier=policy.interval_sec, max=policy.max_interval_sec),
            retry=retry_if_result(lambda reachable: not reachable),
            sleep=sleep,
        )
        logger.info("Waiting up to %ss for %s to accept remote commands", policy.timeout_sec, host)
        try:
            retrying(probe)
        except RetryError as exc:
            attempts = exc.last_attempt.attempt_number
            raise RemoteExecutionException(
                f"host {host} did not accept remote commands within {policy.timeout_sec}s ({attempts} attempts)",
                connection_failed=True,
            ) from exc
        logger.info("Host %s is reachable", host)

    def _failure(
        self,
        exc: DbaasException,
        *,
        stage: str | None = None,
        compensations: list[Compensation] | None = None,
        left_behind: str | None = None,
    ) -> WorkflowOutcome:
        message = f"{stage}: {exc}" if stage else str(exc)
        if compensations and self._rollback_on_failure:
            message = f"{message}; rollback: {self._compensate(compensations)}"
        elif left_behind:
            message = f"{message}; {left_behind} (provisioning is not atomic)"
        logger.warning("Workflow failed (%s): %s", exc.kind, message)
        return WorkflowOutcome(success=False, message=message, error=exc.kind)

    @staticmethod
    def _compensate(compensations: list[Compensation]) -> str:
        results = []
        for label, action in reversed(compensations):
            try:
                action()
            except DbaasException as exc:
                logger.error("Compensation '%s' failed: %s", label, exc)
                results.append(f"{label} failed: {exc}")
            else:
                logger.info("Compensation '%s' done", label)
                results.append(f"{label} done")
        return "; ".join(results)

    def _audit_success(self, action: str, details: str) -> None:
        try:
            self._audit.record(action, details)
        except Exception:
            logger.exception("Failed to write audit record action=%s details=%s", action, details)


def _require_vm_name(vm_name: str | None) -> None:
    if not vm_name or not vm_name.strip():
        raise InvalidRequestException("VM name required")
