from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import threading
from typing import get_args

from dbaas.models import (
    VM_STATE_ABSENT,
    VM_STATE_CREATED,
    VM_STATE_RUNNING,
    VM_STATE_STOPPED,
    VMDescriptor,
)
from dbaas.proc import AdapterCommandError, CommandCancelled, CommandRunner, CommandResult, run_command
from dbaas.services.errors import HypervisorException, WorkflowCancelledException
from dbaas.settings import DiskMode, Settings

logger = logging.getLogger(__name__)

STORAGE_CONTROLLER = "SATA"

_STOPPED_STATES = ("poweroff", "aborted", "saved")
_NOT_REGISTERED_MARKERS = ("could not find a registered machine", "vbox_e_object_not_found")


@dataclass(frozen=True)
class DiskSource:
    """Where a new VM's disk comes from.

    ``per-vm`` creates a fresh VDI of ``size_mb`` in ``directory`` (the current
    directory when unset). ``shared`` attaches the golden image at ``path`` as a
    multi-attach medium.
    """

    mode: DiskMode = "per-vm"
    size_mb: int = 10000
    directory: Path | None = None
    path: Path | None = None

    def __post_init__(self) -> None:
        if self.mode not in get_args(DiskMode):
            raise ValueError(f"Unknown disk mode {self.mode!r}")
        if self.mode == "shared" and self.path is None:
            raise ValueError("Shared disk mode requires an image path")

    def medium_for(self, vm_name: str) -> Path:
        if self.mode == "shared":
            return self.path
        filename = f"{vm_name}.vdi"
        return self.directory / filename if self.directory is not None else Path(filename)


@dataclass(frozen=True)
class VMResources:
    cpus: int = 1
    memory_mb: int = 1024
    ostype: str = "Ubuntu_64"


class VBoxAdapter:
    """Adapter for VM lifecycle operations through VBoxManage."""

    def __init__(
        self,
        *,
        resources: VMResources | None = None,
        disk: DiskSource | None = None,
        start_headless: bool = True,
        timeout_sec: float | None = None,
        executable: str = "VBoxManage",
        runner: CommandRunner | None = None,
    ) -> None:
        self._resources = resources or VMResources()
        self._disk = disk or DiskSource()
        self._start_type = "headless" if start_headless else "gui"
        self._timeout_sec = timeout_sec
        self._executable = executable
        self._runner = runner

    @classmethod
    def from_settings(cls, settings: Settings, *, runner: CommandRunner | None = None) -> "VBoxAdapter":
        return cls(
            resources=VMResources(
                cpus=settings.vm_cpus,
                memory_mb=settings.vm_memory_mb,
                ostype=settings.vm_ostype,
            ),
            disk=DiskSource(
                mode=settings.disk_mode,
                size_mb=settings.disk_size_mb,
                directory=settings.disk_dir,
                path=settings.shared_disk_path,
            ),
            start_headless=settings.start_headless,
            timeout_sec=settings.hypervisor_timeout_sec,
            executable=settings.vboxmanage,
            runner=runner,
        )

    def create_vm(
        self,
        name: str,
        *,
        disk: DiskSource | None = None,
        cancel: threading.Event | None = None,
    ) -> VMDescriptor:
        """Register, configure, attach storage to and start a new VM.

        Stops at the first failing sub-step without undoing earlier ones; the
        raised exception lists the sub-steps that did complete.
        """
        source = disk or self._disk
        medium = source.medium_for(name)
        res = self._resources
        logger.info("Creating VM %s (cpus=%s memory=%sMB disk=%s)", name, res.cpus, res.memory_mb, source.mode)

        steps: list[tuple[str, list[str], str]] = [
            (
                "register",
                ["createvm", "--name", name, "--ostype", res.ostype, "--register"],
                f"Failed to create VM {name}",
            ),
            (
                "configure",
                ["modifyvm", name, "--memory", str(res.memory_mb), "--cpus", str(res.cpus)],
                f"Failed to modify VM {name}",
            ),
        ]
        if source.mode == "per-vm":
            steps.append(
                (
                    "create-disk",
                    ["createmedium", "disk", "--filename", str(medium), "--size", str(source.size_mb), "--format", "VDI"],
                    f"Failed to create disk {medium}",
                )
            )
        attach = [
            "storageattach", name,
            "--storagectl", STORAGE_CONTROLLER,
            "--port", "0",
            "--device", "0",
            "--type", "hdd",
            "--medium", str(medium),
        ]
        if source.mode == "shared":
            attach.extend(["--mtype", "multiattach"])
        steps.extend(
            [
                (
                    "add-controller",
                    ["storagectl", name, "--name", STORAGE_CONTROLLER, "--add", "sata"],
                    f"Failed to add storage controller to VM {name}",
                ),
                ("attach-disk", attach, f"Failed to attach disk to VM {name}"),
                ("start", ["startvm", name, "--type", self._start_type], f"Failed to start VM {name}"),
            ]
        )

        completed: list[str] = []
        for step, args, error_message in steps:
            try:
                self._vboxmanage(args, error_message=error_message, cancel=cancel)
            except AdapterCommandError as exc:
                logger.warning("VM %s creation failed at step %s after %s", name, step, completed)
                raise HypervisorException(str(exc), completed_steps=completed) from exc
            except CommandCancelled as exc:
                raise WorkflowCancelledException(
                    f"VM {name} creation cancelled at step {step}", completed_steps=completed
                ) from exc
            completed.append(step)
            logger.debug("VM %s: %s done", name, step)

        logger.info("Created and started VM %s", name)
        return VMDescriptor(name=name, state=VM_STATE_RUNNING)

    def delete_vm(self, name: str, *, cancel: threading.Event | None = None) -> None:
        logger.info("Deleting VM %s", name)
        try:
            self._vboxmanage(["controlvm", name, "poweroff"], error_message=f"Failed to power off VM {name}", cancel=cancel)
        except AdapterCommandError as exc:
            # Already stopped or absent VMs refuse poweroff; deletion must go on.
            logger.debug("Ignoring power-off failure for VM %s: %s", name, exc)
        except CommandCancelled as exc:
            raise WorkflowCancelledException(f"Deletion of VM {name} was cancelled") from exc

        try:
            self._vboxmanage(["unregistervm", name, "--delete"], error_message=f"Failed to delete VM {name}", cancel=cancel)
        except AdapterCommandError as exc:
            raise HypervisorException(str(exc)) from exc
        except CommandCancelled as exc:
            raise WorkflowCancelledException(f"Deletion of VM {name} was cancelled") from exc
        logger.info("Deleted VM %s", name)

    def delete_disk(self, name: str, *, cancel: threading.Event | None = None) -> None:
        """Close and delete the per-VM disk created for ``name``.

        Only needed when the disk never got attached: ``unregistervm --delete``
        removes attached disks along with the VM. The shared image is never
        touched.
        """
        if self._disk.mode != "per-vm":
            return
        medium = self._disk.medium_for(name)
        logger.info("Deleting disk %s of VM %s", medium, name)
        try:
            self._vboxmanage(
                ["closemedium", "disk", str(medium), "--delete"],
                error_message=f"Failed to delete disk {medium}",
                cancel=cancel,
            )
        except AdapterCommandError as exc:
            raise HypervisorException(str(exc)) from exc
        except CommandCancelled as exc:
            raise WorkflowCancelledException(f"Deletion of disk {medium} was cancelled") from exc

    def list_vms(self, *, cancel: threading.Event | None = None) -> list[str]:
        try:
            result = self._vboxmanage(["list", "vms"], error_message="Failed to list VMs", cancel=cancel)
        except AdapterCommandError as exc:
            raise HypervisorException(str(exc)) from exc
        except CommandCancelled as exc:
            raise WorkflowCancelledException("Listing VMs was cancelled") from exc
        names = parse_vm_list(result.stdout)
        logger.debug("Hypervisor reports %s VMs", len(names))
        return names

    def describe_vm(self, name: str, *, cancel: threading.Event | None = None) -> VMDescriptor:
        try:
            result = self._vboxmanage(
                ["showvminfo", name, "--machinereadable"],
                error_message=f"Failed to inspect VM {name}",
                cancel=cancel,
            )
        except AdapterCommandError as exc:
            text = f"{exc.result.stderr}\n{exc.result.stdout}".lower()
            if any(marker in text for marker in _NOT_REGISTERED_MARKERS):
                return VMDescriptor(name=name, state=VM_STATE_ABSENT)
            raise HypervisorException(str(exc)) from exc
        except CommandCancelled as exc:
            raise WorkflowCancelledException(f"Inspection of VM {name} was cancelled") from exc
        info = parse_machine_readable(result.stdout)
        return VMDescriptor(name=name, state=_state_from_vbox(info.get("VMState", "")))

    def _vboxmanage(
        self,
        args: list[str],
        *,
        error_message: str,
        cancel: threading.Event | None,
    ) -> CommandResult:
        return run_command(
            [self._executable, *args],
            runner=self._runner,
            error_message=error_message,
            timeout=self._timeout_sec,
            cancel=cancel,
        )


def parse_vm_list(output: str) -> list[str]:
    """Names from ``VBoxManage list vms`` output, e.g. ``"alpha" {uuid}``."""
    names = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split('"')
        if len(parts) < 3:
            continue
        names.append(parts[1])
    return names


def parse_machine_readable(output: str) -> dict[str, str]:
    """Key/value pairs from ``showvminfo --machinereadable`` output."""
    info = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip().strip('"')
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        info[key] = value
    return info


def _state_from_vbox(vm_state: str) -> str:
    state = vm_state.lower()
    if state == "running":
        return VM_STATE_RUNNING
    if state in _STOPPED_STATES:
        return VM_STATE_STOPPED
    return VM_STATE_CREATED
