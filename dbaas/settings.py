from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
from pathlib import Path
from typing import Literal, Mapping, get_args

DiskMode = Literal["per-vm", "shared"]
AuditSinkKind = Literal["file", "database"]

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class Settings:
    vboxmanage: str = "VBoxManage"
    vm_ostype: str = "Ubuntu_64"
    vm_cpus: int = 1
    vm_memory_mb: int = 1024
    disk_mode: DiskMode = "per-vm"
    disk_size_mb: int = 10000
    disk_dir: Path | None = None
    shared_disk_path: Path | None = None
    start_headless: bool = True
    hypervisor_timeout_sec: float = 300.0

    ssh_executable: str = "ssh"
    ssh_user: str = "dbaas"
    ssh_port: int | None = None
    ssh_key_file: Path | None = None
    ssh_connect_timeout_sec: int = 10
    remote_timeout_sec: float = 900.0

    ready_timeout_sec: float = 300.0
    ready_interval_sec: float = 2.0
    ready_max_interval_sec: float = 30.0

    rollback_on_failure: bool = False

    audit_sink: AuditSinkKind = "file"
    audit_log_path: Path = Path("logs/activity.log")
    database_url: str = "sqlite:///./dbaas.db"

    def __post_init__(self) -> None:
        if self.disk_mode not in get_args(DiskMode):
            raise ValueError(f"DBAAS_DISK_MODE must be one of {get_args(DiskMode)}, got {self.disk_mode!r}")
        if self.disk_mode == "shared" and self.shared_disk_path is None:
            raise ValueError("DBAAS_SHARED_DISK_PATH is required when DBAAS_DISK_MODE=shared")
        if self.audit_sink not in get_args(AuditSinkKind):
            raise ValueError(f"DBAAS_AUDIT_SINK must be one of {get_args(AuditSinkKind)}, got {self.audit_sink!r}")
        if self.vm_cpus < 1 or self.vm_memory_mb < 1 or self.disk_size_mb < 1:
            raise ValueError("VM cpus, memory and disk size must be positive")
        if self.ready_timeout_sec < 0 or self.ready_interval_sec < 0:
            raise ValueError("Readiness timeout and interval must not be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            vboxmanage=env.get("DBAAS_VBOXMANAGE", cls.vboxmanage),
            vm_ostype=env.get("DBAAS_VM_OSTYPE", cls.vm_ostype),
            vm_cpus=_int(env, "DBAAS_VM_CPUS", cls.vm_cpus),
            vm_memory_mb=_int(env, "DBAAS_VM_MEMORY_MB", cls.vm_memory_mb),
            disk_mode=env.get("DBAAS_DISK_MODE", cls.disk_mode),
            disk_size_mb=_int(env, "DBAAS_DISK_SIZE_MB", cls.disk_size_mb),
            disk_dir=_path(env, "DBAAS_DISK_DIR"),
            shared_disk_path=_path(env, "DBAAS_SHARED_DISK_PATH"),
            start_headless=_bool(env, "DBAAS_START_HEADLESS", cls.start_headless),
            hypervisor_timeout_sec=_float(env, "DBAAS_HYPERVISOR_TIMEOUT_SEC", cls.hypervisor_timeout_sec),
            ssh_executable=env.get("DBAAS_SSH_EXECUTABLE", cls.ssh_executable),
            ssh_user=env.get("DBAAS_SSH_USER", cls.ssh_user),
            ssh_port=_optional_int(env, "DBAAS_SSH_PORT"),
            ssh_key_file=_path(env, "DBAAS_SSH_KEY_FILE"),
            ssh_connect_timeout_sec=_int(env, "DBAAS_SSH_CONNECT_TIMEOUT_SEC", cls.ssh_connect_timeout_sec),
            remote_timeout_sec=_float(env, "DBAAS_REMOTE_TIMEOUT_SEC", cls.remote_timeout_sec),
            ready_timeout_sec=_float(env, "DBAAS_READY_TIMEOUT_SEC", cls.ready_timeout_sec),
            ready_interval_sec=_float(env, "DBAAS_READY_INTERVAL_SEC", cls.ready_interval_sec),
            ready_max_interval_sec=_float(env, "DBAAS_READY_MAX_INTERVAL_SEC", cls.ready_max_interval_sec),
            rollback_on_failure=_bool(env, "DBAAS_ROLLBACK_ON_FAILURE", cls.rollback_on_failure),
            audit_sink=env.get("DBAAS_AUDIT_SINK", cls.audit_sink),
            audit_log_path=_path(env, "DBAAS_AUDIT_LOG_PATH") or cls.audit_log_path,
            database_url=env.get("DBAAS_DATABASE_URL", cls.database_url),
        )


@lru_cache(1)
def get_settings() -> Settings:
    return Settings.from_env()


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _optional_int(env: Mapping[str, str], name: str) -> int | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    return _int(env, name, 0)


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _path(env: Mapping[str, str], name: str) -> Path | None:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw).expanduser()
