from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

from sqlmodel import Field, SQLModel

VMState = Literal["absent", "created", "running", "stopped"]

VM_STATE_ABSENT = "absent"
VM_STATE_CREATED = "created"
VM_STATE_RUNNING = "running"
VM_STATE_STOPPED = "stopped"


@dataclass(frozen=True)
class DatabaseCredential:
    database_name: str
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class ProvisionRequest:
    vm_name: str
    database_name: str | None = None
    database_user: str | None = None
    database_password: str | None = field(default=None, repr=False)

    @property
    def credential(self) -> DatabaseCredential | None:
        if not self.database_name:
            return None
        return DatabaseCredential(
            database_name=self.database_name,
            username=self.database_user or "",
            password=self.database_password or "",
        )


class VMDescriptor(SQLModel):
    name: str
    state: VMState


class WorkflowOutcome(SQLModel):
    success: bool
    message: str
    data: Optional[Any] = None
    error: Optional[str] = None


class CommandRequest(SQLModel):
    action: str = ""
    vm_name: str = ""
    db_name: Optional[str] = None
    db_user: Optional[str] = None
    db_password: Optional[str] = None

    def to_provision_request(self) -> ProvisionRequest:
        return ProvisionRequest(
            vm_name=self.vm_name,
            database_name=self.db_name or None,
            database_user=self.db_user or None,
            database_password=self.db_password or None,
        )


class AuditRecordBase(SQLModel):
    action: str
    details: str


class AuditRecordORM(AuditRecordBase, table=True):
    __tablename__ = "audit_record"

    id: Optional[int] = Field(default=None, primary_key=True)
    action: str = Field(index=True, nullable=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, nullable=False)


class AuditRecordRead(AuditRecordBase):
    id: int
    created_at: datetime
