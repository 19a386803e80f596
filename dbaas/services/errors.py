from __future__ import annotations

from typing import Sequence


class DbaasException(Exception):
    kind = "InternalError"

    def __init__(self, message: str = "", *, completed_steps: Sequence[str] = ()) -> None:
        super().__init__(message)
        # Hypervisor sub-steps that finished before the failure.
        self.completed_steps = tuple(completed_steps)


class InvalidRequestException(DbaasException):
    kind = "InvalidRequest"


class HypervisorException(DbaasException):
    kind = "HypervisorFailure"


class RemoteExecutionException(DbaasException):
    kind = "RemoteExecutionFailure"

    def __init__(self, message: str = "", *, connection_failed: bool = False) -> None:
        super().__init__(message)
        self.connection_failed = connection_failed


class DatabaseBootstrapException(DbaasException):
    kind = "DatabaseBootstrapFailure"


class AlreadyInProgressException(DbaasException):
    kind = "AlreadyInProgress"


class WorkflowCancelledException(DbaasException):
    kind = "Cancelled"


class NotFoundException(DbaasException):
    kind = "NotFound"
