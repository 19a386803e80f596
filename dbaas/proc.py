from __future__ import annotations

from dataclasses import dataclass
import subprocess
import threading
import time
from typing import Callable, Literal, Sequence

ErrorCategory = Literal["retryable", "fatal"]
CommandRunner = Callable[..., subprocess.CompletedProcess[str]]

TIMEOUT_RETURNCODE = -9
_POLL_INTERVAL_SEC = 0.2
_REDACTED = "***"

_RETRYABLE_PATTERNS = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "connection refused",
    "connection reset",
    "connection closed",
    "no route to host",
    "could not resolve hostname",
    "network is unreachable",
    "i/o timeout",
    "is locked",
)


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str


class AdapterCommandError(RuntimeError):
    def __init__(
        self,
        *,
        message: str,
        result: CommandResult,
        category: ErrorCategory,
        secrets: Sequence[str] = (),
    ) -> None:
        self.result = result
        self.category = category
        self._secrets = tuple(s for s in secrets if s)
        super().__init__(self._build_message(message))

    @property
    def retryable(self) -> bool:
        return self.category == "retryable"

    @property
    def detail(self) -> str:
        return self._redact((self.result.stderr or self.result.stdout).strip())

    def _build_message(self, message: str) -> str:
        detail = self.detail
        if len(detail) > 400:
            detail = f"{detail[:397]}..."
        cmd = self._redact(" ".join(self.result.command))
        return (
            f"{message} (category={self.category}, returncode={self.result.returncode}, "
            f"command={cmd!r}, detail={detail!r})"
        )

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, _REDACTED)
        return text


class CommandCancelled(RuntimeError):
    """Raised when a command is aborted because its cancel event was set."""

    def __init__(self, command: list[str]) -> None:
        self.command = command
        super().__init__(f"Command cancelled: {command[0] if command else '<empty>'}")


def default_runner(
    command: list[str],
    *,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run ``command`` to completion, killing it on timeout or cancellation.

    The child is polled rather than waited on so that a cancel event set from
    another thread is noticed while the command is still running.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    try:
        proc = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as exc:
        return subprocess.CompletedProcess(command, 127, stdout="", stderr=str(exc))

    with proc:
        while True:
            if cancel is not None and cancel.is_set():
                proc.kill()
                proc.communicate()
                raise CommandCancelled(command)
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                proc.kill()
                stdout, stderr = proc.communicate()
                return subprocess.CompletedProcess(
                    command,
                    TIMEOUT_RETURNCODE,
                    stdout=stdout,
                    stderr=f"{stderr}\ncommand timed out after {timeout}s".lstrip(),
                )
            step = _POLL_INTERVAL_SEC if remaining is None else min(_POLL_INTERVAL_SEC, remaining)
            try:
                stdout, stderr = proc.communicate(timeout=step)
            except subprocess.TimeoutExpired:
                continue
            return subprocess.CompletedProcess(command, proc.returncode, stdout=stdout, stderr=stderr)


def classify_error(*, returncode: int, stderr: str, stdout: str) -> ErrorCategory:
    if returncode < 0:
        return "retryable"
    text = f"{stderr}\n{stdout}".lower()
    if any(pattern in text for pattern in _RETRYABLE_PATTERNS):
        return "retryable"
    return "fatal"


def run_command(
    command: list[str],
    *,
    runner: CommandRunner | None = None,
    error_message: str,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
    secrets: Sequence[str] = (),
) -> CommandResult:
    if cancel is not None and cancel.is_set():
        raise CommandCancelled(command)
    active_runner = runner or default_runner
    completed = active_runner(command, timeout=timeout, cancel=cancel)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if result.returncode != 0:
        raise AdapterCommandError(
            message=error_message,
            result=result,
            category=classify_error(
                returncode=result.returncode,
                stderr=result.stderr,
                stdout=result.stdout,
            ),
            secrets=secrets,
        )
    return result
