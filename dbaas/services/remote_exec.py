from __future__ import annotations

import logging
from pathlib import Path
import threading
from typing import Sequence

from dbaas.proc import AdapterCommandError, CommandCancelled, CommandRunner, run_command
from dbaas.services.errors import RemoteExecutionException, WorkflowCancelledException

logger = logging.getLogger(__name__)

# ssh exits with 255 when it could not connect or authenticate.
SSH_CONNECTION_FAILURE = 255


class RemoteExecutor:
    """Runs one shell command per call on a remote host over ssh."""

    def __init__(
        self,
        *,
        user: str,
        port: int | None = None,
        key_file: Path | None = None,
        connect_timeout_sec: int = 10,
        timeout_sec: float | None = None,
        ssh_executable: str = "ssh",
        runner: CommandRunner | None = None,
    ) -> None:
        self._user = user
        self._port = port
        self._key_file = key_file
        self._connect_timeout_sec = connect_timeout_sec
        self._timeout_sec = timeout_sec
        self._ssh_executable = ssh_executable
        self._runner = runner

    def run(
        self,
        host: str,
        command: str,
        *,
        cancel: threading.Event | None = None,
        secrets: Sequence[str] = (),
        timeout: float | None = None,
    ) -> str:
        """Run ``command`` on ``host`` and return its trimmed stdout.

        ``timeout`` overrides the executor-wide command timeout for this call.
        """
        if not host:
            raise RemoteExecutionException("Remote host is required")
        argv = [*self._ssh_argv(host), command]
        logger.debug("Running remote command on %s", host)
        try:
            result = run_command(
                argv,
                runner=self._runner,
                error_message=f"Remote command failed on {host}",
                timeout=self._timeout_sec if timeout is None else timeout,
                cancel=cancel,
                secrets=secrets,
            )
        except CommandCancelled as exc:
            raise WorkflowCancelledException(f"Remote command on {host} was cancelled") from exc
        except AdapterCommandError as exc:
            raise RemoteExecutionException(
                str(exc),
                connection_failed=exc.result.returncode == SSH_CONNECTION_FAILURE,
            ) from exc
        return result.stdout.strip()

    def is_reachable(
        self,
        host: str,
        *,
        cancel: threading.Event | None = None,
        timeout: float | None = None,
    ) -> bool:
        try:
            self.run(host, "true", cancel=cancel, timeout=timeout)
        except RemoteExecutionException as exc:
            logger.debug("Host %s is not reachable yet: %s", host, exc)
            return False
        return True

    def _ssh_argv(self, host: str) -> list[str]:
        argv = [
            self._ssh_executable,
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self._connect_timeout_sec}",
            "-o",
            "StrictHostKeyChecking=accept-new",
        ]
        if self._port is not None:
            argv.extend(["-p", str(self._port)])
        if self._key_file is not None:
            argv.extend(["-i", str(self._key_file)])
        argv.append(f"{self._user}@{host}")
        return argv
