from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
from typing import Iterator

from dbaas.services.errors import AlreadyInProgressException

logger = logging.getLogger(__name__)


class InFlightRegistry:
    """VM names with a workflow currently running, each with its cancel event."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, threading.Event] = {}

    @contextmanager
    def admit(self, vm_name: str, cancel: threading.Event | None = None) -> Iterator[threading.Event]:
        with self._lock:
            if vm_name in self._active:
                logger.warning("Rejecting workflow for VM %s: another one is in progress", vm_name)
                raise AlreadyInProgressException(f"A workflow for VM {vm_name} is already in progress")
            event = cancel if cancel is not None else threading.Event()
            self._active[vm_name] = event
        try:
            yield event
        finally:
            with self._lock:
                self._active.pop(vm_name, None)

    def cancel(self, vm_name: str) -> bool:
        with self._lock:
            event = self._active.get(vm_name)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for in-flight workflow on VM %s", vm_name)
        return True

    def active(self) -> list[str]:
        with self._lock:
            return sorted(self._active)
