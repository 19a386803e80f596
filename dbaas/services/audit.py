from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
import json
import logging
from pathlib import Path
import threading

from sqlalchemy.engine import Engine
from sqlmodel import select

from dbaas.db import init_db, make_engine, session_scope
from dbaas.models import AuditRecordORM, AuditRecordRead
from dbaas.settings import Settings

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Append-only record of successful workflows.

    Opened once at startup and closed at shutdown; usable as a context manager.
    """

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def record(self, action: str, details: str) -> None: ...

    @abstractmethod
    def list_records(self, *, limit: int = 100) -> list[AuditRecordRead]: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> "AuditSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class JsonlAuditSink(AuditSink):
    """One JSON object per line, appended to a local file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._file = None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("a", encoding="utf-8")
        logger.debug("Opened audit log %s", self.path)

    def record(self, action: str, details: str) -> None:
        if self._file is None:
            raise RuntimeError("Audit sink is not open")
        entry = {
            "time": datetime.utcnow().isoformat(timespec="seconds"),
            "action": action,
            "details": details,
        }
        with self._lock:
            self._file.write(json.dumps(entry) + "\n")
            self._file.flush()

    def list_records(self, *, limit: int = 100) -> list[AuditRecordRead]:
        if not self.path.exists():
            return []
        records = []
        with self.path.open(encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                entry = json.loads(line)
                records.append(
                    AuditRecordRead(
                        id=line_no,
                        action=entry["action"],
                        details=entry["details"],
                        created_at=datetime.fromisoformat(entry["time"]),
                    )
                )
        return records[-limit:]

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.debug("Closed audit log %s", self.path)


class DatabaseAuditSink(AuditSink):
    """Audit records stored in the ``audit_record`` table."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def open(self) -> None:
        init_db(self._engine)

    def record(self, action: str, details: str) -> None:
        with session_scope(self._engine) as session:
            session.add(AuditRecordORM(action=action, details=details))
            session.commit()

    def list_records(self, *, limit: int = 100) -> list[AuditRecordRead]:
        with session_scope(self._engine) as session:
            rows = session.exec(select(AuditRecordORM).order_by(AuditRecordORM.id.desc()).limit(limit)).all()
            return [AuditRecordRead.model_validate(row) for row in reversed(rows)]

    def close(self) -> None:
        self._engine.dispose()


def build_audit_sink(settings: Settings) -> AuditSink:
    if settings.audit_sink == "database":
        return DatabaseAuditSink(make_engine(settings.database_url))
    return JsonlAuditSink(settings.audit_log_path)
