from __future__ import annotations

import logging

import pytest

from dbaas.logging_config import configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_writes_to_file(tmp_path, restore_root_logger) -> None:
    log_file = tmp_path / "logs" / "dbaas.log"

    configure_logging(level="DEBUG", log_file=log_file, force=True)
    logging.getLogger("dbaas.test").debug("Creating VM %s", "db01")
    for handler in restore_root_logger.handlers:
        handler.flush()

    assert restore_root_logger.level == logging.DEBUG
    assert "Creating VM db01" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_configure_logging_falls_back_to_info_for_unknown_level(monkeypatch, restore_root_logger) -> None:
    monkeypatch.setenv("DBAAS_LOG_LEVEL", "chatty")
    configure_logging()
    assert restore_root_logger.level == logging.INFO
