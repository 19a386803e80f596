from __future__ import annotations

import logging
import re
import shlex
import threading

from dbaas.services.errors import (
    DatabaseBootstrapException,
    InvalidRequestException,
    RemoteExecutionException,
)
from dbaas.services.remote_exec import RemoteExecutor

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]{1,64}$")

ENGINE_PACKAGE = "mariadb-server"
ENGINE_SERVICE = "mariadb"

INSTALL_IF_MISSING = (
    f"dpkg -s {ENGINE_PACKAGE} >/dev/null 2>&1 || "
    f"(sudo apt-get update && sudo DEBIAN_FRONTEND=noninteractive apt-get install -y {ENGINE_PACKAGE})"
)
START_IF_STOPPED = f"sudo systemctl is-active --quiet {ENGINE_SERVICE} || sudo systemctl start {ENGINE_SERVICE}"


def validate_identifier(value: str | None, *, label: str) -> str:
    if not value:
        raise InvalidRequestException(f"{label} required")
    if not IDENTIFIER_RE.fullmatch(value):
        raise InvalidRequestException(f"{label} must match [A-Za-z0-9_]{{1,64}}")
    return value


def _sql_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _sql_string(value: str) -> str:
    return f"'{_sql_escape(value)}'"


def _secret_forms(password: str) -> tuple[str, ...]:
    # The password as it appears after SQL escaping and shell quoting.
    escaped = _sql_escape(password)
    quoted = escaped.replace("'", "'\"'\"'")
    return tuple(sorted({password, escaped, quoted}, key=len, reverse=True))


def build_database_sql(database_name: str, username: str, password: str) -> str:
    account = f"{_sql_string(username)}@'%'"
    return (
        f"CREATE DATABASE IF NOT EXISTS `{database_name}`; "
        f"CREATE USER IF NOT EXISTS {account} IDENTIFIED BY {_sql_string(password)}; "
        f"GRANT ALL PRIVILEGES ON `{database_name}`.* TO {account}; "
        "FLUSH PRIVILEGES;"
    )


class DatabaseBootstrapper:
    """Make sure MariaDB is installed and running on a host, with a database and user.

    Every step is phrased as "if missing" so running it again against an
    already configured host changes nothing.
    """

    def __init__(self, *, executor: RemoteExecutor) -> None:
        self._executor = executor

    def bootstrap(
        self,
        host: str,
        database_name: str | None,
        username: str | None = None,
        password: str | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        if database_name:
            validate_identifier(database_name, label="Database name")
            validate_identifier(username, label="Database user")
            if not password:
                raise InvalidRequestException("Database password required")

        logger.info("Bootstrapping %s on %s", ENGINE_PACKAGE, host)
        self._step(host, "install database engine", INSTALL_IF_MISSING, cancel=cancel)
        self._step(host, "start database service", START_IF_STOPPED, cancel=cancel)

        if not database_name:
            logger.info("No database requested for %s; engine bootstrap only", host)
            return

        sql = build_database_sql(database_name, username, password)
        self._step(
            host,
            f"create database {database_name} and user {username}",
            f"sudo mysql -e {shlex.quote(sql)}",
            cancel=cancel,
            secrets=_secret_forms(password),
        )
        logger.info("Database %s and user %s are configured on %s", database_name, username, host)

    def _step(
        self,
        host: str,
        label: str,
        command: str,
        *,
        cancel: threading.Event | None,
        secrets: tuple[str, ...] = (),
    ) -> str:
        logger.debug("Bootstrap step on %s: %s", host, label)
        try:
            return self._executor.run(host, command, cancel=cancel, secrets=secrets)
        except RemoteExecutionException as exc:
            if exc.connection_failed:
                raise
            raise DatabaseBootstrapException(f"failed to {label}: {exc}") from exc
