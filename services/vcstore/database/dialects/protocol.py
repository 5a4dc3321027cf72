"""
Dialect adapter protocol and shared statement types.

Each supported database product has one adapter that turns identifiers into
data source strings, SQL statements and a teardown shell script. Adapters are
pure: they never touch the network.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy.engine import URL

if TYPE_CHECKING:
    from vcstore.database.connector import ConnectorDescriptor


class Dialect(StrEnum):
    """Supported connector types."""

    MYSQL = "mysql"
    POSTGRES = "postgres"


@dataclass(frozen=True)
class Statement:
    """One step of a provisioning or teardown sequence.

    When ``exists_query`` is set it is evaluated first; if it reports that the
    object already exists, ``if_exists_sql`` runs instead of ``sql`` (or
    nothing, when ``if_exists_sql`` is None).
    """

    action: str
    target: str
    sql: str
    exists_query: str | None = None
    exists_params: dict[str, Any] = field(default_factory=dict)
    if_exists_sql: str | None = None
    best_effort: bool = False


@runtime_checkable
class DialectAdapter(Protocol):
    """Capabilities every dialect provides."""

    dialect: Dialect
    default_port: str
    max_identifier_length: int
    max_user_length: int

    def admin_data_source(self, descriptor: ConnectorDescriptor) -> str:
        """Data source string for the connector's admin user."""
        ...

    def instance_data_source(
        self,
        descriptor: ConnectorDescriptor,
        database: str,
        user: str,
        password: str,
    ) -> str:
        """Data source string handed to the store proxy for one instance."""
        ...

    def admin_url(self, descriptor: ConnectorDescriptor, database: str | None = None) -> URL:
        """SQLAlchemy URL for an admin connection, optionally to a specific database."""
        ...

    def connect_args(self, descriptor: ConnectorDescriptor, timeout: float) -> dict[str, Any]:
        """Driver-level connect arguments."""
        ...

    def create_statements(self, database: str, user: str, password: str) -> list[Statement]:
        """Ordered statements that create the database and user and grant access."""
        ...

    def schema_grant_statements(self, database: str, user: str) -> list[Statement]:
        """Statements run while connected to the new database. May be empty."""
        ...

    def drop_statements(self, database: str, user: str) -> list[Statement]:
        """Ordered statements that remove the database and user."""
        ...

    def teardown_script(self, descriptor: ConnectorDescriptor, database: str, user: str) -> str:
        """Self-contained POSIX shell script running drop_statements with the dialect CLI."""
        ...


def render_script(
    env: dict[str, str],
    client_args: list[str],
    statements: list[Statement],
) -> str:
    """Render a ``set -e`` shell script running each statement through a CLI client.

    ``client_args`` is the client invocation up to (not including) the SQL
    argument; ``statements`` are appended one command each. Every value is
    shell-quoted.
    """
    lines = ["#!/bin/sh", "set -e"]
    for key, value in env.items():
        lines.append(f"export {key}={shlex.quote(value)}")
    for statement in statements:
        lines.append(shlex.join(["echo", f"{statement.action.capitalize()} {statement.target}..."]))
        command = shlex.join([*client_args, statement.sql])
        if statement.best_effort:
            command += " || true"
        lines.append(command)
    lines.append('echo "Cleanup completed successfully"')
    return "\n".join(lines) + "\n"
