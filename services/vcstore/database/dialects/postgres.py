"""PostgreSQL dialect adapter.

CREATE DATABASE cannot run inside a transaction and has no IF NOT EXISTS
clause, so creation is guarded by catalog lookups instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.engine import URL

from vcstore.database.dialects.protocol import Dialect, Statement, render_script
from vcstore.database.identifiers import sanitize_identifier

if TYPE_CHECKING:
    from vcstore.database.connector import ConnectorDescriptor

ADMIN_DATABASE = "postgres"


def _literal(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


class PostgresDialect:
    """Builds PostgreSQL data sources, DDL and teardown scripts."""

    dialect = Dialect.POSTGRES
    default_port = "5432"
    max_identifier_length = 63
    max_user_length = 63

    def admin_data_source(self, descriptor: ConnectorDescriptor) -> str:
        return (
            f"postgres://{descriptor.admin_user}:{descriptor.admin_password}"
            f"@{descriptor.host}:{descriptor.port}/{ADMIN_DATABASE}"
            f"?sslmode={descriptor.ssl_mode}"
        )

    def instance_data_source(
        self,
        descriptor: ConnectorDescriptor,
        database: str,
        user: str,
        password: str,
    ) -> str:
        return (
            f"postgres://{user}:{password}@{descriptor.host}:{descriptor.port}/{database}"
            f"?sslmode={descriptor.ssl_mode}"
        )

    def admin_url(self, descriptor: ConnectorDescriptor, database: str | None = None) -> URL:
        return URL.create(
            "postgresql+asyncpg",
            username=descriptor.admin_user,
            password=descriptor.admin_password,
            host=descriptor.host,
            port=int(descriptor.port),
            database=database or ADMIN_DATABASE,
        )

    def connect_args(self, descriptor: ConnectorDescriptor, timeout: float) -> dict[str, Any]:
        # asyncpg accepts libpq sslmode names for ``ssl``
        return {"timeout": timeout, "ssl": descriptor.ssl_mode}

    def create_statements(self, database: str, user: str, password: str) -> list[Statement]:
        db = sanitize_identifier(database)
        role = sanitize_identifier(user)
        return [
            Statement(
                action="create database",
                target=db,
                sql=f"CREATE DATABASE {db}",
                exists_query="SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = :name)",
                exists_params={"name": db},
            ),
            Statement(
                action="create user",
                target=role,
                sql=f"CREATE USER {role} WITH PASSWORD {_literal(password)}",
                exists_query="SELECT EXISTS(SELECT 1 FROM pg_roles WHERE rolname = :name)",
                exists_params={"name": role},
                if_exists_sql=f"ALTER USER {role} WITH PASSWORD {_literal(password)}",
            ),
            Statement(
                action="grant privileges",
                target=db,
                sql=f"GRANT ALL PRIVILEGES ON DATABASE {db} TO {role}",
            ),
        ]

    def schema_grant_statements(self, database: str, user: str) -> list[Statement]:
        # Required from PostgreSQL 15, where PUBLIC lost CREATE on schema public
        role = sanitize_identifier(user)
        return [
            Statement(
                action="grant schema privileges",
                target=role,
                sql=f"GRANT ALL ON SCHEMA public TO {role}",
            ),
            Statement(
                action="grant create on schema",
                target=role,
                sql=f"GRANT CREATE ON SCHEMA public TO {role}",
            ),
        ]

    def drop_statements(self, database: str, user: str) -> list[Statement]:
        db = sanitize_identifier(database)
        role = sanitize_identifier(user)
        return [
            Statement(
                action="terminate connections to",
                target=db,
                sql=(
                    "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                    f"WHERE datname = {_literal(db)} AND pid <> pg_backend_pid();"
                ),
                best_effort=True,
            ),
            Statement(action="drop database", target=db, sql=f"DROP DATABASE IF EXISTS {db};"),
            Statement(action="drop user", target=role, sql=f"DROP USER IF EXISTS {role};"),
        ]

    def teardown_script(self, descriptor: ConnectorDescriptor, database: str, user: str) -> str:
        env = {
            "PGPASSWORD": descriptor.admin_password,
            "PGSSLMODE": descriptor.ssl_mode,
        }
        client_args = [
            "psql",
            "-h",
            descriptor.host,
            "-p",
            descriptor.port,
            "-U",
            descriptor.admin_user,
            "-d",
            ADMIN_DATABASE,
            "-v",
            "ON_ERROR_STOP=1",
            "-c",
        ]
        return render_script(env, client_args, self.drop_statements(database, user))
