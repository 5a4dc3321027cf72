"""
Administrative connections to a connector's database server.

Each connection uses its own engine with NullPool and AUTOCOMMIT (CREATE
DATABASE cannot run inside a transaction) and is disposed when the context
exits. Nothing is pooled or shared between instances.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine
from sqlalchemy.pool import NullPool

from vcstore.database.connector import ConnectorDescriptor
from vcstore.database.dialects import Statement
from vcstore.database.errors import ConnectivityError, StatementError
from vcstore.logging_config import get_logger

logger = get_logger(__name__)


class AdminConnection:
    """Runs provisioning statements over one admin connection."""

    def __init__(self, conn: AsyncConnection) -> None:
        self._conn = conn

    async def exists(self, query: str, params: dict) -> bool:
        result = await self._conn.execute(text(query), params)
        return bool(result.scalar())

    async def run(self, statement: Statement) -> None:
        """Execute one statement, honouring its existence guard.

        Raises:
            StatementError: If the guard or the statement fails.
        """
        try:
            sql: str | None = statement.sql
            if statement.exists_query is not None and await self.exists(
                statement.exists_query, statement.exists_params
            ):
                sql = statement.if_exists_sql
                if sql is None:
                    logger.debug(
                        "Object already exists, skipping",
                        action=statement.action,
                        target=statement.target,
                    )
                    return
            await self._conn.execute(text(sql))
        except SQLAlchemyError as e:
            if statement.best_effort:
                logger.warning(
                    "Best-effort statement failed",
                    action=statement.action,
                    target=statement.target,
                    error=str(e),
                )
                return
            raise StatementError(statement.action, statement.target, e) from e

    async def run_all(self, statements: list[Statement]) -> None:
        """Execute statements in order, stopping at the first failure."""
        for statement in statements:
            await self.run(statement)


@asynccontextmanager
async def admin_connection(
    descriptor: ConnectorDescriptor,
    database: str | None = None,
    timeout: float = 10,
) -> AsyncGenerator[AdminConnection]:
    """Open a verified admin connection.

    Raises:
        ConnectivityError: If the server cannot be reached or rejects the
            admin credentials.
    """
    adapter = descriptor.adapter
    engine = create_async_engine(
        adapter.admin_url(descriptor, database),
        poolclass=NullPool,
        isolation_level="AUTOCOMMIT",
        connect_args=adapter.connect_args(descriptor, timeout),
    )

    try:
        try:
            conn = await engine.connect()
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            raise ConnectivityError(
                f"connect to {descriptor.dialect.value} server "
                f"{descriptor.host}:{descriptor.port}: {e}"
            ) from e

        try:
            try:
                await conn.execute(text("SELECT 1"))
            except SQLAlchemyError as e:
                raise ConnectivityError(
                    f"ping {descriptor.dialect.value} server "
                    f"{descriptor.host}:{descriptor.port}: {e}"
                ) from e
            yield AdminConnection(conn)
        finally:
            await conn.close()
    finally:
        await engine.dispose()
