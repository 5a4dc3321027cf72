"""
Dialect adapters for the supported external databases.

Adapters are looked up once from the connector's Dialect; nothing downstream
compares type strings.
"""

from vcstore.database.dialects.mysql import MySQLDialect
from vcstore.database.dialects.postgres import PostgresDialect
from vcstore.database.dialects.protocol import Dialect, DialectAdapter, Statement

_ADAPTERS: dict[Dialect, DialectAdapter] = {
    Dialect.MYSQL: MySQLDialect(),
    Dialect.POSTGRES: PostgresDialect(),
}


def get_adapter(dialect: Dialect) -> DialectAdapter:
    """Return the adapter for a dialect."""
    return _ADAPTERS[dialect]


__all__ = [
    "Dialect",
    "DialectAdapter",
    "MySQLDialect",
    "PostgresDialect",
    "Statement",
    "get_adapter",
]
