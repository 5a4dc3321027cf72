"""Provision a dedicated external database for a virtual cluster instance.

Workflow:
1. Resolve the connector Secret
2. Derive database name and user, generate a fresh password
3. Connect as admin and run the dialect's create statements
4. Grant schema privileges where the dialect needs it (best-effort)
5. Persist the credential record (best-effort)
6. Return the instance's own data source

Creation is idempotent; the password is not. Every run rotates it, so runs
for the same instance are serialized by a per-instance lock.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from vcstore.database.admin import admin_connection
from vcstore.database.connector import resolve_connector
from vcstore.database.dialects import DialectAdapter
from vcstore.database.errors import BackingStoreError, PersistenceError
from vcstore.database.identifiers import database_name, database_user, random_password
from vcstore.database.models import Instance, ProvisionedIdentity
from vcstore.logging_config import bind_instance, get_logger
from vcstore.services.credential_service import save_credentials

logger = get_logger(__name__)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


# Entries live only while a provision call holds or waits on them
_locks: dict[tuple[str, str], _LockEntry] = {}


@asynccontextmanager
async def _instance_lock(instance: Instance) -> AsyncIterator[None]:
    entry = _locks.setdefault(instance.key, _LockEntry())
    entry.users += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.users -= 1
        if entry.users == 0:
            del _locks[instance.key]


def instance_identifiers(instance: Instance, adapter: DialectAdapter) -> tuple[str, str]:
    """Database name and user for an instance, within the dialect's limits."""
    return (
        database_name(instance.name, instance.namespace, adapter.max_identifier_length),
        database_user(instance.name, adapter.max_user_length),
    )


async def provision(
    instance: Instance,
    connector_ref: str,
    connect_timeout: float = 10,
) -> ProvisionedIdentity:
    """Ensure the instance's database and user exist and return fresh credentials.

    Raises:
        ConnectorNotFoundError: The connector Secret does not exist.
        ConnectorValidationError: The connector Secret is malformed.
        ConnectivityError: The admin endpoint is unreachable.
        StatementError: A create statement failed.
    """
    with bind_instance(instance.name, instance.namespace):
        async with _instance_lock(instance):
            return await _provision(instance, connector_ref, connect_timeout)


async def _provision(
    instance: Instance,
    connector_ref: str,
    connect_timeout: float,
) -> ProvisionedIdentity:
    descriptor = await resolve_connector(connector_ref, instance.namespace)
    adapter = descriptor.adapter

    db_name, db_user = instance_identifiers(instance, adapter)
    db_password = random_password()

    logger.info(
        "Provisioning database",
        database=db_name,
        user=db_user,
        dialect=descriptor.dialect.value,
    )

    async with admin_connection(descriptor, timeout=connect_timeout) as conn:
        await conn.run_all(adapter.create_statements(db_name, db_user, db_password))
    logger.info("Created database and user", database=db_name, user=db_user)

    grants = adapter.schema_grant_statements(db_name, db_user)
    if grants:
        try:
            async with admin_connection(
                descriptor, database=db_name, timeout=connect_timeout
            ) as conn:
                await conn.run_all(grants)
            logger.info("Granted schema privileges", database=db_name, user=db_user)
        except BackingStoreError as e:
            # Older servers don't need these grants and may reject them
            logger.warning(
                "Failed to grant schema privileges, may need manual intervention",
                database=db_name,
                user=db_user,
                error=str(e),
            )

    identity = ProvisionedIdentity(
        database_name=db_name,
        database_user=db_user,
        database_password=db_password,
        data_source=adapter.instance_data_source(descriptor, db_name, db_user, db_password),
    )

    try:
        await save_credentials(instance, identity)
    except PersistenceError as e:
        logger.warning("Failed to save provisioned credentials", error=str(e))

    logger.info("Provisioned database", database=db_name)
    return identity
