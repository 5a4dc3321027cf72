"""
External database wiring for the virtual control plane's store.

Resolves the data source the store proxy is started with: a connector, when
configured, provisions a dedicated database and takes precedence over any
static data source. Also registers database teardown on shutdown.
"""

from dataclasses import dataclass, field

from vcstore.config import Settings, settings
from vcstore.database.errors import ConfigurationError
from vcstore.database.models import Instance, ProvisionedIdentity
from vcstore.lifecycle import LifecycleManager
from vcstore.logging_config import get_logger
from vcstore.services.cleanup_service import CleanupOrchestrator
from vcstore.services.provisioning_service import provision

logger = get_logger(__name__)

CLEANUP_HANDLER = "external-database-cleanup"


@dataclass(frozen=True)
class Certificates:
    """TLS files handed to the store proxy."""

    ca_file: str = ""
    cert_file: str = ""
    key_file: str = ""


@dataclass(frozen=True)
class ExternalDatabase:
    """Everything the store proxy needs to start against an external database."""

    data_source: str = field(repr=False)
    certificates: Certificates
    extra_args: list[str] = field(default_factory=list)
    identity: ProvisionedIdentity | None = None


def instance_from_settings(cfg: Settings) -> Instance:
    if not cfg.name or not cfg.namespace:
        raise ConfigurationError("instance name and namespace must be configured")
    return Instance(name=cfg.name, namespace=cfg.namespace)


async def configure_external_database(cfg: Settings = settings) -> ExternalDatabase | None:
    """Resolve the store's data source, provisioning a database if a connector is set.

    Returns None when the external database is disabled; the store then runs
    on its embedded backend and nothing is provisioned.

    Raises:
        ConfigurationError: No data source could be determined.
        BackingStoreError: Provisioning failed; the store must not start.
    """
    external = cfg.external_database
    if not external.enabled:
        logger.info("External database disabled, using embedded store")
        return None

    data_source = external.data_source
    identity = None

    if external.connector:
        logger.info("External database connector specified", connector=external.connector)
        identity = await provision(
            instance_from_settings(cfg),
            external.connector,
            connect_timeout=cfg.provisioning.connect_timeout_seconds,
        )
        data_source = identity.data_source
        logger.info("Using provisioned database connection", database=identity.database_name)

    if not data_source:
        raise ConfigurationError("external database dataSource cannot be empty")

    return ExternalDatabase(
        data_source=data_source,
        certificates=Certificates(
            ca_file=external.ca_file,
            cert_file=external.cert_file,
            key_file=external.key_file,
        ),
        extra_args=list(external.extra_args),
        identity=identity,
    )


def register_database_cleanup(
    lifecycle: LifecycleManager,
    orchestrator: CleanupOrchestrator,
    cfg: Settings = settings,
) -> bool:
    """Register teardown of the provisioned database as a shutdown handler.

    Does nothing when the external database is disabled or no connector is
    configured. Returns True if a handler was registered by this call.
    """
    connector = cfg.external_database.connector
    if not cfg.external_database.enabled or not connector:
        logger.info("No external database connector, skipping cleanup handler registration")
        return False

    # Capture plain values; the settings object may change after registration
    instance = instance_from_settings(cfg)

    async def _cleanup() -> None:
        logger.info(
            "Shutdown signal received, cleaning up external database",
            instance=instance.name,
        )
        if await orchestrator.cleanup_safely(instance, connector):
            logger.info("Successfully cleaned up external database", instance=instance.name)
        await orchestrator.aclose()

    return lifecycle.register_once(CLEANUP_HANDLER, _cleanup)
