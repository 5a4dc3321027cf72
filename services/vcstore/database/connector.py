"""Connector Secret parsing and validation.

A connector Secret describes a database server reachable with admin
credentials. It is read fresh on every provisioning or cleanup call.

Keys:
    type            mysql | postgres | postgresql (required)
    host            server address (required)
    port            defaults to the dialect's port
    adminUser       admin user (required)
    adminPassword   admin password (required)
    sslMode         postgres only, defaults to "disable"
    tls             mysql only, "true" enables
    caCert, clientCert, clientKey
                    opaque blobs kept as bytes, not used for connections
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from vcstore.database.dialects import Dialect, DialectAdapter, get_adapter
from vcstore.database.errors import ConnectorNotFoundError, ConnectorValidationError
from vcstore.kube import client as kube
from vcstore.logging_config import get_logger

logger = get_logger(__name__)

_DIALECT_ALIASES = {
    "mysql": Dialect.MYSQL,
    "postgres": Dialect.POSTGRES,
    "postgresql": Dialect.POSTGRES,
}


@dataclass(frozen=True)
class ConnectorDescriptor:
    """Validated, immutable view of a connector Secret."""

    dialect: Dialect
    host: str
    port: str
    admin_user: str
    admin_password: str = field(repr=False)
    ssl_mode: str = "disable"
    use_tls: bool = False
    ca_cert: bytes = field(default=b"", repr=False)
    client_cert: bytes = field(default=b"", repr=False)
    client_key: bytes = field(default=b"", repr=False)

    @property
    def adapter(self) -> DialectAdapter:
        return get_adapter(self.dialect)

    @property
    def has_tls_material(self) -> bool:
        return bool(self.ca_cert or self.client_cert or self.client_key)


_TEXT_KEYS = ("type", "host", "port", "adminUser", "adminPassword", "sslMode", "tls")
_BLOB_KEYS = ("caCert", "clientCert", "clientKey")


def _decode(key: str, value: str | bytes) -> str:
    if isinstance(value, str):
        return value
    try:
        return value.decode()
    except UnicodeDecodeError as e:
        raise ConnectorValidationError(
            f"field '{key}' in connector secret is not valid UTF-8"
        ) from e


def _blob(value: str | bytes) -> bytes:
    return value.encode() if isinstance(value, str) else value


def parse_connector(data: Mapping[str, str | bytes]) -> ConnectorDescriptor:
    """Build a ConnectorDescriptor from Secret data.

    Raises:
        ConnectorValidationError: If a required field is missing, empty or not
            UTF-8, the type is unsupported, or the port is not numeric.
        Certificate fields are opaque and kept as bytes.
    """
    values = {key: _decode(key, data[key]) for key in _TEXT_KEYS if key in data}
    blobs = {key: _blob(data[key]) for key in _BLOB_KEYS if key in data}

    raw_type = values.get("type", "").strip().lower()
    if not raw_type:
        raise ConnectorValidationError("missing required field 'type' in connector secret")
    dialect = _DIALECT_ALIASES.get(raw_type)
    if dialect is None:
        raise ConnectorValidationError(
            f"unsupported database type: {raw_type} (must be 'mysql' or 'postgres')"
        )

    for required in ("host", "adminUser", "adminPassword"):
        if required not in values:
            raise ConnectorValidationError(
                f"missing required field '{required}' in connector secret"
            )

    port = values.get("port") or get_adapter(dialect).default_port

    descriptor = ConnectorDescriptor(
        dialect=dialect,
        host=values["host"],
        port=port,
        admin_user=values["adminUser"],
        admin_password=values["adminPassword"],
        ssl_mode=values.get("sslMode") or "disable",
        use_tls=values.get("tls") == "true",
        ca_cert=blobs.get("caCert", b""),
        client_cert=blobs.get("clientCert", b""),
        client_key=blobs.get("clientKey", b""),
    )
    validate_connector(descriptor)
    return descriptor


def validate_connector(descriptor: ConnectorDescriptor) -> None:
    """Check that every field needed to connect is present."""
    if not descriptor.host:
        raise ConnectorValidationError("host cannot be empty")
    if not descriptor.port:
        raise ConnectorValidationError("port cannot be empty")
    if not descriptor.port.isdigit():
        raise ConnectorValidationError(f"port must be numeric, got '{descriptor.port}'")
    if not descriptor.admin_user:
        raise ConnectorValidationError("adminUser cannot be empty")
    if not descriptor.admin_password:
        raise ConnectorValidationError("adminPassword cannot be empty")


async def resolve_connector(name: str, namespace: str) -> ConnectorDescriptor:
    """Read and parse the connector Secret.

    Raises:
        ConnectorNotFoundError: If the Secret does not exist.
        ConnectorValidationError: If the Secret is malformed.
    """
    logger.info("Reading database connector secret", connector=name, namespace=namespace)

    data = await kube.read_secret(name, namespace)
    if data is None:
        raise ConnectorNotFoundError(name, namespace)

    descriptor = parse_connector(data)
    if descriptor.has_tls_material or descriptor.use_tls:
        logger.warning(
            "Connector carries TLS settings that are not applied to admin connections",
            connector=name,
            dialect=descriptor.dialect.value,
        )
    return descriptor
