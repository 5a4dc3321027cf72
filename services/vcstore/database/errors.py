"""
Exceptions for backing-store provisioning and teardown.

Provisioning propagates all of these to the caller. Cleanup logs them and
carries on, except where noted on the individual operation.
"""


class BackingStoreError(Exception):
    """Base exception for external backing-store operations."""


class ConfigurationError(BackingStoreError):
    """Raised when the instance configuration cannot produce a data source."""


class ConnectorNotFoundError(BackingStoreError):
    """Raised when the connector Secret does not exist."""

    def __init__(self, name: str, namespace: str) -> None:
        self.name = name
        self.namespace = namespace
        super().__init__(f"Connector secret not found: {namespace}/{name}")


class ConnectorValidationError(BackingStoreError):
    """Raised when a connector Secret is missing fields or names an unsupported type."""


class ConnectivityError(BackingStoreError):
    """Raised when the admin endpoint cannot be reached or refuses the credentials."""


class StatementError(BackingStoreError):
    """Raised when a provisioning statement fails.

    Carries the action ("create database", "grant privileges", ...) and the
    object it was applied to so partial completion is visible to the caller.
    """

    def __init__(self, action: str, target: str, cause: Exception) -> None:
        self.action = action
        self.target = target
        self.cause = cause
        super().__init__(f"{action} failed for '{target}': {cause}")


class PersistenceError(BackingStoreError):
    """Raised when the credential record cannot be written or deleted."""
