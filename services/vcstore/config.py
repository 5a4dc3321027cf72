"""
Configuration management for vcstore.

Non-secret configuration loaded from YAML file, overridden by environment variables.
Connector credentials never live here; they are read from the connector Secret.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def yaml_config_settings_source() -> dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path("/etc/vcstore/config.yaml")
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


# --- Backing Store Configuration Models ---


class ExternalDatabaseConfig(BaseModel):
    """External database used as the virtual control plane's backing store."""

    enabled: bool = Field(default=False)
    connector: str = Field(
        default="",
        description="Name of the connector Secret in the host namespace. "
        "When set, a dedicated database is provisioned and takes precedence over data_source.",
    )
    data_source: str = Field(
        default="",
        description="Static data source used when no connector is configured",
    )
    ca_file: str = Field(default="", description="CA file passed to the store proxy")
    cert_file: str = Field(default="", description="Client cert file passed to the store proxy")
    key_file: str = Field(default="", description="Client key file passed to the store proxy")
    extra_args: list[str] = Field(default_factory=list)


class ProvisioningConfig(BaseModel):
    """Settings for the provisioning workflow."""

    connect_timeout_seconds: int = Field(
        default=10,
        description="Timeout for connecting to the admin endpoint",
    )


class CleanupConfig(BaseModel):
    """Settings for the teardown Job and its script artifact."""

    postgres_image: str = Field(default="postgres:15")
    mysql_image: str = Field(default="mysql:8")
    backoff_limit: int = Field(default=3)
    ttl_seconds_after_finished: int = Field(default=300)
    artifact_delete_delay_seconds: float = Field(
        default=10.0,
        description="Delay between Job submission and script artifact deletion",
    )
    timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for a whole cleanup call during shutdown",
    )
    script_mount_path: str = Field(default="/scripts")
    service_account_name: str = Field(default="")


# --- Main Settings ---


class Settings(BaseSettings):
    """Main settings for one virtual cluster instance."""

    model_config = SettingsConfigDict(
        env_prefix="VCSTORE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Instance identity
    name: str = Field(default="", description="Virtual cluster instance name")
    namespace: str = Field(default="", description="Host namespace of the instance")

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=True, description="JSON logging in production")

    external_database: ExternalDatabaseConfig = Field(default_factory=ExternalDatabaseConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override YAML config."""
        return (
            init_settings,
            env_settings,
            yaml_config_settings_source,
            dotenv_settings,
            file_secret_settings,
        )


# Global settings instance
settings = Settings()
