"""Value types shared by provisioning and teardown."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Instance:
    """One virtual cluster control plane, identified by namespace and name."""

    name: str
    namespace: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)


@dataclass(frozen=True)
class ProvisionedIdentity:
    """Database, credentials and data source provisioned for one instance."""

    database_name: str
    database_user: str
    database_password: str = field(repr=False)
    data_source: str = field(repr=False)

    def as_record(self) -> dict[str, str]:
        """Key/value form stored in the credential record."""
        return {
            "database": self.database_name,
            "user": self.database_user,
            "password": self.database_password,
            "dataSource": self.data_source,
        }
