"""
Top-level test configuration for vcstore.

Provides in-memory stand-ins for the Kubernetes API and the admin database
connection so provisioning and cleanup can run without a cluster.
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import pytest

# Ensure test-friendly defaults
os.environ.setdefault("VCSTORE_JSON_LOGS", "false")
os.environ.setdefault("VCSTORE_LOG_LEVEL", "DEBUG")

from vcstore.database.dialects import Statement  # noqa: E402
from vcstore.database.errors import ConnectivityError, StatementError  # noqa: E402


@pytest.fixture
def mysql_connector_data() -> dict[str, bytes]:
    return {
        "type": b"mysql",
        "host": b"db.svc",
        "port": b"3306",
        "adminUser": b"root",
        "adminPassword": b"x",
    }


@pytest.fixture
def postgres_connector_data() -> dict[str, bytes]:
    return {
        "type": b"postgres",
        "host": b"pg.svc",
        "adminUser": b"postgres",
        "adminPassword": b"s3cret",
    }


class FakeKube:
    """In-memory Secrets and Jobs keyed by (namespace, name)."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, str], dict[str, str | bytes]] = {}
        self.labels: dict[tuple[str, str], dict[str, str]] = {}
        self.jobs: dict[tuple[str, str], dict] = {}
        self.deleted_secrets: list[tuple[str, str]] = []

    async def read_secret(self, name: str, namespace: str) -> dict[str, str | bytes] | None:
        data = self.secrets.get((namespace, name))
        return dict(data) if data is not None else None

    async def create_secret(self, name, namespace, string_data, labels=None) -> bool:
        if (namespace, name) in self.secrets:
            return False
        self.secrets[(namespace, name)] = dict(string_data)
        self.labels[(namespace, name)] = dict(labels or {})
        return True

    async def create_or_replace_secret(self, name, namespace, string_data, labels=None) -> None:
        self.secrets[(namespace, name)] = dict(string_data)
        self.labels[(namespace, name)] = dict(labels or {})

    async def delete_secret(self, name: str, namespace: str) -> bool:
        self.deleted_secrets.append((namespace, name))
        return self.secrets.pop((namespace, name), None) is not None

    async def create_job(self, job_spec: dict, namespace: str = "") -> str:
        name = job_spec["metadata"]["name"]
        self.jobs.setdefault((namespace, name), job_spec)
        return name


@pytest.fixture
def fake_kube(monkeypatch: pytest.MonkeyPatch) -> FakeKube:
    fake = FakeKube()
    for attr in (
        "read_secret",
        "create_secret",
        "create_or_replace_secret",
        "delete_secret",
        "create_job",
    ):
        monkeypatch.setattr(f"vcstore.kube.client.{attr}", getattr(fake, attr))
    return fake


class FakeAdmin:
    """Records statements instead of sending them to a database server."""

    def __init__(self) -> None:
        self.executed: list[tuple[str | None, Statement]] = []
        self.connections: list[str | None] = []
        self.failing_databases: set[str] = set()
        self.unreachable = False

    def statements_for(self, database: str | None) -> list[Statement]:
        return [s for db, s in self.executed if db == database]

    @asynccontextmanager
    async def connect(
        self, descriptor, database: str | None = None, timeout: float = 10
    ) -> AsyncGenerator["_FakeAdminConnection"]:
        if self.unreachable:
            raise ConnectivityError(f"connect to {descriptor.host}:{descriptor.port}: refused")
        self.connections.append(database)
        yield _FakeAdminConnection(self, database)


class _FakeAdminConnection:
    def __init__(self, admin: FakeAdmin, database: str | None) -> None:
        self._admin = admin
        self._database = database

    async def run_all(self, statements: list[Statement]) -> None:
        for statement in statements:
            if self._database in self._admin.failing_databases:
                raise StatementError(
                    statement.action, statement.target, RuntimeError("permission denied")
                )
            self._admin.executed.append((self._database, statement))


@pytest.fixture
def fake_admin(monkeypatch: pytest.MonkeyPatch) -> FakeAdmin:
    fake = FakeAdmin()
    monkeypatch.setattr("vcstore.services.provisioning_service.admin_connection", fake.connect)
    return fake
