"""Tests for database teardown via in-cluster Jobs."""

import asyncio
import shlex
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from kubernetes.client.rest import ApiException

from vcstore.config import CleanupConfig
from vcstore.database.errors import ConnectorValidationError, PersistenceError
from vcstore.database.identifiers import database_name
from vcstore.database.models import Instance
from vcstore.kube.job_template import SCRIPT_KEY
from vcstore.services.cleanup_service import (
    CleanupOrchestrator,
    DeferredTasks,
    cleanup_resource_name,
)
from vcstore.services.provisioning_service import provision

TEAM_A = Instance(name="team-a", namespace="ns1")
ARTIFACT = ("ns1", "vc-db-cleanup-team-a")


@pytest_asyncio.fixture
async def orchestrator() -> AsyncGenerator[CleanupOrchestrator]:
    orch = CleanupOrchestrator(CleanupConfig())
    yield orch
    orch.deferred.cancel()


@pytest.fixture
def mysql_connector(fake_kube, mysql_connector_data):
    fake_kube.secrets[("ns1", "mysql-connector")] = {
        k: v.decode() for k, v in mysql_connector_data.items()
    }
    return "mysql-connector"


@pytest.fixture
def postgres_connector(fake_kube, postgres_connector_data):
    fake_kube.secrets[("ns1", "pg-connector")] = {
        k: v.decode() for k, v in postgres_connector_data.items()
    }
    return "pg-connector"


def _sql_args(script: str) -> list[str]:
    return [
        shlex.split(line)[-1]
        for line in script.splitlines()
        if line.startswith(("mysql ", "psql "))
    ]


class TestCleanupMySQL:
    async def test_provision_then_cleanup_targets_same_objects(
        self, fake_kube, fake_admin, mysql_connector, orchestrator
    ):
        identity = await provision(TEAM_A, mysql_connector)
        assert ("ns1", "vc-db-team-a") in fake_kube.secrets

        await orchestrator.cleanup(TEAM_A, mysql_connector)

        script = fake_kube.secrets[ARTIFACT][SCRIPT_KEY]
        assert _sql_args(script) == [
            f"DROP DATABASE IF EXISTS `{identity.database_name}`;",
            f"DROP USER IF EXISTS '{identity.database_user}'@'%';",
        ]

        job = fake_kube.jobs[ARTIFACT]
        container = job["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "mysql:8"
        assert job["spec"]["template"]["spec"]["volumes"][0]["secret"]["secretName"] == ARTIFACT[1]

        assert ("ns1", "vc-db-team-a") not in fake_kube.secrets

    async def test_artifact_deleted_after_delay(self, fake_kube, mysql_connector, orchestrator):
        await orchestrator.cleanup(TEAM_A, mysql_connector)

        assert ARTIFACT in fake_kube.secrets
        assert orchestrator.deferred.pending == 1

        await orchestrator.deferred.flush()

        assert ARTIFACT not in fake_kube.secrets
        assert orchestrator.deferred.pending == 0

    async def test_timer_fires_on_its_own(self, fake_kube, mysql_connector):
        orch = CleanupOrchestrator(CleanupConfig(artifact_delete_delay_seconds=0.01))

        await orch.cleanup(TEAM_A, mysql_connector)
        await orch.aclose()

        assert ARTIFACT not in fake_kube.secrets

    async def test_cancelled_deletion_leaves_artifact(
        self, fake_kube, mysql_connector, orchestrator
    ):
        await orchestrator.cleanup(TEAM_A, mysql_connector)
        orchestrator.deferred.cancel()
        await asyncio.sleep(0)

        assert ARTIFACT in fake_kube.secrets

    async def test_repeated_cleanup_is_safe(self, fake_kube, mysql_connector, orchestrator):
        await orchestrator.cleanup(TEAM_A, mysql_connector)
        await orchestrator.cleanup(TEAM_A, mysql_connector)
        await orchestrator.deferred.flush()

        assert len(fake_kube.jobs) == 1
        assert ARTIFACT not in fake_kube.secrets


class TestCleanupPostgres:
    async def test_script_terminates_connections(self, fake_kube, postgres_connector, orchestrator):
        await orchestrator.cleanup(TEAM_A, postgres_connector)

        script = fake_kube.secrets[ARTIFACT][SCRIPT_KEY]
        db = database_name("team-a", "ns1")
        assert "pg_terminate_backend" in script
        assert f"DROP DATABASE IF EXISTS {db};" in _sql_args(script)
        assert "DROP USER IF EXISTS vcluster_team_a;" in _sql_args(script)

        container = fake_kube.jobs[ARTIFACT]["spec"]["template"]["spec"]["containers"][0]
        assert container["image"] == "postgres:15"


class TestCleanupEdgeCases:
    async def test_missing_connector_is_a_no_op(self, fake_kube, orchestrator):
        fake_kube.secrets[("ns1", "vc-db-team-a")] = {"password": "p"}

        await orchestrator.cleanup(TEAM_A, "deleted-connector")

        assert fake_kube.jobs == {}
        assert ARTIFACT not in fake_kube.secrets
        assert orchestrator.deferred.pending == 0

    async def test_invalid_connector_raises(self, fake_kube, orchestrator):
        fake_kube.secrets[("ns1", "bad")] = {"type": "oracle"}

        with pytest.raises(ConnectorValidationError):
            await orchestrator.cleanup(TEAM_A, "bad")

    @patch("vcstore.services.cleanup_service.delete_credentials", new_callable=AsyncMock)
    async def test_credential_deletion_failure_tolerated(
        self, mock_delete, fake_kube, mysql_connector, orchestrator
    ):
        mock_delete.side_effect = PersistenceError("forbidden")

        await orchestrator.cleanup(TEAM_A, mysql_connector)

        assert ARTIFACT in fake_kube.jobs

    async def test_job_failure_removes_artifact(
        self, fake_kube, mysql_connector, orchestrator, monkeypatch
    ):
        monkeypatch.setattr(
            "vcstore.kube.client.create_job",
            AsyncMock(side_effect=ApiException(status=403, reason="Forbidden")),
        )

        with pytest.raises(ApiException):
            await orchestrator.cleanup(TEAM_A, mysql_connector)

        assert ARTIFACT not in fake_kube.secrets
        assert orchestrator.deferred.pending == 0

    async def test_job_failure_reraised_when_artifact_removal_fails(
        self, fake_kube, mysql_connector, orchestrator, monkeypatch
    ):
        monkeypatch.setattr(
            "vcstore.kube.client.create_job",
            AsyncMock(side_effect=ApiException(status=403, reason="Forbidden")),
        )
        monkeypatch.setattr(
            "vcstore.kube.client.delete_secret",
            AsyncMock(side_effect=ApiException(status=500, reason="Internal")),
        )

        with pytest.raises(ApiException) as exc_info:
            await orchestrator.cleanup(TEAM_A, mysql_connector)

        assert exc_info.value.status == 403


class TestCleanupSafely:
    async def test_success(self, fake_kube, mysql_connector, orchestrator):
        assert await orchestrator.cleanup_safely(TEAM_A, mysql_connector) is True

    async def test_missing_connector_counts_as_success(self, fake_kube, orchestrator):
        assert await orchestrator.cleanup_safely(TEAM_A, "gone") is True

    async def test_errors_are_logged_not_raised(self, fake_kube, orchestrator):
        fake_kube.secrets[("ns1", "bad")] = {"type": "oracle"}
        assert await orchestrator.cleanup_safely(TEAM_A, "bad") is False

    @patch("vcstore.services.cleanup_service.resolve_connector")
    async def test_timeout(self, mock_resolve, fake_kube):
        async def _hang(*args, **kwargs):
            await asyncio.sleep(10)

        mock_resolve.side_effect = _hang
        orch = CleanupOrchestrator(CleanupConfig(timeout_seconds=0.01))

        assert await orch.cleanup_safely(TEAM_A, "slow") is False


class TestDeferredTasks:
    async def test_flush_runs_immediately(self):
        tasks = DeferredTasks()
        calls = []

        async def _record():
            calls.append("ran")

        tasks.schedule(3600, _record, name="later")
        assert calls == []

        await tasks.flush()
        assert calls == ["ran"]

    async def test_failures_are_contained(self):
        tasks = DeferredTasks()

        async def _boom():
            raise RuntimeError("nope")

        tasks.schedule(0, _boom)
        await tasks.wait()
        assert tasks.pending == 0


def test_resource_name():
    assert cleanup_resource_name("team-a") == "vc-db-cleanup-team-a"
