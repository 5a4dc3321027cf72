"""Tear down an instance's external database from inside the cluster.

The calling process may have no route or DNS to the database server when it
shuts down, so the drop statements run in a one-shot Job scheduled next to
the instance. The script is shipped as a Secret mounted into the Job and
removed shortly after the Job is submitted.

Every step tolerates objects that are already gone, so cleanup can be run
repeatedly or concurrently for the same instance.
"""

import asyncio
from collections.abc import Awaitable, Callable

from vcstore.config import CleanupConfig, settings
from vcstore.database.connector import resolve_connector
from vcstore.database.dialects import Dialect
from vcstore.database.errors import ConnectorNotFoundError, PersistenceError
from vcstore.database.models import Instance
from vcstore.kube import client as kube
from vcstore.kube.job_template import SCRIPT_KEY, build_cleanup_job_spec
from vcstore.logging_config import bind_instance, get_logger
from vcstore.services.credential_service import delete_credentials
from vcstore.services.provisioning_service import instance_identifiers

logger = get_logger(__name__)

CLEANUP_PREFIX = "vc-db-cleanup-"


def cleanup_resource_name(instance_name: str) -> str:
    """Name shared by the teardown Job and its script artifact."""
    return f"{CLEANUP_PREFIX}{instance_name}"


class DeferredTasks:
    """Delayed coroutines owned by an orchestrator.

    Each task sleeps on a cancellable timer before running. ``flush`` releases
    every timer at once and waits for the tasks; ``cancel`` drops them.
    """

    def __init__(self) -> None:
        self._pending: dict[asyncio.Task, asyncio.Event] = {}

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(
        self,
        delay: float,
        func: Callable[[], Awaitable[object]],
        name: str = "",
    ) -> asyncio.Task:
        release = asyncio.Event()
        task = asyncio.create_task(self._run(delay, release, func, name), name=name or None)
        self._pending[task] = release
        task.add_done_callback(lambda t: self._pending.pop(t, None))
        return task

    async def _run(
        self,
        delay: float,
        release: asyncio.Event,
        func: Callable[[], Awaitable[object]],
        name: str,
    ) -> None:
        try:
            await asyncio.wait_for(release.wait(), timeout=delay)
        except TimeoutError:
            pass

        try:
            await func()
        except Exception as e:
            logger.warning("Deferred task failed", task=name, error=str(e))

    async def flush(self) -> None:
        """Run all pending tasks now and wait for them."""
        tasks = list(self._pending)
        for release in self._pending.values():
            release.set()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait(self) -> None:
        """Wait for pending tasks to run on their own timers."""
        tasks = list(self._pending)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._pending):
            task.cancel()


class CleanupOrchestrator:
    """Schedules teardown Jobs for instances backed by a connector."""

    def __init__(self, cleanup_config: CleanupConfig | None = None) -> None:
        self.config = cleanup_config or settings.cleanup
        self.deferred = DeferredTasks()
        self._images = {
            Dialect.MYSQL: self.config.mysql_image,
            Dialect.POSTGRES: self.config.postgres_image,
        }

    async def cleanup(self, instance: Instance, connector_ref: str) -> None:
        """Submit a teardown Job for the instance's database and user.

        A missing connector Secret means there is nothing left to clean up.

        Raises:
            ConnectorValidationError: The connector Secret is malformed.
            ApiException: The script artifact or Job could not be created.
        """
        logger.info("Cleaning up database", instance=instance.name, namespace=instance.namespace)

        try:
            descriptor = await resolve_connector(connector_ref, instance.namespace)
        except ConnectorNotFoundError:
            logger.warning(
                "Connector secret not found, skipping database cleanup",
                connector=connector_ref,
                namespace=instance.namespace,
            )
            return

        adapter = descriptor.adapter
        db_name, db_user = instance_identifiers(instance, adapter)
        resource_name = cleanup_resource_name(instance.name)

        logger.info("Creating cleanup job", database=db_name, user=db_user, job=resource_name)

        script = adapter.teardown_script(descriptor, db_name, db_user)
        await kube.create_or_replace_secret(
            resource_name,
            instance.namespace,
            {SCRIPT_KEY: script},
            labels={"app": "vcluster", "vcluster.loft.sh/name": instance.name},
        )

        job_spec = build_cleanup_job_spec(
            instance_name=instance.name,
            namespace=instance.namespace,
            job_name=resource_name,
            artifact_name=resource_name,
            image=self._images[descriptor.dialect],
            cleanup_config=self.config,
        )
        try:
            await kube.create_job(job_spec, namespace=instance.namespace)
        except Exception:
            try:
                await kube.delete_secret(resource_name, instance.namespace)
            except Exception as e:
                logger.warning(
                    "Failed to remove cleanup script after job creation failed",
                    secret=resource_name,
                    error=str(e),
                )
            raise

        # The Job's pod must have mounted the script before it goes away
        self.deferred.schedule(
            self.config.artifact_delete_delay_seconds,
            lambda: kube.delete_secret(resource_name, instance.namespace),
            name=f"delete-{resource_name}",
        )

        try:
            await delete_credentials(instance)
        except PersistenceError as e:
            logger.warning("Failed to delete credentials secret", error=str(e))

        logger.info("Cleanup job created", job=resource_name, namespace=instance.namespace)

    async def cleanup_safely(self, instance: Instance, connector_ref: str) -> bool:
        """Run cleanup under the configured timeout, logging instead of raising.

        Returns True if the teardown Job was submitted or nothing needed cleaning.
        """
        with bind_instance(instance.name, instance.namespace):
            try:
                async with asyncio.timeout(self.config.timeout_seconds):
                    await self.cleanup(instance, connector_ref)
                return True
            except TimeoutError:
                logger.error("Database cleanup timed out", timeout=self.config.timeout_seconds)
            except Exception as e:
                logger.error("Failed to cleanup external database", error=str(e))
            return False

    async def aclose(self) -> None:
        """Wait for outstanding artifact deletions before the orchestrator goes away."""
        await self.deferred.wait()
