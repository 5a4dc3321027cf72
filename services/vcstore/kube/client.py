"""K8s access for connector Secrets, credential records and teardown Jobs.

Uses the kubernetes Python client; blocking calls run in the default executor.
"""

import asyncio
import base64
import functools
from collections.abc import Callable
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from vcstore.logging_config import get_logger

logger = get_logger(__name__)

_batch_v1: client.BatchV1Api | None = None
_core_v1: client.CoreV1Api | None = None


def init_k8s() -> None:
    """Initialize the Kubernetes client.

    Uses in-cluster config when running in K8s, falls back to kubeconfig for local dev.
    """
    global _batch_v1, _core_v1  # noqa: PLW0603

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster K8s config")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded kubeconfig")
        except config.ConfigException:
            logger.error("Failed to load K8s config")
            raise

    _batch_v1 = client.BatchV1Api()
    _core_v1 = client.CoreV1Api()


def _get_batch_api() -> client.BatchV1Api:
    if _batch_v1 is None:
        init_k8s()
    assert _batch_v1 is not None
    return _batch_v1


def _get_core_api() -> client.CoreV1Api:
    if _core_v1 is None:
        init_k8s()
    assert _core_v1 is not None
    return _core_v1


def _secret_body(
    name: str,
    namespace: str,
    string_data: dict[str, str],
    labels: dict[str, str] | None,
) -> client.V1Secret:
    return client.V1Secret(
        metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or None),
        type="Opaque",
        string_data=string_data,
    )


async def _call(func: Callable[..., Any], **kwargs: Any) -> Any:
    """Run a blocking API call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, **kwargs))


async def read_secret(name: str, namespace: str) -> dict[str, bytes] | None:
    """Read a Secret and return its raw data, or None if it does not exist.

    Values are base64-decoded but left as bytes; callers decode the keys they
    know to be text.
    """
    try:
        secret = await _call(_get_core_api().read_namespaced_secret, name=name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            return None
        logger.error("Failed to read Secret", secret=name, namespace=namespace, error=str(e))
        raise

    return {
        key: base64.b64decode(value)
        for key, value in (secret.data or {}).items()
    }


async def create_secret(
    name: str,
    namespace: str,
    string_data: dict[str, str],
    labels: dict[str, str] | None = None,
) -> bool:
    """Create a Secret.

    Returns False if a Secret with that name already exists.
    """
    body = _secret_body(name, namespace, string_data, labels)
    try:
        await _call(_get_core_api().create_namespaced_secret, namespace=namespace, body=body)
    except ApiException as e:
        if e.status == 409:
            return False
        logger.error("Failed to create Secret", secret=name, error=str(e))
        raise
    logger.info("Created Secret", secret=name, namespace=namespace)
    return True


async def create_or_replace_secret(
    name: str,
    namespace: str,
    string_data: dict[str, str],
    labels: dict[str, str] | None = None,
) -> None:
    """Create a Secret, replacing it wholesale if it already exists."""
    if await create_secret(name, namespace, string_data, labels):
        return

    body = _secret_body(name, namespace, string_data, labels)
    try:
        await _call(
            _get_core_api().replace_namespaced_secret, name=name, namespace=namespace, body=body
        )
    except ApiException as e:
        logger.error("Failed to replace Secret", secret=name, error=str(e))
        raise
    logger.info("Replaced Secret", secret=name, namespace=namespace)


async def delete_secret(name: str, namespace: str) -> bool:
    """Delete a Secret.

    Returns False if it was already gone.
    """
    try:
        await _call(_get_core_api().delete_namespaced_secret, name=name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            logger.debug("Secret already deleted", secret=name)
            return False
        logger.error("Failed to delete Secret", secret=name, error=str(e))
        raise
    logger.info("Deleted Secret", secret=name, namespace=namespace)
    return True


async def create_job(job_spec: dict, namespace: str = "") -> str:
    """Submit a Job manifest; an existing Job of the same name is left alone.

    The namespace defaults to the one in the manifest. Returns the job name.
    """
    metadata = job_spec.get("metadata", {})
    namespace = namespace or metadata.get("namespace", "default")
    job_name = metadata.get("name", "unknown")

    try:
        await _call(_get_batch_api().create_namespaced_job, namespace=namespace, body=job_spec)
    except ApiException as e:
        if e.status != 409:
            logger.error("Failed to create Job", job=job_name, error=str(e))
            raise
        logger.info("Job already exists", job=job_name, namespace=namespace)
        return job_name
    logger.info("Created cleanup Job", job=job_name, namespace=namespace)
    return job_name
