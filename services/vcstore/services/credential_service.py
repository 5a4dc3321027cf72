"""Credential records for provisioned databases.

The record is an Opaque Secret named ``vc-db-<instance>`` in the instance's
namespace. It is written on every provisioning run and removed by cleanup.
The live process never reads it back.
"""

from kubernetes.client.rest import ApiException

from vcstore.database.errors import PersistenceError
from vcstore.database.models import Instance, ProvisionedIdentity
from vcstore.kube import client as kube
from vcstore.logging_config import get_logger

logger = get_logger(__name__)

SECRET_PREFIX = "vc-db-"


def credentials_secret_name(instance_name: str) -> str:
    return f"{SECRET_PREFIX}{instance_name}"


def credentials_labels(instance: Instance) -> dict[str, str]:
    return {
        "app": "vcluster",
        "vcluster.loft.sh/name": instance.name,
        "vcluster.loft.sh/namespace": instance.namespace,
        "vcluster.loft.sh/provisioned": "true",
    }


async def save_credentials(instance: Instance, identity: ProvisionedIdentity) -> None:
    """Create the credential record, replacing an existing one wholesale.

    Raises:
        PersistenceError: If the Kubernetes API rejects the write.
    """
    name = credentials_secret_name(instance.name)
    try:
        await kube.create_or_replace_secret(
            name,
            instance.namespace,
            identity.as_record(),
            labels=credentials_labels(instance),
        )
    except ApiException as e:
        raise PersistenceError(f"save credentials secret {name}: {e.reason}") from e

    logger.info("Saved provisioned credentials", secret=name, namespace=instance.namespace)


async def delete_credentials(instance: Instance) -> None:
    """Delete the credential record. A missing record counts as deleted.

    Raises:
        PersistenceError: If the Kubernetes API rejects the delete.
    """
    name = credentials_secret_name(instance.name)
    try:
        deleted = await kube.delete_secret(name, instance.namespace)
    except ApiException as e:
        raise PersistenceError(f"delete credentials secret {name}: {e.reason}") from e

    if deleted:
        logger.info("Deleted credentials secret", secret=name, namespace=instance.namespace)
