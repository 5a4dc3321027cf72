"""Build K8s Job specs for external database teardown."""

import posixpath

from vcstore.config import CleanupConfig

SCRIPT_KEY = "cleanup.sh"
SCRIPT_MODE = 0o755


def build_cleanup_job_spec(
    instance_name: str,
    namespace: str,
    job_name: str,
    artifact_name: str,
    image: str,
    cleanup_config: CleanupConfig,
) -> dict:
    """Build a one-shot Job that runs the teardown script mounted from a Secret.

    Args:
        instance_name: Virtual cluster instance the database belongs to.
        namespace: Host namespace of the instance (and of the Job).
        job_name: Name of the Job.
        artifact_name: Secret holding the script under ``cleanup.sh``.
        image: Image providing the dialect CLI (psql / mysql).
        cleanup_config: Retry, retention and mount settings.
    """
    mount_path = cleanup_config.script_mount_path
    labels = {
        "app": "vcluster",
        "app.kubernetes.io/component": "db-cleanup",
        "vcluster.loft.sh/name": instance_name,
        "vcluster.loft.sh/namespace": namespace,
    }

    job_spec = {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "name": job_name,
            "namespace": namespace,
            "labels": labels,
        },
        "spec": {
            "backoffLimit": cleanup_config.backoff_limit,
            "ttlSecondsAfterFinished": cleanup_config.ttl_seconds_after_finished,
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "restartPolicy": "Never",
                    "dnsPolicy": "ClusterFirst",
                    "containers": [
                        {
                            "name": "cleanup",
                            "image": image,
                            "command": ["/bin/sh", posixpath.join(mount_path, SCRIPT_KEY)],
                            "volumeMounts": [
                                {
                                    "name": "scripts",
                                    "mountPath": mount_path,
                                    "readOnly": True,
                                }
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "scripts",
                            "secret": {
                                "secretName": artifact_name,
                                "defaultMode": SCRIPT_MODE,
                            },
                        }
                    ],
                },
            },
        },
    }

    if cleanup_config.service_account_name:
        job_spec["spec"]["template"]["spec"]["serviceAccountName"] = (
            cleanup_config.service_account_name
        )

    return job_spec
