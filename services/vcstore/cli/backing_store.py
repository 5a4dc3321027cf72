"""
Backing-store commands for a virtual cluster instance.

Run via: python -m vcstore.cli.backing_store <command>

Commands:
  provision   Provision the instance database and write the data source to --output
  cleanup     Submit the teardown Job for the instance database
  run         Provision, then clean up when SIGTERM/SIGINT arrives

Instance identity and connector come from VCSTORE_* environment variables or
/etc/vcstore/config.yaml (see vcstore.config).
"""

import argparse
import asyncio
import os
import sys

from vcstore.backing_store import (
    configure_external_database,
    instance_from_settings,
    register_database_cleanup,
)
from vcstore.config import Settings, settings
from vcstore.database.errors import BackingStoreError
from vcstore.lifecycle import LifecycleManager
from vcstore.logging_config import configure_logging, get_logger
from vcstore.services.cleanup_service import CleanupOrchestrator

logger = get_logger("vcstore.cli")


def _write_data_source(path: str, data_source: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(data_source)


async def provision_command(cfg: Settings, output: str) -> int:
    try:
        external = await configure_external_database(cfg)
    except BackingStoreError as e:
        logger.error("Failed to configure external database", error=str(e))
        return 1

    if external is None:
        return 0

    if output:
        _write_data_source(output, external.data_source)
        logger.info("Wrote data source", path=output)
    return 0


async def cleanup_command(cfg: Settings) -> int:
    connector = cfg.external_database.connector
    if not cfg.external_database.enabled or not connector:
        logger.info("No external database connector, skipping database cleanup")
        return 0

    try:
        instance = instance_from_settings(cfg)
    except BackingStoreError as e:
        logger.error("Cannot clean up", error=str(e))
        return 1

    orchestrator = CleanupOrchestrator(cfg.cleanup)
    await orchestrator.cleanup_safely(instance, connector)
    await orchestrator.aclose()
    # Cleanup is best-effort and never fails the caller
    return 0


async def run_command(cfg: Settings, output: str) -> int:
    status = await provision_command(cfg, output)
    if status != 0:
        return status

    lifecycle = LifecycleManager(
        handler_timeout=cfg.cleanup.timeout_seconds + cfg.cleanup.artifact_delete_delay_seconds + 5
    )
    lifecycle.install_signal_handlers(asyncio.get_running_loop())
    register_database_cleanup(lifecycle, CleanupOrchestrator(cfg.cleanup), cfg)

    await lifecycle.wait_for_shutdown()
    await lifecycle.run_shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vcstore-backing-store")
    sub = parser.add_subparsers(dest="command", required=True)

    provision_parser = sub.add_parser("provision", help="Provision the instance database")
    provision_parser.add_argument("--output", default="", help="File to write the data source to")

    sub.add_parser("cleanup", help="Tear down the instance database")

    run_parser = sub.add_parser("run", help="Provision and clean up on shutdown")
    run_parser.add_argument("--output", default="", help="File to write the data source to")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)

    match args.command:
        case "provision":
            return asyncio.run(provision_command(settings, args.output))
        case "cleanup":
            return asyncio.run(cleanup_command(settings))
        case "run":
            return asyncio.run(run_command(settings, args.output))
    return 2


if __name__ == "__main__":
    sys.exit(main())
