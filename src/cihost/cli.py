"""cihost command line.

    cihost bootstrap
    cihost backup --bucket B --prefix P --region R --state-dir D --container C

Settings not given on the command line come from CIHOST_* environment
variables (see cihost.config).
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from cihost import __version__
from cihost.bootstrap.backup import BackupJob, BackupProcedure
from cihost.bootstrap.orchestrator import BootstrapOrchestrator, build_steps
from cihost.bootstrap.sync import StateSync
from cihost.config import BootstrapConfig, get_config
from cihost.errors import BootstrapError
from cihost.infra import ContainerAPI, DockerClient, S3Operations
from cihost.logging import setup_logging
from cihost.metrics import write_metrics

logger = logging.getLogger(__name__)


async def run_bootstrap(config: BootstrapConfig) -> None:
    """Provision the host once."""
    docker = DockerClient(config.docker)
    try:
        await BootstrapOrchestrator(config, build_steps(config, docker)).run()
    finally:
        await docker.close()
        write_metrics(config.metrics.textfile_dir, "cihost_bootstrap")


async def run_backup(config: BootstrapConfig, job: BackupJob) -> None:
    """Mirror the state directory once."""
    store = job.store_config(config.s3)
    docker = DockerClient(config.docker)
    try:
        procedure = BackupProcedure(
            job,
            ContainerAPI(docker),
            StateSync(store, job.state_dir, S3Operations(store)),
        )
        await procedure.run()
    finally:
        await docker.close()
        write_metrics(config.metrics.textfile_dir, "cihost_backup")


def build_parser(config: BootstrapConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bootstrap and back up a single-container Jenkins host",
        prog="cihost",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # bootstrap command
    subparsers.add_parser("bootstrap", help="Provision Docker, Jenkins, tools and backups")

    # backup command
    backup_parser = subparsers.add_parser(
        "backup", help="Mirror the Jenkins state directory to S3"
    )
    backup_parser.add_argument("--bucket", default=config.s3.bucket, help="S3 bucket")
    backup_parser.add_argument("--prefix", default=config.s3.prefix, help="S3 key prefix")
    backup_parser.add_argument("--region", default=config.s3.region, help="S3 region")
    backup_parser.add_argument(
        "--state-dir",
        type=Path,
        default=config.workload.state_dir,
        help="Persistent state directory",
    )
    backup_parser.add_argument(
        "--container",
        default=config.workload.container_name,
        help="Workload container that must be running",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    config = get_config()
    args = build_parser(config).parse_args(argv)

    if args.command == "backup":
        # Scheduled backups log to their own file
        setup_logging(config.logging.model_copy(update={"file_path": config.schedule.log_path}))
        job = BackupJob(
            bucket=args.bucket,
            prefix=args.prefix,
            region=args.region,
            state_dir=args.state_dir,
            container_name=args.container,
        )
        if not job.bucket:
            logger.error("No S3 bucket given (--bucket or CIHOST_S3_BUCKET)")
            sys.exit(2)
        runner = run_backup(config, job)
    else:
        setup_logging(config.logging)
        if not config.s3.bucket:
            logger.error("CIHOST_S3_BUCKET is not set")
            sys.exit(2)
        runner = run_bootstrap(config)

    try:
        asyncio.run(runner)
    except BootstrapError as e:
        detail = e.to_detail()
        logger.error(
            "%s: %s",
            detail.code,
            detail.message,
            extra={"error_code": detail.code, "exit_code": detail.exit_code},
        )
        sys.exit(e.exit_code)
    except Exception:
        logger.exception("%s failed with an unexpected error", args.command)
        sys.exit(1)


if __name__ == "__main__":
    main()
