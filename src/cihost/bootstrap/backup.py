"""The backup procedure and its typed command object.

``BackupJob`` captures everything a backup needs. The scheduler installs
its argv as the backup artifact; ``cihost backup`` parses the same
arguments back into a ``BackupJob`` and runs ``BackupProcedure``.

Daily, deferred and manual runs take no lock against each other.
"""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path

import httpx
from pydantic import BaseModel

from cihost.bootstrap.sync import StateSync, SyncSummary
from cihost.config import BootstrapConfig, StoreConfig
from cihost.errors import BackupAbortedError
from cihost.infra.docker import ContainerAPI
from cihost.logging_schema import LogEvent
from cihost.metrics import BACKUP_LAST_SUCCESS, BACKUP_RUNS_TOTAL

logger = logging.getLogger(__name__)


class BackupJob(BaseModel):
    """Parameters of one backup: where from, where to, which container."""

    bucket: str
    prefix: str
    region: str
    state_dir: Path
    container_name: str

    model_config = {"frozen": True}

    @classmethod
    def from_config(cls, config: BootstrapConfig) -> BackupJob:
        return cls(
            bucket=config.s3.bucket,
            prefix=config.s3.prefix,
            region=config.s3.region,
            state_dir=config.workload.state_dir,
            container_name=config.workload.container_name,
        )

    def argv(self, python: str = sys.executable) -> list[str]:
        """Command line that runs this job through the cihost CLI."""
        return [
            python, "-m", "cihost", "backup",
            "--bucket", self.bucket,
            "--prefix", self.prefix,
            "--region", self.region,
            "--state-dir", str(self.state_dir),
            "--container", self.container_name,
        ]

    def store_config(self, base: StoreConfig | None = None) -> StoreConfig:
        """StoreConfig for this job, keeping endpoint and retry settings from base."""
        location = {"bucket": self.bucket, "prefix": self.prefix, "region": self.region}
        if base is None:
            return StoreConfig(**location)
        return base.model_copy(update=location)


class BackupProcedure:
    def __init__(self, job: BackupJob, containers: ContainerAPI, sync: StateSync) -> None:
        self._job = job
        self._containers = containers
        self._sync = sync

    async def _ensure_running(self) -> None:
        """Restart the container once if it is down.

        Raises:
            BackupAbortedError: still not running after the restart
        """
        name = self._job.container_name
        if await self._containers.is_running(name):
            return

        logger.warning("Container %s not running, restarting before backup", name)
        try:
            await self._containers.restart(name)
        except httpx.HTTPError as e:
            raise BackupAbortedError(f"Restart of {name} failed: {e}") from e
        if not await self._containers.is_running(name):
            raise BackupAbortedError(f"Container {name} is not running after restart")

    async def run(self) -> SyncSummary:
        """Verify the container, then mirror the state directory to S3.

        Raises:
            BackupAbortedError: container could not be brought up
        """
        logger.info(
            "Backing up %s to s3://%s/%s",
            self._job.state_dir,
            self._job.bucket,
            self._job.prefix,
            extra={"event": LogEvent.BACKUP_STARTED},
        )
        try:
            await self._ensure_running()
        except BackupAbortedError as e:
            BACKUP_RUNS_TOTAL.labels(result="aborted").inc()
            logger.error(
                "Backup aborted: %s",
                e.message,
                extra={"event": LogEvent.BACKUP_ABORTED, "error_code": e.code.value},
            )
            raise

        try:
            summary = await self._sync.push_mirror()
        except Exception:
            BACKUP_RUNS_TOTAL.labels(result="failed").inc()
            raise

        BACKUP_RUNS_TOTAL.labels(result="completed").inc()
        BACKUP_LAST_SUCCESS.set(time.time())
        logger.info(
            "Backup completed",
            extra={"event": LogEvent.BACKUP_COMPLETED, **summary.model_dump()},
        )
        return summary
