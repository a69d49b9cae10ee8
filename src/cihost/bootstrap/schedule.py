"""Continuity Scheduler: install the backup artifact and its triggers.

The artifact is a two-line shell wrapper around ``BackupJob.argv()`` so
cron, ``at`` and an operator all invoke the identical command. Both
registrations are keyed on the artifact path: re-running replaces rather
than duplicates.
"""

import logging
import shlex
from pathlib import Path

from cihost.bootstrap.backup import BackupJob
from cihost.config import BootstrapConfig
from cihost.infra.host import CommandRunner, run_command
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class ContinuityScheduler:
    def __init__(self, config: BootstrapConfig, runner: CommandRunner = run_command) -> None:
        self._config = config
        self._schedule = config.schedule
        self._run = runner

    def install_artifact(self, job: BackupJob) -> Path:
        """Write the executable backup command to its fixed path."""
        path = self._schedule.artifact_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            "#!/bin/sh\n"
            "# Installed by cihost bootstrap: mirror Jenkins state to S3\n"
            f'exec {shlex.join(job.argv())} "$@"\n',
            encoding="utf-8",
        )
        path.chmod(0o755)
        return path

    def cron_line(self, artifact: Path) -> str:
        return f"{self._schedule.daily_cron} {artifact} >/dev/null 2>&1"

    async def register_daily(self, artifact: Path) -> None:
        """Replace any crontab line for the artifact with the daily trigger."""
        current = await self._run(["crontab", "-l"])
        # crontab -l exits 1 when the user has no crontab yet
        lines = current.stdout.splitlines() if current.ok else []
        kept = [line for line in lines if str(artifact) not in line]
        kept.append(self.cron_line(artifact))
        await self._run(["crontab", "-"], input="\n".join(kept) + "\n", check=True)

    async def _remove_queued(self, artifact: Path) -> int:
        queue = await self._run(["atq"])
        if not queue.ok:
            return 0
        removed = 0
        for line in queue.stdout.splitlines():
            fields = line.split()
            if not fields:
                continue
            job_id = fields[0]
            body = await self._run(["at", "-c", job_id])
            if body.ok and str(artifact) in body.stdout:
                await self._run(["atrm", job_id], check=True)
                removed += 1
        return removed

    async def register_deferred(self, artifact: Path) -> None:
        """Queue exactly one one-shot run ``deferred_minutes`` from now."""
        removed = await self._remove_queued(artifact)
        if removed:
            logger.info("Removed %d previously queued backup job(s)", removed)
        await self._run(
            ["at", f"now + {self._schedule.deferred_minutes} minutes"],
            input=f"{artifact}\n",
            check=True,
        )

    async def schedule(self) -> BackupJob:
        """Install the backup artifact and register daily + deferred triggers.

        Raises:
            CommandError: crontab or at rejected the registration
        """
        job = BackupJob.from_config(self._config)
        artifact = self.install_artifact(job)
        await self.register_daily(artifact)
        await self.register_deferred(artifact)
        logger.info(
            "Backups scheduled: daily at '%s', first run in %d minutes",
            self._schedule.daily_cron,
            self._schedule.deferred_minutes,
            extra={"event": LogEvent.SCHEDULE_REGISTERED, "artifact": str(artifact)},
        )
        return job
