"""Runtime Preparer: install and start Docker, wait for the daemon."""

import logging
import shutil

from cihost.config import BootstrapConfig
from cihost.core.poll import bounded_poll
from cihost.errors import RuntimeUnavailableError
from cihost.infra.docker import DockerClient
from cihost.infra.host import CommandRunner, run_command
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class RuntimePreparer:
    """Ensures a container engine is installed and accepting API calls."""

    def __init__(
        self,
        config: BootstrapConfig,
        docker: DockerClient,
        runner: CommandRunner = run_command,
    ) -> None:
        self._config = config.docker
        self._docker = docker
        self._run = runner

    async def _install(self) -> None:
        if shutil.which("docker"):
            logger.info("Docker already installed")
            return
        result = await self._run(self._config.install_command)
        if result.ok:
            logger.info("Docker installed", extra={"event": LogEvent.RUNTIME_INSTALLED})
        else:
            # The ping poll below decides whether this was fatal
            logger.error(
                "Docker install command failed: %s",
                result.stderr.strip(),
                extra={"event": LogEvent.COMMAND_FAILED, "returncode": result.returncode},
            )

    async def prepare(self) -> None:
        """Install/start the engine and block until /_ping answers.

        Raises:
            RuntimeUnavailableError: daemon not responsive after the ceiling
        """
        await self._install()

        result = await self._run(self._config.start_command)
        if not result.ok:
            logger.error(
                "Docker start command failed: %s",
                result.stderr.strip(),
                extra={"event": LogEvent.COMMAND_FAILED, "returncode": result.returncode},
            )

        poll = await bounded_poll(
            self._docker.ping,
            interval=self._config.ready_interval,
            max_attempts=self._config.ready_attempts,
            description="Docker daemon",
        )
        if not poll.succeeded:
            raise RuntimeUnavailableError(
                f"Docker did not respond after {poll.attempts} checks "
                f"({self._config.ready_interval:g}s apart)"
            )
        logger.info(
            "Docker is ready",
            extra={"event": LogEvent.RUNTIME_READY, "attempts": poll.attempts},
        )
