"""Container Launcher: pull the image and start the one Jenkins container."""

import logging

import httpx

from cihost.bootstrap.state import BootstrapState
from cihost.config import BootstrapConfig
from cihost.core.poll import bounded_poll, retry_fixed
from cihost.errors import ContainerStartError, ImagePullError
from cihost.infra.docker import ContainerAPI, ContainerConfig, HostConfig, ImageAPI
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class ContainerLauncher:
    """Starts the workload container and waits until it accepts exec."""

    def __init__(
        self,
        config: BootstrapConfig,
        containers: ContainerAPI,
        images: ImageAPI,
    ) -> None:
        self._config = config
        self._workload = config.workload
        self._containers = containers
        self._images = images

    def container_config(self) -> ContainerConfig:
        workload = self._workload
        socket = str(self._config.docker.socket_path)
        http = f"{workload.http_port}/tcp"
        agent = f"{workload.agent_port}/tcp"
        return ContainerConfig(
            image=workload.image,
            name=workload.container_name,
            exposed_ports={http: {}, agent: {}},
            host_config=HostConfig(
                binds=[
                    f"{workload.state_dir}:{workload.container_home}",
                    f"{socket}:{socket}",
                ],
                port_bindings={http: workload.http_port, agent: workload.agent_port},
            ),
        )

    async def _pull(self) -> None:
        image = self._workload.image
        try:
            await retry_fixed(
                lambda: self._images.pull(image),
                attempts=self._workload.pull_attempts,
                delay=self._workload.pull_delay,
                operation="image_pull",
            )
        except Exception as e:
            raise ImagePullError(f"Could not pull {image}: {e}") from e

    async def _start(self, name: str) -> None:
        try:
            existing = await self._containers.inspect(name)
            if existing is None:
                await self._containers.create(self.container_config())
        except httpx.HTTPError as e:
            raise ContainerStartError(f"Could not create container {name}: {e}") from e

        if existing is not None and existing.get("State", {}).get("Running", False):
            logger.info("Container %s already running", name)
            return

        try:
            await self._containers.start(name)
        except httpx.HTTPStatusError as e:
            # Checked below; a failed start gets the one restart
            logger.warning("Start of %s failed: %s", name, e)

    async def _responds(self) -> bool:
        result = await self._containers.exec_run(self._workload.container_name, ["true"])
        return result.ok

    async def wait_responsive(self) -> None:
        """Poll until the container runs a trivial command.

        Raises:
            ContainerStartError: only if a ceiling is configured and reached
        """
        poll = await bounded_poll(
            self._responds,
            interval=self._workload.exec_interval,
            max_attempts=self._workload.exec_max_attempts,
            description=f"container {self._workload.container_name}",
        )
        if not poll.succeeded:
            raise ContainerStartError(
                f"Container {self._workload.container_name} did not accept exec "
                f"after {poll.attempts} attempts"
            )
        logger.info(
            "Container responsive",
            extra={"event": LogEvent.CONTAINER_RESPONSIVE, "attempts": poll.attempts},
        )

    async def launch(self, state: BootstrapState) -> None:
        """Pull, start (restarting once if needed) and wait for the container.

        Raises:
            ImagePullError: image not pulled within the attempt budget
            ContainerStartError: container not running after one restart
        """
        name = self._workload.container_name
        await self._pull()
        await self._start(name)

        if not await self._containers.is_running(name):
            logger.warning("Container %s not running after start, restarting once", name)
            try:
                await self._containers.restart(name)
            except httpx.HTTPStatusError as e:
                raise ContainerStartError(f"Restart of {name} failed: {e}") from e
            if not await self._containers.is_running(name):
                raise ContainerStartError(f"Container {name} is not running after restart")

        state.container_started = True
        logger.info(
            "Container %s started",
            name,
            extra={"event": LogEvent.CONTAINER_STARTED, "container": name, "image": self._workload.image},
        )
        await self.wait_responsive()
