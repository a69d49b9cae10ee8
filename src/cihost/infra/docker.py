"""Docker Engine API client.

Provides async Docker API access for the workload container.
Supports both Unix socket and TCP connections.
"""

import json
import logging

import httpx
from pydantic import BaseModel

from cihost.config import DockerConfig
from cihost.errors import DockerError
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation."""

    binds: list[str] = []
    port_bindings: dict[str, int] = {}
    restart_policy: str = "unless-stopped"

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        result: dict = {
            "Binds": self.binds,
            "RestartPolicy": {"Name": self.restart_policy},
        }
        if self.port_bindings:
            result["PortBindings"] = {
                port: [{"HostPort": str(host_port)}]
                for port, host_port in self.port_bindings.items()
            }
        return result


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    user: str | None = None
    env: list[str] = []
    exposed_ports: dict[str, dict] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.user:
            result["User"] = self.user
        if self.env:
            result["Env"] = self.env
        return result


class ExecResult(BaseModel):
    """Exit code and combined output of an in-container command."""

    exit_code: int
    output: str = ""

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Async Docker API client."""

    def __init__(self, config: DockerConfig) -> None:
        self._config = config
        self._host = config.host
        self._client: httpx.AsyncClient | None = None

    @property
    def config(self) -> DockerConfig:
        return self._config

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        timeout = self._config.api_timeout
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=timeout,
            )
        else:
            base_url = self._host
            if base_url.startswith("tcp://"):
                base_url = base_url.replace("tcp://", "http://")
            return httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def ping(self) -> bool:
        """Return True if the daemon answers GET /_ping."""
        try:
            client = await self.get()
            resp = await client.get("/_ping")
        except httpx.HTTPError as e:
            logger.debug("Docker ping failed: %s", e)
            return False
        return resp.status_code == 200

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def inspect(self, name: str) -> dict | None:
        """Inspect a container.

        Returns:
            Container info dict or None if not found
        """
        client = await self._docker.get()
        resp = await client.get(f"/containers/{name}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def is_running(self, name: str) -> bool:
        data = await self.inspect(name)
        if not data:
            return False
        return bool(data.get("State", {}).get("Running", False))

    async def create(self, config: ContainerConfig) -> None:
        """Create a container (idempotent)."""
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        if resp.status_code == 409:
            logger.debug("Container already exists: %s", config.name)
            return
        resp.raise_for_status()
        logger.info(
            "Created container: %s",
            config.name,
            extra={"event": LogEvent.CONTAINER_CREATED, "container": config.name},
        )

    async def start(self, name: str) -> None:
        """Start a container."""
        client = await self._docker.get()
        resp = await client.post(f"/containers/{name}/start")
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info("Started container: %s", name)

    async def restart(self, name: str, timeout: int = 10) -> None:
        """Restart a container (starts it if stopped)."""
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{name}/restart",
            params={"t": str(timeout)},
            timeout=self._docker.config.api_timeout + timeout,
        )
        resp.raise_for_status()
        logger.info(
            "Restarted container: %s",
            name,
            extra={"event": LogEvent.CONTAINER_RESTARTED, "container": name},
        )

    async def exec_run(self, name: str, cmd: list[str], user: str | None = None) -> ExecResult:
        """Run a command inside a running container and wait for it.

        Uses a TTY so the output is a plain stream (no multiplexing headers).

        Args:
            name: Container name or ID
            cmd: Command argv
            user: User to run as (container default if None)

        Returns:
            ExecResult with exit code and combined stdout/stderr
        """
        client = await self._docker.get()
        body: dict = {
            "Cmd": cmd,
            "AttachStdout": True,
            "AttachStderr": True,
            "Tty": True,
        }
        if user:
            body["User"] = user
        resp = await client.post(f"/containers/{name}/exec", json=body)
        resp.raise_for_status()
        exec_id = resp.json()["Id"]

        resp = await client.post(
            f"/exec/{exec_id}/start",
            json={"Detach": False, "Tty": True},
            timeout=self._docker.config.exec_timeout,
        )
        resp.raise_for_status()
        output = resp.content.decode("utf-8", errors="replace")

        resp = await client.get(f"/exec/{exec_id}/json")
        resp.raise_for_status()
        exit_code = resp.json().get("ExitCode")
        # ExitCode is null while the process is still running
        return ExecResult(exit_code=-1 if exit_code is None else exit_code, output=output)


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def pull(self, image_ref: str) -> None:
        """Pull image from registry.

        Note:
            /images/create answers 200 and then streams JSON progress; a
            failed pull shows up as an "error" line in that stream.
        """
        client = await self._docker.get()

        if ":" in image_ref.rsplit("/", 1)[-1]:
            image, tag = image_ref.rsplit(":", 1)
        else:
            image, tag = image_ref, "latest"

        logger.info("Pulling image: %s:%s", image, tag)

        resp = await client.post(
            "/images/create",
            params={"fromImage": image, "tag": tag},
            timeout=self._docker.config.image_pull_timeout,
        )
        resp.raise_for_status()

        for line in resp.text.splitlines():
            if not line.strip():
                continue
            try:
                progress = json.loads(line)
            except json.JSONDecodeError:
                continue
            if "error" in progress:
                raise DockerError(f"Pull of {image}:{tag} failed: {progress['error']}")

        logger.info(
            "Pulled image: %s:%s",
            image,
            tag,
            extra={"event": LogEvent.IMAGE_PULLED, "image": f"{image}:{tag}"},
        )
