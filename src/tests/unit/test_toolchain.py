"""Unit tests for the Toolchain Extender and privilege bridge."""

import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from cihost.bootstrap.launcher import ContainerLauncher
from cihost.bootstrap.state import BootstrapState
from cihost.bootstrap.toolchain import TerraformReleases, ToolchainExtender, parse_version
from cihost.config import BootstrapConfig
from cihost.errors import PrivilegeBridgeError
from cihost.infra.docker import ExecResult


class FakeContainer:
    """Group database and tool inventory of a Jenkins container."""

    def __init__(self, docker_gid: int | None = 999) -> None:
        self.groups: dict[str, int] = {"jenkins": 1000}
        if docker_gid is not None:
            self.groups["docker"] = docker_gid
        self.members: dict[str, set[str]] = {"jenkins": {"jenkins"}}
        self.installed = {"terraform": "1.9.0", "docker": "27.3.1", "aws": "2.17.0"}
        self.docker_usable = True
        self.shell_scripts: list[str] = []

    def exec(self, name: str, cmd: list[str], user: str | None = None) -> ExecResult:
        tool = cmd[0]
        if tool == "getent":
            gid = self.groups.get(cmd[2])
            return ExecResult(exit_code=0 if gid is not None else 2)
        if tool == "groupdel":
            self.groups.pop(cmd[1])
            for groups in self.members.values():
                groups.discard(cmd[1])
            return ExecResult(exit_code=0)
        if tool == "groupadd":
            self.groups[cmd[4]] = int(cmd[3])
            return ExecResult(exit_code=0)
        if tool == "usermod":
            self.members.setdefault(cmd[3], set()).add(cmd[2])
            return ExecResult(exit_code=0)
        if tool == "id":
            return ExecResult(exit_code=0, output=" ".join(sorted(self.members[cmd[2]])) + "\r\n")
        if tool == "sh":
            self.shell_scripts.append(cmd[2])
            return ExecResult(exit_code=0)
        if cmd == ["docker", "ps"]:
            return ExecResult(exit_code=0 if self.docker_usable else 1, output="permission denied")
        if tool == "terraform" and "terraform" in self.installed:
            return ExecResult(exit_code=0, output=f"Terraform v{self.installed['terraform']}\r\n")
        if tool == "docker" and "docker" in self.installed:
            return ExecResult(exit_code=0, output=f"Docker version {self.installed['docker']}\r\n")
        if tool == "aws" and "aws" in self.installed:
            return ExecResult(exit_code=0, output=f"aws-cli/{self.installed['aws']} Python/3.11")
        return ExecResult(exit_code=127, output=f"{tool}: not found")


def test_parse_version() -> None:
    assert parse_version("Terraform v1.9.5\non linux_amd64") == "1.9.5"
    assert parse_version("Docker version 27.3.1, build ce12230") == "27.3.1"
    assert parse_version("") is None


class TestTerraformReleases:
    async def test_checkpoint_version(self, config: BootstrapConfig) -> None:
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"current_version": "1.9.5"})
        )
        assert await TerraformReleases(config, transport).latest_version() == "1.9.5"

    async def test_falls_back_to_releases_index(self, config: BootstrapConfig) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if "checkpoint" in request.url.host:
                return httpx.Response(503)
            return httpx.Response(
                200, text='<a href="/terraform/1.10.0/">terraform_1.10.0</a>'
            )

        releases = TerraformReleases(config, httpx.MockTransport(handler))
        assert await releases.latest_version() == "1.10.0"

    async def test_unknown_when_both_fail(self, config: BootstrapConfig) -> None:
        releases = TerraformReleases(config, httpx.MockTransport(lambda r: httpx.Response(500)))
        assert await releases.latest_version() is None

    def test_download_url(self, config: BootstrapConfig) -> None:
        url = TerraformReleases(config).download_url("1.9.5")
        assert url == (
            "https://releases.hashicorp.com/terraform/1.9.5/terraform_1.9.5_linux_amd64.zip"
        )


class TestToolchainExtender:
    @pytest.fixture
    def container(self) -> FakeContainer:
        return FakeContainer()

    @pytest.fixture
    def releases(self) -> MagicMock:
        releases = MagicMock(spec=TerraformReleases)
        releases.latest_version = AsyncMock(return_value="1.9.0")
        releases.download_url = MagicMock(return_value="https://example.invalid/tf.zip")
        return releases

    @pytest.fixture
    def launcher(self) -> MagicMock:
        launcher = MagicMock(spec=ContainerLauncher)
        launcher.wait_responsive = AsyncMock()
        return launcher

    @pytest.fixture
    def extender(
        self,
        config: BootstrapConfig,
        container: FakeContainer,
        mock_container_api: AsyncMock,
        launcher: MagicMock,
        releases: MagicMock,
    ) -> ToolchainExtender:
        mock_container_api.exec_run.side_effect = container.exec
        return ToolchainExtender(config, mock_container_api, launcher, releases)

    def test_socket_gid(self, extender: ToolchainExtender, docker_socket: Path) -> None:
        assert extender.socket_gid() == os.stat(docker_socket).st_gid

    async def test_bridge_replaces_image_group(
        self, extender: ToolchainExtender, container: FakeContainer, docker_socket: Path
    ) -> None:
        gid = await extender.bridge_group()

        assert gid == os.stat(docker_socket).st_gid
        assert container.groups["docker"] == gid
        assert "docker" in container.members["jenkins"]

    async def test_bridge_is_idempotent(
        self, extender: ToolchainExtender, container: FakeContainer, docker_socket: Path
    ) -> None:
        """Running the bridge twice leaves exactly one docker group with the socket gid."""
        await extender.bridge_group()
        await extender.bridge_group()

        assert list(container.groups).count("docker") == 1
        assert container.groups["docker"] == os.stat(docker_socket).st_gid
        assert "docker" in container.members["jenkins"]

    async def test_bridge_without_existing_group(
        self, config: BootstrapConfig, mock_container_api: AsyncMock, launcher, releases
    ) -> None:
        container = FakeContainer(docker_gid=None)
        mock_container_api.exec_run.side_effect = container.exec
        extender = ToolchainExtender(config, mock_container_api, launcher, releases)

        await extender.bridge_group()

        assert "docker" in container.groups

    async def test_terraform_up_to_date_skipped(
        self, extender: ToolchainExtender, container: FakeContainer
    ) -> None:
        await extender.install_terraform()
        assert container.shell_scripts == []

    async def test_terraform_updated_when_newer(
        self, extender: ToolchainExtender, container: FakeContainer, releases: MagicMock
    ) -> None:
        releases.latest_version.return_value = "1.9.5"

        await extender.install_terraform()

        assert len(container.shell_scripts) == 1
        assert "https://example.invalid/tf.zip" in container.shell_scripts[0]
        releases.download_url.assert_called_once_with("1.9.5")

    async def test_missing_tools_installed(
        self, extender: ToolchainExtender, container: FakeContainer
    ) -> None:
        container.installed.pop("docker")
        container.installed.pop("aws")

        await extender.install_docker_cli()
        await extender.install_awscli()

        assert len(container.shell_scripts) == 2
        assert "docker-27.3.1.tgz" in container.shell_scripts[0]

    async def test_extend_restarts_and_verifies(
        self,
        extender: ToolchainExtender,
        mock_container_api: AsyncMock,
        launcher: MagicMock,
    ) -> None:
        state = BootstrapState(container_started=True)

        await extender.extend(state)

        mock_container_api.restart.assert_awaited_once_with("jenkins")
        launcher.wait_responsive.assert_awaited_once()
        assert state.bridge_verified is True

    async def test_verify_fails_without_socket_access(
        self, extender: ToolchainExtender, container: FakeContainer
    ) -> None:
        container.docker_usable = False
        state = BootstrapState(container_started=True)

        with pytest.raises(PrivilegeBridgeError, match="cannot use the docker socket"):
            await extender.extend(state)

        assert state.bridge_verified is False

    async def test_verify_fails_when_tool_missing(
        self, extender: ToolchainExtender, container: FakeContainer
    ) -> None:
        await extender.bridge_group()
        container.installed.pop("aws")

        with pytest.raises(PrivilegeBridgeError, match="aws --version"):
            await extender.verify()
