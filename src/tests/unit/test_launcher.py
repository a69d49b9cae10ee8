"""Unit tests for ContainerLauncher."""

from unittest.mock import AsyncMock

import httpx
import pytest

from cihost.bootstrap.launcher import ContainerLauncher
from cihost.bootstrap.state import BootstrapState
from cihost.config import BootstrapConfig
from cihost.errors import ContainerStartError, ImagePullError
from cihost.infra.docker import ExecResult


class TestContainerLauncher:
    """Tests for ContainerLauncher."""

    @pytest.fixture
    def launcher(
        self,
        config: BootstrapConfig,
        mock_container_api: AsyncMock,
        mock_image_api: AsyncMock,
    ) -> ContainerLauncher:
        return ContainerLauncher(config, mock_container_api, mock_image_api)

    def test_container_config(self, launcher: ContainerLauncher, config: BootstrapConfig) -> None:
        cfg = launcher.container_config()
        socket = str(config.docker.socket_path)

        assert cfg.image == "jenkins/jenkins:lts"
        assert f"{config.workload.state_dir}:/var/jenkins_home" in cfg.host_config.binds
        assert f"{socket}:{socket}" in cfg.host_config.binds
        assert cfg.host_config.port_bindings == {"8080/tcp": 8080, "50000/tcp": 50000}

    async def test_launch_creates_and_starts(
        self,
        launcher: ContainerLauncher,
        mock_container_api: AsyncMock,
        mock_image_api: AsyncMock,
    ) -> None:
        state = BootstrapState()

        await launcher.launch(state)

        mock_image_api.pull.assert_awaited_once_with("jenkins/jenkins:lts")
        mock_container_api.create.assert_awaited_once()
        mock_container_api.start.assert_awaited_once_with("jenkins")
        mock_container_api.restart.assert_not_awaited()
        assert state.container_started is True

    async def test_pull_failures_abort_before_create(
        self,
        launcher: ContainerLauncher,
        mock_container_api: AsyncMock,
        mock_image_api: AsyncMock,
    ) -> None:
        """Five failed pulls: fatal, no container is created or started."""
        mock_image_api.pull.side_effect = httpx.ConnectError("registry unreachable")
        state = BootstrapState()

        with pytest.raises(ImagePullError):
            await launcher.launch(state)

        assert mock_image_api.pull.await_count == 5
        mock_container_api.create.assert_not_awaited()
        mock_container_api.start.assert_not_awaited()
        assert state.container_started is False

    async def test_pull_succeeds_on_retry(
        self, launcher: ContainerLauncher, mock_image_api: AsyncMock
    ) -> None:
        mock_image_api.pull.side_effect = [httpx.ReadTimeout("slow"), None]

        await launcher.launch(BootstrapState())

        assert mock_image_api.pull.await_count == 2

    async def test_already_running_not_started(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.inspect.return_value = {"State": {"Running": True}}

        await launcher.launch(BootstrapState())

        mock_container_api.create.assert_not_awaited()
        mock_container_api.start.assert_not_awaited()

    async def test_create_rejected_is_start_error(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        """A daemon error on create exits with the container-start status, not 1."""
        mock_container_api.create.side_effect = httpx.HTTPStatusError(
            "server error",
            request=httpx.Request("POST", "http://localhost/containers/create"),
            response=httpx.Response(500),
        )
        state = BootstrapState()

        with pytest.raises(ContainerStartError) as exc_info:
            await launcher.launch(state)

        assert exc_info.value.exit_code == 12
        mock_container_api.start.assert_not_awaited()
        assert state.container_started is False

    async def test_daemon_unreachable_on_inspect_is_start_error(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.inspect.side_effect = httpx.ConnectError("socket closed")

        with pytest.raises(ContainerStartError):
            await launcher.launch(BootstrapState())

        mock_container_api.create.assert_not_awaited()

    async def test_restarts_once_when_not_running(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.is_running.side_effect = [False, True]

        await launcher.launch(BootstrapState())

        mock_container_api.restart.assert_awaited_once_with("jenkins")

    async def test_still_down_after_restart_is_fatal(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.is_running.return_value = False
        state = BootstrapState()

        with pytest.raises(ContainerStartError):
            await launcher.launch(state)

        mock_container_api.restart.assert_awaited_once()
        assert state.container_started is False

    async def test_waits_until_exec_succeeds(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.exec_run.side_effect = [
            httpx.HTTPStatusError(
                "conflict",
                request=httpx.Request("POST", "http://localhost"),
                response=httpx.Response(409),
            ),
            ExecResult(exit_code=0),
        ]

        await launcher.launch(BootstrapState())

        assert mock_container_api.exec_run.await_count == 2

    async def test_exec_ceiling_reached(
        self, launcher: ContainerLauncher, mock_container_api: AsyncMock
    ) -> None:
        mock_container_api.exec_run.return_value = ExecResult(exit_code=1)

        with pytest.raises(ContainerStartError):
            await launcher.wait_responsive()

        assert mock_container_api.exec_run.await_count == 3
