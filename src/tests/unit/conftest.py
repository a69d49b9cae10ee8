"""Fixtures for cihost unit tests."""

import os
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from cihost.config import (
    BootstrapConfig,
    DockerConfig,
    LoggingConfig,
    MetricsConfig,
    ScheduleConfig,
    StoreConfig,
    WorkloadConfig,
)
from cihost.infra import ContainerAPI, ExecResult, ImageAPI


class FakeS3:
    """In-memory stand-in for S3Operations.

    Objects are stored as key -> (body, LastModified).
    """

    def __init__(self, bucket: str = "test-bucket") -> None:
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, datetime]] = {}
        self.fail_downloads = False
        self.fail_listing = False
        self.uploads: list[str] = []

    def put(self, key: str, body: bytes) -> None:
        self.objects[key] = (body, datetime.now(timezone.utc))

    async def has_objects(self, prefix: str) -> bool:
        if self.fail_listing:
            raise ConnectionError("listing failed")
        return any(key.startswith(prefix) for key in self.objects)

    async def list_objects_with_metadata(self, prefix: str) -> list[dict]:
        if self.fail_listing:
            raise ConnectionError("listing failed")
        return [
            {"Key": key, "Size": len(body), "LastModified": modified}
            for key, (body, modified) in sorted(self.objects.items())
            if key.startswith(prefix)
        ]

    async def download_file(self, key: str, dest: Path) -> None:
        if self.fail_downloads:
            raise ConnectionError(f"download of {key} interrupted")
        dest.write_bytes(self.objects[key][0])

    async def upload_file(self, src: Path, key: str) -> None:
        self.uploads.append(key)
        self.put(key, src.read_bytes())

    async def delete_objects(self, keys: list[str]) -> list[str]:
        for key in keys:
            del self.objects[key]
        return list(keys)


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def docker_socket(tmp_path: Path) -> Path:
    """Regular file standing in for the host docker socket."""
    path = tmp_path / "docker.sock"
    path.touch()
    return path


@pytest.fixture
def config(tmp_path: Path, docker_socket: Path) -> BootstrapConfig:
    """Config rooted in tmp_path with zero poll intervals.

    uid/gid are the test user's so chown calls succeed without root.
    """
    return BootstrapConfig(
        docker=DockerConfig(
            socket_path=docker_socket,
            ready_interval=0,
            ready_attempts=12,
        ),
        s3=StoreConfig(
            bucket="test-bucket", prefix="jenkins_home/", region="us-east-1", retry_delay=0
        ),
        workload=WorkloadConfig(
            state_dir=tmp_path / "jenkins_home",
            uid=os.getuid(),
            gid=os.getgid(),
            pull_attempts=5,
            pull_delay=0,
            exec_interval=0,
            exec_max_attempts=3,
            readiness_interval=0,
            readiness_attempts=3,
        ),
        schedule=ScheduleConfig(
            artifact_path=tmp_path / "bin" / "jenkins-backup",
            log_path=tmp_path / "jenkins-backup.log",
        ),
        logging=LoggingConfig(file_path=None, syslog_address=None),
        metrics=MetricsConfig(textfile_dir=None),
    )


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.inspect = AsyncMock(return_value=None)
    api.is_running = AsyncMock(return_value=True)
    api.create = AsyncMock()
    api.start = AsyncMock()
    api.restart = AsyncMock()
    api.exec_run = AsyncMock(return_value=ExecResult(exit_code=0, output=""))
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    """Mock ImageAPI for testing."""
    api = AsyncMock(spec=ImageAPI)
    api.pull = AsyncMock()
    return api
