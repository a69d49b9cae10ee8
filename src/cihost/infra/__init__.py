"""Infrastructure layer: Docker, S3, instance metadata and host commands."""

from cihost.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    ExecResult,
    HostConfig,
    ImageAPI,
)
from cihost.infra.host import CommandResult, CommandRunner, run_command
from cihost.infra.metadata import InstanceMetadataClient
from cihost.infra.s3 import S3Operations

__all__ = [
    # Docker
    "ContainerAPI",
    "ContainerConfig",
    "DockerClient",
    "ExecResult",
    "HostConfig",
    "ImageAPI",
    # Host
    "CommandResult",
    "CommandRunner",
    "run_command",
    # Metadata
    "InstanceMetadataClient",
    # S3
    "S3Operations",
]
