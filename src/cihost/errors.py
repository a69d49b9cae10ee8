"""Error handling module for cihost.

This module defines error codes and exception classes for the bootstrap run.
Each error carries the process exit status the CLI terminates with.

Taxonomy:
- Fatal: runtime never responsive, image never pulls, container never
  starts, privilege bridge verification fails. The run aborts.
- Recoverable-with-fallback: remote pull fails. Downgrades to fresh start.
- Best-effort: the backup's own container check. Aborts one backup only.

Usage:
    from cihost.errors import ImagePullError

    raise ImagePullError("jenkins/jenkins:lts not pulled after 5 attempts")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    IMAGE_PULL_FAILED = "IMAGE_PULL_FAILED"
    CONTAINER_START_FAILED = "CONTAINER_START_FAILED"
    PRIVILEGE_BRIDGE_FAILED = "PRIVILEGE_BRIDGE_FAILED"
    RESTORE_FAILED = "RESTORE_FAILED"
    BACKUP_ABORTED = "BACKUP_ABORTED"
    COMMAND_FAILED = "COMMAND_FAILED"
    DOCKER_ERROR = "DOCKER_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str
    exit_code: int


class BootstrapError(Exception):
    """Base exception for cihost.

    All cihost specific exceptions should inherit from this class.
    The CLI catches it, logs the detail and exits with ``exit_code``.

    Attributes:
        code: The error code from ErrorCode enum.
        message: Human-readable error message.
        exit_code: Process exit status.
    """

    def __init__(self, code: ErrorCode, message: str, exit_code: int) -> None:
        self.code = code
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)

    def to_detail(self) -> ErrorDetail:
        """Convert exception to ErrorDetail model."""
        return ErrorDetail(code=self.code.value, message=self.message, exit_code=self.exit_code)


class RuntimeUnavailableError(BootstrapError):
    """Fatal - container engine never became responsive."""

    def __init__(self, message: str = "Container runtime did not become ready") -> None:
        super().__init__(ErrorCode.RUNTIME_UNAVAILABLE, message, 10)


class ImagePullError(BootstrapError):
    """Fatal - workload image could not be pulled."""

    def __init__(self, message: str = "Workload image could not be pulled") -> None:
        super().__init__(ErrorCode.IMAGE_PULL_FAILED, message, 11)


class ContainerStartError(BootstrapError):
    """Fatal - workload container is not running after one restart."""

    def __init__(self, message: str = "Workload container failed to start") -> None:
        super().__init__(ErrorCode.CONTAINER_START_FAILED, message, 12)


class PrivilegeBridgeError(BootstrapError):
    """Fatal - toolchain or docker socket access could not be verified."""

    def __init__(self, message: str = "Privilege bridge verification failed") -> None:
        super().__init__(ErrorCode.PRIVILEGE_BRIDGE_FAILED, message, 13)


class RestoreError(BootstrapError):
    """Recoverable - pull from the Remote State Store failed."""

    def __init__(self, message: str = "State restore failed") -> None:
        super().__init__(ErrorCode.RESTORE_FAILED, message, 20)


class BackupAbortedError(BootstrapError):
    """Best-effort - a single backup attempt was abandoned."""

    def __init__(self, message: str = "Backup aborted") -> None:
        super().__init__(ErrorCode.BACKUP_ABORTED, message, 1)


class CommandError(BootstrapError):
    """Host command exited non-zero."""

    def __init__(self, message: str = "Host command failed") -> None:
        super().__init__(ErrorCode.COMMAND_FAILED, message, 30)


class DockerError(BootstrapError):
    """Docker Engine API reported a failure."""

    def __init__(self, message: str = "Docker operation failed") -> None:
        super().__init__(ErrorCode.DOCKER_ERROR, message, 31)
