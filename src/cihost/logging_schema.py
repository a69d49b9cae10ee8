"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for cihost.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Run lifecycle
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"

    # Polling and retry
    POLL_TIMEOUT = "poll_timeout"
    RETRY_ATTEMPT = "retry_attempt"
    RETRY_EXHAUSTED = "retry_exhausted"

    # Runtime
    RUNTIME_INSTALLED = "runtime_installed"
    RUNTIME_READY = "runtime_ready"
    COMMAND_FAILED = "command_failed"

    # Restore
    RESTORE_SKIPPED = "restore_skipped"
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_FAILED = "restore_failed"
    IDENTITY_RECONCILED = "identity_reconciled"
    IDENTITY_SKIPPED = "identity_skipped"

    # Container events
    IMAGE_PULLED = "image_pulled"
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_RESTARTED = "container_restarted"
    CONTAINER_RESPONSIVE = "container_responsive"

    # Toolchain
    TOOL_INSTALLED = "tool_installed"
    TOOL_UP_TO_DATE = "tool_up_to_date"
    TOOL_INSTALL_FAILED = "tool_install_failed"
    GROUP_BRIDGED = "group_bridged"
    BRIDGE_VERIFIED = "bridge_verified"

    # Readiness
    READINESS_INITIALIZED = "readiness_initialized"
    READINESS_CONFIGURED = "readiness_configured"
    READINESS_TIMEOUT = "readiness_timeout"

    # Schedule and backup
    SCHEDULE_REGISTERED = "schedule_registered"
    BACKUP_STARTED = "backup_started"
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_ABORTED = "backup_aborted"

    # S3 events
    S3_SYNC_COMPLETED = "s3_sync_completed"
    S3_OBJECT_DELETED = "s3_object_deleted"
    S3_DELETE_FAILED = "s3_delete_failed"

    # Metrics
    METRICS_WRITTEN = "metrics_written"
