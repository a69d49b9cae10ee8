"""Prometheus metrics for cihost.

The bootstrap and the backup are short-lived processes, so nothing serves
/metrics. Instead the registry is written in text format to the
node_exporter textfile collector directory at the end of each run.
"""

import logging
from pathlib import Path

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile

from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# Histogram Buckets
# =============================================================================
# Steps range from a /_ping (sub-second) to toolchain installs (minutes)
_BUCKETS_STEP = (
    0.5, 1, 2, 5, 10,
    20, 40, 80, 160, 300,
    600, 1200,
)

# =============================================================================
# Bootstrap Metrics
# =============================================================================

BOOTSTRAP_STEP_DURATION = Histogram(
    "cihost_bootstrap_step_duration_seconds",
    "Duration of each bootstrap step",
    ["step"],
    buckets=_BUCKETS_STEP,
    registry=REGISTRY,
)

BOOTSTRAP_RUN_STATUS = Gauge(
    "cihost_bootstrap_success",
    "1 if the last bootstrap run completed, 0 if it aborted",
    registry=REGISTRY,
)

BOOTSTRAP_RESTORE_OCCURRED = Gauge(
    "cihost_bootstrap_restore_occurred",
    "1 if the last bootstrap restored state from the remote store",
    registry=REGISTRY,
)

RETRY_ATTEMPTS_TOTAL = Counter(
    "cihost_retry_attempts_total",
    "Failed attempts inside fixed retry loops",
    ["operation"],
    registry=REGISTRY,
)

# =============================================================================
# Backup / Sync Metrics
# =============================================================================

BACKUP_RUNS_TOTAL = Counter(
    "cihost_backup_runs_total",
    "Backup invocations by result",
    ["result"],  # completed, aborted, failed
    registry=REGISTRY,
)

BACKUP_LAST_SUCCESS = Gauge(
    "cihost_backup_last_success_timestamp_seconds",
    "Unix time of the last completed backup",
    registry=REGISTRY,
)

SYNC_OBJECTS_TOTAL = Counter(
    "cihost_sync_objects_total",
    "Objects transferred or deleted by state sync",
    ["direction", "action"],  # push/pull, uploaded/downloaded/deleted
    registry=REGISTRY,
)


def write_metrics(textfile_dir: Path | None, name: str) -> None:
    """Write the registry to ``<textfile_dir>/<name>.prom`` if the directory exists."""
    if textfile_dir is None or not textfile_dir.is_dir():
        return
    path = textfile_dir / f"{name}.prom"
    try:
        write_to_textfile(str(path), REGISTRY)
    except OSError as e:
        logger.warning(
            "Failed to write metrics",
            extra={"event": LogEvent.METRICS_WRITTEN, "path": str(path), "error": str(e)},
        )
        return
    logger.debug("Metrics written", extra={"event": LogEvent.METRICS_WRITTEN, "path": str(path)})
