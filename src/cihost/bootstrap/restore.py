"""State Restorer: pull a prior backup into the Persistent State Directory."""

import logging
import shutil
from pathlib import Path

from cihost.bootstrap.state import BootstrapState
from cihost.bootstrap.sync import StateSync, chown_tree, make_executable
from cihost.config import BootstrapConfig
from cihost.errors import RestoreError
from cihost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


def _empty_directory(path: Path) -> None:
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


class StateRestorer:
    """Restores prior state, falling back to a fresh start on any failure.

    A restore failure never blocks provisioning: the backup is still in
    the bucket for a later manual restore, and an empty directory gives
    a working (if unconfigured) Jenkins.
    """

    def __init__(self, config: BootstrapConfig, sync: StateSync) -> None:
        self._workload = config.workload
        self._store = config.s3
        self._sync = sync

    async def _pull(self) -> int:
        try:
            summary = await self._sync.pull()
        except Exception as e:
            raise RestoreError(f"Pull from {self._store.url} failed: {e}") from e
        return summary.downloaded

    async def restore(self, state: BootstrapState) -> None:
        """Pull remote state if any exists and record the outcome on state."""
        state_dir = self._workload.state_dir
        state_dir.mkdir(parents=True, exist_ok=True)

        try:
            found = await self._sync.remote_exists()
        except Exception as e:
            logger.error(
                "Could not query %s, starting fresh: %s",
                self._store.url,
                e,
                extra={"event": LogEvent.RESTORE_FAILED, "error": str(e)},
            )
            found = False

        if not found:
            logger.info(
                "No prior state under %s, starting fresh",
                self._store.url,
                extra={"event": LogEvent.RESTORE_SKIPPED},
            )
            state.restore_occurred = False
        else:
            try:
                count = await self._pull()
            except RestoreError as e:
                logger.error(
                    "Restore failed, falling back to fresh start: %s",
                    e.message,
                    extra={"event": LogEvent.RESTORE_FAILED, "error_code": e.code.value},
                )
                _empty_directory(state_dir)
                state.restore_occurred = False
            else:
                fixed = make_executable(state_dir, self._workload.executable_globs)
                logger.info(
                    "Restored %d objects from %s",
                    count,
                    self._store.url,
                    extra={
                        "event": LogEvent.RESTORE_COMPLETED,
                        "objects": count,
                        "executables_fixed": fixed,
                    },
                )
                state.restore_occurred = True

        chown_tree(state_dir, self._workload.uid, self._workload.gid)
