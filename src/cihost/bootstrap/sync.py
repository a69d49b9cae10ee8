"""Synchronization between the Persistent State Directory and S3.

Two directions with different semantics:

- pull: copy every object under the prefix into the state directory.
  Non-destructive: local files without a remote counterpart are kept.
- push_mirror: make the prefix an exact mirror of the state directory.
  Destructive: objects with no local file are deleted.

Symlinks are not followed or stored. Jenkins recreates its build
permalinks (lastSuccessfulBuild etc.) on load.
"""

from __future__ import annotations

import logging
import os
import stat
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel

from cihost.config import StoreConfig
from cihost.core.poll import retry_fixed
from cihost.infra.s3 import S3Operations
from cihost.logging_schema import LogEvent
from cihost.metrics import SYNC_OBJECTS_TOTAL

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncSummary(BaseModel):
    uploaded: int = 0
    downloaded: int = 0
    deleted: int = 0
    unchanged: int = 0


def chown_tree(root: Path, uid: int, gid: int) -> None:
    """Recursively set ownership on root and everything below it."""
    os.lchown(root, uid, gid)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            os.lchown(os.path.join(dirpath, name), uid, gid)


def make_executable(root: Path, patterns: list[str]) -> int:
    """Add execute bits to regular files under root matching any glob.

    Returns:
        Number of files whose mode changed
    """
    changed = 0
    seen: set[Path] = set()
    for pattern in patterns:
        for path in root.glob(pattern):
            if path in seen or path.is_symlink() or not path.is_file():
                continue
            seen.add(path)
            mode = path.stat().st_mode
            wanted = mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
            if wanted != mode:
                path.chmod(wanted)
                changed += 1
    return changed


class StateSync:
    """Moves the state directory to and from one S3 prefix.

    Every S3 call goes through ``retry_fixed`` with the store's attempt
    budget; permanent errors (denied access, missing bucket) are not retried.
    """

    def __init__(
        self,
        store: StoreConfig,
        state_dir: Path,
        s3: S3Operations | None = None,
    ) -> None:
        self._prefix = store.prefix
        self._attempts = store.retry_attempts
        self._delay = store.retry_delay
        self._state_dir = state_dir
        self._s3 = s3 or S3Operations(store)

    async def _call(self, operation: str, coro_factory: Callable[[], Awaitable[T]]) -> T:
        return await retry_fixed(coro_factory, self._attempts, self._delay, operation)

    def _key(self, relative: str) -> str:
        return f"{self._prefix}{relative}"

    def _destination(self, relative: str) -> Path:
        """Map a relative key to a local path, rejecting escapes from state_dir."""
        root = self._state_dir.resolve()
        dest = (root / relative).resolve()
        if not dest.is_relative_to(root) or dest == root:
            raise ValueError(f"Object key escapes state directory: {relative!r}")
        return dest

    def _local_files(self) -> dict[str, Path]:
        """Regular files under state_dir keyed by POSIX relative path."""
        files: dict[str, Path] = {}
        if not self._state_dir.is_dir():
            return files
        for dirpath, _dirnames, filenames in os.walk(self._state_dir):
            for name in filenames:
                path = Path(dirpath) / name
                if path.is_symlink() or not path.is_file():
                    continue
                files[path.relative_to(self._state_dir).as_posix()] = path
        return files

    async def remote_exists(self) -> bool:
        """Return True if any object exists under the prefix."""
        return await self._call("s3_list", lambda: self._s3.has_objects(self._prefix))

    async def _list(self) -> list[dict]:
        return await self._call(
            "s3_list", lambda: self._s3.list_objects_with_metadata(self._prefix)
        )

    async def pull(self) -> SyncSummary:
        """Recursively copy the remote prefix into the state directory."""
        summary = SyncSummary()
        self._state_dir.mkdir(parents=True, exist_ok=True)

        for obj in await self._list():
            key = obj["Key"]
            relative = key[len(self._prefix) :]
            # Directory placeholders created by consoles and some tools
            if not relative or relative.endswith("/"):
                continue
            dest = self._destination(relative)
            dest.parent.mkdir(parents=True, exist_ok=True)
            await self._call("s3_download", lambda: self._s3.download_file(key, dest))
            summary.downloaded += 1

        SYNC_OBJECTS_TOTAL.labels(direction="pull", action="downloaded").inc(summary.downloaded)
        logger.info(
            "Pulled %d objects from s3://%s/%s",
            summary.downloaded,
            self._s3.bucket,
            self._prefix,
            extra={"event": LogEvent.S3_SYNC_COMPLETED, "direction": "pull", **summary.model_dump()},
        )
        return summary

    async def push_mirror(self) -> SyncSummary:
        """Mirror the state directory to the remote prefix, deleting extras.

        A file is uploaded when it has no object, the sizes differ, or the
        local mtime is newer than the object's LastModified. A file removed
        by Jenkins while the mirror runs is treated as absent locally.
        """
        summary = SyncSummary()
        local = self._local_files()
        remote = {obj["Key"]: obj for obj in await self._list()}
        vanished: set[str] = set()

        for relative, path in sorted(local.items()):
            key = self._key(relative)
            try:
                st = path.stat()
                existing = remote.get(key)
                if (
                    existing is not None
                    and existing["Size"] == st.st_size
                    and st.st_mtime <= existing["LastModified"].timestamp()
                ):
                    summary.unchanged += 1
                    continue
                await self._call("s3_upload", lambda: self._s3.upload_file(path, key))
            except FileNotFoundError:
                logger.warning("Skipping %s: removed during mirror", path)
                vanished.add(relative)
                continue
            summary.uploaded += 1

        local_keys = {self._key(relative) for relative in local if relative not in vanished}
        stale = sorted(key for key in remote if key not in local_keys)
        deleted = await self._call("s3_delete", lambda: self._s3.delete_objects(stale))
        summary.deleted = len(deleted)

        SYNC_OBJECTS_TOTAL.labels(direction="push", action="uploaded").inc(summary.uploaded)
        SYNC_OBJECTS_TOTAL.labels(direction="push", action="deleted").inc(summary.deleted)
        logger.info(
            "Mirrored %s to s3://%s/%s",
            self._state_dir,
            self._s3.bucket,
            self._prefix,
            extra={"event": LogEvent.S3_SYNC_COMPLETED, "direction": "push", **summary.model_dump()},
        )
        return summary
