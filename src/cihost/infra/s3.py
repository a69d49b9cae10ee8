"""S3 client for the Remote State Store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator

from aiobotocore.session import AioSession, get_session

from cihost.config import StoreConfig
from cihost.logging_schema import LogEvent

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client

logger = logging.getLogger(__name__)

# S3 delete_objects supports up to 1000 keys per request
DELETE_BATCH_SIZE = 1000
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class S3Operations:
    """S3 operations with session reuse for connection efficiency."""

    def __init__(self, config: StoreConfig, session: AioSession | None = None) -> None:
        self._config = config
        self._session = session or get_session()

    @property
    def bucket(self) -> str:
        return self._config.bucket

    @asynccontextmanager
    async def client(self) -> AsyncGenerator[S3Client, None]:
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint:
            kwargs["endpoint_url"] = self._config.endpoint
        async with self._session.create_client("s3", **kwargs) as client:
            yield client

    async def has_objects(self, prefix: str) -> bool:
        """Return True if at least one object exists under prefix."""
        async with self.client() as s3:
            resp = await s3.list_objects_v2(Bucket=self.bucket, Prefix=prefix, MaxKeys=1)
            return resp.get("KeyCount", 0) > 0

    async def list_objects_with_metadata(self, prefix: str) -> list[dict]:
        """List objects under prefix with Key, Size and LastModified."""
        objects: list[dict] = []
        async with self.client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(
                        {
                            "Key": obj["Key"],
                            "Size": obj["Size"],
                            "LastModified": obj["LastModified"],
                        }
                    )
        return objects

    async def download_file(self, key: str, dest: Path) -> None:
        """Stream one object to a local file, replacing it if present."""
        async with self.client() as s3:
            resp = await s3.get_object(Bucket=self.bucket, Key=key)
            async with resp["Body"] as stream:
                with dest.open("wb") as fh:
                    while chunk := await stream.read(DOWNLOAD_CHUNK_SIZE):
                        fh.write(chunk)

    async def upload_file(self, src: Path, key: str) -> None:
        """Upload one file from an open handle, without buffering it whole."""
        async with self.client() as s3:
            with src.open("rb") as fh:
                await s3.put_object(Bucket=self.bucket, Key=key, Body=fh)

    async def delete_objects(self, keys: list[str]) -> list[str]:
        """Delete multiple objects in batch. Returns list of successfully deleted keys."""
        if not keys:
            return []

        deleted_keys: list[str] = []

        async with self.client() as s3:
            for i in range(0, len(keys), DELETE_BATCH_SIZE):
                batch = keys[i : i + DELETE_BATCH_SIZE]
                response = await s3.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch]},
                )
                for deleted in response.get("Deleted", []):
                    deleted_keys.append(deleted["Key"])
                    logger.debug(
                        "S3 object deleted",
                        extra={"event": LogEvent.S3_OBJECT_DELETED, "key": deleted["Key"]},
                    )
                for error in response.get("Errors", []):
                    logger.warning(
                        "Failed to delete S3 object",
                        extra={
                            "event": LogEvent.S3_DELETE_FAILED,
                            "key": error.get("Key"),
                            "error": error.get("Message"),
                        },
                    )

        return deleted_keys
