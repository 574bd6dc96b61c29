"""S3 blob storage for imported attachments.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
"""

from __future__ import annotations

import asyncio
import re

import boto3
import structlog
from botocore.exceptions import ClientError

from .config import S3Config

logger = structlog.get_logger()


class BlobStore:
    """Upload attachment bytes under a per-message container key."""

    def __init__(self, config: S3Config) -> None:
        self._config = config
        self._client = None  # type: ignore[assignment]

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("blob_store_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        self._client = None
        logger.info("blob_store_stopped")

    def key_for(self, container_key: str, file_name: str) -> str:
        return f"{self._config.attachments_prefix}/{_sanitize(container_key)}/{_sanitize(file_name)}"

    async def _exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._config.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    async def upload(self, buffer: bytes, container_key: str, file_name: str, mime_type: str) -> str:
        """Store *buffer*, replacing any existing object.  Returns the ``s3://`` URI."""
        assert self._client is not None, "S3 client not started"
        key = self.key_for(container_key, file_name)

        if await self._exists(key):
            await asyncio.to_thread(self._client.delete_object, Bucket=self._config.bucket, Key=key)
            logger.debug("blob_replaced", key=key)

        await asyncio.to_thread(
            self._client.put_object,
            Bucket=self._config.bucket,
            Key=key,
            Body=buffer,
            ContentType=mime_type,
        )
        uri = f"s3://{self._config.bucket}/{key}"
        logger.debug("blob_uploaded", uri=uri, size=len(buffer))
        return uri


def _sanitize(name: str) -> str:
    """Remove characters unsafe for S3 keys."""
    return re.sub(r"[^\w.\-]", "_", name)
