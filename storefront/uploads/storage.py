"""
S3-compatible object storage client (Cloudflare R2 in production).

Small payloads go up in one PutObject call; payloads at or above the multipart
threshold are split into parts sent with bounded concurrency. A multipart
upload that fails or is cancelled is aborted so no orphaned parts remain.
Deletions are best-effort: failures are logged, never raised.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

import aiobotocore.session
from aiobotocore.session import AioSession

from storefront.core.clock import epoch_ms
from storefront.core.config import Settings
from storefront.core.errors import StorageError
from storefront.uploads.validator import sanitize_name

logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=31536000, immutable"
DELETE_BATCH_SIZE = 1000


def build_object_key(
    owner_id: str,
    resource_id: str,
    filename: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """``{owner_id}/{resource_id}/{timestamp_ms}-{sanitized filename}``"""
    if timestamp_ms is None:
        timestamp_ms = epoch_ms()
    return f"{owner_id}/{resource_id}/{timestamp_ms}-{sanitize_name(filename)}"


def content_disposition_for(key: str) -> str:
    filename = key.rsplit("/", 1)[-1].replace('"', "") or "file"
    return f'inline; filename="{filename}"'


class ObjectStorageClient:
    """Uploads and deletes objects; one short-lived S3 client per operation."""

    def __init__(self, settings: Settings, session: Optional[AioSession] = None):
        self.settings = settings
        self._session = session or aiobotocore.session.get_session()
        self.public_base_url = settings.storage_public_base_url.rstrip("/")
        self.multipart_threshold = settings.multipart_threshold_bytes
        self.part_size = settings.multipart_part_size_bytes
        self.concurrency = settings.multipart_concurrency

    def _create_client(self):
        access_key = self.settings.r2_access_key_id
        secret_key = self.settings.r2_secret_access_key
        return self._session.create_client(
            "s3",
            region_name=self.settings.storage_region,
            endpoint_url=self.settings.resolved_storage_endpoint,
            aws_access_key_id=access_key.get_secret_value() if access_key else None,
            aws_secret_access_key=secret_key.get_secret_value() if secret_key else None,
        )

    @property
    def configured(self) -> bool:
        return bool(
            self.settings.resolved_storage_endpoint
            and self.settings.r2_access_key_id
            and self.settings.r2_secret_access_key
        )

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url}/{bucket}/{key.lstrip('/')}"

    def key_from_public_url(self, bucket: str, url: str) -> Optional[str]:
        """
        Recover the object key from a URL returned by :meth:`upload_file`.

        Absolute URLs must sit under ``{public_base_url}/{bucket}/``; anything
        else is not ours and yields ``None``. Bare keys are accepted with or
        without a leading slash or bucket segment. Query strings and fragments
        are dropped.
        """
        if not url:
            return None

        parts = urlsplit(url)
        if parts.scheme or parts.netloc:
            prefix = f"{self.public_base_url}/{bucket}/"
            location = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
            if not location.startswith(prefix):
                return None
            return location[len(prefix):] or None

        path = parts.path.lstrip("/")
        if path.startswith(f"{bucket}/"):
            path = path[len(bucket) + 1:]
        return path or None

    async def upload_file(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """
        Store ``data`` under ``bucket/key`` and return its public URL.

        Args:
            bucket: Target bucket
            key: Object key (see :func:`build_object_key`)
            data: Entire payload
            content_type: Stored as the object's Content-Type

        Returns:
            The public URL of the stored object

        Raises:
            StorageError: The provider rejected the upload or was unreachable
        """
        params = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type or "application/octet-stream",
            "CacheControl": CACHE_CONTROL,
            "ContentDisposition": content_disposition_for(key),
        }
        size = len(data)

        try:
            async with self._create_client() as s3:
                if size < self.multipart_threshold:
                    await s3.put_object(Body=data, **params)
                else:
                    await self._multipart_upload(s3, data, params)
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to upload object: {e}", extra={
                "bucket": bucket,
                "object_key": key,
                "size_bytes": size,
                "error_type": type(e).__name__,
            })
            raise StorageError(bucket, key) from e

        logger.info("Object uploaded", extra={
            "bucket": bucket,
            "object_key": key,
            "size_bytes": size,
            "multipart": size >= self.multipart_threshold,
        })
        return self.public_url(bucket, key)

    async def _multipart_upload(self, s3: Any, data: bytes, params: Dict[str, Any]) -> None:
        bucket, key = params["Bucket"], params["Key"]
        created = await s3.create_multipart_upload(**params)
        upload_id = created["UploadId"]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def send_part(part_number: int, offset: int) -> Dict[str, Any]:
            async with semaphore:
                result = await s3.upload_part(
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=data[offset:offset + self.part_size],
                )
                return {"ETag": result["ETag"], "PartNumber": part_number}

        tasks = [
            asyncio.ensure_future(send_part(number, offset))
            for number, offset in enumerate(range(0, len(data), self.part_size), start=1)
        ]

        try:
            parts = await asyncio.gather(*tasks)
            await s3.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": list(parts)},
            )
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await asyncio.shield(self._abort_multipart(s3, bucket, key, upload_id))
            raise

    async def _abort_multipart(self, s3: Any, bucket: str, key: str, upload_id: str) -> None:
        try:
            await s3.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
            logger.warning("Multipart upload aborted", extra={"bucket": bucket, "object_key": key})
        except Exception as e:
            logger.error(f"Failed to abort multipart upload: {e}", extra={
                "bucket": bucket,
                "object_key": key,
                "upload_id": upload_id,
            })

    async def delete_file(self, bucket: str, key: str) -> None:
        try:
            async with self._create_client() as s3:
                await s3.delete_object(Bucket=bucket, Key=key)
        except Exception as e:
            logger.error(f"Failed to delete object: {e}", extra={"bucket": bucket, "object_key": key})

    async def delete_files(self, bucket: str, keys: Iterable[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            return

        try:
            async with self._create_client() as s3:
                for start in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[start:start + DELETE_BATCH_SIZE]
                    response = await s3.delete_objects(
                        Bucket=bucket,
                        Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                    )
                    for error in (response or {}).get("Errors", []):
                        logger.error("Failed to delete object in batch", extra={
                            "bucket": bucket,
                            "object_key": error.get("Key"),
                            "error_code": error.get("Code"),
                        })
        except Exception as e:
            logger.error(f"Failed to delete objects: {e}", extra={
                "bucket": bucket,
                "object_count": len(keys),
            })

    async def delete_by_urls(self, bucket: str, urls: Iterable[str]) -> List[str]:
        """Delete the objects behind previously returned public URLs; returns their keys."""
        keys = [k for k in (self.key_from_public_url(bucket, u) for u in urls) if k]
        await self.delete_files(bucket, keys)
        return keys
