"""
S3-backed blob store for item images and rendered quotation PDFs

Paths are opaque to callers. Every ``put`` yields a fresh key, so two uploads
of identical bytes never share a path. The boto3 client is blocking; each call
runs in a worker thread so request handlers stay responsive.
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from laminates.core.config import Settings, get_settings
from laminates.core.errors import StorageFailedError

logger = logging.getLogger(__name__)

KEY_PREFIX = "quotations"
_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass
class BlobDeletionReport:
    """Outcome of a best-effort multi-path delete"""
    deleted: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def log_failures(self, context: str) -> None:
        for path, reason in self.failed:
            logger.warning(f"Blob cleanup failed during {context}: {path} ({reason})")


def build_key(scope: str, extension: str) -> str:
    """quotations/<scope>/<epoch-ms>-<random>.<ext>"""
    timestamp = int(time.time() * 1000)
    suffix = secrets.token_hex(6)
    extension = extension.lstrip(".").lower() or "bin"
    return f"{KEY_PREFIX}/{scope.strip('/')}/{timestamp}-{suffix}.{extension}"


class S3BlobStore:
    """Blob store on a single S3 bucket with public-read objects"""

    def __init__(self, settings: Optional[Settings] = None, client=None):
        self.settings = settings or get_settings()
        self.bucket = self.settings.aws_bucket_name
        self.region = self.settings.aws_region
        self.s3_client = client or boto3.client(
            's3',
            aws_access_key_id=self.settings.aws_access_key_id,
            aws_secret_access_key=self.settings.aws_secret_access_key,
            region_name=self.region,
            config=Config(
                signature_version='s3v4',
                s3={'addressing_style': 'virtual'}
            )
        )
        logger.info(f"Blob store initialized - bucket: {self.bucket}")

    async def put(self, data: bytes, content_type: str, scope: str, extension: str) -> str:
        """Upload bytes under a new key within ``scope`` and return the key"""
        key = build_key(scope, extension)
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ACL='public-read',
            )
        except asyncio.CancelledError:
            # the worker thread keeps running, so the object may still land
            logger.warning(f"Upload of {key} cancelled before completion; object may be orphaned")
            raise
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {key}: {e}")
            raise StorageFailedError(
                f"Storage upload failed: {e}",
                details={"operation": "put", "path": key},
            )
        logger.debug(f"Uploaded {len(data)} bytes to {key}")
        return key

    async def get(self, path: str) -> bytes:
        try:
            response = await asyncio.to_thread(
                self.s3_client.get_object, Bucket=self.bucket, Key=path
            )
            return await asyncio.to_thread(response['Body'].read)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to download {path}: {e}")
            raise StorageFailedError(
                f"Storage download failed: {e}",
                details={"operation": "get", "path": path},
            )

    async def delete(self, path: str) -> None:
        """Delete ``path``; a key that is already gone counts as deleted"""
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object, Bucket=self.bucket, Key=path
            )
        except ClientError as e:
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code in _MISSING_KEY_CODES:
                return
            raise StorageFailedError(
                f"Storage delete failed: {e}",
                details={"operation": "delete", "path": path},
            )
        except BotoCoreError as e:
            raise StorageFailedError(
                f"Storage delete failed: {e}",
                details={"operation": "delete", "path": path},
            )

    async def delete_many(self, paths: Iterable[str]) -> BlobDeletionReport:
        """Delete every path independently, collecting failures instead of raising"""
        report = BlobDeletionReport()
        for path in paths:
            if not path:
                continue
            try:
                await self.delete(path)
                report.deleted.append(path)
            except StorageFailedError as e:
                report.failed.append((path, e.message))
        return report

    def public_url(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"


_blob_store: Optional[S3BlobStore] = None


def get_blob_store() -> S3BlobStore:
    """Process-wide blob store (FastAPI dependency)"""
    global _blob_store
    if _blob_store is None:
        _blob_store = S3BlobStore()
    return _blob_store
