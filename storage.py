"""
Blob storage for uploaded notes and profile images.

Files live in an S3-compatible bucket. `upload` returns the public URL plus
the object key, which doubles as the deletion handle kept on the record.
`destroy` is idempotent: deleting a key that is already gone succeeds.
"""

import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

import config
from errors import DependencyFailure

logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    url: str
    storage_id: str


class BlobStorage:
    def __init__(self, bucket: str, region: str, endpoint_url: Optional[str] = None,
                 access_key: Optional[str] = None, secret_key: Optional[str] = None,
                 public_url: Optional[str] = None):
        self.bucket = bucket
        self.region = region
        self.public_url = (public_url or self._default_public_url(bucket, region, endpoint_url)).rstrip("/")
        self.client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4"),
        )

    @staticmethod
    def _default_public_url(bucket: str, region: str, endpoint_url: Optional[str]) -> str:
        if endpoint_url:
            return f"{endpoint_url.rstrip('/')}/{bucket}"
        return f"https://{bucket}.s3.{region}.amazonaws.com"

    def upload(self, payload: bytes, folder: str, filename: str, content_type: str) -> StoredFile:
        key = f"{folder}/{uuid.uuid4().hex}_{filename}"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=payload,
                ContentType=content_type,
                ContentDisposition=f'attachment; filename="{filename}"',
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Upload of %s to bucket %s failed: %s", key, self.bucket, e)
            raise DependencyFailure("File upload failed")
        return StoredFile(url=f"{self.public_url}/{key}", storage_id=key)

    def destroy(self, storage_id: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=storage_id)
        except (BotoCoreError, ClientError) as e:
            raise DependencyFailure(f"Deleting {storage_id} failed: {e}")


def destroy_quietly(storage: BlobStorage, storage_id: Optional[str]) -> bool:
    """Best-effort delete; failures are logged, never raised."""
    if not storage_id:
        return False
    try:
        storage.destroy(storage_id)
        return True
    except DependencyFailure as e:
        logger.warning("Could not delete file %s from storage: %s", storage_id, e.message)
        return False


@lru_cache(maxsize=1)
def get_storage() -> BlobStorage:
    return BlobStorage(
        bucket=config.STORAGE_BUCKET,
        region=config.STORAGE_REGION,
        endpoint_url=config.STORAGE_ENDPOINT_URL,
        access_key=config.STORAGE_ACCESS_KEY,
        secret_key=config.STORAGE_SECRET_KEY,
        public_url=config.STORAGE_PUBLIC_URL,
    )
