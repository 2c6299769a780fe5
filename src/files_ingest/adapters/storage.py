"""
Blob store adapters.

Clients upload straight into the blob store through a time-limited handle; the
worker later reads the bytes back and writes derivatives next to them.
S3 is used in the AWS modes, a directory on disk in local-dev.
"""

import logging
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from files_ingest.errors import TransientStorageError
from files_ingest.schemas import ContentDisposition
from files_ingest.settings import Settings, get_settings

try:
    from mypy_boto3_s3 import S3Client
except ImportError:
    ...

logger = logging.getLogger(__name__)


def content_disposition(filename: str, disposition: ContentDisposition) -> str:
    return f'{ContentDisposition(disposition).value}; filename="{quote(filename)}"'


class BaseBlobStore:
    """Base class for blob stores (to be extended by specific implementations)"""

    def issue_upload_handle(self, key: str, content_type: str, size: int) -> str:
        raise NotImplementedError

    def issue_download_handle(self, key: str, filename: str, disposition: ContentDisposition) -> str:
        raise NotImplementedError

    def get_object(self, key: str) -> bytes:
        raise NotImplementedError

    def put_object(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    def delete_object(self, key: str) -> None:
        raise NotImplementedError


class S3BlobStore(BaseBlobStore):
    """Blob store backed by an S3 bucket with presigned URLs."""

    def __init__(
        self,
        bucket_name: str,
        s3_client: Optional["S3Client"] = None,
        presigned_url_expiry: int = 900,
    ):
        self.bucket_name = bucket_name
        self.s3 = s3_client or boto3.client("s3")
        self.presigned_url_expiry = presigned_url_expiry

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BlobStore":
        s3_client = boto3.client(
            "s3",
            endpoint_url=settings.aws_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=BotoConfig(
                connect_timeout=settings.blob_timeout_seconds,
                read_timeout=settings.blob_timeout_seconds,
                retries={"max_attempts": 2},
            ),
        )
        logger.info(f"S3BlobStore initialized for bucket {settings.s3_bucket_name}")
        return cls(settings.s3_bucket_name, s3_client, settings.presigned_url_expiry_seconds)

    def issue_upload_handle(self, key: str, content_type: str, size: int) -> str:
        return self.s3.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self.bucket_name,
                "Key": key,
                "ContentType": content_type,
                "ContentLength": size,
            },
            ExpiresIn=self.presigned_url_expiry,
        )

    def issue_download_handle(self, key: str, filename: str, disposition: ContentDisposition) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={
                "Bucket": self.bucket_name,
                "Key": key,
                "ResponseContentDisposition": content_disposition(filename, disposition),
            },
            ExpiresIn=self.presigned_url_expiry,
        )

    def get_object(self, key: str) -> bytes:
        try:
            response = self.s3.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error downloading '{key}' from bucket '{self.bucket_name}': {str(e)}")
            raise TransientStorageError(f"Failed to download file from storage: {str(e)}") from e

    def put_object(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> None:
        try:
            self.s3.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
                Metadata=metadata or {},
            )
            logger.info(f"Uploaded {len(data)} bytes to S3 as {key}")
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading '{key}' to S3: {str(e)}")
            raise TransientStorageError(f"Failed to upload file to storage: {str(e)}") from e

    def delete_object(self, key: str) -> None:
        try:
            self.s3.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise TransientStorageError(f"Failed to delete file from storage: {str(e)}") from e


class LocalBlobStore(BaseBlobStore):
    """Blob store on the local file system, for local-dev.

    Handles are ``file://`` URIs of the target path; the "client" writes there directly.
    """

    def __init__(self, root_dir: str):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalBlobStore initialized at: %s", self.root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Invalid storage key: {key}")
        return path

    def issue_upload_handle(self, key: str, content_type: str, size: int) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.as_uri()

    def issue_download_handle(self, key: str, filename: str, disposition: ContentDisposition) -> str:
        return self._path(key).as_uri()

    def get_object(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise TransientStorageError(f"Failed to download file from storage: {str(e)}") from e

    def put_object(self, key: str, data: bytes, content_type: str, metadata: Optional[Dict[str, str]] = None) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def delete_object(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class StorageFactory:
    """Factory to initialize the correct blob store based on deployment mode"""

    @staticmethod
    def get_blob_store(settings: Optional[Settings] = None) -> BaseBlobStore:
        settings = settings or get_settings()
        if settings.is_aws:
            return S3BlobStore.from_settings(settings)
        return LocalBlobStore(str(Path(settings.storage_dir) / "blobs"))
