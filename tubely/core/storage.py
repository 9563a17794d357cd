"""Object storage for uploaded videos.

Supports: S3, MinIO and other S3-compatible storage, plus the local
filesystem for development.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from tubely.core.config import Settings

logger = logging.getLogger(__name__)


class UrlStrategy:
    """How the public URL of a stored object is produced."""

    DIRECT = "direct"
    CDN = "cdn"
    PRESIGNED = "presigned"

    ALL = (DIRECT, CDN, PRESIGNED)


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # s3, minio, local
    bucket: str = ""
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    url_strategy: str = UrlStrategy.DIRECT

    @classmethod
    def from_settings(cls, settings: Settings) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            cdn_domain=settings.CDN_DOMAIN,
            url_strategy=settings.VIDEO_URL_STRATEGY,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    def __init__(self, config: StorageConfig):
        if config.url_strategy not in UrlStrategy.ALL:
            raise ValueError(f"Unsupported URL strategy: {config.url_strategy}")
        if config.url_strategy == UrlStrategy.CDN and not config.cdn_domain:
            raise ValueError("CDN_DOMAIN is required when VIDEO_URL_STRATEGY=cdn")
        self.config = config

    @property
    def url_strategy(self) -> str:
        return self.config.url_strategy

    @abstractmethod
    def put_object(
        self,
        key: str,
        fileobj: BinaryIO,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Store the bytes of a file object under ``key``."""

    @abstractmethod
    def direct_url(self, key: str) -> str:
        """URL of the object on the storage endpoint itself."""

    @abstractmethod
    def presign(self, key: str, expires_in: int = 3600) -> str:
        """Time-limited GET URL for a private object."""

    def get_url(self, key: str) -> str:
        """Public URL for a key, CDN-fronted when a CDN is configured."""
        if self.url_strategy == UrlStrategy.CDN:
            return f"https://{self.config.cdn_domain}/{key}"
        return self.direct_url(key)


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def put_object(
        self,
        key: str,
        fileobj: BinaryIO,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(dest_path, "wb") as f:
                shutil.copyfileobj(fileobj, f)
            return StorageResult(
                success=True,
                key=key,
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def direct_url(self, key: str) -> str:
        return f"file://{self._get_full_path(key).absolute()}"

    def presign(self, key: str, expires_in: int = 3600) -> str:
        return self.direct_url(key)


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig, client=None):
        super().__init__(config)
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
            }
            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)
        return self._client

    def put_object(
        self,
        key: str,
        fileobj: BinaryIO,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            fileobj.seek(0, 2)
            file_size = fileobj.tell()
            fileobj.seek(0)

            response = self._get_client().put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=fileobj,
                ContentType=content_type,
            )
            return StorageResult(
                success=True,
                key=key,
                file_size=file_size,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def direct_url(self, key: str) -> str:
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def presign(self, key: str, expires_in: int = 3600) -> str:
        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=expires_in,
        )


def create_storage(config: StorageConfig) -> StorageBackend:
    """Create the storage backend named by the configuration."""
    backend_type = config.backend.lower()

    if backend_type == "local":
        return LocalStorage(config)
    elif backend_type in ("s3", "minio", "aws"):
        if not config.bucket:
            raise ValueError("STORAGE_BUCKET is required for S3 storage")
        return S3Storage(config)
    else:
        raise ValueError(f"Unsupported storage backend: {backend_type}")
