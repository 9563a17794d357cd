"""Video management module."""

from tubely.modules.video.models import Video
from tubely.modules.video.repository import VideoRepository
from tubely.modules.video.service import (
    InvalidUploadError,
    NotVideoOwnerError,
    PersistenceError,
    StagingError,
    StorageUploadError,
    UploadTooLargeError,
    VideoNotFoundError,
    VideoService,
    VideoServiceError,
    build_storage_key,
    check_media_type,
    parse_media_type,
)

__all__ = [
    # Models
    "Video",
    # Repositories
    "VideoRepository",
    # Service
    "VideoService",
    "VideoServiceError",
    "InvalidUploadError",
    "UploadTooLargeError",
    "VideoNotFoundError",
    "NotVideoOwnerError",
    "StagingError",
    "StorageUploadError",
    "PersistenceError",
    "build_storage_key",
    "check_media_type",
    "parse_media_type",
]
