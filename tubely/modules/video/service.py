"""Video service for business logic.

Implements draft creation, ownership checks and the upload pipeline:
stage the uploaded bytes, probe the geometry, derive the storage key,
rewrite for fast start, push to object storage and record the URL.
"""

import asyncio
import logging
import os
import secrets
import tempfile
import time
import uuid
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import AsyncContextManager, AsyncIterator, BinaryIO, Iterator, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from tubely.core.context import AppContext
from tubely.core.logging import log_error, log_info, log_warning
from tubely.core.metrics import (
    VIDEO_ORIENTATION_TOTAL,
    VIDEO_UPLOAD_BYTES,
    VIDEO_UPLOAD_STAGE_DURATION_SECONDS,
    VIDEO_UPLOADS_TOTAL,
)
from tubely.core.storage import UrlStrategy
from tubely.core.tracing import add_span_attributes, create_span
from tubely.modules.transcoding.ffmpeg import MediaToolError
from tubely.modules.transcoding.ratio import classify_aspect_ratio
from tubely.modules.transcoding.schemas import Orientation
from tubely.modules.video.models import Video
from tubely.modules.video.multipart import (
    MalformedFormError,
    MultipartFileReader,
    PartHeaders,
    PartTooLargeError,
    get_boundary,
)
from tubely.modules.video.schemas import (
    ALLOWED_VIDEO_MEDIA_TYPE,
    VIDEO_FORM_FIELD,
    VideoCreateRequest,
    VideoResponse,
)

logger = logging.getLogger(__name__)

STORAGE_KEY_RANDOM_BYTES = 32
STAGED_FILE_PREFIX = "tubely-upload-"


class VideoServiceError(Exception):
    """Base exception for video service errors."""

    pass


class InvalidUploadError(VideoServiceError):
    """Raised when the request or its file part is malformed."""

    pass


class UploadTooLargeError(VideoServiceError):
    """Raised when the uploaded body exceeds the size ceiling."""

    pass


class VideoNotFoundError(VideoServiceError):
    """Raised when video is not found."""

    pass


class NotVideoOwnerError(VideoServiceError):
    """Raised when the caller does not own the video."""

    pass


class StagingError(VideoServiceError):
    """Raised when the upload cannot be written to local temporary storage."""

    pass


class StorageUploadError(VideoServiceError):
    """Raised when object storage rejects the upload."""

    pass


class PersistenceError(VideoServiceError):
    """Raised when the video record cannot be read or written."""

    pass


class VideoStore(Protocol):
    """Persistence operations the service relies on."""

    async def create(self, user_id: uuid.UUID, title: str, description: Optional[str] = None) -> Video:
        ...

    async def get_by_id(self, video_id: uuid.UUID) -> Optional[Video]:
        ...

    async def list_by_user(self, user_id: uuid.UUID, limit: int = 100, offset: int = 0) -> list[Video]:
        ...

    async def update(self, video: Video) -> Video:
        ...


def parse_video_id(value: str) -> uuid.UUID:
    """Parse a path-supplied video identifier.

    Raises:
        InvalidUploadError: If the value is not a UUID
    """
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError) as e:
        raise InvalidUploadError("Invalid ID") from e


def parse_media_type(content_type: Optional[str]) -> str:
    """Return the lower-cased media type of a Content-Type value, without parameters."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def check_media_type(content_type: Optional[str]) -> None:
    """Accept only MP4 uploads.

    Raises:
        InvalidUploadError: If the declared type is anything but ``video/mp4``
    """
    if parse_media_type(content_type) != ALLOWED_VIDEO_MEDIA_TYPE:
        raise InvalidUploadError("Invalid file type. Only MP4 videos are allowed")


@dataclass
class StagedUpload:
    """An upload written to local temporary storage."""
    path: str
    content_type: Optional[str]


def build_storage_key(orientation: Orientation, media_type: str) -> str:
    """Build ``{orientation}/{random hex}.{subtype}`` for an upload.

    The random part is 32 bytes from the OS CSPRNG; uniqueness is never
    checked against existing keys.
    """
    _, _, subtype = media_type.partition("/")
    if not subtype:
        raise ValueError(f"Media type has no subtype: {media_type!r}")
    token = secrets.token_hex(STORAGE_KEY_RANDOM_BYTES)
    return f"{orientation.value}/{token}.{subtype}"


def copy_limited(source: BinaryIO, destination: BinaryIO, max_size: int, chunk_size: int) -> int:
    """Copy ``source`` into ``destination`` in chunks, stopping past ``max_size`` bytes.

    Returns:
        Number of bytes copied

    Raises:
        UploadTooLargeError: If the source holds more than ``max_size`` bytes
    """
    size = 0
    while chunk := source.read(chunk_size):
        size += len(chunk)
        if size > max_size:
            raise UploadTooLargeError(f"File exceeds maximum size of {max_size} bytes")
        destination.write(chunk)
    return size


def remove_file(path: str) -> None:
    """Remove a temporary file, tolerating one that is already gone."""
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log_warning(logger, "Couldn't remove temporary file", path=path, error=str(e))


@contextmanager
def upload_stage(name: str, **attributes) -> Iterator[None]:
    """Time a pipeline stage and wrap it in a tracing span."""
    start = time.perf_counter()
    try:
        with create_span(f"upload.{name}", attributes=attributes):
            yield
    finally:
        VIDEO_UPLOAD_STAGE_DURATION_SECONDS.labels(stage=name).observe(
            time.perf_counter() - start
        )


class VideoService:
    """Service for video management operations."""

    def __init__(self, context: AppContext, repository: VideoStore):
        """Initialize service with the application context and a repository."""
        self.settings = context.settings
        self.storage = context.storage
        self.probe = context.probe
        self.rewriter = context.rewriter
        self.repository = repository

    async def create_video(self, user_id: uuid.UUID, request: VideoCreateRequest) -> Video:
        """Create a draft video owned by ``user_id``."""
        try:
            video = await self.repository.create(
                user_id=user_id,
                title=request.title,
                description=request.description,
            )
        except SQLAlchemyError as e:
            log_error(logger, "Couldn't create video", e, user_id=str(user_id))
            raise PersistenceError("Couldn't create video") from e

        log_info(logger, "Video created", video_id=str(video.id), user_id=str(user_id))
        return video

    async def get_owned_video(self, video_id: uuid.UUID, user_id: uuid.UUID) -> Video:
        """Fetch a video and check that ``user_id`` owns it.

        Raises:
            PersistenceError: If the lookup fails
            VideoNotFoundError: If no such video exists
            NotVideoOwnerError: If the video belongs to someone else
        """
        try:
            video = await self.repository.get_by_id(video_id)
        except SQLAlchemyError as e:
            log_error(logger, "Couldn't get video", e, video_id=str(video_id))
            raise PersistenceError("Couldn't get video") from e

        if video is None:
            raise VideoNotFoundError(f"Video {video_id} not found")

        if not video.is_owned_by(user_id):
            log_warning(
                logger,
                "Rejected access to video by non-owner",
                video_id=str(video_id),
                user_id=str(user_id),
            )
            raise NotVideoOwnerError("User not authorized")

        return video

    async def list_videos(self, user_id: uuid.UUID, limit: int = 100, offset: int = 0) -> list[Video]:
        """List the caller's videos."""
        try:
            return await self.repository.list_by_user(user_id, limit=limit, offset=offset)
        except SQLAlchemyError as e:
            log_error(logger, "Couldn't list videos", e, user_id=str(user_id))
            raise PersistenceError("Couldn't list videos") from e

    async def upload_video_form(
        self,
        video: Video,
        body: AsyncIterator[bytes],
        form_content_type: Optional[str],
    ) -> Video:
        """Run the upload pipeline on a streamed multipart request body.

        The ``video`` part's declared type is checked as soon as its headers
        arrive; a rejected part is never written anywhere.

        Args:
            video: Video the caller owns
            body: Request body chunks
            form_content_type: Content-Type header of the request

        Returns:
            Video: The updated video record

        Raises:
            VideoServiceError: For validation, staging, storage and database failures
            MediaToolError: If probing or the fast-start rewrite fails
        """
        return await self._publish(video, self.staged_form_upload(body, form_content_type))

    async def upload_video_file(
        self,
        video: Video,
        upload: BinaryIO,
        content_type: Optional[str],
    ) -> Video:
        """Run the upload pipeline on a file that was already received.

        Args:
            video: Video the caller owns
            upload: Readable file object positioned at the start of the upload
            content_type: Declared Content-Type of the file
        """
        return await self._publish(video, self.staged_upload(upload, content_type))

    async def _publish(self, video: Video, staging: AsyncContextManager[StagedUpload]) -> Video:
        """Probe, rewrite, store and record a staged upload.

        Both temporary files (staged upload and fast-start copy) are removed
        before this returns or raises. An object already pushed to storage
        is left in place if persisting the URL fails afterwards.
        """
        try:
            with create_span("upload.pipeline", attributes={"video.id": str(video.id)}):
                async with staging as staged:
                    media_type = parse_media_type(staged.content_type)

                    with upload_stage("probe"):
                        geometry = await asyncio.to_thread(self.probe.probe, staged.path)

                    orientation = classify_aspect_ratio(geometry.width, geometry.height)
                    key = build_storage_key(orientation, media_type)
                    add_span_attributes({
                        "video.width": geometry.width,
                        "video.height": geometry.height,
                        "video.orientation": orientation.value,
                        "storage.key": key,
                    })

                    async with self.fast_start_copy(staged.path) as processed:
                        with upload_stage("storage", key=key):
                            result = await asyncio.to_thread(
                                self.storage.put_object, key, processed, staged.content_type
                            )
                        if not result.success:
                            raise StorageUploadError(
                                f"Couldn't upload video: {result.error_message}"
                            )

                with upload_stage("persist"):
                    video = await self._attach_url(video, key)

        except (VideoServiceError, MediaToolError) as e:
            VIDEO_UPLOADS_TOTAL.labels(outcome=type(e).__name__).inc()
            log_error(logger, "Video upload failed", e, video_id=str(video.id))
            raise

        VIDEO_UPLOADS_TOTAL.labels(outcome="success").inc()
        VIDEO_ORIENTATION_TOTAL.labels(orientation=orientation.value).inc()
        log_info(
            logger,
            "Video uploaded",
            video_id=str(video.id),
            key=key,
            orientation=orientation.value,
            width=geometry.width,
            height=geometry.height,
            file_size=result.file_size,
        )
        return video

    @asynccontextmanager
    async def staged_form_upload(
        self,
        body: AsyncIterator[bytes],
        form_content_type: Optional[str],
    ) -> AsyncIterator[StagedUpload]:
        """Stream the form's ``video`` part into a new temporary file.

        The file is created only after the part's declared type is accepted
        and is removed when the block exits, whatever the outcome.
        """
        try:
            boundary = get_boundary(form_content_type)
        except MalformedFormError as e:
            raise InvalidUploadError(f"Unable to parse form: {e}") from e

        opened: list[tuple[BinaryIO, Optional[str]]] = []

        def open_part(part: PartHeaders) -> BinaryIO:
            check_media_type(part.content_type)
            staged = self._create_staged_file()
            opened.append((staged, part.content_type))
            return staged

        reader = MultipartFileReader(
            boundary,
            VIDEO_FORM_FIELD,
            open_part,
            max_size=self.settings.MAX_UPLOAD_SIZE,
        )
        try:
            with upload_stage("staging"):
                try:
                    async for chunk in body:
                        if chunk:
                            await asyncio.to_thread(reader.feed, chunk)
                    found = reader.finish()
                except PartTooLargeError as e:
                    raise UploadTooLargeError(str(e)) from e
                except MalformedFormError as e:
                    raise InvalidUploadError(f"Unable to parse form: {e}") from e
                except OSError as e:
                    raise StagingError("Couldn't copy temp local file") from e
                finally:
                    for staged, _ in opened:
                        staged.close()

            if not found:
                raise InvalidUploadError("Unable to get file")

            staged, content_type = opened[0]
            VIDEO_UPLOAD_BYTES.observe(reader.part_size)
            yield StagedUpload(path=staged.name, content_type=content_type)
        finally:
            for staged, _ in opened:
                remove_file(staged.name)

    @asynccontextmanager
    async def staged_upload(
        self,
        upload: BinaryIO,
        content_type: Optional[str],
    ) -> AsyncIterator[StagedUpload]:
        """Copy an already-received upload into a new temporary file.

        The declared type is checked before the file is created. The file
        is removed when the block exits, whatever the outcome.
        """
        check_media_type(content_type)
        with upload_stage("staging"):
            staged_path = await asyncio.to_thread(self._stage, upload)
        try:
            yield StagedUpload(path=staged_path, content_type=content_type)
        finally:
            remove_file(staged_path)

    def _create_staged_file(self) -> BinaryIO:
        try:
            return tempfile.NamedTemporaryFile(
                prefix=STAGED_FILE_PREFIX,
                suffix=".mp4",
                dir=self.settings.UPLOAD_TEMP_DIR,
                delete=False,
            )
        except OSError as e:
            raise StagingError("Couldn't create temp local file") from e

    def _stage(self, upload: BinaryIO) -> str:
        staged = self._create_staged_file()
        try:
            with staged:
                size = copy_limited(
                    upload,
                    staged,
                    max_size=self.settings.MAX_UPLOAD_SIZE,
                    chunk_size=self.settings.UPLOAD_CHUNK_SIZE,
                )
        except UploadTooLargeError:
            remove_file(staged.name)
            raise
        except OSError as e:
            remove_file(staged.name)
            raise StagingError("Couldn't copy temp local file") from e

        VIDEO_UPLOAD_BYTES.observe(size)
        return staged.name

    @asynccontextmanager
    async def fast_start_copy(self, staged_path: str) -> AsyncIterator[BinaryIO]:
        """Rewrite the staged file for fast start and yield the open copy.

        The rewritten file is removed when the block exits.
        """
        with upload_stage("fast_start"):
            processed_path = await asyncio.to_thread(self.rewriter.rewrite, staged_path)
        try:
            try:
                processed = open(processed_path, "rb")
            except OSError as e:
                raise StagingError("Can't open processed video") from e
            with processed:
                yield processed
        finally:
            remove_file(processed_path)

    def storage_reference(self, key: str) -> str:
        """Value persisted in ``video_url`` for a stored key.

        Presigned URLs expire, so that strategy keeps the bare key and signs
        it when the video is read.
        """
        if self.storage.url_strategy == UrlStrategy.PRESIGNED:
            return key
        return self.storage.get_url(key)

    async def _attach_url(self, video: Video, key: str) -> Video:
        video.video_url = self.storage_reference(key)
        try:
            return await self.repository.update(video)
        except SQLAlchemyError as e:
            log_warning(logger, "Uploaded object left orphaned in storage", key=key)
            raise PersistenceError("Couldn't update video") from e

    def to_response(self, video: Video) -> VideoResponse:
        """Build the API response, signing the URL when presigning is enabled."""
        response = VideoResponse.model_validate(video)
        if video.video_url and self.storage.url_strategy == UrlStrategy.PRESIGNED:
            response.video_url = self.storage.presign(
                video.video_url,
                expires_in=self.settings.PRESIGNED_URL_EXPIRE_SECONDS,
            )
        return response
