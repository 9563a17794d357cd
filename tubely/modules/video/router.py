"""Video API router.

Implements REST endpoints for creating videos and uploading their files.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tubely.core.context import AppContext, get_context, get_db
from tubely.modules.auth.jwt import get_current_user_id
from tubely.modules.transcoding.ffmpeg import FastStartError, MediaProbeError
from tubely.modules.video.repository import VideoRepository
from tubely.modules.video.schemas import VideoCreateRequest, VideoResponse
from tubely.modules.video.service import (
    InvalidUploadError,
    NotVideoOwnerError,
    PersistenceError,
    StagingError,
    StorageUploadError,
    UploadTooLargeError,
    VideoNotFoundError,
    VideoService,
    parse_video_id,
)

router = APIRouter(prefix="/videos", tags=["videos"])


def get_video_service(
    context: AppContext = Depends(get_context),
    db: AsyncSession = Depends(get_db),
) -> VideoService:
    """Build the video service for a request."""
    return VideoService(context, VideoRepository(db))


async def _get_owned_video(service: VideoService, video_id: str, user_id: uuid.UUID):
    try:
        return await service.get_owned_video(parse_video_id(video_id), user_id)
    except InvalidUploadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except VideoNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NotVideoOwnerError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("", response_model=VideoResponse, status_code=status.HTTP_201_CREATED)
async def create_video(
    request: VideoCreateRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """Create a draft video owned by the caller."""
    try:
        video = await service.create_video(user_id, request)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return service.to_response(video)


@router.get("", response_model=list[VideoResponse])
async def list_videos(
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """List the caller's videos, newest first."""
    try:
        videos = await service.list_videos(user_id, limit=limit, offset=offset)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return [service.to_response(video) for video in videos]


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: str,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """Get one of the caller's videos."""
    video = await _get_owned_video(service, video_id, user_id)
    return service.to_response(video)


@router.post("/{video_id}/upload", response_model=VideoResponse)
async def upload_video(
    video_id: str,
    request: Request,
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: VideoService = Depends(get_video_service),
):
    """Upload the MP4 file of a video.

    The multipart body is streamed straight into a staged file. The file
    is rewritten for fast start, stored under an orientation
    prefix and its URL recorded on the video.
    """
    video = await _get_owned_video(service, video_id, user_id)

    try:
        video = await service.upload_video_form(
            video, request.stream(), request.headers.get("content-type")
        )
    except InvalidUploadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except UploadTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_CONTENT_TOO_LARGE, detail=str(e))
    except MediaProbeError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Couldn't get video aspect ratio",
        )
    except FastStartError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Video can't be processed",
        )
    except (StagingError, StorageUploadError, PersistenceError) as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return service.to_response(video)
