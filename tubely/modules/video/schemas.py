"""Pydantic schemas for the video module."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

VIDEO_FORM_FIELD = "video"
ALLOWED_VIDEO_MEDIA_TYPE = "video/mp4"
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000


class VideoCreateRequest(BaseModel):
    """Request schema for creating a draft video."""

    title: str = Field(..., min_length=1, max_length=MAX_TITLE_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)


class VideoResponse(BaseModel):
    """Response schema for video."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    title: str
    description: Optional[str]
    video_url: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
