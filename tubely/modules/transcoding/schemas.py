"""Pydantic schemas for media inspection."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Orientation(str, Enum):
    """Orientation bucket of a video, used as the storage key prefix."""
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    OTHER = "other"


class VideoGeometry(BaseModel):
    """Width and height of a probed video stream."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class FFprobeStream(BaseModel):
    """One entry of ffprobe's ``streams`` array.

    Only the fields the service reads are declared; ffprobe emits many more
    (codec tags, color info, disposition) which are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    index: int = 0
    codec_name: Optional[str] = None
    codec_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    display_aspect_ratio: Optional[str] = None
    duration: Optional[str] = None


class FFprobeOutput(BaseModel):
    """Top-level JSON document printed by ``ffprobe -show_streams``."""

    model_config = ConfigDict(extra="ignore")

    streams: list[FFprobeStream] = Field(default_factory=list)
