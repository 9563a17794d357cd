"""Video model.

A video record is created as a draft by its owner; the upload pipeline
later attaches the URL of the processed file in object storage.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from tubely.core.database import Base


class Video(Base):
    """Video owned by a user."""

    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Public URL, or bare storage key when URLs are presigned on read
    video_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def is_owned_by(self, user_id: uuid.UUID) -> bool:
        """Check if ``user_id`` owns this video."""
        return self.user_id == user_id

    def __repr__(self) -> str:
        return f"<Video(id={self.id}, title={self.title}, user_id={self.user_id})>"
