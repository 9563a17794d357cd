"""Application context shared by every request.

The context is built once by the application factory and stored on
``app.state``. Request handlers receive it through ``get_context``; no
module keeps settings, clients or secrets in globals.
"""

from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tubely.core.config import Settings
from tubely.core.database import create_engine, create_session_factory
from tubely.core.storage import StorageBackend, StorageConfig, create_storage
from tubely.modules.transcoding.ffmpeg import (
    FastStartRewriter,
    FFmpegFastStartRewriter,
    FFprobeMediaProbe,
    MediaProbe,
)


@dataclass
class AppContext:
    """Everything a request needs beyond its own inputs."""
    settings: Settings
    storage: StorageBackend
    probe: MediaProbe
    rewriter: FastStartRewriter
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    engine: Optional[AsyncEngine] = None


def build_context(settings: Settings) -> AppContext:
    """Build the production context from settings."""
    engine = create_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    return AppContext(
        settings=settings,
        storage=create_storage(StorageConfig.from_settings(settings)),
        probe=FFprobeMediaProbe(
            ffprobe_path=settings.FFPROBE_PATH,
            timeout=settings.MEDIA_COMMAND_TIMEOUT_SECONDS,
        ),
        rewriter=FFmpegFastStartRewriter(
            ffmpeg_path=settings.FFMPEG_PATH,
            timeout=settings.MEDIA_COMMAND_TIMEOUT_SECONDS,
        ),
        session_factory=create_session_factory(engine),
        engine=engine,
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the application context."""
    return request.app.state.context


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a database session.

    The session is rolled back if the handler raises.
    """
    context = get_context(request)
    if context.session_factory is None:
        raise RuntimeError("Database is not configured for this application")

    async with context.session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
