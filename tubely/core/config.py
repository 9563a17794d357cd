"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    PROJECT_NAME: str = "Tubely API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database - REQUIRED
    DATABASE_URL: str

    # Security - REQUIRED (no defaults for sensitive values)
    SECRET_KEY: str

    # CORS
    CORS_ORIGINS: list[str] = []

    # Storage Configuration
    # STORAGE_BACKEND: s3, minio, local
    STORAGE_BACKEND: str = "s3"
    LOCAL_STORAGE_PATH: str = "./storage"

    # S3/MinIO/Compatible Storage
    STORAGE_BUCKET: str = ""
    STORAGE_REGION: str = "us-east-1"
    STORAGE_ACCESS_KEY: str = ""
    STORAGE_SECRET_KEY: str = ""
    STORAGE_ENDPOINT_URL: Optional[str] = None  # Required for MinIO
    STORAGE_USE_SSL: bool = True

    # Public URL of uploaded videos: direct, cdn, presigned
    VIDEO_URL_STRATEGY: str = "direct"
    CDN_DOMAIN: Optional[str] = None
    PRESIGNED_URL_EXPIRE_SECONDS: int = 3600

    # Upload limits
    MAX_UPLOAD_SIZE: int = 1 << 30  # 1 GiB
    UPLOAD_CHUNK_SIZE: int = 1024 * 1024
    UPLOAD_TEMP_DIR: Optional[str] = None  # System temp dir when unset

    # Media tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    MEDIA_COMMAND_TIMEOUT_SECONDS: float = 600.0

    @property
    def environment(self) -> str:
        return "development" if self.DEBUG else "production"


def load_settings() -> Settings:
    """Load settings from the environment.

    Called once by the application factory; the result is carried on the
    application context rather than stored in a module global.
    """
    return Settings()
