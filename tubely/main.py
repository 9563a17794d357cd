"""FastAPI application factory.

Run with ``uvicorn tubely.main:create_app --factory``.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

from tubely.core.config import Settings, load_settings
from tubely.core.context import AppContext, build_context
from tubely.core.database import create_tables
from tubely.core.logging import setup_logging
from tubely.core.metrics import get_content_type, get_metrics, set_app_info
from tubely.core.middleware import (
    CorrelationIdMiddleware,
    MaxBodySizeMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
    TracingMiddleware,
)
from tubely.core.tracing import setup_tracing, shutdown_tracing
from tubely.modules.video.router import router as video_router


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Create the application.

    Args:
        settings: Settings to use; loaded from the environment when omitted
        context: Prebuilt context; built from ``settings`` when omitted

    Returns:
        Configured FastAPI application
    """
    if context is None:
        settings = settings or load_settings()
        context = build_context(settings)
    settings = context.settings

    setup_logging(
        level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
        json_format=settings.LOG_JSON,
        service=settings.PROJECT_NAME,
    )
    tracer_provider = setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.environment,
        enable_console_export=settings.DEBUG,
    )
    set_app_info(version=settings.VERSION, environment=settings.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if context.engine is not None:
            await create_tables(context.engine)
        yield
        if context.engine is not None:
            await context.engine.dispose()
        shutdown_tracing(tracer_provider)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="""
## Tubely Video Upload API

Upload MP4 videos, prepare them for progressive streaming and publish them
to object storage.

### Authentication

All `/api/v1` endpoints require a JWT Bearer token.

```
Authorization: Bearer <access_token>
```
        """,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check endpoints",
            },
            {
                "name": "videos",
                "description": "Video management - drafts, uploads, fast-start processing",
            },
        ],
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MaxBodySizeMiddleware, max_body_size=settings.MAX_UPLOAD_SIZE)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(TracingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    def custom_openapi() -> dict:
        """Generate OpenAPI schema with the bearer security scheme."""
        if app.openapi_schema:
            return app.openapi_schema

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "JWT access token",
            },
        }
        openapi_schema["security"] = [{"BearerAuth": []}]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(video_router, prefix=settings.API_V1_PREFIX)

    return app
