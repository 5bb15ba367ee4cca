"""Inkwell comments API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.comments.admin_router import router as comments_admin_router
from src.comments.cache import CommentCache
from src.comments.guards import RateLimiter, SpamGuard
from src.comments.hierarchy import HierarchyEngine
from src.comments.moderation import ModerationConfig, ModerationEngine
from src.comments.quotes import QuoteConverter
from src.comments.repository import CommentRepository
from src.comments.router import router as comments_router
from src.comments.sanitizer import ContentSanitizer
from src.comments.scoring import ScoringWeights
from src.comments.service import CommentPolicy, CommentService
from src.config import Settings, get_settings
from src.core.context import get_request_id
from src.core.database import init_async_cassandra, shutdown_async_cassandra
from src.core.logging import configure_structlog, get_logger
from src.core.middleware import RequestContextMiddleware
from src.core.redis import init_redis, shutdown_redis
from src.health.router import router as health_router
from src.notifications.admin_service import AdminNotificationService
from src.notifications.service import NotificationService
from src.stories.service import ChapterStore, StoryStore
from src.users.service import UserStore


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


def build_comment_services(app: FastAPI, session, redis_client, settings: Settings) -> None:
    """Wire the comment service and its collaborators onto ``app.state``."""
    keyspace = settings.cassandra_keyspace

    notification_service = NotificationService(
        session=session, keyspace=keyspace, redis=redis_client
    )
    admin_notification_service = AdminNotificationService(
        session=session, keyspace=keyspace, notification_service=notification_service
    )
    repository = CommentRepository(session=session, keyspace=keyspace)
    cache = CommentCache.from_settings(redis_client, settings)
    moderation_engine = ModerationEngine(
        repository=repository,
        admin_notifications=admin_notification_service,
        config=ModerationConfig.from_settings(settings),
        cache=cache,
    )

    app.state.notification_service = notification_service
    app.state.admin_notification_service = admin_notification_service
    app.state.moderation_engine = moderation_engine
    app.state.comment_service = CommentService(
        repository=repository,
        hierarchy=HierarchyEngine(QuoteConverter(settings.comment_quote_max_length)),
        sanitizer=ContentSanitizer(settings.comment_allowed_tags),
        moderation=moderation_engine,
        cache=cache,
        user_store=UserStore(session=session, keyspace=keyspace),
        story_store=StoryStore(session=session, keyspace=keyspace),
        chapter_store=ChapterStore(session=session, keyspace=keyspace),
        notifications=notification_service,
        admin_notifications=admin_notification_service,
        weights=ScoringWeights.from_settings(settings),
        policy=CommentPolicy.from_settings(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Redis is non-critical: cache, limits and pub/sub degrade to no-ops
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - cache and rate limits disabled",
        )

    app.state.redis = redis_client
    app.state.rate_limiter = RateLimiter.from_settings(redis_client, settings)
    app.state.spam_guard = SpamGuard.from_settings(redis_client, settings)

    try:
        app.state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        build_comment_services(app, app.state.cassandra_session, redis_client, settings)
        logger.info("comment_service_initialized", redis_enabled=redis_client is not None)
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def _error_body(
    message: str, request_id: str | None, data: object = None
) -> dict[str, object]:
    return {
        "success": False,
        "message": message,
        "data": data,
        "request_id": request_id,
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Never let Starlette render stack traces; the handlers below log them.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Inkwell story comments - threads and moderation API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        hash_salt=settings.comment_hash_salt,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Render HTTP errors in the response envelope."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )
        message = (
            str(exc.detail)
            if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
            or exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
            else "Internal server error"
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=_error_body(message, _get_request_id_safe(request)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Render validation errors as 400 with per-field details."""
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )
        details = [
            {
                "field": ".".join(str(loc) for loc in err.get("loc", [])),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return ORJSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("Validation error", _get_request_id_safe(request), details),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
        """Catch-all handler; details are logged, never returned."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                "An unexpected error occurred. Please try again later.",
                _get_request_id_safe(request),
            ),
        )

    app.include_router(health_router)
    app.include_router(comments_router)
    app.include_router(comments_admin_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Inkwell comments API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
