import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from matcha_auth.config.logging_config import configure_logging
from matcha_auth.config.settings import Settings, settings
from matcha_auth.database.client import close_db, init_db, ping_db
from matcha_auth.features.auth.oidc.router import router as oidc_router
from matcha_auth.features.auth.password import shutdown_hasher_pool
from matcha_auth.features.auth.router import router as auth_router
from matcha_auth.features.user.router import router as user_router
from matcha_auth.shared.jobs.cleanup import start_background_jobs, stop_background_jobs
from matcha_auth.shared.middlewares.request_id import request_id_middleware
from matcha_auth.shared.middlewares.security_headers import security_headers_middleware
from matcha_auth.shared.rate_limit.limiter import RateLimiter, RateTier, RouteTierTable
from matcha_auth.shared.rate_limit.middleware import rate_limit_middleware, timing_normalization_middleware

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "An internal error occurred. Please try again later."

SENSITIVE_ROUTES = ["/users/request-password-reset", "/users/resend-verification"]
AUTH_ROUTES = ["/users/register", "/users/login", "/users/reset-password", "/users/me/change-password"]


def build_route_tiers(api_prefix: str = "") -> RouteTierTable:
    """Tier table for the mounted routes. Anything unlisted is GENERAL."""
    table = RouteTierTable()
    for path in SENSITIVE_ROUTES:
        table.add(f"{api_prefix}{path}", RateTier.SENSITIVE)
    for path in AUTH_ROUTES:
        table.add(f"{api_prefix}{path}", RateTier.AUTH)
    return table


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation errors as 400 with the first field message."""
    errors = exc.errors()
    detail = "Invalid request"
    if errors:
        first = errors[0]
        detail = str(first.get("msg", detail)).removeprefix("Value error, ")
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
        if field and not detail.lower().startswith(field.split(".")[-1].lower()):
            detail = f"{field}: {detail}"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": INTERNAL_ERROR_MESSAGE},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    await init_db()
    jobs = start_background_jobs(app.state.settings) if app.state.settings.background_jobs_enabled else []
    yield
    # Shutdown
    await stop_background_jobs(jobs)
    await close_db()
    shutdown_hasher_pool()


def create_app(app_settings: Settings | None = None, rate_limiter: RateLimiter | None = None) -> FastAPI:
    """Build the application.

    Args:
        app_settings: Settings to use, defaults to the process-wide settings
        rate_limiter: Limiter to install, defaults to one built from settings

    """
    app_settings = app_settings or settings
    configure_logging(app_settings.log_level, app_settings.log_format)

    app = FastAPI(
        title=app_settings.app_name,
        version=app_settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if app_settings.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if app_settings.is_development else None,
    )

    app.state.settings = app_settings
    app.state.route_tiers = build_route_tiers(app_settings.api_prefix)
    app.state.timing_floor_seconds = app_settings.timing_floor_ms / 1000
    if app_settings.rate_limit_enabled:
        app.state.rate_limiter = rate_limiter or RateLimiter.from_settings(app_settings)
    else:
        app.state.rate_limiter = None

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Middleware chain, innermost first
    app.middleware("http")(timing_normalization_middleware)
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(security_headers_middleware)

    # Invalid origins abort startup
    cors_config = app_settings.get_cors_configuration()
    logger.info(f"CORS origins: {', '.join(cors_config.origins)}")
    app.add_middleware(CORSMiddleware, **cors_config.middleware_kwargs())

    app.middleware("http")(request_id_middleware)

    for router in (auth_router, oidc_router, user_router):
        app.include_router(router, prefix=app_settings.api_prefix)

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/health/ready")
    async def ready():
        if not await ping_db():
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "unavailable"})
        return {"status": "ready"}

    return app


app = create_app()
