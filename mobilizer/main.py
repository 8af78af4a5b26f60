"""FastAPI application for the Mobilizer scope service."""

import time
from contextlib import asynccontextmanager

import asyncpg
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from mobilizer.api.routes import auth, locations
from mobilizer.core.config import settings
from mobilizer.core.database import close_db_pool, get_pool, init_db_pool
from mobilizer.core.errors import MobilizerError
from mobilizer.core.logging_config import get_logger, setup_logging
from mobilizer.core.responses import error_body, error_response_dict, success_response
from mobilizer.core.scopes import init_scope_registry

# Setup logging
setup_logging()
logger = get_logger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - runs on startup and shutdown."""
    logger.info("Starting Mobilizer scope service...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    registry = init_scope_registry(settings)
    logger.info(f"Scope table ready: {len(registry.operations())} operation override(s)")

    # Initialize async database pool (skip in test environment)
    if settings.ENVIRONMENT != "test":
        await init_db_pool(settings)

    yield

    if settings.ENVIRONMENT != "test":
        await close_db_pool()
    logger.info("Shutting down Mobilizer scope service...")


app = FastAPI(
    title="Mobilizer Scope Service",
    description="""
    Role and support-group resolution for movement members, plus checks
    on the geographic reference data.

    ## Authentication

    Include the JWT token in the Authorization header:

    ```
    Authorization: Bearer <your_jwt_token>
    ```

    Operations are gated by token scopes declared in the scope table
    (`SCOPES_FILE`, or the built-in defaults).

    ## API Versioning

    - `/v1/*` - Version 1 (current stable)
    - `/*` - Latest version
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(SecurityHeadersMiddleware)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin"],
    )


# Exception handlers
@app.exception_handler(MobilizerError)
async def mobilizer_exception_handler(request: Request, exc: MobilizerError):
    """Map domain errors (not found, forbidden) onto their status codes."""
    return error_response_dict(error_body(exc.message), exc.status_code)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with standardized error responses."""
    if isinstance(exc.detail, dict):
        response = error_response_dict(exc.detail, exc.status_code)
    else:
        response = error_response_dict(error_body(exc.detail), exc.status_code)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors[field] = error["msg"]

    return error_response_dict(error_body("Validation failed", errors=errors), 422)


@app.exception_handler(asyncpg.exceptions.PostgresError)
async def database_exception_handler(request: Request, exc: asyncpg.exceptions.PostgresError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}", exc_info=True)
    return error_response_dict(error_body("Database error occurred"), 500)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response_dict(error_body("An unexpected error occurred"), 500)


v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth.router)
v1_router.include_router(locations.router)
app.include_router(v1_router)

# Latest version at root level
app.include_router(auth.router)
app.include_router(locations.router)


@app.get("/health")
async def health_check():
    """
    Health check for monitoring and load balancers.

    Returns 200 when the database pool answers, 503 otherwise.
    """
    health_status = {"status": "healthy", "timestamp": time.time(), "checks": {}}
    health_status["checks"]["api"] = {"status": "healthy", "message": "API is running"}

    pool = get_pool()
    try:
        if pool is None:
            raise RuntimeError("Database pool not initialized")
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        pool_size = pool.get_size()
        pool_idle = pool.get_idle_size()
        health_status["checks"]["database"] = {
            "status": "healthy",
            "message": "Database is accessible",
            "pool": {
                "size": pool_size,
                "max": pool.get_max_size(),
                "idle": pool_idle,
                "active": pool_size - pool_idle,
            },
        }
    except (RuntimeError, OSError, asyncpg.exceptions.PostgresError) as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = {
            "status": "unhealthy",
            "message": f"Database check failed: {e!s}",
        }
        return error_response_dict(
            error_body("Health check failed", data=health_status), 503
        )

    return success_response(data=health_status)
