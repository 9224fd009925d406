"""
BountyHub - FastAPI Application Entrypoint

This module initializes the FastAPI application with:
- CORS and security middleware
- Authentication routes and dependencies
- Database lifecycle management
- Audit sink wiring
- Uniform {"error": ...} bodies for every rejection
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bountyhub.audit.sink import AuditSink
from bountyhub.auth.database import get_engine, get_session_factory, init_db
from bountyhub.auth.errors import GENERIC_SERVER_ERROR, AuthError, StoreError
from bountyhub.auth.routes import router as auth_router
from bountyhub.config import require_signing_secret, settings
from bountyhub.gateway.middleware import SecurityMiddleware
from bountyhub.logging import get_logger


logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Refuse to start without a signing secret
        - Initialize SQLModel database (users, sessions, refresh tokens, audit)
        - Wire the audit sink to its own session factory

    Shutdown:
        - Dispose the engine
    """
    require_signing_secret(settings)

    engine = get_engine(settings.DATABASE_URL)
    init_db(engine)
    app.state.db_engine = engine
    app.state.db_session_factory = get_session_factory(engine)
    app.state.audit_sink = AuditSink(app.state.db_session_factory)
    logger.info("startup_complete", environment=settings.ENVIRONMENT)

    yield

    engine.dispose()
    logger.info("shutdown_complete")


app = FastAPI(
    title="BountyHub",
    description="Bug-bounty platform authentication core",
    version=VERSION,
    lifespan=lifespan,
)

# CORS - credentials are required for the refresh cookie
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
)

# Request ids, security headers and request timing
app.add_middleware(SecurityMiddleware)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    logger.warning(
        "auth_error",
        reason=exc.reason,
        status_code=exc.status_code,
        path=request.url.path,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.public_message},
        headers=headers,
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error("store_error", operation=exc.operation, path=request.url.path, exc_info=exc.cause or exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": GENERIC_SERVER_ERROR},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_error", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": GENERIC_SERVER_ERROR},
    )


# Register authentication routes
app.include_router(auth_router, prefix="/api/v1")


@app.get("/health")
def health_check(request: Request):
    """
    Health check endpoint for local dev tooling.
    Returns service status and database reachability.
    """
    database = True
    try:
        with request.app.state.db_engine.connect():
            pass
    except Exception as exc:
        logger.error("health_database_unreachable", exc_info=exc)
        database = False

    return {
        "status": "healthy" if database else "degraded",
        "version": VERSION,
        "services": {"database": database},
    }


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "BountyHub",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }
