"""Investigation coordinator application."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from coordinator.api.routes import investigations
from coordinator.config import settings
from coordinator.core.errors import CoordinatorError
from coordinator.db import dispose_db, init_db
from coordinator.services.analytics import AnalyticsClient
from coordinator.services.auth import IdentityClient
from coordinator.services.reasoning import ReasoningClient

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(connect=10, read=settings.REASONING_TIMEOUT_SECONDS, write=30, pool=10),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )
    app.state.http_client = http_client
    app.state.identity_client = IdentityClient(http_client, settings)
    app.state.reasoning_client = ReasoningClient(http_client, settings)
    app.state.analytics_client = AnalyticsClient(http_client, settings)
    await init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    try:
        yield
    finally:
        await http_client.aclose()
        await dispose_db()


# Create FastAPI application
app = FastAPI(
    title="Investigation Coordinator API",
    description="Creates AI-assisted diagnostic investigations and drives them "
    "through the remote agent round trip",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


@app.middleware("http")
async def options_middleware(request: Request, call_next):
    """Answer bare OPTIONS requests on any path with an empty 200.

    Registered before CORSMiddleware, which therefore wraps it and still
    handles real CORS preflights (those carrying Origin and
    Access-Control-Request-Method) itself.
    """
    if request.method == "OPTIONS":
        return Response(status_code=200)
    return await call_next(request)


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "apikey", "x-client-info"],
)


@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(request: Request, exc: CoordinatorError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = "Method not allowed" if exc.status_code == 405 else exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": message if isinstance(message, str) else "error"},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


@app.get("/health", tags=["health"])
async def health():
    """API health check."""
    return {
        "service": settings.APP_NAME,
        "status": "running",
        "docs": "/docs",
    }


# Include routes
app.include_router(investigations.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
