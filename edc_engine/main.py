"""FastAPI application for the EDC form engine.

Wires the authoring, form and response routers, configures logging on
startup, and turns unhandled failures into JSON error bodies.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from edc_engine.config import get_settings
from edc_engine.logging_config import setup_logging, get_logger
from edc_engine.models.database import Base, engine
from edc_engine.routes import authoring, forms, health, responses
from edc_engine.services.lifecycle import LifecycleStorageError

SERVICE_NAME = "EDC Form Engine"
SERVICE_VERSION = "1.0.0"

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging and, in development, create missing tables."""
    settings = get_settings()
    setup_logging()

    if settings.is_development:
        Base.metadata.create_all(engine)

    database = settings.database_url.split("@")[-1] if "@" in settings.database_url else "configured"
    logger.info(
        f"{SERVICE_NAME} {SERVICE_VERSION} starting - "
        f"Environment: {settings.environment}, Database: {database}"
    )

    yield

    logger.info(f"{SERVICE_NAME} shutting down")


app = FastAPI(
    title=SERVICE_NAME,
    description="Dynamic case-report forms and a regulated response lifecycle for clinical studies",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.include_router(health.router, tags=["Health"])
app.include_router(authoring.router, tags=["Authoring"])
app.include_router(forms.router, tags=["Forms"])
app.include_router(responses.router, tags=["Responses"])


@app.get("/")
async def root() -> dict:
    """Service name, version and environment."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": get_settings().environment,
        "status": "operational",
    }


@app.exception_handler(LifecycleStorageError)
async def storage_error_handler(request: Request, exc: LifecycleStorageError) -> JSONResponse:
    """A transition could not be written; the session was rolled back.

    The response is left in its previous state, so the client may retry
    with the same ``expectedUpdatedAt``.
    """
    logger.error(f"Storage failure for {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={
            "error": {
                "kind": "storage",
                "message": "The change could not be saved. Please try again.",
                "fieldErrors": [],
                "retryable": True,
            }
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log anything unhandled and return a generic 500 body."""
    logger.error(
        f"Unhandled exception for {request.method} {request.url}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later."
        }
    )
