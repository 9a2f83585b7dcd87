"""IssueSmith -- FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers.health import router as health_router
from app.api.routers.tasks import router as tasks_router
from app.clients import llm_client
from app.config import VERSION, settings
from app.logging_config import configure_logging
from app.middleware import RequestIDMiddleware
from app.middleware.exception_handler import setup_exception_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    configure_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    logger.info(
        "IssueSmith %s starting (provider=%s, model=%s, max_retries=%d)",
        VERSION, settings.LLM_PROVIDER, settings.LLM_MODEL, settings.MAX_RETRIES,
    )
    yield
    await llm_client.close_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="IssueSmith",
        version=VERSION,
        description="Turns issue descriptions into build-verified feature branches",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # Register all global exception handlers (structured JSON responses
    # with request_id tracing; see app/middleware/exception_handler.py).
    setup_exception_handlers(application)

    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    application.include_router(health_router)
    application.include_router(tasks_router)
    return application


app = create_app()
