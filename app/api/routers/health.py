"""Health check router."""

import shutil

from fastapi import APIRouter

from app.config import VERSION, settings

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Return liveness plus whether the external tools tasks need are on PATH."""
    tools = {name: shutil.which(name) is not None for name in ("git", "npm")}
    return {
        "status": "ok" if all(tools.values()) else "degraded",
        "tools": tools,
    }


@router.get("/health/version")
async def health_version() -> dict:
    """Return application version and the configured model."""
    return {
        "version": VERSION,
        "provider": settings.LLM_PROVIDER,
        "model": settings.LLM_MODEL,
    }
