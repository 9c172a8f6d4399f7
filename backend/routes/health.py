"""Health and readiness check routes."""

from fastapi import APIRouter, Depends

from config import settings
from services.token_service import TokenService, get_token_service

router = APIRouter()

SERVICE_NAME = "token-service"


@router.get("/ready")
async def ready() -> dict:
    """Lightweight readiness check — no external calls."""
    return {"status": "ok", "service": SERVICE_NAME, "commit": settings.git_sha}


@router.get("/health")
async def health(service: TokenService = Depends(get_token_service)) -> dict:
    """Process uptime, memory and cache size. Never touches the extractor."""
    return {**service.health(), "service": SERVICE_NAME, "commit": settings.git_sha}
