"""Cache administration and diagnostics routes (for debugging)."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from services.token_service import TokenService, get_token_service

router = APIRouter()


class ClearCacheRequest(BaseModel):
    stream_id: str | int | None = Field(None, alias="streamId")


@router.post("/cache/clear")
async def clear_cache(
    body: ClearCacheRequest | None = None,
    service: TokenService = Depends(get_token_service),
) -> dict:
    """Clear entries whose URL contains ``streamId``, or everything when omitted."""
    stream_id = body.stream_id if body is not None else None
    # Falsy ids (0, "", null) clear everything
    return service.clear_cache(str(stream_id) if stream_id else None)


@router.get("/stats")
async def stats(service: TokenService = Depends(get_token_service)) -> dict:
    return service.stats()
