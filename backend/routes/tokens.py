"""Token routes — single and batch token extraction.

POST /token         → cached or freshly extracted token URL for one stream
POST /tokens/batch  → per-stream results, partial failure allowed
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from services.token_service import TokenService, get_token_service

router = APIRouter()


class TokenRequest(BaseModel):
    url: Any = None
    stream_id: str | int | None = Field(None, alias="streamId")
    force_refresh: bool | None = Field(None, alias="forceRefresh")


class BatchRequest(BaseModel):
    streams: Any = None


@router.post("/token")
async def get_token(
    body: TokenRequest | None = None,
    service: TokenService = Depends(get_token_service),
) -> dict:
    body = body or TokenRequest()
    stream_key = str(body.stream_id) if body.stream_id is not None else None
    return await service.get_token(body.url, stream_key=stream_key, force_refresh=bool(body.force_refresh))


@router.post("/tokens/batch")
async def get_tokens_batch(
    body: BatchRequest | None = None,
    service: TokenService = Depends(get_token_service),
) -> dict:
    body = body or BatchRequest()
    return await service.get_tokens_batch(body.streams)
