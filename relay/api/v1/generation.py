"""API endpoints for text generation.

Provides:
  - POST /api/huggingface — answer a prompt through the backend catalog
  - GET /api/status — current backend, readiness, failure streak
  - POST /api/warmup — prime the preferred backend with one dispatch
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from relay.core.dependencies import get_client_id, get_gateway
from relay.gateway.gateway import RelayGateway
from relay.schemas.generation import GenerateRequest, GenerateResponse, StatusResponse, WarmUpResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])


@router.post("/huggingface", response_model=GenerateResponse)
async def generate(
    body: GenerateRequest,
    client_id: str = Depends(get_client_id),
    gateway: RelayGateway = Depends(get_gateway),
):
    """Answer the prompt in ``inputs``.

    Backend outages never fail the request: when no backend can answer, the
    body carries a user-safe fallback message and ``fallback`` names why.
    """
    result = await gateway.generate(client_id, body.inputs, body.language)
    return result.to_dict()


@router.get("/status", response_model=StatusResponse)
async def status(gateway: RelayGateway = Depends(get_gateway)):
    return gateway.status()


@router.post("/warmup", response_model=WarmUpResponse)
async def warm_up(
    client_id: str = Depends(get_client_id),
    gateway: RelayGateway = Depends(get_gateway),
):
    outcome = await gateway.warm_up(client_id)
    logger.info("Warm-up finished: %s", outcome["status"])
    return outcome
