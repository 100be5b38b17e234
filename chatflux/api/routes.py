"""Read API Routes.

Message history, health and pipeline statistics.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from chatflux import __version__
from chatflux.api.models import GetMessagesRequest, GetMessagesResponse, HealthResponse
from chatflux.events.config import DEFAULT_READ_LIMIT
from chatflux.runtime import ChatFluxRuntime

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Messages"])


def get_runtime(request: Request) -> ChatFluxRuntime:
    return request.app.state.runtime


@router.get("/")
async def index() -> dict:
    return {
        "service": "chatflux",
        "version": __version__,
        "endpoints": ["/get_messages", "/health", "/stats"],
    }


@router.post("/get_messages", response_model=GetMessagesResponse)
async def get_messages(
    payload: GetMessagesRequest,
    runtime: ChatFluxRuntime = Depends(get_runtime),
) -> dict:
    """Recent messages of a room, oldest first."""
    limit = DEFAULT_READ_LIMIT if payload.limit is None else payload.limit
    result = await runtime.read(payload.roomId, limit, payload.before)
    logger.debug("Served %d messages from %s", result.count, result.source, extra={"count": result.count})
    return result.to_response()


@router.get("/health", response_model=HealthResponse)
async def health(runtime: ChatFluxRuntime = Depends(get_runtime)):
    report = await runtime.health()
    if report["status"] != "healthy":
        return JSONResponse(status_code=503, content=report)
    return report


@router.get("/stats")
async def stats(runtime: ChatFluxRuntime = Depends(get_runtime)) -> dict:
    return await runtime.stats()
