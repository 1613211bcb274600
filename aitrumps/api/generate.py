"""Generation routes: the authenticated proxy to the text and image models.

POST /generate returns one envelope per request ({kind: "json", data} or
{kind: "image", mime, data, persistentUrl?}). POST /ideas asks the text
model for card concepts and returns them normalised, with rejected
concepts listed separately.

Both routes sit behind get_current_player and the quota dependency.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from aitrumps.ai.proxy import GenerationProxy, ProviderParseError, ProxyError
from aitrumps.api.deps import get_current_player, get_proxy
from aitrumps.schemas import (
    ErrorResponse,
    GenerateRequest,
    IdeasRequest,
    IdeasResponse,
    PlayerIdentity,
)

logger = logging.getLogger("aitrumps")

router = APIRouter()


def _to_http(exc: ProxyError, request: Request, player: PlayerIdentity) -> HTTPException:
    """Maps a proxy failure onto its HTTP status and ErrorResponse body.

    Client-side rejections (4xx) are logged here; provider failures are
    already logged by the proxy.
    """
    if exc.status_code < 500:
        logger.warning(
            "Rejected %s for %s: %s",
            request.url.path,
            player.player_code,
            exc.message,
            extra={
                "player_code": player.player_code,
                "path": request.url.path,
                "reason": exc.message,
            },
        )
    raw = exc.raw if isinstance(exc, ProviderParseError) else None
    return HTTPException(
        status_code=exc.status_code,
        detail=ErrorResponse(error=exc.code, message=exc.message, raw=raw).to_wire(),
    )


@router.post("/generate")
async def generate(
    request: Request,
    body: GenerateRequest,
    player: PlayerIdentity = Depends(get_current_player),
    proxy: GenerationProxy = Depends(get_proxy),
) -> dict[str, Any]:
    try:
        envelope = await proxy.generate(body, player)
    except ProxyError as exc:
        raise _to_http(exc, request, player) from exc
    return envelope.to_wire()


@router.post("/ideas")
async def card_ideas(
    request: Request,
    body: IdeasRequest,
    player: PlayerIdentity = Depends(get_current_player),
    proxy: GenerationProxy = Depends(get_proxy),
) -> dict[str, Any]:
    """Generates and normalises card concepts for a theme prompt."""
    try:
        ideas, rejected = await proxy.generate_card_ideas(body.prompt or "", player)
    except ProxyError as exc:
        raise _to_http(exc, request, player) from exc
    return IdeasResponse(
        success=True,
        ideas=ideas,
        rejected=[r.to_wire() for r in rejected],
    ).to_wire()
