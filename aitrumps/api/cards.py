"""Card library routes: save, list, recreate, stats, and image retrieval.

Records are stored as submitted (plus savedAt / storageLocation) so the
client can redisplay a card without calling the models again. Saves go
through the shared retry policy; a storage outage turns into a 500
STORAGE_ERROR and nothing partial is reported as saved.

Image retrieval never streams bytes: it answers with a redirect to a fresh
locator URL (presigned in the cloud, /dev-storage/ locally).
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from aitrumps.ai.retry import RetryPolicy, with_retry
from aitrumps.api.deps import get_card_storage, get_current_player, get_optional_player
from aitrumps.audit import audit
from aitrumps.cards import InvalidStoragePath, is_fully_recreatable
from aitrumps.hooks.interfaces import CardStorage, ImageNotFound, StorageError
from aitrumps.schemas import (
    ErrorResponse,
    ListCardsResponse,
    PlayerIdentity,
    SaveCardResponse,
    StoredCard,
)

logger = logging.getLogger("aitrumps.cards")

router = APIRouter()

# Image redirects also serve anonymous callers, so they carry their own quota.
images_router = APIRouter()

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 500

_SAVE_RETRY = RetryPolicy()


def _storage_error(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=500,
        detail=ErrorResponse(
            error="STORAGE_ERROR",
            message="Card storage is unavailable. Please try again later.",
            details=str(exc),
        ).to_wire(),
    )


def _bad_request(message: str, details: Any = None) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=ErrorResponse(error="INVALID_REQUEST", message=message, details=details).to_wire(),
    )


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@router.post("/cards")
async def save_card(
    record: dict[str, Any] = Body(...),
    player: PlayerIdentity = Depends(get_current_player),
    storage: CardStorage = Depends(get_card_storage),
) -> dict[str, Any]:
    """Persists one card record."""
    card_id = record.get("id")
    title = record.get("title")
    if not isinstance(card_id, str) or not card_id.strip():
        raise _bad_request("Card id is required.")
    if not isinstance(title, str) or not title.strip():
        raise _bad_request("Card title is required.")
    try:
        StoredCard.model_validate(record)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", []))
        raise _bad_request(f"Invalid card record: {loc}: {first.get('msg')}") from exc

    try:
        storage_path = await with_retry(
            lambda: storage.save_card(card_id, record),
            _SAVE_RETRY,
            label="Card save",
        )
    except StorageError as exc:
        logger.error("Card save failed for %s: %s", card_id, exc)
        await audit(
            storage, "error", "Card save failed",
            cardId=card_id, playerCode=player.player_code, error=str(exc),
        )
        raise _storage_error(exc) from exc

    await audit(
        storage, "info", "Card saved",
        cardId=card_id, series=record.get("series"), playerCode=player.player_code,
    )
    return SaveCardResponse(
        success=True,
        card_id=card_id,
        storage_path=storage_path,
        message="Card saved successfully.",
    ).to_wire()


@router.get("/cards")
async def list_cards(
    series: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT),
    player: PlayerIdentity = Depends(get_current_player),
    storage: CardStorage = Depends(get_card_storage),
) -> dict[str, Any]:
    """Lists stored cards, newest first."""
    try:
        cards = await storage.list_cards(series)
    except StorageError as exc:
        raise _storage_error(exc) from exc

    await audit(
        storage, "info", "Cards listed",
        series=series, count=len(cards), playerCode=player.player_code,
    )
    return ListCardsResponse(
        success=True,
        cards=cards[:limit],
        total=len(cards),
        series=series or "all",
    ).to_wire()


@router.get("/cards/recreatable")
async def list_recreatable_cards(
    series: str | None = Query(default=None),
    player: PlayerIdentity = Depends(get_current_player),
    storage: CardStorage = Depends(get_card_storage),
) -> dict[str, Any]:
    """Lists only the records that can be redisplayed without the models."""
    try:
        cards = await storage.list_cards(series)
    except StorageError as exc:
        raise _storage_error(exc) from exc

    recreatable = [card for card in cards if is_fully_recreatable(card)]
    return {"success": True, "cards": recreatable, "total": len(recreatable)}


@router.get("/storage/stats")
async def storage_stats(
    player: PlayerIdentity = Depends(get_current_player),
    storage: CardStorage = Depends(get_card_storage),
) -> dict[str, Any]:
    try:
        stats = await storage.get_storage_stats()
    except StorageError as exc:
        raise _storage_error(exc) from exc
    return {"success": True, "stats": stats}


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@images_router.get("/images/{series}/{date}/{filename}")
async def get_image(
    series: str,
    date: str,
    filename: str,
    request: Request,
    player: PlayerIdentity | None = Depends(get_optional_player),
    storage: CardStorage = Depends(get_card_storage),
) -> RedirectResponse:
    """Redirects to a fresh retrieval URL for a stored image."""
    path = f"images/{series}/{date}/{filename}"
    try:
        url = await storage.get_image_signed_url(path)
    except InvalidStoragePath as exc:
        raise _bad_request("Invalid image path.") from exc
    except ImageNotFound as exc:
        raise HTTPException(
            status_code=404,
            detail=ErrorResponse(error="NOT_FOUND", message="Image not found.").to_wire(),
        ) from exc
    except StorageError as exc:
        raise _storage_error(exc) from exc

    response = RedirectResponse(url=url, status_code=307)
    response.headers.update(getattr(request.state, "quota_headers", {}))
    return response
