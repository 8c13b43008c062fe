"""API routes for card actions: bury, suspend, remove, restore, flag and note."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import CardResponse, FlagRequest, NoteRequest
from backend.database import get_session
from backend.models.card import Card
from backend.srs.errors import CardNotFoundError, CardRemovedError
from backend.srs.session import (
    bury_card,
    flag_card,
    get_card,
    note_card,
    remove_card,
    restore_card,
    suspend_card,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cards", tags=["cards"])


async def _run(action: Callable[..., Awaitable[Card]], *args: object) -> CardResponse:
    try:
        card = await action(*args)
    except CardNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CardRemovedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return CardResponse.model_validate(card)


@router.get("/{card_id}", response_model=CardResponse)
async def card_detail(card_id: int, db: AsyncSession = Depends(get_session)) -> CardResponse:
    """View a card, including removed ones."""
    return await _run(get_card, db, card_id)


@router.post("/{card_id}/bury", response_model=CardResponse)
async def card_bury(card_id: int, db: AsyncSession = Depends(get_session)) -> CardResponse:
    return await _run(bury_card, db, card_id)


@router.post("/{card_id}/suspend", response_model=CardResponse)
async def card_suspend(card_id: int, db: AsyncSession = Depends(get_session)) -> CardResponse:
    return await _run(suspend_card, db, card_id)


@router.post("/{card_id}/remove", response_model=CardResponse)
async def card_remove(card_id: int, db: AsyncSession = Depends(get_session)) -> CardResponse:
    return await _run(remove_card, db, card_id)


@router.post("/{card_id}/restore", response_model=CardResponse)
async def card_restore(card_id: int, db: AsyncSession = Depends(get_session)) -> CardResponse:
    return await _run(restore_card, db, card_id)


@router.post("/{card_id}/flag", response_model=CardResponse)
async def card_flag(
    card_id: int,
    request: FlagRequest,
    db: AsyncSession = Depends(get_session),
) -> CardResponse:
    """Flag a card's phrase for content review."""
    return await _run(flag_card, db, card_id, request.reason)


@router.post("/{card_id}/note", response_model=CardResponse)
async def card_note(
    card_id: int,
    request: NoteRequest,
    db: AsyncSession = Depends(get_session),
) -> CardResponse:
    """Attach (or clear, with an empty note) the member's note on a card."""
    return await _run(note_card, db, card_id, request.note)
