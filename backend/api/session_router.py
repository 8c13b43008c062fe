"""API routes for review sessions."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import (
    CardResponse,
    QueuedCardResponse,
    RatingPreviewResponse,
    RateRequest,
    RateResponse,
    SessionStartResponse,
    StruggleEventResponse,
)
from backend.database import get_session
from backend.srs.errors import CardConflictError, CardNotFoundError, CardRemovedError
from backend.srs.scheduler import RatingPreview, format_interval
from backend.srs.session import effective_now, start_session, submit_rating
from backend.srs.state import Rating

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])


def _previews(previews: dict[Rating, RatingPreview]) -> list[RatingPreviewResponse]:
    return [
        RatingPreviewResponse(
            rating=preview.rating.label,
            state=preview.state_after.value,
            due_at=preview.due_at,
            interval_ms=preview.interval_ms,
            interval_label=preview.interval_label,
        )
        for preview in previews.values()
    ]


@router.post("/start", response_model=SessionStartResponse)
async def session_start(
    member_id: int,
    db: AsyncSession = Depends(get_session),
) -> SessionStartResponse:
    """Build the member's queue with a preview of every rating for each card."""
    review_session = await start_session(db, member_id)
    queue = review_session.queue

    return SessionStartResponse(
        member_id=member_id,
        started_at=review_session.started_at,
        total_cards=review_session.total,
        learning_cards=len(queue.learning_cards),
        due_cards=len(queue.due_cards),
        new_cards=len(queue.new_cards),
        cards=[
            QueuedCardResponse(
                card_id=item.card.id,
                phrase_id=item.card.phrase_id,
                state=item.card.state,
                due_at=item.card.due_at,
                assist_level=item.card.assist_level,
                previews=_previews(item.previews),
            )
            for item in review_session.cards
        ],
    )


@router.post("/rate", response_model=RateResponse)
async def session_rate(
    request: RateRequest,
    db: AsyncSession = Depends(get_session),
) -> RateResponse:
    """Apply a rating to a card."""
    try:
        outcome = await submit_rating(
            db,
            request.card_id,
            request.rating.value,
            now=effective_now(request.client_timestamp),
            response_time_ms=request.response_time_ms,
        )
    except CardNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (CardRemovedError, CardConflictError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    event = outcome.struggle_event
    return RateResponse(
        card=CardResponse.model_validate(outcome.card),
        review_log_id=outcome.log.id,
        interval_label=format_interval(outcome.card.interval_ms),
        struggle_event=StruggleEventResponse.model_validate(event) if event is not None else None,
    )
