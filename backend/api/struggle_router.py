"""API routes for struggle events raised by the review engine."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import ResolveRequest, StruggleEventResponse
from backend.database import get_session
from backend.srs.errors import StruggleEventAlreadyResolved, StruggleEventNotFoundError
from backend.srs.session import effective_now, list_struggle_events, resolve_struggle_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/struggles", tags=["struggles"])


@router.get("/{member_id}", response_model=list[StruggleEventResponse])
async def get_struggles(
    member_id: int,
    open_only: bool = False,
    db: AsyncSession = Depends(get_session),
) -> list[StruggleEventResponse]:
    """List a member's struggle events, newest first."""
    events = await list_struggle_events(db, member_id, open_only=open_only)
    return [StruggleEventResponse.model_validate(event) for event in events]


@router.post("/{event_id}/resolve", response_model=StruggleEventResponse)
async def resolve_struggle(
    event_id: int,
    request: ResolveRequest,
    db: AsyncSession = Depends(get_session),
) -> StruggleEventResponse:
    """Resolve a struggle event and unpause its card."""
    try:
        event = await resolve_struggle_event(
            db,
            event_id,
            resolver_id=request.resolver_id,
            resolved_at=effective_now(request.resolved_at),
        )
    except StruggleEventNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StruggleEventAlreadyResolved as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return StruggleEventResponse.model_validate(event)
