"""API routes for per-member review settings."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import SettingsResponse, SettingsUpdate
from backend.database import get_session
from backend.srs.session import load_settings, update_settings
from backend.srs.settings import ReviewSettings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _response(member_id: int, settings: ReviewSettings) -> SettingsResponse:
    return SettingsResponse(
        member_id=member_id,
        target_retention=settings.target_retention,
        new_per_day=settings.new_per_day,
        reviews_per_day=settings.reviews_per_day,
        learning_steps=list(settings.learning_steps),
        relearning_steps=list(settings.relearning_steps),
        enable_fuzz=settings.enable_fuzz,
        timezone=settings.timezone,
    )


@router.get("/{member_id}", response_model=SettingsResponse)
async def get_settings(
    member_id: int,
    db: AsyncSession = Depends(get_session),
) -> SettingsResponse:
    """Return the member's settings (defaults when none are stored)."""
    return _response(member_id, await load_settings(db, member_id))


@router.put("/{member_id}", response_model=SettingsResponse)
async def put_settings(
    member_id: int,
    request: SettingsUpdate,
    db: AsyncSession = Depends(get_session),
) -> SettingsResponse:
    """Update some or all of the member's settings."""
    try:
        settings = await update_settings(db, member_id, request.model_dump(exclude_unset=True))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False)) from exc
    return _response(member_id, settings)
