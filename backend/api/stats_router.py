"""API routes for member statistics and dashboard data."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.schemas import MemberStatsResponse
from backend.database import get_session
from backend.srs.session import member_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("/{member_id}", response_model=MemberStatsResponse)
async def get_member_stats(
    member_id: int,
    db: AsyncSession = Depends(get_session),
) -> MemberStatsResponse:
    """Get card counts by phase and status, review totals and streak."""
    stats = await member_stats(db, member_id)
    return MemberStatsResponse(**asdict(stats))
