"""Pydantic schemas for API request/response models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

# --- Session ---


class RatingName(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"


class RatingPreviewResponse(BaseModel):
    """Outcome of one rating button."""

    rating: RatingName
    state: str
    due_at: datetime
    interval_ms: int
    interval_label: str


class QueuedCardResponse(BaseModel):
    card_id: int
    phrase_id: int
    state: str
    due_at: datetime
    assist_level: int
    previews: list[RatingPreviewResponse]


class SessionStartResponse(BaseModel):
    """Response when starting a new review session."""

    member_id: int
    started_at: datetime
    total_cards: int
    learning_cards: int
    due_cards: int
    new_cards: int
    cards: list[QueuedCardResponse]


class RateRequest(BaseModel):
    """A rating for one card."""

    card_id: int
    rating: RatingName
    client_timestamp: datetime | None = None
    response_time_ms: int | None = Field(default=None, ge=0)


class CardResponse(BaseModel):
    """A card's current scheduling and status fields."""

    id: int
    member_id: int
    phrase_id: int
    status: str
    priority: int
    state: str
    due_at: datetime
    last_reviewed_at: datetime | None
    stability: float
    difficulty: float
    interval_ms: int
    short_term_step_index: int | None
    repetitions: int
    lapses: int
    reviews: int
    assist_level: int
    consecutive_again: int
    again_count_24h: int
    again_count_7d: int
    paused_reason: str | None
    paused_at: datetime | None
    note: str | None
    flag_reason: str | None

    model_config = {"from_attributes": True}


class StruggleEventResponse(BaseModel):
    id: int
    member_id: int
    card_id: int
    phrase_id: int
    trigger: str
    created_at: datetime
    resolved_at: datetime | None
    resolved_by: int | None

    model_config = {"from_attributes": True}


class RateResponse(BaseModel):
    """Response after a rating has been applied."""

    card: CardResponse
    review_log_id: int
    interval_label: str
    struggle_event: StruggleEventResponse | None = None


# --- Settings ---


class SettingsResponse(BaseModel):
    member_id: int
    target_retention: float
    new_per_day: int
    reviews_per_day: int
    learning_steps: list[str]
    relearning_steps: list[str]
    enable_fuzz: bool
    timezone: str


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    target_retention: float | None = None
    new_per_day: int | None = None
    reviews_per_day: int | None = None
    learning_steps: list[str] | None = None
    relearning_steps: list[str] | None = None
    enable_fuzz: bool | None = None
    timezone: str | None = None


# --- Struggles & cards ---


class ResolveRequest(BaseModel):
    resolver_id: int
    resolved_at: datetime | None = None


class FlagRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class NoteRequest(BaseModel):
    note: str | None = None


# --- Stats ---


class MemberStatsResponse(BaseModel):
    """Overall statistics for a member."""

    total_cards: int
    due_now: int
    new: int
    learning: int
    review: int
    relearning: int
    suspended: int
    buried: int
    removed: int
    paused: int
    total_reviews: int
    retention_30d: float | None
    streak_days: int
