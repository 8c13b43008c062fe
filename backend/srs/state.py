"""Typed scheduler state shared by the engine components.

The engine never reads ORM rows directly: cards are converted to a frozen
``CardState`` on the way in and the service layer copies the result back.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, ClassVar

from backend.srs.errors import InvalidRatingError

logger = logging.getLogger(__name__)


class Rating(IntEnum):
    """Recall rating, ordered from worst to best."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Any) -> Rating:
        """Convert ``"good"``, ``3`` or ``Rating.GOOD`` to a Rating.

        Raises:
            InvalidRatingError: for anything else (including bools and 0/5).
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise InvalidRatingError(f"Unknown rating: {value!r}") from None
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise InvalidRatingError(f"Rating out of range: {value!r}") from None
        raise InvalidRatingError(f"Unsupported rating value: {value!r}")


class SchedulerState(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"

    @property
    def is_short_term(self) -> bool:
        return self in (SchedulerState.LEARNING, SchedulerState.RELEARNING)


class CardStatus(str, Enum):
    ACTIVE = "active"
    BURIED = "buried"
    SUSPENDED = "suspended"
    REMOVED = "removed"


@dataclass(frozen=True)
class CardState:
    """Scheduler-relevant fields of one card at one point in time."""

    STATE_VERSION: ClassVar[int] = 1

    due_at: datetime
    state: SchedulerState = SchedulerState.NEW
    card_id: int | None = None
    last_reviewed_at: datetime | None = None
    stability: float = 0.0  # days
    difficulty: float = 0.0  # 1-10 once reviewed, 0 while new
    repetitions: int = 0  # successful (non-Again) ratings
    lapses: int = 0  # Again ratings while in review
    reviews: int = 0  # all ratings
    interval_ms: int = 0  # interval that produced due_at
    short_term_step_index: int | None = None

    @classmethod
    def new(cls, due_at: datetime, card_id: int | None = None) -> CardState:
        return cls(due_at=due_at, card_id=card_id)

    @classmethod
    def from_record(cls, record: Any) -> CardState:
        """Build a state from a Card row (or any object with the same attributes).

        Rows written by older schema versions are migrated. A row whose
        scheduler fields cannot be trusted is loaded as a fresh ``new`` card
        with a warning rather than failing the review.
        """
        card_id = getattr(record, "id", None)
        due_at = record.due_at
        version = getattr(record, "state_version", None) or 0

        try:
            state = SchedulerState(record.state)
        except ValueError:
            logger.warning(
                "Card %s has unrecognised scheduler state %r; treating as new",
                card_id,
                record.state,
            )
            return cls.new(due_at, card_id=card_id)

        stability = float(record.stability or 0.0)
        difficulty = float(record.difficulty or 0.0)

        if version < 1 and 0.0 < difficulty <= 1.0:
            # v0 rows stored difficulty on a 0-1 scale
            difficulty = 1.0 + difficulty * 9.0

        if state != SchedulerState.NEW and (
            not math.isfinite(stability)
            or not math.isfinite(difficulty)
            or stability <= 0
            or not 1.0 <= difficulty <= 10.0
        ):
            logger.warning(
                "Card %s has corrupt memory state (S=%r, D=%r); treating as new",
                card_id,
                stability,
                difficulty,
            )
            return cls.new(due_at, card_id=card_id)

        step = record.short_term_step_index
        if state.is_short_term and (step is None or step < 0):
            step = 0
        elif not state.is_short_term:
            step = None

        return cls(
            due_at=due_at,
            state=state,
            card_id=card_id,
            last_reviewed_at=record.last_reviewed_at,
            stability=stability if state != SchedulerState.NEW else 0.0,
            difficulty=difficulty if state != SchedulerState.NEW else 0.0,
            repetitions=record.repetitions or 0,
            lapses=record.lapses or 0,
            reviews=record.reviews or 0,
            interval_ms=record.interval_ms or 0,
            short_term_step_index=step,
        )

    def record_fields(self) -> dict[str, Any]:
        """Return the column values to write back onto a Card row."""
        return {
            "state": self.state.value,
            "state_version": self.STATE_VERSION,
            "due_at": self.due_at,
            "last_reviewed_at": self.last_reviewed_at,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "repetitions": self.repetitions,
            "lapses": self.lapses,
            "reviews": self.reviews,
            "interval_ms": self.interval_ms,
            "short_term_step_index": self.short_term_step_index,
        }


@dataclass(frozen=True)
class ReviewLogEntry:
    """The audit record produced alongside every state change."""

    rating: Rating
    rated_at: datetime
    state_before: SchedulerState
    state_after: SchedulerState
    due_before: datetime
    due_after: datetime
    interval_before_ms: int
    interval_after_ms: int
    stability_before: float
    stability_after: float
    difficulty_before: float
    difficulty_after: float
    elapsed_ms: int
    was_overdue: bool
    overdue_ms: int
    config_snapshot: dict[str, Any] = field(default_factory=dict)
