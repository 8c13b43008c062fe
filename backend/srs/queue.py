"""Queue management for SRS review sessions.

Handles card prioritization, mixing new cards with reviews,
and daily caps to prevent overwhelm.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from typing import Any

from backend.srs.settings import ReviewSettings
from backend.srs.state import CardStatus, SchedulerState

logger = logging.getLogger(__name__)

_EXCLUDED_STATUSES = {CardStatus.BURIED.value, CardStatus.SUSPENDED.value, CardStatus.REMOVED.value}


@dataclass
class ReviewQueue:
    """A prepared queue of cards for a review session."""

    learning_cards: list[Any] = field(default_factory=list)
    due_cards: list[Any] = field(default_factory=list)
    new_cards: list[Any] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.learning_cards) + len(self.due_cards) + len(self.new_cards)

    def interleaved(self) -> list[Any]:
        """Return cards in presentation order.

        Short-term steps come first since they are time-sensitive. Reviews
        follow, with new cards inserted at regular intervals to maintain
        engagement without overwhelming with unfamiliar material.
        """
        result: list[Any] = list(self.learning_cards)
        if not self.new_cards:
            return result + list(self.due_cards)
        if not self.due_cards:
            return result + list(self.new_cards)

        due = list(self.due_cards)
        new = list(self.new_cards)

        # Insert a new card every N reviews
        interval = max(1, len(due) // (len(new) + 1))
        new_idx = 0

        for i, card in enumerate(due):
            result.append(card)
            if new_idx < len(new) and (i + 1) % interval == 0:
                result.append(new[new_idx])
                new_idx += 1

        # Append any remaining new cards at the end
        result.extend(new[new_idx:])
        return result

    def ordered_ids(self) -> list[int]:
        return [card.id for card in self.interleaved()]


def is_schedulable(card: Any) -> bool:
    """Whether a card may appear in a session at all."""
    return card.status not in _EXCLUDED_STATUSES and card.paused_reason is None


def _state_of(card: Any) -> SchedulerState:
    try:
        return SchedulerState(card.state)
    except ValueError:
        # Matches CardState.from_record: unreadable state is scheduled as new
        return SchedulerState.NEW


def local_date(moment: datetime, settings: ReviewSettings) -> date:
    """Return the member's calendar date for a naive-UTC instant."""
    return moment.replace(tzinfo=UTC).astimezone(settings.zone).date()


def start_of_day(now: datetime, settings: ReviewSettings) -> datetime:
    """Return the naive-UTC instant at which the member's current day began."""
    midnight = datetime.combine(local_date(now, settings), time.min, tzinfo=settings.zone)
    return midnight.astimezone(UTC).replace(tzinfo=None)


def build_queue(
    cards: Iterable[Any],
    settings: ReviewSettings,
    now: datetime,
    new_done_today: int = 0,
    reviews_done_today: int = 0,
) -> ReviewQueue:
    """Build a review queue from a snapshot of a member's cards.

    Args:
        cards: Every card the member owns (any status).
        settings: The member's review settings (daily caps).
        now: Current time.
        new_done_today: New cards already introduced in the member's current day.
        reviews_done_today: Review-phase cards already rated in the current day.

    Returns:
        A ReviewQueue with short-term, due and new cards.
    """
    learning: list[Any] = []
    due: list[Any] = []
    new: list[Any] = []

    for card in cards:
        if not is_schedulable(card):
            continue
        state = _state_of(card)
        if state == SchedulerState.NEW:
            new.append(card)
        elif card.due_at > now:
            continue
        elif state.is_short_term:
            learning.append(card)
        else:
            due.append(card)

    review_slots = max(0, settings.reviews_per_day - reviews_done_today)
    new_slots = max(0, settings.new_per_day - new_done_today)

    learning.sort(key=lambda c: (c.due_at, c.id))
    due.sort(key=lambda c: (c.due_at, c.id))  # Most overdue first
    new.sort(key=lambda c: (-(c.priority or 0), c.id))  # Highest priority, then oldest

    queue = ReviewQueue(
        learning_cards=learning,
        due_cards=due[:review_slots],
        new_cards=new[:new_slots],
    )

    logger.info(
        "Built queue: %d short-term + %d due (of %d) + %d new (of %d) = %d total",
        len(queue.learning_cards),
        len(queue.due_cards),
        len(due),
        len(queue.new_cards),
        len(new),
        queue.total,
    )
    return queue
