"""Struggle detection and assist-level adaptation.

Watches the rating stream of a card and raises a struggle signal when the
member keeps failing it:

- ``consecutive_N``: N Again ratings in a row
- ``again_N_in_24h``: N Again ratings within the trailing 24 hours
- ``again_N_in_7d``: N Again ratings within the trailing 7 days

The windowed counts are recomputed from the review log on every rating, so
they decay naturally as old failures leave the window. At most one signal is
raised per rating, and none while the card still has an unresolved event.
A signal raises the card's assist level by one; a card already at the top
assist level is paused until a coach resolves the event.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from backend.config import settings as app_settings
from backend.srs.errors import StruggleEventAlreadyResolved
from backend.srs.state import Rating

logger = logging.getLogger(__name__)

MAX_ASSIST_LEVEL = 4
WINDOW_24H = timedelta(hours=24)
WINDOW_7D = timedelta(days=7)


@dataclass(frozen=True)
class StruggleConfig:
    consecutive_threshold: int = 5
    window_24h_threshold: int = 5
    window_7d_threshold: int = 10
    pause_on_struggle: bool = False

    @classmethod
    def from_settings(cls) -> StruggleConfig:
        return cls(
            consecutive_threshold=app_settings.struggle_consecutive_threshold,
            window_24h_threshold=app_settings.struggle_24h_threshold,
            window_7d_threshold=app_settings.struggle_7d_threshold,
            pause_on_struggle=app_settings.pause_on_struggle,
        )


@dataclass(frozen=True)
class RatingEvent:
    card_id: int | None
    rating: Rating
    rated_at: datetime


@dataclass(frozen=True)
class StruggleCounters:
    consecutive_again: int = 0
    again_count_24h: int = 0
    again_count_7d: int = 0
    assist_level: int = 0

    @classmethod
    def from_record(cls, record: Any) -> StruggleCounters:
        return cls(
            consecutive_again=record.consecutive_again or 0,
            again_count_24h=record.again_count_24h or 0,
            again_count_7d=record.again_count_7d or 0,
            assist_level=max(0, min(MAX_ASSIST_LEVEL, record.assist_level or 0)),
        )


@dataclass(frozen=True)
class StruggleSignal:
    trigger: str
    created_at: datetime


@dataclass(frozen=True)
class StruggleOutcome:
    counters: StruggleCounters
    signal: StruggleSignal | None = None
    assist_level_change: int | None = None  # new level, when it changed
    paused_reason: str | None = None
    paused_at: datetime | None = None


def count_agains(window: Iterable[Any], now: datetime, span: timedelta) -> int:
    """Count Again ratings in ``window`` with ``now - span < rated_at <= now``."""
    start = now - span
    count = 0
    for entry in window:
        if not start < entry.rated_at <= now:
            continue
        if Rating.parse(entry.rating) == Rating.AGAIN:
            count += 1
    return count


def observe(
    event: RatingEvent,
    counters: StruggleCounters,
    recent_log_window: Iterable[Any],
    config: StruggleConfig | None = None,
    has_open_event: bool = False,
) -> StruggleOutcome:
    """Update failure counters for one rating and decide whether to escalate.

    Args:
        event: The rating being applied.
        counters: The card's counters before this rating.
        recent_log_window: Earlier review-log entries for the card (objects
            with ``rating`` and ``rated_at``), covering at least the last 7
            days. The current event must not be in it.
        config: Thresholds; defaults to the app configuration.
        has_open_event: Whether the card already has an unresolved struggle event.

    Returns:
        The updated counters plus any signal, assist change or pause.
    """
    config = config or StruggleConfig.from_settings()
    window = list(recent_log_window)
    now = event.rated_at
    failed = event.rating == Rating.AGAIN

    before_24h = count_agains(window, now, WINDOW_24H)
    before_7d = count_agains(window, now, WINDOW_7D)
    updated = replace(
        counters,
        consecutive_again=counters.consecutive_again + 1 if failed else 0,
        again_count_24h=before_24h + int(failed),
        again_count_7d=before_7d + int(failed),
    )

    trigger = None
    if failed and not has_open_event:
        trigger = _fired_rule(counters, updated, before_24h, before_7d, config)
    if trigger is None:
        return StruggleOutcome(counters=updated)

    signal = StruggleSignal(trigger=trigger, created_at=now)
    logger.info(
        "Struggle on card %s: %s (consecutive=%d, 24h=%d, 7d=%d)",
        event.card_id,
        trigger,
        updated.consecutive_again,
        updated.again_count_24h,
        updated.again_count_7d,
    )

    if updated.assist_level >= MAX_ASSIST_LEVEL or config.pause_on_struggle:
        return StruggleOutcome(counters=updated, signal=signal, paused_reason=trigger, paused_at=now)

    level = updated.assist_level + 1
    return StruggleOutcome(
        counters=replace(updated, assist_level=level),
        signal=signal,
        assist_level_change=level,
    )


def _fired_rule(
    before: StruggleCounters,
    after: StruggleCounters,
    before_24h: int,
    before_7d: int,
    config: StruggleConfig,
) -> str | None:
    # Rules fire on reaching the threshold, so a longer streak does not re-fire
    if after.consecutive_again == config.consecutive_threshold:
        return f"consecutive_{config.consecutive_threshold}"
    if before_24h < config.window_24h_threshold <= after.again_count_24h:
        return f"again_{config.window_24h_threshold}_in_24h"
    if before_7d < config.window_7d_threshold <= after.again_count_7d:
        return f"again_{config.window_7d_threshold}_in_7d"
    return None


def resolve(event: Any, resolver_id: int, resolved_at: datetime) -> Any:
    """Mark a struggle event as resolved by a coach or admin.

    Raises:
        StruggleEventAlreadyResolved: if the event was resolved before.
    """
    if event.resolved_at is not None:
        raise StruggleEventAlreadyResolved(
            f"Struggle event {event.id} was already resolved at {event.resolved_at.isoformat()}"
        )
    event.resolved_at = resolved_at
    event.resolved_by = resolver_id
    logger.info("Struggle event %s resolved by %s", event.id, resolver_id)
    return event
