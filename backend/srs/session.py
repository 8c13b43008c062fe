"""Review service.

Connects the pure engine (scheduler, queue, struggle detector) to the
database: loads a card with its member's settings and recent review log,
runs the engine, and writes the result back in a single transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.config import settings as app_settings
from backend.config import utcnow
from backend.models.card import Card
from backend.models.member_settings import MemberSettings
from backend.models.phrase import Phrase
from backend.models.review_log import ReviewLog
from backend.models.struggle_event import StruggleEvent
from backend.srs import struggle
from backend.srs.errors import (
    CardConflictError,
    CardNotFoundError,
    CardRemovedError,
    StruggleEventNotFoundError,
)
from backend.srs.queue import ReviewQueue, build_queue, local_date, start_of_day
from backend.srs.scheduler import RatingPreview, ScheduleResult, compute, preview_all
from backend.srs.settings import ReviewSettings, resolve_settings
from backend.srs.state import CardState, CardStatus, Rating, SchedulerState
from backend.srs.struggle import RatingEvent, StruggleConfig, StruggleCounters, StruggleOutcome

logger = logging.getLogger(__name__)


@dataclass
class SessionCard:
    """A queued card with the outcome of each rating button."""

    card: Card
    previews: dict[Rating, RatingPreview]


@dataclass
class ReviewSession:
    """The queue for one sitting, with previews computed at ``started_at``."""

    member_id: int
    started_at: datetime
    queue: ReviewQueue
    cards: list[SessionCard] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.cards)

    def ordered_ids(self) -> list[int]:
        return [item.card.id for item in self.cards]


@dataclass
class RatingOutcome:
    """Everything written for one rating."""

    card: Card
    log: ReviewLog
    result: ScheduleResult
    struggle: StruggleOutcome
    struggle_event: StruggleEvent | None = None


@dataclass
class MemberStats:
    total_cards: int = 0
    due_now: int = 0
    new: int = 0
    learning: int = 0
    review: int = 0
    relearning: int = 0
    suspended: int = 0
    buried: int = 0
    removed: int = 0
    paused: int = 0
    total_reviews: int = 0
    retention_30d: float | None = None
    streak_days: int = 0


# --- settings ---


async def load_settings(db: AsyncSession, member_id: int) -> ReviewSettings:
    """Return the member's settings, or the defaults if none (or invalid) are stored."""
    row = await db.get(MemberSettings, member_id)
    return resolve_settings(row.as_dict() if row is not None else None)


async def update_settings(db: AsyncSession, member_id: int, changes: dict[str, Any]) -> ReviewSettings:
    """Validate and store a partial settings update.

    Raises:
        pydantic.ValidationError: if the merged settings are out of range.
    """
    current = await load_settings(db, member_id)
    merged = current.model_dump()
    merged.update({key: value for key, value in changes.items() if value is not None})
    validated = ReviewSettings(**merged)

    row = await db.get(MemberSettings, member_id)
    if row is None:
        row = MemberSettings(member_id=member_id)
        db.add(row)
    row.target_retention = validated.target_retention
    row.new_per_day = validated.new_per_day
    row.reviews_per_day = validated.reviews_per_day
    row.learning_steps = list(validated.learning_steps)
    row.relearning_steps = list(validated.relearning_steps)
    row.enable_fuzz = validated.enable_fuzz
    row.timezone = validated.timezone
    await db.commit()

    logger.info("Updated settings for member %d: %s", member_id, sorted(changes))
    return validated


# --- cards ---


async def get_card(db: AsyncSession, card_id: int) -> Card:
    """Load a card, always re-reading the row so retries see fresh state."""
    card = await db.get(Card, card_id, populate_existing=True)
    if card is None:
        raise CardNotFoundError(f"Card {card_id} not found")
    return card


async def create_card(
    db: AsyncSession,
    member_id: int,
    phrase_id: int,
    priority: int = 0,
    now: datetime | None = None,
) -> Card:
    """Assign a phrase to a member as a fresh ``new`` card."""
    card = Card(
        member_id=member_id,
        phrase_id=phrase_id,
        priority=priority,
        state=SchedulerState.NEW.value,
        state_version=CardState.STATE_VERSION,
        due_at=now or utcnow(),
    )
    db.add(card)
    await db.flush()
    return card


async def _set_status(db: AsyncSession, card_id: int, status: CardStatus) -> Card:
    card = await get_card(db, card_id)
    if card.status == CardStatus.REMOVED.value:
        raise CardRemovedError(f"Card {card_id} has been removed")
    card.status = status.value
    await db.commit()
    logger.info("Card %d is now %s", card_id, status.value)
    return card


async def bury_card(db: AsyncSession, card_id: int) -> Card:
    return await _set_status(db, card_id, CardStatus.BURIED)


async def suspend_card(db: AsyncSession, card_id: int) -> Card:
    return await _set_status(db, card_id, CardStatus.SUSPENDED)


async def remove_card(db: AsyncSession, card_id: int) -> Card:
    """Retire a card for good. The row and its history are kept."""
    return await _set_status(db, card_id, CardStatus.REMOVED)


async def restore_card(db: AsyncSession, card_id: int) -> Card:
    """Bring a buried or suspended card back into rotation."""
    return await _set_status(db, card_id, CardStatus.ACTIVE)


async def flag_card(db: AsyncSession, card_id: int, reason: str) -> Card:
    card = await get_card(db, card_id)
    if card.status == CardStatus.REMOVED.value:
        raise CardRemovedError(f"Card {card_id} has been removed")
    card.flag_reason = reason
    await db.commit()
    return card


async def note_card(db: AsyncSession, card_id: int, note: str | None) -> Card:
    card = await get_card(db, card_id)
    if card.status == CardStatus.REMOVED.value:
        raise CardRemovedError(f"Card {card_id} has been removed")
    card.note = note or None
    await db.commit()
    return card


# --- sessions ---


async def count_done_today(
    db: AsyncSession,
    member_id: int,
    settings: ReviewSettings,
    now: datetime,
) -> tuple[int, int]:
    """Return (new cards introduced, review cards rated) in the member's current day."""
    since = start_of_day(now, settings)
    stmt = (
        select(ReviewLog.state_before, func.count(distinct(ReviewLog.card_id)))
        .where(
            and_(
                ReviewLog.member_id == member_id,
                ReviewLog.rated_at >= since,
                ReviewLog.state_before.in_([SchedulerState.NEW.value, SchedulerState.REVIEW.value]),
            )
        )
        .group_by(ReviewLog.state_before)
    )
    counts = dict((await db.execute(stmt)).all())
    return counts.get(SchedulerState.NEW.value, 0), counts.get(SchedulerState.REVIEW.value, 0)


async def start_session(
    db: AsyncSession,
    member_id: int,
    now: datetime | None = None,
) -> ReviewSession:
    """Build the member's queue and preview every rating for each card.

    Args:
        db: Database session.
        member_id: The member starting the session.
        now: Session start time (defaults to the current UTC time).

    Returns:
        A ReviewSession in presentation order.
    """
    now = now or utcnow()
    settings = await load_settings(db, member_id)
    new_done, reviews_done = await count_done_today(db, member_id, settings, now)

    cards = (await db.execute(select(Card).where(Card.member_id == member_id))).scalars().all()
    queue = build_queue(cards, settings, now, new_done_today=new_done, reviews_done_today=reviews_done)

    session = ReviewSession(member_id=member_id, started_at=now, queue=queue)
    for card in queue.interleaved():
        state = CardState.from_record(card)
        session.cards.append(SessionCard(card=card, previews=preview_all(state, settings, now)))

    logger.info(
        "Started session for member %d: %d cards queued (%d new, %d reviews already done today)",
        member_id,
        session.total,
        new_done,
        reviews_done,
    )
    return session


# --- rating ---


def effective_now(client_timestamp: datetime | None, server_now: datetime | None = None) -> datetime:
    """Pick the ``now`` for a client-reported action, as a naive UTC datetime.

    Actions recorded offline carry the client's clock; that time is used unless
    it lies in the server's future, in which case the server time wins.
    """
    server_now = server_now or utcnow()
    if client_timestamp is None:
        return server_now
    if client_timestamp.tzinfo is not None:
        client_timestamp = client_timestamp.astimezone(UTC).replace(tzinfo=None)
    if client_timestamp > server_now:
        logger.warning(
            "Client timestamp %s is ahead of server time %s; using server time",
            client_timestamp.isoformat(),
            server_now.isoformat(),
        )
        return server_now
    return client_timestamp


async def submit_rating(
    db: AsyncSession,
    card_id: int,
    rating: Rating | str | int,
    now: datetime | None = None,
    response_time_ms: int | None = None,
    config: StruggleConfig | None = None,
) -> RatingOutcome:
    """Apply a rating to a card and persist the result.

    The card row is version-checked on write. If another writer got there
    first the whole read-compute-write cycle is repeated against the fresh
    row, so two concurrent ratings are applied one after the other.

    Raises:
        InvalidRatingError: if ``rating`` is not again/hard/good/easy.
        CardNotFoundError: if the card does not exist.
        CardRemovedError: if the card has been removed.
        CardConflictError: if the card kept changing for every retry.
    """
    rating = Rating.parse(rating)
    now = now or utcnow()
    config = config or StruggleConfig.from_settings()
    try:
        return await _apply_rating(db, card_id, rating, now, response_time_ms, config)
    except StaleDataError as exc:
        logger.error(
            "Giving up rating card %s after %d conflicting writes",
            card_id,
            app_settings.rating_retry_attempts,
        )
        raise CardConflictError(f"Card {card_id} was modified concurrently; reload it and rate again") from exc


@retry(
    retry=retry_if_exception_type(StaleDataError),
    stop=stop_after_attempt(app_settings.rating_retry_attempts),
    wait=wait_exponential(multiplier=0.05, max=1),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _apply_rating(
    db: AsyncSession,
    card_id: int,
    rating: Rating,
    now: datetime,
    response_time_ms: int | None,
    config: StruggleConfig,
) -> RatingOutcome:
    try:
        return await _rate_once(db, card_id, rating, now, response_time_ms, config)
    except StaleDataError:
        await db.rollback()
        raise


async def _rate_once(
    db: AsyncSession,
    card_id: int,
    rating: Rating,
    now: datetime,
    response_time_ms: int | None,
    config: StruggleConfig,
) -> RatingOutcome:
    card = await get_card(db, card_id)
    if card.status == CardStatus.REMOVED.value:
        raise CardRemovedError(f"Card {card_id} has been removed")

    settings = await load_settings(db, card.member_id)
    result = compute(CardState.from_record(card), rating, settings, now)

    window_stmt = select(ReviewLog).where(
        and_(
            ReviewLog.card_id == card.id,
            ReviewLog.rated_at > now - struggle.WINDOW_7D,
            ReviewLog.rated_at <= now,
        )
    )
    window = (await db.execute(window_stmt)).scalars().all()
    outcome = struggle.observe(
        RatingEvent(card_id=card.id, rating=rating, rated_at=now),
        StruggleCounters.from_record(card),
        window,
        config,
        has_open_event=await _has_open_event(db, card.id),
    )

    for name, value in result.card.record_fields().items():
        setattr(card, name, value)
    card.consecutive_again = outcome.counters.consecutive_again
    card.again_count_24h = outcome.counters.again_count_24h
    card.again_count_7d = outcome.counters.again_count_7d
    card.assist_level = outcome.counters.assist_level
    if outcome.paused_reason is not None:
        card.paused_reason = outcome.paused_reason
        card.paused_at = outcome.paused_at

    entry = result.log
    log = ReviewLog(
        card_id=card.id,
        member_id=card.member_id,
        phrase_id=card.phrase_id,
        mode=await _phrase_mode(db, card.phrase_id),
        rating=entry.rating.label,
        rated_at=entry.rated_at,
        response_time_ms=response_time_ms,
        state_before=entry.state_before.value,
        state_after=entry.state_after.value,
        due_before=entry.due_before,
        due_after=entry.due_after,
        interval_before_ms=entry.interval_before_ms,
        interval_after_ms=entry.interval_after_ms,
        stability_before=entry.stability_before,
        stability_after=entry.stability_after,
        difficulty_before=entry.difficulty_before,
        difficulty_after=entry.difficulty_after,
        elapsed_ms=entry.elapsed_ms,
        was_overdue=entry.was_overdue,
        overdue_ms=entry.overdue_ms,
        config_snapshot=entry.config_snapshot,
    )
    db.add(log)

    event = None
    if outcome.signal is not None:
        event = StruggleEvent(
            member_id=card.member_id,
            card_id=card.id,
            phrase_id=card.phrase_id,
            trigger=outcome.signal.trigger,
            created_at=outcome.signal.created_at,
        )
        db.add(event)

    await db.commit()
    return RatingOutcome(card=card, log=log, result=result, struggle=outcome, struggle_event=event)


async def _has_open_event(db: AsyncSession, card_id: int) -> bool:
    stmt = select(func.count(StruggleEvent.id)).where(
        and_(StruggleEvent.card_id == card_id, StruggleEvent.resolved_at.is_(None))
    )
    return ((await db.execute(stmt)).scalar() or 0) > 0


async def _phrase_mode(db: AsyncSession, phrase_id: int) -> str:
    mode = (await db.execute(select(Phrase.mode).where(Phrase.id == phrase_id))).scalar_one_or_none()
    return mode or "recall"


# --- struggle events ---


async def list_struggle_events(
    db: AsyncSession,
    member_id: int,
    open_only: bool = False,
) -> list[StruggleEvent]:
    stmt = select(StruggleEvent).where(StruggleEvent.member_id == member_id)
    if open_only:
        stmt = stmt.where(StruggleEvent.resolved_at.is_(None))
    stmt = stmt.order_by(StruggleEvent.created_at.desc(), StruggleEvent.id.desc())
    return list((await db.execute(stmt)).scalars().all())


async def resolve_struggle_event(
    db: AsyncSession,
    event_id: int,
    resolver_id: int,
    resolved_at: datetime | None = None,
) -> StruggleEvent:
    """Close a struggle event and put its card back into rotation.

    Raises:
        StruggleEventNotFoundError: if the event does not exist.
        StruggleEventAlreadyResolved: if it was resolved before.
    """
    event = await db.get(StruggleEvent, event_id)
    if event is None:
        raise StruggleEventNotFoundError(f"Struggle event {event_id} not found")

    struggle.resolve(event, resolver_id, resolved_at or utcnow())

    card = await get_card(db, event.card_id)
    card.paused_reason = None
    card.paused_at = None
    card.consecutive_again = 0
    await db.commit()
    return event


# --- stats ---


async def member_stats(db: AsyncSession, member_id: int, now: datetime | None = None) -> MemberStats:
    """Card counts by phase and status, plus review totals."""
    now = now or utcnow()
    stats = MemberStats()

    cards = (await db.execute(select(Card).where(Card.member_id == member_id))).scalars().all()
    for card in cards:
        stats.total_cards += 1
        if card.status == CardStatus.REMOVED.value:
            stats.removed += 1
            continue
        if card.status == CardStatus.SUSPENDED.value:
            stats.suspended += 1
        elif card.status == CardStatus.BURIED.value:
            stats.buried += 1
        if card.paused_reason is not None:
            stats.paused += 1

        state = CardState.from_record(card).state
        if state == SchedulerState.NEW:
            stats.new += 1
        elif state == SchedulerState.LEARNING:
            stats.learning += 1
        elif state == SchedulerState.RELEARNING:
            stats.relearning += 1
        else:
            stats.review += 1

        if (
            state != SchedulerState.NEW
            and card.status == CardStatus.ACTIVE.value
            and card.paused_reason is None
            and card.due_at <= now
        ):
            stats.due_now += 1

    reviews_stmt = select(func.count(ReviewLog.id)).where(ReviewLog.member_id == member_id)
    stats.total_reviews = (await db.execute(reviews_stmt)).scalar() or 0

    # Retention over the last 30 days: share of review-phase ratings that were not Again
    recent_cutoff = now - timedelta(days=30)
    recent_stmt = select(ReviewLog.rating).where(
        and_(
            ReviewLog.member_id == member_id,
            ReviewLog.rated_at >= recent_cutoff,
            ReviewLog.state_before == SchedulerState.REVIEW.value,
        )
    )
    recent = (await db.execute(recent_stmt)).scalars().all()
    if recent:
        passed = sum(1 for rating in recent if rating != Rating.AGAIN.label)
        stats.retention_30d = round(passed / len(recent), 3)

    stats.streak_days = await _calculate_streak(db, member_id, now)
    return stats


async def _calculate_streak(db: AsyncSession, member_id: int, now: datetime) -> int:
    """Count consecutive days, ending today, with at least one review.

    Days are the member's calendar days, the same ones the daily limits use.
    """
    settings = await load_settings(db, member_id)
    stmt = select(ReviewLog.rated_at).where(ReviewLog.member_id == member_id)
    days = {local_date(rated_at, settings) for rated_at in (await db.execute(stmt)).scalars().all()}

    today = local_date(now, settings)
    streak = 0
    while today - timedelta(days=streak) in days:
        streak += 1
    return streak
