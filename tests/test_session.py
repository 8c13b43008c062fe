"""Tests for the review service: persistence, retries, card actions and struggles."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

import backend.srs.session as review_service
from backend.config import settings as app_settings
from backend.database import async_session, init_db
from backend.models.card import Card
from backend.models.member import Member
from backend.models.phrase import Phrase
from backend.models.review_log import ReviewLog
from backend.models.struggle_event import StruggleEvent
from backend.srs.errors import (
    CardConflictError,
    CardNotFoundError,
    CardRemovedError,
    StruggleEventAlreadyResolved,
    StruggleEventNotFoundError,
)
from backend.srs.struggle import StruggleConfig

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def make_member(db, new_cards: int = 1) -> tuple[int, list[int]]:
    """Create a member with ``new_cards`` fresh cards; return (member_id, card_ids)."""
    member = Member(name="Test Member")
    db.add(member)
    await db.flush()

    card_ids = []
    for i in range(new_cards):
        phrase = Phrase(prompt=f"prompt {uuid.uuid4().hex}", canonical_answer=f"answer {i}")
        db.add(phrase)
        await db.flush()
        card = await review_service.create_card(db, member.id, phrase.id, now=NOW - timedelta(hours=1))
        card_ids.append(card.id)
    await db.commit()
    return member.id, card_ids


async def count_rows(db, model, **filters) -> int:
    stmt = select(func.count(model.id))
    for name, value in filters.items():
        stmt = stmt.where(getattr(model, name) == value)
    return (await db.execute(stmt)).scalar() or 0


@pytest.mark.asyncio
async def test_rating_updates_card_and_appends_log() -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)
        outcome = await review_service.submit_rating(db, card_id, "again", now=NOW, response_time_ms=1800)

        card = outcome.card
        assert card.state == "learning"
        assert card.short_term_step_index == 0
        assert card.due_at == NOW + timedelta(minutes=1)
        assert card.reviews == 1
        assert card.consecutive_again == 1
        assert card.version == 2

        log = outcome.log
        assert log.rating == "again"
        assert log.state_before == "new"
        assert log.state_after == "learning"
        assert log.response_time_ms == 1800
        assert log.mode == "recall"
        assert log.config_snapshot["learning_steps"] == ["1m", "10m"]
        assert await count_rows(db, ReviewLog, card_id=card_id) == 1


@pytest.mark.asyncio
async def test_graduation_through_service() -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)
        at = NOW
        for rating in ("again", "good", "good"):
            outcome = await review_service.submit_rating(db, card_id, rating, now=at)
            at = outcome.card.due_at

        assert outcome.card.state == "review"
        assert outcome.card.interval_ms % 86_400_000 == 0
        assert outcome.card.interval_ms >= 86_400_000


@pytest.mark.asyncio
async def test_invalid_rating_rejected_before_any_write() -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)
        with pytest.raises(ValueError):
            await review_service.submit_rating(db, card_id, "great", now=NOW)
        assert await count_rows(db, ReviewLog, card_id=card_id) == 0


@pytest.mark.asyncio
async def test_missing_card() -> None:
    await init_db()
    async with async_session() as db:
        with pytest.raises(CardNotFoundError):
            await review_service.submit_rating(db, 999_999, "good", now=NOW)


@pytest.mark.asyncio
async def test_concurrent_rating_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)

    original_load_settings = review_service.load_settings
    calls = 0

    async def racing_load_settings(db, member_id):
        # Another device rates the card after this one has read it
        nonlocal calls
        calls += 1
        if calls == 1:
            async with async_session() as other:
                await review_service.submit_rating(other, card_id, "good", now=NOW)
        return await original_load_settings(db, member_id)

    monkeypatch.setattr(review_service, "load_settings", racing_load_settings)

    async with async_session() as db:
        outcome = await review_service.submit_rating(db, card_id, "good", now=NOW + timedelta(seconds=5))
        assert outcome.card.reviews == 2
        assert outcome.log.state_before == "learning"
        assert await count_rows(db, ReviewLog, card_id=card_id) == 2


@pytest.mark.asyncio
async def test_rating_gives_up_after_repeated_conflicts(monkeypatch: pytest.MonkeyPatch) -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)

    attempts = 0

    async def always_stale(*args, **kwargs):
        nonlocal attempts
        attempts += 1
        raise StaleDataError("card row changed")

    monkeypatch.setattr(review_service, "_rate_once", always_stale)

    async with async_session() as db:
        with pytest.raises(CardConflictError):
            await review_service.submit_rating(db, card_id, "good", now=NOW)
        assert attempts == app_settings.rating_retry_attempts
        assert await count_rows(db, ReviewLog, card_id=card_id) == 0

@pytest.mark.asyncio
async def test_five_agains_raise_one_struggle_event() -> None:
    await init_db()
    async with async_session() as db:
        _, (card_id,) = await make_member(db)
        events = []
        for i in range(6):
            outcome = await review_service.submit_rating(db, card_id, "again", now=NOW + timedelta(minutes=i))
            if outcome.struggle_event is not None:
                events.append(outcome.struggle_event)
            if i == 4:
                assert outcome.card.consecutive_again == 5

        assert [e.trigger for e in events] == ["consecutive_5"]
        assert await count_rows(db, StruggleEvent, card_id=card_id) == 1
        assert outcome.card.assist_level == 1
        assert outcome.card.consecutive_again == 6


@pytest.mark.asyncio
async def test_paused_card_leaves_queue_until_resolved() -> None:
    await init_db()
    config = StruggleConfig(pause_on_struggle=True)
    async with async_session() as db:
        member_id, (card_id,) = await make_member(db)
        for i in range(5):
            outcome = await review_service.submit_rating(
                db, card_id, "again", now=NOW + timedelta(minutes=i), config=config
            )
        assert outcome.card.paused_reason == "consecutive_5"
        event_id = outcome.struggle_event.id

        session = await review_service.start_session(db, member_id, now=NOW + timedelta(hours=1))
        assert card_id not in session.ordered_ids()

        open_events = await review_service.list_struggle_events(db, member_id, open_only=True)
        assert [e.id for e in open_events] == [event_id]

        event = await review_service.resolve_struggle_event(db, event_id, resolver_id=member_id, resolved_at=NOW)
        assert event.resolved_at == NOW
        assert event.resolved_by == member_id

        card = await review_service.get_card(db, card_id)
        assert card.paused_reason is None
        assert card.consecutive_again == 0

        session = await review_service.start_session(db, member_id, now=NOW + timedelta(hours=1))
        assert card_id in session.ordered_ids()
        assert await review_service.list_struggle_events(db, member_id, open_only=True) == []

        with pytest.raises(StruggleEventAlreadyResolved):
            await review_service.resolve_struggle_event(db, event_id, resolver_id=member_id)


@pytest.mark.asyncio
async def test_resolve_unknown_event() -> None:
    await init_db()
    async with async_session() as db:
        with pytest.raises(StruggleEventNotFoundError):
            await review_service.resolve_struggle_event(db, 999_999, resolver_id=1)


@pytest.mark.asyncio
async def test_session_previews_and_daily_new_cap() -> None:
    await init_db()
    async with async_session() as db:
        member_id, card_ids = await make_member(db, new_cards=3)
        await review_service.update_settings(db, member_id, {"new_per_day": 2})

        session = await review_service.start_session(db, member_id, now=NOW)
        assert session.ordered_ids() == card_ids[:2]
        for item in session.cards:
            assert [p.rating.label for p in item.previews.values()] == ["again", "hard", "good", "easy"]

        # Rating the first new card uses up one of today's two slots
        first = session.cards[0]
        outcome = await review_service.submit_rating(db, first.card.id, "good", now=NOW)
        assert outcome.card.due_at == first.previews[3].due_at

        session = await review_service.start_session(db, member_id, now=NOW + timedelta(minutes=1))
        assert session.ordered_ids() == [card_ids[1]]


@pytest.mark.asyncio
async def test_settings_round_trip() -> None:
    await init_db()
    async with async_session() as db:
        member_id, _ = await make_member(db, new_cards=0)

        defaults = await review_service.load_settings(db, member_id)
        assert defaults.target_retention == 0.9

        updated = await review_service.update_settings(
            db, member_id, {"target_retention": 0.85, "learning_steps": ["30s", "5m", "20m"]}
        )
        assert updated.target_retention == 0.85

        loaded = await review_service.load_settings(db, member_id)
        assert loaded.learning_steps == ["30s", "5m", "20m"]
        assert loaded.new_per_day == 20

        with pytest.raises(ValidationError):
            await review_service.update_settings(db, member_id, {"target_retention": 0.99})
        assert (await review_service.load_settings(db, member_id)).target_retention == 0.85


@pytest.mark.asyncio
async def test_card_actions() -> None:
    await init_db()
    async with async_session() as db:
        member_id, (first, second) = await make_member(db, new_cards=2)

        await review_service.bury_card(db, first)
        await review_service.suspend_card(db, second)
        session = await review_service.start_session(db, member_id, now=NOW)
        assert session.ordered_ids() == []

        await review_service.restore_card(db, first)
        card = await review_service.flag_card(db, first, "typo in answer")
        assert card.flag_reason == "typo in answer"
        card = await review_service.note_card(db, first, "sounds like 'bonjour'")
        assert card.note == "sounds like 'bonjour'"

        session = await review_service.start_session(db, member_id, now=NOW)
        assert session.ordered_ids() == [first]

        removed = await review_service.remove_card(db, second)
        assert removed.status == "removed"
        with pytest.raises(CardRemovedError):
            await review_service.restore_card(db, second)
        with pytest.raises(CardRemovedError):
            await review_service.submit_rating(db, second, "good", now=NOW)

        # Removed cards are kept, never deleted
        assert await count_rows(db, Card, id=second) == 1


@pytest.mark.asyncio
async def test_member_stats() -> None:
    await init_db()
    async with async_session() as db:
        member_id, (a, b, c) = await make_member(db, new_cards=3)
        await review_service.submit_rating(db, a, "easy", now=NOW)
        await review_service.submit_rating(db, b, "again", now=NOW)
        await review_service.suspend_card(db, c)

        stats = await review_service.member_stats(db, member_id, now=NOW + timedelta(minutes=2))
        assert stats.total_cards == 3
        assert stats.review == 1
        assert stats.learning == 1
        assert stats.new == 1
        assert stats.suspended == 1
        assert stats.due_now == 1  # the learning card, due after one minute
        assert stats.total_reviews == 2
        assert stats.retention_30d is None
        assert stats.streak_days == 1


@pytest.mark.asyncio
async def test_streak_follows_member_calendar_day() -> None:
    await init_db()
    async with async_session() as db:
        member_id, (card_id,) = await make_member(db)
        await review_service.update_settings(db, member_id, {"timezone": "America/New_York"})

        # 22:00 on Feb 28 and 09:00 on Mar 1 in New York; both fall on Mar 1 in UTC
        await review_service.submit_rating(db, card_id, "again", now=datetime(2026, 3, 1, 3, 0))
        await review_service.submit_rating(db, card_id, "good", now=datetime(2026, 3, 1, 14, 0))

        stats = await review_service.member_stats(db, member_id, now=datetime(2026, 3, 1, 15, 0))
        assert stats.streak_days == 2

        # 01:00 UTC on Mar 2 is still Mar 1 in New York
        stats = await review_service.member_stats(db, member_id, now=datetime(2026, 3, 2, 1, 0))
        assert stats.streak_days == 2

        stats = await review_service.member_stats(db, member_id, now=datetime(2026, 3, 2, 15, 0))
        assert stats.streak_days == 0

class TestEffectiveNow:
    def test_defaults_to_server_time(self) -> None:
        assert review_service.effective_now(None, NOW) == NOW

    def test_past_client_time_used(self) -> None:
        earlier = NOW - timedelta(hours=3)
        assert review_service.effective_now(earlier, NOW) == earlier

    def test_aware_client_time_converted(self) -> None:
        aware = datetime(2026, 3, 1, 7, 0, tzinfo=UTC)
        assert review_service.effective_now(aware, NOW) == datetime(2026, 3, 1, 7, 0)

    def test_future_client_time_clamped(self) -> None:
        assert review_service.effective_now(NOW + timedelta(days=1), NOW) == NOW
