"""Tests for struggle detection and assist-level adaptation."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backend.srs.errors import StruggleEventAlreadyResolved
from backend.srs.state import Rating
from backend.srs.struggle import (
    MAX_ASSIST_LEVEL,
    RatingEvent,
    StruggleConfig,
    StruggleCounters,
    count_agains,
    observe,
    resolve,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


class RatingStream:
    """Feeds ratings through ``observe`` the way the review service does."""

    def __init__(self, config: StruggleConfig | None = None, assist_level: int = 0) -> None:
        self.config = config or StruggleConfig()
        self.counters = StruggleCounters(assist_level=assist_level)
        self.log: list[SimpleNamespace] = []
        self.signals: list[str] = []
        self.open_event = False

    def rate(self, rating: Rating, at: datetime, respect_open: bool = True):
        outcome = observe(
            RatingEvent(card_id=1, rating=rating, rated_at=at),
            self.counters,
            self.log,
            self.config,
            has_open_event=self.open_event and respect_open,
        )
        self.counters = outcome.counters
        self.log.append(SimpleNamespace(rating=rating.label, rated_at=at))
        if outcome.signal is not None:
            self.signals.append(outcome.signal.trigger)
            self.open_event = True
        return outcome


class TestObserve:
    def test_five_consecutive_again_fires_once(self) -> None:
        stream = RatingStream()
        for i in range(5):
            outcome = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        assert stream.signals == ["consecutive_5"]
        assert stream.counters.consecutive_again == 5
        assert outcome.signal is not None
        assert outcome.signal.created_at == NOW + timedelta(minutes=4)

        sixth = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=5))
        assert sixth.signal is None
        assert stream.signals == ["consecutive_5"]
        assert stream.counters.consecutive_again == 6

    def test_sixth_again_does_not_refire_without_open_event(self) -> None:
        stream = RatingStream()
        for i in range(6):
            stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i), respect_open=False)
        assert stream.signals == ["consecutive_5"]

    def test_other_ratings_reset_consecutive(self) -> None:
        stream = RatingStream()
        for i in range(4):
            stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        stream.rate(Rating.HARD, NOW + timedelta(minutes=5))
        assert stream.counters.consecutive_again == 0
        assert stream.counters.again_count_24h == 4

    def test_again_in_24h_rule(self) -> None:
        stream = RatingStream()
        at = NOW
        for _ in range(5):
            stream.rate(Rating.AGAIN, at)
            stream.rate(Rating.GOOD, at + timedelta(minutes=10))
            at += timedelta(hours=1)
        assert stream.signals == ["again_5_in_24h"]
        assert stream.counters.consecutive_again == 0
        assert stream.counters.again_count_24h == 5

    def test_again_in_7d_rule(self) -> None:
        stream = RatingStream()
        at = NOW
        for _ in range(10):
            stream.rate(Rating.AGAIN, at)
            stream.rate(Rating.GOOD, at + timedelta(minutes=10))
            at += timedelta(hours=15)
        assert stream.signals == ["again_10_in_7d"]
        assert stream.counters.again_count_7d == 10
        assert stream.counters.again_count_24h <= 2

    def test_window_counts_decay(self) -> None:
        stream = RatingStream()
        for i in range(3):
            stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        outcome = stream.rate(Rating.GOOD, NOW + timedelta(hours=25))
        assert outcome.counters.again_count_24h == 0
        assert outcome.counters.again_count_7d == 3

        outcome = stream.rate(Rating.GOOD, NOW + timedelta(days=8))
        assert outcome.counters.again_count_7d == 0

    def test_open_event_blocks_new_signal(self) -> None:
        stream = RatingStream()
        stream.open_event = True
        for i in range(10):
            outcome = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
            assert outcome.signal is None
        assert stream.counters.consecutive_again == 10
        assert stream.counters.assist_level == 0

    def test_thresholds_come_from_config(self) -> None:
        stream = RatingStream(StruggleConfig(consecutive_threshold=3, window_24h_threshold=10))
        for i in range(3):
            stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        assert stream.signals == ["consecutive_3"]


class TestAssist:
    def test_signal_raises_assist_level(self) -> None:
        stream = RatingStream()
        for i in range(5):
            outcome = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        assert outcome.assist_level_change == 1
        assert outcome.counters.assist_level == 1
        assert outcome.paused_reason is None

    def test_top_assist_level_pauses(self) -> None:
        stream = RatingStream(assist_level=MAX_ASSIST_LEVEL)
        for i in range(5):
            outcome = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        assert outcome.assist_level_change is None
        assert outcome.counters.assist_level == MAX_ASSIST_LEVEL
        assert outcome.paused_reason == "consecutive_5"
        assert outcome.paused_at == NOW + timedelta(minutes=4)

    def test_pause_on_struggle_config(self) -> None:
        stream = RatingStream(StruggleConfig(pause_on_struggle=True))
        for i in range(5):
            outcome = stream.rate(Rating.AGAIN, NOW + timedelta(minutes=i))
        assert outcome.paused_reason == "consecutive_5"
        assert outcome.counters.assist_level == 0

    def test_counters_from_record_clamp_assist(self) -> None:
        row = SimpleNamespace(consecutive_again=2, again_count_24h=None, again_count_7d=3, assist_level=9)
        counters = StruggleCounters.from_record(row)
        assert counters.assist_level == MAX_ASSIST_LEVEL
        assert counters.again_count_24h == 0


class TestCountAgains:
    def test_window_bounds(self) -> None:
        entries = [
            SimpleNamespace(rating="again", rated_at=NOW - timedelta(hours=24)),  # outside
            SimpleNamespace(rating="again", rated_at=NOW - timedelta(hours=23)),
            SimpleNamespace(rating=Rating.AGAIN, rated_at=NOW),
            SimpleNamespace(rating="good", rated_at=NOW - timedelta(hours=1)),
            SimpleNamespace(rating="again", rated_at=NOW + timedelta(minutes=1)),  # future
        ]
        assert count_agains(entries, NOW, timedelta(hours=24)) == 2


class TestResolve:
    def test_resolve_once(self) -> None:
        event = SimpleNamespace(id=3, resolved_at=None, resolved_by=None)
        resolve(event, resolver_id=42, resolved_at=NOW)
        assert event.resolved_at == NOW
        assert event.resolved_by == 42

    def test_resolve_twice_raises(self) -> None:
        event = SimpleNamespace(id=3, resolved_at=NOW, resolved_by=42)
        with pytest.raises(StruggleEventAlreadyResolved):
            resolve(event, resolver_id=7, resolved_at=NOW + timedelta(hours=1))
        assert event.resolved_by == 42
