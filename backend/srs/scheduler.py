"""Review state machine and interval calculator.

Given a card's current ``CardState``, a rating, the member's settings and the
current time, decide the card's next phase, short-term step, memory state and
due timestamp.

Phases::

    new -> learning -> review <-> relearning

``learning`` and ``relearning`` walk through the configured step durations
(e.g. "1m", "10m"). Again resets to the first step, any other rating advances
one step, and stepping past the last one graduates the card to ``review``
with a whole-day interval from the memory model. Again in ``review`` is a
lapse and sends the card to the first relearning step.

Every call evaluates all four ratings and repairs the results so that
``due(Again) <= due(Hard) <= due(Good) <= due(Easy)``; ``compute`` and
``preview_all`` share that code path, which is what keeps a preview identical
to the commit that follows it.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from backend.srs.fsrs import FSRS
from backend.srs.settings import ReviewSettings
from backend.srs.state import CardState, Rating, ReviewLogEntry, SchedulerState

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000
SAME_DAY = timedelta(days=1)

# Fuzz: one factor per decision, applied to day-scale intervals only
FUZZ_RANGE = 0.05
FUZZ_MIN_DAYS = 2.5


@dataclass(frozen=True)
class RatingPreview:
    """What would happen if the card were rated ``rating`` right now."""

    rating: Rating
    state_after: SchedulerState
    due_at: datetime
    interval_ms: int
    stability_after: float
    difficulty_after: float

    @property
    def interval_label(self) -> str:
        return format_interval(self.interval_ms)


@dataclass(frozen=True)
class ScheduleResult:
    """The result of applying a rating to a card."""

    card: CardState
    log: ReviewLogEntry

    @property
    def interval_ms(self) -> int:
        return self.card.interval_ms


@dataclass
class _Outcome:
    state: SchedulerState
    step_index: int | None
    stability: float
    difficulty: float
    short_term: timedelta | None = None  # set for learning/relearning steps
    days: float = 0.0  # raw day interval, set when the card lands in review

    @property
    def is_day_scale(self) -> bool:
        return self.short_term is None


class Scheduler:
    """Pure scheduling functions bound to one set of memory-model weights."""

    def __init__(self, fsrs: FSRS | None = None) -> None:
        self.fsrs = fsrs or FSRS()

    def compute(
        self,
        card: CardState,
        rating: Rating,
        settings: ReviewSettings,
        now: datetime,
    ) -> ScheduleResult:
        """Apply ``rating`` to ``card`` at ``now``.

        Returns the new card state and the review log entry describing the
        change. ``card`` itself is left untouched.
        """
        rating = Rating.parse(rating)
        outcome, interval = self._decide(card, settings, now)[rating]
        chosen = _preview(rating, outcome, interval, now)

        elapsed = self._elapsed(card, now)
        overdue = now - card.due_at if card.state != SchedulerState.NEW else timedelta(0)
        was_overdue = overdue > timedelta(0)

        new_card = replace(
            card,
            state=chosen.state_after,
            due_at=chosen.due_at,
            last_reviewed_at=now,
            stability=chosen.stability_after,
            difficulty=chosen.difficulty_after,
            repetitions=card.repetitions + (0 if rating == Rating.AGAIN else 1),
            lapses=card.lapses + (1 if self._is_lapse(card, rating) else 0),
            reviews=card.reviews + 1,
            interval_ms=chosen.interval_ms,
            short_term_step_index=outcome.step_index,
        )

        log = ReviewLogEntry(
            rating=rating,
            rated_at=now,
            state_before=card.state,
            state_after=new_card.state,
            due_before=card.due_at,
            due_after=new_card.due_at,
            interval_before_ms=card.interval_ms,
            interval_after_ms=new_card.interval_ms,
            stability_before=card.stability,
            stability_after=new_card.stability,
            difficulty_before=card.difficulty,
            difficulty_after=new_card.difficulty,
            elapsed_ms=_to_ms(elapsed),
            was_overdue=was_overdue,
            overdue_ms=_to_ms(overdue) if was_overdue else 0,
            config_snapshot=settings.snapshot(),
        )

        logger.debug(
            "Card %s rated %s: %s -> %s, due in %s (S=%.3f, D=%.3f)",
            card.card_id,
            rating.label,
            card.state.value,
            new_card.state.value,
            format_interval(new_card.interval_ms),
            new_card.stability,
            new_card.difficulty,
        )
        return ScheduleResult(card=new_card, log=log)

    def preview(
        self,
        card: CardState,
        rating: Rating,
        settings: ReviewSettings,
        now: datetime,
    ) -> RatingPreview:
        return self.preview_all(card, settings, now)[Rating.parse(rating)]

    def preview_all(
        self,
        card: CardState,
        settings: ReviewSettings,
        now: datetime,
    ) -> dict[Rating, RatingPreview]:
        """Return the outcome of each of the four ratings, in rating order."""
        return {
            rating: _preview(rating, outcome, interval, now)
            for rating, (outcome, interval) in self._decide(card, settings, now).items()
        }

    def retrievability_at(self, card: CardState, now: datetime) -> float:
        """Estimated probability of recalling ``card`` at ``now`` (0 for new cards)."""
        if card.state == SchedulerState.NEW or card.stability <= 0:
            return 0.0
        elapsed_days = self._elapsed(card, now) / SAME_DAY
        return self.fsrs.retrievability(elapsed_days, card.stability)

    def _decide(
        self,
        card: CardState,
        settings: ReviewSettings,
        now: datetime,
    ) -> dict[Rating, tuple[_Outcome, timedelta]]:
        outcomes = self._outcomes(card, settings, now)
        intervals = self._intervals(card, outcomes, settings, now)
        return {rating: (outcomes[rating], intervals[rating]) for rating in Rating}

    # --- state machine ---

    def _outcomes(
        self,
        card: CardState,
        settings: ReviewSettings,
        now: datetime,
    ) -> dict[Rating, _Outcome]:
        elapsed_days = self._elapsed(card, now) / SAME_DAY
        outcomes = {}
        for rating in Rating:
            stability, difficulty = self._memory(card, rating, elapsed_days)
            outcomes[rating] = self._transition(card, rating, settings, stability, difficulty)
        return outcomes

    def _transition(
        self,
        card: CardState,
        rating: Rating,
        settings: ReviewSettings,
        stability: float,
        difficulty: float,
    ) -> _Outcome:
        if card.state == SchedulerState.NEW:
            return self._step(
                SchedulerState.LEARNING, 0, settings.learning_durations,
                rating, settings, stability, difficulty,
            )

        if card.state.is_short_term:
            steps = (
                settings.learning_durations
                if card.state == SchedulerState.LEARNING
                else settings.relearning_durations
            )
            return self._step(
                card.state, card.short_term_step_index or 0, steps,
                rating, settings, stability, difficulty,
            )

        if rating == Rating.AGAIN and settings.relearning_durations:
            return _Outcome(
                state=SchedulerState.RELEARNING,
                step_index=0,
                stability=stability,
                difficulty=difficulty,
                short_term=settings.relearning_durations[0],
            )
        return self._graduate(settings, stability, difficulty)

    def _step(
        self,
        phase: SchedulerState,
        index: int,
        steps: list[timedelta],
        rating: Rating,
        settings: ReviewSettings,
        stability: float,
        difficulty: float,
    ) -> _Outcome:
        if not steps:
            return self._graduate(settings, stability, difficulty)
        # Steps may have been shortened since the card entered this phase
        index = min(index, len(steps) - 1)

        if rating == Rating.AGAIN:
            next_index = 0
        elif rating == Rating.EASY and settings.easy_graduates:
            return self._graduate(settings, stability, difficulty)
        else:
            next_index = index + 1
            if next_index >= len(steps):
                return self._graduate(settings, stability, difficulty)

        return _Outcome(
            state=phase,
            step_index=next_index,
            stability=stability,
            difficulty=difficulty,
            short_term=steps[next_index],
        )

    def _graduate(self, settings: ReviewSettings, stability: float, difficulty: float) -> _Outcome:
        return _Outcome(
            state=SchedulerState.REVIEW,
            step_index=None,
            stability=stability,
            difficulty=difficulty,
            days=self.fsrs.interval_days(stability, settings.target_retention),
        )

    @staticmethod
    def _is_lapse(card: CardState, rating: Rating) -> bool:
        return card.state == SchedulerState.REVIEW and rating == Rating.AGAIN

    # --- memory model ---

    def _memory(self, card: CardState, rating: Rating, elapsed_days: float) -> tuple[float, float]:
        if card.state == SchedulerState.NEW:
            return self.fsrs.initial_stability(rating), self.fsrs.initial_difficulty(rating)

        s, d = card.stability, card.difficulty
        new_d = self.fsrs.next_difficulty(d, rating)

        if elapsed_days < 1 and not self._is_lapse(card, rating):
            return self.fsrs.stability_short_term(s, rating), new_d

        r = self.fsrs.retrievability(elapsed_days, s)
        if rating == Rating.AGAIN:
            return self.fsrs.stability_after_fail(s, d, r), new_d
        return self.fsrs.stability_after_success(s, d, r, rating), new_d

    # --- intervals ---

    def _intervals(
        self,
        card: CardState,
        outcomes: dict[Rating, _Outcome],
        settings: ReviewSettings,
        now: datetime,
    ) -> dict[Rating, timedelta]:
        fuzz = self._fuzz_factor(card, settings, now)
        intervals: dict[Rating, timedelta] = {}
        previous: tuple[timedelta, bool] | None = None

        for rating in Rating:
            outcome = outcomes[rating]
            if outcome.is_day_scale:
                days = outcome.days
                if days >= FUZZ_MIN_DAYS:
                    days *= fuzz
                whole = min(settings.maximum_interval_days, max(1, round(days)))
                interval = timedelta(days=whole)
            else:
                interval = outcome.short_term

            if previous is not None:
                prev_interval, prev_day_scale = previous
                if outcome.is_day_scale and prev_day_scale and rating > Rating.HARD:
                    # Distinct buttons should not show the same day count
                    floor_days = min(settings.maximum_interval_days, prev_interval.days + 1)
                    interval = max(interval, timedelta(days=floor_days))
                interval = max(interval, prev_interval)

            intervals[rating] = interval
            previous = (interval, outcome.is_day_scale)
        return intervals

    @staticmethod
    def _fuzz_factor(card: CardState, settings: ReviewSettings, now: datetime) -> float:
        """A deterministic fuzz factor for this card at this instant."""
        if not settings.enable_fuzz:
            return 1.0
        rng = random.Random(f"{card.card_id}:{card.reviews}:{now.isoformat()}")
        return rng.uniform(1 - FUZZ_RANGE, 1 + FUZZ_RANGE)

    @staticmethod
    def _elapsed(card: CardState, now: datetime) -> timedelta:
        if card.last_reviewed_at is None:
            return timedelta(0)
        elapsed = now - card.last_reviewed_at
        if elapsed < timedelta(0):
            logger.warning(
                "Clock skew on card %s: now %s is before last review %s; using zero elapsed time",
                card.card_id,
                now.isoformat(),
                card.last_reviewed_at.isoformat(),
            )
            return timedelta(0)
        return elapsed


def _to_ms(delta: timedelta) -> int:
    return int(round(delta.total_seconds() * 1000))


def _preview(rating: Rating, outcome: _Outcome, interval: timedelta, now: datetime) -> RatingPreview:
    return RatingPreview(
        rating=rating,
        state_after=outcome.state,
        due_at=now + interval,
        interval_ms=_to_ms(interval),
        stability_after=outcome.stability,
        difficulty_after=outcome.difficulty,
    )


def format_interval(interval_ms: int) -> str:
    """Format an interval for rating buttons: "30s", "10m", "1h 30m", "3 days"."""
    if interval_ms < 60_000:
        seconds = max(0, interval_ms // 1000)
        return f"{seconds}s"
    if interval_ms < 3_600_000:
        return f"{interval_ms // 60_000}m"
    if interval_ms < MS_PER_DAY:
        hours = interval_ms // 3_600_000
        minutes = (interval_ms % 3_600_000) // 60_000
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    days = interval_ms // MS_PER_DAY
    return "1 day" if days == 1 else f"{days} days"


def interval_days(interval_ms: int) -> int:
    """Whole days in an interval, 0 for sub-day steps."""
    return interval_ms // MS_PER_DAY if interval_ms >= MS_PER_DAY else 0


_default_scheduler = Scheduler()


def compute(card: CardState, rating: Rating, settings: ReviewSettings, now: datetime) -> ScheduleResult:
    return _default_scheduler.compute(card, rating, settings, now)


def preview(card: CardState, rating: Rating, settings: ReviewSettings, now: datetime) -> RatingPreview:
    return _default_scheduler.preview(card, rating, settings, now)


def preview_all(card: CardState, settings: ReviewSettings, now: datetime) -> dict[Rating, RatingPreview]:
    return _default_scheduler.preview_all(card, settings, now)


def retrievability_at(card: CardState, now: datetime) -> float:
    return _default_scheduler.retrievability_at(card, now)


__all__ = [
    "RatingPreview",
    "ScheduleResult",
    "Scheduler",
    "compute",
    "format_interval",
    "interval_days",
    "preview",
    "preview_all",
    "retrievability_at",
]
