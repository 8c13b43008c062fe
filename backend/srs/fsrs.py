"""FSRS (Free Spaced Repetition Scheduler) memory model.

A self-contained implementation of the FSRS-5 update rules.
Reference: https://github.com/open-spaced-repetition/fsrs4anki

Key concepts:
- Stability (S): The number of days after which retention drops to 90%.
- Difficulty (D): A value between 1 and 10 representing inherent item difficulty.
- Retrievability (R): The probability of recall at a given time since last review.
- Rating: 1=Again, 2=Hard, 3=Good, 4=Easy

This module only does the maths. Which phase a card is in, and how the
resulting stability becomes a due timestamp, lives in ``scheduler``.
"""

import math

from backend.srs.state import Rating

# FSRS-5 default parameters (can be optimized with member data later)
# w[0..3]: initial stability for ratings Again/Hard/Good/Easy on first review
# w[4..7]: difficulty initialisation, update and mean reversion
# w[8..10]: stability increase after a successful long-term review
# w[11..14]: stability after a lapse
# w[15..16]: hard penalty / easy bonus
# w[17..18]: same-day (short-term) stability update
DEFAULT_WEIGHTS = [
    0.40255,  # w0: initial stability for Again
    1.18385,  # w1: initial stability for Hard
    3.173,  # w2: initial stability for Good
    15.69105,  # w3: initial stability for Easy
    7.1949,  # w4: initial difficulty for Good
    0.5345,  # w5: initial difficulty grade exponent
    1.4604,  # w6: difficulty delta per grade
    0.0046,  # w7: difficulty mean reversion weight
    1.54575,  # w8: stability increase base (exp)
    0.1192,  # w9: stability saturation exponent
    1.01925,  # w10: retrievability influence on stability
    1.9395,  # w11: post-lapse stability base
    0.11,  # w12: post-lapse difficulty exponent
    0.29605,  # w13: post-lapse stability exponent
    2.2698,  # w14: post-lapse retrievability influence
    0.2315,  # w15: hard penalty
    2.9898,  # w16: easy bonus
    0.51655,  # w17: short-term stability rate
    0.6621,  # w18: short-term grade offset
]

# Forgetting curve: R(t, S) = (1 + FACTOR * t / S) ** DECAY, so R(S, S) = 0.9
DECAY = -0.5
FACTOR = 0.9 ** (1 / DECAY) - 1

DEFAULT_TARGET_RETENTION = 0.9

# Bounds
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.01  # ~15 minutes
MAX_STABILITY = 36500.0


def clamp_difficulty(d: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, d))


def clamp_stability(s: float) -> float:
    return max(MIN_STABILITY, min(MAX_STABILITY, s))


class FSRS:
    """Free Spaced Repetition Scheduler memory model."""

    def __init__(self, weights: list[float] | None = None) -> None:
        """Initialize FSRS with optional custom weights."""
        self.w = weights or DEFAULT_WEIGHTS
        if len(self.w) != len(DEFAULT_WEIGHTS):
            raise ValueError(f"FSRS expects {len(DEFAULT_WEIGHTS)} weights, got {len(self.w)}")

    def initial_stability(self, rating: Rating) -> float:
        """S0 = w[rating - 1]."""
        return clamp_stability(self.w[rating - 1])

    def initial_difficulty(self, rating: Rating) -> float:
        """D0 = w4 - e^(w5 * (rating - 1)) + 1."""
        return clamp_difficulty(self.w[4] - math.exp(self.w[5] * (rating - 1)) + 1)

    def next_difficulty(self, difficulty: float, rating: Rating) -> float:
        """Nudge difficulty up on Again/Hard and down on Easy.

        The step shrinks as D approaches 10 (linear damping) and a small
        weight pulls the result back toward the initial Easy difficulty.
        """
        delta = -self.w[6] * (rating - 3)
        damped = difficulty + delta * (10 - difficulty) / 9
        d0_easy = self.w[4] - math.exp(self.w[5] * 3) + 1
        reverted = self.w[7] * d0_easy + (1 - self.w[7]) * damped
        return clamp_difficulty(reverted)

    def retrievability(self, elapsed_days: float, stability: float) -> float:
        """Calculate the probability of recall given elapsed time and stability.

        Uses the power forgetting curve: R = (1 + FACTOR * t/S)^DECAY
        """
        if stability <= 0:
            return 0.0
        if elapsed_days <= 0:
            return 1.0
        return (1 + FACTOR * elapsed_days / stability) ** DECAY

    def interval_days(self, stability: float, target_retention: float) -> float:
        """Convert stability to an interval in days for the target retention.

        Solving target_retention = (1 + FACTOR * t / S)^DECAY for t:
        t = S / FACTOR * (target_retention^(1/DECAY) - 1)

        Monotonic in S; a higher target retention gives a shorter interval.
        """
        return stability / FACTOR * (target_retention ** (1 / DECAY) - 1)

    def stability_after_success(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
        rating: Rating,
    ) -> float:
        """Calculate new stability after a successful long-term review (rating >= 2).

        S' = S * (1 + e^(w8) * (11 - D) * S^(-w9) * (e^(w10*(1-R)) - 1) * HP * EB)
        """
        hard_penalty = self.w[15] if rating == Rating.HARD else 1.0
        easy_bonus = self.w[16] if rating == Rating.EASY else 1.0
        factor = (
            math.exp(self.w[8])
            * (11 - difficulty)
            * stability ** (-self.w[9])
            * (math.exp(self.w[10] * (1 - retrievability)) - 1)
            * hard_penalty
            * easy_bonus
        )
        return clamp_stability(stability * (1 + factor))

    def stability_after_fail(
        self,
        stability: float,
        difficulty: float,
        retrievability: float,
    ) -> float:
        """Calculate new stability after a lapse (rating = 1).

        S' = w11 * D^(-w12) * ((S+1)^w13 - 1) * e^(w14*(1-R))
        """
        new_s = (
            self.w[11]
            * difficulty ** (-self.w[12])
            * ((stability + 1) ** self.w[13] - 1)
            * math.exp(self.w[14] * (1 - retrievability))
        )
        # Forgetting never leaves the card stronger than a same-day Again would
        ceiling = stability / math.exp(self.w[17] * self.w[18])
        return clamp_stability(min(new_s, ceiling))

    def stability_short_term(self, stability: float, rating: Rating) -> float:
        """Stability after a review on the same day as the previous one.

        S' = S * e^(w17 * (rating - 3 + w18))
        """
        return clamp_stability(stability * math.exp(self.w[17] * (rating - 3 + self.w[18])))
