"""Per-member review settings: validation, step parsing and defaults."""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, ValidationError, field_validator

from backend.config import settings as app_settings
from backend.srs.errors import InvalidStepError

logger = logging.getLogger(__name__)

MIN_TARGET_RETENTION = 0.75
MAX_TARGET_RETENTION = 0.95
MAX_NEW_PER_DAY = 50
MAX_REVIEWS_PER_DAY = 200

_STEP_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd])\s*$")
_STEP_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}
MIN_STEP = timedelta(seconds=1)


def parse_step(step: str) -> timedelta:
    """Parse a step duration such as ``"30s"``, ``"10m"``, ``"2h"`` or ``"1d"``.

    Raises:
        InvalidStepError: if the string is malformed or shorter than one second.
    """
    match = _STEP_PATTERN.match(step) if isinstance(step, str) else None
    if match is None:
        raise InvalidStepError(f"Invalid step duration: {step!r}")
    duration = timedelta(**{_STEP_UNITS[match.group(2)]: float(match.group(1))})
    if duration < MIN_STEP:
        raise InvalidStepError(f"Step duration must be at least 1s: {step!r}")
    return duration


class ReviewSettings(BaseModel):
    """Scheduling configuration consumed by the engine.

    Member-editable fields are bounded the same way the settings table is;
    the remaining fields are engine knobs that come from the app config.
    """

    target_retention: float = Field(
        default=app_settings.target_retention,
        ge=MIN_TARGET_RETENTION,
        le=MAX_TARGET_RETENTION,
    )
    new_per_day: int = Field(default=app_settings.new_per_day, ge=0, le=MAX_NEW_PER_DAY)
    reviews_per_day: int = Field(default=app_settings.reviews_per_day, ge=0, le=MAX_REVIEWS_PER_DAY)
    learning_steps: list[str] = Field(default_factory=lambda: list(app_settings.learning_steps))
    relearning_steps: list[str] = Field(default_factory=lambda: list(app_settings.relearning_steps))
    enable_fuzz: bool = app_settings.enable_fuzz
    timezone: str = "UTC"

    maximum_interval_days: int = Field(default=app_settings.maximum_interval_days, ge=1)
    easy_graduates: bool = True

    model_config = {"frozen": True}

    @field_validator("learning_steps", "relearning_steps")
    @classmethod
    def _check_steps(cls, steps: list[str]) -> list[str]:
        for step in steps:
            try:
                parse_step(step)
            except InvalidStepError as exc:
                raise ValueError(str(exc)) from exc
        return [step.strip() for step in steps]

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value

    @property
    def learning_durations(self) -> list[timedelta]:
        return [parse_step(step) for step in self.learning_steps]

    @property
    def relearning_durations(self) -> list[timedelta]:
        return [parse_step(step) for step in self.relearning_steps]

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def snapshot(self) -> dict[str, Any]:
        """Config recorded with every review log entry."""
        return {
            "target_retention": self.target_retention,
            "learning_steps": list(self.learning_steps),
            "relearning_steps": list(self.relearning_steps),
            "enable_fuzz": self.enable_fuzz,
            "maximum_interval_days": self.maximum_interval_days,
            "easy_graduates": self.easy_graduates,
        }


DEFAULT_SETTINGS = ReviewSettings()


def resolve_settings(raw: dict[str, Any] | None) -> ReviewSettings:
    """Build settings from a stored row, falling back to defaults.

    A missing row gives the defaults silently. A row that fails validation is
    logged and replaced by the defaults so the review can still go ahead.
    """
    if raw is None:
        return DEFAULT_SETTINGS
    if not isinstance(raw, dict):
        logger.warning("Review settings are not a mapping (%s); using defaults", type(raw).__name__)
        return DEFAULT_SETTINGS

    values = {key: value for key, value in raw.items() if value is not None}
    try:
        return ReviewSettings(**values)
    except ValidationError as exc:
        logger.warning(
            "Invalid review settings (%d errors); falling back to defaults: %s",
            exc.error_count(),
            exc.errors(include_url=False),
        )
        return DEFAULT_SETTINGS
