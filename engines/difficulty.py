"""Skill-rate tracking and difficulty banding.

Two independent band functions live here:

* :func:`select_difficulty` maps the exponential moving average of a
  learner's correctness to a band, with per-band hysteresis so a rate
  hovering near a threshold does not flip the band on every answer.
* :func:`bootstrap_difficulty` is the coarse count-gated mapping used before
  enough answers exist for the moving average to mean anything.

All threshold comparisons run on integer thousandths so boundary behaviour
does not depend on float representation.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from env_validation import get_env_float

EASY = "easy"
MEDIUM = "medium"
HARD = "hard"
BANDS = (EASY, MEDIUM, HARD)

DEFAULT_ALPHA = 0.2
DEFAULT_EASY_MAX = 0.38
DEFAULT_MEDIUM_MAX = 0.72
DEFAULT_HYSTERESIS = 0.03

BOOTSTRAP_MIN_ANSWERS = 5
BOOTSTRAP_HARD_RATE = 0.75
BOOTSTRAP_MEDIUM_RATE = 0.55


def _milli(value: float) -> int:
    return int(round(float(value) * 1000))


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def update_rate(old_rate: float, is_correct: bool, alpha: float = DEFAULT_ALPHA) -> float:
    """Exponential moving average of correctness, clamped and rounded to 3 places."""
    old = _clamp(float(old_rate))
    target = 1.0 if is_correct else 0.0
    return round(_clamp(alpha * target + (1.0 - alpha) * old), 3)


def _raw_band(rate_m: int, easy_m: int, medium_m: int) -> str:
    if rate_m < easy_m:
        return EASY
    if rate_m <= medium_m:
        return MEDIUM
    return HARD


def select_difficulty(
    rate: float,
    previous_band: Optional[str] = None,
    *,
    easy_max: float = DEFAULT_EASY_MAX,
    medium_max: float = DEFAULT_MEDIUM_MAX,
    hysteresis: float = DEFAULT_HYSTERESIS,
) -> str:
    """Map ``rate`` to a band, holding ``previous_band`` until its margin is crossed."""
    rate_m = _milli(_clamp(rate))
    easy_m = _milli(easy_max)
    medium_m = _milli(medium_max)
    margin_m = _milli(hysteresis)

    target = _raw_band(rate_m, easy_m, medium_m)
    if previous_band not in BANDS or previous_band == target:
        return target

    if previous_band == EASY and rate_m < easy_m + margin_m:
        return EASY
    if previous_band == HARD and rate_m > medium_m - margin_m:
        return HARD
    if previous_band == MEDIUM and easy_m - margin_m <= rate_m <= medium_m + margin_m:
        return MEDIUM
    return target


def bootstrap_difficulty(correct_rate: float, total_answered: int) -> str:
    """Coarse band for learners without enough history for the moving average."""
    if total_answered < BOOTSTRAP_MIN_ANSWERS:
        return MEDIUM
    rate_m = _milli(_clamp(correct_rate))
    if rate_m >= _milli(BOOTSTRAP_HARD_RATE):
        return HARD
    if rate_m >= _milli(BOOTSTRAP_MEDIUM_RATE):
        return MEDIUM
    return EASY


@dataclass(frozen=True)
class DifficultyEngine:
    alpha: float = DEFAULT_ALPHA
    easy_max: float = DEFAULT_EASY_MAX
    medium_max: float = DEFAULT_MEDIUM_MAX
    hysteresis: float = DEFAULT_HYSTERESIS

    def __post_init__(self) -> None:
        if not 0.0 < self.alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {self.alpha}")
        if not 0.0 <= self.easy_max < self.medium_max <= 1.0:
            raise ValueError("expected 0 <= easy_max < medium_max <= 1")
        if self.hysteresis < 0:
            raise ValueError("hysteresis cannot be negative")

    @classmethod
    def from_env(cls) -> "DifficultyEngine":
        return cls(
            alpha=get_env_float("EMA_ALPHA", DEFAULT_ALPHA),
            easy_max=get_env_float("DIFFICULTY_EASY_MAX", DEFAULT_EASY_MAX),
            medium_max=get_env_float("DIFFICULTY_MEDIUM_MAX", DEFAULT_MEDIUM_MAX),
            hysteresis=get_env_float("DIFFICULTY_HYSTERESIS", DEFAULT_HYSTERESIS),
        )

    def update_rate(self, old_rate: float, is_correct: bool) -> float:
        return update_rate(old_rate, is_correct, self.alpha)

    def select_difficulty(self, rate: float, previous_band: Optional[str] = None) -> str:
        return select_difficulty(
            rate,
            previous_band,
            easy_max=self.easy_max,
            medium_max=self.medium_max,
            hysteresis=self.hysteresis,
        )

    def current_band(
        self,
        skill_rate: float,
        previous_band: Optional[str],
        total_answered: int,
        total_correct: int,
    ) -> str:
        """Band to serve next: bootstrap gating first, then EMA with hysteresis."""
        correct_rate = (total_correct / total_answered) if total_answered else 0.0
        if total_answered < BOOTSTRAP_MIN_ANSWERS:
            return bootstrap_difficulty(correct_rate, total_answered)
        anchor = previous_band if previous_band in BANDS else bootstrap_difficulty(
            correct_rate, total_answered
        )
        return self.select_difficulty(skill_rate, anchor)
