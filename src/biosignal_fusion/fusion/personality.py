"""Personality — Big-Five scoring from a ten-item Likert questionnaire.

Two items per trait, asked in trait order (O, C, E, A, N).  The second item
of every pair is reverse keyed and scored as ``6 - answer``; a trait score
is the mean of its pair and therefore lies in [1, 5].

:func:`behavioural_traits` is a separate, passive read-out derived from the
runtime signal histories; it never replaces the questionnaire profile.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import structlog

from biosignal_fusion.fusion.models import BigFiveProfile, EmotionLabel
from biosignal_fusion.fusion.stats import clamp

logger = structlog.get_logger(__name__)

LIKERT_MIN = 1
LIKERT_MAX = 5

TRAITS: tuple[str, ...] = (
    "openness",
    "conscientiousness",
    "extraversion",
    "agreeableness",
    "neuroticism",
)

# (trait, reverse_keyed) for each of the ten items, in presentation order
ITEMS: tuple[tuple[str, bool], ...] = tuple(
    (trait, reverse) for trait in TRAITS for reverse in (False, True)
)

_POSITIVE = {EmotionLabel.HAPPY, EmotionLabel.SURPRISED}
_NEGATIVE = {EmotionLabel.SAD, EmotionLabel.ANGRY, EmotionLabel.FEARFUL}


class InvalidAnswersError(ValueError):
    """Questionnaire answers violate the ten-item 1..5 contract."""


def to_percent(value: float) -> int:
    """Map a 1-5 trait score to 0-100."""
    return round((value - 1) / 4 * 100)


class PersonalityAggregator:
    """Score the fixed ten-item Big-Five questionnaire."""

    items = ITEMS

    def score(self, answers: Sequence[int]) -> BigFiveProfile:
        self._validate(answers)

        totals: dict[str, list[float]] = {trait: [] for trait in TRAITS}
        for (trait, reverse), answer in zip(ITEMS, answers):
            totals[trait].append(float(LIKERT_MAX + LIKERT_MIN - answer if reverse else answer))

        profile = BigFiveProfile(**{trait: sum(v) / len(v) for trait, v in totals.items()})
        logger.info("personality.scored", summary=profile.summary())
        return profile

    @staticmethod
    def _validate(answers: Sequence[int]) -> None:
        if len(answers) != len(ITEMS):
            raise InvalidAnswersError(f"Expected {len(ITEMS)} answers, got {len(answers)}.")
        for idx, answer in enumerate(answers):
            if isinstance(answer, bool) or not isinstance(answer, int):
                raise InvalidAnswersError(f"Answer {idx + 1} is not an integer: {answer!r}.")
            if not LIKERT_MIN <= answer <= LIKERT_MAX:
                raise InvalidAnswersError(
                    f"Answer {idx + 1} is {answer}; expected {LIKERT_MIN}..{LIKERT_MAX}."
                )


def behavioural_traits(
    attention_history: Iterable[float],
    fatigue_history: Iterable[float],
    emotion_history: Sequence[EmotionLabel],
) -> dict[str, int]:
    """Passive O/C/E/A/N percentages from what the session has observed."""
    attention = list(attention_history)
    fatigue = list(fatigue_history)
    attention_avg = sum(attention) / len(attention) if attention else 0.0
    fatigue_avg = sum(fatigue) / len(fatigue) if fatigue else 0.0

    n = len(emotion_history) or 1
    positive = sum(1 for e in emotion_history if e in _POSITIVE) / n
    negative = sum(1 for e in emotion_history if e in _NEGATIVE) / n
    unique = len(set(emotion_history))

    return {
        "openness": int(clamp(round(45 + unique * 8), 25, 95)),
        "conscientiousness": int(clamp(round(attention_avg), 20, 95)),
        "extraversion": int(clamp(round(40 + positive * 55), 20, 95)),
        "agreeableness": int(clamp(round(70 - negative * 35), 20, 95)),
        "neuroticism": int(clamp(round(35 + fatigue_avg * 0.5 + negative * 35), 20, 95)),
    }
