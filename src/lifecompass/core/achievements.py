# src/lifecompass/core/achievements.py
"""
Achievement evaluator.

Pure rule set over reflection history and the active response map. It only
reports which achievement types qualify; unlocking (and its idempotence)
belongs to the engine.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from .models import AchievementType, Mode, RatingsValue, Reflection, Response
from .questions import LIFE_AREA_IDS, LIFE_AREAS_QUESTION_ID, WORD_OF_YEAR_QUESTION_ID


SPEED_RUN_LIMIT = timedelta(minutes=10)
BALANCED_MIN_RATING = 7
WORD_MASTER_COUNT = 3

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class AchievementDefinition:
    type: AchievementType
    name: str
    description: str


ACHIEVEMENT_DEFINITIONS: Dict[AchievementType, AchievementDefinition] = {
    d.type: d for d in (
        AchievementDefinition(AchievementType.FIRST_JOURNEY, "First Steps",
                              "Complete your first reflection journey"),
        AchievementDefinition(AchievementType.DEEP_THINKER, "Deep Thinker",
                              "Complete a Deep Think journey"),
        AchievementDefinition(AchievementType.SPEED_RUNNER, "Speed Runner",
                              "Complete Quick mode in under 10 minutes"),
        AchievementDefinition(AchievementType.CONSISTENT, "Consistent",
                              "Complete journeys 2 years in a row"),
        AchievementDefinition(AchievementType.ALL_AREAS, "Balanced Life",
                              "Rate all 7 life areas as 7 or higher"),
        AchievementDefinition(AchievementType.WORD_MASTER, "Word Master",
                              "Set your word of the year 3 times"),
        AchievementDefinition(AchievementType.SHARER, "Sharer",
                              "Create your first shareable card"),
    )
}


class AchievementEvaluator:
    """Evaluates every automatic rule independently.

    `sharer` has no rule here; it is unlocked explicitly by whoever creates
    a share card.
    """

    def __init__(self):
        self._rules: Dict[AchievementType, Callable[[Sequence[Reflection], Mapping[str, Response]], bool]] = {
            AchievementType.FIRST_JOURNEY: self._first_journey,
            AchievementType.DEEP_THINKER: self._deep_thinker,
            AchievementType.SPEED_RUNNER: self._speed_runner,
            AchievementType.CONSISTENT: self._consistent,
            AchievementType.ALL_AREAS: self._all_areas,
            AchievementType.WORD_MASTER: self._word_master,
        }

    def evaluate(self, reflections: Sequence[Reflection],
                 responses: Mapping[str, Response]) -> List[AchievementType]:
        """Return every achievement type whose rule currently holds."""
        return [t for t, rule in self._rules.items() if rule(reflections, responses)]

    # ---- rules ----

    @staticmethod
    def _first_journey(reflections, responses) -> bool:
        return any(r.completed for r in reflections)

    @staticmethod
    def _deep_thinker(reflections, responses) -> bool:
        return any(r.completed and r.mode == Mode.DEEP for r in reflections)

    @staticmethod
    def _speed_runner(reflections, responses) -> bool:
        completed = [r for r in reflections if r.completed]
        if not completed:
            return False
        # sorted() is stable: ties keep history order
        latest = sorted(completed, key=lambda r: r.completed_at or _EPOCH, reverse=True)[0]
        if latest.mode != Mode.QUICK or latest.completed_at is None:
            return False
        return latest.completed_at - latest.started_at < SPEED_RUN_LIMIT

    @staticmethod
    def _consistent(reflections, responses) -> bool:
        years = sorted({r.year for r in reflections if r.completed})
        return any(b - a == 1 for a, b in zip(years, years[1:]))

    @staticmethod
    def _all_areas(reflections, responses) -> bool:
        latest = _latest_response(LIFE_AREAS_QUESTION_ID, reflections, responses)
        if latest is None or not isinstance(latest.value, RatingsValue):
            return False
        ratings = latest.value.ratings
        return (set(ratings) == LIFE_AREA_IDS
                and all(rating >= BALANCED_MIN_RATING for rating in ratings.values()))

    @staticmethod
    def _word_master(reflections, responses) -> bool:
        with_word = 0
        for reflection in reflections:
            response = reflection.responses.get(WORD_OF_YEAR_QUESTION_ID)
            if response is not None and response.value.is_answered():
                with_word += 1
        return with_word >= WORD_MASTER_COUNT


def _latest_response(question_id: str, reflections: Sequence[Reflection],
                     responses: Mapping[str, Response]) -> Optional[Response]:
    """Most recently updated response to a question across active map and history."""
    candidates = [responses.get(question_id)]
    candidates.extend(r.responses.get(question_id) for r in reflections)
    candidates = [c for c in candidates if c is not None]
    if not candidates:
        return None
    return max(candidates, key=lambda c: c.updated_at)
