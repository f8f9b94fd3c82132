# src/lifecompass/core/progress.py
"""Progress calculator: mode + responses -> completion percentage."""

import math
from typing import Mapping, Optional

from .models import Mode, Response
from .questions import Question, get_questions_for_mode


def is_answered(question: Question, response: Optional[Response]) -> bool:
    """A response counts only if its kind matches the question's declared kind."""
    if response is None:
        return False
    if response.value.kind != question.value_kind:
        return False
    return response.value.is_answered()


def calculate_progress(mode: Mode, responses: Mapping[str, Response]) -> int:
    """Percentage (0-100) of the mode's questions that hold a non-empty answer.

    Responses to questions outside the mode are ignored. Halves round up.
    """
    questions = get_questions_for_mode(mode)
    if not questions:
        return 0
    answered = sum(1 for q in questions if is_answered(q, responses.get(q.id)))
    return int(math.floor(answered * 100 / len(questions) + 0.5))
