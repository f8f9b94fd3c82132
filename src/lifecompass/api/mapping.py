# src/lifecompass/api/mapping.py
"""
Row <-> entity translation for the remote schema.

Tables: profiles, reflections, responses (unique on reflection_id,
question_id), achievements (unique on user_id, type). Response values are
stored untagged in a JSON column and decoded by the question's declared kind.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.models import (
    Achievement, AchievementType, Mode, Reflection, ReflectionPeriod, Response,
    ResponseValue, Theme, UserProfile, format_timestamp, infer_value_kind,
    parse_timestamp, utcnow, value_from_raw,
)
from ..core.questions import kind_for_question

logger = logging.getLogger(__name__)


def row_to_response(row: Dict[str, Any], fallback_at: Optional[datetime] = None) -> Response:
    """Rows without timestamps take `fallback_at` (the owning reflection's time) when given."""
    question_id = row['question_id']
    raw = row.get('value')
    kind = kind_for_question(question_id) or infer_value_kind(raw)
    updated_at = parse_timestamp(row.get('updated_at') or row.get('created_at'))
    return Response(
        question_id=question_id,
        value=value_from_raw(kind, raw),
        updated_at=updated_at or fallback_at or utcnow(),
    )


def response_to_row(reflection_id: str, question_id: str, value: ResponseValue) -> Dict[str, Any]:
    return {
        'reflection_id': reflection_id,
        'question_id': question_id,
        'value': value.to_raw(),
    }


def row_to_reflection(row: Dict[str, Any], responses: Optional[List[Dict[str, Any]]] = None) -> Reflection:
    """A reflection row is remote by definition, so it is never local-only."""
    started_at = parse_timestamp(row.get('started_at') or row.get('created_at')) or utcnow()
    completed_at = parse_timestamp(row.get('completed_at'))

    parsed = {}
    for response_row in responses or []:
        try:
            response = row_to_response(response_row, fallback_at=completed_at or started_at)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed response row for reflection {row.get('id')}: {e}")
            continue
        parsed[response.question_id] = response

    return Reflection(
        id=str(row['id']),
        user_id=row.get('user_id'),
        year=int(row['year']),
        period=ReflectionPeriod(row.get('period') or ReflectionPeriod.YEAR_END.value),
        period_label=row.get('period_label'),
        mode=Mode(row['mode']),
        responses=parsed,
        progress=int(row.get('progress') or 0),
        completed=bool(row.get('completed', False)),
        started_at=started_at,
        completed_at=completed_at,
        upgraded_from=row.get('upgraded_from'),
        synced_at=parse_timestamp(row.get('updated_at')) or utcnow(),
        local_only=False,
    )


def reflection_insert_row(user_id: str, year: int, period: ReflectionPeriod, mode: Mode,
                          upgraded_from: Optional[str] = None,
                          started_at: Optional[datetime] = None) -> Dict[str, Any]:
    row = {
        'user_id': user_id,
        'year': year,
        'period': ReflectionPeriod(period).value,
        'mode': Mode(mode).value,
        'progress': 0,
        'completed': False,
        'upgraded_from': upgraded_from,
    }
    if started_at is not None:
        row['started_at'] = format_timestamp(started_at)
    return row


def reflection_patch(progress: Optional[int] = None, completed: Optional[bool] = None,
                     completed_at: Optional[datetime] = None,
                     mode: Optional[Mode] = None) -> Dict[str, Any]:
    """Partial update body: only the fields that were given."""
    patch: Dict[str, Any] = {}
    if progress is not None:
        patch['progress'] = progress
    if completed is not None:
        patch['completed'] = completed
    if completed_at is not None:
        patch['completed_at'] = format_timestamp(completed_at)
    if mode is not None:
        patch['mode'] = Mode(mode).value
    return patch


def row_to_achievement(row: Dict[str, Any]) -> Achievement:
    return Achievement(
        id=str(row.get('id') or row['type']),
        type=AchievementType(row['type']),
        unlocked_at=parse_timestamp(row.get('unlocked_at')) or utcnow(),
    )


def row_to_profile(row: Dict[str, Any]) -> UserProfile:
    theme = row.get('theme')
    return UserProfile(
        id=str(row['id']),
        email=row.get('email'),
        full_name=row.get('full_name'),
        avatar_url=row.get('avatar_url'),
        theme=Theme(theme) if isinstance(theme, str) and theme in {t.value for t in Theme} else Theme.COSMIC,
        created_at=parse_timestamp(row.get('created_at')),
        updated_at=parse_timestamp(row.get('updated_at')),
    )


def profile_patch(full_name: Optional[str] = None, theme: Optional[Theme] = None,
                  avatar_url: Optional[str] = None) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    if full_name is not None:
        patch['full_name'] = full_name
    if theme is not None:
        patch['theme'] = Theme(theme).value
    if avatar_url is not None:
        patch['avatar_url'] = avatar_url
    patch['updated_at'] = format_timestamp(utcnow())
    return patch
