# src/lifecompass/core/migration.py
"""
Local migration: legacy journeys -> reflections, and local -> remote upload.

Legacy journeys are the old one-reflection-per-year entries. They carry no
period and no upgrade chain and may use camelCase keys. Conversion is pure;
the upload is the only async part and never raises remote errors, it
collects them in the MigrationResult instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .models import (
    Achievement, CompassState, Mode, Reflection, ReflectionPeriod, Response,
    ResponseValue, infer_value_kind, parse_timestamp, utcnow, value_from_raw,
)
from .questions import kind_for_question
from .ports import RemoteStore, RemoteStoreError

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    success: bool = True
    migrated_reflections: int = 0
    migrated_achievements: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class LocalDataSummary:
    reflection_count: int = 0
    achievement_count: int = 0
    years: List[int] = field(default_factory=list)


# ============================================================================
# LEGACY CONVERSION
# ============================================================================

def _pick(data: Mapping[str, Any], snake: str, camel: str, default: Any = None) -> Any:
    if snake in data:
        return data[snake]
    return data.get(camel, default)


def decode_legacy_value(question_id: str, raw: Any) -> ResponseValue:
    """Decode an untagged legacy value using the question's declared kind."""
    if isinstance(raw, dict) and set(raw) == {"kind", "data"}:
        return ResponseValue.from_dict(raw)
    kind = kind_for_question(question_id) or infer_value_kind(raw)
    return value_from_raw(kind, raw)


def _legacy_responses(data: Any) -> Dict[str, Response]:
    responses = {}
    if not isinstance(data, dict):
        return responses
    for key, item in data.items():
        if not isinstance(item, dict):
            continue
        question_id = str(_pick(item, "question_id", "questionId", key))
        try:
            value = decode_legacy_value(question_id, item.get("value"))
            updated_at = parse_timestamp(_pick(item, "updated_at", "updatedAt")) or utcnow()
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping legacy response {question_id}: {e}")
            continue
        responses[question_id] = Response(question_id, value, updated_at)
    return responses


def journey_to_reflection(journey: Mapping[str, Any]) -> Reflection:
    """Convert one legacy journey. Raises KeyError/ValueError/TypeError if malformed."""
    return Reflection(
        id=str(journey["id"]),
        year=int(journey["year"]),
        period=ReflectionPeriod.YEAR_END,
        mode=Mode(journey["mode"]),
        responses=_legacy_responses(journey.get("responses")),
        progress=int(journey.get("progress") or 0),
        completed=bool(journey.get("completed", False)),
        started_at=parse_timestamp(_pick(journey, "started_at", "startedAt")) or utcnow(),
        completed_at=parse_timestamp(_pick(journey, "completed_at", "completedAt")),
        local_only=True,
    )


def migrate_journeys(journeys: Mapping[str, Mapping[str, Any]],
                     reflections: Sequence[Reflection]) -> List[Reflection]:
    """Reflections for legacy journeys whose id is not already in history."""
    known_ids = {r.id for r in reflections}
    migrated = []
    for key, journey in journeys.items():
        try:
            reflection = journey_to_reflection(journey)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed legacy journey {key}: {e}")
            continue
        if reflection.id in known_ids:
            continue
        known_ids.add(reflection.id)
        migrated.append(reflection)
    return migrated


# ============================================================================
# LOCAL -> REMOTE
# ============================================================================

def collect_reflections_to_upload(state: CompassState) -> List[Reflection]:
    """Local-only reflections in history order, then legacy journeys not yet in history.

    An in-progress local-only current reflection with answers is included last.
    """
    candidates = [r for r in state.reflections if r.local_only]
    candidates.extend(migrate_journeys(state.journeys, state.reflections))
    current = state.current_reflection
    if current is not None and current.local_only and current.responses:
        candidates.append(current)

    seen = set()
    unique = []
    for reflection in candidates:
        if reflection.id in seen:
            continue
        seen.add(reflection.id)
        # The live current copy may hold newer answers than its history entry
        if current is not None and reflection.id == current.id:
            reflection = current
        unique.append(reflection)
    return unique


def has_local_data_to_migrate(state: CompassState) -> bool:
    return bool(collect_reflections_to_upload(state))


def get_local_data_summary(state: CompassState) -> LocalDataSummary:
    reflections = collect_reflections_to_upload(state)
    return LocalDataSummary(
        reflection_count=len(reflections),
        achievement_count=len(state.achievements),
        years=sorted({r.year for r in reflections}, reverse=True),
    )


async def upload_local_data(remote: RemoteStore, user_id: str,
                            reflections: Sequence[Reflection],
                            achievements: Sequence[Achievement]) -> Tuple[MigrationResult, Dict[str, str]]:
    """Create every reflection remotely and unlock every achievement.

    Returns the result and a mapping of local id -> server id for the
    reflections that were fully uploaded. Upgrade links are rewritten to server ids
    created earlier in the same run.
    """
    result = MigrationResult()
    id_map: Dict[str, str] = {}
    created_ids: Dict[str, str] = {}
    uploading = {r.id for r in reflections}

    for reflection in reflections:
        upgraded_from = _remote_link(reflection.upgraded_from, created_ids, uploading)
        try:
            created = await remote.create_reflection(
                user_id, reflection.year, reflection.period, reflection.mode,
                upgraded_from=upgraded_from, started_at=reflection.started_at,
            )
            created_ids[reflection.id] = created.id
            await remote.update_reflection(
                created.id,
                progress=reflection.progress,
                completed=reflection.completed,
                completed_at=reflection.completed_at,
            )
            if reflection.responses:
                await remote.save_responses(created.id, reflection.responses)
            id_map[reflection.id] = created.id
            result.migrated_reflections += 1
        except RemoteStoreError as e:
            result.errors.append(
                f"Failed to migrate reflection {reflection.year}/{reflection.period.value}: {e}")

    for achievement in achievements:
        try:
            await remote.unlock_achievement(user_id, achievement.type)
            result.migrated_achievements += 1
        except RemoteStoreError as e:
            result.errors.append(f"Failed to migrate achievement {achievement.type.value}: {e}")

    result.success = not result.errors
    logger.info(f"Migration uploaded {result.migrated_reflections} reflections, "
                f"{result.migrated_achievements} achievements, {len(result.errors)} errors")
    return result, id_map


def _remote_link(upgraded_from: Optional[str], created_ids: Dict[str, str], uploading: set) -> Optional[str]:
    if upgraded_from is None:
        return None
    if upgraded_from in created_ids:
        return created_ids[upgraded_from]
    # Source is local but failed to upload: no server row to point at
    if upgraded_from in uploading:
        return None
    return upgraded_from

