# src/lifecompass/core/reflection_engine.py
"""
Reflection engine: the authoritative state for one session.

Every mutation is applied in memory, then written to the local snapshot
synchronously, then (for a signed-in user) mirrored to the remote store
through the background sync queue. Remote failures never undo a local
mutation; they only move `sync_status`.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from .achievements import AchievementEvaluator
from .migration import (
    LocalDataSummary, MigrationResult, collect_reflections_to_upload,
    get_local_data_summary, has_local_data_to_migrate, migrate_journeys,
    upload_local_data,
)
from .models import (
    Achievement, AchievementType, CompassState, Mode, Reflection,
    RatingsValue, ReflectionPeriod, Response, ResponseValue, SyncStatus, Theme, UserProfile,
    create_achievement, create_reflection, infer_value_kind, utcnow, value_from_raw,
)
from .ports import RemoteStore, SnapshotStore
from .progress import calculate_progress
from .questions import (
    LIFE_AREA_IDS, LIFE_AREAS_QUESTION_ID, Question, get_questions_for_mode, kind_for_question,
)
from .sync_queue import SyncQueue

logger = logging.getLogger(__name__)

MIN_YEAR = 1970
MAX_YEAR = 2100

E = TypeVar('E')


@dataclass
class UpgradeOptions:
    can_upgrade: bool
    available_modes: List[Mode] = field(default_factory=list)


class ReflectionEngine:
    """Owns the current reflection, response map, history and achievements."""

    def __init__(self, snapshot_store: SnapshotStore, remote_store: Optional[RemoteStore] = None,
                 clock: Callable[[], datetime] = utcnow,
                 evaluator: Optional[AchievementEvaluator] = None):
        self.snapshot_store = snapshot_store
        self.remote_store = remote_store
        self.clock = clock
        self.evaluator = evaluator or AchievementEvaluator()
        self.sync = SyncQueue(clock=clock)

        self.user: Optional[UserProfile] = None
        self.last_saved: Optional[datetime] = None
        self.migration_pending = False

        self.state: CompassState = self.snapshot_store.load_snapshot()
        self.migrate_journeys_to_reflections()
        logger.info(f"Reflection engine initialized with {len(self.state.reflections)} reflections")

    # ========================================================================
    # READ-ONLY VIEWS
    # ========================================================================

    @property
    def current_reflection(self) -> Optional[Reflection]:
        current = self.state.current_reflection
        return current.copy() if current else None

    @property
    def reflections(self) -> List[Reflection]:
        return [r.copy() for r in self.state.reflections]

    @property
    def responses(self) -> Dict[str, Response]:
        return dict(self.state.responses)

    @property
    def achievements(self) -> List[Achievement]:
        return copy.deepcopy(self.state.achievements)

    @property
    def mode(self) -> Optional[Mode]:
        return self.state.mode

    @property
    def current_year(self) -> Optional[int]:
        return self.state.current_year

    @property
    def is_guest(self) -> bool:
        return self.state.is_guest

    @property
    def theme(self) -> Theme:
        return self.state.theme

    @property
    def has_seen_welcome(self) -> bool:
        return self.state.has_seen_welcome

    @property
    def current_question_index(self) -> int:
        return self.state.current_question_index

    @property
    def journey_started_at(self) -> Optional[datetime]:
        return self.state.journey_started_at

    @property
    def sync_status(self) -> SyncStatus:
        return self.sync.status

    @property
    def last_synced_at(self) -> Optional[datetime]:
        return self.sync.last_synced_at

    def get_reflection(self, reflection_id: str) -> Optional[Reflection]:
        found = self._find_in_history(reflection_id)
        return found.copy() if found else None

    # ========================================================================
    # REFLECTION LIFECYCLE
    # ========================================================================

    def start_reflection(self, year: int, mode: Any,
                         period: Any = ReflectionPeriod.YEAR_END) -> Reflection:
        """Begin a new current reflection with no answers."""
        year = _validate_year(year)
        mode = _coerce_enum(Mode, mode, "mode")
        period = _coerce_enum(ReflectionPeriod, period, "period")

        now = self.clock()
        reflection = create_reflection(
            year, mode, period,
            user_id=self.user.id if self.user else None,
            started_at=now,
        )
        self.state.current_reflection = reflection
        self.state.current_year = year
        self.state.mode = mode
        self.state.responses = {}
        self.state.current_question_index = 0
        self.state.journey_started_at = now
        self._persist()
        logger.info(f"Started {mode.value} reflection {reflection.id} for {year}/{period.value}")

        if self._remote_enabled():
            self._queue_remote_create(reflection, upgraded_from=None)
        return reflection.copy()

    def set_response(self, question_id: str, value: Any) -> Response:
        """Replace the whole answer to one question.

        `value` is a ResponseValue or a raw payload decoded by the question's
        declared kind. Unknown question ids are stored as given. Ratings must
        be 1-10, and life-area ratings may only name known areas.
        """
        value = self._coerce_value(question_id, value)
        now = self.clock()
        response = Response(question_id=question_id, value=value, updated_at=now)

        self.state.responses[question_id] = response
        current = self.state.current_reflection
        if current is not None:
            current.responses[question_id] = response
        self.last_saved = now
        self._persist()
        logger.debug(f"Saved response {question_id}")

        if self._remote_enabled() and current is not None and not current.local_only:
            reflection_id = current.id
            self.sync.submit(
                f"save response {question_id}",
                lambda: self.remote_store.save_response(reflection_id, question_id, value),
            )
        return response

    def get_progress(self) -> int:
        current = self.state.current_reflection
        mode = current.mode if current else self.state.mode
        if mode is None:
            return 0
        return calculate_progress(mode, self.state.responses)

    def complete_reflection(self) -> Optional[Reflection]:
        """Freeze the current reflection into history.

        The first completion wins: calling again re-freezes the answers but
        keeps the original completed_at. Without a current reflection this
        does nothing and returns None.
        """
        current = self.state.current_reflection
        if current is None:
            logger.debug("complete_reflection called without a current reflection")
            return None

        current.responses = copy.deepcopy(self.state.responses)
        current.progress = 100
        if not current.completed:
            current.completed = True
            current.completed_at = self.clock()

        frozen = current.copy()
        index = self._history_index(current.id)
        if index is None:
            self.state.reflections.append(frozen)
        else:
            self.state.reflections[index] = frozen
        self._persist()
        logger.info(f"Completed {current.mode.value} reflection {current.id} for {current.year}")

        if self._remote_enabled() and not current.local_only:
            self._queue_completion_push(frozen)

        self.check_achievements()
        return frozen.copy()

    def load_reflection(self, reflection_id: str) -> None:
        """Make a history entry current. Unknown ids are ignored."""
        reflection = self._find_in_history(reflection_id)
        if reflection is None:
            logger.debug(f"load_reflection: no reflection {reflection_id}")
            return

        self.state.current_reflection = reflection.copy()
        self.state.current_year = reflection.year
        self.state.mode = reflection.mode
        self.state.responses = copy.deepcopy(reflection.responses)
        self.state.current_question_index = 0
        self.state.journey_started_at = reflection.started_at
        self._persist()

    def upgrade_mode(self, from_reflection_id: str, to_mode: Any) -> Reflection:
        """Start a deeper reflection pre-filled with a history entry's answers."""
        to_mode = _coerce_enum(Mode, to_mode, "mode")
        source = self._find_in_history(from_reflection_id)
        if source is None:
            raise ReflectionNotFoundError(from_reflection_id)
        if not to_mode.is_deeper_than(source.mode):
            raise InvalidUpgradeError(source.mode, to_mode)

        now = self.clock()
        responses = copy.deepcopy(source.responses)
        upgraded = create_reflection(
            source.year, to_mode, source.period,
            user_id=self.user.id if self.user else source.user_id,
            started_at=now,
            responses=responses,
            progress=calculate_progress(to_mode, responses),
            upgraded_from=source.id,
        )
        upgraded.period_label = source.period_label

        self.state.reflections.append(upgraded.copy())
        self.state.current_reflection = upgraded
        self.state.current_year = upgraded.year
        self.state.mode = to_mode
        self.state.responses = copy.deepcopy(responses)
        self.state.current_question_index = 0
        self.state.journey_started_at = now
        self._persist()
        logger.info(f"Upgraded reflection {source.id} from {source.mode.value} to {to_mode.value} "
                    f"as {upgraded.id}")

        if self._remote_enabled():
            remote_source = None if source.local_only else source.id
            self._queue_remote_create(upgraded, upgraded_from=remote_source)
        return upgraded.copy()

    @staticmethod
    def can_upgrade(reflection: Reflection) -> UpgradeOptions:
        available = [m for m in Mode if m.is_deeper_than(reflection.mode)]
        return UpgradeOptions(can_upgrade=bool(available), available_modes=available)

    def reset_current_journey(self) -> None:
        """Drop the current reflection. History is untouched."""
        self.state.current_reflection = None
        self.state.mode = None
        self.state.responses = {}
        self.state.current_question_index = 0
        self.state.journey_started_at = None
        self._persist()

    def migrate_journeys_to_reflections(self) -> int:
        """Append legacy journeys missing from history. Safe to call repeatedly."""
        migrated = migrate_journeys(self.state.journeys, self.state.reflections)
        if migrated:
            self.state.reflections.extend(migrated)
            self._persist()
            logger.info(f"Migrated {len(migrated)} legacy journeys into reflections")
        return len(migrated)

    # ========================================================================
    # ACHIEVEMENTS
    # ========================================================================

    def unlock_achievement(self, achievement_type: Any) -> bool:
        """Unlock once per type. Returns False if it was already unlocked."""
        achievement_type = _coerce_enum(AchievementType, achievement_type, "achievement type")
        if any(a.type == achievement_type for a in self.state.achievements):
            return False

        self.state.achievements.append(create_achievement(achievement_type, self.clock()))
        self._persist()
        logger.info(f"Achievement unlocked: {achievement_type.value}")

        if self._remote_enabled():
            user_id = self.user.id
            self.sync.submit(
                f"unlock achievement {achievement_type.value}",
                lambda: self.remote_store.unlock_achievement(user_id, achievement_type),
            )
        return True

    def check_achievements(self) -> List[AchievementType]:
        """Evaluate every rule and unlock what qualifies. Returns the new unlocks."""
        earned = self.evaluator.evaluate(self.state.reflections, self.state.responses)
        return [t for t in earned if self.unlock_achievement(t)]

    # ========================================================================
    # PREFERENCES AND PROFILE
    # ========================================================================

    def set_theme(self, theme: Any) -> None:
        self.state.theme = _coerce_enum(Theme, theme, "theme")
        self._persist()

    def set_has_seen_welcome(self, seen: bool = True) -> None:
        self.state.has_seen_welcome = bool(seen)
        self._persist()

    def set_current_question_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            raise InvalidInputError(f"Question index must be a non-negative integer, got {index!r}")
        self.state.current_question_index = index
        self._persist()

    def update_profile(self, full_name: Optional[str] = None, theme: Any = None,
                       avatar_url: Optional[str] = None) -> UserProfile:
        if self.user is None:
            raise InvalidInputError("No signed-in user to update")
        if theme is not None:
            theme = _coerce_enum(Theme, theme, "theme")
            self.user.theme = theme
            self.state.theme = theme
        if full_name is not None:
            self.user.full_name = full_name
        if avatar_url is not None:
            self.user.avatar_url = avatar_url
        self.user.updated_at = self.clock()
        self._persist()

        if self.remote_store is not None:
            user_id = self.user.id
            self.sync.submit(
                "update profile",
                lambda: self.remote_store.update_profile(
                    user_id, full_name=full_name, theme=theme, avatar_url=avatar_url),
            )
        return copy.deepcopy(self.user)

    def get_export_view(self, reflection_id: Optional[str] = None) -> Tuple[Reflection, List[Question]]:
        """A hydrated reflection plus the ordered questions of its mode."""
        if reflection_id is None:
            reflection = self.state.current_reflection
            if reflection is None:
                raise ReflectionNotFoundError("current")
        else:
            reflection = self._find_in_history(reflection_id)
            if reflection is None:
                current = self.state.current_reflection
                if current is not None and current.id == reflection_id:
                    reflection = current
                else:
                    raise ReflectionNotFoundError(reflection_id)
        return reflection.copy(), get_questions_for_mode(reflection.mode)

    # ========================================================================
    # AUTH AND REMOTE SYNC
    # ========================================================================

    def set_user(self, profile: Optional[UserProfile], hydrate: bool = True) -> None:
        """Attach (sign-in) or detach (sign-out) a user.

        On sign-in with unsynced local data, `migration_pending` is raised
        instead of loading remote history, which would overwrite it. With
        nothing to migrate and `hydrate` set, a remote load is queued.
        """
        self.user = profile
        self.state.is_guest = profile is None

        if profile is None:
            self.migration_pending = False
            self._persist()
            logger.info("User signed out")
            return

        self.migration_pending = has_local_data_to_migrate(self.state)
        self._persist()
        logger.info(f"User {profile.id} signed in")

        if self.migration_pending:
            logger.info("Local data found, migration pending before loading remote history")
        elif hydrate and self.remote_store is not None:
            self.sync.submit("load from cloud", self._fetch_remote_history)

    def get_local_data_summary(self) -> LocalDataSummary:
        return get_local_data_summary(self.state)

    def skip_migration(self) -> None:
        """Decline the upload. Local data stays local."""
        self.migration_pending = False
        logger.info("Migration skipped")

    async def load_from_cloud(self) -> bool:
        """Replace history and achievements with the remote copy.

        Refused while a migration is pending, since it would discard
        unsynced local data.
        """
        if not self._remote_enabled():
            return False
        if self.migration_pending:
            logger.warning("Refusing to load remote history while a migration is pending")
            return False
        ok, _ = await self.sync.run("load from cloud", self._fetch_remote_history)
        return ok

    async def sync_to_cloud(self) -> bool:
        """Push the current reflection's fields and all of its answers."""
        current = self.state.current_reflection
        if not self._remote_enabled() or current is None or current.local_only:
            return False

        progress = 100 if current.completed else self.get_progress()
        current.progress = progress
        self._persist()

        reflection_id = current.id
        responses = dict(self.state.responses)
        ok_fields, _ = await self.sync.run(
            "sync reflection",
            lambda: self.remote_store.update_reflection(
                reflection_id, progress=progress, completed=current.completed,
                completed_at=current.completed_at),
        )
        ok_responses, _ = await self.sync.run(
            "sync responses",
            lambda: self.remote_store.save_responses(reflection_id, responses),
        )
        return ok_fields and ok_responses

    async def migrate_local_to_cloud(self) -> MigrationResult:
        """Upload local-only data, then hydrate from the remote store on success."""
        if not self._remote_enabled():
            return MigrationResult(success=False, errors=["No signed-in user or remote store"])

        reflections = [r.copy() for r in collect_reflections_to_upload(self.state)]
        achievements = list(self.state.achievements)
        user_id = self.user.id

        ok, outcome = await self.sync.run(
            "migrate local data",
            lambda: upload_local_data(self.remote_store, user_id, reflections, achievements),
        )
        if not ok:
            return MigrationResult(success=False, errors=[self.sync.last_error or "Migration failed"])

        result, id_map = outcome
        if id_map:
            self._rewrite_ids(id_map, user_id)
            for journey_key in [k for k, j in self.state.journeys.items() if str(j.get('id')) in id_map]:
                del self.state.journeys[journey_key]

        if not result.success:
            self._persist()
            self.sync.record_failure("migrate local data", "; ".join(result.errors))
            return result

        self.state.journeys = {}
        self.migration_pending = False
        self._persist()
        logger.info("Local data migrated, loading remote history")
        await self.load_from_cloud()
        return result

    async def drain(self) -> None:
        """Wait for all queued background sync work."""
        await self.sync.drain()

    # ---- background operations ----

    async def _fetch_remote_history(self) -> None:
        if self.user is None or self.remote_store is None:
            return
        if self.migration_pending:
            logger.warning("Skipping remote history load: migration pending")
            return
        user_id = self.user.id
        reflections = await self.remote_store.get_reflections(user_id)
        achievements = await self.remote_store.get_achievements(user_id)

        self.state.reflections = reflections
        self.state.achievements = achievements
        self._persist()
        logger.info(f"Loaded {len(reflections)} reflections and {len(achievements)} achievements from cloud")

    def _queue_remote_create(self, reflection: Reflection, upgraded_from: Optional[str]) -> None:
        local_id = reflection.id
        user_id = self.user.id
        year, period, mode, started_at = reflection.year, reflection.period, reflection.mode, reflection.started_at

        async def create() -> None:
            created = await self.remote_store.create_reflection(
                user_id, year, period, mode, upgraded_from=upgraded_from, started_at=started_at)
            self._rewrite_ids({local_id: created.id}, user_id, synced_at=created.synced_at)
            logger.info(f"Reflection {local_id} confirmed remotely as {created.id}")

            target = self._find_any(created.id)
            if target is None:
                return
            if target.completed:
                await self.remote_store.update_reflection(
                    created.id, progress=target.progress, completed=True,
                    completed_at=target.completed_at)
            if target.responses:
                await self.remote_store.save_responses(created.id, dict(target.responses))

        self.sync.submit(f"create reflection {local_id}", create)

    def _queue_completion_push(self, reflection: Reflection) -> None:
        reflection_id = reflection.id
        responses = dict(reflection.responses)
        self.sync.submit(
            f"complete reflection {reflection_id}",
            lambda: self.remote_store.update_reflection(
                reflection_id, progress=100, completed=True, completed_at=reflection.completed_at),
        )
        self.sync.submit(
            f"save responses {reflection_id}",
            lambda: self.remote_store.save_responses(reflection_id, responses),
        )

    def _rewrite_ids(self, id_map: Dict[str, str], user_id: str,
                     synced_at: Optional[datetime] = None) -> None:
        """Point every local id reference at its server id."""
        synced_at = synced_at or self.clock()
        targets = list(self.state.reflections)
        if self.state.current_reflection is not None:
            targets.append(self.state.current_reflection)
        for reflection in targets:
            if reflection.id in id_map:
                reflection.id = id_map[reflection.id]
                reflection.local_only = False
                reflection.synced_at = synced_at
                reflection.user_id = user_id
            if reflection.upgraded_from in id_map:
                reflection.upgraded_from = id_map[reflection.upgraded_from]
        self._persist()

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _remote_enabled(self) -> bool:
        return self.user is not None and self.remote_store is not None

    def _persist(self) -> None:
        self.snapshot_store.save_snapshot(self.state)

    def _history_index(self, reflection_id: str) -> Optional[int]:
        for i, reflection in enumerate(self.state.reflections):
            if reflection.id == reflection_id:
                return i
        return None

    def _find_in_history(self, reflection_id: str) -> Optional[Reflection]:
        index = self._history_index(reflection_id)
        return None if index is None else self.state.reflections[index]

    def _find_any(self, reflection_id: str) -> Optional[Reflection]:
        current = self.state.current_reflection
        if current is not None and current.id == reflection_id:
            return current
        return self._find_in_history(reflection_id)

    @staticmethod
    def _coerce_value(question_id: str, value: Any) -> ResponseValue:
        if isinstance(value, ResponseValue):
            kind, raw = value.kind, value.to_raw()
        else:
            kind, raw = kind_for_question(question_id) or infer_value_kind(value), value
        try:
            value = value_from_raw(kind, raw)
        except (ValueError, TypeError) as e:
            raise InvalidInputError(f"Invalid value for {question_id}: {e}")

        if question_id == LIFE_AREAS_QUESTION_ID and isinstance(value, RatingsValue):
            unknown = sorted(set(value.ratings) - LIFE_AREA_IDS)
            if unknown:
                raise InvalidInputError(f"Unknown life areas for {question_id}: {', '.join(unknown)}")
        return value


def _validate_year(year: Any) -> int:
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidInputError(f"Year must be an integer, got {year!r}")
    if not MIN_YEAR <= year <= MAX_YEAR:
        raise InvalidInputError(f"Year {year} outside {MIN_YEAR}-{MAX_YEAR}")
    return year


def _coerce_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"Invalid {label} {value!r} (expected one of: {allowed})")


# Error classes
class ReflectionEngineError(Exception):
    """Base exception for rejected engine operations."""
    pass

class InvalidInputError(ReflectionEngineError):
    """Raised when a year, mode, period or other input is out of its domain."""
    pass

class ReflectionNotFoundError(ReflectionEngineError):
    """Raised when an operation references an unknown reflection id."""
    def __init__(self, reflection_id):
        self.reflection_id = reflection_id
        super().__init__(f"Reflection not found: {reflection_id}")

class InvalidUpgradeError(ReflectionEngineError):
    """Raised when the target mode is not strictly deeper than the source."""
    def __init__(self, from_mode, to_mode):
        self.from_mode = Mode(from_mode)
        self.to_mode = Mode(to_mode)
        super().__init__(f"Cannot upgrade from {self.from_mode.value} to {self.to_mode.value}")
