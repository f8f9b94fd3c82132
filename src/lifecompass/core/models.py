# src/lifecompass/core/models.py
"""
Data models for the LifeCompass reflection engine.

All sync - no async needed for data structures. These models represent
reflections, their responses, achievements, the signed-in profile, and the
persisted engine state.

Designed for JSON serialization with to_dict()/from_dict() methods. Response
values are a tagged union whose tag comes from the question's declared type;
the serialized form always carries that tag explicitly.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple, ClassVar
from enum import Enum
from datetime import datetime, timezone
import copy
import json
import logging
import uuid

logger = logging.getLogger(__name__)


# ============================================================================
# ENUMS
# ============================================================================

class Mode(str, Enum):
    """Reflection depth. Each mode asks a superset of the shallower one."""
    QUICK = "quick"
    OK = "ok"
    DEEP = "deep"

    @property
    def rank(self) -> int:
        return MODE_ORDER.index(self)

    def is_deeper_than(self, other: 'Mode') -> bool:
        return self.rank > Mode(other).rank


MODE_ORDER = (Mode.QUICK, Mode.OK, Mode.DEEP)


class ReflectionPeriod(str, Enum):
    """Checkpoint within a year."""
    Q1 = "q1"
    MID_YEAR = "mid_year"
    YEAR_END = "year_end"


class Section(str, Enum):
    PAST = "past"
    FUTURE = "future"


class ValueKind(str, Enum):
    """Discriminant of the response value union."""
    TEXT = "text"
    LIST = "list"
    RATINGS = "ratings"
    CALENDAR = "calendar"


class QuestionType(str, Enum):
    """How a question is asked. Several types share one value kind."""
    TEXT = "text"
    TEXTAREA = "textarea"
    WORD = "word"
    LIST = "list"
    RATING = "rating"
    CALENDAR = "calendar"

    @property
    def value_kind(self) -> ValueKind:
        return _QUESTION_TYPE_KINDS[self]


_QUESTION_TYPE_KINDS = {
    QuestionType.TEXT: ValueKind.TEXT,
    QuestionType.TEXTAREA: ValueKind.TEXT,
    QuestionType.WORD: ValueKind.TEXT,
    QuestionType.LIST: ValueKind.LIST,
    QuestionType.RATING: ValueKind.RATINGS,
    QuestionType.CALENDAR: ValueKind.CALENDAR,
}


class Theme(str, Enum):
    COSMIC = "cosmic"
    CALM = "calm"
    MINIMAL = "minimal"
    SUNSET = "sunset"


class AchievementType(str, Enum):
    FIRST_JOURNEY = "first_journey"
    DEEP_THINKER = "deep_thinker"
    SPEED_RUNNER = "speed_runner"
    CONSISTENT = "consistent"
    ALL_AREAS = "all_areas"
    WORD_MASTER = "word_master"
    SHARER = "sharer"


class SyncStatus(str, Enum):
    """Observable state of background remote sync."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


# ============================================================================
# TIMESTAMPS
# ============================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (trailing 'Z' allowed). Naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# RESPONSE VALUES
# ============================================================================

@dataclass(frozen=True)
class ResponseValue:
    """Base of the response value union."""
    kind: ClassVar[ValueKind]

    def is_answered(self) -> bool:
        raise NotImplementedError

    def to_raw(self) -> Any:
        """Untagged payload, as stored by the remote store."""
        raise NotImplementedError

    def to_text(self) -> str:
        """Flattened answer text for tabular export."""
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        return {'kind': self.kind.value, 'data': self.to_raw()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResponseValue':
        return value_from_raw(ValueKind(data['kind']), data.get('data'))


@dataclass(frozen=True)
class TextValue(ResponseValue):
    text: str = ""
    kind: ClassVar[ValueKind] = ValueKind.TEXT

    def is_answered(self) -> bool:
        return bool(self.text.strip())

    def to_raw(self) -> str:
        return self.text

    def to_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class ListValue(ResponseValue):
    items: Tuple[str, ...] = ()
    kind: ClassVar[ValueKind] = ValueKind.LIST

    def __post_init__(self):
        object.__setattr__(self, 'items', tuple(self.items))

    def is_answered(self) -> bool:
        return any(item.strip() for item in self.items)

    def to_raw(self) -> List[str]:
        return list(self.items)

    def to_text(self) -> str:
        return "; ".join(item for item in self.items if item.strip())


RATING_MIN = 1
RATING_MAX = 10


@dataclass(frozen=True)
class RatingsValue(ResponseValue):
    """Life-area id -> rating (1-10)."""
    ratings: Dict[str, int] = field(default_factory=dict)
    kind: ClassVar[ValueKind] = ValueKind.RATINGS

    def is_answered(self) -> bool:
        return len(self.ratings) > 0

    def to_raw(self) -> Dict[str, int]:
        return dict(self.ratings)

    def to_text(self) -> str:
        return "; ".join(f"{area}: {rating}" for area, rating in self.ratings.items())


@dataclass(frozen=True)
class CalendarValue(ResponseValue):
    """Month name -> highlight."""
    entries: Dict[str, str] = field(default_factory=dict)
    kind: ClassVar[ValueKind] = ValueKind.CALENDAR

    def is_answered(self) -> bool:
        return len(self.entries) > 0

    def to_raw(self) -> Dict[str, str]:
        return dict(self.entries)

    def to_text(self) -> str:
        return "; ".join(f"{month}: {text}" for month, text in self.entries.items() if text)


def value_from_raw(kind: ValueKind, raw: Any) -> ResponseValue:
    """Build a response value of the given kind from an untagged payload.

    Raises ValueError when the payload cannot represent that kind.
    """
    kind = ValueKind(kind)
    if kind == ValueKind.TEXT:
        if raw is None:
            return TextValue("")
        if isinstance(raw, (dict, list, tuple)):
            raise ValueError(f"Expected text, got {type(raw).__name__}")
        return TextValue(str(raw))

    if kind == ValueKind.LIST:
        if isinstance(raw, str):
            return ListValue((raw,))
        if not isinstance(raw, (list, tuple)):
            raise ValueError(f"Expected a list of strings, got {type(raw).__name__}")
        return ListValue(tuple("" if item is None else str(item) for item in raw))

    if not isinstance(raw, dict):
        raise ValueError(f"Expected a mapping for {kind.value}, got {type(raw).__name__}")

    if kind == ValueKind.RATINGS:
        ratings = {}
        for key, rating in raw.items():
            if isinstance(rating, bool):
                raise ValueError(f"Rating for {key} must be a number")
            rating = int(rating)
            if not RATING_MIN <= rating <= RATING_MAX:
                raise ValueError(f"Rating for {key} must be between {RATING_MIN} and {RATING_MAX}, got {rating}")
            ratings[str(key)] = rating
        return RatingsValue(ratings)

    return CalendarValue({str(key): "" if text is None else str(text) for key, text in raw.items()})


def infer_value_kind(raw: Any) -> ValueKind:
    """Guess a kind from payload shape.

    Only used for question ids missing from the catalog, where no declared
    type exists to consult.
    """
    if isinstance(raw, (list, tuple)):
        return ValueKind.LIST
    if isinstance(raw, dict):
        if raw and all(isinstance(v, int) and not isinstance(v, bool) and RATING_MIN <= v <= RATING_MAX
                       for v in raw.values()):
            return ValueKind.RATINGS
        return ValueKind.CALENDAR
    return ValueKind.TEXT


# ============================================================================
# CORE DATA MODELS
# ============================================================================

@dataclass(frozen=True)
class Response:
    """One answer to one question."""
    question_id: str
    value: ResponseValue
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'question_id': self.question_id,
            'value': self.value.to_dict(),
            'updated_at': format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Response':
        return cls(
            question_id=str(data['question_id']),
            value=ResponseValue.from_dict(data['value']),
            updated_at=parse_timestamp(data.get('updated_at')) or utcnow(),
        )


@dataclass
class Reflection:
    """A questionnaire instance for one (year, period, mode)."""
    id: str
    year: int
    period: ReflectionPeriod
    mode: Mode
    responses: Dict[str, Response] = field(default_factory=dict)
    progress: int = 0
    completed: bool = False
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    user_id: Optional[str] = None
    period_label: Optional[str] = None
    upgraded_from: Optional[str] = None
    synced_at: Optional[datetime] = None
    local_only: bool = True

    def copy(self) -> 'Reflection':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'year': self.year,
            'period': self.period.value,
            'mode': self.mode.value,
            'responses': {qid: r.to_dict() for qid, r in self.responses.items()},
            'progress': self.progress,
            'completed': self.completed,
            'started_at': format_timestamp(self.started_at),
            'completed_at': format_timestamp(self.completed_at),
            'user_id': self.user_id,
            'period_label': self.period_label,
            'upgraded_from': self.upgraded_from,
            'synced_at': format_timestamp(self.synced_at),
            'local_only': self.local_only,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reflection':
        return cls(
            id=str(data['id']),
            year=int(data['year']),
            period=ReflectionPeriod(data.get('period', ReflectionPeriod.YEAR_END.value)),
            mode=Mode(data['mode']),
            responses=_parse_responses(data.get('responses') or {}),
            progress=int(data.get('progress', 0)),
            completed=bool(data.get('completed', False)),
            started_at=parse_timestamp(data.get('started_at')) or utcnow(),
            completed_at=parse_timestamp(data.get('completed_at')),
            user_id=data.get('user_id'),
            period_label=data.get('period_label'),
            upgraded_from=data.get('upgraded_from'),
            synced_at=parse_timestamp(data.get('synced_at')),
            local_only=bool(data.get('local_only', True)),
        )


@dataclass
class Achievement:
    id: str
    type: AchievementType
    unlocked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.type.value,
            'unlocked_at': format_timestamp(self.unlocked_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Achievement':
        achievement_type = AchievementType(data['type'])
        return cls(
            id=str(data.get('id') or achievement_type.value),
            type=achievement_type,
            unlocked_at=parse_timestamp(data.get('unlocked_at')) or utcnow(),
        )


@dataclass
class UserProfile:
    """Authenticated identity as supplied by the auth collaborator."""
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    theme: Theme = Theme.COSMIC
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'email': self.email,
            'full_name': self.full_name,
            'avatar_url': self.avatar_url,
            'theme': self.theme.value,
            'created_at': format_timestamp(self.created_at),
            'updated_at': format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        return cls(
            id=str(data['id']),
            email=data.get('email'),
            full_name=data.get('full_name'),
            avatar_url=data.get('avatar_url'),
            theme=Theme(data.get('theme') or Theme.COSMIC.value),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )


@dataclass
class CompassState:
    """Everything the engine persists between sessions."""
    theme: Theme = Theme.COSMIC
    has_seen_welcome: bool = False
    is_guest: bool = True
    mode: Optional[Mode] = None
    current_year: Optional[int] = None
    current_reflection: Optional[Reflection] = None
    responses: Dict[str, Response] = field(default_factory=dict)
    current_question_index: int = 0
    journey_started_at: Optional[datetime] = None
    reflections: List[Reflection] = field(default_factory=list)
    achievements: List[Achievement] = field(default_factory=list)
    # Legacy journey entries, kept raw until migrated
    journeys: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'theme': self.theme.value,
            'has_seen_welcome': self.has_seen_welcome,
            'is_guest': self.is_guest,
            'mode': self.mode.value if self.mode else None,
            'current_year': self.current_year,
            'current_reflection': self.current_reflection.to_dict() if self.current_reflection else None,
            'responses': {qid: r.to_dict() for qid, r in self.responses.items()},
            'current_question_index': self.current_question_index,
            'journey_started_at': format_timestamp(self.journey_started_at),
            'reflections': [r.to_dict() for r in self.reflections],
            'achievements': [a.to_dict() for a in self.achievements],
            'journeys': copy.deepcopy(self.journeys),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompassState':
        """Tolerant load: malformed pieces are dropped, the rest survives."""
        state = cls()

        theme = data.get('theme')
        if isinstance(theme, str) and theme in {t.value for t in Theme}:
            state.theme = Theme(theme)
        state.has_seen_welcome = bool(data.get('has_seen_welcome', False))
        state.is_guest = bool(data.get('is_guest', True))

        mode = data.get('mode')
        if isinstance(mode, str) and mode in {m.value for m in Mode}:
            state.mode = Mode(mode)

        year = data.get('current_year')
        if isinstance(year, int) and not isinstance(year, bool):
            state.current_year = year

        current = data.get('current_reflection')
        if isinstance(current, dict):
            try:
                state.current_reflection = Reflection.from_dict(current)
            except (KeyError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Dropping malformed current reflection: {e}")

        state.responses = _parse_responses(data.get('responses') or {})

        index = data.get('current_question_index', 0)
        if isinstance(index, int) and not isinstance(index, bool) and index >= 0:
            state.current_question_index = index

        try:
            state.journey_started_at = parse_timestamp(data.get('journey_started_at'))
        except (ValueError, TypeError):
            state.journey_started_at = None

        state.reflections = _parse_entries(data.get('reflections'), Reflection.from_dict, "reflection")
        state.achievements = _parse_entries(data.get('achievements'), Achievement.from_dict, "achievement")
        state.journeys = _parse_journeys(data.get('journeys'))
        return state


def _parse_responses(data: Any) -> Dict[str, Response]:
    responses = {}
    if not isinstance(data, dict):
        logger.warning("Ignoring responses that are not a mapping")
        return responses
    for question_id, item in data.items():
        try:
            response = Response.from_dict(item)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed response for {question_id}: {e}")
            continue
        responses[response.question_id] = response
    return responses


def _parse_entries(items: Any, parser, label: str) -> List[Any]:
    if items is None:
        return []
    if not isinstance(items, list):
        logger.warning(f"Ignoring {label} list that is not a list")
        return []
    parsed = []
    for item in items:
        try:
            parsed.append(parser(item))
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed {label}: {e}")
    return parsed


def _parse_journeys(data: Any) -> Dict[str, Dict[str, Any]]:
    if not data:
        return {}
    if isinstance(data, list):
        data = {str(i): item for i, item in enumerate(data)}
    if not isinstance(data, dict):
        logger.warning("Ignoring legacy journeys that are not a mapping")
        return {}
    return {str(key): dict(value) for key, value in data.items() if isinstance(value, dict)}


# ============================================================================
# UTILITY FUNCTIONS FOR SERIALIZATION
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles enums, dates, and models."""

    def default(self, obj):
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, tuple):
            return list(obj)
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        return super().default(obj)


# ============================================================================
# FACTORY FUNCTIONS FOR COMMON CREATIONS
# ============================================================================

def new_reflection_id() -> str:
    return f"reflection_{uuid.uuid4().hex[:12]}"


def create_reflection(
        year: int,
        mode: Mode,
        period: ReflectionPeriod = ReflectionPeriod.YEAR_END,
        user_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
        responses: Optional[Dict[str, Response]] = None,
        progress: int = 0,
        upgraded_from: Optional[str] = None,
        local_only: bool = True
) -> Reflection:
    """Factory function to create a fresh local Reflection."""
    return Reflection(
        id=new_reflection_id(),
        year=year,
        period=period,
        mode=mode,
        responses=responses or {},
        progress=progress,
        started_at=started_at or utcnow(),
        user_id=user_id,
        upgraded_from=upgraded_from,
        local_only=local_only
    )


def create_achievement(achievement_type: AchievementType, unlocked_at: Optional[datetime] = None) -> Achievement:
    """Locally an achievement is keyed by its type: one per type."""
    return Achievement(
        id=achievement_type.value,
        type=achievement_type,
        unlocked_at=unlocked_at or utcnow()
    )
