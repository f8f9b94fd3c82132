"""Shared fixtures: in-memory snapshot store, fake remote store, fixed clock."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from lifecompass.api.errors import APIError
from lifecompass.core.models import (
    Achievement, AchievementType, Mode, Reflection, ReflectionPeriod, Response,
    ResponseValue, Theme, UserProfile,
)
from lifecompass.core.reflection_engine import ReflectionEngine
from lifecompass.core.snapshot_store import InMemorySnapshotStore


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 12, 28, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeRemoteStore:
    """In-memory remote store that records calls and fails on demand."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.reflections: Dict[str, Reflection] = {}
        self.responses: Dict[Tuple[str, str], ResponseValue] = {}
        self.achievements: Dict[Tuple[str, AchievementType], Achievement] = {}
        self.profiles: Dict[str, UserProfile] = {}
        self.calls: List[tuple] = []
        self.fail_on = set()
        self._next_id = 0

    def _record(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise APIError(f"{name} failed", 500)

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def add_reflection(self, user_id: str, year: int, mode: Mode = Mode.QUICK,
                       completed: bool = True, responses: Optional[Dict[str, ResponseValue]] = None) -> Reflection:
        self._next_id += 1
        reflection = Reflection(
            id=f"remote-{self._next_id}", year=year, period=ReflectionPeriod.YEAR_END,
            mode=mode, completed=completed, progress=100 if completed else 0,
            user_id=user_id, started_at=self.clock(),
            completed_at=self.clock() if completed else None,
            synced_at=self.clock(), local_only=False,
        )
        self.reflections[reflection.id] = reflection
        for question_id, value in (responses or {}).items():
            self.responses[(reflection.id, question_id)] = value
        return reflection

    async def get_profile(self, user_id):
        self._record("get_profile", user_id)
        return self.profiles.get(user_id)

    async def update_profile(self, user_id, full_name=None, theme=None, avatar_url=None):
        self._record("update_profile", user_id)
        profile = self.profiles.setdefault(user_id, UserProfile(id=user_id))
        if full_name is not None:
            profile.full_name = full_name
        if theme is not None:
            profile.theme = Theme(theme)
        if avatar_url is not None:
            profile.avatar_url = avatar_url
        return profile

    async def get_reflections(self, user_id):
        self._record("get_reflections", user_id)
        result = []
        for reflection in self.reflections.values():
            if reflection.user_id != user_id:
                continue
            copy = reflection.copy()
            copy.responses = {
                qid: Response(qid, value, self.clock())
                for (rid, qid), value in self.responses.items() if rid == reflection.id
            }
            result.append(copy)
        return result

    async def get_reflection(self, reflection_id):
        self._record("get_reflection", reflection_id)
        reflection = self.reflections.get(reflection_id)
        return reflection.copy() if reflection else None

    async def create_reflection(self, user_id, year, period, mode, upgraded_from=None, started_at=None):
        self._record("create_reflection", user_id, year, Mode(mode), upgraded_from)
        self._next_id += 1
        reflection = Reflection(
            id=f"remote-{self._next_id}", year=year, period=ReflectionPeriod(period),
            mode=Mode(mode), user_id=user_id, upgraded_from=upgraded_from,
            started_at=started_at or self.clock(), synced_at=self.clock(), local_only=False,
        )
        self.reflections[reflection.id] = reflection
        return reflection.copy()

    async def update_reflection(self, reflection_id, progress=None, completed=None,
                                completed_at=None, mode=None):
        self._record("update_reflection", reflection_id, progress, completed)
        reflection = self.reflections.get(reflection_id)
        if reflection is None:
            raise APIError(f"No reflection {reflection_id}", 404)
        if progress is not None:
            reflection.progress = progress
        if completed is not None:
            reflection.completed = completed
        if completed_at is not None:
            reflection.completed_at = completed_at
        if mode is not None:
            reflection.mode = Mode(mode)

    async def save_response(self, reflection_id, question_id, value):
        self._record("save_response", reflection_id, question_id)
        self.responses[(reflection_id, question_id)] = value

    async def save_responses(self, reflection_id, responses):
        self._record("save_responses", reflection_id, tuple(sorted(responses)))
        for response in responses.values():
            self.responses[(reflection_id, response.question_id)] = response.value

    async def get_achievements(self, user_id):
        self._record("get_achievements", user_id)
        return [a for (uid, _), a in self.achievements.items() if uid == user_id]

    async def unlock_achievement(self, user_id, achievement_type):
        self._record("unlock_achievement", user_id, AchievementType(achievement_type))
        key = (user_id, AchievementType(achievement_type))
        if key in self.achievements:
            return False
        self.achievements[key] = Achievement(
            id=f"achievement-{len(self.achievements) + 1}", type=key[1], unlocked_at=self.clock())
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot_store():
    return InMemorySnapshotStore()


@pytest.fixture
def remote(clock):
    return FakeRemoteStore(clock)


@pytest.fixture
def engine(snapshot_store, clock):
    """Guest engine with no remote store."""
    return ReflectionEngine(snapshot_store, clock=clock)


@pytest.fixture
def remote_engine(snapshot_store, remote, clock):
    """Engine wired to the fake remote store, not yet signed in."""
    return ReflectionEngine(snapshot_store, remote_store=remote, clock=clock)


@pytest.fixture
def user():
    return UserProfile(id="user-1", email="ada@example.com", full_name="Ada")
