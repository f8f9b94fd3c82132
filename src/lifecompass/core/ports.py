# src/lifecompass/core/ports.py
"""
Narrow interfaces the engine is constructed with.

The snapshot store is synchronous (local disk); the remote store is async
and every method may raise RemoteStoreError.
"""

from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .models import (
    Achievement, AchievementType, CompassState, Mode, Reflection,
    ReflectionPeriod, Response, ResponseValue, Theme, UserProfile,
)


class RemoteStoreError(Exception):
    """Base exception for remote store failures. The engine treats these as non-fatal."""
    pass


class SnapshotStore(Protocol):
    def load_snapshot(self) -> CompassState: ...

    def save_snapshot(self, state: CompassState) -> bool: ...


class RemoteStore(Protocol):
    async def get_profile(self, user_id: str) -> Optional[UserProfile]: ...

    async def update_profile(self, user_id: str, full_name: Optional[str] = None,
                             theme: Optional[Theme] = None,
                             avatar_url: Optional[str] = None) -> UserProfile: ...

    async def get_reflections(self, user_id: str) -> List[Reflection]: ...

    async def get_reflection(self, reflection_id: str) -> Optional[Reflection]: ...

    async def create_reflection(self, user_id: str, year: int, period: ReflectionPeriod,
                                mode: Mode, upgraded_from: Optional[str] = None,
                                started_at: Optional[datetime] = None) -> Reflection: ...

    async def update_reflection(self, reflection_id: str, progress: Optional[int] = None,
                                completed: Optional[bool] = None,
                                completed_at: Optional[datetime] = None,
                                mode: Optional[Mode] = None) -> None: ...

    async def save_response(self, reflection_id: str, question_id: str,
                            value: ResponseValue) -> None: ...

    async def save_responses(self, reflection_id: str, responses: Dict[str, Response]) -> None: ...

    async def get_achievements(self, user_id: str) -> List[Achievement]: ...

    async def unlock_achievement(self, user_id: str, achievement_type: AchievementType) -> bool: ...
