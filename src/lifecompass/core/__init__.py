# src/lifecompass/core/__init__.py
"""
Core modules for LifeCompass.
"""

from lifecompass.core.models import (
    Mode,
    ReflectionPeriod,
    Reflection,
    Response,
    Achievement,
    AchievementType,
    UserProfile,
    SyncStatus,
)
from lifecompass.core.snapshot_store import JsonFileSnapshotStore, InMemorySnapshotStore
from lifecompass.core.reflection_engine import (
    ReflectionEngine,
    ReflectionEngineError,
    InvalidInputError,
    ReflectionNotFoundError,
    InvalidUpgradeError,
)

__all__ = [
    'Mode',
    'ReflectionPeriod',
    'Reflection',
    'Response',
    'Achievement',
    'AchievementType',
    'UserProfile',
    'SyncStatus',
    'JsonFileSnapshotStore',
    'InMemorySnapshotStore',
    'ReflectionEngine',
    'ReflectionEngineError',
    'InvalidInputError',
    'ReflectionNotFoundError',
    'InvalidUpgradeError'
]
