# src/lifecompass/api/__init__.py
"""
Remote store adapter for LifeCompass.
"""

from lifecompass.api.errors import (
    RemoteStoreError,
    AuthenticationError,
    RateLimitError,
    APIError,
    ConfigurationError,
)
from lifecompass.api.client import SupabaseStore

__all__ = [
    'SupabaseStore',
    'RemoteStoreError',
    'AuthenticationError',
    'RateLimitError',
    'APIError',
    'ConfigurationError'
]
