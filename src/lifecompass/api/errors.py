# src/lifecompass/api/errors.py
"""Remote store error classes. All derive from the port-level RemoteStoreError."""

from ..core.ports import RemoteStoreError


class AuthenticationError(RemoteStoreError):
    """Raised when the key or session token is rejected."""
    pass

class RateLimitError(RemoteStoreError):
    """Raised when rate limit is exceeded."""
    pass

class APIError(RemoteStoreError):
    """Raised for general API errors (HTTP >= 400, timeouts, transport)."""
    def __init__(self, message, status_code=None, code=None):
        self.status_code = status_code
        # PostgREST / Postgres error code, e.g. "23505"
        self.code = code
        super().__init__(message)

class ConfigurationError(RemoteStoreError):
    """Raised for configuration errors."""
    pass
