"""Base connector errors and helpers for host platform integration."""

import os
from typing import Any


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str, system: str | None = None, retriable: bool = False):
        super().__init__(message)
        self.system = system
        self.retriable = retriable


class AuthenticationError(ConnectorError):
    """Authentication failed (token expired, invalid credentials)."""

    pass


class NotFoundError(ConnectorError):
    """External object not found."""

    pass


class FieldNotFoundError(NotFoundError):
    """The record exists but has no such field."""

    def __init__(self, message: str, field_key: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field_key = field_key


class RateLimitError(ConnectorError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: int | None = None, **kwargs: Any):
        super().__init__(message, retriable=True, **kwargs)
        self.retry_after = retry_after


def get_setting(key: str, default: str | None = None) -> str | None:
    """Read a connector setting from the environment."""
    value = os.environ.get(key)
    return value if value else default
