"""
Waitroom Exceptions
===================
Base error types raised by the decision engine.

Network errors live in waitroom_core.http.exceptions and share the same base.
"""

from typing import Optional


class WaitroomError(Exception):
    """Base exception for all waitroom-core errors."""
    pass


class ConfigurationError(WaitroomError):
    """Raised for missing required settings or invalid patterns. Never recovered."""

    def __init__(self, message: str, setting: Optional[str] = None):
        self.message = message
        self.setting = setting
        super().__init__(f"{message} ({setting})" if setting else message)


class RoomPatternError(WaitroomError):
    """Raised when a single room carries an unusable regex."""

    def __init__(self, slug: str, field: str, pattern: str, reason: str):
        self.slug = slug
        self.field = field
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Room '{slug}' has invalid {field} pattern {pattern!r}: {reason}")
