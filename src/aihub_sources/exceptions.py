"""Custom exception hierarchy for aihub-sources.

These exceptions allow callers to discriminate error categories
(bad configuration, missing content, denied access, failing upstream)
and handle them appropriately while keeping the underlying cause chained.
"""

from __future__ import annotations

from typing import Optional


class SourceError(Exception):
    """Base class for all aihub-sources exceptions."""


class ConfigurationError(SourceError):
    """Raised when a source configuration is missing fields or fails validation."""


class NotFoundError(SourceError):
    """Raised when a file, document or page does not exist."""


class ToolNotFoundError(NotFoundError):
    """Raised when a tool id was never registered with the manager."""


class AccessDeniedError(SourceError):
    """Raised when a path escapes its sandbox or the caller lacks permission."""


class UpstreamError(SourceError):
    """Raised when a remote service or the disk returns an unusable response."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchTimeoutError(SourceError):
    """Raised when a fetch does not complete within its time limit."""
