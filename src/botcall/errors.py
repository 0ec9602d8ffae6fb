"""Exception hierarchy for request encoding and dispatch."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "ApiError",
    "AttachmentFetchError",
    "BotCallError",
    "InvalidAttachmentSource",
]


class BotCallError(RuntimeError):
    """Base class for failures raised while encoding or dispatching a call."""


class InvalidAttachmentSource(BotCallError, TypeError):
    """Raised when a path source does not resolve to a regular file."""


class AttachmentFetchError(BotCallError):
    """Raised when a remote attachment cannot be fetched."""


class ApiError(BotCallError):
    """Raised when the API answers with ``ok: false``."""

    def __init__(
        self,
        method: str,
        error_code: int,
        description: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{method} failed ({error_code}): {description}")
        self.method = method
        self.error_code = error_code
        self.description = description
        self.parameters = dict(parameters or {})
