"""Exceptions raised by the viewer services."""

from typing import Optional


class BackendError(Exception):
    """The external backend failed: transport error, non-2xx status, or an
    ``{"error": ...}`` payload in an otherwise successful response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DecodeError(ValueError):
    """A payload could not be decoded into a volume (bad Base64, bad shape...)."""
