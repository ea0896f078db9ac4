from __future__ import annotations

from typing import Optional


class ExternalApiError(RuntimeError):
    """A YouTube Data API call failed (transport, HTTP status or auth)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, reason: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message)
