"""
Background sync of external sources (ICS calendar, weather) into the
shared state document.
"""

from typing import Optional


class UpstreamError(RuntimeError):
    """An external source could not be fetched or understood."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
