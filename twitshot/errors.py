from __future__ import annotations


class ScreenshotResponseError(RuntimeError):
    """Raised by a renderer when the caller's input deserves a specific status and body."""

    def __init__(self, status_code: int, body: str | None = None) -> None:
        super().__init__(body or "")
        self.status_code = status_code
        self.body = body


class InvalidUrlError(ValueError):
    """Raised when the requested target is not an absolute URL."""
