from __future__ import annotations
from typing import Optional


class ConfigurationError(RuntimeError):
    """Missing API key, base URL or model. Detected before any request is sent."""


class TransportError(RuntimeError):
    """Connection failure, non-2xx status, timeout or a dropped stream.

    Carries whatever reasoning/content text was already delivered so callers
    can keep partial output on screen.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        reasoning_text: str = "",
        content_text: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reasoning_text = reasoning_text
        self.content_text = content_text

    @property
    def has_partial_output(self) -> bool:
        return bool(self.reasoning_text or self.content_text)
