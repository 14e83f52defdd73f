from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Optional


def now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class Answer:
    question_id: int
    text: str = ""
    thinking_text: str = ""
    is_thinking: bool = False
    thinking_expanded: bool = True
    thinking_start_at_ms: int = 0
    thinking_duration_ms: int = 0
    is_complete: bool = False
    is_stopped: bool = False
    error: Optional[str] = None

    @property
    def is_final(self) -> bool:
        return self.is_complete or self.is_stopped

    @property
    def has_output(self) -> bool:
        return bool(self.text or self.thinking_text or self.is_thinking)

    def mark_thinking_started(self, clock: Callable[[], int] = now_ms) -> bool:
        """Open a thinking span. Returns False if one is already open."""
        if self.is_thinking:
            return False
        self.is_thinking = True
        if self.thinking_start_at_ms <= 0:
            self.thinking_start_at_ms = clock()
        return True

    def mark_thinking_completed(self, clock: Callable[[], int] = now_ms) -> bool:
        """Close the open span and bank its duration. Returns False if none was open."""
        was_thinking = self.is_thinking
        if self.thinking_start_at_ms > 0:
            self.thinking_duration_ms += max(0, clock() - self.thinking_start_at_ms)
            self.thinking_start_at_ms = 0
        self.is_thinking = False
        return was_thinking

    def append_thinking(self, text: str, clock: Callable[[], int] = now_ms) -> None:
        self.mark_thinking_started(clock)
        self.thinking_text += text

    def append_text(self, text: str, clock: Callable[[], int] = now_ms) -> bool:
        """Append answer text; returns True for the first non-empty chunk."""
        self.mark_thinking_completed(clock)
        first = not self.text
        self.text += text
        return first and bool(text)

    def finish(self, error: Optional[str] = None, clock: Callable[[], int] = now_ms) -> None:
        self.mark_thinking_completed(clock)
        if error is not None:
            self.error = error
        self.is_complete = True

    def stop(self, clock: Callable[[], int] = now_ms) -> None:
        self.mark_thinking_completed(clock)
        self.is_complete = True
        self.is_stopped = True

    def format_thinking_duration(self) -> str:
        if self.thinking_duration_ms <= 0:
            return ""
        if self.thinking_duration_ms < 1000:
            return f"{self.thinking_duration_ms}ms"
        return f"{self.thinking_duration_ms / 1000:.1f}s"
