from __future__ import annotations
from dataclasses import dataclass
from typing import AsyncIterable, Callable, Iterable, Iterator, List, Literal, Protocol

from examsolver.core.errors import TransportError
from examsolver.core.extractor import classify_chunk
from examsolver.core.json_value import as_object, first_choice, loads_object
from examsolver.core.utils import get_logger

logger = get_logger()

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

EventKind = Literal["reasoning", "content", "thinking_start", "thinking_complete", "done"]


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    text: str = ""


THINKING_START = StreamEvent("thinking_start")
THINKING_COMPLETE = StreamEvent("thinking_complete")
DONE = StreamEvent("done")


class SSEParser:
    """Incremental parser for an OpenAI-style ``data:`` line stream.

    Feed it one line at a time; it returns the events that line produced.
    Exactly one ``done`` event is ever produced, after which every further
    line is ignored.
    """

    def __init__(self) -> None:
        self.thinking_active = False
        self.finished = False
        self._reasoning: List[str] = []
        self._content: List[str] = []

    @property
    def reasoning_text(self) -> str:
        return "".join(self._reasoning)

    @property
    def content_text(self) -> str:
        return "".join(self._content)

    def _close_thinking(self, out: List[StreamEvent]) -> None:
        if self.thinking_active:
            self.thinking_active = False
            out.append(THINKING_COMPLETE)

    def _terminate(self) -> List[StreamEvent]:
        out: List[StreamEvent] = []
        self._close_thinking(out)
        out.append(DONE)
        self.finished = True
        return out

    def feed(self, line: str) -> List[StreamEvent]:
        if self.finished:
            return []
        line = line.rstrip("\r\n")
        if not line.startswith(DATA_PREFIX):
            return []
        data = line[len(DATA_PREFIX):].strip()
        if not data:
            return []
        if data == DONE_SENTINEL:
            return self._terminate()
        try:
            chunk = loads_object(data)
        except ValueError as e:
            logger.warning("sse.malformed_chunk", error=str(e), preview=data[:120])
            return []

        choice = first_choice(chunk)
        if choice is None:
            return []
        delta = as_object(choice.get("delta"))
        reasoning, content = classify_chunk(choice, delta)

        out: List[StreamEvent] = []
        if reasoning:
            if not self.thinking_active:
                self.thinking_active = True
                out.append(THINKING_START)
            self._reasoning.append(reasoning)
            out.append(StreamEvent("reasoning", reasoning))
        if content:
            self._close_thinking(out)
            self._content.append(content)
            out.append(StreamEvent("content", content))
        if choice.get("finish_reason") is not None:
            self._close_thinking(out)
        return out

    def finish(self) -> List[StreamEvent]:
        """Transport closed without a sentinel: that is a normal completion."""
        if self.finished:
            return []
        return self._terminate()


def iter_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    parser = SSEParser()
    for line in lines:
        yield from parser.feed(line)
        if parser.finished:
            return
    yield from parser.finish()


class StreamCallbacks(Protocol):
    def on_reasoning_chunk(self, text: str) -> None: ...
    def on_content_chunk(self, text: str) -> None: ...
    def on_thinking_start(self) -> None: ...
    def on_thinking_complete(self) -> None: ...
    def on_done(self) -> None: ...
    def on_error(self, error: TransportError) -> None: ...


def _dispatch(event: StreamEvent, callbacks: StreamCallbacks) -> None:
    if event.kind == "reasoning":
        callbacks.on_reasoning_chunk(event.text)
    elif event.kind == "content":
        callbacks.on_content_chunk(event.text)
    elif event.kind == "thinking_start":
        callbacks.on_thinking_start()
    elif event.kind == "thinking_complete":
        callbacks.on_thinking_complete()
    else:
        callbacks.on_done()


async def decode(
    lines: AsyncIterable[str],
    callbacks: StreamCallbacks,
    is_cancelled: Callable[[], bool] = lambda: False,
) -> None:
    """Drive ``callbacks`` from an async line stream until ``done`` or failure.

    No callback fires once ``is_cancelled()`` reports true, even when lines
    are still buffered.
    """
    parser = SSEParser()
    try:
        async for line in lines:
            if is_cancelled():
                return
            for event in parser.feed(line):
                if is_cancelled():
                    return
                _dispatch(event, callbacks)
            if parser.finished:
                return
    except TransportError as e:
        if is_cancelled():
            return
        e.reasoning_text = e.reasoning_text or parser.reasoning_text
        e.content_text = e.content_text or parser.content_text
        callbacks.on_error(e)
        return
    for event in parser.finish():
        if is_cancelled():
            return
        _dispatch(event, callbacks)
