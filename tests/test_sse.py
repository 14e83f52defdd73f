from __future__ import annotations
import json
from typing import List

import pytest

from examsolver.core.errors import TransportError
from examsolver.core.sse import SSEParser, StreamEvent, decode, iter_events


def data(obj) -> str:
    return "data: " + json.dumps(obj)


def delta_line(finish_reason=None, **delta) -> str:
    return data({"choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}]})


class Recorder:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def on_reasoning_chunk(self, text: str) -> None:
        self.events.append(("reasoning", text))

    def on_content_chunk(self, text: str) -> None:
        self.events.append(("content", text))

    def on_thinking_start(self) -> None:
        self.events.append(("thinking_start",))

    def on_thinking_complete(self) -> None:
        self.events.append(("thinking_complete",))

    def on_done(self) -> None:
        self.events.append(("done",))

    def on_error(self, error: TransportError) -> None:
        self.events.append(("error", error))


async def agen(items):
    for item in items:
        if isinstance(item, Exception):
            raise item
        yield item


def kinds(events) -> List[str]:
    return [e.kind for e in events]


def test_reasoning_then_content_emits_boundaries():
    lines = [
        delta_line(role="assistant"),
        delta_line(reasoning_content="because "),
        delta_line(reasoning_content="X"),
        delta_line(content="Answer: 42"),
        delta_line(finish_reason="stop"),
        "data: [DONE]",
    ]
    events = list(iter_events(lines))
    assert events == [
        StreamEvent("thinking_start"),
        StreamEvent("reasoning", "because "),
        StreamEvent("reasoning", "X"),
        StreamEvent("thinking_complete"),
        StreamEvent("content", "Answer: 42"),
        StreamEvent("done"),
    ]


def test_exactly_one_terminal_event_even_with_trailing_lines():
    lines = [delta_line(content="a"), "data: [DONE]", delta_line(content="late"), "data: [DONE]"]
    events = list(iter_events(lines))
    assert kinds(events) == ["content", "done"]


def test_parser_ignores_everything_after_done():
    parser = SSEParser()
    assert kinds(parser.feed("data: [DONE]")) == ["done"]
    assert parser.feed(delta_line(content="x")) == []
    assert parser.finish() == []


def test_non_data_lines_and_comments_are_ignored():
    lines = [": keep-alive", "event: message", "", "id: 3", delta_line(content="ok")]
    assert kinds(iter_events(lines)) == ["content", "done"]


def test_malformed_chunk_is_skipped():
    lines = ["data: {not json", "data: [1, 2]", delta_line(content="fine"), "data: [DONE]"]
    events = list(iter_events(lines))
    assert events == [StreamEvent("content", "fine"), StreamEvent("done")]


def test_end_of_stream_without_sentinel_is_normal_completion():
    events = list(iter_events([delta_line(reasoning_content="r")]))
    assert kinds(events) == ["thinking_start", "reasoning", "thinking_complete", "done"]


def test_finish_reason_closes_thinking():
    lines = [delta_line(reasoning="think"), delta_line(finish_reason="length")]
    assert kinds(iter_events(lines)) == [
        "thinking_start",
        "reasoning",
        "thinking_complete",
        "done",
    ]


def test_second_reasoning_run_restarts_thinking():
    lines = [
        delta_line(reasoning_content="a"),
        delta_line(content="b"),
        delta_line(reasoning_content="c"),
        delta_line(content="d"),
    ]
    assert kinds(iter_events(lines)) == [
        "thinking_start",
        "reasoning",
        "thinking_complete",
        "content",
        "thinking_start",
        "reasoning",
        "thinking_complete",
        "content",
        "done",
    ]


def test_prefix_without_space_and_crlf():
    events = list(iter_events(['data:{"choices":[{"delta":{"content":"x"}}]}\r\n']))
    assert events[0] == StreamEvent("content", "x")


def test_parser_tracks_partial_text():
    parser = SSEParser()
    parser.feed(delta_line(reasoning_content="r1"))
    parser.feed(delta_line(content="c1"))
    parser.feed(delta_line(content="c2"))
    assert parser.reasoning_text == "r1"
    assert parser.content_text == "c1c2"


@pytest.mark.asyncio
async def test_decode_dispatches_callbacks_and_stops_after_done():
    rec = Recorder()
    lines = [delta_line(content="hi"), "data: [DONE]", delta_line(content="after")]
    await decode(agen(lines), rec)
    assert rec.events == [("content", "hi"), ("done",)]


@pytest.mark.asyncio
async def test_decode_transport_error_carries_partial_output():
    rec = Recorder()
    lines = [delta_line(reasoning_content="why"), delta_line(content="part"), TransportError("reset")]
    await decode(agen(lines), rec)
    assert rec.events[-1][0] == "error"
    err = rec.events[-1][1]
    assert err.reasoning_text == "why"
    assert err.content_text == "part"
    assert err.has_partial_output
    assert ("content", "part") in rec.events
    assert ("done",) not in rec.events


@pytest.mark.asyncio
async def test_decode_stops_once_cancelled_even_with_buffered_lines():
    cancelled = {"flag": False}

    class CancelAfterFirst(Recorder):
        def on_content_chunk(self, text: str) -> None:
            super().on_content_chunk(text)
            cancelled["flag"] = True

    rec = CancelAfterFirst()
    lines = [delta_line(content="one"), delta_line(content="two"), "data: [DONE]"]
    await decode(agen(lines), rec, is_cancelled=lambda: cancelled["flag"])
    assert rec.events == [("content", "one")]


@pytest.mark.asyncio
async def test_decode_suppresses_error_after_cancellation():
    rec = Recorder()
    await decode(agen([TransportError("gone")]), rec, is_cancelled=lambda: True)
    assert rec.events == []
