"""Per-(question, mode) request lifecycle management.

Every stream runs as its own asyncio task. Tasks never touch answer state
directly: each decoded event is routed through ``SolveOrchestrator._apply``,
which runs synchronously on the event loop and drops anything whose handle
is no longer the registered, current-generation handle for its key. That
check is what keeps a cancelled or superseded stream from writing into a
retried answer.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

import httpx

from examsolver.core.answers import Answer, now_ms
from examsolver.core.chat_client import ChatClient, build_solve_messages, build_timeout
from examsolver.core.errors import ConfigurationError, TransportError
from examsolver.core.model_policy import ModelSelectionPolicy
from examsolver.core.settings import Settings
from examsolver.core.sse import StreamCallbacks
from examsolver.core.types import AIConfig, Message, Mode, Question
from examsolver.core.utils import get_logger

logger = get_logger()

Key = Tuple[int, Mode]


class Cancelable(Protocol):
    def cancel(self) -> Any: ...


class StreamingClient(Protocol):
    async def stream_chat_completion(
        self,
        messages: List[Message],
        callbacks: StreamCallbacks,
        is_cancelled: Callable[[], bool] = ...,
    ) -> None: ...

    async def aclose(self) -> None: ...


ClientFactory = Callable[[AIConfig], StreamingClient]


class SolveListener:
    """UI-side hooks. Override what you need; every hook defaults to a no-op."""

    def on_reasoning_chunk(self, question_id: int, mode: Mode, text: str) -> None:
        pass

    def on_content_chunk(self, question_id: int, mode: Mode, text: str, first: bool) -> None:
        pass

    def on_thinking_start(self, question_id: int, mode: Mode) -> None:
        pass

    def on_thinking_complete(self, question_id: int, mode: Mode) -> None:
        pass

    def on_complete(self, question_id: int, mode: Mode) -> None:
        pass

    def on_error(self, question_id: int, mode: Mode, error: str) -> None:
        pass

    def on_stopped(self, question_id: int, mode: Mode) -> None:
        pass

    def on_all_complete(self) -> None:
        pass


@dataclass
class RequestHandle:
    key: Key
    generation: int
    model_id: str
    task: Optional["asyncio.Task[None]"] = None
    cancelled: bool = False

    @property
    def question_id(self) -> int:
        return self.key[0]

    @property
    def mode(self) -> Mode:
        return self.key[1]

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


class _StreamSink:
    """Adapts decoder callbacks onto one handle's generation."""

    def __init__(self, orchestrator: "SolveOrchestrator", handle: RequestHandle) -> None:
        self._orch = orchestrator
        self._handle = handle

    def on_reasoning_chunk(self, text: str) -> None:
        self._orch._apply(self._handle, "reasoning", text)

    def on_content_chunk(self, text: str) -> None:
        self._orch._apply(self._handle, "content", text)

    def on_thinking_start(self) -> None:
        self._orch._apply(self._handle, "thinking_start")

    def on_thinking_complete(self) -> None:
        self._orch._apply(self._handle, "thinking_complete")

    def on_done(self) -> None:
        self._orch._apply(self._handle, "done")

    def on_error(self, error: TransportError) -> None:
        self._orch._apply(self._handle, "error", str(error) or type(error).__name__)


class SolveOrchestrator:
    """Owns every in-flight solve stream for one OCR session.

    All public methods except ``close`` are synchronous and must be called
    from the event loop that runs the streams.
    """

    def __init__(
        self,
        settings: Settings,
        listener: Optional[SolveListener] = None,
        client_factory: Optional[ClientFactory] = None,
        clock: Callable[[], int] = now_ms,
        current_mode: Mode = Mode.FAST,
    ) -> None:
        self.settings = settings
        self.listener = listener or SolveListener()
        self.current_mode = current_mode
        self.policy = ModelSelectionPolicy(settings.model_list, settings.selected_model)
        self.questions: Dict[int, Question] = {}
        self.answers: Dict[Mode, Dict[int, Answer]] = {Mode.FAST: {}, Mode.DEEP: {}}
        self.stopped: Dict[Mode, bool] = {Mode.FAST: False, Mode.DEEP: False}
        self._clock = clock
        self._client_factory = client_factory or self._default_client
        self._http: Optional[httpx.AsyncClient] = None
        self._handles: Dict[Key, RequestHandle] = {}
        self._generations: Dict[Key, int] = {}
        self._tasks: Set["asyncio.Task[None]"] = set()
        self._ocr_handle: Optional[Cancelable] = None
        self._all_complete_fired = False

    # ---- Configuration --------------------------------------------------
    def _default_client(self, config: AIConfig) -> ChatClient:
        timeout = build_timeout(self.settings.http)
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=timeout)
        return ChatClient(config, http=self._http, timeout=timeout)

    def mode_config(self, question_id: int, mode: Mode) -> AIConfig:
        return self.settings.config_for(mode, self.policy.resolve(question_id, mode))

    def is_mode_configured(self, mode: Mode) -> bool:
        return self.settings.config_for(mode, self.policy.default_model(mode)).is_valid()

    def required_modes(self) -> List[Mode]:
        return [m for m in Mode if self.is_mode_configured(m)]

    # ---- Session lifecycle ----------------------------------------------
    def begin_pass(self, ocr_handle: Optional[Cancelable] = None) -> None:
        """Reset all state for a new OCR pass."""
        self._cancel_ocr()
        for key in list(self._handles):
            self._discard_handle(key)
        self.questions.clear()
        for mode in Mode:
            self.answers[mode].clear()
            self.stopped[mode] = False
        self.policy.clear()
        self._all_complete_fired = False
        if not self.required_modes():
            raise ConfigurationError(
                "No solving mode is configured: set an API key, base URL and model"
            )
        self._ocr_handle = ocr_handle

    def attach_ocr(self, handle: Cancelable) -> None:
        self._ocr_handle = handle

    def ocr_finished(self) -> None:
        """OCR delivered its last question; the pass may now complete."""
        self._ocr_handle = None
        self._check_all_complete()

    def add_question(self, question: Question) -> None:
        self.questions[question.id] = question
        self.start(question)

    def start_all(self, questions: List[Question]) -> None:
        for question in questions:
            self.add_question(question)

    def switch_mode(self, mode: Mode) -> None:
        self.current_mode = mode

    def set_model_override(self, question_id: int, mode: Mode, model_id: str) -> None:
        self.policy.set_override(question_id, mode, model_id)

    async def close(self) -> None:
        """Cancel everything and wait for the worker tasks to unwind."""
        self._cancel_ocr()
        for key in list(self._handles):
            self._discard_handle(key)
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ---- Queries ----------------------------------------------------------
    def answer(self, question_id: int, mode: Mode) -> Optional[Answer]:
        return self.answers[mode].get(question_id)

    def live_handles(self, mode: Optional[Mode] = None) -> List[RequestHandle]:
        return [h for k, h in self._handles.items() if mode is None or k[1] is mode]

    @property
    def all_complete(self) -> bool:
        return self._all_complete_fired

    async def wait_idle(self) -> None:
        """Wait until no stream task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ---- Starting streams ----------------------------------------------------
    def start(self, question: Question) -> None:
        for mode in Mode:
            if not self.is_mode_configured(mode):
                continue
            if self.stopped[mode]:
                answer = Answer(question.id)
                answer.stop(self._clock)
                self.answers[mode][question.id] = answer
                continue
            self._start_pair(question, mode)

    def _start_pair(self, question: Question, mode: Mode) -> Optional[RequestHandle]:
        key = (question.id, mode)
        self._discard_handle(key)
        self.answers[mode][question.id] = Answer(question.id)
        config = self.mode_config(question.id, mode)
        if not config.is_valid():
            return None

        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        handle = RequestHandle(key=key, generation=generation, model_id=config.model_id)
        self._handles[key] = handle
        task = asyncio.get_running_loop().create_task(self._run(question, config, handle))
        handle.task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(
            "solve.start",
            question_id=question.id,
            mode=mode.value,
            model=config.model_id,
            generation=generation,
        )
        return handle

    async def _run(self, question: Question, config: AIConfig, handle: RequestHandle) -> None:
        client = self._client_factory(config)
        sink = _StreamSink(self, handle)
        messages = build_solve_messages(question, self.settings.solve_prompt)
        try:
            await client.stream_chat_completion(
                messages, sink, is_cancelled=lambda: not self._is_current(handle)
            )
        except TransportError as e:
            sink.on_error(e)
        except Exception as e:
            # A bug in one stream must not take down its siblings
            logger.exception("solve.unexpected_error", question_id=question.id, mode=handle.mode.value)
            sink.on_error(TransportError(str(e) or type(e).__name__))
        finally:
            await client.aclose()

    # ---- Applying events -------------------------------------------------------
    def _is_current(self, handle: RequestHandle) -> bool:
        return (
            not handle.cancelled
            and self._handles.get(handle.key) is handle
            and self._generations.get(handle.key) == handle.generation
        )

    def _apply(self, handle: RequestHandle, kind: str, text: str = "") -> None:
        if not self._is_current(handle):
            return
        question_id, mode = handle.key
        answer = self.answers[mode].get(question_id)
        if answer is None or answer.is_final:
            return

        if kind == "reasoning":
            if answer.mark_thinking_started(self._clock):
                self.listener.on_thinking_start(question_id, mode)
            answer.append_thinking(text, self._clock)
            self.listener.on_reasoning_chunk(question_id, mode, text)
        elif kind == "content":
            if answer.is_thinking:
                answer.mark_thinking_completed(self._clock)
                self.listener.on_thinking_complete(question_id, mode)
            first = answer.append_text(text, self._clock)
            self.listener.on_content_chunk(question_id, mode, text, first)
        elif kind == "thinking_start":
            if answer.mark_thinking_started(self._clock):
                self.listener.on_thinking_start(question_id, mode)
        elif kind == "thinking_complete":
            if answer.mark_thinking_completed(self._clock):
                self.listener.on_thinking_complete(question_id, mode)
        elif kind == "done":
            self._handles.pop(handle.key, None)
            answer.finish(clock=self._clock)
            logger.info("solve.complete", question_id=question_id, mode=mode.value)
            self.listener.on_complete(question_id, mode)
            self._check_all_complete()
        elif kind == "error":
            self._handles.pop(handle.key, None)
            answer.finish(error=text, clock=self._clock)
            logger.warning("solve.error", question_id=question_id, mode=mode.value, error=text)
            self.listener.on_error(question_id, mode, text)
            self._check_all_complete()

    def _check_all_complete(self) -> None:
        # More questions may still arrive while OCR runs
        if self._all_complete_fired or self._ocr_handle is not None or not self.questions:
            return
        for mode in self.required_modes():
            for qid in self.questions:
                answer = self.answers[mode].get(qid)
                if answer is None or not answer.is_complete:
                    return
        self._all_complete_fired = True
        logger.info("solve.all_complete", questions=len(self.questions))
        self.listener.on_all_complete()

    # ---- Retry and stop ---------------------------------------------------------
    def retry_question(self, question_id: int) -> Optional[RequestHandle]:
        """Restart one question in the mode that is active right now."""
        question = self.questions.get(question_id)
        if question is None:
            return None
        mode = self.current_mode
        self.stopped[mode] = False
        logger.info("solve.retry", question_id=question_id, mode=mode.value)
        return self._start_pair(question, mode)

    def _discard_handle(self, key: Key) -> None:
        # Unregister first so nothing the task still has in flight can apply
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _cancel_ocr(self) -> None:
        if self._ocr_handle is not None:
            self._ocr_handle.cancel()
            self._ocr_handle = None

    def _stop_mode(self, mode: Mode) -> None:
        for key in [k for k in self._handles if k[1] is mode]:
            self._discard_handle(key)
        self.stopped[mode] = True
        for qid in self.questions:
            answer = self.answers[mode].get(qid)
            if answer is None or answer.is_stopped:
                continue
            # Text and error already received are kept
            answer.stop(self._clock)
            self.listener.on_stopped(qid, mode)

    def has_output(self, mode: Mode) -> bool:
        return any(
            a.has_output for qid, a in self.answers[mode].items() if qid in self.questions
        )

    def stop_current_mode(self) -> None:
        """Stop the visible mode, or everything if nothing has been produced yet."""
        mode = self.current_mode
        if not self.has_output(mode):
            self.stop_all()
            return
        self._cancel_ocr()
        self._stop_mode(mode)
        logger.info("solve.stop_mode", mode=mode.value)
        self._check_all_complete()

    def stop_all(self) -> None:
        self._cancel_ocr()
        for mode in Mode:
            self._stop_mode(mode)
        logger.info("solve.stop_all")
