from __future__ import annotations
import json
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from examsolver.core.errors import TransportError
from examsolver.core.json_value import as_object, first_choice
from examsolver.core.sse import StreamCallbacks, decode
from examsolver.core.types import AIConfig, Message, ModelListResult, Question, RemoteModel
from examsolver.core.utils import get_logger

logger = get_logger()

DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=120.0, write=60.0, pool=30.0)

DEFAULT_SOLVE_PROMPT = (
    "You are an expert exam tutor. Solve the question the user sends. "
    "Work through it carefully, then state the final answer clearly."
)


def normalize_base_url(url: str) -> str:
    normalized = (url or "").strip()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    if "/v1" not in normalized:
        normalized = f"{normalized}/v1"
    return normalized


def build_timeout(http_cfg: Optional[Dict[str, float]] = None) -> httpx.Timeout:
    cfg = http_cfg or {}
    return httpx.Timeout(
        connect=float(cfg.get("connect_timeout_s", 30)),
        read=float(cfg.get("read_timeout_s", 120)),
        write=float(cfg.get("write_timeout_s", 60)),
        pool=float(cfg.get("pool_timeout_s", 30)),
    )


def build_solve_messages(question: Question, system_prompt: str = "") -> List[Message]:
    return [
        {"role": "system", "content": (system_prompt or DEFAULT_SOLVE_PROMPT).strip()},
        {"role": "user", "content": question.text},
    ]


def _describe(e: Exception) -> str:
    detail = str(e).strip()
    return f"{type(e).__name__}: {detail}" if detail else type(e).__name__


def _first_non_blank(*values: Any) -> Optional[str]:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v
    return None


def parse_model_list(raw_body: str) -> List[RemoteModel]:
    """Normalize a ``GET /models`` body (bare array or ``{"data": [...]}``)."""
    if not raw_body or not raw_body.strip():
        return []
    try:
        root = json.loads(raw_body)
    except ValueError:
        return []
    if isinstance(root, list):
        entries = root
    elif isinstance(root, dict) and isinstance(root.get("data"), list):
        entries = root["data"]
    else:
        return []

    out: List[RemoteModel] = []
    seen: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        model_id = _first_non_blank(entry.get("id"), entry.get("model"), entry.get("name"))
        if model_id is None:
            continue
        model_id = model_id.strip()
        if model_id in seen:
            continue
        name = _first_non_blank(
            entry.get("name"), entry.get("display_name"), entry.get("displayName")
        )
        owned_by = _first_non_blank(
            entry.get("owned_by"), entry.get("publisher"), entry.get("organization")
        )
        endpoint_types: List[str] = []
        raw_types = entry.get("supported_endpoint_types")
        if isinstance(raw_types, list):
            for t in raw_types:
                if isinstance(t, str) and t.strip() and t.strip() not in endpoint_types:
                    endpoint_types.append(t.strip())
        seen.add(model_id)
        out.append(
            RemoteModel(
                id=model_id,
                name=name.strip() if name else model_id,
                owned_by=owned_by.strip() if owned_by else None,
                supported_endpoint_types=endpoint_types,
            )
        )
    return out


def parse_non_streaming_response(body: str) -> str:
    if not body:
        raise TransportError("Empty response")
    try:
        data = json.loads(body)
    except ValueError as e:
        raise TransportError(f"Invalid response format: {body[:200]}") from e
    choice = first_choice(data) if isinstance(data, dict) else None
    if choice is None:
        raise TransportError(f"Invalid response format: {body[:200]}")
    message = as_object(choice.get("message")) or {}
    content = message.get("content")
    return content if isinstance(content, str) else ""


class ChatClient:
    """HTTP surface for one provider configuration.

    Pass a shared ``httpx.AsyncClient`` to pool connections across many
    concurrent streams; otherwise the client owns (and closes) its own.
    """

    def __init__(
        self,
        config: AIConfig,
        http: Optional[httpx.AsyncClient] = None,
        timeout: httpx.Timeout = DEFAULT_TIMEOUT,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    def url(self, endpoint: str) -> str:
        return normalize_base_url(self.config.base_url) + endpoint

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def build_request_body(self, messages: List[Message], stream: bool) -> Dict[str, Any]:
        return {"model": self.config.model_id, "messages": messages, "stream": stream}

    def build_request(self, messages: List[Message], stream: bool = True) -> httpx.Request:
        return self._http.build_request(
            "POST",
            self.url("/chat/completions"),
            headers=self.headers(),
            json=self.build_request_body(messages, stream),
            timeout=self.timeout,
        )

    async def _lines(self, response: httpx.Response) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                yield line
        except httpx.HTTPError as e:
            raise TransportError(_describe(e)) from e

    async def stream_chat_completion(
        self,
        messages: List[Message],
        callbacks: StreamCallbacks,
        is_cancelled: Callable[[], bool] = lambda: False,
    ) -> None:
        """Open a streaming completion and feed it through the SSE decoder.

        Transport failures are reported through ``callbacks.on_error``;
        task cancellation propagates as ``asyncio.CancelledError``.
        """
        request = self.build_request(messages, stream=True)
        logger.debug("chat.stream_open", url=str(request.url), model=self.config.model_id)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            if not is_cancelled():
                logger.warning("chat.stream_error", model=self.config.model_id, error=_describe(e))
                callbacks.on_error(TransportError(_describe(e)))
            return
        try:
            if response.status_code >= 400:
                try:
                    body = (await response.aread()).decode("utf-8", "replace").strip()
                except httpx.HTTPError:
                    body = ""
                if not is_cancelled():
                    error = TransportError(
                        f"API error {response.status_code}: {body or 'Unknown error'}",
                        status_code=response.status_code,
                    )
                    logger.warning(
                        "chat.stream_error", model=self.config.model_id, status=response.status_code
                    )
                    callbacks.on_error(error)
                return
            await decode(self._lines(response), callbacks, is_cancelled)
        finally:
            await response.aclose()

    async def chat_completion(self, messages: List[Message]) -> str:
        request = self.build_request(messages, stream=False)
        try:
            response = await self._http.send(request)
        except httpx.HTTPError as e:
            raise TransportError(_describe(e)) from e
        if response.status_code >= 400:
            raise TransportError(
                f"API error {response.status_code}: {response.text or 'Unknown error'}",
                status_code=response.status_code,
            )
        return parse_non_streaming_response(response.text)

    async def fetch_models(self) -> ModelListResult:
        try:
            response = await self._http.get(
                self.url("/models"), headers=self.headers(), timeout=self.timeout
            )
        except httpx.HTTPError as e:
            return ModelListResult(success=False, response_body=_describe(e) or "Unknown error")
        body = response.text or ""
        if response.status_code >= 400:
            return ModelListResult(
                success=False, response_body=body.strip() or f"HTTP {response.status_code}"
            )
        return ModelListResult(success=True, models=parse_model_list(body), response_body=body)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()
