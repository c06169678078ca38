from __future__ import annotations

import logging
from typing import Callable, Iterable

from fastapi import HTTPException
from fastapi.responses import StreamingResponse

from lexdraft.llm_runtime import LLMRuntimeError, OpenAIChatRuntime
from lexdraft.retrieval import EmbeddingService
from lexdraft.streaming import SSE_HEADERS, SSE_MEDIA_TYPE, relay_sse

logger = logging.getLogger("lexdraft.api")

LLMRuntimeGetter = Callable[[], OpenAIChatRuntime]
EmbeddingServiceGetter = Callable[[], EmbeddingService]


def require_text(value: str | None, detail: str) -> str:
    if value is None or not value.strip():
        raise HTTPException(status_code=400, detail=detail)
    return value


def llm_http_error(exc: LLMRuntimeError, *, prefix: str = "OpenAI API Error") -> HTTPException:
    if exc.not_found:
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=502, detail=f"{prefix}: {exc}")


def get_runtime_or_503(get_llm_runtime: LLMRuntimeGetter) -> OpenAIChatRuntime:
    try:
        return get_llm_runtime()
    except LLMRuntimeError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def sse_response(chunks: Iterable[str]) -> StreamingResponse:
    return StreamingResponse(relay_sse(chunks), media_type=SSE_MEDIA_TYPE, headers=dict(SSE_HEADERS))


def complete_text_or_502(
    runtime: OpenAIChatRuntime,
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float,
    max_tokens: int | None = None,
) -> str:
    try:
        result = runtime.complete(messages, model=model, temperature=temperature, max_tokens=max_tokens)
    except LLMRuntimeError as exc:
        raise llm_http_error(exc) from exc
    if not result.text:
        raise HTTPException(status_code=502, detail="OpenAI returned an empty response.")
    return result.text


def stream_or_502(
    runtime: OpenAIChatRuntime,
    messages: list[dict[str, str]],
    *,
    model: str,
    temperature: float,
) -> StreamingResponse:
    try:
        deltas = runtime.stream(messages, model=model, temperature=temperature)
    except LLMRuntimeError as exc:
        raise llm_http_error(exc) from exc
    return sse_response(deltas)
