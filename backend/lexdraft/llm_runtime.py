from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

from openai import NotFoundError, OpenAI, OpenAIError

from lexdraft.config import Settings

logger = logging.getLogger("lexdraft.llm")

ChatMessage = dict[str, str]

JSON_RESPONSE_FORMAT = {"type": "json_object"}


class LLMRuntimeError(RuntimeError):
    """Raised when an OpenAI invocation fails or returns unusable output."""

    def __init__(self, message: str, *, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


@dataclass(frozen=True)
class CompletionResult:
    text: str
    model: str
    usage: dict[str, int] = field(default_factory=dict)


class OpenAIChatRuntime:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or self._create_openai_client()

    @property
    def default_model(self) -> str:
        return self._settings.openai_model

    @property
    def lite_model(self) -> str:
        return self._settings.openai_lite_model

    def _create_openai_client(self) -> OpenAI:
        api_key = str(self._settings.openai_api_key or "").strip()
        if not api_key:
            raise LLMRuntimeError("OpenAI API key is not configured (set OPENAI_API_KEY).")
        base_url = str(self._settings.openai_base_url or "").strip() or None
        return OpenAI(api_key=api_key, base_url=base_url, timeout=self._settings.openai_timeout_seconds)

    def complete(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        response_format: dict[str, str] | None = None,
    ) -> CompletionResult:
        model_id = model or self.default_model
        request: dict[str, object] = {
            "model": model_id,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens
        if response_format is not None:
            request["response_format"] = response_format

        started = time.perf_counter()
        try:
            response = self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise self._invoke_failed(model_id, started, exc) from exc

        text = self._extract_text(response)
        usage = self._extract_usage(response)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "llm_invoke_completed",
            extra={
                "event": "llm_invoke_completed",
                "model_id": model_id,
                "duration_ms": duration_ms,
                "prompt_chars": sum(len(message.get("content", "")) for message in messages),
                "response_chars": len(text),
                "json_mode": response_format is not None,
                **usage,
            },
        )
        return CompletionResult(text=text, model=str(getattr(response, "model", None) or model_id), usage=usage)

    def complete_json(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int | None = None,
    ) -> dict[str, object]:
        result = self.complete(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=JSON_RESPONSE_FORMAT,
        )
        if not result.text:
            raise LLMRuntimeError("OpenAI returned an empty response.")
        payload = parse_json_object(result.text)
        if not isinstance(payload, dict):
            raise LLMRuntimeError("OpenAI response must be a JSON object.")
        return payload

    def stream(
        self,
        messages: list[ChatMessage],
        *,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> Iterator[str]:
        """Open a streaming completion and return an iterator over content deltas.

        The request is sent before this returns, so connection and model errors
        raise here rather than after a response has started.
        """
        model_id = model or self.default_model
        request: dict[str, object] = {
            "model": model_id,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        if max_tokens is not None:
            request["max_tokens"] = max_tokens

        started = time.perf_counter()
        try:
            upstream = self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise self._invoke_failed(model_id, started, exc) from exc
        return self._iter_deltas(upstream, model_id, started)

    def embed(self, text: str, *, model: str | None = None) -> list[float]:
        model_id = model or self._settings.openai_embedding_model
        try:
            response = self._client.embeddings.create(model=model_id, input=text)
        except OpenAIError as exc:
            raise LLMRuntimeError(f"OpenAI embedding failed for model '{model_id}': {exc}") from exc
        data = getattr(response, "data", None) or []
        if not data:
            raise LLMRuntimeError("OpenAI embedding response did not contain any vectors.")
        return [float(value) for value in data[0].embedding]

    def _iter_deltas(self, upstream: Any, model_id: str, started: float) -> Iterator[str]:
        response_chars = 0
        try:
            for chunk in upstream:
                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                content = getattr(choices[0].delta, "content", None)
                if content:
                    response_chars += len(content)
                    yield content
        except OpenAIError as exc:
            raise self._invoke_failed(model_id, started, exc) from exc

        logger.info(
            "llm_stream_completed",
            extra={
                "event": "llm_stream_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "response_chars": response_chars,
            },
        )

    @staticmethod
    def _invoke_failed(model_id: str, started: float, exc: Exception) -> LLMRuntimeError:
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        error_text = str(exc)
        logger.warning(
            "llm_invoke_failed",
            extra={
                "event": "llm_invoke_failed",
                "model_id": model_id,
                "duration_ms": duration_ms,
                "error": error_text,
            },
        )
        not_found = isinstance(exc, NotFoundError) or "does not exist or you do not have access" in error_text
        if not_found:
            return LLMRuntimeError(f"Model '{model_id}' not found or access denied.", not_found=True)
        return LLMRuntimeError(f"OpenAI invocation failed for model '{model_id}': {exc}")

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        content = getattr(choices[0].message, "content", None)
        return content.strip() if isinstance(content, str) else ""

    @staticmethod
    def _extract_usage(response: Any) -> dict[str, int]:
        usage = getattr(response, "usage", None)
        if usage is None:
            return {}
        extracted: dict[str, int] = {}
        for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
            value = getattr(usage, key, None)
            if isinstance(value, int):
                extracted[key] = value
        return extracted


def parse_json_object(raw: str) -> Any:
    candidate = raw.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", candidate, flags=re.IGNORECASE | re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as exc:
            raise LLMRuntimeError("Model response contained malformed JSON content.") from exc

    raise LLMRuntimeError("Model response was not valid JSON.")
