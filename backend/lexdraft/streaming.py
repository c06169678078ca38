from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

import httpx

logger = logging.getLogger("lexdraft.streaming")

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
SSE_DONE = "data: [DONE]\n\n"

DATA_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
DATA_STREAM_CONTENT = "0"
DATA_STREAM_THOUGHT = "4"

THOUGHT_MARKER = "THOUGHT:"
FINAL_ANSWER_MARKER = "FINAL_ANSWER:"

_THOUGHT_LINE = re.compile(r"THOUGHT:[ \t]?(.*?)\r?\n")
_DATA_STREAM_LINE = re.compile(r"^(\d+):(.*)$")


def encode_sse_data(content: object) -> str:
    return f"data: {json.dumps(content, ensure_ascii=False)}\n\n"


def encode_sse_event(event: str, payload: object) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def relay_sse(chunks: Iterable[str]) -> Iterator[str]:
    """Relay upstream text deltas as SSE frames and close with the [DONE] sentinel."""
    forwarded = 0
    try:
        for content in chunks:
            if not content:
                continue
            forwarded += 1
            yield encode_sse_data(content)
    except Exception as exc:
        logger.exception(
            "stream_relay_failed",
            extra={"event": "stream_relay_failed", "chunks_forwarded": forwarded},
        )
        yield encode_sse_event("error", {"error": str(exc)})
        return
    yield SSE_DONE


def encode_data_stream_part(part_type: str, text: str) -> str:
    return f"{part_type}:{json.dumps(text, ensure_ascii=False)}\n"


class ThoughtStreamSplitter:
    """Split streamed model output into thoughts and answer content.

    With thoughts enabled the model writes complete ``THOUGHT: ...`` lines and
    then the answer after ``FINAL_ANSWER:``. Partial markers at a chunk
    boundary are held back until the next delta resolves them.
    """

    def __init__(self, *, thoughts_enabled: bool) -> None:
        self._thoughts_enabled = thoughts_enabled
        self._buffer = ""

    def feed(self, delta: str) -> list[tuple[str, str]]:
        self._buffer += delta
        if not self._thoughts_enabled:
            return self._drain_content(len(self._buffer))

        parts: list[tuple[str, str]] = []
        while True:
            stripped = self._buffer.lstrip()
            match = _THOUGHT_LINE.match(stripped)
            if match:
                thought = match.group(1).strip()
                if thought:
                    parts.append((DATA_STREAM_THOUGHT, thought))
                self._buffer = stripped[match.end() :]
                continue
            if stripped.startswith(FINAL_ANSWER_MARKER):
                self._buffer = stripped[len(FINAL_ANSWER_MARKER) :].lstrip()
                continue
            break

        stripped = self._buffer.lstrip()
        if stripped.startswith(THOUGHT_MARKER) or _is_marker_prefix(stripped):
            return parts

        limit = self._buffer.find(THOUGHT_MARKER)
        if limit == -1:
            limit = len(self._buffer) - _trailing_marker_length(self._buffer)
        parts.extend(self._drain_content(limit))
        return parts

    def finish(self) -> list[tuple[str, str]]:
        remaining = self._buffer
        self._buffer = ""
        if self._thoughts_enabled:
            lines = [
                line
                for line in remaining.split("\n")
                if not line.lstrip().startswith((THOUGHT_MARKER, FINAL_ANSWER_MARKER))
            ]
            remaining = "\n".join(lines).strip()
        if not remaining:
            return []
        return [(DATA_STREAM_CONTENT, remaining)]

    def _drain_content(self, limit: int) -> list[tuple[str, str]]:
        if limit <= 0:
            return []
        content = self._buffer[:limit]
        self._buffer = self._buffer[limit:]
        return [(DATA_STREAM_CONTENT, content)] if content else []


def _is_marker_prefix(text: str) -> bool:
    if not text:
        return False
    return any(marker.startswith(text) for marker in (THOUGHT_MARKER, FINAL_ANSWER_MARKER))


def _trailing_marker_length(text: str) -> int:
    longest = 0
    for marker in (THOUGHT_MARKER, FINAL_ANSWER_MARKER):
        for size in range(1, len(marker)):
            if text.endswith(marker[:size]):
                longest = max(longest, size)
    return longest


def parse_sse_chunks(payload: str) -> list[object]:
    chunks: list[object] = []
    for line in payload.split("\n"):
        if not line.startswith("data:"):
            continue
        data = line[5:].strip()
        if not data or data == "[DONE]":
            continue
        try:
            chunks.append(json.loads(data))
        except json.JSONDecodeError:
            chunks.append(data)
    return chunks


def parse_data_stream_line(line: str) -> tuple[str, str] | None:
    match = _DATA_STREAM_LINE.match(line.rstrip("\r"))
    if match is None:
        return None
    part_type, raw = match.groups()
    try:
        decoded: Any = json.loads(raw)
    except json.JSONDecodeError:
        return part_type, raw
    if isinstance(decoded, str):
        return part_type, decoded
    if isinstance(decoded, dict) and isinstance(decoded.get("content"), str):
        return part_type, decoded["content"]
    return part_type, json.dumps(decoded)


@dataclass
class StreamCallbacks:
    on_chunk: Callable[[str], None] | None = None
    on_thought: Callable[[str], None] | None = None
    on_snippets: Callable[[object], None] | None = None
    on_error: Callable[[str], None] | None = None


def consume_function_stream(
    client: httpx.Client,
    path: str,
    payload: dict[str, object],
    callbacks: StreamCallbacks | None = None,
    *,
    headers: dict[str, str] | None = None,
) -> str:
    """POST to a streaming endpoint and collect its text.

    Handles both SSE relays and the ``<type>:<json>`` data-stream protocol,
    chosen by the response content type.
    """
    callbacks = callbacks or StreamCallbacks()
    collected: list[str] = []

    with client.stream("POST", path, json=payload, headers=headers) as response:
        if response.status_code >= 400:
            response.read()
            message = _error_message(response)
            if callbacks.on_error is not None:
                callbacks.on_error(message)
            raise httpx.HTTPStatusError(message, request=response.request, response=response)

        is_sse = response.headers.get("content-type", "").startswith(SSE_MEDIA_TYPE)
        pending_event: str | None = None
        for line in response.iter_lines():
            if is_sse:
                if line.startswith("event:"):
                    pending_event = line[6:].strip()
                    continue
                if not line.startswith("data:"):
                    if not line.strip():
                        pending_event = None
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    decoded: object = json.loads(data)
                except json.JSONDecodeError:
                    decoded = data
                if pending_event == "snippets":
                    if callbacks.on_snippets is not None:
                        callbacks.on_snippets(decoded)
                    continue
                if pending_event == "error":
                    message = decoded.get("error") if isinstance(decoded, dict) else str(decoded)
                    if callbacks.on_error is not None:
                        callbacks.on_error(str(message))
                    break
                text = decoded if isinstance(decoded, str) else json.dumps(decoded)
                collected.append(text)
                if callbacks.on_chunk is not None:
                    callbacks.on_chunk(text)
                continue

            parsed = parse_data_stream_line(line)
            if parsed is None:
                continue
            part_type, text = parsed
            if part_type == DATA_STREAM_THOUGHT:
                if callbacks.on_thought is not None:
                    callbacks.on_thought(text)
                continue
            if part_type == DATA_STREAM_CONTENT:
                collected.append(text)
                if callbacks.on_chunk is not None:
                    callbacks.on_chunk(text)

    return "".join(collected)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("error")
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"
