from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, Iterator, Mapping

from lexdraft.llm_runtime import ChatMessage
from lexdraft.streaming import DATA_STREAM_CONTENT, ThoughtStreamSplitter, encode_data_stream_part

logger = logging.getLogger("lexdraft.chat")

CHAT_TEMPERATURE = 0.7
DEFAULT_CHAT_MODEL_ALIAS = "default-chat"
MAX_TOTAL_TOKENS_APPROX = 16000
TRUNCATED_MARKER = "... [Truncated]"
DOCUMENTS_UNAVAILABLE_NOTE = "[Selected documents not found or text not available]"
CHAT_ROLES = {"system", "user", "assistant"}

BASE_SYSTEM_PROMPT = (
    "You are a helpful AI paralegal assistant. Your primary goal is to provide accurate and concise answers."
)
THOUGHTS_SYSTEM_PROMPT = """
When responding, first outline your thought process step-by-step. Prefix each step of your thought process with "THOUGHT: " and end it with a newline.
After you have laid out your thought process, provide the final answer to the user, prefixed with "FINAL_ANSWER: ".
Example:
THOUGHT: The user is asking about contract law.
THOUGHT: I need to consider the jurisdiction mentioned.
FINAL_ANSWER: Based on the statutes of [Jurisdiction], ..."""


def estimate_tokens(text: str | None) -> int:
    return math.ceil(len(text or "") / 3.5)


def conversation_title(first_message: str) -> str:
    return f"Chat: {first_message[:50]}..."


def resolve_chat_model(model_id: str | None, default_model: str) -> str:
    candidate = (model_id or "").strip()
    if not candidate or candidate == DEFAULT_CHAT_MODEL_ALIAS:
        return default_model
    return candidate


def _truncate_to_tokens(text: str, max_tokens: int) -> str:
    return text[: max(0, int(max_tokens * 3.5))]


def build_document_context(
    documents: list[Mapping[str, object]],
    tokens_per_document: int,
    *,
    requested: bool = False,
) -> str:
    """Render processed documents into a bounded context block for the system prompt.

    When documents were requested but none are usable, a short note tells the
    model the selection could not be loaded.
    """
    if not documents:
        return DOCUMENTS_UNAVAILABLE_NOTE if requested else ""

    sections: list[str] = ["--- Relevant Document Context ---"]
    for document in documents:
        header = f"[Document: {document.get('filename')} (ID: {document.get('id')})]"
        text = str(document.get("extracted_text") or "")
        if not text.strip():
            sections.append(f"{header} - Text not available or extraction pending/failed")
            continue

        lines: list[str] = [header]
        used_tokens = 0
        for line in text.split("\n"):
            line_tokens = estimate_tokens(line)
            if used_tokens + line_tokens <= tokens_per_document:
                lines.append(line)
                used_tokens += line_tokens
                continue
            remaining = tokens_per_document - used_tokens
            if remaining > 0:
                lines.append(_truncate_to_tokens(line, remaining))
            lines.append(TRUNCATED_MARKER)
            break
        sections.append("\n".join(lines))
    sections.append("--- End Document Context ---")
    return "\n\n".join(sections)


def build_system_prompt(*, thoughts_enabled: bool, document_context: str = "") -> str:
    prompt = BASE_SYSTEM_PROMPT
    if thoughts_enabled:
        prompt += THOUGHTS_SYSTEM_PROMPT
    if document_context:
        prompt += f"\n\n{document_context}"
    return prompt


def trim_history(messages: list[ChatMessage], token_budget: int) -> list[ChatMessage]:
    """Keep the most recent messages that fit in the budget; the newest message is always kept."""
    kept: list[ChatMessage] = []
    used = 0
    for message in reversed(messages):
        cost = estimate_tokens(message["content"])
        if kept and used + cost > token_budget:
            break
        kept.append(message)
        used += cost
    kept.reverse()
    return kept


def build_chat_messages(
    history: Iterable[Mapping[str, object]],
    *,
    thoughts_enabled: bool,
    document_context: str = "",
) -> list[ChatMessage]:
    system_prompt = build_system_prompt(thoughts_enabled=thoughts_enabled, document_context=document_context)
    conversation: list[ChatMessage] = [
        {"role": str(message["role"]), "content": str(message.get("content") or "")}
        for message in history
        if message.get("role") in CHAT_ROLES
    ]
    budget = max(0, MAX_TOTAL_TOKENS_APPROX - estimate_tokens(system_prompt))
    return [{"role": "system", "content": system_prompt}, *trim_history(conversation, budget)]


def stream_chat_parts(
    deltas: Iterable[str],
    *,
    thoughts_enabled: bool,
    on_complete: Callable[[str], None] | None = None,
) -> Iterator[str]:
    """Encode model deltas as data-stream lines, reporting the full answer when the stream ends."""
    splitter = ThoughtStreamSplitter(thoughts_enabled=thoughts_enabled)
    answer: list[str] = []

    def encode(parts: list[tuple[str, str]]) -> Iterator[str]:
        for part_type, text in parts:
            if part_type == DATA_STREAM_CONTENT:
                answer.append(text)
            yield encode_data_stream_part(part_type, text)

    try:
        for delta in deltas:
            yield from encode(splitter.feed(delta))
        yield from encode(splitter.finish())
    except Exception:
        logger.exception("chat_stream_failed", extra={"event": "chat_stream_failed"})
        return

    if on_complete is not None:
        on_complete("".join(answer))
