from __future__ import annotations

from contextvars import ContextVar, Token
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Mapping
from uuid import uuid4


REQUEST_ID_CONTEXT: ContextVar[str] = ContextVar("request_id", default="-")
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
JSON_HANDLER_NAME = "lexdraft-json"

# Credentials and client contact details never reach the log stream.
SECRET_KEY_NAMES = frozenset(
    {
        "authorization",
        "cookie",
        "set_cookie",
        "jwt",
        "apikey",
        "service_role_key",
        "aws_secret_access_key",
        "client_secret",
        "ssn",
        "social_security_number",
        "email",
        "phone",
        "client_email",
        "client_phone",
    }
)
SECRET_KEY_FRAGMENTS = ("password", "secret", "token", "api_key", "access_key", "private_key")

# Document bodies and prompts may carry privileged material; only their size is logged.
PRIVILEGED_CONTENT_KEYS = frozenset(
    {
        "extracted_text",
        "chunk_text",
        "html_content",
        "document_context",
        "analysis_context",
        "prompt_details",
        "text_to_rewrite",
        "text_to_summarize",
        "text_to_translate",
        "text1",
        "text2",
    }
)

_VALUE_REDACTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), "[REDACTED_JWT]"),
    (re.compile(r"\bsk-(?:proj-)?[A-Za-z0-9_-]{20,}"), "[REDACTED_API_KEY]"),
    (re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"), "[REDACTED_AWS_ACCESS_KEY]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[REDACTED_EMAIL]"),
    (re.compile(r"\b(?:\+?1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)\d{3}[-.\s]?\d{4}\b"), "[REDACTED_PHONE]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[REDACTED_SSN]"),
)


def normalize_request_id(candidate: str | None) -> str:
    trimmed = (candidate or "").strip()
    if trimmed and REQUEST_ID_PATTERN.fullmatch(trimmed):
        return trimmed
    return str(uuid4())


def set_request_id(request_id: str) -> Token[str]:
    return REQUEST_ID_CONTEXT.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    REQUEST_ID_CONTEXT.reset(token)


def get_request_id() -> str:
    return REQUEST_ID_CONTEXT.get()


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace("-", "_")


def _is_secret_key(normalized_key: str) -> bool:
    return normalized_key in SECRET_KEY_NAMES or any(
        fragment in normalized_key for fragment in SECRET_KEY_FRAGMENTS
    )


def redact_text(value: str, *, max_length: int = 240) -> str:
    for pattern, replacement in _VALUE_REDACTIONS:
        value = pattern.sub(replacement, value)
    if len(value) > max_length:
        return f"{value[:max_length]}...[truncated]"
    return value


def sanitize_for_logging(value: Any, *, max_string_length: int = 240) -> Any:
    """Return a copy of ``value`` that is safe to serialize into a log line."""
    if isinstance(value, Mapping):
        sanitized: dict[str, Any] = {}
        for key, item in value.items():
            key_text = str(key)
            normalized = _normalize_key(key_text)
            if _is_secret_key(normalized):
                sanitized[key_text] = "[REDACTED]"
            elif normalized in PRIVILEGED_CONTENT_KEYS and isinstance(item, str):
                sanitized[key_text] = f"[WITHHELD {len(item)} chars]"
            else:
                sanitized[key_text] = sanitize_for_logging(item, max_string_length=max_string_length)
        return sanitized
    if isinstance(value, (list, tuple)):
        items = [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
        return items if isinstance(value, list) else tuple(items)
    if isinstance(value, bytes):
        return f"[{len(value)} bytes]"
    if isinstance(value, str):
        return redact_text(value, max_length=max_string_length)
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = get_request_id()
        return True


_RESERVED_RECORD_ATTRS = frozenset(logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields are sanitized and merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", get_request_id()),
        }
        payload.update(
            {
                key: sanitize_for_logging(value)
                for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_ATTRS and key not in payload
            }
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    if any(handler.get_name() == JSON_HANDLER_NAME for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.set_name(JSON_HANDLER_NAME)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
