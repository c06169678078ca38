from __future__ import annotations

import httpx
import openai
import pytest

from conftest import fake_openai_client
from lexdraft.config import settings
from lexdraft.llm_runtime import LLMRuntimeError, OpenAIChatRuntime, parse_json_object

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def test_complete_sends_expected_request_and_extracts_usage() -> None:
    client = fake_openai_client("  Drafted clause.  ")
    runtime = OpenAIChatRuntime(settings=settings, client=client)

    result = runtime.complete(
        [{"role": "user", "content": "Draft"}],
        model=runtime.lite_model,
        temperature=0.5,
        max_tokens=150,
    )

    assert result.text == "Drafted clause."
    assert result.model == settings.openai_lite_model
    assert result.usage == {"prompt_tokens": 12, "completion_tokens": 7, "total_tokens": 19}
    call = client.chat.completions.calls[0]
    assert call["max_tokens"] == 150
    assert call["temperature"] == 0.5
    assert "response_format" not in call


def test_complete_json_uses_json_mode_and_tolerates_fences() -> None:
    client = fake_openai_client('```json\n{"summary": "ok"}\n```')
    runtime = OpenAIChatRuntime(settings=settings, client=client)

    payload = runtime.complete_json([{"role": "user", "content": "Compare"}])

    assert payload == {"summary": "ok"}
    assert client.chat.completions.calls[0]["response_format"] == {"type": "json_object"}
    assert client.chat.completions.calls[0]["model"] == settings.openai_model


def test_complete_json_rejects_non_object_payloads() -> None:
    runtime = OpenAIChatRuntime(settings=settings, client=fake_openai_client("[1, 2]"))
    with pytest.raises(LLMRuntimeError):
        runtime.complete_json([{"role": "user", "content": "x"}])


def test_stream_yields_content_deltas_only() -> None:
    client = fake_openai_client(deltas=["Hel", "", "lo"])
    runtime = OpenAIChatRuntime(settings=settings, client=client)

    deltas = list(runtime.stream([{"role": "user", "content": "Hi"}], temperature=0.3))

    assert deltas == ["Hel", "lo"]
    assert client.chat.completions.calls[0]["stream"] is True


def test_stream_raises_before_iteration_when_request_fails() -> None:
    error = openai.APIConnectionError(request=_REQUEST)
    runtime = OpenAIChatRuntime(settings=settings, client=fake_openai_client(error=error))
    with pytest.raises(LLMRuntimeError) as excinfo:
        runtime.stream([{"role": "user", "content": "Hi"}])
    assert excinfo.value.not_found is False


def test_missing_model_is_flagged_as_not_found() -> None:
    error = openai.NotFoundError(
        "The model `gpt-unknown` does not exist or you do not have access to it.",
        response=httpx.Response(404, request=_REQUEST),
        body=None,
    )
    runtime = OpenAIChatRuntime(settings=settings, client=fake_openai_client(error=error))
    with pytest.raises(LLMRuntimeError) as excinfo:
        runtime.complete([{"role": "user", "content": "Hi"}], model="gpt-unknown")
    assert excinfo.value.not_found is True
    assert "gpt-unknown" in str(excinfo.value)


def test_embed_returns_first_vector() -> None:
    client = fake_openai_client()
    runtime = OpenAIChatRuntime(settings=settings, client=client)
    assert runtime.embed("clause text") == [0.1, 0.2, 0.3]
    assert client.embeddings.calls[0]["model"] == settings.openai_embedding_model


def test_runtime_requires_api_key_without_injected_client() -> None:
    settings.openai_api_key = ""
    with pytest.raises(LLMRuntimeError, match="OPENAI_API_KEY"):
        OpenAIChatRuntime(settings=settings)


def test_parse_json_object_extracts_braced_payload() -> None:
    assert parse_json_object('Here you go: {"a": 1} thanks') == {"a": 1}
    with pytest.raises(LLMRuntimeError):
        parse_json_object("no json here")
