from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Iterator

import pytest

from lexdraft.api.routers.system import reset_ready_cache
from lexdraft.config import Settings, settings
from lexdraft.llm_runtime import OpenAIChatRuntime

_ISOLATED_FIELDS = (
    "auth_enabled",
    "supabase_jwt_secret",
    "database_url",
    "storage_root",
    "storage_backend",
    "openai_api_key",
    "embedding_mode",
    "embedding_dim",
    "chunk_size_chars",
    "chunk_overlap_chars",
    "max_upload_file_bytes",
    "chat_context_tokens_per_document",
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path) -> Iterator[Settings]:
    original = {name: getattr(settings, name) for name in _ISOLATED_FIELDS}
    settings.auth_enabled = False
    settings.database_url = f"sqlite:///{tmp_path}/test.db"
    settings.storage_root = str(tmp_path / "uploads")
    settings.storage_backend = "local"
    reset_ready_cache()
    yield settings
    for name, value in original.items():
        setattr(settings, name, value)
    reset_ready_cache()


class FakeCompletions:
    """Records chat.completions.create calls and replays canned output."""

    def __init__(self, text: str = "", deltas: list[str] | None = None, error: Exception | None = None) -> None:
        self.text = text
        self.deltas = deltas or []
        self.error = error
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> object:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        if kwargs.get("stream"):
            return iter(
                SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])
                for delta in self.deltas
            )
        return SimpleNamespace(
            model=kwargs.get("model"),
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.text))],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=7, total_tokens=19),
        )


class FakeEmbeddings:
    def __init__(self, vector: list[float] | None = None) -> None:
        self.vector = vector or [0.1, 0.2, 0.3]
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> object:
        self.calls.append(kwargs)
        return SimpleNamespace(data=[SimpleNamespace(embedding=self.vector)])


def fake_openai_client(
    text: str = "",
    *,
    deltas: list[str] | None = None,
    error: Exception | None = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeCompletions(text=text, deltas=deltas, error=error)),
        embeddings=FakeEmbeddings(),
    )


@pytest.fixture()
def install_runtime(monkeypatch: pytest.MonkeyPatch):
    """Route the app's LLM getter to a runtime backed by a fake OpenAI client."""

    def install(
        text: str = "",
        *,
        deltas: list[str] | None = None,
        error: Exception | None = None,
    ) -> SimpleNamespace:
        client = fake_openai_client(text, deltas=deltas, error=error)
        runtime = OpenAIChatRuntime(settings=settings, client=client)
        monkeypatch.setattr("lexdraft.main.get_llm_runtime", lambda: runtime)
        return client

    return install
