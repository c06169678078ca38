from __future__ import annotations

import httpx
import openai
from fastapi.testclient import TestClient

from lexdraft.chat import (
    DOCUMENTS_UNAVAILABLE_NOTE,
    TRUNCATED_MARKER,
    build_chat_messages,
    build_document_context,
    conversation_title,
    resolve_chat_model,
    stream_chat_parts,
    trim_history,
)
from lexdraft.main import app

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _chat(client: TestClient, content: str, **extra: object) -> httpx.Response:
    body: dict[str, object] = {
        "messages": [{"role": "user", "content": content}],
        "case_id": "case-1",
        "user_id": "user-1",
    }
    body.update(extra)
    return client.post("/chat", json=body)


def test_resolve_chat_model_maps_default_alias() -> None:
    assert resolve_chat_model(None, "gpt-4o") == "gpt-4o"
    assert resolve_chat_model("default-chat", "gpt-4o") == "gpt-4o"
    assert resolve_chat_model(" gpt-4o-mini ", "gpt-4o") == "gpt-4o-mini"


def test_conversation_title_uses_first_fifty_characters() -> None:
    assert conversation_title("x" * 80) == f"Chat: {'x' * 50}..."


def test_build_document_context_truncates_per_document() -> None:
    documents = [
        {"id": "d1", "filename": "lease.txt", "extracted_text": "short line\n" + "y" * 70},
        {"id": "d2", "filename": "scan.pdf", "extracted_text": ""},
    ]

    context = build_document_context(documents, tokens_per_document=10)

    assert context.startswith("--- Relevant Document Context ---")
    assert "[Document: lease.txt (ID: d1)]\nshort line\n" in context
    assert TRUNCATED_MARKER in context
    assert "y" * 29 not in context
    assert "[Document: scan.pdf (ID: d2)] - Text not available or extraction pending/failed" in context
    assert context.endswith("--- End Document Context ---")
    assert build_document_context([], 10) == ""
    assert build_document_context([], 10, requested=True) == DOCUMENTS_UNAVAILABLE_NOTE


def test_trim_history_keeps_newest_messages_within_budget() -> None:
    messages = [
        {"role": "user", "content": "a" * 35},
        {"role": "assistant", "content": "b" * 35},
        {"role": "user", "content": "c" * 35},
    ]
    assert [m["content"][0] for m in trim_history(messages, 20)] == ["b", "c"]
    assert [m["content"][0] for m in trim_history(messages, 0)] == ["c"]


def test_build_chat_messages_adds_system_prompt_and_drops_unknown_roles() -> None:
    messages = build_chat_messages(
        [{"role": "tool", "content": "x"}, {"role": "user", "content": "Hi"}],
        thoughts_enabled=True,
        document_context="--- Relevant Document Context ---",
    )
    assert [m["role"] for m in messages] == ["system", "user"]
    assert "THOUGHT: " in messages[0]["content"]
    assert messages[0]["content"].endswith("--- Relevant Document Context ---")


def test_stream_chat_parts_reports_answer_on_completion() -> None:
    completed: list[str] = []
    lines = list(stream_chat_parts(iter(["Thirty ", "days."]), thoughts_enabled=False, on_complete=completed.append))
    assert lines == ['0:"Thirty "\n', '0:"days."\n']
    assert completed == ["Thirty days."]


def test_stream_chat_parts_stops_quietly_on_upstream_error() -> None:
    def deltas():
        yield "partial"
        raise RuntimeError("reset")

    completed: list[str] = []
    lines = list(stream_chat_parts(deltas(), thoughts_enabled=False, on_complete=completed.append))
    assert lines == ['0:"partial"\n']
    assert completed == []


def test_chat_creates_conversation_and_persists_messages(install_runtime) -> None:
    fake_client = install_runtime(deltas=["Notice is ", "thirty days."])
    with TestClient(app) as client:
        response = _chat(client, "What is the notice period?")
        conversation_id = response.headers["x-conversation-id"]
        history = client.get(f"/conversations/{conversation_id}/messages", params={"user_id": "user-1"})

    assert response.status_code == 200
    assert response.text == '0:"Notice is "\n0:"thirty days."\n'
    assert response.headers["content-type"].startswith("text/plain")
    payload = history.json()
    assert payload["conversation"]["title"] == "Chat: What is the notice period?..."
    assert [(m["role"], m["content"]) for m in payload["messages"]] == [
        ("user", "What is the notice period?"),
        ("assistant", "Notice is thirty days."),
    ]
    call = fake_client.chat.completions.calls[0]
    assert call["temperature"] == 0.7
    assert call["model"] == "gpt-4o"
    assert call["messages"][0]["role"] == "system"


def test_chat_continues_existing_conversation_without_header(install_runtime) -> None:
    install_runtime(deltas=["ok"])
    with TestClient(app) as client:
        conversation_id = _chat(client, "First question").headers["x-conversation-id"]
        follow_up = _chat(client, "Second question", conversation_id=conversation_id)
        other_owner = client.post(
            "/chat",
            json={
                "messages": [{"role": "user", "content": "Hijack"}],
                "conversation_id": conversation_id,
                "user_id": "user-2",
            },
        )
        forbidden_history = client.get(f"/conversations/{conversation_id}/messages", params={"user_id": "user-2"})
        missing_history = client.get("/conversations/nope/messages", params={"user_id": "user-1"})

    assert follow_up.status_code == 200
    assert "x-conversation-id" not in follow_up.headers
    assert other_owner.status_code == 403
    assert forbidden_history.status_code == 403
    assert missing_history.status_code == 404


def test_chat_validation_errors(install_runtime) -> None:
    install_runtime(deltas=["unused"])
    with TestClient(app) as client:
        assistant_last = client.post(
            "/chat",
            json={"messages": [{"role": "assistant", "content": "Hi"}], "case_id": "c", "user_id": "user-1"},
        )
        blank = _chat(client, "   ")
        no_case = client.post(
            "/chat",
            json={"messages": [{"role": "user", "content": "Hi"}], "user_id": "user-1"},
        )
        anonymous = client.post("/chat", json={"messages": [{"role": "user", "content": "Hi"}], "case_id": "c"})

    assert assistant_last.status_code == 400
    assert assistant_last.json()["detail"] == "The last message must be from the user"
    assert blank.status_code == 400
    assert no_case.status_code == 400
    assert no_case.json()["detail"] == "case_id is required to start a new conversation"
    assert anonymous.status_code == 401


def test_chat_includes_processed_case_documents(install_runtime) -> None:
    fake_client = install_runtime(deltas=["Answer"])
    with TestClient(app) as client:
        upload = client.post(
            "/documents",
            files={"file": ("lease.txt", b"Rent is due on the first of each month.", "text/plain")},
            data={"user_id": "user-1", "case_id": "case-1"},
        )
        document_id = upload.json()["document"]["id"]
        _chat(client, "When is rent due?", document_context_ids=[document_id, "unknown-id"])

    system_prompt = fake_client.chat.completions.calls[0]["messages"][0]["content"]
    assert f"[Document: lease.txt (ID: {document_id})]" in system_prompt
    assert "Rent is due on the first of each month." in system_prompt


def test_chat_notes_when_selected_documents_are_unavailable(install_runtime) -> None:
    fake_client = install_runtime(deltas=["Answer"])
    with TestClient(app) as client:
        _chat(client, "Summarize my lease", document_context_ids=["unknown-id"])

    system_prompt = fake_client.chat.completions.calls[0]["messages"][0]["content"]
    assert system_prompt.endswith(DOCUMENTS_UNAVAILABLE_NOTE)
    assert "--- Relevant Document Context ---" not in system_prompt


def test_chat_streams_thoughts_when_requested_in_body(install_runtime) -> None:
    install_runtime(deltas=["THOUGHT: Check the lease\nFINAL_ANSWER: Monthly."])
    with TestClient(app) as client:
        response = _chat(client, "How often is rent paid?", stream_thoughts=True)
    assert response.text == '4:"Check the lease"\n0:"Monthly."\n'


def test_chat_unknown_model_returns_not_found(install_runtime) -> None:
    install_runtime(
        error=openai.NotFoundError(
            "The model `gpt-missing` does not exist",
            response=httpx.Response(404, request=_REQUEST),
            body=None,
        )
    )
    with TestClient(app) as client:
        response = _chat(client, "Hi", model_id="gpt-missing")
    assert response.status_code == 404


def test_delete_all_conversations(install_runtime) -> None:
    install_runtime(deltas=["ok"])
    with TestClient(app) as client:
        nothing = client.delete("/conversations", params={"user_id": "user-1"})
        _chat(client, "One")
        _chat(client, "Two")
        deleted = client.delete("/api/conversations", params={"user_id": "user-1"})
        again = client.delete("/conversations", params={"user_id": "user-1"})

    assert nothing.json() == {"message": "No conversations found to delete."}
    assert deleted.json() == {"success": True, "deleted_count": 2}
    assert again.json() == {"message": "No conversations found to delete."}
