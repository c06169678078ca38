from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from lexdraft.api.contracts import ChatRequest
from lexdraft.api.services.runtime import LLMRuntimeGetter, get_runtime_or_503, llm_http_error
from lexdraft.auth import require_authenticated_user, resolve_user_id
from lexdraft.chat import (
    CHAT_TEMPERATURE,
    build_chat_messages,
    build_document_context,
    conversation_title,
    resolve_chat_model,
    stream_chat_parts,
)
from lexdraft.config import settings
from lexdraft.db import (
    create_conversation,
    create_message,
    delete_conversations,
    get_conversation,
    list_context_documents,
    list_conversation_ids,
    list_messages,
)
from lexdraft.llm_runtime import LLMRuntimeError
from lexdraft.streaming import DATA_STREAM_MEDIA_TYPE

logger = logging.getLogger("lexdraft.api")

CONVERSATION_ID_HEADER = "X-Conversation-Id"


def _thoughts_requested(header_value: str | None, body_flag: bool) -> bool:
    return body_flag or (header_value or "").strip().lower() == "true"


def _resolve_conversation(payload: ChatRequest, user_id: str, first_message: str) -> tuple[dict[str, object], bool]:
    """Return the conversation for this turn and whether it was just created."""
    if payload.conversation_id:
        existing = get_conversation(payload.conversation_id)
        if existing is not None:
            if existing["owner_id"] != user_id:
                raise HTTPException(status_code=403, detail="Conversation does not belong to the current user")
            return existing, False

    if not payload.case_id:
        raise HTTPException(status_code=400, detail="case_id is required to start a new conversation")
    conversation = create_conversation(user_id, payload.case_id, conversation_title(first_message))
    logger.info(
        "conversation_created",
        extra={"event": "conversation_created", "conversation_id": conversation["id"], "case_id": payload.case_id},
    )
    return conversation, True


def build_chat_router(*, get_llm_runtime: LLMRuntimeGetter) -> APIRouter:
    router = APIRouter(tags=["chat"])

    @router.post("/chat", response_model=None)
    def chat(
        payload: ChatRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
        x_experimental_stream_thoughts: str | None = Header(default=None),
    ) -> StreamingResponse:
        user_id = resolve_user_id(claims, payload.user_id)
        if not payload.messages or payload.messages[-1].role != "user":
            raise HTTPException(status_code=400, detail="The last message must be from the user")
        last_message = payload.messages[-1]
        if not last_message.content.strip():
            raise HTTPException(status_code=400, detail="The last message must not be empty")

        conversation, created = _resolve_conversation(payload, user_id, last_message.content)
        conversation_id = str(conversation["id"])
        create_message(conversation_id, "user", last_message.content, message_id=last_message.id)

        document_context = ""
        case_id = conversation.get("case_id") or payload.case_id
        if payload.document_context_ids and case_id:
            documents = list_context_documents(payload.document_context_ids, case_id=str(case_id), user_id=user_id)
            document_context = build_document_context(
                documents, settings.chat_context_tokens_per_document, requested=True
            )

        thoughts_enabled = _thoughts_requested(x_experimental_stream_thoughts, payload.stream_thoughts)
        messages = build_chat_messages(
            [message.model_dump() for message in payload.messages],
            thoughts_enabled=thoughts_enabled,
            document_context=document_context,
        )
        runtime = get_runtime_or_503(get_llm_runtime)
        model = resolve_chat_model(payload.model_id, runtime.default_model)
        try:
            deltas = runtime.stream(messages, model=model, temperature=CHAT_TEMPERATURE)
        except LLMRuntimeError as exc:
            raise llm_http_error(exc) from exc

        def store_reply(answer: str) -> None:
            if answer.strip():
                create_message(conversation_id, "assistant", answer)

        headers = {CONVERSATION_ID_HEADER: conversation_id} if created else {}
        return StreamingResponse(
            stream_chat_parts(deltas, thoughts_enabled=thoughts_enabled, on_complete=store_reply),
            media_type=DATA_STREAM_MEDIA_TYPE,
            headers=headers,
        )

    @router.get("/conversations/{conversation_id}/messages")
    def read_messages(
        conversation_id: str,
        user_id: str | None = Query(default=None),
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        caller_id = resolve_user_id(claims, user_id)
        conversation = get_conversation(conversation_id)
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        if conversation["owner_id"] != caller_id:
            raise HTTPException(status_code=403, detail="Conversation does not belong to the current user")
        return {"conversation": conversation, "messages": list_messages(conversation_id)}

    @router.delete("/conversations")
    def delete_all_conversations(
        user_id: str | None = Query(default=None),
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        caller_id = resolve_user_id(claims, user_id)
        conversation_ids = list_conversation_ids(caller_id)
        if not conversation_ids:
            return {"message": "No conversations found to delete."}
        deleted = delete_conversations(conversation_ids)
        logger.info(
            "conversations_deleted",
            extra={"event": "conversations_deleted", "deleted_count": deleted},
        )
        return {"success": True, "deleted_count": deleted}

    return router
