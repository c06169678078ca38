from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from lexdraft.api.contracts import ClassifyQueryRequest, ResearchRequest, VerifyCitationsRequest
from lexdraft.api.routers.chat import CONVERSATION_ID_HEADER
from lexdraft.api.services.runtime import LLMRuntimeGetter, get_runtime_or_503, llm_http_error, require_text
from lexdraft.auth import require_authenticated_user, resolve_user_id
from lexdraft.chat import build_document_context, conversation_title
from lexdraft.config import settings
from lexdraft.db import create_conversation, create_message, get_conversation, list_context_documents
from lexdraft.llm_runtime import LLMRuntimeError, OpenAIChatRuntime
from lexdraft.research import (
    RESEARCH_TEMPERATURE,
    ResearchSource,
    build_deep_research_context,
    build_research_system_prompt,
    classify_query,
    format_verification_results,
    requests_explicit_search,
    research_messages,
    research_model,
    research_temperature,
    research_title,
    search_legal_sources,
    stream_research_events,
    verify_citations,
)
from lexdraft.streaming import SSE_HEADERS, SSE_MEDIA_TYPE

logger = logging.getLogger("lexdraft.api")


def _research_query(payload: ResearchRequest) -> str:
    query = (payload.query or "").strip()
    if not query and payload.messages and payload.messages[-1].role == "user":
        query = payload.messages[-1].content.strip()
    if not query:
        raise HTTPException(status_code=400, detail="No query provided for research")
    return query


def _owned_conversation(conversation_id: str | None, user_id: str) -> dict[str, object] | None:
    if not conversation_id:
        return None
    conversation = get_conversation(conversation_id)
    if conversation is not None and conversation["owner_id"] != user_id:
        raise HTTPException(status_code=403, detail="Access denied to conversation")
    return conversation


def _resolve_conversation(
    payload: ResearchRequest,
    user_id: str,
    title: str,
) -> tuple[dict[str, object] | None, bool]:
    """Research works without a conversation; one is only started when a case is given."""
    conversation = _owned_conversation(payload.conversation_id, user_id)
    if conversation is not None:
        return conversation, False
    if not payload.case_id:
        return None, False
    conversation = create_conversation(user_id, payload.case_id, title)
    logger.info(
        "conversation_created",
        extra={"event": "conversation_created", "conversation_id": conversation["id"], "case_id": payload.case_id},
    )
    return conversation, True


def _context_documents(
    payload: ResearchRequest,
    conversation: dict[str, object] | None,
    user_id: str,
) -> list[dict[str, object]] | None:
    case_id = (conversation or {}).get("case_id") or payload.case_id
    if not payload.document_context_ids or not case_id:
        return None
    return list_context_documents(payload.document_context_ids, case_id=str(case_id), user_id=user_id)


def _store_verification(runtime: OpenAIChatRuntime, conversation_id: str, answer: str) -> None:
    citations, results = verify_citations(answer, runtime)
    summary = format_verification_results(results)
    logger.info(
        "citations_verified",
        extra={"event": "citations_verified", "found": len(citations), "verified": len(results)},
    )
    if summary:
        create_message(conversation_id, "system", summary)


def build_research_router(*, get_llm_runtime: LLMRuntimeGetter) -> APIRouter:
    router = APIRouter(tags=["research"])

    def research_response(
        *,
        runtime: OpenAIChatRuntime,
        messages: list[dict[str, str]],
        response_type: str,
        model: str,
        temperature: float,
        sources: list[ResearchSource],
        thoughts_enabled: bool,
        conversation: dict[str, object] | None,
        created: bool,
        verify: bool,
    ) -> StreamingResponse:
        try:
            deltas = runtime.stream(messages, model=model, temperature=temperature)
        except LLMRuntimeError as exc:
            raise llm_http_error(exc) from exc

        conversation_id = str(conversation["id"]) if conversation is not None else None

        def store_reply(answer: str) -> None:
            if conversation_id is None or not answer.strip():
                return
            create_message(conversation_id, "assistant", answer)
            if verify:
                _store_verification(runtime, conversation_id, answer)

        headers = dict(SSE_HEADERS)
        if created and conversation_id is not None:
            headers[CONVERSATION_ID_HEADER] = conversation_id
        return StreamingResponse(
            stream_research_events(
                deltas,
                response_type=response_type,
                model=model,
                sources=sources,
                thoughts_enabled=thoughts_enabled,
                on_complete=store_reply,
            ),
            media_type=SSE_MEDIA_TYPE,
            headers=headers,
        )

    @router.post("/research/classify")
    def classify(payload: ClassifyQueryRequest) -> dict[str, str]:
        query = require_text(payload.query, "Missing query")
        runtime = get_runtime_or_503(get_llm_runtime)
        query_type = "research_needed" if requests_explicit_search(query) else classify_query(query, runtime)
        return {"queryType": query_type}

    @router.post("/research", response_model=None)
    def research(
        payload: ResearchRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> StreamingResponse:
        user_id = resolve_user_id(claims, payload.user_id)
        query = _research_query(payload)
        runtime = get_runtime_or_503(get_llm_runtime)

        conversation, created = _resolve_conversation(payload, user_id, conversation_title(query))
        if conversation is not None:
            create_message(str(conversation["id"]), "user", query)

        documents = _context_documents(payload, conversation, user_id)
        document_context = ""
        if documents is not None:
            document_context = build_document_context(
                documents, settings.chat_context_tokens_per_document, requested=True
            )

        forced = requests_explicit_search(query)
        query_type = "research_needed" if forced else classify_query(query, runtime)
        logger.info(
            "research_routed",
            extra={"event": "research_routed", "query_type": query_type, "forced": forced},
        )
        sources = search_legal_sources(query, runtime) if query_type == "research_needed" else []
        system_prompt = build_research_system_prompt(
            query_type,
            document_context=document_context,
            focused_snippet=payload.focused_snippet,
            sources=sources,
            thoughts_enabled=payload.stream_thoughts,
        )
        return research_response(
            runtime=runtime,
            messages=research_messages([m.model_dump() for m in payload.messages], system_prompt, query),
            response_type=query_type,
            model=research_model(query_type, runtime),
            temperature=research_temperature(query_type),
            sources=sources,
            thoughts_enabled=payload.stream_thoughts,
            conversation=conversation,
            created=created,
            verify=query_type != "simple",
        )

    @router.post("/research/deep", response_model=None)
    def deep_research(
        payload: ResearchRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> StreamingResponse:
        user_id = resolve_user_id(claims, payload.user_id)
        query = _research_query(payload)
        runtime = get_runtime_or_503(get_llm_runtime)

        conversation, created = _resolve_conversation(payload, user_id, research_title(query))
        if conversation is not None:
            create_message(str(conversation["id"]), "user", query)

        documents = _context_documents(payload, conversation, user_id)
        system_prompt = build_research_system_prompt(
            "deep_research",
            document_context=build_deep_research_context(documents or []),
            focused_snippet=payload.focused_snippet,
            thoughts_enabled=payload.stream_thoughts,
        )
        return research_response(
            runtime=runtime,
            messages=research_messages([m.model_dump() for m in payload.messages], system_prompt, query),
            response_type="deep_research",
            model=runtime.default_model,
            temperature=RESEARCH_TEMPERATURE,
            sources=[],
            thoughts_enabled=payload.stream_thoughts,
            conversation=conversation,
            created=created,
            verify=False,
        )

    @router.post("/research/verify-citations")
    def verify(
        payload: VerifyCitationsRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        text = require_text(payload.text, "Missing text")
        conversation = None
        if payload.conversation_id:
            conversation = _owned_conversation(payload.conversation_id, resolve_user_id(claims, payload.user_id))
            if conversation is None:
                raise HTTPException(status_code=404, detail="Conversation not found")

        runtime = get_runtime_or_503(get_llm_runtime)
        citations, results = verify_citations(text, runtime)
        summary = format_verification_results(results)
        if conversation is not None and summary:
            create_message(str(conversation["id"]), "system", summary)
        return {
            "citations": [citation.to_dict() for citation in citations],
            "results": results,
            "summary": summary,
        }

    return router
