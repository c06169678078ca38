from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from lexdraft.api.contracts import (
    AgentDraftRequest,
    CompareDocumentsRequest,
    IntelligentDraftRequest,
    TranslationRequest,
)
from lexdraft.api.services.runtime import (
    LLMRuntimeGetter,
    complete_text_or_502,
    get_runtime_or_503,
    llm_http_error,
    require_text,
    stream_or_502,
)
from lexdraft.auth import require_authenticated_user, resolve_user_id
from lexdraft.comparison import compare_documents
from lexdraft.drafting import (
    AGENT_DRAFT_TEMPERATURE,
    INTELLIGENT_DRAFT_TEMPERATURE,
    TRANSLATION_TEMPERATURE,
    build_agent_draft_messages,
    build_intelligent_draft_messages,
    build_translation_messages,
)
from lexdraft.llm_runtime import LLMRuntimeError

logger = logging.getLogger("lexdraft.api")


def build_drafting_router(*, get_llm_runtime: LLMRuntimeGetter) -> APIRouter:
    router = APIRouter(prefix="/ai", tags=["drafting"])

    @router.post("/agent-draft", response_model=None)
    def agent_draft(
        payload: AgentDraftRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> StreamingResponse:
        instructions = require_text(payload.instructions, "Missing required parameter: instructions")
        user_id = resolve_user_id(claims, payload.user_id)
        runtime = get_runtime_or_503(get_llm_runtime)
        logger.info(
            "agent_draft_started",
            extra={"event": "agent_draft_started", "user_id": user_id, "case_id": payload.case_id},
        )
        messages = build_agent_draft_messages(
            instructions,
            document_context=payload.document_context,
            analysis_context=payload.analysis_context,
        )
        return stream_or_502(runtime, messages, model=runtime.default_model, temperature=AGENT_DRAFT_TEMPERATURE)

    @router.post("/intelligent-drafting")
    def intelligent_drafting(payload: IntelligentDraftRequest) -> dict[str, str]:
        if not (payload.draft_type or "").strip() or not (payload.prompt_details or "").strip():
            raise HTTPException(status_code=400, detail="Missing draft_type or prompt_details")
        runtime = get_runtime_or_503(get_llm_runtime)
        messages = build_intelligent_draft_messages(
            str(payload.draft_type),
            str(payload.prompt_details),
            document_context=payload.document_context,
            tone=payload.tone,
            length_preference=payload.length_preference,
        )
        suggestion = complete_text_or_502(
            runtime, messages, model=runtime.default_model, temperature=INTELLIGENT_DRAFT_TEMPERATURE
        )
        return {"draft_suggestion": suggestion}

    @router.post("/translate")
    def translate(payload: TranslationRequest) -> dict[str, str]:
        if not (payload.text_to_translate or "").strip() or not (payload.target_language or "").strip():
            raise HTTPException(status_code=400, detail="Missing text_to_translate or target_language")
        runtime = get_runtime_or_503(get_llm_runtime)
        messages = build_translation_messages(
            str(payload.text_to_translate),
            str(payload.target_language),
            payload.source_language,
        )
        translated = complete_text_or_502(
            runtime, messages, model=runtime.lite_model, temperature=TRANSLATION_TEMPERATURE
        )
        return {"translated_text": translated}

    @router.post("/compare-documents")
    def compare(payload: CompareDocumentsRequest) -> dict[str, object]:
        if not isinstance(payload.text1, str) or not isinstance(payload.text2, str):
            raise HTTPException(status_code=400, detail="Missing or invalid text1 or text2 in request body.")
        if payload.goal is not None and not isinstance(payload.goal, str):
            raise HTTPException(status_code=400, detail="Invalid goal: must be a string.")
        runtime = get_runtime_or_503(get_llm_runtime)
        try:
            return compare_documents(runtime, payload.text1, payload.text2, payload.goal)
        except LLMRuntimeError as exc:
            raise llm_http_error(exc) from exc

    return router
