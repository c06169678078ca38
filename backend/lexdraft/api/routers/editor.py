from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from lexdraft.api.contracts import (
    FieldSuggestionRequest,
    InlineTextRequest,
    RewriteTextRequest,
    SummarizeTextRequest,
)
from lexdraft.api.services.runtime import (
    LLMRuntimeGetter,
    complete_text_or_502,
    get_runtime_or_503,
    require_text,
    stream_or_502,
)
from lexdraft.editor import (
    FIELD_SUGGESTION_MAX_TOKENS,
    FIELD_SUGGESTION_TEMPERATURE,
    INLINE_TEMPERATURE,
    REWRITE_TEMPERATURE,
    SUMMARIZE_TEMPERATURE,
    build_field_suggestion_messages,
    build_inline_generation_messages,
    build_rewrite_messages,
    build_summarize_messages,
)


def build_editor_router(*, get_llm_runtime: LLMRuntimeGetter) -> APIRouter:
    router = APIRouter(prefix="/ai", tags=["editor"])

    @router.post("/rewrite-text", response_model=None)
    def rewrite_text(payload: RewriteTextRequest) -> StreamingResponse | dict[str, str]:
        text = require_text(payload.text_to_rewrite, "Missing required parameter: text_to_rewrite")
        runtime = get_runtime_or_503(get_llm_runtime)
        messages = build_rewrite_messages(text, payload.mode, payload.instructions, payload.context)
        if payload.stream:
            return stream_or_502(runtime, messages, model=runtime.default_model, temperature=REWRITE_TEMPERATURE)
        result = complete_text_or_502(runtime, messages, model=runtime.default_model, temperature=REWRITE_TEMPERATURE)
        return {"result": result}

    @router.post("/summarize-text", response_model=None)
    def summarize_text(payload: SummarizeTextRequest) -> StreamingResponse | dict[str, str]:
        text = require_text(payload.text_to_summarize, "Missing required parameter: text_to_summarize")
        runtime = get_runtime_or_503(get_llm_runtime)
        messages = build_summarize_messages(text, payload.instructions, payload.context)
        if payload.stream:
            return stream_or_502(runtime, messages, model=runtime.default_model, temperature=SUMMARIZE_TEMPERATURE)
        result = complete_text_or_502(
            runtime, messages, model=runtime.default_model, temperature=SUMMARIZE_TEMPERATURE
        )
        return {"result": result}

    @router.post("/generate-inline-text", response_model=None)
    def generate_inline_text(payload: InlineTextRequest) -> StreamingResponse | dict[str, str]:
        instructions = require_text(payload.instructions, "Missing required parameter: instructions")
        runtime = get_runtime_or_503(get_llm_runtime)
        messages = build_inline_generation_messages(
            instructions,
            selected_text=payload.selected_text,
            surrounding_context=payload.surrounding_context,
        )
        if payload.stream:
            return stream_or_502(runtime, messages, model=runtime.default_model, temperature=INLINE_TEMPERATURE)
        result = complete_text_or_502(runtime, messages, model=runtime.default_model, temperature=INLINE_TEMPERATURE)
        return {"result": result}

    @router.post("/field-suggestion")
    def field_suggestion(payload: FieldSuggestionRequest) -> dict[str, str]:
        prompt = require_text(payload.prompt, "Missing required parameter: prompt")
        runtime = get_runtime_or_503(get_llm_runtime)
        suggestion = complete_text_or_502(
            runtime,
            build_field_suggestion_messages(prompt),
            model=runtime.lite_model,
            temperature=FIELD_SUGGESTION_TEMPERATURE,
            max_tokens=FIELD_SUGGESTION_MAX_TOKENS,
        )
        return {"suggestion": suggestion}

    return router
