from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from lexdraft.api.contracts import ExtractVariablesRequest, PrefillVariablesRequest, TemplateFromAIRequest
from lexdraft.api.services.runtime import LLMRuntimeGetter, get_runtime_or_503
from lexdraft.api.services.templating import generate_template_from_instructions
from lexdraft.auth import require_authenticated_user, resolve_user_id
from lexdraft.db import get_case, get_template
from lexdraft.templates import extract_variables_from_json, prefill_variables


def build_templates_router(*, get_llm_runtime: LLMRuntimeGetter) -> APIRouter:
    router = APIRouter(prefix="/templates", tags=["templates"])

    @router.post("/extract-variables")
    def extract_variables(payload: ExtractVariablesRequest) -> dict[str, object]:
        return {"variables": extract_variables_from_json(payload.content)}

    @router.post("/prefill-variables")
    def prefill(
        payload: PrefillVariablesRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        case_data: dict[str, Any] | None = payload.case_data
        if case_data is None and payload.case_id:
            case_data = get_case(payload.case_id)
            # another user's case is indistinguishable from a missing one
            if case_data is None or (claims is not None and case_data["user_id"] != claims.get("sub")):
                raise HTTPException(status_code=404, detail="Case not found")
        return {"variables": prefill_variables(payload.content, case_data)}

    @router.post("/generate")
    def generate_template(
        payload: TemplateFromAIRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        instructions = (payload.instructions or "").strip()
        category = (payload.category or "").strip()
        if not instructions or not category:
            raise HTTPException(status_code=400, detail="Missing instructions or category")
        user_id = resolve_user_id(claims, payload.user_id)
        runtime = get_runtime_or_503(get_llm_runtime)
        return generate_template_from_instructions(
            runtime,
            instructions=instructions,
            category=category,
            user_id=user_id,
        )

    @router.get("/{template_id}")
    def read_template(
        template_id: str,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        template = get_template(template_id)
        if template is None:
            raise HTTPException(status_code=404, detail="Template not found")
        if claims is not None and not template["is_public"] and template["user_id"] != claims.get("sub"):
            raise HTTPException(status_code=404, detail="Template not found")
        return template

    return router
