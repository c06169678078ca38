from __future__ import annotations

import logging

from fastapi import HTTPException

from lexdraft.api.services.runtime import llm_http_error
from lexdraft.db import create_template
from lexdraft.llm_runtime import LLMRuntimeError, OpenAIChatRuntime
from lexdraft.templates import ensure_span_format, extract_variable_names_from_html, sanitize_template_name

logger = logging.getLogger("lexdraft.api")

TEMPLATE_GENERATION_TEMPERATURE = 0.4
TEMPLATE_GENERATION_MAX_TOKENS = 2000

_TEMPLATE_SYSTEM_PROMPT = """You are an expert legal document drafter. Create a reusable document template from the user's instructions.
Return a JSON object with exactly two keys:
- "name": a short, descriptive template name.
- "content": the template body as HTML (use <h1>-<h3>, <p>, <ul>/<ol>, <strong>).

Mark every value that changes between uses as a variable span:
<span data-variable-name="client_name" data-variable-description="Full legal name of the client" class="variable-highlight">[client_name]</span>
Use snake_case variable names and reuse the same name for the same value."""


def generate_template_from_instructions(
    runtime: OpenAIChatRuntime,
    *,
    instructions: str,
    category: str,
    user_id: str,
) -> dict[str, object]:
    messages = [
        {"role": "system", "content": _TEMPLATE_SYSTEM_PROMPT},
        {"role": "user", "content": f"Template category: {category}\n\nInstructions:\n{instructions}"},
    ]
    try:
        payload = runtime.complete_json(
            messages,
            model=runtime.lite_model,
            temperature=TEMPLATE_GENERATION_TEMPERATURE,
            max_tokens=TEMPLATE_GENERATION_MAX_TOKENS,
        )
    except LLMRuntimeError as exc:
        raise llm_http_error(exc) from exc

    raw_content = payload.get("content")
    if not isinstance(raw_content, str) or not raw_content.strip():
        raise HTTPException(status_code=502, detail="AI returned empty template content.")

    raw_name = payload.get("name")
    name = sanitize_template_name(raw_name) if isinstance(raw_name, str) else ""
    if not name:
        name = f"{category} Template (Generated)"

    content = ensure_span_format(raw_content)
    template = create_template(
        user_id=user_id,
        name=name,
        description=f'AI-generated based on instructions: "{instructions[:100]}..."',
        category=category.lower(),
        content=content,
        variables=extract_variable_names_from_html(content),
        tags=["ai-generated"],
    )
    logger.info(
        "template_generated",
        extra={
            "event": "template_generated",
            "template_id": template["id"],
            "category": template["category"],
        },
    )
    return {"success": True, "template_id": template["id"]}
