from __future__ import annotations

from lexdraft.llm_runtime import ChatMessage

AGENT_DRAFT_TEMPERATURE = 0.3
INTELLIGENT_DRAFT_TEMPERATURE = 0.7
TRANSLATION_TEMPERATURE = 0.3

AGENT_DRAFT_SYSTEM_PROMPT = (
    "You are a paralegal AI assistant. Draft legal documents, emails, or letters as instructed. "
    "Use any provided context. Be clear, professional, and legally accurate. "
    "Use HTML <strong> tags for bold text instead of markdown asterisks."
)
INTELLIGENT_DRAFT_SYSTEM_PROMPT = (
    "You are an AI assistant for a legal professional. "
    "Your drafts should be clear, concise, and professionally appropriate."
)
TRANSLATION_SYSTEM_PROMPT = "You are a helpful translation assistant."


def build_agent_draft_messages(
    instructions: str,
    *,
    document_context: str | None = None,
    analysis_context: str | None = None,
) -> list[ChatMessage]:
    context_prompt = ""
    if document_context and document_context.strip():
        context_prompt += f"Relevant document context:\n{document_context.strip()}\n\n"
    if analysis_context and analysis_context.strip():
        context_prompt += f"Relevant analysis context:\n{analysis_context.strip()}\n\n"
    return [
        {"role": "system", "content": AGENT_DRAFT_SYSTEM_PROMPT},
        {"role": "user", "content": f"{context_prompt}Drafting instructions: {instructions.strip()}"},
    ]


def build_intelligent_draft_messages(
    draft_type: str,
    prompt_details: str,
    *,
    document_context: str | None = None,
    tone: str | None = None,
    length_preference: str | None = None,
) -> list[ChatMessage]:
    lines = [
        f"Generate a first draft for a {draft_type.strip()}.",
        f'Key points to convey: "{prompt_details.strip()}".',
    ]
    if document_context and document_context.strip():
        lines.append(f'Consider the following context from a document: "{document_context.strip()}".')
    if tone and tone.strip():
        lines.append(f"The tone should be {tone.strip()}.")
    if length_preference and length_preference.strip():
        lines.append(f"The desired length is {length_preference.strip()}.")
    return [
        {"role": "system", "content": INTELLIGENT_DRAFT_SYSTEM_PROMPT},
        {"role": "user", "content": "\n".join(lines)},
    ]


def build_translation_messages(
    text: str,
    target_language: str,
    source_language: str | None = None,
) -> list[ChatMessage]:
    if source_language and source_language.strip():
        instruction = f"Translate the following text from {source_language.strip()} to {target_language.strip()}:"
    else:
        instruction = f"Detect the language and translate the following text to {target_language.strip()}:"
    return [
        {"role": "system", "content": TRANSLATION_SYSTEM_PROMPT},
        {"role": "user", "content": f'{instruction}\n\n"{text}"'},
    ]
