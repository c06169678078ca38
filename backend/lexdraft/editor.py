from __future__ import annotations

from lexdraft.llm_runtime import ChatMessage

REWRITE_TEMPERATURE = 0.5
SUMMARIZE_TEMPERATURE = 0.3
INLINE_TEMPERATURE = 0.6
FIELD_SUGGESTION_TEMPERATURE = 0.5
FIELD_SUGGESTION_MAX_TOKENS = 150

REWRITE_MODE_PROMPTS: dict[str, str] = {
    "shorten": "Rewrite the following text to be significantly shorter and more concise, while preserving the core meaning and key information.",
    "expand": "Expand upon the following text, adding more detail, depth, and explanation, while maintaining the original tone and intent.",
    "professional": "Rewrite the following text in a more professional and polished tone, suitable for business or formal communication.",
    "formal": "Rewrite the following text using formal language, appropriate for legal documents or academic papers. Avoid contractions and colloquialisms.",
    "simple": "Rewrite the following text using simpler language and sentence structures, making it easier to understand for a general audience. Avoid jargon.",
    "improve": "Improve the following text by enhancing clarity, flow, grammar, and word choice. Correct any errors and make it more readable and effective.",
}
DEFAULT_REWRITE_MODE = "improve"

REWRITE_SYSTEM_PROMPT = (
    "You are an expert legal writing assistant. Return only the rewritten text, "
    "with no preamble, explanation, or surrounding quotes."
)
SUMMARIZE_SYSTEM_PROMPT = (
    "You are an expert legal analyst who writes precise summaries. Format the summary as clean HTML "
    "paragraphs and lists, and emphasize key parties, dates, obligations, and amounts with <strong> tags. "
    "Do not wrap the output in code fences."
)
INLINE_SYSTEM_PROMPT = (
    "You are a legal drafting assistant embedded in a document editor. Generate only the text to insert "
    "at the cursor, matching the surrounding document's tone and formatting. Do not add commentary."
)
FIELD_SUGGESTION_SYSTEM_PROMPT = (
    "You are an assistant that fills in a single form field for a legal practice application. "
    "Respond with only the suggested field value: concise, factual, and without explanation."
)


def _context_block(context: str | None) -> str:
    if not context or not context.strip():
        return ""
    return f"\n\n--- CONTEXT START ---\n{context.strip()}\n--- CONTEXT END ---"


def build_rewrite_prompt(text: str, mode: str | None, instructions: str | None = None, context: str | None = None) -> str:
    normalized_mode = (mode or DEFAULT_REWRITE_MODE).strip().lower()
    custom_instructions = (instructions or "").strip()

    if normalized_mode == "custom":
        if custom_instructions:
            prompt = f"Rewrite the following text according to these instructions: {custom_instructions}"
        else:
            prompt = REWRITE_MODE_PROMPTS[DEFAULT_REWRITE_MODE]
    else:
        prompt = REWRITE_MODE_PROMPTS.get(normalized_mode, REWRITE_MODE_PROMPTS[DEFAULT_REWRITE_MODE])
        if custom_instructions:
            prompt += f"\n\nAdditional Instructions: {custom_instructions}"

    prompt += _context_block(context)
    prompt += f"\n\n--- TEXT START ---\n{text}\n--- TEXT END ---"
    return prompt


def build_rewrite_messages(
    text: str,
    mode: str | None,
    instructions: str | None = None,
    context: str | None = None,
) -> list[ChatMessage]:
    return [
        {"role": "system", "content": REWRITE_SYSTEM_PROMPT},
        {"role": "user", "content": build_rewrite_prompt(text, mode, instructions, context)},
    ]


def build_summarize_messages(
    text: str,
    instructions: str | None = None,
    context: str | None = None,
) -> list[ChatMessage]:
    prompt = "Summarize the following text, capturing its essential points."
    if instructions and instructions.strip():
        prompt += f"\n\nSummary Instructions: {instructions.strip()}"
    prompt += _context_block(context)
    prompt += f"\n\n--- TEXT START ---\n{text}\n--- TEXT END ---"
    return [
        {"role": "system", "content": SUMMARIZE_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def build_inline_generation_messages(
    instructions: str,
    selected_text: str | None = None,
    surrounding_context: str | None = None,
) -> list[ChatMessage]:
    prompt = f"Instructions: {instructions.strip()}"
    if selected_text and selected_text.strip():
        prompt += f"\n\n--- SELECTED TEXT START ---\n{selected_text}\n--- SELECTED TEXT END ---"
    if surrounding_context and surrounding_context.strip():
        prompt += f"\n\n--- SURROUNDING CONTEXT START ---\n{surrounding_context}\n--- SURROUNDING CONTEXT END ---"
    return [
        {"role": "system", "content": INLINE_SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def build_field_suggestion_messages(prompt: str) -> list[ChatMessage]:
    return [
        {"role": "system", "content": FIELD_SUGGESTION_SYSTEM_PROMPT},
        {"role": "user", "content": prompt.strip()},
    ]
