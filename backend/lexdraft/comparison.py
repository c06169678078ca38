from __future__ import annotations

import logging

from lexdraft.llm_runtime import ChatMessage, LLMRuntimeError, OpenAIChatRuntime

logger = logging.getLogger("lexdraft.comparison")

COMPARISON_TEMPERATURE = 0.2
COMPARISON_MAX_TOKENS = 1500

_DIFFERENCE_KEYS = ("area", "originalSnippet", "modifiedSnippet", "observation")


def _system_prompt(goal: str | None) -> str:
    if goal:
        focus = (
            f'THE USER HAS A SPECIFIC GOAL FOR THIS COMPARISON: "{goal}". Prioritize differences MOST '
            'RELEVANT to this goal in the "focusedDifferences" array. If no differences directly relate '
            "to the goal, this array can be empty."
        )
    else:
        focus = "If no specific goal is provided, identify the most significant differences."

    return f"""You are an expert legal AI assistant specializing in document comparison.
Your task is to analyze two versions of a text (TEXT 1 and TEXT 2).
You must return a JSON object with two top-level keys: "summary" and "focusedDifferences".

1. "summary": A concise overall summary of the key differences between the two texts.
   Focus on substantial changes, additions, deletions, and modifications in meaning or substance.
   Ignore minor formatting changes unless they significantly alter readability or structure.
   Present the summary as a single coherent paragraph, not a list.

2. "focusedDifferences": An array of JSON objects, each detailing a specific difference.
   {focus}
   Each object must have the keys:
   - "area": (string) what aspect the difference relates to (e.g. "Payment Deadline", "Liability Clause").
   - "originalSnippet": (string) the concise relevant snippet from TEXT 1; empty for pure additions.
   - "modifiedSnippet": (string) the corresponding snippet from TEXT 2; empty for pure deletions.
   - "observation": (string) a brief explanation of the difference or inconsistency.

If no specific differences are found, return an empty array for "focusedDifferences" but still provide a "summary".
Ensure your entire response is a single valid JSON object with no text outside it."""


def build_comparison_messages(text1: str, text2: str, goal: str | None = None) -> list[ChatMessage]:
    cleaned_goal = (goal or "").strip() or None
    user_prompt = "Analyze the differences between TEXT 1 and TEXT 2."
    if cleaned_goal:
        user_prompt += f' Pay special attention to aspects related to: "{cleaned_goal}".'
    user_prompt += (
        f"\n\n--- TEXT 1 (Original) START ---\n{text1}\n--- TEXT 1 (Original) END ---"
        f"\n\n--- TEXT 2 (Modified) START ---\n{text2}\n--- TEXT 2 (Modified) END ---"
        '\n\nReturn your analysis as a JSON object with "summary" and "focusedDifferences" keys.'
    )
    return [
        {"role": "system", "content": _system_prompt(cleaned_goal)},
        {"role": "user", "content": user_prompt},
    ]


def normalize_comparison_payload(payload: dict[str, object]) -> dict[str, object]:
    summary = payload.get("summary")
    differences = payload.get("focusedDifferences")
    if not isinstance(summary, str) or not isinstance(differences, list):
        raise LLMRuntimeError(
            "AI response did not match the expected comparison structure (summary and focusedDifferences)."
        )

    normalized: list[dict[str, str]] = []
    for index, item in enumerate(differences):
        if not isinstance(item, dict):
            logger.warning(
                "comparison_difference_skipped",
                extra={"event": "comparison_difference_skipped", "index": index, "reason": "not_an_object"},
            )
            continue
        missing = [key for key in _DIFFERENCE_KEYS if not isinstance(item.get(key), str)]
        if missing:
            logger.warning(
                "comparison_difference_incomplete",
                extra={"event": "comparison_difference_incomplete", "index": index, "missing_keys": missing},
            )
        normalized.append(
            {
                "area": str(item.get("area") or ""),
                "original_snippet": str(item.get("originalSnippet") or ""),
                "modified_snippet": str(item.get("modifiedSnippet") or ""),
                "observation": str(item.get("observation") or ""),
            }
        )
    return {"summary": summary, "focused_differences": normalized}


def compare_documents(
    runtime: OpenAIChatRuntime,
    text1: str,
    text2: str,
    goal: str | None = None,
) -> dict[str, object]:
    payload = runtime.complete_json(
        build_comparison_messages(text1, text2, goal),
        model=runtime.default_model,
        temperature=COMPARISON_TEMPERATURE,
        max_tokens=COMPARISON_MAX_TOKENS,
    )
    return normalize_comparison_payload(payload)
