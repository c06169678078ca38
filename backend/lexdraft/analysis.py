from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from rapidfuzz import fuzz

from lexdraft.llm_runtime import JSON_RESPONSE_FORMAT, ChatMessage, LLMRuntimeError, OpenAIChatRuntime

logger = logging.getLogger("lexdraft.analysis")

ANALYSIS_TEMPERATURE = 0.2
DEFAULT_MAX_CHARS = 20000
POSITIONED_ANALYSIS_KEYS = ("entities", "clauses", "risks", "timeline", "privilegedTerms")
ANALYSIS_TYPES = ("summary", *POSITIONED_ANALYSIS_KEYS, "custom")

_ANALYSIS_PROMPTS: dict[str, tuple[str, str]] = {
    "summary": (
        """You are an expert legal assistant. Your task is to first create a concise, factual summary of the provided legal document text, and then provide a brief, high-level legal analysis of that summary, identifying potential implications or key areas of legal significance mentioned in the summary.

Respond ONLY with a valid JSON object containing two keys:
1. "summary": A string containing the concise, factual summary.
2. "summaryAnalysis": A string containing the brief, high-level legal analysis of the summary.

Focus only on the provided text.""",
        "Generate a summary and a legal analysis of that summary for the following document text, "
        "adhering strictly to the JSON format specified in the system prompt.",
    ),
    "entities": (
        """You are an expert legal entity extraction system.
Your task is to identify and categorize key entities within legal documents.
Focus on entities relevant to legal context and obligations.

Categories:
- PERSON: Individuals' full names (e.g., "Jane Doe"). Avoid pronouns.
- ORGANIZATION: Companies, law firms, government bodies, institutions.
- LOCATION: Cities, states, countries, specific addresses mentioned in a legal context.
- DATE: Specific dates, date ranges, or time references critical to the document.
- AGREEMENT_NAME: Official titles of contracts or agreements referenced.
- COURT: Specific courts or judicial bodies mentioned.
- STATUTE_CITATION: References to laws, codes, or regulations.
- CASE_CITATION: References to specific court cases.
- MONETARY_VALUE: Specific currency amounts relevant to obligations or penalties.
- LEGAL_TERM: Significant legal terms, doctrines, or defined terms within the document.

Respond ONLY with a valid JSON object containing a single key "entities" whose value is an array of objects.
Each object must have the keys "text" (the exact entity string from the document) and "type" (one of the categories above).
If no relevant entities are found, return {"entities": []}.""",
        "Extract entities from the following document text precisely according to the system prompt instructions.",
    ),
    "clauses": (
        """You are an expert legal clause identification system. Your task is to identify and analyze important legal clauses in contracts and agreements. Focus on clauses with significant legal implications (e.g., obligations, restrictions, liabilities, definitions).

Respond ONLY with a valid JSON object containing a single key "clauses" whose value is an array of objects.
Each object must have the keys:
- "title": A concise, descriptive title for the clause.
- "text": The exact, complete text of the identified clause from the document.
- "analysis": A brief (1-2 sentence) analysis of the clause's purpose or key implication.

If no significant clauses are found, return {"clauses": []}.""",
        "Extract and analyze important legal clauses from the following document text, ensuring accuracy of text and analysis.",
    ),
    "risks": (
        """You are an expert legal risk analysis system. Your task is to identify potential legal risks, ambiguities, or unfavorable terms for a hypothetical client reviewing this document.

Respond ONLY with a valid JSON object containing a single key "risks" whose value is an array of objects.
Each object must have the keys:
- "title": A concise title summarizing the risk.
- "severity": One of "Low", "Medium", "High", or "Critical".
- "explanation": A clear explanation of the risk and why it might be concerning.
- "suggestion": (Optional) A brief suggestion for mitigation or clarification.
- "text": The most relevant passage from the original text related to this risk, or null if truly general.

If no significant risks are identified, return {"risks": []}.""",
        "Analyze this document for potential legal risks from the perspective of a party reviewing it.",
    ),
    "timeline": (
        """You are an expert legal timeline extraction system. Identify key events, dates, deadlines, and durations mentioned in the legal document.

Respond ONLY with a valid JSON object containing a single key "timeline" whose value is an array of objects, sorted chronologically if possible.
Each object must have the keys:
- "date": The date or time reference (ISO 8601 YYYY-MM-DD if possible, otherwise the descriptive text).
- "event": A concise description of the event occurring on or by that date.
- "type": (Optional) A category such as "Commencement", "Deadline", "Milestone", "Termination Condition".
- "text": The text passage from the original document describing the event or date.

If no timeline events are found, return {"timeline": []}.""",
        "Extract a chronological timeline of key events, dates, deadlines, and durations from the following document text.",
    ),
    "privilegedTerms": (
        """You are an expert legal privilege identification system. Your task is to identify text segments within the document that might be subject to legal privilege or confidentiality protection (attorney-client communication, work product, trade secrets, confidential settlement details).

Respond ONLY with a valid JSON object containing a single key "privilegedTerms" whose value is an array of objects.
Each object must have the keys:
- "text": The exact text segment identified.
- "category": A suggested category (e.g., "ATTORNEY_CLIENT", "WORK_PRODUCT", "CONFIDENTIAL_BUSINESS_INFO", "SETTLEMENT_DETAIL", "TRADE_SECRET").
- "explanation": A brief (1 sentence) explanation of why this segment might be privileged or confidential.

Focus on flagging, not definitively determining privilege. If no potential terms are found, return {"privilegedTerms": []}.""",
        "Identify potentially privileged or confidential text segments in the following document.",
    ),
}
_CUSTOM_SYSTEM_PROMPT = "You are a helpful legal document analysis assistant."


@dataclass(frozen=True)
class AnalysisOutcome:
    analysis_type: str
    result: Any
    model: str
    usage: dict[str, int]
    parse_error: str | None = None


def truncate_for_analysis(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}\n\n[Document truncated to {max_chars} characters for analysis]"


def build_analysis_messages(
    analysis_type: str,
    text: str,
    *,
    custom_prompt: str | None = None,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> tuple[list[ChatMessage], bool]:
    """Return the chat messages and whether the response is expected to be JSON."""
    document = truncate_for_analysis(text, max_chars)
    prompts = _ANALYSIS_PROMPTS.get(analysis_type)
    if prompts is not None:
        system_prompt, instruction = prompts
        user_prompt = f"{instruction}\n\nDocument Text:\n---\n{document}\n---"
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ], True

    if custom_prompt and custom_prompt.strip():
        user_prompt = f"{custom_prompt.strip()}\n\nDocument Text:\n---\n{document}\n---"
    else:
        user_prompt = f"Please provide a general analysis of the following document:\n---\n{document}\n---"
    return [
        {"role": "system", "content": _CUSTOM_SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ], False


def parse_analysis_payload(analysis_type: str, raw: str) -> tuple[Any, str | None]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {"error": "Failed to parse AI response as JSON.", "raw_response": raw}, str(exc)

    if analysis_type in POSITIONED_ANALYSIS_KEYS:
        if isinstance(parsed, list):
            parsed = {analysis_type: parsed}
        elif isinstance(parsed, dict) and analysis_type not in parsed and "error" not in parsed:
            logger.warning(
                "analysis_expected_key_missing",
                extra={"event": "analysis_expected_key_missing", "analysis_type": analysis_type},
            )
    return parsed, None


def run_document_analysis(
    runtime: OpenAIChatRuntime,
    analysis_type: str,
    text: str,
    *,
    custom_prompt: str | None = None,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> AnalysisOutcome:
    messages, expects_json = build_analysis_messages(
        analysis_type,
        text,
        custom_prompt=custom_prompt,
        max_chars=max_chars,
    )
    completion = runtime.complete(
        messages,
        model=runtime.default_model,
        temperature=ANALYSIS_TEMPERATURE,
        response_format=JSON_RESPONSE_FORMAT if expects_json else None,
    )
    if not completion.text:
        raise LLMRuntimeError("OpenAI returned an empty analysis.")

    if not expects_json:
        return AnalysisOutcome(
            analysis_type=analysis_type,
            result=completion.text,
            model=completion.model,
            usage=completion.usage,
        )

    result, parse_error = parse_analysis_payload(analysis_type, completion.text)
    if parse_error is None:
        annotate_positions(result, text)
    return AnalysisOutcome(
        analysis_type=analysis_type,
        result=result,
        model=completion.model,
        usage=completion.usage,
        parse_error=parse_error,
    )


_QUOTE_TRANSLATION = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})
_SENTENCE_END = re.compile(r"[.!?](?:\s|$)")
_FUZZY_MIN_CHARS = 5


def normalize_text(text: str) -> str:
    return " ".join(text.translate(_QUOTE_TRANSLATION).split())


def fuzzy_threshold(length: int) -> float:
    return min(0.95, 0.70 + min(0.15, length / 100 * 0.05))


def _flexible_pattern(search_text: str) -> re.Pattern[str] | None:
    tokens = normalize_text(search_text).split(" ")
    if not tokens or tokens == [""]:
        return None
    return re.compile(r"\s+".join(re.escape(token) for token in tokens), re.IGNORECASE)


def _fold_case(text: str) -> str:
    # one character in, one character out, so alignment offsets index the original text
    folded: list[str] = []
    for char in text:
        lowered = char.lower()
        folded.append(lowered if len(lowered) == 1 else char)
    return "".join(folded)


def find_fuzzy_position(search_text: str, original_text: str) -> tuple[int, int] | None:
    normalized_search = normalize_text(search_text).lower()
    if len(normalized_search) < _FUZZY_MIN_CHARS:
        return None

    haystack = _fold_case(original_text.translate(_QUOTE_TRANSLATION))
    alignment = fuzz.partial_ratio_alignment(normalized_search, haystack)
    if alignment is None:
        return None
    if alignment.score / 100 < fuzzy_threshold(len(normalized_search)):
        return None

    start, end = alignment.dest_start, alignment.dest_end
    while start < end and original_text[start].isspace():
        start += 1
    while end > start and original_text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end


def find_accurate_position(search_text: str | None, original_text: str) -> tuple[int, int] | None:
    """Locate a model-quoted snippet in the source text.

    Tries an exact match, then a whitespace/case/quote insensitive match, then
    fuzzy alignment, and finally the first sentence of long snippets.
    """
    if not search_text or not original_text:
        return None
    candidate = search_text.strip()
    if not candidate:
        return None

    index = original_text.find(candidate)
    if index != -1:
        return index, index + len(candidate)

    pattern = _flexible_pattern(candidate)
    if pattern is not None:
        match = pattern.search(original_text.translate(_QUOTE_TRANSLATION))
        if match:
            return match.start(), match.end()

    fuzzy = find_fuzzy_position(candidate, original_text)
    if fuzzy is not None:
        return fuzzy

    if len(candidate) > 100:
        sentence_end = _SENTENCE_END.search(candidate)
        if sentence_end is not None:
            first_sentence = candidate[: sentence_end.start() + 1].strip()
            if len(first_sentence) > 20 and first_sentence != candidate:
                return find_accurate_position(first_sentence, original_text)
    return None


def annotate_positions(result: Any, original_text: str) -> None:
    """Add start/end offsets to every positioned item of an analysis result, in place."""
    if not isinstance(result, dict):
        return
    for key in POSITIONED_ANALYSIS_KEYS:
        items = result.get(key)
        if not isinstance(items, list):
            continue
        positioned: list[dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            search_text = item.get("text")
            if key == "risks" and not search_text:
                explanation = item.get("explanation")
                search_text = explanation[:150] if isinstance(explanation, str) else None
            found = find_accurate_position(search_text if isinstance(search_text, str) else None, original_text)
            item["start"], item["end"] = found if found is not None else (None, None)
            positioned.append(item)
        result[key] = positioned
