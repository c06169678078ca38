from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Literal, Mapping

from lexdraft.chat import THOUGHTS_SYSTEM_PROMPT
from lexdraft.llm_runtime import ChatMessage, LLMRuntimeError, OpenAIChatRuntime
from lexdraft.streaming import DATA_STREAM_THOUGHT, SSE_DONE, ThoughtStreamSplitter, encode_sse_data

logger = logging.getLogger("lexdraft.research")

QueryType = Literal["simple", "complex", "research_needed"]
QUERY_TYPES: tuple[str, ...] = ("simple", "complex", "research_needed")
DEFAULT_QUERY_TYPE: QueryType = "complex"

RESEARCH_KEYWORDS = (
    "recent case",
    "recent ruling",
    "current law",
    "latest regulation",
    "new legislation",
    "current statute",
    "latest precedent",
    "search for",
    "find cases",
    "research on",
    "look up",
    "latest developments",
    "2023",
    "2024",
    "2025",
)
EXPLICIT_SEARCH_TERMS = (
    "search the web",
    "search for",
    "look up",
    "find information",
    "search online",
    "web search",
    "internet search",
)

SIMPLE_TEMPERATURE = 0.3
COMPLEX_TEMPERATURE = 0.2
RESEARCH_TEMPERATURE = 0.3
SEARCH_TEMPERATURE = 0.2
SEARCH_MAX_TOKENS = 2000
CLASSIFY_MAX_TOKENS = 150
VERIFY_TEMPERATURE = 0.1
VERIFY_MAX_TOKENS = 500
MAX_CITATIONS_TO_VERIFY = 3
MAX_SOURCES_PER_VERIFICATION = 2
DEEP_RESEARCH_CONTEXT_CHARS = 5000

CLASSIFIER_SYSTEM_PROMPT = """You are a specialized query classifier for a legal assistant system. Your only job is to categorize legal questions into one of three types:

1. 'simple' - Basic definitional questions, procedural information, or straightforward legal concepts that don't require nuanced analysis.
2. 'complex' - Questions requiring legal analysis, strategy, risk assessment, interpretation of laws, or hypothetical scenarios.
3. 'research_needed' - Questions about current laws, recent cases, jurisdiction-specific details, or that require citing specific statutes.

You MUST return ONLY a valid JSON object with the format: {"queryType": "TYPE"} where TYPE is one of: "simple", "complex", or "research_needed"."""

_LINK_INSTRUCTIONS = """If you mention a specific, publicly accessible legal document, statute, or well-known legal information resource online (and you are confident about its URL), please provide a markdown link: `[Resource Name](URL)`. This is only if you are using your general knowledge and the source is unambiguous and widely recognized.
If you are referencing information directly from the document context provided by the user, clearly state this. For example: "Based on the provided document context..." or "According to the context you provided..." """

SIMPLE_SYSTEM_PROMPT = f"""You are a legal assistant providing clear, concise answers to simple legal questions. Be direct and to the point.

Respond in a professional, authoritative tone suitable for legal professionals.

When answering questions:
1. Provide definitions and explanations in plain language
2. Include relevant legal citations when appropriate
3. Be precise and accurate in your responses
4. If you're uncertain about specific jurisdictional details, acknowledge this
5. Format your responses with appropriate markdown for readability

{_LINK_INSTRUCTIONS}"""

COMPLEX_SYSTEM_PROMPT = f"""You are a sophisticated legal assistant with expertise in contract analysis, case law, and regulatory compliance.

When analyzing legal questions:
1. Identify the relevant legal principles and applicable laws
2. Apply appropriate precedent and case law
3. Consider jurisdictional differences and conflicts of law
4. Highlight risks, uncertainties, and alternative interpretations
5. Provide practical recommendations with appropriate disclaimers

Show your thorough legal reasoning process step-by-step.

Structure your responses with clear headings and use markdown formatting to enhance readability.

{_LINK_INSTRUCTIONS}"""

SEARCH_SYSTEM_PROMPT = """You are a specialized legal research assistant. Focus on finding accurate, up-to-date legal information from authoritative sources such as law.cornell.edu, courtlistener.com, justia.com, oyez.org and findlaw.com. Prioritize current statutes, recent case law, and official legal resources.

Return ONLY a JSON object: {"summary": "research findings with full citations", "sources": [{"title": "...", "url": "https://...", "date": "...", "snippet": "..."}]}"""

RESEARCH_SYSTEM_PROMPT = """You are a senior legal research analyst. Your task is to synthesize the provided search results and any attached document context to answer the user's query comprehensively.

**Search Results Provided:**
{results}

**Citing Sources:**
1. When you use information from a source URL in the search results, cite it immediately as a markdown link: `[Descriptive Title of Source](URL)`.
2. Link a source the first time you substantively use it.
3. Do NOT use numeric citations like [1] or [Source 1].
4. Ensure all URLs are fully qualified.

**Response Structure and Content:**
- Structure your response with clear headings, lists, and markdown formatting.
- Clearly distinguish between established law and emerging legal trends.
- If information may not be current or complete, state this.
- Consider jurisdictional limitations and indicate when additional research might be necessary.
- When you use information from the document context provided by the user, say so, for example "According to the provided context...".

Please provide a detailed and well-cited answer."""

DEEP_RESEARCH_SYSTEM_PROMPT = """You are an expert legal research AI assistant. Your primary task is to provide comprehensive answers to legal queries based on in-depth research.

**Citing Sources:**
1. When you use information from a web source, cite it immediately as a markdown link: `[Descriptive Title of Source](URL)`.
2. Do NOT use numeric citations like [1] or [Source 1]. Use only direct markdown links.
3. If a source has no clear title, use a concise description of the content or the domain name.
4. Ensure all URLs are fully qualified (e.g., https://www.example.com/page).

**Response Structure and Content:**
- Structure your response clearly using markdown for headings, lists, and emphasis.
- Prioritize accuracy, relevance, and the authoritativeness of your sources.
- If discussing U.S. law, specify federal or state applicability.
- If the query implies a specific jurisdiction, focus your research accordingly.
- When you use information from the document context provided by the user, say so, for example "Based on the document context you provided...".

Begin your research and present your findings."""

VERIFY_SYSTEM_PROMPT = (
    "You are a legal research specialist focusing on accurate verification of legal citations, cases, "
    "and statutes. Provide precise information with proper legal citations. When verifying a case, include "
    "the full citation, court, date, and a brief holding. Return ONLY a JSON object with the keys "
    '"verified" (boolean), "correctedCitation", "court", "date", "summary" and "sources" '
    '(a list of {"title", "url"}).'
)

_VERIFY_FOLLOW_UPS = {
    "case": (
        "1. The correct full citation\n2. The court that decided it\n3. The date of the decision\n"
        "4. A 1-2 sentence summary of the holding/significance"
    ),
    "statute": (
        "1. The correct full citation\n2. Whether this is current law\n3. When it was enacted/last amended\n"
        "4. A brief description of what this section covers"
    ),
    "regulation": (
        "1. The correct full citation\n2. The agency that issued it\n3. When it was published/effective\n"
        "4. What it regulates"
    ),
}

SEARCH_ERROR_SNIPPET = "Unable to retrieve search results. Analysis will continue with available information."

_QUERY_TYPE_FIELD = re.compile(r"[\"']queryType[\"']\s*:\s*[\"']([^\"']+)[\"']")
_MARKDOWN_LINK = re.compile(r"\[([^\]\n]+)\]\((https?://[^\s)]+)\)")

_PARTY = r"[A-Z][A-Za-z.'&]*(?:\s+(?:of|the|and|for|ex rel\.|[A-Z][A-Za-z.'&]*))*"
_REPORTER = r"[A-Z][A-Za-z.]*(?:\s[A-Z][A-Za-z.]*)?(?:\s?\d[a-z]{1,2})?"
_SECTION = r"\d+[A-Za-z0-9\-]*(?:\.\d+[A-Za-z0-9\-]*)*(?:\([A-Za-z0-9]+\))*"
_PARENTHETICAL_YEAR = r"(?:\s+\([^()\n]*?\d{4}\))?"

# Earlier patterns claim their span first; a later match overlapping a claimed span is dropped.
CITATION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("case", re.compile(rf"{_PARTY}\s+v\.\s+{_PARTY},?\s+\d+\s+{_REPORTER}\s+\d+{_PARENTHETICAL_YEAR}")),
    ("case", re.compile(rf"{_PARTY}\s+v\s+{_PARTY}\s+\[\d{{4}}\]\s+[A-Z][A-Za-z]*(?:\s+\([A-Za-z]+\))?\s+\d+")),
    ("regulation", re.compile(rf"In\s+re\s+{_PARTY},\s+\d+\s+{_REPORTER}\s+\d+{_PARENTHETICAL_YEAR}")),
    ("case", re.compile(rf"{_PARTY},\s+\d+\s+{_REPORTER}\s+at\s+\d+")),
    ("statute", re.compile(rf"\d+\s+U\.S\.C\.(?:A\.)?\s+§+\s*{_SECTION}")),
    ("statute", re.compile(rf"\d+\s+C\.F\.R\.\s+(?:§+\s*)?{_SECTION}")),
    ("statute", re.compile(r"Pub\.\s+L\.\s+No\.\s+\d+-\d+(?:,\s+\d+\s+Stat\.\s+\d+)?(?:\s+\(\d{4}\))?")),
    ("statute", re.compile(rf"(?:[A-Z][a-z]*\.\s+)+(?:[A-Z][a-z]+\s+)*Code\s+(?:Ann\.\s+)?§+\s*{_SECTION}")),
    ("regulation", re.compile(r"\d+\s+Fed\.\s+Reg\.\s+\d+(?:\s+\([A-Z][a-z]*\.?\s+\d{1,2},\s+\d{4}\))?")),
)


@dataclass(frozen=True)
class LegalCitation:
    citation_type: str
    full: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.citation_type, "full": self.full}


@dataclass(frozen=True)
class ResearchSource:
    title: str
    url: str
    date: str | None = None
    snippet: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {"title": self.title, "url": self.url, "date": self.date, "snippet": self.snippet}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matching_term(query: str, terms: Iterable[str]) -> str | None:
    lowered = query.lower()
    return next((term for term in terms if term in lowered), None)


def requests_explicit_search(query: str) -> bool:
    return _matching_term(query, EXPLICIT_SEARCH_TERMS) is not None


def _query_type_from_text(text: str) -> QueryType:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict) and payload.get("queryType") in QUERY_TYPES:
        return payload["queryType"]

    match = _QUERY_TYPE_FIELD.search(text)
    if match and match.group(1) in QUERY_TYPES:
        return match.group(1)  # type: ignore[return-value]
    if "complex" in text:
        return "complex"
    if "research" in text:
        return "research_needed"
    return DEFAULT_QUERY_TYPE


def classify_query(query: str, runtime: OpenAIChatRuntime) -> QueryType:
    """Route a question to the simple, complex or research handler.

    Keyword heuristics decide first; otherwise the lite model classifies it.
    Any failure falls back to ``complex``.
    """
    keyword = _matching_term(query, RESEARCH_KEYWORDS)
    if keyword is not None:
        logger.info(
            "query_classified",
            extra={"event": "query_classified", "query_type": "research_needed", "keyword": keyword},
        )
        return "research_needed"

    try:
        result = runtime.complete(
            [
                {"role": "system", "content": CLASSIFIER_SYSTEM_PROMPT},
                {"role": "user", "content": f'Classify this legal query: "{query}"'},
            ],
            model=runtime.lite_model,
            temperature=0.1,
            max_tokens=CLASSIFY_MAX_TOKENS,
        )
    except LLMRuntimeError as exc:
        logger.warning(
            "query_classification_failed",
            extra={"event": "query_classification_failed", "error": str(exc)},
        )
        return DEFAULT_QUERY_TYPE

    query_type = _query_type_from_text(result.text)
    logger.info("query_classified", extra={"event": "query_classified", "query_type": query_type})
    return query_type


def extract_legal_citations(text: str) -> list[LegalCitation]:
    """Find case, statute and regulation citations in ``text``, in reading order, without duplicates."""
    found: list[tuple[int, LegalCitation]] = []
    claimed: list[tuple[int, int]] = []
    seen: set[str] = set()
    for citation_type, pattern in CITATION_PATTERNS:
        for match in pattern.finditer(text):
            start, end = match.span()
            if any(start < claimed_end and claimed_start < end for claimed_start, claimed_end in claimed):
                continue
            full = " ".join(match.group(0).split())
            claimed.append((start, end))
            if full in seen:
                continue
            seen.add(full)
            found.append((start, LegalCitation(citation_type=citation_type, full=full)))
    found.sort(key=lambda item: item[0])
    return [citation for _, citation in found]


def verify_citation(citation: LegalCitation, runtime: OpenAIChatRuntime) -> dict[str, object]:
    prompt = f"Verify this legal citation: {citation.full}"
    follow_up = _VERIFY_FOLLOW_UPS.get(citation.citation_type)
    if follow_up:
        prompt += f"\n\nPlease provide:\n{follow_up}"
    try:
        payload = runtime.complete_json(
            [{"role": "system", "content": VERIFY_SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
            temperature=VERIFY_TEMPERATURE,
            max_tokens=VERIFY_MAX_TOKENS,
        )
    except LLMRuntimeError as exc:
        logger.warning(
            "citation_verification_failed",
            extra={
                "event": "citation_verification_failed",
                "citation_type": citation.citation_type,
                "error": str(exc),
            },
        )
        return {"citation": citation.full, "verified": False, "error": str(exc)}

    sources = payload.get("sources")
    return {
        **payload,
        "citation": citation.full,
        "verified": payload.get("verified") is True,
        "sources": [source for source in sources if isinstance(source, dict)] if isinstance(sources, list) else [],
    }


def verify_citations(
    text: str,
    runtime: OpenAIChatRuntime,
    *,
    limit: int = MAX_CITATIONS_TO_VERIFY,
) -> tuple[list[LegalCitation], list[dict[str, object]]]:
    citations = extract_legal_citations(text)
    results = [verify_citation(citation, runtime) for citation in citations[:limit]]
    return citations, results


def format_verification_results(results: list[Mapping[str, object]]) -> str | None:
    if not results:
        return None

    lines: list[str] = ["### Citation Verification", ""]
    for result in results:
        citation = result.get("citation")
        summary = result.get("summary")
        if result.get("verified"):
            lines.append(f"✅ **{citation}** - Verified correct")
            if summary:
                lines.append(f"> {summary}")
        elif result.get("correctedCitation"):
            lines.append(f"⚠️ **{citation}** - Correction: {result['correctedCitation']}")
            if summary:
                lines.append(f"> {summary}")
        else:
            lines.append(f"❓ **{citation}** - Could not verify")

        sources = result.get("sources") or []
        if isinstance(sources, list) and sources:
            lines.extend(["", "Sources:"])
            for source in sources[:MAX_SOURCES_PER_VERIFICATION]:
                lines.append(f"- [{source.get('title')}]({source.get('url')})")
        lines.extend(["", "---", ""])
    return "\n".join(lines) + "\n"


def _source_from_payload(raw: object) -> ResearchSource | None:
    if not isinstance(raw, dict):
        return None
    title = str(raw.get("title") or raw.get("name") or "").strip()
    url = str(raw.get("url") or "").strip()
    if not title or not url.startswith(("http://", "https://")):
        return None
    snippet = raw.get("snippet") or raw.get("text")
    return ResearchSource(
        title=title,
        url=url,
        date=str(raw.get("date") or raw.get("publishedDate") or "Unknown"),
        snippet=str(snippet) if snippet else None,
    )


def search_legal_sources(query: str, runtime: OpenAIChatRuntime) -> list[ResearchSource]:
    """Collect research findings and sources for ``query``.

    A failed search yields a single ``Search Error`` source so the answer can
    still be written from what is available.
    """
    try:
        payload = runtime.complete_json(
            [
                {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": f"Research this legal question thoroughly: {query}"},
            ],
            temperature=SEARCH_TEMPERATURE,
            max_tokens=SEARCH_MAX_TOKENS,
        )
    except LLMRuntimeError as exc:
        logger.warning("research_search_failed", extra={"event": "research_search_failed", "error": str(exc)})
        return [ResearchSource(title="Search Error", url="N/A", date=_utc_now_iso(), snippet=SEARCH_ERROR_SNIPPET)]

    sources: list[ResearchSource] = []
    summary = str(payload.get("summary") or "").strip()
    if summary:
        sources.append(
            ResearchSource(title="Legal Research Summary", url="N/A", date=_utc_now_iso(), snippet=summary)
        )
    raw_sources = payload.get("sources")
    for raw in raw_sources if isinstance(raw_sources, list) else []:
        source = _source_from_payload(raw)
        if source is not None:
            sources.append(source)
    logger.info("research_search_completed", extra={"event": "research_search_completed", "sources": len(sources)})
    return sources


def format_search_results(sources: list[ResearchSource]) -> str:
    return "\n\n".join(
        f"Source: {source.title} ({source.url})\nDate: {source.date or 'Unknown'}\nExcerpt: {source.snippet or ''}"
        for source in sources
    )


def linked_sources(sources: list[ResearchSource]) -> list[ResearchSource]:
    """Sources with a usable URL, deduplicated by URL."""
    kept: list[ResearchSource] = []
    urls: set[str] = set()
    for source in sources:
        if source.url == "N/A" or source.url in urls:
            continue
        urls.add(source.url)
        kept.append(source)
    return kept


def sources_from_markdown(text: str) -> list[ResearchSource]:
    links = _MARKDOWN_LINK.findall(text)
    return linked_sources([ResearchSource(title=title.strip(), url=url) for title, url in links])


def _with_context(prompt: str, *, document_context: str, focused_snippet: str | None, heading: str) -> str:
    if focused_snippet:
        prompt += (
            f'\n\nIMPORTANT FOCUSED CONTEXT: The user has highlighted the following snippet: "{focused_snippet}". '
            "Please give this special attention in your response."
        )
    if document_context:
        prompt += f"\n\n{heading}\n{document_context}"
    return prompt


def build_research_system_prompt(
    query_type: str,
    *,
    document_context: str = "",
    focused_snippet: str | None = None,
    sources: list[ResearchSource] | None = None,
    thoughts_enabled: bool = False,
) -> str:
    prompt = _handler_prompt(
        query_type,
        document_context=document_context,
        focused_snippet=focused_snippet,
        sources=sources,
    )
    return prompt + THOUGHTS_SYSTEM_PROMPT if thoughts_enabled else prompt


def _handler_prompt(
    query_type: str,
    *,
    document_context: str,
    focused_snippet: str | None,
    sources: list[ResearchSource] | None,
) -> str:
    if query_type == "simple":
        return _with_context(
            SIMPLE_SYSTEM_PROMPT,
            document_context=document_context,
            focused_snippet=focused_snippet,
            heading="Reference these documents in your response if relevant:",
        )
    if query_type == "research_needed":
        prompt = RESEARCH_SYSTEM_PROMPT.format(results=format_search_results(sources or []))
        return _with_context(
            prompt,
            document_context=document_context,
            focused_snippet=focused_snippet,
            heading="Document Context:",
        )
    if query_type == "deep_research":
        return _with_context(
            DEEP_RESEARCH_SYSTEM_PROMPT,
            document_context=document_context,
            focused_snippet=focused_snippet,
            heading="Relevant Document Context (analyze and incorporate if applicable):",
        )
    return _with_context(
        COMPLEX_SYSTEM_PROMPT,
        document_context=document_context,
        focused_snippet=focused_snippet,
        heading="Analyze these legal documents:",
    )


def research_temperature(query_type: str) -> float:
    if query_type == "simple":
        return SIMPLE_TEMPERATURE
    if query_type == "complex":
        return COMPLEX_TEMPERATURE
    return RESEARCH_TEMPERATURE


def research_model(query_type: str, runtime: OpenAIChatRuntime) -> str:
    return runtime.lite_model if query_type == "simple" else runtime.default_model


def build_deep_research_context(documents: list[Mapping[str, object]]) -> str:
    return "".join(
        f"--- Document: {document.get('filename')} ---\n"
        f"{str(document.get('extracted_text') or '')[:DEEP_RESEARCH_CONTEXT_CHARS]}\n\n"
        for document in documents
    )


def research_title(query: str) -> str:
    return f"Deep Research: {query[:40]}..."


def stream_research_events(
    deltas: Iterable[str],
    *,
    response_type: str,
    model: str,
    sources: list[ResearchSource],
    thoughts_enabled: bool = False,
    on_complete: Callable[[str], None] | None = None,
) -> Iterator[str]:
    """Encode a research answer as typed SSE events.

    The stream opens with a ``metadata`` event, relays ``thought`` and
    ``answer`` events, repeats ``metadata`` when the answer linked new
    sources, and ends with ``complete``. A failure mid-stream becomes an
    ``error`` event.
    """
    known = linked_sources(sources)

    def metadata() -> str:
        return encode_sse_data(
            {
                "type": "metadata",
                "responseType": response_type,
                "model": model,
                "sources": [source.to_dict() for source in known],
            }
        )

    splitter = ThoughtStreamSplitter(thoughts_enabled=thoughts_enabled)
    answer: list[str] = []

    def encode(parts: list[tuple[str, str]]) -> Iterator[str]:
        for part_type, text in parts:
            if part_type == DATA_STREAM_THOUGHT:
                yield encode_sse_data({"type": "thought", "content": text})
                continue
            answer.append(text)
            yield encode_sse_data({"type": "answer", "content": text})

    yield metadata()
    try:
        for delta in deltas:
            yield from encode(splitter.feed(delta))
        yield from encode(splitter.finish())
    except Exception as exc:
        logger.exception(
            "research_stream_failed",
            extra={"event": "research_stream_failed", "response_type": response_type},
        )
        yield encode_sse_data({"type": "error", "error": f"Error in research: {exc}"})
        yield SSE_DONE
        return

    full_answer = "".join(answer)
    known_urls = {source.url for source in known}
    cited = [source for source in sources_from_markdown(full_answer) if source.url not in known_urls]
    if cited:
        known.extend(cited)
        yield metadata()
    yield encode_sse_data({"type": "complete"})
    yield SSE_DONE

    if on_complete is not None:
        on_complete(full_answer)


def research_messages(
    history: Iterable[Mapping[str, object]],
    system_prompt: str,
    query: str,
) -> list[ChatMessage]:
    messages: list[ChatMessage] = [{"role": "system", "content": system_prompt}]
    for message in history:
        role = message.get("role")
        if role in {"user", "assistant"}:
            messages.append({"role": str(role), "content": str(message.get("content") or "")})
    if not any(message["role"] == "user" and message["content"] == query for message in messages):
        messages.append({"role": "user", "content": query})
    return messages
