from __future__ import annotations

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Literal, Protocol

logger = logging.getLogger("lexdraft.retrieval")

EmbeddingMode = Literal["hash", "openai", "hybrid"]
EMBEDDING_MODES = ("hash", "openai", "hybrid")


@dataclass(frozen=True)
class TextChunk:
    chunk_index: int
    text: str


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float]
    provider: str
    fallback_used: bool = False
    warning: dict[str, object] | None = None


class EmbeddingProviderError(RuntimeError):
    """Raised when an embedding provider cannot produce vectors."""


class TextEmbedder(Protocol):
    def embed(self, text: str) -> list[float]:
        ...


def _normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector] if norm else vector


class EmbeddingService:
    """Produces chunk and query vectors.

    ``hash`` never leaves the process, ``openai`` fails loudly, and ``hybrid``
    prefers OpenAI but degrades to hash vectors once the provider has failed.
    """

    def __init__(self, *, mode: str, dim: int, openai_embedder: TextEmbedder | None = None) -> None:
        normalized_mode = mode.strip().lower()
        if normalized_mode not in EMBEDDING_MODES:
            raise ValueError(f"Embedding mode must be one of: {', '.join(EMBEDDING_MODES)}.")
        if dim < 8:
            raise ValueError("embedding_dim must be >= 8")

        self.mode: EmbeddingMode = normalized_mode  # type: ignore[assignment]
        self.dim = dim
        self._openai_embedder = openai_embedder
        self._disabled_reason: str | None = None

    @property
    def openai_available(self) -> bool:
        return self._openai_embedder is not None and self._disabled_reason is None

    def describe(self) -> dict[str, object]:
        return {"mode": self.mode, "dim": self.dim, "openai_available": self.openai_available}

    def embed(self, text: str) -> EmbeddingResult:
        if self.mode == "hash":
            return EmbeddingResult(vector=embed_text(text, self.dim), provider="hash")

        try:
            vector = self._embed_with_openai(text)
        except EmbeddingProviderError as exc:
            if self.mode == "openai":
                raise
            return EmbeddingResult(
                vector=embed_text(text, self.dim),
                provider="hash",
                fallback_used=True,
                warning=self._fallback_warning(exc),
            )
        return EmbeddingResult(vector=vector, provider="openai")

    def _fallback_warning(self, exc: Exception) -> dict[str, object]:
        return {
            "code": "embedding_provider_fallback",
            "message": "OpenAI embeddings unavailable; using deterministic hash embeddings.",
            "details": {"mode": self.mode, "fallback_provider": "hash", "error": str(exc)},
        }

    def _embed_with_openai(self, text: str) -> list[float]:
        if self._openai_embedder is None:
            raise EmbeddingProviderError("OpenAI embedding client is not configured.")
        if self._disabled_reason is not None:
            raise EmbeddingProviderError(self._disabled_reason)

        try:
            raw = self._openai_embedder.embed(text)
        except Exception as exc:
            if self.mode == "hybrid":
                self._disabled_reason = str(exc)
            logger.warning(
                "embedding_provider_openai_unavailable",
                extra={"event": "embedding_provider_openai_unavailable", "mode": self.mode, "error": str(exc)},
            )
            raise EmbeddingProviderError(f"OpenAI embedding failed: {exc}") from exc
        return _normalize_vector(raw)


def chunk_text(text: str, chunk_size_chars: int = 1000, chunk_overlap_chars: int = 200) -> list[TextChunk]:
    if chunk_size_chars < 1:
        raise ValueError("chunk_size_chars must be >= 1")

    step = max(1, chunk_size_chars - max(0, chunk_overlap_chars))
    chunks: list[TextChunk] = []
    start = 0
    while start < len(text):
        end = min(start + chunk_size_chars, len(text))
        piece = text[start:end].strip()
        if piece:
            chunks.append(TextChunk(chunk_index=len(chunks), text=piece))
        if end >= len(text):
            break
        start += step
    return chunks


def _tokenize(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


def embed_text(text: str, dim: int) -> list[float]:
    vec = [0.0] * dim
    tokens = _tokenize(text)
    if not tokens:
        return vec

    for token in tokens:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % dim
        sign = 1.0 if digest[4] % 2 == 0 else -1.0
        vec[index] += sign

    return _normalize_vector(vec)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Vector dimensions do not match")
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b))


def match_chunks(
    chunks: list[dict[str, Any]],
    query_embedding: list[float],
    *,
    match_threshold: float,
    match_count: int,
) -> list[dict[str, Any]]:
    """Score stored chunks against a query vector, keeping the best matches above threshold."""
    scored: list[dict[str, Any]] = []
    for chunk in chunks:
        embedding = chunk.get("embedding")
        if not isinstance(embedding, list) or len(embedding) != len(query_embedding):
            continue
        similarity = cosine_similarity(query_embedding, embedding)
        if similarity > match_threshold:
            scored.append({**chunk, "similarity": round(similarity, 6)})
    scored.sort(key=lambda item: item["similarity"], reverse=True)
    return scored[:match_count]


def group_matches_by_document(matches: list[dict[str, Any]]) -> list[dict[str, object]]:
    grouped: dict[str, dict[str, Any]] = {}
    for match in matches:
        document_id = str(match["document_id"])
        group = grouped.get(document_id)
        if group is None:
            group = {
                "document_id": document_id,
                "filename": match.get("filename"),
                "case_id": match.get("case_id"),
                "matches": [],
            }
            grouped[document_id] = group
        if any(existing["chunk_text"] == match["chunk_text"] for existing in group["matches"]):
            continue
        group["matches"].append({"chunk_text": match["chunk_text"], "similarity": match["similarity"]})

    results = list(grouped.values())
    for group in results:
        group["matches"].sort(key=lambda item: item["similarity"], reverse=True)
        # Only the strongest passage per document is returned.
        group["matches"] = group["matches"][:1]
    results.sort(key=lambda group: group["matches"][0]["similarity"] if group["matches"] else 0.0, reverse=True)
    return results
