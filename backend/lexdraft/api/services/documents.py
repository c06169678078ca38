from __future__ import annotations

import logging
from typing import Any

from lexdraft.config import Settings
from lexdraft.db import (
    create_document_chunks,
    list_document_chunks,
    list_documents_pending_embedding,
    update_document_status,
)
from lexdraft.parsers import ParserRegistry, normalize_extracted_text
from lexdraft.retrieval import (
    EmbeddingProviderError,
    EmbeddingService,
    chunk_text,
    group_matches_by_document,
    match_chunks,
)
from lexdraft.storage import StorageError, load_document_bytes

logger = logging.getLogger("lexdraft.api")

_parser_registry = ParserRegistry()


def process_document_text(settings: Settings, document: dict[str, Any]) -> dict[str, object]:
    """Extract text from a stored document and record the outcome on its row.

    Unsupported formats are marked failed but reported as a normal result rather
    than raised, so webhook callers do not retry them.
    """
    document_id = str(document["id"])
    file_name = str(document.get("filename") or "")
    content_type = str(document.get("content_type") or "")
    update_document_status(document_id, "text_extraction_pending")

    try:
        content = load_document_bytes(settings=settings, storage_path=str(document.get("storage_path") or ""))
    except StorageError as exc:
        update_document_status(document_id, "text_extraction_failed", error_message=str(exc))
        logger.warning(
            "document_text_extraction_failed",
            extra={"event": "document_text_extraction_failed", "document_id": document_id, "error": str(exc)},
        )
        return {"success": False, "document_id": document_id, "message": str(exc)}

    parsed = _parser_registry.parse(content=content, file_name=file_name, content_type=content_type)
    if not parsed.supported or parsed.error:
        message = parsed.error or f"Unsupported content type: {content_type or 'unknown'}"
        update_document_status(document_id, "text_extraction_failed", error_message=message)
        logger.info(
            "document_text_extraction_skipped",
            extra={"event": "document_text_extraction_skipped", "document_id": document_id, "parser": parsed.parser_id},
        )
        return {"success": False, "document_id": document_id, "message": message}

    text = normalize_extracted_text(parsed.text)
    update_document_status(document_id, "text_extracted", extracted_text=text)
    logger.info(
        "document_text_extracted",
        extra={
            "event": "document_text_extracted",
            "document_id": document_id,
            "parser": parsed.parser_id,
            "chars": len(text),
        },
    )
    return {
        "success": True,
        "document_id": document_id,
        "message": "Text extracted successfully.",
        "characters": len(text),
    }


def generate_embeddings_batch(
    settings: Settings,
    embedding_service: EmbeddingService,
    *,
    limit: int | None = None,
) -> dict[str, object]:
    documents = list_documents_pending_embedding(limit or settings.embedding_batch_documents)
    if not documents:
        return {"message": "No documents found needing embedding processing.", "processed": 0, "errors": 0, "results": []}

    results: list[dict[str, object]] = []
    warnings: list[dict[str, object]] = []
    for document in documents:
        document_id = str(document["id"])
        try:
            chunks = chunk_text(
                str(document["extracted_text"]),
                settings.chunk_size_chars,
                settings.chunk_overlap_chars,
            )
            rows: list[dict[str, object]] = []
            for chunk in chunks:
                embedding = embedding_service.embed(chunk.text)
                if embedding.warning is not None and embedding.warning not in warnings:
                    warnings.append(embedding.warning)
                rows.append(
                    {
                        "chunk_index": chunk.chunk_index,
                        "chunk_text": chunk.text,
                        "embedding": embedding.vector,
                        "embedding_provider": embedding.provider,
                    }
                )
            create_document_chunks(document_id, rows)
            update_document_status(document_id, "completed")
            results.append({"document_id": document_id, "status": "success", "chunks": len(rows)})
        except EmbeddingProviderError as exc:
            update_document_status(document_id, "embedding_failed", error_message=str(exc))
            logger.warning(
                "document_embedding_failed",
                extra={"event": "document_embedding_failed", "document_id": document_id, "error": str(exc)},
            )
            results.append({"document_id": document_id, "status": "error", "error": str(exc)})

    errors = sum(1 for item in results if item["status"] == "error")
    return {
        "message": "Embedding generation completed.",
        "processed": len(results) - errors,
        "errors": errors,
        "results": results,
        "embedding": {**embedding_service.describe(), "warnings": warnings},
    }


def semantic_search(
    embedding_service: EmbeddingService,
    *,
    query: str,
    match_threshold: float,
    match_count: int,
    user_id: str | None = None,
) -> list[dict[str, object]]:
    query_embedding = embedding_service.embed(query).vector
    matches = match_chunks(
        list_document_chunks(user_id),
        query_embedding,
        match_threshold=match_threshold,
        match_count=match_count,
    )
    return group_matches_by_document(matches)
