from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse

from lexdraft.analysis import run_document_analysis
from lexdraft.api.contracts import (
    AnalyzeDocumentRequest,
    ExtractTextWebhookRequest,
    GenerateDocxRequest,
    SemanticSearchRequest,
)
from lexdraft.api.services.documents import generate_embeddings_batch, process_document_text, semantic_search
from lexdraft.api.services.runtime import (
    EmbeddingServiceGetter,
    LLMRuntimeGetter,
    get_runtime_or_503,
    llm_http_error,
    require_text,
)
from lexdraft.auth import require_authenticated_user, resolve_user_id
from lexdraft.config import settings
from lexdraft.db import (
    create_document,
    create_document_analysis,
    get_document,
    list_document_analyses,
)
from lexdraft.docx_export import DOCX_CONTENT_TYPE, DocxExportError, html_to_docx_bytes, sanitize_docx_filename
from lexdraft.llm_runtime import LLMRuntimeError
from lexdraft.retrieval import EmbeddingProviderError
from lexdraft.storage import (
    GENERATED_FOLDER,
    StorageError,
    create_download_url,
    resolve_generated_path,
    save_document_bytes,
    save_object_bytes,
)

logger = logging.getLogger("lexdraft.api")

GENERATED_DOCUMENTS_ROUTE = "/documents/generated"


def _serialize_document(document: dict[str, object]) -> dict[str, object]:
    public = {key: value for key, value in document.items() if key not in {"extracted_text", "storage_path"}}
    public["has_text"] = bool(str(document.get("extracted_text") or "").strip())
    return public


def _load_document_for_caller(document_id: str, claims: dict[str, Any] | None) -> dict[str, object]:
    document = get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    if claims is not None and document["user_id"] != claims.get("sub"):
        raise HTTPException(status_code=403, detail="Document does not belong to the current user")
    return document


def build_documents_router(
    *,
    get_llm_runtime: LLMRuntimeGetter,
    get_embedding_service: EmbeddingServiceGetter,
) -> APIRouter:
    router = APIRouter(prefix="/documents", tags=["documents"])

    @router.post("")
    async def upload_document(
        file: UploadFile = File(...),
        case_id: str | None = Form(default=None),
        user_id: str | None = Form(default=None),
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        owner_id = resolve_user_id(claims, user_id)
        safe_name = Path(file.filename or "upload.bin").name or "upload.bin"
        content = await file.read(settings.max_upload_file_bytes + 1)
        if len(content) > settings.max_upload_file_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File '{safe_name}' exceeds max size of {settings.max_upload_file_bytes} bytes.",
            )
        content_type = file.content_type or "application/octet-stream"

        try:
            storage_path = save_document_bytes(
                settings=settings,
                user_id=owner_id,
                case_id=case_id,
                file_name=safe_name,
                content_type=content_type,
                content=content,
            )
        except StorageError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        document = create_document(
            user_id=owner_id,
            case_id=case_id,
            filename=safe_name,
            content_type=content_type,
            storage_path=storage_path,
            size_bytes=len(content),
        )
        extraction = process_document_text(settings, document)
        refreshed = get_document(str(document["id"])) or document
        return {"document": _serialize_document(refreshed), "extraction": extraction}

    @router.post("/extract-text")
    def extract_text_webhook(payload: ExtractTextWebhookRequest) -> dict[str, object]:
        if payload.type != "INSERT" or not payload.record:
            raise HTTPException(
                status_code=400,
                detail="Invalid webhook payload: expected an INSERT event with a record.",
            )
        document_id = str(payload.record.get("id") or "").strip()
        if not document_id:
            raise HTTPException(status_code=400, detail="Invalid webhook payload: record id is missing.")
        document = get_document(document_id)
        if document is None:
            raise HTTPException(status_code=404, detail="Document not found")
        return process_document_text(settings, document)

    @router.post("/embeddings")
    def generate_embeddings() -> dict[str, object]:
        try:
            return generate_embeddings_batch(settings, get_embedding_service())
        except EmbeddingProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @router.post("/semantic-search")
    def search_documents(
        payload: SemanticSearchRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        query = require_text(payload.query, "Missing query parameter")
        scope_user_id = claims.get("sub") if claims is not None else payload.user_id
        try:
            results = semantic_search(
                get_embedding_service(),
                query=query,
                match_threshold=(
                    payload.match_threshold
                    if payload.match_threshold is not None
                    else settings.semantic_search_threshold_default
                ),
                match_count=payload.match_count or settings.semantic_search_count_default,
                user_id=scope_user_id,
            )
        except EmbeddingProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return {"results": results}

    @router.post("/analyze")
    def analyze_document(
        payload: AnalyzeDocumentRequest,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        text = payload.text
        if not (text or "").strip() and payload.document_id:
            document = _load_document_for_caller(payload.document_id, claims)
            text = str(document.get("extracted_text") or "")
        text = require_text(text, "Missing document text to analyze")
        runtime = get_runtime_or_503(get_llm_runtime)

        try:
            outcome = run_document_analysis(
                runtime,
                payload.analysis_type,
                text,
                custom_prompt=payload.custom_prompt,
                max_chars=settings.analysis_max_chars,
            )
        except LLMRuntimeError as exc:
            raise llm_http_error(exc, prefix="AI analysis failed") from exc

        analysis_id: str | None = None
        if payload.document_id:
            try:
                stored = create_document_analysis(
                    document_id=payload.document_id,
                    user_id=claims.get("sub") if claims is not None else payload.user_id,
                    analysis_type=outcome.analysis_type,
                    result=outcome.result,
                    model=outcome.model,
                    prompt_tokens=outcome.usage.get("prompt_tokens"),
                    completion_tokens=outcome.usage.get("completion_tokens"),
                    parse_error=outcome.parse_error,
                )
                analysis_id = str(stored["id"])
            except sqlite3.Error as exc:
                logger.error(
                    "document_analysis_store_failed",
                    extra={
                        "event": "document_analysis_store_failed",
                        "document_id": payload.document_id,
                        "error": str(exc),
                    },
                )
        return {"success": True, "analysis_id": analysis_id, "result": outcome.result}

    @router.post("/generate-docx")
    def generate_docx(payload: GenerateDocxRequest) -> dict[str, object]:
        html_content = require_text(payload.html_content, "Missing html_content")
        file_name = sanitize_docx_filename(payload.file_name)
        try:
            content = html_to_docx_bytes(html_content)
        except DocxExportError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        try:
            storage_path = save_object_bytes(
                settings=settings,
                folder=GENERATED_FOLDER,
                file_name=file_name,
                content_type=DOCX_CONTENT_TYPE,
                content=content,
            )
            download_url = create_download_url(
                settings=settings,
                storage_path=storage_path,
                local_route=GENERATED_DOCUMENTS_ROUTE,
            )
        except StorageError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        logger.info(
            "docx_generated",
            extra={"event": "docx_generated", "file_name": file_name, "size_bytes": len(content)},
        )
        return {"success": True, "download_url": download_url, "file_name": file_name}

    @router.get("/generated/{file_name}", response_model=None)
    def download_generated_docx(file_name: str) -> FileResponse:
        try:
            path = resolve_generated_path(settings=settings, file_name=file_name)
        except StorageError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        # stored names carry a uuid prefix; the attachment keeps the requested name
        return FileResponse(path, media_type=DOCX_CONTENT_TYPE, filename=path.name.partition("_")[2] or path.name)

    @router.get("/{document_id}")
    def read_document(
        document_id: str,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        document = _load_document_for_caller(document_id, claims)
        return {
            **_serialize_document(document),
            "extracted_text": document.get("extracted_text"),
            "analyses": list_document_analyses(document_id),
        }

    @router.post("/{document_id}/extract-text")
    def extract_document_text(
        document_id: str,
        claims: dict[str, Any] | None = Depends(require_authenticated_user),
    ) -> dict[str, object]:
        document = _load_document_for_caller(document_id, claims)
        return process_document_text(settings, document)

    return router
