from __future__ import annotations

import time
from uuid import uuid4

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from lexdraft.config import settings
from lexdraft.db import get_conn
from lexdraft.storage import StorageError, load_document_bytes, save_object_bytes

router = APIRouter(tags=["system"])

_READY_CACHE_TTL_SECONDS = 30.0
_ready_cache: dict[str, object] = {"ts": 0.0, "ok": None, "payload": None}


def reset_ready_cache() -> None:
    _ready_cache.update({"ts": 0.0, "ok": None, "payload": None})


def _cache_set(ok: bool, payload: dict[str, object]) -> None:
    _ready_cache.update({"ts": time.time(), "ok": ok, "payload": payload})


def _cache_get() -> tuple[bool, dict[str, object]] | None:
    if time.time() - float(_ready_cache.get("ts") or 0.0) > _READY_CACHE_TTL_SECONDS:
        return None
    payload = _ready_cache.get("payload")
    if not isinstance(payload, dict):
        return None
    return bool(_ready_cache.get("ok")), payload


def _check_database() -> dict[str, object]:
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
    except Exception as exc:
        return {"ok": False, "backend": "sqlite", "error": str(exc)}
    return {"ok": True, "backend": "sqlite"}


def _check_storage() -> dict[str, object]:
    backend = (settings.storage_backend or "local").strip().lower()
    token = f"{time.time()}-{uuid4()}"
    try:
        path = save_object_bytes(
            settings=settings,
            folder=f"readyz/{settings.app_env}",
            file_name="backend.txt",
            content_type="text/plain",
            content=token.encode("utf-8"),
            unique_prefix=False,
        )
        read_back = load_document_bytes(settings=settings, storage_path=path).decode("utf-8", errors="replace")
    except StorageError as exc:
        return {"ok": False, "backend": backend, "error": str(exc)}
    if read_back != token:
        return {"ok": False, "backend": backend, "error": "storage readiness check mismatch"}
    return {"ok": True, "backend": backend}


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "lexdraft-backend", "status": "running"}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.app_env}


@router.get("/ready", response_model=None)
def ready() -> JSONResponse:
    cached = _cache_get()
    if cached is not None:
        ok, payload = cached
        return JSONResponse(status_code=200 if ok else 503, content=payload)

    checks: dict[str, dict[str, object]] = {"db": _check_database()}
    if checks["db"]["ok"]:
        checks["storage"] = _check_storage()
    # The LLM key is reported but does not gate readiness; AI routes answer 503 on their own.
    checks["llm"] = {
        "ok": bool(settings.openai_api_key.strip()),
        "model": settings.openai_model,
        "embedding_mode": settings.embedding_mode,
    }

    ok = all(bool(check["ok"]) for name, check in checks.items() if name != "llm")
    payload: dict[str, object] = {
        "status": "ready" if ok else "not_ready",
        "environment": settings.app_env,
        "checks": checks,
    }
    _cache_set(ok, payload)
    return JSONResponse(status_code=200 if ok else 503, content=payload)
