from contextlib import asynccontextmanager
from functools import lru_cache
import logging
from pathlib import Path
import time

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from lexdraft.api.routers.chat import CONVERSATION_ID_HEADER, build_chat_router
from lexdraft.api.routers.documents import build_documents_router
from lexdraft.api.routers.drafting import build_drafting_router
from lexdraft.api.routers.editor import build_editor_router
from lexdraft.api.routers.research import build_research_router
from lexdraft.api.routers.system import router as system_router
from lexdraft.api.routers.templates import build_templates_router
from lexdraft.auth import require_authenticated_user
from lexdraft.config import settings
from lexdraft.db import init_db
from lexdraft.llm_runtime import LLMRuntimeError, OpenAIChatRuntime
from lexdraft.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from lexdraft.retrieval import EmbeddingService

logger = logging.getLogger("lexdraft.api")

STREAM_THOUGHTS_HEADER = "X-Experimental-Stream-Thoughts"


@lru_cache(maxsize=1)
def _cached_llm_runtime() -> OpenAIChatRuntime:
    return OpenAIChatRuntime(settings=settings)


def get_llm_runtime() -> OpenAIChatRuntime:
    return _cached_llm_runtime()


@lru_cache(maxsize=1)
def _cached_embedding_service() -> EmbeddingService:
    openai_embedder: OpenAIChatRuntime | None = None
    if settings.embedding_mode.strip().lower() != "hash":
        try:
            openai_embedder = get_llm_runtime()
        except LLMRuntimeError as exc:
            logger.warning(
                "embedding_provider_unconfigured",
                extra={"event": "embedding_provider_unconfigured", "error": str(exc)},
            )
    return EmbeddingService(
        mode=settings.embedding_mode,
        dim=settings.embedding_dim,
        openai_embedder=openai_embedder,
    )


def get_embedding_service() -> EmbeddingService:
    return _cached_embedding_service()


# Routers resolve the getters through these wrappers so tests can monkeypatch the module attributes.
def _llm_runtime_dependency() -> OpenAIChatRuntime:
    return get_llm_runtime()


def _embedding_service_dependency() -> EmbeddingService:
    return get_embedding_service()


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    init_db()
    Path(settings.storage_root).mkdir(parents=True, exist_ok=True)
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header, STREAM_THOUGHTS_HEADER],
        expose_headers=[CONVERSATION_ID_HEADER, settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()
        request_fields = {"request_id": request_id, "method": request.method, "path": request.url.path}

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                **request_fields,
                "query": sanitize_for_logging(dict(request.query_params)),
            },
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                extra={"event": "request_failed", **request_fields, "duration_ms": elapsed_ms()},
            )
            raise
        finally:
            reset_request_id(token)

        response.headers[settings.request_id_header] = request_id
        logger.info(
            "request_completed",
            extra={
                "event": "request_completed",
                **request_fields,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms(),
            },
        )
        return response

    app.include_router(system_router)

    protected_routers = [
        build_editor_router(get_llm_runtime=_llm_runtime_dependency),
        build_drafting_router(get_llm_runtime=_llm_runtime_dependency),
        build_templates_router(get_llm_runtime=_llm_runtime_dependency),
        build_documents_router(
            get_llm_runtime=_llm_runtime_dependency,
            get_embedding_service=_embedding_service_dependency,
        ),
        build_chat_router(get_llm_runtime=_llm_runtime_dependency),
        build_research_router(get_llm_runtime=_llm_runtime_dependency),
    ]
    for prefix in ("", "/api"):
        for router in protected_routers:
            app.include_router(router, prefix=prefix, dependencies=[Depends(require_authenticated_user)])

    return app


app = create_app()
