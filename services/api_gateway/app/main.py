"""API gateway for the conversational query service.

Exposes the query pipeline, the agent tool surface and content
administration behind a single FastAPI app. Components are wired in
``deps`` and built on first use; errors raised by the pipeline are mapped
to JSON error bodies here:

- ``InputError``        -> 400, echoing the query text and session id
- ``QueryFailedError``  -> 502, echoing the query text and session id
- ``CollaboratorError`` -> 502 (tool and administration routes)
- anything else         -> 500
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.errors import CollaboratorError, InputError, QueryFailedError
from shared.logger import get_logger
from shared.models import ErrorResponse
from shared.tracing import install_fastapi_tracing, tracer

from .deps import get_kv_store, get_orchestrator, get_settings
from .routers import content, query, tools

logger = get_logger(__name__)

app = FastAPI(title="Conversational Query Service", version="0.1.0")
install_fastapi_tracing(
    app, service_name="query-service", trace_name=get_settings().trace_name
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(error=message).model_dump()
    )


@app.exception_handler(InputError)
async def _input_error(request: Request, exc: InputError) -> JSONResponse:
    logger.info("Rejected request to %s: %s", request.url.path, exc.describe())
    return _error(400, exc.describe())


@app.exception_handler(QueryFailedError)
async def _query_failed(request: Request, exc: QueryFailedError) -> JSONResponse:
    return _error(502, exc.describe())


@app.exception_handler(CollaboratorError)
async def _collaborator_error(
    request: Request, exc: CollaboratorError
) -> JSONResponse:
    logger.error("Collaborator failure on %s: %s", request.url.path, exc)
    return _error(502, str(exc))


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
    return _error(500, str(exc))


# Health/root endpoints
@app.get("/")
def _root():
    return {"status": "ok", "service": "query-service"}


@app.get("/health")
def _health():
    return {"status": "ok"}


# Routers
app.include_router(query.router)
app.include_router(tools.router)
app.include_router(content.router)


@app.on_event("startup")
def _log_configuration() -> None:
    s = get_settings()
    logger.info(
        "Starting query service: chat_model=%s embedding_model=%s dim=%d "
        "max_neighbors=%d max_distance=%.2f store=%s offline=%s tracing=%s",
        s.gemini_chat_model,
        s.embedding_model,
        s.embedding_dim,
        s.max_neighbors,
        s.max_neighbor_distance,
        "redis" if s.redis_url else "memory",
        s.offline_mode,
        tracer.enabled,
    )


@app.on_event("shutdown")
async def _drain_background_tasks() -> None:
    # Only components that were actually built need shutting down
    if get_orchestrator.cache_info().currsize:
        await get_orchestrator().drain(timeout=get_settings().call_timeout_seconds)
    if get_kv_store.cache_info().currsize:
        await get_kv_store().close()
