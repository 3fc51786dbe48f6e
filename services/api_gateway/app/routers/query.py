"""Conversational query router.

``POST /query/content`` answers a question within a session. The body is
``{"text", "sessionId", "parameters"?}``; a blank ``sessionId`` runs the
query without reading or carrying conversation history. Errors are mapped
to HTTP responses by the handlers registered in ``main``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from services.query.app.orchestrator import QueryOrchestrator
from shared.models import QueryResult, UserQuery

from ..deps import get_orchestrator

router = APIRouter(tags=["query"])


@router.post("/query/content", response_model=QueryResult)
async def query_content(
    query: UserQuery,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> QueryResult:
    return await orchestrator.query(query)
