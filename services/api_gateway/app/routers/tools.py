"""Tool surface for external agents.

Thin pass-throughs to the retrieval collaborators:
- ``POST /tools/embedding`` embeds a text.
- ``POST /tools/nearest_neighbors`` searches the index with a vector and
  returns the raw matches (up to the configured neighbor count, unfiltered).
- ``GET /tools/content/{content_id}`` returns the stored content and link.
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends

from services.query.app.retriever import Retriever
from shared.models import (
    ContentToolResponse,
    EmbeddingToolRequest,
    EmbeddingToolResponse,
    NeighborMatch,
    NeighborsToolRequest,
)
from shared.tracing import span

from ..deps import get_retriever

router = APIRouter(prefix="/tools", tags=["tools"])


@router.post("/embedding", response_model=EmbeddingToolResponse)
async def embedding(
    req: EmbeddingToolRequest, retriever: Retriever = Depends(get_retriever)
) -> EmbeddingToolResponse:
    with span("tools.embedding"):
        values = await retriever.embed_query(req.text)
    return EmbeddingToolResponse(values=values)


@router.post("/nearest_neighbors", response_model=List[NeighborMatch])
async def nearest_neighbors(
    req: NeighborsToolRequest, retriever: Retriever = Depends(get_retriever)
) -> List[NeighborMatch]:
    with span("tools.nearest_neighbors", dim=len(req.values)) as sp:
        matches = await retriever.nearest_neighbors(req.values)
        sp.record(matches=len(matches))
    return matches


@router.get("/content/{content_id}", response_model=ContentToolResponse)
async def content(
    content_id: str, retriever: Retriever = Depends(get_retriever)
) -> ContentToolResponse:
    entry = await retriever.content(content_id)
    return ContentToolResponse(content=entry.content, link=entry.source_link)
