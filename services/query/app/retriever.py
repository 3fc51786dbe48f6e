"""Semantic retrieval for the query pipeline.

The question (plus the summary of the recent conversation, when there is
one) is embedded once and searched against the vector index. Candidates
from every neighbor group are flattened, those not closer than the
configured maximum distance are dropped (this also removes the anchor
vector the index always holds), the rest are ranked most similar first and
capped. Each kept neighbor is then resolved to its stored content and
source link; a failed lookup degrades that item to empty strings.

The same collaborators back the tool surface (embedding, nearest neighbors
and content lookup pass-throughs).
"""

from __future__ import annotations

import asyncio
import math
from typing import List, Optional, Protocol

from shared.errors import ContentResolutionError
from shared.logger import get_logger
from shared.models import ContentEntry, NeighborMatch, RetrievedItem, SearchResponse
from shared.result import unwrap
from shared.retry import RetryPolicy, call_with_retries
from shared.settings import Settings

from services.conversation.app.store import ContentStore

logger = get_logger(__name__)


class Embedder(Protocol):
    async def embed(self, texts: List[str]) -> List[List[float]]: ...


class VectorIndex(Protocol):
    async def search(
        self, vectors: List[List[float]], top_n: int
    ) -> SearchResponse: ...


def select_neighbors(
    response: SearchResponse, max_distance: float, limit: int
) -> List[NeighborMatch]:
    """Flatten all groups, keep matches closer than ``max_distance``, rank, cap."""
    candidates = [m for group in response.nearest_neighbors for m in group.neighbors]
    kept = [m for m in candidates if m.distance < max_distance]
    kept.sort(key=lambda m: m.distance)
    return kept[: max(limit, 0)]


def neighbor_limit(configured: int, override: Optional[int]) -> int:
    return int(min(configured, override if override is not None else math.inf))


def query_text(query: str, prior_summary: str) -> str:
    return f"{query}\n{prior_summary or ''}"


class Retriever:
    def __init__(
        self,
        embeddings: Embedder,
        index: VectorIndex,
        content_store: ContentStore,
        settings: Settings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._embeddings = embeddings
        self._index = index
        self._content = content_store
        self._max_neighbors = settings.max_neighbors
        self._max_distance = settings.max_neighbor_distance
        self._policy = policy or RetryPolicy.from_settings(settings)

    async def embed_query(self, text: str) -> List[float]:
        result = await call_with_retries(
            "retrieve_embedding",
            lambda: self._embeddings.embed([text]),
            self._policy,
        )
        return unwrap(result, "retrieve_embedding")[0]

    async def search(self, vector: List[float], top_n: int) -> SearchResponse:
        result = await call_with_retries(
            "nearest_neighbors",
            lambda: self._index.search([vector], top_n),
            self._policy,
        )
        return unwrap(result, "nearest_neighbors")

    async def retrieve(
        self, query: str, prior_summary: str, cap: Optional[int] = None
    ) -> List[RetrievedItem]:
        limit = neighbor_limit(self._max_neighbors, cap)
        vector = await self.embed_query(query_text(query, prior_summary))
        response = await self.search(vector, limit)
        neighbors = select_neighbors(response, self._max_distance, limit)
        return list(await asyncio.gather(*(self._resolve(n) for n in neighbors)))

    async def _resolve(self, neighbor: NeighborMatch) -> RetrievedItem:
        try:
            entry = await self._content.query_by_prefix(neighbor.id)
        except ContentResolutionError as exc:
            logger.warning(
                "Content for neighbor %s not available: %s", neighbor.id, exc
            )
            entry = ContentEntry(key=neighbor.id)
        return RetrievedItem(
            content_id=neighbor.id,
            content=entry.content,
            source_link=entry.source_link,
            relevance=neighbor.distance,
        )

    # ------------------------------ tools ------------------------------ #

    async def nearest_neighbors(self, vector: List[float]) -> List[NeighborMatch]:
        response = await self.search(vector, self._max_neighbors)
        return [m for group in response.nearest_neighbors for m in group.neighbors]

    async def content(self, content_id: str) -> ContentEntry:
        return await self._content.query_by_prefix(content_id)
