"""FAISS vector index used for nearest-neighbor search.

This module encapsulates a persistent FAISS index keyed by string content
ids (the same ids under which chunk text and links live in the content
table). It supports:
- Loading an index from disk or creating one with the configured metric.
- Upserting vectors for content ids and removing them.
- Batched search: one neighbor group per query vector, each match carrying
  a distance where smaller means more similar.

Distances:
- ``l2`` (default): squared L2 distance as reported by ``IndexFlatL2``.
- ``ip``: vectors are L2-normalised and the inner product ``s`` is reported
  as the cosine distance ``1 - s``.

The id mapping is persisted next to the index as JSON:
{
  "content_to_faiss_id": { content_id: int, ... },
  "faiss_dim": int,
  "faiss_metric": "ip"|"l2"
}
"""

from __future__ import annotations

import asyncio
import json
import os
import threading
from typing import Dict, Iterable, List, Optional

import faiss
import numpy as np

from shared.logger import get_logger
from shared.models import NeighborGroup, NeighborMatch, SearchResponse
from shared.settings import Settings

logger = get_logger(__name__)


def _ensure_dirs(path: str) -> None:
    d = os.path.dirname(path)
    if d and not os.path.exists(d):
        os.makedirs(d, exist_ok=True)


class FaissVectorIndex:
    def __init__(
        self,
        dim: int,
        metric: str = "l2",
        index_path: Optional[str] = None,
        id_map_path: Optional[str] = None,
    ) -> None:
        self.dim = int(dim)
        self.metric = (metric or "l2").lower()
        self._index_path = index_path
        self._id_map_path = id_map_path
        self._lock = threading.Lock()
        self._content_to_fid: Dict[str, int] = {}
        self._fid_to_content: Dict[int, str] = {}
        self._index = self._load() or self._create()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FaissVectorIndex":
        return cls(
            dim=settings.embedding_dim,
            metric=settings.faiss_metric,
            index_path=settings.faiss_index_path,
            id_map_path=settings.faiss_id_map_path,
        )

    def _create(self):
        if self.metric == "ip":
            base = faiss.IndexFlatIP(self.dim)
        else:
            base = faiss.IndexFlatL2(self.dim)
        return faiss.IndexIDMap2(base)

    def _load(self):
        if not (self._index_path and os.path.exists(self._index_path)):
            return None
        index = faiss.read_index(self._index_path)
        if self._id_map_path and os.path.exists(self._id_map_path):
            with open(self._id_map_path, "r", encoding="utf-8") as f:
                m = json.load(f)
            self._content_to_fid = {
                k: int(v) for k, v in m.get("content_to_faiss_id", {}).items()
            }
            self._fid_to_content = {v: k for k, v in self._content_to_fid.items()}
        logger.info(
            "Loaded FAISS index from %s (%d vectors)", self._index_path, index.ntotal
        )
        return index

    def _persist(self) -> None:
        if not self._index_path:
            return
        _ensure_dirs(self._index_path)
        faiss.write_index(self._index, self._index_path)
        if self._id_map_path:
            _ensure_dirs(self._id_map_path)
            with open(self._id_map_path, "w", encoding="utf-8") as f:
                json.dump(
                    {
                        "content_to_faiss_id": self._content_to_fid,
                        "faiss_dim": self.dim,
                        "faiss_metric": self.metric,
                    },
                    f,
                )

    def _prepare(self, vectors: List[List[float]]) -> np.ndarray:
        xb = np.asarray(vectors, dtype="float32").reshape(-1, self.dim)
        if self.metric == "ip":
            norms = np.linalg.norm(xb, axis=1, keepdims=True)
            norms[norms == 0] = 1.0
            xb = xb / norms
        return xb

    def _assign_ids(self, n: int) -> List[int]:
        """Assign n new integer IDs not in use (simple incremental allocator)."""
        cur = max(self._fid_to_content, default=-1) + 1
        return list(range(cur, cur + n))

    @property
    def size(self) -> int:
        return int(self._index.ntotal)

    def upsert(self, content_ids: List[str], vectors: List[List[float]]) -> None:
        """Replace vectors for known content ids, add the rest."""
        if len(content_ids) != len(vectors):
            raise ValueError("content_ids and vectors must have the same length")
        if not content_ids:
            return
        with self._lock:
            xb = self._prepare(vectors)
            known = [
                i for i, cid in enumerate(content_ids) if cid in self._content_to_fid
            ]
            if known:
                self._index.remove_ids(
                    np.asarray(
                        [self._content_to_fid[content_ids[i]] for i in known],
                        dtype="int64",
                    )
                )
            new_ids = self._assign_ids(len(content_ids) - len(known))
            fids: List[int] = []
            fresh = iter(new_ids)
            for cid in content_ids:
                fid = self._content_to_fid.get(cid)
                if fid is None:
                    fid = next(fresh)
                    self._content_to_fid[cid] = fid
                    self._fid_to_content[fid] = cid
                fids.append(fid)
            self._index.add_with_ids(xb, np.asarray(fids, dtype="int64"))
            self._persist()

    def remove(self, content_ids: Iterable[str]) -> int:
        with self._lock:
            fids = [
                fid
                for cid in content_ids
                if (fid := self._content_to_fid.pop(cid, None)) is not None
            ]
            if not fids:
                return 0
            self._index.remove_ids(np.asarray(fids, dtype="int64"))
            for fid in fids:
                self._fid_to_content.pop(fid, None)
            self._persist()
            return len(fids)

    def search_sync(self, vectors: List[List[float]], top_n: int) -> SearchResponse:
        if not vectors:
            return SearchResponse(nearest_neighbors=[])
        with self._lock:
            if self._index.ntotal == 0 or top_n <= 0:
                return SearchResponse(
                    nearest_neighbors=[NeighborGroup() for _ in vectors]
                )
            distances, idxs = self._index.search(self._prepare(vectors), int(top_n))
        groups: List[NeighborGroup] = []
        for row_d, row_i in zip(distances, idxs):
            matches: List[NeighborMatch] = []
            for dist, fid in zip(row_d, row_i):
                if fid == -1:
                    continue
                cid = self._fid_to_content.get(int(fid))
                if cid is None:
                    continue
                d = 1.0 - float(dist) if self.metric == "ip" else float(dist)
                matches.append(NeighborMatch(id=cid, distance=d))
            groups.append(NeighborGroup(neighbors=matches))
        return SearchResponse(nearest_neighbors=groups)

    async def search(self, vectors: List[List[float]], top_n: int) -> SearchResponse:
        """Search off the event loop; FAISS releases the GIL while searching."""
        return await asyncio.to_thread(self.search_sync, vectors, top_n)
