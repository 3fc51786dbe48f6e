"""Embedding client (Gemini, remote service, or deterministic offline).

Returns one dense vector per input text, order-preserving:
- If Settings.offline_mode is True, produce stable, deterministic vectors
  derived from SHA-256 (useful for reproducible tests).
- Else if EMBEDDINGS_URL is set, POST ``{"texts": [...], "dim": n}`` to
  ``{EMBEDDINGS_URL}/embed`` and read ``embeddings`` (or ``vectors``).
- Else call Gemini's embed_content through the google-genai SDK with
  ``output_dimensionality=Settings.embedding_dim``.

Unlike batch indexing, the query path must not embed with a different model
than the index was built with, so provider errors are raised rather than
replaced by deterministic vectors. Retries are applied by the caller.

Environment:
- GEMINI_API_KEY
- EMBEDDING_MODEL (default: gemini-embedding-001)
- EMBEDDING_DIM (default: 768)
"""

from __future__ import annotations

import hashlib
from typing import List, Optional

import httpx
from google import genai
from google.genai import types

from shared.settings import Settings


def deterministic_embed(text: str, dim: int = 768) -> List[float]:
    """Deterministic byte-based embedding from SHA-256, length = dim."""
    h = hashlib.sha256((text or "").encode("utf-8")).digest()
    buf = (h * ((dim // len(h)) + 1))[:dim]
    # Values in [0, 1]; stable across runs
    return [b / 255.0 for b in buf]


class EmbeddingsClient:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._url = (settings.embeddings_url or "").rstrip("/")
        self._client: Optional[genai.Client] = None
        if not settings.offline_mode and not self._url and settings.gemini_api_key:
            self._client = genai.Client(api_key=settings.gemini_api_key)

    @property
    def dim(self) -> int:
        return int(self._settings.embedding_dim or 768)

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []
        if self._settings.offline_mode:
            vectors = [deterministic_embed(t, self.dim) for t in texts]
        elif self._url:
            vectors = await self._embed_http(texts)
        elif self._client is not None:
            vectors = await self._embed_gemini(texts)
        else:
            raise RuntimeError(
                "No embedding provider configured "
                "(set GEMINI_API_KEY or EMBEDDINGS_URL)"
            )
        if len(vectors) != len(texts):
            raise ValueError(
                f"Expected {len(texts)} embeddings, provider returned {len(vectors)}"
            )
        return vectors

    async def _embed_http(self, texts: List[str]) -> List[List[float]]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5, read=60, write=10, pool=5)
        ) as client:
            r = await client.post(
                f"{self._url}/embed", json={"texts": texts, "dim": self.dim}
            )
            r.raise_for_status()
            data = r.json()
        vectors = data.get("embeddings") or data.get("vectors") or []
        return [[float(x) for x in v] for v in vectors]

    async def _embed_gemini(self, texts: List[str]) -> List[List[float]]:
        resp = await self._client.aio.models.embed_content(
            model=self._settings.embedding_model,
            contents=texts,
            config=types.EmbedContentConfig(output_dimensionality=self.dim),
        )
        out: List[List[float]] = []
        for emb in resp.embeddings or []:
            if not emb.values:
                raise ValueError("No embedding values in Gemini response")
            out.append([float(x) for x in emb.values])
        return out
