import asyncio

import httpx
import pytest
from conftest import FakeEmbedder, FakeIndex, search_response

from services.query.app.retriever import (
    Retriever,
    neighbor_limit,
    query_text,
    select_neighbors,
)
from shared.errors import CollaboratorError, ContentResolutionError
from shared.models import NeighborGroup, NeighborMatch, SearchResponse


async def _seed(kv, settings, key: str, content: str, link: str) -> None:
    await kv.put(
        settings.content_table, key, settings.content_column_content, content, 1
    )
    await kv.put(settings.content_table, key, settings.content_column_link, link, 1)


def test_select_filters_before_ranking_and_capping() -> None:
    response = search_response(("a", 0.1), ("b", 0.6), ("c", 0.2), ("d", 0.9))
    kept = select_neighbors(response, max_distance=0.4, limit=3)
    assert [(m.id, m.distance) for m in kept] == [("a", 0.1), ("c", 0.2)]


def test_select_flattens_groups_and_caps() -> None:
    response = SearchResponse(
        nearest_neighbors=[
            NeighborGroup(neighbors=[NeighborMatch(id="x", distance=0.3)]),
            NeighborGroup(
                neighbors=[
                    NeighborMatch(id="y", distance=0.05),
                    NeighborMatch(id="z", distance=0.2),
                ]
            ),
        ]
    )
    kept = select_neighbors(response, max_distance=0.4, limit=2)
    assert [m.id for m in kept] == ["y", "z"]


def test_threshold_is_exclusive() -> None:
    response = search_response(("edge", 0.4), ("in", 0.39))
    assert [m.id for m in select_neighbors(response, 0.4, 5)] == ["in"]


def test_neighbor_limit_uses_smaller_of_configured_and_override() -> None:
    assert neighbor_limit(3, None) == 3
    assert neighbor_limit(3, 10) == 3
    assert neighbor_limit(3, 1) == 1


def test_query_text_appends_summary() -> None:
    assert query_text("question", "summary") == "question\nsummary"
    assert query_text("question", "") == "question\n"


def test_retrieve_resolves_content_and_links(kv, settings, content_store) -> None:
    async def run():
        await _seed(kv, settings, "doc-1", "Alpha content", "https://alpha")
        await _seed(kv, settings, "doc-2", "Beta content", "https://beta")
        index = FakeIndex(
            search_response(("doc-2", 0.3), ("anchor", 1.5), ("doc-1", 0.1))
        )
        embedder = FakeEmbedder()
        retriever = Retriever(embedder, index, content_store, settings)
        items = await retriever.retrieve("What is alpha?", "we talked about beta")
        return items, embedder, index

    items, embedder, index = asyncio.run(run())
    assert [i.content_id for i in items] == ["doc-1", "doc-2"]
    assert items[0].content == "Alpha content"
    assert items[0].source_link == "https://alpha"
    assert items[0].relevance == 0.1
    assert embedder.calls == [["What is alpha?\nwe talked about beta"]]
    assert index.calls == [(1, settings.max_neighbors)]


def test_retrieve_honours_request_cap(settings, content_store) -> None:
    index = FakeIndex(search_response(("a", 0.1), ("b", 0.2), ("c", 0.3)))
    retriever = Retriever(FakeEmbedder(), index, content_store, settings)
    items = asyncio.run(retriever.retrieve("q", "", cap=1))
    assert [i.content_id for i in items] == ["a"]
    assert index.calls == [(1, 1)]


def test_missing_content_yields_empty_strings(settings, content_store) -> None:
    index = FakeIndex(search_response(("unknown", 0.1)))
    retriever = Retriever(FakeEmbedder(), index, content_store, settings)
    items = asyncio.run(retriever.retrieve("q", ""))
    assert items[0].content == "" and items[0].source_link == ""


def test_failed_content_lookup_degrades_item(settings) -> None:
    class BrokenContentStore:
        async def query_by_prefix(self, key):
            raise ContentResolutionError("read_content", "store unavailable")

    index = FakeIndex(search_response(("doc-1", 0.1)))
    retriever = Retriever(FakeEmbedder(), index, BrokenContentStore(), settings)
    items = asyncio.run(retriever.retrieve("q", ""))
    assert len(items) == 1
    assert items[0].content == "" and items[0].source_link == ""
    assert items[0].relevance == 0.1


def test_embedding_failure_is_fatal(settings, content_store) -> None:
    embedder = FakeEmbedder(fail=ValueError("bad request"))
    index = FakeIndex()
    retriever = Retriever(embedder, index, content_store, settings)
    with pytest.raises(CollaboratorError) as exc_info:
        asyncio.run(retriever.retrieve("q", ""))
    assert exc_info.value.operation == "retrieve_embedding"
    assert len(embedder.calls) == 1
    assert index.calls == []


def test_transient_embedding_failures_are_retried(settings, content_store) -> None:
    embedder = FakeEmbedder(fail=httpx.ConnectError("connection refused"))
    retriever = Retriever(embedder, FakeIndex(), content_store, settings)
    with pytest.raises(CollaboratorError):
        asyncio.run(retriever.retrieve("q", ""))
    assert len(embedder.calls) == settings.retry_max_attempts


def test_nearest_neighbors_tool_returns_raw_matches(settings, content_store) -> None:
    index = FakeIndex(search_response(("a", 0.1), ("anchor", 2.0)))
    retriever = Retriever(FakeEmbedder(), index, content_store, settings)
    matches = asyncio.run(retriever.nearest_neighbors([0.1] * 8))
    assert [m.id for m in matches] == ["a", "anchor"]
