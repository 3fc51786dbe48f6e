import asyncio
from unittest.mock import patch

import pytest
from conftest import (
    FakeChatModel,
    FakeEmbedder,
    FakeIndex,
    chat_response,
    search_response,
)
from fastapi.testclient import TestClient

from services.api_gateway.app.deps import (
    get_content_store,
    get_orchestrator,
    get_retriever,
    get_vector_index,
)
from services.api_gateway.app.main import app
from services.query.app.retriever import Retriever
from services.retrieval.app.faiss_store import FaissVectorIndex
from shared import tracing


@pytest.fixture
def index() -> FaissVectorIndex:
    faiss_index = FaissVectorIndex(dim=8)
    faiss_index.upsert(["doc-1", "doc-2"], [[0.1] * 8, [0.9] * 8])
    return faiss_index


@pytest.fixture
def wired(kv, settings, content_store, index, make_orchestrator):
    async def seed():
        t = settings.content_table
        await kv.put(t, "doc-1", settings.content_column_content, "Alpha text", 1)
        await kv.put(t, "doc-1", settings.content_column_link, "https://alpha", 1)
        await kv.put(t, "doc-2", settings.content_column_content, "Beta text", 1)

    asyncio.run(seed())
    orchestrator, _, _, embedder, _ = make_orchestrator(
        chat=FakeChatModel(chat_response("Alpha is first.")),
        index=FakeIndex(search_response(("doc-1", 0.05), ("doc-2", 0.8))),
    )
    retriever = Retriever(FakeEmbedder(), index, content_store, settings)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_retriever] = lambda: retriever
    app.dependency_overrides[get_content_store] = lambda: content_store
    app.dependency_overrides[get_vector_index] = lambda: index
    yield orchestrator, embedder
    app.dependency_overrides.clear()


def test_health_endpoints() -> None:
    client = TestClient(app)
    assert client.get("/").json() == {"status": "ok", "service": "query-service"}
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_open_a_root_span_named_after_the_trace(settings) -> None:
    client = TestClient(app)
    with patch.object(
        tracing.tracer, "start_span", wraps=tracing.tracer.start_span
    ) as start_span:
        client.get("/health")
    name = start_span.call_args_list[0].args[0]
    assert name == settings.trace_name == "rag-query-trace"
    assert start_span.call_args_list[0].kwargs["path"] == "/health"


def test_query_content_returns_camel_case_result(wired) -> None:
    client = TestClient(app)
    payload = {"text": "What is alpha?", "sessionId": "s1"}
    r = client.post("/query/content", json=payload)
    assert r.status_code == 200
    body = r.json()
    assert body["content"] == "Alpha is first."
    assert body["previousConversationSummary"] == ""
    assert body["sourceLinks"] == [{"link": "https://alpha", "distance": 0.05}]
    assert body["citationMetadata"] == []
    assert body["safetyAttributes"] == [
        {"blocked": False, "categories": [], "scores": []}
    ]


def test_missing_session_is_a_client_error(wired) -> None:
    client = TestClient(app)
    r = client.post("/query/content", json={"text": "q"})
    assert r.status_code == 400
    assert r.json() == {
        "error": "Session id should be present, even if empty. "
        "Query: 'q'. Session id: 'None'"
    }


def test_non_positive_max_neighbors_is_a_client_error(wired) -> None:
    client = TestClient(app)
    r = client.post(
        "/query/content",
        json={"text": "q", "sessionId": "", "parameters": {"maxNeighbors": 0}},
    )
    assert r.status_code == 400
    assert "maxNeighbors" in r.json()["error"]


def test_collaborator_failure_maps_to_bad_gateway(wired) -> None:
    _, embedder = wired
    embedder.fail = ValueError("model not found")
    client = TestClient(app)
    r = client.post("/query/content", json={"text": "q", "sessionId": "s2"})
    assert r.status_code == 502
    error = r.json()["error"]
    assert error.startswith("Problems while executing the query resource. ")
    assert "retrieve_embedding failed" in error
    assert error.endswith("Query: 'q'. Session id: 's2'")


def test_unexpected_errors_map_to_server_error(wired) -> None:
    class Exploding:
        async def query(self, request):
            raise KeyError("surprise")

    app.dependency_overrides[get_orchestrator] = lambda: Exploding()
    client = TestClient(app, raise_server_exceptions=False)
    r = client.post("/query/content", json={"text": "q", "sessionId": ""})
    assert r.status_code == 500
    assert "surprise" in r.json()["error"]


def test_tool_surface(wired) -> None:
    client = TestClient(app)
    values = client.post("/tools/embedding", json={"text": "alpha"}).json()["values"]
    assert len(values) == 8

    r = client.post("/tools/nearest_neighbors", json={"values": [0.1] * 8})
    assert r.status_code == 200
    matches = r.json()
    assert matches[0]["id"] == "doc-1"
    assert [m["id"] for m in matches] == ["doc-1", "doc-2"]

    assert client.get("/tools/content/doc-1").json() == {
        "content": "Alpha text",
        "link": "https://alpha",
    }
    assert client.get("/tools/content/nope").json() == {"content": "", "link": ""}


def test_content_administration(wired, index) -> None:
    client = TestClient(app)
    assert client.get("/content/ids").json() == {"ids": ["doc-1", "doc-2"]}

    r = client.post("/content/delete", json={"ids": ["doc-2"]})
    assert r.json() == {"deleted": 1}
    assert index.size == 1
    assert client.get("/content/ids").json() == {"ids": ["doc-1"]}


def test_content_delete_keeps_ids_sharing_the_prefix(
    wired, kv, settings, index
) -> None:
    index.upsert(["doc-10"], [[0.5] * 8])
    asyncio.run(
        kv.put(settings.content_table, "doc-10", "content", "Gamma text", 1)
    )
    client = TestClient(app)

    r = client.post("/content/delete", json={"ids": ["doc-1"]})
    assert r.json() == {"deleted": 1}
    assert client.get("/content/ids").json() == {"ids": ["doc-10", "doc-2"]}
    assert index.size == 2
    hits = client.post("/tools/nearest_neighbors", json={"values": [0.5] * 8}).json()
    assert hits[0]["id"] == "doc-10"
