import os
from typing import Callable, List, Optional, Sequence, Tuple

import pytest

# Deterministic, offline-friendly tests
os.environ.setdefault("OFFLINE_MODE", "1")
os.environ.setdefault("LANGFUSE_ENABLED", "0")
os.environ.setdefault("REDIS_URL", "")

# Small vectors keep the FAISS tests fast
os.environ.setdefault("EMBEDDING_DIM", "8")

from services.conversation.app.store import ContentStore, ConversationStore
from services.llm_generate.app.synthesizer import AnswerSynthesizer
from services.query.app.curator import ContextCurator
from services.query.app.orchestrator import QueryOrchestrator
from services.query.app.provenance import ProvenanceAggregator
from services.query.app.retriever import Retriever
from shared.kv_store import InMemoryKeyValueStore
from shared.models import (
    Candidate,
    ChatResponse,
    Exchange,
    GenerationParams,
    NeighborGroup,
    NeighborMatch,
    Prediction,
    SafetyAttributes,
    SearchResponse,
)
from shared.settings import Settings


def chat_response(*texts: str, blocked: bool = False) -> ChatResponse:
    return ChatResponse(
        predictions=[
            Prediction(
                candidates=[Candidate(content=t)],
                safety_attributes=[SafetyAttributes(blocked=blocked)],
            )
            for t in texts
        ]
    )


def search_response(*distances: Tuple[str, float]) -> SearchResponse:
    return SearchResponse(
        nearest_neighbors=[
            NeighborGroup(
                neighbors=[NeighborMatch(id=i, distance=d) for i, d in distances]
            )
        ]
    )


class FakeChatModel:
    """Records predict calls and replays queued responses."""

    def __init__(self, *responses: ChatResponse, fail: Optional[Exception] = None):
        self.responses = list(responses)
        self.fail = fail
        self.calls: List[dict] = []

    async def predict(
        self,
        system_context: str,
        exemplars: Sequence[Tuple[str, str]],
        turns: Sequence[Exchange],
        params: GenerationParams,
    ) -> ChatResponse:
        self.calls.append(
            {
                "system_context": system_context,
                "exemplars": list(exemplars),
                "turns": list(turns),
                "params": params,
            }
        )
        if self.fail is not None:
            raise self.fail
        if self.responses:
            return self.responses.pop(0)
        return chat_response("default answer")


class FakeEmbedder:
    def __init__(self, dim: int = 8, fail: Optional[Exception] = None):
        self.dim = dim
        self.fail = fail
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if self.fail is not None:
            raise self.fail
        return [[0.1] * self.dim for _ in texts]


class FakeIndex:
    def __init__(self, response: Optional[SearchResponse] = None):
        self.response = response or SearchResponse(nearest_neighbors=[NeighborGroup()])
        self.calls: List[Tuple[int, int]] = []

    async def search(self, vectors: List[List[float]], top_n: int) -> SearchResponse:
        self.calls.append((len(vectors), top_n))
        return self.response


@pytest.fixture
def settings() -> Settings:
    return Settings(
        offline_mode=True,
        retry_max_attempts=3,
        retry_backoff_seconds=0.0,
        retry_jitter_seconds=0.0,
        call_timeout_seconds=5.0,
        log_interactions=False,
    )


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def conversations(kv, settings) -> ConversationStore:
    return ConversationStore(kv, settings)


@pytest.fixture
def content_store(kv, settings) -> ContentStore:
    return ContentStore(kv, settings)


@pytest.fixture
def make_orchestrator(kv, settings, conversations, content_store) -> Callable:
    """Build an orchestrator around fakes; returns it with its collaborators."""

    def _make(
        chat: Optional[FakeChatModel] = None,
        summary: Optional[FakeChatModel] = None,
        embedder: Optional[FakeEmbedder] = None,
        index: Optional[FakeIndex] = None,
        settings_override: Optional[Settings] = None,
    ):
        s = settings_override or settings
        chat = chat or FakeChatModel()
        summary = summary or FakeChatModel(chat_response("a short summary"))
        embedder = embedder or FakeEmbedder()
        index = index or FakeIndex()
        orchestrator = QueryOrchestrator(
            conversations=conversations,
            curator=ContextCurator(),
            synthesizer=AnswerSynthesizer(chat, s, summary_model=summary),
            retriever=Retriever(embedder, index, content_store, s),
            provenance=ProvenanceAggregator(),
            settings=s,
        )
        return orchestrator, chat, summary, embedder, index

    return _make
