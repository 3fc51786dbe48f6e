"""Dependency providers for the API gateway.

Each provider builds its component once per process and is injected into
route handlers via FastAPI's ``Depends``. Tests replace them through
``app.dependency_overrides`` so no network client is ever constructed.
"""

from __future__ import annotations

from functools import lru_cache

from services.conversation.app.store import ContentStore, ConversationStore
from services.embeddings.app.embeddings import EmbeddingsClient
from services.llm_generate.app.gemini import GeminiChatModel
from services.llm_generate.app.prompts import (
    check_found_in_internet,
    negative_answer_classifier,
)
from services.llm_generate.app.synthesizer import AnswerSynthesizer
from services.query.app.curator import ContextCurator
from services.query.app.orchestrator import QueryOrchestrator
from services.query.app.provenance import ProvenanceAggregator
from services.query.app.retriever import Retriever
from services.retrieval.app.faiss_store import FaissVectorIndex
from shared.kv_store import KeyValueStore, build_kv_store
from shared.settings import Settings


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_kv_store() -> KeyValueStore:
    return build_kv_store(get_settings())


@lru_cache
def get_content_store() -> ContentStore:
    return ContentStore(get_kv_store(), get_settings())


@lru_cache
def get_vector_index() -> FaissVectorIndex:
    return FaissVectorIndex.from_settings(get_settings())


@lru_cache
def get_retriever() -> Retriever:
    s = get_settings()
    return Retriever(EmbeddingsClient(s), get_vector_index(), get_content_store(), s)


@lru_cache
def get_orchestrator() -> QueryOrchestrator:
    s = get_settings()
    is_negative = negative_answer_classifier(s.negative_answer_patterns)
    synthesizer = AnswerSynthesizer(
        GeminiChatModel(s),
        s,
        summary_model=GeminiChatModel(s, model=s.gemini_summary_model),
    )
    return QueryOrchestrator(
        conversations=ConversationStore(get_kv_store(), s),
        curator=ContextCurator(is_negative),
        synthesizer=synthesizer,
        retriever=get_retriever(),
        provenance=ProvenanceAggregator(is_negative, check_found_in_internet),
        settings=s,
    )
