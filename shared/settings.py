"""Centralised application configuration.

Settings are loaded from environment variables or the `.env` file in the
project root. Using pydantic's BaseSettings provides convenient parsing
and type checking. The instance is frozen: it is the process-wide default
configuration threaded into the query components, while per-request
overrides are merged into new objects at the orchestrator boundary.
"""

from __future__ import annotations

from typing import List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_NEGATIVE_ANSWER_PATTERNS = [
    r"\bi (?:do not|don't|dont) know\b",
    r"\bi(?: am|'m) not sure\b",
    r"\bi (?:can ?not|can't|am unable to|am not able to) (?:answer|help|find)\b",
    r"\b(?:do not|don't) have (?:enough|any) (?:information|context)\b",
    r"\bno (?:relevant )?information (?:about|on|regarding)\b",
    r"\bnot (?:mentioned|provided) in the (?:context|documents?)\b",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    # Gemini
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "GEMINI_API_KEY", "GOOGLE_API_KEY", "gemini_api_key"
        ),
    )
    gemini_chat_model: str = Field(
        default="gemini-2.5-flash",
        validation_alias=AliasChoices(
            "GEMINI_CHAT_MODEL", "GEMINI_MODEL", "gemini_chat_model"
        ),
    )
    gemini_summary_model: str = Field(
        default="gemini-2.5-flash",
        validation_alias=AliasChoices("GEMINI_SUMMARY_MODEL", "gemini_summary_model"),
    )

    # Embeddings
    embedding_model: str = "gemini-embedding-001"
    embedding_dim: int = Field(
        default=768,
        validation_alias=AliasChoices(
            "EMBEDDING_DIM", "GEMINI_EMBEDDING_DIM", "embedding_dim"
        ),
    )
    # Remote embedding service (POST {url}/embed); Gemini is used when unset
    embeddings_url: str | None = None

    # Vector index
    faiss_index_path: str = "./data/faiss.index"
    faiss_id_map_path: str = "./data/faiss_ids.json"
    faiss_metric: str = "l2"  # "l2" or "ip"

    # Key-value storage (in-process store when no redis url is set)
    redis_url: str | None = None
    content_table: str = "content"
    content_column_content: str = "content"
    content_column_link: str = "link"
    query_context_table: str = "query_context"
    query_context_column: str = "context"

    # Retrieval
    max_neighbors: int = 3
    max_neighbor_distance: float = 0.4

    # Generation defaults
    temperature: float = 0.5
    max_output_tokens: int = 1024
    top_k: int = 40
    top_p: float = 0.95
    bot_context_expertise: str = ""
    include_own_knowledge: bool = True
    negative_answer_patterns: List[str] = Field(
        default_factory=lambda: list(DEFAULT_NEGATIVE_ANSWER_PATTERNS)
    )

    # Collaborator calls
    retry_max_attempts: int = 3
    retry_backoff_seconds: float = 0.5
    retry_jitter_seconds: float = 0.25
    call_timeout_seconds: float = 60.0

    # Unified toggles
    offline_mode: bool = False

    # Logging/observability
    log_level: str = "INFO"
    log_interactions: bool = False
    langfuse_enabled: bool = False
    langfuse_host: str = ""
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    trace_name: str = "rag-query-trace"
