"""Conversation history and content lookups over the key-value store.

``ConversationStore`` keeps one row per session in the query-context table.
Every exchange is appended as a new version of the context column, encoded
as ``question___answer`` and timestamped in microseconds, so reading all
versions in timestamp order yields the conversation history. Concurrent
writers for the same session are not serialized; the store's latest-wins
cell semantics apply.

``ContentStore`` resolves content ids (vector index neighbor ids) to the
chunk text and source link written by the ingestion pipeline, and exposes
the administrative listing/removal used to keep the index and store aligned.
"""

from __future__ import annotations

import time
from typing import Iterable, List, Optional

from shared.errors import CollaboratorError, ContentResolutionError
from shared.kv_store import KeyValueStore
from shared.logger import get_logger
from shared.models import ContentEntry, ConversationContext, QAndA
from shared.result import unwrap
from shared.retry import SINGLE_ATTEMPT, RetryPolicy, call_with_retries
from shared.settings import Settings

logger = get_logger(__name__)

QA_SEPARATOR = "___"


def _now_micros() -> int:
    return time.time_ns() // 1000


def encode_qanda(question: str, answer: str) -> str:
    return f"{question}{QA_SEPARATOR}{answer}"


def decode_qanda(raw: str) -> Optional[QAndA]:
    """Parse a stored exchange; return None for malformed values."""
    parts = raw.split(QA_SEPARATOR)
    if len(parts) != 2:
        logger.warning("Skipping non valid stored exchange: %r", raw[:200])
        return None
    return QAndA(question=parts[0], answer=parts[1])


class ConversationStore:
    def __init__(
        self,
        kv: KeyValueStore,
        settings: Settings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._kv = kv
        self._table = settings.query_context_table
        self._column = settings.query_context_column
        self._policy = policy or RetryPolicy.from_settings(settings)

    async def retrieve_conversation_context(
        self, session_id: str
    ) -> ConversationContext:
        """Return the stored history for a session, oldest first."""
        if not session_id.strip():
            # stateless mode, nothing to be retrieved
            return ConversationContext(session_id=session_id, history=[])
        result = await call_with_retries(
            "read_conversation_context",
            lambda: self._kv.get(self._table, session_id),
            self._policy,
        )
        row = unwrap(result, "read_conversation_context")
        if row is None:
            return ConversationContext(session_id=session_id, history=[])
        history = [
            qa
            for qa in (decode_qanda(c.value) for c in row.versions(self._column))
            if qa is not None
        ]
        return ConversationContext(session_id=session_id, history=history)

    async def store_query_to_context(
        self, session_id: str, question: str, answer: str
    ) -> None:
        """Append an exchange to the session history."""
        timestamp = _now_micros()
        result = await call_with_retries(
            "store_query_context",
            lambda: self._kv.put(
                self._table,
                session_id,
                self._column,
                encode_qanda(question, answer),
                timestamp,
            ),
            self._policy,
        )
        unwrap(result, "store_query_context")

    async def remove_session_info(self, session_id: str) -> int:
        """Drop the whole session history in a single attempt."""
        result = await call_with_retries(
            "remove_session_info",
            lambda: self._kv.delete_row(self._table, session_id),
            SINGLE_ATTEMPT,
        )
        return unwrap(result, "remove_session_info")


class ContentStore:
    def __init__(
        self,
        kv: KeyValueStore,
        settings: Settings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._kv = kv
        self._table = settings.content_table
        self._content_column = settings.content_column_content
        self._link_column = settings.content_column_link
        self._policy = policy or RetryPolicy.from_settings(settings)

    async def query_by_prefix(self, key: str) -> ContentEntry:
        """Return the latest content and link for ``key``.

        Missing rows or columns yield empty strings. Raises
        ContentResolutionError when the read itself fails.
        """
        result = await call_with_retries(
            "read_content", lambda: self._kv.get(self._table, key), self._policy
        )
        row = unwrap(result, "read_content", ContentResolutionError)
        if row is None:
            return ContentEntry(key=key)
        return ContentEntry(
            key=key,
            content=row.latest(self._content_column) or "",
            source_link=row.latest(self._link_column) or "",
        )

    async def delete_rows_by_keys(self, keys: Iterable[str]) -> int:
        deleted = 0
        for key in keys:
            result = await call_with_retries(
                "delete_content",
                lambda key=key: self._kv.delete_row(self._table, key),
                self._policy,
            )
            deleted += unwrap(result, "delete_content")
        return deleted

    async def retrieve_all_content_entries(self) -> List[str]:
        result = await call_with_retries(
            "scan_content", lambda: self._kv.scan_all_keys(self._table), self._policy
        )
        try:
            return unwrap(result, "scan_content")
        except CollaboratorError:
            logger.error("Problems while listing content ids: %s", result)
            raise
