"""Error taxonomy for the query pipeline.

- ``InputError``: the request itself is invalid; no external call was made.
- ``CollaboratorError``: an external service call (storage, embeddings,
  vector search, generation) exhausted its retries or failed for good.
- ``ContentResolutionError``: a single neighbor lookup failed. Callers
  degrade the item to empty content instead of aborting.
- ``BackgroundTaskError``: a detached task failed. Logged, never surfaced.
- ``QueryFailedError``: the single error raised to the caller for any fatal
  failure of a query, carrying the request identifiers.
"""

from __future__ import annotations

from typing import Optional


class QueryError(Exception):
    """Base class for errors raised while answering a query."""


def _describe(
    message: str, query_text: Optional[str], session_id: Optional[str]
) -> str:
    return f"{message} Query: '{query_text}'. Session id: '{session_id}'"


class InputError(QueryError):
    def __init__(
        self,
        message: str,
        query_text: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.query_text = query_text
        self.session_id = session_id

    def describe(self) -> str:
        return _describe(self.message, self.query_text, self.session_id)


class CollaboratorError(QueryError):
    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class ContentResolutionError(CollaboratorError):
    pass


class BackgroundTaskError(QueryError):
    pass


class QueryFailedError(QueryError):
    def __init__(
        self,
        message: str,
        query_text: Optional[str],
        session_id: Optional[str],
    ) -> None:
        super().__init__(message)
        self.message = message
        self.query_text = query_text
        self.session_id = session_id

    def describe(self) -> str:
        return _describe(self.message, self.query_text, self.session_id)
