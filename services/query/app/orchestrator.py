"""Query orchestration: one question in, one grounded answer out.

A request moves through a fixed sequence of steps, each traced as a span:

1. history   - load the session's stored exchanges (none for a blank session)
2. curate    - drop repeated questions and evasive answers, window the rest
3. summarize - summarize the window; a blocked summary discards the prior
               context for this turn and clears the session in the background
4. retrieve  - embed question + summary, search, resolve neighbor content
5. generate  - answer from the retrieved content and the carried exchanges
6. links     - deduplicated source links, suppressed for evasive, self-sourced
               or blocked answers
7. persist   - append the new exchange to the session, whatever the answer

Input problems raise ``InputError`` before any collaborator is called. Any
other failure aborts the remaining steps and is raised as a single
``QueryFailedError`` carrying the query text and session id. Side effects
already committed, such as a scheduled session clear, are not rolled back.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Set, Tuple

from shared.errors import BackgroundTaskError, InputError, QueryFailedError
from shared.logger import get_logger
from shared.models import (
    QAndA,
    QueryParameters,
    QueryResult,
    RetrievedItem,
    SourceLink,
    SynthesizedAnswer,
    UserQuery,
)
from shared.settings import Settings
from shared.tracing import estimate_tokens, log_event, span

from services.conversation.app.store import ConversationStore
from services.llm_generate.app.synthesizer import (
    AnswerSynthesizer,
    merge_generation_params,
)

from .curator import ContextCurator
from .provenance import ProvenanceAggregator
from .retriever import Retriever

logger = get_logger(__name__)


def validate_query(request: UserQuery) -> Tuple[str, str, QueryParameters]:
    """Return (session_id, text, parameters) or raise InputError."""
    text, session_id = request.text, request.session_id
    if session_id is None:
        raise InputError(
            "Session id should be present, even if empty.", text, session_id
        )
    if text is None:
        raise InputError("A valid question should be provided.", text, session_id)
    if not text.strip():
        raise InputError("Provided query is empty.", text, session_id)
    params = request.parameters or QueryParameters()
    if params.max_neighbors is not None and params.max_neighbors <= 0:
        raise InputError(
            f"maxNeighbors should be a positive number, got {params.max_neighbors}.",
            text,
            session_id,
        )
    return session_id, text, params


class QueryOrchestrator:
    def __init__(
        self,
        conversations: ConversationStore,
        curator: ContextCurator,
        synthesizer: AnswerSynthesizer,
        retriever: Retriever,
        provenance: ProvenanceAggregator,
        settings: Settings,
    ) -> None:
        self._conversations = conversations
        self._curator = curator
        self._synthesizer = synthesizer
        self._retriever = retriever
        self._provenance = provenance
        self._settings = settings
        # Strong references to detached tasks until they finish
        self.background_tasks: Set[asyncio.Task] = set()

    async def query(self, request: UserQuery) -> QueryResult:
        session_id, text, params = validate_query(request)
        try:
            with span("query", session_id=session_id, tokens=estimate_tokens(text)):
                return await self._answer(session_id, text, params)
        except Exception as exc:
            msg = "Problems while executing the query resource. "
            logger.error(
                "%sQuery: %r, session: %r", msg, text, session_id, exc_info=True
            )
            raise QueryFailedError(msg + str(exc), text, session_id) from exc

    async def _answer(
        self, session_id: str, text: str, params: QueryParameters
    ) -> QueryResult:
        with span("query.history", session_id=session_id) as sp:
            context = await self._conversations.retrieve_conversation_context(
                session_id
            )
            sp.record(exchanges=len(context.history))

        with span("query.curate") as sp:
            curated = self._curator.curate(context.history)
            window = self._curator.window_before_summary(curated)
            sp.record(curated=len(curated), window=len(window))

        with span("query.summarize", exchanges=len(window)) as sp:
            carried, summary = await self._summarization_gate(session_id, window)
            sp.record(carried=len(carried), summary_tokens=estimate_tokens(summary))

        with span("query.retrieve", cap=params.max_neighbors) as sp:
            items = await self._retriever.retrieve(text, summary, params.max_neighbors)
            sp.record(items=len(items))

        with span("query.generate") as sp:
            answer = await self._generate(text, params, carried, items)
            sp.record(blocked=answer.blocked, tokens=estimate_tokens(answer.text))

        with span("query.links") as sp:
            links = self._links(items, answer)
            sp.record(links=len(links))

        with span("query.persist", session_id=session_id):
            await self._conversations.store_query_to_context(
                session_id, text, answer.text
            )

        if self._settings.log_interactions:
            self._log_interaction(session_id, text, summary, answer, links)

        return QueryResult(
            content=answer.text,
            previous_conversation_summary=summary,
            source_links=links,
            citation_metadata=answer.citation_metadata,
            safety_attributes=answer.safety_attributes,
        )

    async def _summarization_gate(
        self, session_id: str, window: List[QAndA]
    ) -> Tuple[List[QAndA], str]:
        """Return the exchanges to carry into generation and the summary."""
        result = await self._synthesizer.summarize(window)
        if result is None:
            return window, ""
        if result.blocked:
            logger.warning(
                "Conversation summary blocked by the model, clearing session %r",
                session_id,
            )
            self._schedule_session_clear(session_id)
            return [], ""
        return window, result.summary

    async def _generate(
        self,
        text: str,
        params: QueryParameters,
        carried: List[QAndA],
        items: List[RetrievedItem],
    ) -> SynthesizedAnswer:
        expertise = params.expertise_context
        if expertise is None:
            expertise = self._settings.bot_context_expertise
        include_own_knowledge = params.include_own_knowledge
        if include_own_knowledge is None:
            include_own_knowledge = self._settings.include_own_knowledge
        return await self._synthesizer.synthesize(
            [item.content for item in items],
            expertise,
            include_own_knowledge,
            [ex for qa in carried for ex in qa.to_exchanges()],
            text,
            merge_generation_params(self._synthesizer.defaults, params),
        )

    def _links(
        self, items: List[RetrievedItem], answer: SynthesizedAnswer
    ) -> List[SourceLink]:
        if answer.blocked:
            return []
        return self._provenance.links(items, answer.text)

    def _log_interaction(
        self,
        session_id: str,
        text: str,
        summary: str,
        answer: SynthesizedAnswer,
        links: List[SourceLink],
    ) -> None:
        logger.info(
            "Interaction session=%r question=%r summary=%r answer=%r links=%s",
            session_id,
            text,
            summary,
            answer.text,
            [link.link for link in links],
        )
        log_event(
            "Interaction",
            payload={
                "question": text,
                "summary": summary,
                "answer": answer.text,
                "links": [link.link for link in links],
                "blocked": answer.blocked,
            },
            correlation_id=session_id or None,
        )

    # ------------------------- background clearing ------------------------- #

    def _schedule_session_clear(self, session_id: str) -> None:
        task = asyncio.create_task(self._clear_session(session_id))
        self.background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    async def _clear_session(self, session_id: str) -> None:
        try:
            await self._conversations.remove_session_info(session_id)
        except Exception as exc:
            raise BackgroundTaskError(
                f"Clearing session {session_id!r} failed: {exc}"
            ) from exc
        logger.info("Removed stored context for session %r", session_id)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self.background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for pending background tasks; used on shutdown and in tests."""
        pending = list(self.background_tasks)
        if not pending:
            return
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
