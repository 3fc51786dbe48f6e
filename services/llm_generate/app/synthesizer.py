"""Answer synthesis and conversation summarization.

``AnswerSynthesizer`` owns every call to the generative model made while
answering a query:

- ``summarize``: one call over the recent exchanges. An empty history makes
  no call. The result reports whether the model blocked its own output so
  the caller can drop the prior context for this turn.
- ``synthesize``: builds the context prompt from the retrieved content
  blocks, the expertise hint and the own-knowledge flag, appends the current
  question after the curated history, and calls the model once with the
  fixed exemplars. If any prediction is safety-blocked the answer text is
  replaced by a fixed disclosure message; citation and safety metadata are
  returned either way.

Model calls are retried here for transient failures; exhausting retries
raises ``CollaboratorError``.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, Tuple

from shared.models import (
    ChatResponse,
    Exchange,
    GenerationParams,
    QAndA,
    QueryParameters,
    SummarizationResult,
    SynthesizedAnswer,
)
from shared.result import unwrap
from shared.retry import RetryPolicy, call_with_retries
from shared.settings import Settings
from shared.tracing import log_event

from .prompts import (
    BLOCKED_RESPONSE_MESSAGE,
    CHAT_SUMMARY_PROMPT,
    EXCHANGE_EXAMPLES,
    format_chat_context_prompt,
    format_chat_summary_prompt,
)


class ChatModel(Protocol):
    async def predict(
        self,
        system_context: str,
        exemplars: Sequence[Tuple[str, str]],
        turns: Sequence[Exchange],
        params: GenerationParams,
    ) -> ChatResponse: ...


def default_generation_params(settings: Settings) -> GenerationParams:
    return GenerationParams(
        temperature=settings.temperature,
        max_output_tokens=settings.max_output_tokens,
        top_k=settings.top_k,
        top_p=settings.top_p,
    )


def merge_generation_params(
    defaults: GenerationParams, overrides: Optional[QueryParameters]
) -> GenerationParams:
    """Return new params where each provided override replaces the default."""
    if overrides is None:
        return defaults
    values = defaults.model_dump()
    for name in values:
        override = getattr(overrides, name, None)
        if override is not None:
            values[name] = override
    return GenerationParams(**values)


class AnswerSynthesizer:
    def __init__(
        self,
        chat_model: ChatModel,
        settings: Settings,
        summary_model: Optional[ChatModel] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._chat = chat_model
        self._summary = summary_model or chat_model
        self._defaults = default_generation_params(settings)
        self._policy = policy or RetryPolicy.from_settings(settings)

    @property
    def defaults(self) -> GenerationParams:
        return self._defaults

    async def summarize(self, qas: Sequence[QAndA]) -> Optional[SummarizationResult]:
        """Summarize the exchanges; None when there is nothing to summarize."""
        if not qas:
            return None
        exchanges = [ex for qa in qas for ex in qa.to_exchanges()]
        turn = Exchange(role="user", text=format_chat_summary_prompt(exchanges))
        result = await call_with_retries(
            "predict_summarization",
            lambda: self._summary.predict(
                CHAT_SUMMARY_PROMPT, [], [turn], self._defaults
            ),
            self._policy,
        )
        resp = unwrap(result, "predict_summarization")
        if resp.is_blocked:
            log_event("SummarizationBlocked", payload={"exchanges": len(qas)})
            return SummarizationResult(summary="", blocked=True)
        return SummarizationResult(summary=resp.joined_text().strip(), blocked=False)

    async def synthesize(
        self,
        context_blocks: Sequence[str],
        expertise: Optional[str],
        include_own_knowledge: bool,
        history: Sequence[Exchange],
        question: str,
        params: GenerationParams,
    ) -> SynthesizedAnswer:
        system_context = format_chat_context_prompt(
            context_blocks, expertise, include_own_knowledge
        )
        turns: List[Exchange] = list(history)
        turns.append(Exchange(role="user", text=question))
        result = await call_with_retries(
            "predict_chat_answer",
            lambda: self._chat.predict(
                system_context, EXCHANGE_EXAMPLES, turns, params
            ),
            self._policy,
        )
        resp = unwrap(result, "predict_chat_answer")
        blocked = resp.is_blocked
        return SynthesizedAnswer(
            text=BLOCKED_RESPONSE_MESSAGE if blocked else resp.joined_text(),
            citation_metadata=resp.citation_metadata(),
            safety_attributes=resp.safety_attributes(),
            blocked=blocked,
        )
