"""Gemini chat model client.

Sends one ``generate_content`` request per prediction call with:
- the system context as ``system_instruction``;
- the few-shot exemplars rendered as leading user/model turns;
- the conversation turns, oldest first (``bot`` turns sent as ``model``);
- the generation config (temperature, max tokens, top-k, top-p).

The raw SDK response is normalised into ``ChatResponse``: one prediction
per response candidate, carrying its text, citation metadata and safety
attributes. A candidate is blocked when it finished for a safety reason or
any of its ratings is flagged blocked; a blocked prompt (no candidates and a
``block_reason``) yields a single blocked prediction with no text.

If OFFLINE_MODE is enabled the client answers deterministically from the
first content block of the system context, so the pipeline can run without
network access.
"""

from __future__ import annotations

import re
from typing import Any, List, Optional, Sequence, Tuple

from google import genai
from google.genai import types

from shared.models import (
    Candidate,
    ChatResponse,
    Citation,
    CitationMetadata,
    Exchange,
    GenerationParams,
    Prediction,
    SafetyAttributes,
)
from shared.settings import Settings
from shared.tracing import estimate_tokens, span

_SAFETY_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}
_FIRST_BLOCK = re.compile(r"^\[1\] (.+)$", re.MULTILINE)


def _enum_name(value: Any) -> str:
    if value is None:
        return ""
    return getattr(value, "name", None) or str(value)


def _date_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    parts = [getattr(value, k, None) for k in ("year", "month", "day")]
    if not any(parts):
        return str(value)
    return "-".join(str(p) for p in parts if p)


def _citations(candidate: Any) -> List[CitationMetadata]:
    meta = getattr(candidate, "citation_metadata", None)
    raw = getattr(meta, "citations", None) or []
    if not raw:
        return []
    return [
        CitationMetadata(
            citations=[
                Citation(
                    start_index=getattr(c, "start_index", None),
                    end_index=getattr(c, "end_index", None),
                    uri=getattr(c, "uri", None),
                    title=getattr(c, "title", None),
                    license=getattr(c, "license", None),
                    publication_date=_date_str(getattr(c, "publication_date", None)),
                )
                for c in raw
            ]
        )
    ]


def _safety(candidate: Any) -> SafetyAttributes:
    ratings = getattr(candidate, "safety_ratings", None) or []
    finish = _enum_name(getattr(candidate, "finish_reason", None))
    blocked = finish in _SAFETY_FINISH_REASONS or any(
        bool(getattr(r, "blocked", False)) for r in ratings
    )
    return SafetyAttributes(
        blocked=blocked,
        categories=[_enum_name(getattr(r, "category", None)) for r in ratings],
        scores=[float(getattr(r, "probability_score", None) or 0.0) for r in ratings],
    )


def _text(candidate: Any) -> str:
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []
    return "".join(p.text for p in parts if getattr(p, "text", None))


def to_chat_response(resp: Any) -> ChatResponse:
    """Normalise a google-genai GenerateContentResponse."""
    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        feedback = getattr(resp, "prompt_feedback", None)
        reason = _enum_name(getattr(feedback, "block_reason", None))
        return ChatResponse(
            predictions=[
                Prediction(
                    candidates=[],
                    safety_attributes=[
                        SafetyAttributes(
                            blocked=bool(reason),
                            categories=[reason] if reason else [],
                        )
                    ],
                )
            ]
        )
    return ChatResponse(
        predictions=[
            Prediction(
                candidates=[Candidate(author="bot", content=_text(c))],
                citation_metadata=_citations(c),
                safety_attributes=[_safety(c)],
            )
            for c in candidates
        ]
    )


def _content(role: str, text: str) -> types.Content:
    return types.Content(role=role, parts=[types.Part(text=text)])


def _offline_response(system_context: str, turns: Sequence[Exchange]) -> ChatResponse:
    m = _FIRST_BLOCK.search(system_context or "")
    if m:
        text = f"Based on the provided content: {m.group(1)[:200]}"
    else:
        last = turns[-1].text if turns else ""
        text = f"[offline] {last[:200]}"
    return ChatResponse(
        predictions=[
            Prediction(
                candidates=[Candidate(content=text)],
                safety_attributes=[SafetyAttributes(blocked=False)],
            )
        ]
    )


class GeminiChatModel:
    def __init__(self, settings: Settings, model: Optional[str] = None) -> None:
        self._settings = settings
        self._model = model or settings.gemini_chat_model
        self._client: Optional[genai.Client] = None
        if not settings.offline_mode and settings.gemini_api_key:
            self._client = genai.Client(api_key=settings.gemini_api_key)

    @property
    def model(self) -> str:
        return self._model

    async def predict(
        self,
        system_context: str,
        exemplars: Sequence[Tuple[str, str]],
        turns: Sequence[Exchange],
        params: GenerationParams,
    ) -> ChatResponse:
        if self._settings.offline_mode:
            return _offline_response(system_context, turns)
        if self._client is None:
            raise RuntimeError("No LLM provider configured (set GEMINI_API_KEY)")

        contents: List[types.Content] = []
        for question, answer in exemplars:
            contents.append(_content("user", question))
            contents.append(_content("model", answer))
        for turn in turns:
            role = "user" if turn.role == "user" else "model"
            contents.append(_content(role, turn.text))

        config = types.GenerateContentConfig(
            system_instruction=system_context,
            temperature=params.temperature,
            max_output_tokens=params.max_output_tokens,
            top_k=params.top_k,
            top_p=params.top_p,
        )
        prompt_tokens = estimate_tokens(system_context) + sum(
            estimate_tokens(t.text) for t in turns
        )
        with span("llm.generate.call", model=self._model, prompt_tokens=prompt_tokens):
            resp = await self._client.aio.models.generate_content(
                model=self._model, contents=contents, config=config
            )
        return to_chat_response(resp)
