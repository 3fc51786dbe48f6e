"""Conversation history curation.

Stored history is filtered before it reaches the model: repeated questions
keep only their first kept occurrence and exchanges whose answer was
evasive ("I don't know"-style) are dropped, so the model is neither shown
nor tempted to repeat them. Only the five exchanges preceding the latest
one are summarized.
"""

from __future__ import annotations

from typing import Callable, List, Sequence, Set

from shared.models import QAndA

from services.llm_generate.app.prompts import check_negative_answer

SUMMARY_WINDOW = 5


class ContextCurator:
    def __init__(self, is_negative: Callable[[str], bool] = check_negative_answer):
        self._is_negative = is_negative

    def curate(self, history: Sequence[QAndA]) -> List[QAndA]:
        """Drop repeated questions and negative answers, preserving order."""
        seen: Set[str] = set()
        curated: List[QAndA] = []
        for qa in history:
            if qa.question in seen or self._is_negative(qa.answer):
                continue
            seen.add(qa.question)
            curated.append(qa)
        return curated

    def window_before_summary(self, curated: Sequence[QAndA]) -> List[QAndA]:
        """Return the exchanges to summarize: at most five, excluding the last."""
        size = len(curated)
        if size > SUMMARY_WINDOW:
            return list(curated[size - SUMMARY_WINDOW - 1 : size - 1])
        return list(curated)
