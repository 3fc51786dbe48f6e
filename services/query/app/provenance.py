"""Source link aggregation for answers."""

from __future__ import annotations

from typing import Callable, Dict, List, Sequence

from shared.models import RetrievedItem, SourceLink

from services.llm_generate.app.prompts import (
    check_found_in_internet,
    check_negative_answer,
)


class ProvenanceAggregator:
    """Turn retrieved items into the deduplicated links shown with an answer.

    Links are only shown when they informed the answer: an evasive answer or
    one the model flagged as coming from its own knowledge gets none.
    """

    def __init__(
        self,
        is_negative: Callable[[str], bool] = check_negative_answer,
        is_self_sourced: Callable[[str], bool] = check_found_in_internet,
    ) -> None:
        self._is_negative = is_negative
        self._is_self_sourced = is_self_sourced

    def links(
        self, items: Sequence[RetrievedItem], answer_text: str
    ) -> List[SourceLink]:
        if self._is_negative(answer_text) or self._is_self_sourced(answer_text):
            return []
        best: Dict[str, float] = {}
        for item in items:
            link = (item.source_link or "").strip()
            if not link:
                continue
            if link not in best or item.relevance > best[link]:
                best[link] = item.relevance
        # sorted() is stable, so equal relevance keeps first-seen order
        ranked = sorted(best.items(), key=lambda kv: kv[1], reverse=True)
        return [SourceLink(link=link, distance=dist) for link, dist in ranked]
