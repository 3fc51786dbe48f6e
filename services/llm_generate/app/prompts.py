"""
Prompt templates and answer classifiers for conversational QA.

Design goals
- Answers grounded in the retrieved content blocks; the model may add its
  own general knowledge only when allowed, and must then say so with the
  FOUND_IN_INTERNET sentinel so source links can be suppressed.
- Short summaries of the recent conversation, used to enrich the retrieval
  query with prior context.
- Pure classifier predicates over answer text, injectable into the
  components that filter history and provenance.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from shared.models import Exchange
from shared.settings import DEFAULT_NEGATIVE_ANSWER_PATTERNS

# Sentinel the model appends when it answered from general knowledge.
FOUND_IN_INTERNET = "[found on the internet]"

BLOCKED_RESPONSE_MESSAGE = (
    "Response blocked by model, check on provided document links if any available."
)

# ===========================  ANSWER GENERATION  =========================== #

_CHAT_CONTEXT_HEADER = (
    "ROLE: You are a helpful assistant answering questions about the content "
    "provided below.\n\n"
    "RULES:\n"
    "• Base the answer on the CONTENT blocks; quote names, numbers and terms "
    "exactly as written.\n"
    "• Keep the answer concise and directly address the last user question.\n"
    "• Use the previous exchanges only to resolve references such as 'it' or "
    "'that one'.\n"
)

_OWN_KNOWLEDGE_ALLOWED = (
    "• If the CONTENT does not contain the answer you may use your own general "
    "knowledge, and in that case end the answer with the exact text "
    f"{FOUND_IN_INTERNET}.\n"
)

_OWN_KNOWLEDGE_FORBIDDEN = (
    "• If the CONTENT does not contain the answer, say you don't know. Do not "
    "use outside knowledge.\n"
)


def format_chat_context_prompt(
    contents: Sequence[str],
    expertise: Optional[str],
    include_own_knowledge: bool,
) -> str:
    """Build the system context for a chat answer."""
    parts = [_CHAT_CONTEXT_HEADER]
    if expertise and expertise.strip():
        parts.append(f"• You are an expert in {expertise.strip()}.\n")
    parts.append(
        _OWN_KNOWLEDGE_ALLOWED if include_own_knowledge else _OWN_KNOWLEDGE_FORBIDDEN
    )
    blocks = [c for c in contents if c and c.strip()]
    if blocks:
        parts.append("\nCONTENT:\n")
        parts.extend(f"[{i + 1}] {block.strip()}\n" for i, block in enumerate(blocks))
    else:
        parts.append("\nCONTENT: (no content available)\n")
    return "".join(parts)


# Few-shot exemplars (input, output) sent with every chat request.
EXCHANGE_EXAMPLES: List[Tuple[str, str]] = [
    (
        "Which file formats can be ingested?",
        "Documents, spreadsheets and presentations stored in the shared drive "
        "can be ingested.",
    ),
    (
        "What is the capital of Australia?",
        f"The capital of Australia is Canberra. {FOUND_IN_INTERNET}",
    ),
    (
        "Who approved the 2019 budget for the moon base?",
        "I don't know, the provided content does not mention that budget.",
    ),
]

# =============================  SUMMARIZATION  ============================= #

CHAT_SUMMARY_PROMPT = (
    "ROLE: You summarize conversations between a user and an assistant.\n\n"
    "INSTRUCTIONS:\n"
    "• Write a short paragraph (max 5 sentences) capturing the topics the user "
    "asked about and the key facts in the answers.\n"
    "• Keep entity names, products and numbers verbatim.\n"
    "• Output only the summary text.\n"
)


def format_chat_summary_prompt(exchanges: Iterable[Exchange]) -> str:
    """Render exchanges as a transcript for the summarization call."""
    lines = [
        f"{'User' if ex.role == 'user' else 'Assistant'}: {ex.text}"
        for ex in exchanges
    ]
    return "Summarize the following conversation:\n\n" + "\n".join(lines)


# ==============================  CLASSIFIERS  ============================== #


def negative_answer_classifier(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Return a predicate matching "I don't know"-style answers."""
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def _is_negative(text: str) -> bool:
        normalized = (text or "").replace("’", "'")
        return any(rx.search(normalized) for rx in compiled)

    return _is_negative


check_negative_answer = negative_answer_classifier(DEFAULT_NEGATIVE_ANSWER_PATTERNS)


def check_found_in_internet(text: str) -> bool:
    """True when the model flagged the answer as coming from general knowledge."""
    return FOUND_IN_INTERNET in (text or "")
