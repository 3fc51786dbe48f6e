"""Pydantic data models shared across services.

These models define the data that flows through the query pipeline: the
conversation history kept per session, the neighbors retrieved from the
vector index, the generative model's predictions, and the request/response
shapes of the HTTP surface. Models exchanged over HTTP use camelCase aliases
so the wire format matches existing clients while Python code keeps
snake_case attribute names.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ------------------------------ conversation ------------------------------ #


class Exchange(BaseModel):
    """One turn in a conversation, tagged by speaker role."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "bot"]
    text: str


class QAndA(BaseModel):
    """A stored question and the answer the bot gave to it."""

    model_config = ConfigDict(frozen=True)

    question: str
    answer: str

    def to_exchanges(self) -> List[Exchange]:
        return [
            Exchange(role="user", text=self.question),
            Exchange(role="bot", text=self.answer),
        ]


class ConversationContext(BaseModel):
    """History for a session, ordered by storage timestamp ascending.

    A blank session id means stateless mode: the history is always empty.
    """

    session_id: str
    history: List[QAndA] = Field(default_factory=list)


# ------------------------------- retrieval -------------------------------- #


class NeighborMatch(BaseModel):
    """A single vector index match. Smaller distance means more similar."""

    id: str
    distance: float


class NeighborGroup(BaseModel):
    """Matches for one query vector."""

    neighbors: List[NeighborMatch] = Field(default_factory=list)


class SearchResponse(BaseModel):
    """Vector index response: one group per query vector, in request order."""

    nearest_neighbors: List[NeighborGroup] = Field(default_factory=list)


class ContentEntry(BaseModel):
    """Content and source link stored for a content id."""

    key: str
    content: str = ""
    source_link: str = ""


class RetrievedItem(BaseModel):
    """A resolved neighbor: its stored content plus the query distance."""

    content_id: str
    content: str = ""
    source_link: str = ""
    relevance: float


class SourceLink(_WireModel):
    """A deduplicated provenance link; ``distance`` carries the relevance."""

    link: str
    distance: float


# ------------------------------- generation ------------------------------- #


class GenerationParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float
    max_output_tokens: int
    top_k: int
    top_p: float


class Citation(_WireModel):
    start_index: Optional[int] = None
    end_index: Optional[int] = None
    uri: Optional[str] = None
    title: Optional[str] = None
    license: Optional[str] = None
    publication_date: Optional[str] = None


class CitationMetadata(_WireModel):
    citations: List[Citation] = Field(default_factory=list)


class SafetyAttributes(_WireModel):
    blocked: bool = False
    categories: List[str] = Field(default_factory=list)
    scores: List[float] = Field(default_factory=list)


class Candidate(BaseModel):
    author: str = "bot"
    content: str = ""


class Prediction(BaseModel):
    """One model prediction with its transparency metadata."""

    candidates: List[Candidate] = Field(default_factory=list)
    citation_metadata: List[CitationMetadata] = Field(default_factory=list)
    safety_attributes: List[SafetyAttributes] = Field(default_factory=list)


class ChatResponse(BaseModel):
    predictions: List[Prediction] = Field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        """True when any prediction carries a safety-blocked flag."""
        return any(
            attrs.blocked
            for prediction in self.predictions
            for attrs in prediction.safety_attributes
        )

    def joined_text(self) -> str:
        return "\n".join(
            candidate.content
            for prediction in self.predictions
            for candidate in prediction.candidates
        )

    def citation_metadata(self) -> List[CitationMetadata]:
        return [c for p in self.predictions for c in p.citation_metadata]

    def safety_attributes(self) -> List[SafetyAttributes]:
        return [s for p in self.predictions for s in p.safety_attributes]


class SummarizationResult(BaseModel):
    summary: str = ""
    blocked: bool = False


class SynthesizedAnswer(BaseModel):
    text: str
    citation_metadata: List[CitationMetadata] = Field(default_factory=list)
    safety_attributes: List[SafetyAttributes] = Field(default_factory=list)
    blocked: bool = False


# ------------------------------ HTTP surface ------------------------------ #


class QueryParameters(_WireModel):
    """Optional per-request overrides of the process-wide defaults."""

    expertise_context: Optional[str] = None
    include_own_knowledge: Optional[bool] = None
    max_neighbors: Optional[int] = None
    temperature: Optional[float] = None
    max_output_tokens: Optional[int] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None


class UserQuery(_WireModel):
    """Request body for the query operation.

    Fields are optional at the schema level so that missing values are
    reported with the same error shape as blank ones.
    """

    text: Optional[str] = None
    session_id: Optional[str] = None
    parameters: Optional[QueryParameters] = None


class QueryResult(_WireModel):
    content: str
    previous_conversation_summary: str = ""
    source_links: List[SourceLink] = Field(default_factory=list)
    citation_metadata: List[CitationMetadata] = Field(default_factory=list)
    safety_attributes: List[SafetyAttributes] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str


class EmbeddingToolRequest(BaseModel):
    text: str


class EmbeddingToolResponse(BaseModel):
    values: List[float]


class NeighborsToolRequest(BaseModel):
    values: List[float]


class ContentToolResponse(BaseModel):
    content: str
    link: str


class ContentIdsResponse(BaseModel):
    ids: List[str]


class DeleteContentRequest(BaseModel):
    ids: List[str]


class DeleteContentResponse(BaseModel):
    deleted: int
