# =============================================================================
# Analysis Models — Pydantic V2 Schemas for Structured Model Output
# =============================================================================
#
# The chat model is asked to answer in JSON with camelCase keys
# ("keyInsights", "subIndustry", ...). These schemas validate that output
# and expose snake_case attributes to Python code:
#
# - `alias="keyInsights"` accepts the model's key on input
# - `populate_by_name=True` lets local fallbacks build instances with the
#   Python field names
# - `model_dump(by_alias=True)` reproduces the camelCase shape for clients
#
# Validators are deliberately lenient: models return confidences as
# "85%", tags as a comma-separated string, sentiment in odd casing. Those
# are coerced rather than rejected.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DOCUMENT_CATEGORIES = (
    "Research Paper",
    "Financial Report",
    "Market Analysis",
    "Technical Document",
    "News Article",
    "Other",
)

Sentiment = Literal["positive", "negative", "neutral"]


def _string_list(value: object) -> list[str]:
    """Coerce a list-ish model answer into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class DocumentAnalysis(BaseModel):
    """Whole-document analysis produced by DocumentAnalyst.analyze_document()."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(default="", description="2-3 sentence summary")
    key_insights: list[str] = Field(
        default_factory=list,
        alias="keyInsights",
        description="5-7 key findings",
    )
    topics: list[str] = Field(default_factory=list)
    sentiment: Sentiment = "neutral"
    confidence: float = Field(
        default=0.0,
        description="Model-reported confidence (0-100 from the model, 0-1 from local fallback)",
    )
    processing_time_ms: float = Field(default=0.0, alias="processingTime")

    @field_validator("key_insights", "topics", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> list[str]:
        return _string_list(value)

    @field_validator("sentiment", mode="before")
    @classmethod
    def _coerce_sentiment(cls, value: object) -> str:
        text = str(value or "").strip().lower()
        return text if text in ("positive", "negative", "neutral") else "neutral"

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> float:
        try:
            return float(str(value).rstrip("%"))
        except (TypeError, ValueError):
            return 0.0


class KeyInsights(BaseModel):
    """
    Structured insights parsed out of free text.

    When parsing fails, `error` and `details` are set and the other fields
    hold safe defaults, so callers can treat both outcomes uniformly.
    """

    # Models add their own keys; keep them rather than fail validation
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    summary: str = ""
    key_points: list[str] = Field(default_factory=list, alias="keyPoints")
    themes: list[str] = Field(default_factory=list)
    relevant_entities: list[str] = Field(default_factory=list, alias="relevantEntities")
    error: str | None = None
    details: str | None = None

    @field_validator("key_points", "themes", "relevant_entities", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> list[str]:
        return _string_list(value)

    @classmethod
    def failed(cls, details: str) -> "KeyInsights":
        return cls(
            error="Key insights extraction failed",
            details=details,
            summary="Failed to extract structured insights from document",
            key_points=["Document analysis could not be completed"],
        )


class ProjectTags(BaseModel):
    """Industry classification for a research project."""

    model_config = ConfigDict(populate_by_name=True)

    industry: str = ""
    sub_industry: str = Field(default="", alias="subIndustry")
    tags: list[str] = Field(default_factory=list)
    confidence: float = 75.0

    @field_validator("industry", "sub_industry", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        return str(value) if value else ""

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: object) -> list[str]:
        return _string_list(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        try:
            return float(int(str(value).strip().rstrip("%")))
        except (TypeError, ValueError):
            return 75.0


class SourceReference(BaseModel):
    """A retrieved chunk cited by a generated answer or summary."""

    document_id: str
    title: str
    chunk_index: int
    similarity: float
    match_type: str


class ResearchSummary(BaseModel):
    """Corpus-wide research summary on a topic."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str
    key_insights: list[str] = Field(default_factory=list, alias="keyInsights")
    related_topics: list[str] = Field(default_factory=list, alias="relatedTopics")
    sources: list[SourceReference] = Field(default_factory=list)

    @field_validator("key_insights", "related_topics", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> list[str]:
        return _string_list(value)
