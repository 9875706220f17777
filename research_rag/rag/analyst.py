# =============================================================================
# Document Analyst — whole-document analysis, summary, category, tags
# =============================================================================
#
# The second remote call path (the first being RAG answers). Every call
# goes through complete_with_retry(): exponential backoff from 1s, doubling,
# up to 3 retries on HTTP 429 / 503 and network errors; any other HTTP
# error fails immediately.
#
# No operation here raises:
#   - provider missing or unavailable → deterministic local heuristic
#   - model answered, but not with usable JSON → error-shaped fallback
#     object with safe defaults (the raw text is logged by the parser)
#
# The local heuristics are crude keyword rules. They exist so an upload
# without any API credentials still ends up with a summary, category and
# tags, not so that they compete with the model.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from research_rag.models.analysis import (
    DOCUMENT_CATEGORIES,
    DocumentAnalysis,
    KeyInsights,
    ProjectTags,
)
from research_rag.services.cache import ResponseCache
from research_rag.services.llm import (
    ChatProvider,
    ProviderError,
    RetryPolicy,
    complete_with_retry,
)
from research_rag.services.response_parser import (
    MalformedResponse,
    ParsedJSON,
    parse_json_response,
)

logger = logging.getLogger(__name__)

ANALYST_SYSTEM_PROMPT = (
    "You are an AI research assistant that provides well-structured, clear "
    "responses. Always format your responses with appropriate headers, "
    "paragraphs, and lists for readability. Use markdown formatting with ## "
    "for section headers. When analyzing documents, cite specific sources "
    "and organize information logically."
)

# How much of the document each prompt sees
_ANALYSIS_CHARS = 8000
_SUMMARY_CHARS = 6000
_TAGS_CHARS = 3000
_CATEGORY_CHARS = 2000

SUMMARY_UNAVAILABLE = "Unable to generate summary at this time."


# ---------------------------------------------------------------------------
# Local Heuristics
# ---------------------------------------------------------------------------

_FLAGS = re.IGNORECASE | re.ASCII

_FINANCIAL = re.compile(r"\b(investment|profit|revenue|cost|financial|money|stock|market)\b", _FLAGS)
_TECHNICAL = re.compile(r"\b(AI|algorithm|data|analysis|technology|software|system)\b", _FLAGS)
_ANALYTICAL = re.compile(r"\b(data|analysis|research|study)\b", _FLAGS)
_RECOMMENDS = re.compile(r"\b(recommendation|suggest|should|must)\b", _FLAGS)
_FORWARD = re.compile(r"\b(future|trend|predict|forecast)\b", _FLAGS)

# Checked in order; first match wins
_CATEGORY_RULES = (
    ("Financial Report", re.compile(r"\b(investment|financial|profit|revenue|stock|market)\b", _FLAGS)),
    ("Research Paper", re.compile(r"\b(research|study|analysis|findings|methodology)\b", _FLAGS)),
    ("Technical Document", re.compile(r"\b(technology|software|AI|algorithm|data|system)\b", _FLAGS)),
    ("Market Analysis", re.compile(r"\b(market|business|strategy|company|operations)\b", _FLAGS)),
)

_TAG_TERM = re.compile(r"\b\w{4,}\b", re.ASCII)
_TAG_STOPWORDS = frozenset({
    "will", "there", "what", "your", "when", "them", "each", "which",
    "their", "said", "have", "from", "they", "been",
})
_TAG_THEMES = (
    (re.compile(r"financial|investment", re.IGNORECASE), ("finance", "investment")),
    (re.compile(r"technology|AI", re.IGNORECASE), ("technology", "AI")),
    (re.compile(r"research|study", re.IGNORECASE), ("research", "analysis")),
)

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def local_summary(text: str) -> str:
    """First sentence, plus a middle one for longer texts, in a template."""
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if len(s.strip()) > 20]
    if not sentences:
        return (
            "This document contains information that has been processed and "
            "stored successfully."
        )

    summary = sentences[0].strip()
    if len(sentences) > 3:
        summary += ". " + sentences[len(sentences) // 2].strip()

    length = "detailed" if len(text.split()) > 500 else "brief"
    return (
        f"This {length} document discusses {summary.lower()}. The content has "
        f"been analyzed and is ready for search and chat functionality."
    )[:500]


def local_insights(text: str) -> list[str]:
    insights = []
    if len(text.split()) > 1000:
        insights.append("This is a comprehensive document with detailed information")
    if _ANALYTICAL.search(text):
        insights.append("The document contains analytical or research content")
    if _RECOMMENDS.search(text):
        insights.append("The document includes recommendations or actionable items")
    if _FORWARD.search(text):
        insights.append("The document discusses future trends or predictions")
    if not insights:
        insights.append("The document has been successfully processed and indexed for search")
    return insights


def local_category(text: str) -> str:
    for category, pattern in _CATEGORY_RULES:
        if pattern.search(text):
            return category
    return "Other"


def local_tags(text: str, limit: int = 10) -> list[str]:
    """Most frequent 4+ letter words, then theme tags, deduplicated."""
    counts = Counter(
        term for term in _TAG_TERM.findall(text.lower())
        if term not in _TAG_STOPWORDS
    )
    # sorted() is stable, so equal counts keep first-occurrence order
    frequent = [term for term, _ in sorted(counts.items(), key=lambda item: -item[1])[:8]]

    tags = list(frequent)
    for pattern, theme_tags in _TAG_THEMES:
        if pattern.search(text):
            tags.extend(theme_tags)
    return list(dict.fromkeys(tags))[:limit]


def local_analysis(text: str) -> DocumentAnalysis:
    return DocumentAnalysis(
        summary=local_summary(text),
        key_insights=local_insights(text),
        topics=local_tags(text),
        sentiment="positive" if _FINANCIAL.search(text) else "neutral",
        confidence=0.7,
    )


def _normalise_category(answer: str) -> str:
    """Map a free-text model answer onto one of the known categories."""
    lowered = answer.lower()
    for category in DOCUMENT_CATEGORIES:
        if category.lower() in lowered:
            return category
    return "Other"


# ---------------------------------------------------------------------------
# Analyst
# ---------------------------------------------------------------------------


class DocumentAnalyst:
    """Whole-document AI operations with retry and local fallbacks."""

    def __init__(
        self,
        provider: ChatProvider | None,
        policy: RetryPolicy | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2048,
        cache: ResponseCache | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._policy = policy or RetryPolicy()
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._cache = cache
        self._sleep = sleep
        self._clock = clock

    async def complete(self, prompt: str) -> str | None:
        """
        Run `prompt` through the provider under the retry policy.

        Returns None when no provider is configured or it stays unavailable.
        """
        if self._provider is None:
            return None

        if self._cache is not None:
            cached = self._cache.get(prompt, ANALYST_SYSTEM_PROMPT)
            if cached is not None:
                return cached

        try:
            response = await complete_with_retry(
                self._provider,
                messages=[{"role": "user", "content": prompt}],
                policy=self._policy,
                system=ANALYST_SYSTEM_PROMPT,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                model=self._model,
                sleep=self._sleep,
            )
        except ProviderError as e:
            logger.warning("Analysis provider unavailable, using local fallback: %s", e)
            return None
        except Exception:
            logger.exception("Analysis provider failed unexpectedly, using local fallback")
            return None

        if self._cache is not None:
            self._cache.set(prompt, response.content, ANALYST_SYSTEM_PROMPT)
        return response.content

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def analyze_document(self, content: str) -> DocumentAnalysis:
        """Summary, insights, topics, sentiment and confidence for a document."""
        started = self._clock()
        prompt = f"""Analyze the following research document and provide:

1. A concise summary (2-3 sentences)
2. 5-7 key insights or findings
3. Main topics/themes discussed
4. Overall sentiment (positive/negative/neutral)
5. Confidence level in the analysis (0-100)

Document content:
{content[:_ANALYSIS_CHARS]}

Return ONLY a JSON object without any markdown formatting:
{{
  "summary": "brief summary",
  "keyInsights": ["insight1", "insight2"],
  "topics": ["topic1", "topic2"],
  "sentiment": "positive",
  "confidence": 85
}}"""

        answer = await self.complete(prompt)
        if answer is None:
            analysis = local_analysis(content)
        else:
            analysis = self._parse_analysis(answer)

        analysis.processing_time_ms = (self._clock() - started) * 1000
        return analysis

    async def generate_summary(self, content: str) -> str:
        prompt = f"""Create a professional summary of the following research document.
Focus on key findings, methodology, and conclusions.
Keep it concise but comprehensive (150-200 words).

Document:
{content[:_SUMMARY_CHARS]}"""

        answer = await self.complete(prompt)
        if answer is None:
            return local_summary(content)
        return answer.strip() or SUMMARY_UNAVAILABLE

    def extract_key_insights(self, text: str) -> KeyInsights:
        """Parse a key-insights JSON object out of free-form model text."""
        result = parse_json_response(text, expect="object")
        if isinstance(result, MalformedResponse):
            return KeyInsights.failed(result.reason)
        try:
            return KeyInsights.model_validate(result.value)
        except ValidationError as e:
            logger.warning("Key insights did not validate: %s", e)
            return KeyInsights.failed(str(e))

    async def categorize_document(self, content: str) -> str:
        categories = "\n".join(f"- {name}" for name in DOCUMENT_CATEGORIES)
        prompt = f"""Categorize this research document into one of these categories:
{categories}

Document:
{content[:_CATEGORY_CHARS]}

Respond with just the category name."""

        answer = await self.complete(prompt)
        if answer is None:
            return local_category(content)
        return _normalise_category(answer)

    async def extract_tags(self, content: str) -> list[str]:
        prompt = f"""Extract relevant tags/keywords from this research document.
Focus on topics, industries, companies, and key concepts.
Return ONLY a JSON array of strings (5-10 tags) without any markdown formatting or additional text.

Document:
{content[:_TAGS_CHARS]}

Return format: ["tag1", "tag2", "tag3"]"""

        answer = await self.complete(prompt)
        if answer is None:
            return local_tags(content)

        result = parse_json_response(answer, expect="array")
        if isinstance(result, ParsedJSON):
            return [str(tag).strip() for tag in result.value if str(tag).strip()]
        return []

    async def auto_tag_project(self, title: str, description: str) -> ProjectTags:
        """Industry, sub-industry, 3-5 tags and confidence for a project."""
        prompt = f"""Analyze the following research project and determine:
1. The industry it belongs to
2. The sub-industry or sector within that industry
3. 3-5 relevant tags (keywords) for this project
4. Your confidence level in this classification (0-100%)

Research Project Title: {title}
Research Project Description: {description}

Format your response as valid JSON with the following structure:
{{
  "industry": "Main industry name",
  "subIndustry": "Sub-industry or sector name",
  "tags": ["tag1", "tag2", "tag3"],
  "confidence": 85
}}

Only return the JSON object, no other text."""

        default = ProjectTags(
            industry="Unknown",
            sub_industry="General",
            tags=["research", "analysis", "project"],
            confidence=50,
        )

        answer = await self.complete(prompt)
        if answer is None:
            return default

        result = parse_json_response(answer, expect="object")
        if isinstance(result, MalformedResponse):
            return default
        try:
            return ProjectTags.model_validate(result.value)
        except ValidationError as e:
            logger.warning("Project tags did not validate: %s", e)
            return default

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_analysis(answer: str) -> DocumentAnalysis:
        result = parse_json_response(answer, expect="object")
        if isinstance(result, ParsedJSON):
            try:
                return DocumentAnalysis.model_validate(result.value)
            except ValidationError as e:
                logger.warning("Document analysis did not validate: %s", e)

        return DocumentAnalysis(
            summary="Analysis failed. Please try again.",
            key_insights=["Unable to extract insights at this time"],
            topics=["Unknown"],
            sentiment="neutral",
            confidence=0,
        )
