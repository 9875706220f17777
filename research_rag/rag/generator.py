# =============================================================================
# Response Generator — RAG prompt assembly + chat completion
# =============================================================================
#
# generate(query, context) → prose, never raises.
#
# Two prompt shapes:
#   - relevant chunks found → structured analysis prompt. Requires
#     "## Analysis", "## Key Points" and optional "## Recommendations"
#     sections, and citation of document titles
#   - nothing found → processing-guidance prompt. Explains that analysis
#     may still be running and suggests five alternative questions
#
# One remote call, no retries: if the provider is missing, answers with a
# non-success status, or the network fails, the user gets a templated
# local answer built from the retrieved chunks instead of an error.
# (Retries with backoff belong to the whole-document analysis path; see
# rag/analyst.py.)
#
# Successful completions are memoised in the ResponseCache, keyed by the
# full prompt.
# =============================================================================

from __future__ import annotations

import logging

from research_rag.rag.retriever import RAGContext
from research_rag.services.cache import ResponseCache
from research_rag.services.llm import ChatProvider

logger = logging.getLogger(__name__)

_EXCERPT_LENGTH = 300


# ---------------------------------------------------------------------------
# Prompt Templates
# ---------------------------------------------------------------------------

_PROCESSING_PROMPT = """You are an AI research assistant helping users analyze their research documents.

{context}

User Query: {query}

Instructions:
1. Acknowledge that the document is still processing or not fully analyzed
2. Provide helpful general guidance about what the user might expect once processing is complete
3. Suggest 5 alternative questions they could ask about research documents in general
4. Format your response with clear sections using markdown (## headers)
5. Be encouraging and explain that processing takes time for thorough analysis
6. Mention that the user can try again later when processing is complete

## Response Format:
Start with a brief acknowledgment of the processing status, then provide guidance, followed by alternative questions in a bulleted list.

Please provide a helpful response:"""

_ANALYSIS_PROMPT = """You are an AI research assistant helping users analyze their research database.

Context from relevant documents:
{documents}

User Query: {query}

Instructions for answering:
1. Structure your response with clear sections using markdown headers (##)
2. Always include an "Analysis" or "Answer" section at the beginning
3. When appropriate, include a "Recommendation" or "Conclusion" section
4. Cite specific documents when making claims
5. Be concise but thorough
6. If you find conflicting information in the documents, acknowledge this and explain the different perspectives
7. Use bullet points or numbered lists for key points when appropriate
8. Format your response for readability with paragraphs and section breaks

## Response Format:
## Analysis
[Your main answer based on the documents, with specific citations when relevant]

## Key Points
[Bullet points of the most important information]

## Recommendations
[Optional section with actionable suggestions based on the analysis]

Please provide a helpful, well-structured response based on the research context provided:"""


def build_prompt(query: str, context: RAGContext) -> str:
    """Pick and fill the prompt variant for `context`."""
    if not context.relevant_documents:
        return _PROCESSING_PROMPT.format(context=context.context, query=query)

    documents = "\n".join(
        f"Document: {doc.title}\n"
        f"Content: {doc.content}\n"
        f"Relevance: {round(doc.similarity * 100)}%\n"
        for doc in context.relevant_documents
    )
    return _ANALYSIS_PROMPT.format(documents=documents, query=query)


def local_answer(query: str, context: RAGContext) -> str:
    """Templated answer used whenever the chat provider is unavailable."""
    docs = context.relevant_documents
    if not docs:
        return (
            f'I searched through your documents but didn\'t find specific content '
            f'matching "{query}". This might be because the document is still being '
            f"processed or the query is very specific. Try asking about general "
            f"topics covered in your documents."
        )

    count = len(docs)
    first = docs[0]

    response = (
        f"I found {count} relevant document{'s' if count > 1 else ''} that might "
        f'help answer your question about "{query}".\n\n'
    )
    response += f'From "{first.title}":\n'
    response += first.content[:_EXCERPT_LENGTH]
    if len(first.content) > _EXCERPT_LENGTH:
        response += "..."
    response += "\n\n"

    if count > 1:
        extra = count - 1
        response += (
            f"There {'is' if extra == 1 else 'are'} {extra} additional relevant "
            f"document{'s' if extra > 1 else ''} that might contain more "
            f"information about this topic."
        )

    return response


class ResponseGenerator:
    """Turns a query plus retrieved context into an answer."""

    def __init__(
        self,
        provider: ChatProvider | None,
        cache: ResponseCache | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def generate(self, query: str, context: RAGContext) -> str:
        prompt = build_prompt(query, context)

        if self._provider is None:
            return local_answer(query, context)

        if self._cache is not None:
            cached = self._cache.get(prompt)
            if cached is not None:
                logger.debug("Answer served from cache")
                return cached

        try:
            response = await self._provider.complete(
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                model=self._model,
            )
        except Exception as e:
            logger.warning("Chat completion failed, answering locally: %s", e)
            return local_answer(query, context)

        answer = response.content.strip()
        if not answer:
            logger.warning("Chat completion returned no text, answering locally")
            return local_answer(query, context)

        if self._cache is not None:
            self._cache.set(prompt, answer)
        return answer
