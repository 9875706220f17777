# =============================================================================
# Unit Tests — RAGSystem & build_rag_system()
# =============================================================================
#
# End-to-end flows over the in-memory datastore: index, search, answer,
# research summary, connection check.
# =============================================================================

import json

from research_rag.config import Settings
from research_rag.rag.retriever import SearchScope
from research_rag.rag.system import build_rag_system
from research_rag.services.llm import ProviderHTTPError

from conftest import InMemoryDatastore, KeywordEmbedder, RecordingSleep, ScriptedProvider, run

OFFLINE = Settings(
    llm_api_key="",
    embedding_primary_api_key="",
    embedding_secondary_api_key="",
)

CLIMATE = "Climate risk disclosures are now mandatory for listed firms. " * 12
REVENUE = "Revenue from subscriptions grew faster than hardware sales. " * 12


def _system(provider=None, settings=OFFLINE, datastore=None):
    return build_rag_system(
        settings=settings,
        datastore=datastore or InMemoryDatastore(),
        chat_provider=provider,
        embedder=KeywordEmbedder(),
        sleep=RecordingSleep(),
    )


class TestBuildRagSystem:

    def test_offline_settings_wire_local_fallbacks(self):
        rag = build_rag_system(settings=OFFLINE, datastore=InMemoryDatastore())
        assert rag.embedder.provider_names == ["local"]
        assert rag.generator._provider is None
        assert rag.analyst._provider is None

    def test_settings_flow_into_components(self):
        settings = Settings(
            llm_api_key="",
            embedding_primary_api_key="",
            embedding_secondary_api_key="",
            corpus_match_threshold=0.9,
            cache_max_size=7,
            max_chunks_per_document=4,
        )
        rag = _system(settings=settings)
        assert rag.retriever._thresholds[SearchScope.corpus().kind] == 0.9
        assert rag.cache.stats()["max_size"] == 7
        assert rag.indexer._max_chunks == 4

    def test_instances_are_isolated(self):
        first = _system(provider=ScriptedProvider("a"))
        second = _system(provider=ScriptedProvider("b"))
        assert first.cache is not second.cache
        assert first.generator._provider is not second.generator._provider


class TestEndToEnd:

    def test_index_then_answer_locally(self):
        rag = _system()

        async def scenario():
            await rag.index_document("doc-1", CLIMATE, "Climate Briefing")
            await rag.index_document("doc-2", REVENUE, "Sales Update")
            await rag.wait_for_background()
            return await rag.answer("climate disclosures", SearchScope.corpus())

        result = run(scenario())

        assert result.context.relevant_documents
        assert result.context.relevant_documents[0].document_id == "doc-1"
        assert result.context.relevant_documents[0].match_type == "vector"
        assert 'From "Climate Briefing"' in result.answer

    def test_reindex_replaces_chunks(self):
        datastore = InMemoryDatastore()
        rag = _system(datastore=datastore)

        async def scenario():
            await rag.index_document("doc-1", CLIMATE, "Briefing")
            await rag.wait_for_background()
            await rag.reindex_document("doc-1", REVENUE, "Briefing v2")
            await rag.wait_for_background()

        run(scenario())
        rows = datastore.chunks_for("doc-1")
        assert rows
        assert all(row["title"] == "Briefing v2" for row in rows)
        assert all("Revenue" in row["content"] for row in rows)

    def test_generate_uses_provider(self):
        rag = _system(provider=ScriptedProvider("## Analysis\nDone."))

        async def scenario():
            await rag.index_document("doc-1", REVENUE, "Sales")
            await rag.wait_for_background()
            context = await rag.search("revenue", SearchScope.document("doc-1"))
            return await rag.generate("revenue", context)

        assert run(scenario()) == "## Analysis\nDone."


class TestResearchSummary:

    def _indexed(self, provider):
        rag = _system(provider=provider)

        async def index():
            await rag.index_document("doc-1", REVENUE, "Sales Update")
            await rag.wait_for_background()

        run(index())
        return rag

    def test_parsed_summary_with_sources(self):
        provider = ScriptedProvider(json.dumps({
            "summary": "Subscriptions drive growth.",
            "keyInsights": ["Hardware lags"],
            "relatedTopics": ["pricing"],
        }))
        rag = self._indexed(provider)

        summary = run(rag.research_summary("revenue"))

        assert summary.summary == "Subscriptions drive growth."
        assert summary.key_insights == ["Hardware lags"]
        assert summary.related_topics == ["pricing"]
        assert summary.sources[0].document_id == "doc-1"
        assert summary.sources[0].title == "Sales Update"
        prompt = provider.calls[0]["messages"][0]["content"]
        assert 'comprehensive summary of "revenue"' in prompt
        assert "Sales Update: Revenue from subscriptions" in prompt

    def test_unparseable_answer_becomes_summary(self):
        rag = self._indexed(ScriptedProvider("Plain prose about revenue."))
        summary = run(rag.research_summary("revenue"))
        assert summary.summary == "Plain prose about revenue."
        assert summary.sources

    def test_provider_failure(self):
        rag = self._indexed(ScriptedProvider(ProviderHTTPError(500)))
        summary = run(rag.research_summary("revenue"))
        assert summary.summary == "Unable to generate summary at this time."
        assert summary.sources == []

    def test_nothing_indexed(self):
        rag = _system(provider=ScriptedProvider("unused"))
        summary = run(rag.research_summary("anything"))
        assert summary.summary == "No research documents found for this topic."


class TestCheckDatastore:

    def test_success_reports_chunk_count(self):
        datastore = InMemoryDatastore()
        datastore.seed_chunks("doc-1", ["a" * 60, "b" * 60])
        rag = _system(datastore=datastore)
        assert run(rag.check_datastore()) == {
            "success": True,
            "message": "Database connection successful",
            "chunks_count": 2,
        }

    def test_failure(self):
        datastore = InMemoryDatastore()
        datastore.fail_connection = True
        rag = _system(datastore=datastore)
        result = run(rag.check_datastore())
        assert result["success"] is False
        assert "database unreachable" in result["message"]
