# =============================================================================
# Unit Tests — Document Processing Pipeline
# =============================================================================
#
# Runs the async pipelines behind the Celery tasks against the in-memory
# datastore. The Celery wrappers themselves only add asyncio.run() and
# retry handling.
# =============================================================================

import pytest

from research_rag.config import Settings
from research_rag.rag.system import build_rag_system
from research_rag.workers.tasks import (
    mark_document_error,
    run_document_pipeline,
    run_reindex_pipeline,
)

from conftest import InMemoryDatastore, KeywordEmbedder, RecordingSleep, ScriptedProvider, run

OFFLINE = Settings(
    llm_api_key="",
    embedding_primary_api_key="",
    embedding_secondary_api_key="",
)

TEXT = (
    "This research study analyses battery storage investment across markets. "
    "Revenue from grid services rose sharply during the year. "
) * 8


def _system(datastore, provider=None):
    return build_rag_system(
        settings=OFFLINE,
        datastore=datastore,
        chat_provider=provider,
        embedder=KeywordEmbedder(),
        sleep=RecordingSleep(),
    )


class TestDocumentPipeline:

    def test_offline_processing_completes(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", TEXT, "Storage Study")
        rag = _system(datastore)

        result = run(run_document_pipeline(rag, "doc-1", "task-1"))

        assert result["status"] == "completed"
        assert result["indexed"] is True
        assert result["category"] == "Financial Report"

        statuses = [fields.get("status") for _, fields in datastore.document_updates]
        assert statuses == ["processing", "completed"]
        completed = datastore.document_updates[-1][1]
        assert completed["ai_summary"].startswith("This brief document discusses")

        assert "battery" in datastore.tags["doc-1"]
        rows = datastore.chunks_for("doc-1")
        assert rows
        assert all(row["embedding"] is not None for row in rows)

    def test_model_results_are_stored(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", TEXT, "Storage Study")
        provider = ScriptedProvider(
            '{"summary": "s", "keyInsights": [], "topics": [], "sentiment": "neutral", "confidence": 80}',
            "Model summary.",
            "Market Analysis",
            '["energy storage", "grid"]',
        )
        rag = _system(datastore, provider)

        result = run(run_document_pipeline(rag, "doc-1"))

        assert result["category"] == "Market Analysis"
        assert datastore.tags["doc-1"] == ["energy storage", "grid"]
        assert datastore.document_updates[-1][1]["ai_summary"] == "Model summary."

    def test_missing_document(self):
        rag = _system(InMemoryDatastore())
        result = run(run_document_pipeline(rag, "nope"))
        assert result == {"document_id": "nope", "status": "missing"}

    def test_indexing_skipped_when_connection_check_fails(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", TEXT, "Storage Study")
        datastore.fail_connection = True
        rag = _system(datastore)

        result = run(run_document_pipeline(rag, "doc-1"))

        assert result["indexed"] is False
        assert datastore.rows == {}

    def test_datastore_failure_propagates_and_marks_error(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", TEXT, "Storage Study")
        datastore.fail_update_document = True
        rag = _system(datastore)

        with pytest.raises(RuntimeError):
            run(run_document_pipeline(rag, "doc-1"))

        datastore.fail_update_document = False
        run(mark_document_error(rag, "doc-1"))
        assert datastore.documents["doc-1"].status == "error"


class TestReindexPipeline:

    def test_reindex_rebuilds_chunks(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", TEXT, "Storage Study")
        datastore.seed_chunks("doc-1", ["stale chunk content that should disappear entirely"])
        rag = _system(datastore)

        result = run(run_reindex_pipeline(rag, "doc-1"))

        assert result["reindexed"] is True
        assert result["chunk_count"] == len(datastore.chunks_for("doc-1"))
        assert all("stale" not in row["content"] for row in datastore.chunks_for("doc-1"))

    def test_reindex_without_text(self):
        datastore = InMemoryDatastore()
        datastore.add_document("doc-1", None, "Scan")
        rag = _system(datastore)
        assert run(run_reindex_pipeline(rag, "doc-1"))["reindexed"] is False
