# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: Document processing and reindexing tasks
#
# Processing a document means several model calls (analysis, summary,
# category, tags) followed by a throttled embedding backfill. Running that
# inside a web request would hold it open for tens of seconds, so the web
# layer enqueues a task and polls the document status instead.
# =============================================================================
