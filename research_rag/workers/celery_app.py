# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the background document-processing pipeline:
#   Upload → Analyze (summary, category, tags) → Chunk → Embed → Store
#
# Analysis and embedding are dominated by remote model calls that can take
# tens of seconds per document, and the retry policy may add several more
# seconds of backoff. None of that should block the web request that
# created the document.
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ Web app  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
# =============================================================================

from celery import Celery

from research_rag.config import settings

# ---------------------------------------------------------------------------
# Create Celery Application
# ---------------------------------------------------------------------------
celery_app = Celery(
    "research_rag.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# ---------------------------------------------------------------------------
# Celery Configuration
# ---------------------------------------------------------------------------
celery_app.conf.update(
    # --- Serialization ---
    # JSON only: task arguments are document ids, results are small dicts.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's task is re-queued.
    # Re-running is safe: indexing skips documents that already have chunks.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One document at a time per worker process; each task already issues
    # a long, throttled sequence of provider calls.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # 20 chunks x 0.5s throttle plus analysis with backoff fits well inside
    # the soft limit.
    task_soft_time_limit=300,
    task_time_limit=600,

    # --- Results ---
    result_expires=3600,

    # --- Task Discovery ---
    include=["research_rag.workers.tasks"],
)
