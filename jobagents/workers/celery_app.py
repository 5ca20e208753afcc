# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the long agent operations in the background:
#   generate_application → match, tailored resume, cover letter
#   batch_match_jobs     → one profile scored against many jobs
#   analyze_profile      → profile enrichment suggestions
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ producer │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │ (web app)│     │(broker)│    │ (consumer)   │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
#
# Payloads and results are plain JSON dicts (pydantic model_dump output),
# so producers in other languages can enqueue work.
# =============================================================================

from celery import Celery

from jobagents.config import settings

celery_app = Celery(
    "jobagents.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only; pickle can execute arbitrary code on load.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Acknowledge after completion so a crashed worker's task is re-queued.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # One task at a time per worker process; agent runs are long and
    # share the process event loop.
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    # The soft limit sits just above the orchestration timeout.
    task_soft_time_limit=int(settings.orchestrator_timeout_seconds) + 30,
    task_time_limit=int(settings.orchestrator_timeout_seconds) * 2,

    # --- Results ---
    result_expires=3600,

    include=["jobagents.workers.tasks"],
)
