# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: task definitions wrapping the async agent entry points
#
# Application generation and batch matching take tens of seconds to
# minutes of generation calls, so callers enqueue them and poll the
# result backend instead of waiting on a request.
# =============================================================================
