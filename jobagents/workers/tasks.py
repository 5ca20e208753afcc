# =============================================================================
# Celery Task Definitions — Agent Operations
# =============================================================================
#
# Each task validates its JSON payload, runs the async entry point on the
# worker process's event loop, and returns a JSON-safe dict:
#
#   {"status": "completed", "result": {...}}
#   {"status": "failed", "error_kind": "...", "error": "..."}
#
# IMPORTANT: Celery workers are SYNCHRONOUS.
# The agent stack is async (provider SDK clients, asyncpg, httpx pool), and
# those clients bind to the event loop that first uses them. Tasks
# therefore share one long-lived loop per worker process instead of
# calling asyncio.run() per task, which would strand the cached clients
# on a closed loop.
#
# RETRY STRATEGY:
# The agent runtime already retries individual agents. A task is retried
# by Celery only when the final failure is still of a retryable kind
# (rate limit, upstream API error, timeout); everything else is reported
# as a failed result.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any, TypeVar

from jobagents.agents.bootstrap import get_services
from jobagents.agents.errors import categorize_error, is_retryable, user_message
from jobagents.agents.orchestrator import (
    analyze_profile as run_profile_analysis,
    generate_application as run_application_pipeline,
)
from jobagents.models.domain import BatchMatchRequest
from jobagents.models.runtime import ExecutionContext
from jobagents.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

T = TypeVar("T")

_loop: asyncio.AbstractEventLoop | None = None


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def run_async(coro: Awaitable[T]) -> T:
    """Run `coro` to completion on this process's event loop."""
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
    return _loop.run_until_complete(coro)


def _completed(result: Any) -> dict:
    return {"status": "completed", "result": result.model_dump(mode="json")}


def _failed_or_retry(task, exc: Exception) -> dict:
    kind = categorize_error(exc)
    if is_retryable(exc):
        logger.warning(
            "[%s] %s failed with retryable %s; retrying",
            task.request.id, task.name, kind.value,
        )
        raise task.retry(exc=exc)

    logger.error(
        "[%s] %s failed (%s): %s", task.request.id, task.name, kind.value, exc,
    )
    return {
        "status": "failed",
        "error_kind": kind.value,
        "error": user_message(kind, exc),
    }


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@celery_app.task(
    bind=True,
    name="generate_application",
    max_retries=2,
    default_retry_delay=60,
)
def generate_application(self, request: dict) -> dict:
    """
    Generate a tailored application for one job.

    Args:
        request: ApplicationRequest payload (user, job, profile, optional
            resume, options).
    """
    logger.info(
        "[%s] Application generation: user=%s, job=%s",
        self.request.id, request.get("user_id") or request.get("userId"),
        (request.get("job") or {}).get("id"),
    )
    try:
        result = run_async(run_application_pipeline(request, get_services()))
    except Exception as exc:
        return _failed_or_retry(self, exc)
    return _completed(result)


async def _batch_match(request: dict):
    services = get_services()
    batch_request = BatchMatchRequest.model_validate(request)
    context = ExecutionContext.start(
        services.tracer,
        "batch-job-matching",
        user_id=batch_request.user_id,
        metadata={"job_count": len(batch_request.jobs)},
    )
    try:
        return await services.batch.match(batch_request, context)
    finally:
        try:
            await services.tracer.flush()
        except Exception:
            logger.warning("Tracer flush failed", exc_info=True)


@celery_app.task(
    bind=True,
    name="batch_match_jobs",
    max_retries=1,
    default_retry_delay=60,
)
def batch_match_jobs(self, request: dict) -> dict:
    """
    Score one profile against a list of jobs.

    Args:
        request: BatchMatchRequest payload (user, profile, jobs, optional
            min_score and weights).
    """
    logger.info(
        "[%s] Batch matching: %d jobs", self.request.id, len(request.get("jobs") or []),
    )
    try:
        result = run_async(_batch_match(request))
    except Exception as exc:
        return _failed_or_retry(self, exc)
    return _completed(result)


@celery_app.task(
    bind=True,
    name="analyze_profile",
    max_retries=2,
    default_retry_delay=30,
)
def analyze_profile(self, user_id: str, input: dict) -> dict:
    """
    Suggest improvements to a profile.

    Args:
        user_id: Owner of the budget the analysis is billed to.
        input: ProfileAgentInput payload (profile, optional resume and
            target roles).
    """
    logger.info("[%s] Profile analysis: user=%s", self.request.id, user_id)
    try:
        result = run_async(run_profile_analysis(input, get_services(), user_id))
    except Exception as exc:
        return _failed_or_retry(self, exc)
    return _completed(result)
