# =============================================================================
# Unit Tests — Celery Tasks
# =============================================================================
#
# Task bodies are called directly through Task.run(); no broker involved.
# =============================================================================

from __future__ import annotations

from types import SimpleNamespace

import pytest

from jobagents.agents.bootstrap import build_services
from jobagents.agents.errors import BudgetExceededError
from jobagents.services.budget import BudgetCheck, InMemoryBudgetStore
from jobagents.services.tracing import NoopTracer
from jobagents.workers import tasks


class RetryRequested(Exception):
    pass


class FakeTask:
    name = "fake_task"
    request = SimpleNamespace(id="task-1")

    def __init__(self) -> None:
        self.retried_with: Exception | None = None

    def retry(self, exc: Exception) -> Exception:
        self.retried_with = exc
        return RetryRequested()


@pytest.fixture
def services(provider, monkeypatch):
    services = build_services(
        provider=provider,
        budget_store=InMemoryBudgetStore(default_budget_cents=10_000),
        tracer=NoopTracer(),
        retry_wait_seconds=0,
    )
    monkeypatch.setattr(tasks, "get_services", lambda: services)
    return services


class TestFailureHandling:
    def test_retryable_errors_are_retried(self):
        task = FakeTask()
        error = TimeoutError("upstream slow")
        with pytest.raises(RetryRequested):
            tasks._failed_or_retry(task, error)
        assert task.retried_with is error

    def test_other_errors_become_failed_results(self):
        check = BudgetCheck(
            allowed=False, remaining_cents=0, usage_percent=100.0,
            message="Monthly budget exceeded",
        )
        result = tasks._failed_or_retry(FakeTask(), BudgetExceededError(check))
        assert result == {
            "status": "failed",
            "error_kind": "BUDGET_EXCEEDED",
            "error": "Budget exceeded",
        }


class TestTasks:
    def test_analyze_profile_task(self, services, provider, profile):
        provider.script("[]", "Backend engineer with six years of Python.")
        result = tasks.analyze_profile.run(
            "user-1", {"profile": profile.model_dump(mode="json", by_alias=True)},
        )

        assert result["status"] == "completed"
        assert result["result"]["enhanced_summary"] == (
            "Backend engineer with six years of Python."
        )

    def test_batch_match_task(self, services, job, profile):
        jobs = [job.model_dump(mode="json", by_alias=True)]
        result = tasks.batch_match_jobs.run({
            "userId": "user-1",
            "profile": profile.model_dump(mode="json", by_alias=True),
            "jobs": jobs,
            "minScore": 0,
        })

        assert result["status"] == "completed"
        assert result["result"]["processed_count"] == 1

    def test_invalid_payload_is_reported(self, services):
        result = tasks.batch_match_jobs.run({"jobs": []})
        assert result["status"] == "failed"
        assert result["error_kind"] == "INVALID_INPUT"
