# =============================================================================
# Unit Tests — Application Pipeline & Profile Analysis
# =============================================================================
#
# Runs the compiled LangGraph pipeline end to end against the FakeProvider.
# Call order for the fixture job: match insights, resume, cover letter.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from jobagents.agents.bootstrap import build_services
from jobagents.agents.errors import BudgetExceededError, ErrorKind, PipelineStepError
from jobagents.agents.orchestrator import analyze_profile, generate_application
from jobagents.services.budget import InMemoryBudgetStore
from jobagents.services.tracing import NoopTracer


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


RESUME = """# Alex Doe

## Summary
Backend engineer building Python and PostgreSQL services.

## Experience
Ran Kubernetes clusters for 40 services.

## Education
BSc Computer Science

## Skills
Python, Postgres, k8s
"""

LETTER = "Dear Hiring Manager,\n\nI would love to join Acme as a backend engineer."


class RecordingSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.patterns = []
        self.error = error

    async def record_success(self, pattern) -> None:
        self.patterns.append(pattern)
        if self.error:
            raise self.error


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def services(provider, sink):
    return build_services(
        provider=provider,
        budget_store=InMemoryBudgetStore(default_budget_cents=10_000),
        tracer=NoopTracer(),
        learning_sink=sink,
        retry_wait_seconds=0,
    )


def _request(job, profile, **options) -> dict:
    return {
        "userId": "user-1",
        "applicationId": "app-1",
        "job": job,
        "profile": profile,
        "options": options,
    }


# ---------------------------------------------------------------------------
# Test: generate_application
# ---------------------------------------------------------------------------


class TestGenerateApplication:
    def test_full_pipeline(self, services, provider, sink, job, profile):
        provider.script("no insights", RESUME, LETTER)
        result = _run(generate_application(_request(job, profile), services))

        assert result.match_score.overall_score > 0
        assert result.resume.ats_score >= 70
        assert result.cover_letter is not None
        assert result.cover_letter.cover_letter.endswith("Sincerely,\nAlex Doe")
        assert result.total_cost_cents == pytest.approx(0.15)
        assert len(provider.calls) == 3

        assert len(sink.patterns) == 1
        pattern = sink.patterns[0]
        assert pattern.job_id == "job-1"
        assert pattern.application_id == "app-1"
        assert pattern.ats_score == result.resume.ats_score

    def test_cover_letter_can_be_skipped(self, services, provider, job, profile):
        provider.script("no insights", RESUME)
        result = _run(generate_application(
            _request(job, profile, generateCoverLetter=False), services,
        ))

        assert result.cover_letter is None
        assert len(provider.calls) == 2

    def test_failed_cover_letter_is_omitted(self, services, provider, job, profile):
        provider.script("no insights", RESUME, "")
        result = _run(generate_application(_request(job, profile), services))

        assert result.cover_letter is None
        assert result.resume.resume == RESUME.strip()

    def test_tone_reaches_cover_letter_agent(self, services, provider, job, profile):
        provider.script("no insights", RESUME, LETTER)
        _run(generate_application(
            _request(job, profile, coverLetterTone="enthusiastic"), services,
        ))
        assert provider.calls[2]["temperature"] == 0.8

    def test_low_ats_is_not_reported(self, services, provider, sink, job, profile):
        provider.script("no insights", "Plain resume text", LETTER)
        result = _run(generate_application(_request(job, profile), services))

        assert result.resume.ats_score < 70
        assert sink.patterns == []

    def test_sink_errors_are_logged(self, provider, job, profile):
        services = build_services(
            provider=provider,
            budget_store=InMemoryBudgetStore(default_budget_cents=10_000),
            tracer=NoopTracer(),
            learning_sink=RecordingSink(error=ConnectionError("down")),
            retry_wait_seconds=0,
        )
        provider.script("no insights", RESUME, LETTER)
        result = _run(generate_application(_request(job, profile), services))
        assert result.cover_letter is not None

    def test_resume_failure_raises(self, services, provider, job, profile):
        provider.script("no insights", "   ")
        with pytest.raises(PipelineStepError) as info:
            _run(generate_application(_request(job, profile), services))

        assert info.value.step == "Resume generation"
        assert info.value.kind == ErrorKind.VALIDATION_FAILED
        # no cover letter attempted after the failure
        assert len(provider.calls) == 2

    def test_exhausted_budget_runs_nothing(self, provider, job, profile):
        services = build_services(
            provider=provider,
            budget_store=InMemoryBudgetStore(default_budget_cents=0),
            tracer=NoopTracer(),
            retry_wait_seconds=0,
        )
        with pytest.raises(BudgetExceededError):
            _run(generate_application(_request(job, profile), services))
        assert provider.calls == []


# ---------------------------------------------------------------------------
# Test: analyze_profile
# ---------------------------------------------------------------------------


class TestAnalyzeProfile:
    def test_returns_enhancement(self, services, provider, profile):
        provider.script("[]", "Backend engineer with six years of Python.")
        enhancement = _run(analyze_profile({"profile": profile}, services, "user-1"))

        assert enhancement.enhanced_summary == "Backend engineer with six years of Python."
        assert enhancement.profile_strength == 93

    def test_failure_raises(self, services, provider, profile):
        provider.script("[]", RuntimeError("provider exploded"))
        with pytest.raises(PipelineStepError, match="Profile analysis failed"):
            _run(analyze_profile({"profile": profile}, services, "user-1"))
