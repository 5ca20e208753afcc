# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Everything here runs without API keys, databases or network:
#   - FakeProvider: scripted LLMProvider (strings, exceptions or callables)
#   - InMemoryBudgetStore + BudgetGuard
#   - NoopTracer
#   - AgentRuntime with zero retry wait
# =============================================================================

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from jobagents.agents.runtime import AgentRuntime
from jobagents.models.domain import (
    EducationItem,
    ExperienceItem,
    JobInfo,
    ProfileInfo,
)
from jobagents.models.runtime import ExecutionContext
from jobagents.services.budget import BudgetGuard, InMemoryBudgetStore
from jobagents.services.llm import GenerationStream, LLMResponse
from jobagents.services.tracing import NoopTracer

FAKE_MODEL = "claude-3-haiku-20240307"


class FakeProvider:
    """
    LLMProvider returning scripted responses in order.

    Each scripted item is a string (returned as content), an exception
    (raised) or a callable taking the messages and returning either.
    When the script runs out, `default` is returned.
    """

    provider_type = "anthropic"

    def __init__(self, default: str = "ok") -> None:
        self.default = default
        self.items: list[Any] = []
        self.calls: list[dict[str, Any]] = []

    def script(self, *items: Any) -> FakeProvider:
        self.items.extend(items)
        return self

    def _next(self, messages: list[dict[str, str]]) -> str:
        item = self.items.pop(0) if self.items else self.default
        if callable(item) and not isinstance(item, BaseException):
            item = item(messages)
        if isinstance(item, BaseException):
            raise item
        return item

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": messages,
            "system": system,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        content = self._next(messages)
        return LLMResponse(
            content=content,
            model=FAKE_MODEL,
            input_tokens=1000,
            output_tokens=200,
            provider_type=self.provider_type,
        )

    def stream(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerationStream:
        async def source():
            response = await self.complete(messages, system, temperature, max_tokens)
            for word in response.content.split(" "):
                yield word
            yield response

        return GenerationStream(source())


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def budget_store() -> InMemoryBudgetStore:
    return InMemoryBudgetStore(default_budget_cents=10_000)


@pytest.fixture
def tracer() -> NoopTracer:
    return NoopTracer()


@pytest.fixture
def runtime(provider, budget_store, tracer) -> AgentRuntime:
    return AgentRuntime(
        provider, BudgetGuard(budget_store), tracer, retry_wait_seconds=0,
    )


@pytest.fixture
def make_context(tracer) -> Callable[..., ExecutionContext]:
    def _make(user_id: str = "user-1", **kwargs: Any) -> ExecutionContext:
        return ExecutionContext.start(tracer, "test", user_id=user_id, **kwargs)

    return _make


@pytest.fixture
def job() -> JobInfo:
    return JobInfo(
        id="job-1",
        title="Senior Backend Engineer",
        company="Acme",
        description="We need a senior engineer with 5+ years of Python experience.",
        location="Berlin, Germany",
        salary_min=90_000,
        salary_max=120_000,
        experience_level="senior",
        required_skills=["Python", "PostgreSQL", "Kubernetes"],
        preferred_skills=["Go"],
    )


@pytest.fixture
def profile() -> ProfileInfo:
    return ProfileInfo(
        id="profile-1",
        full_name="Alex Doe",
        email="alex@example.com",
        headline="Backend engineer",
        summary="Backend engineer focused on data-heavy services and APIs.",
        location="Berlin, Germany",
        skills=["Python", "postgres", "k8s", "Docker", "FastAPI"],
        experience=[
            ExperienceItem(
                title="Backend Engineer",
                company="Globex",
                start_date="2018-01",
                end_date="2021-01",
                description="Built billing services in Python serving 2M users.",
            ),
            ExperienceItem(
                title="Senior Software Engineer",
                company="Initech",
                start_date="2021-01",
                end_date="2024-01",
                description="Led a team of 4 building Kubernetes deployment tooling.",
            ),
        ],
        education=[
            EducationItem(
                institution="TU Berlin",
                degree="Bachelor of Science",
                field="Computer Science",
            ),
        ],
        min_salary=95_000,
        max_salary=110_000,
    )
