# =============================================================================
# Service Assembly — Registry, Runtime and Orchestration Components
# =============================================================================
#
# build_services() wires the process-wide collaborators once:
#
#   provider ─┐
#   budget   ─┼─▶ AgentRuntime ─┬─▶ PlanExecutor
#   tracer   ─┘                 ├─▶ BatchMatcher (+ optional swarm)
#                               └─▶ application pipeline (orchestrator)
#   AgentRegistry (job-match, resume, cover-letter, profile)
#
# Every argument is optional; tests pass fakes, workers pass nothing and
# get the configured defaults. get_services() is the lazy per-process
# singleton used by the Celery tasks.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from jobagents.agents.batch import BatchMatcher
from jobagents.agents.documents import CoverLetterAgent, ResumeAgent
from jobagents.agents.job_match import JobMatchAgent
from jobagents.agents.planner import PlanExecutor
from jobagents.agents.profile import ProfileAgent
from jobagents.agents.registry import AgentRegistry
from jobagents.agents.runtime import AgentRuntime
from jobagents.config import settings
from jobagents.services.budget import (
    BudgetGuard,
    BudgetStore,
    InMemoryBudgetStore,
    SqlBudgetStore,
)
from jobagents.services.llm import LLMProvider, get_llm_provider
from jobagents.services.swarm import HttpSwarmCoordinator, SwarmCoordinator
from jobagents.services.tracing import Tracer, create_tracer

if TYPE_CHECKING:
    from jobagents.agents.orchestrator import LearningSink

logger = logging.getLogger(__name__)


@dataclass
class AgentServices:
    runtime: AgentRuntime
    registry: AgentRegistry
    tracer: Tracer
    budget: BudgetGuard
    planner: PlanExecutor
    batch: BatchMatcher
    learning_sink: LearningSink | None = None


def default_budget_store() -> BudgetStore:
    if settings.budget_store == "sql":
        return SqlBudgetStore(default_budget_cents=settings.default_monthly_budget_cents)
    if settings.budget_store != "memory":
        raise ValueError(
            f"Unknown budget_store: '{settings.budget_store}'. "
            "Supported: 'memory', 'sql'"
        )
    return InMemoryBudgetStore(default_budget_cents=settings.default_monthly_budget_cents)


def default_swarm() -> SwarmCoordinator | None:
    if not settings.swarm_enabled:
        return None
    if not settings.swarm_url:
        logger.warning("swarm_enabled is set but swarm_url is empty; swarm disabled")
        return None
    return HttpSwarmCoordinator(
        settings.swarm_url,
        pool_size=settings.swarm_pool_size,
        ttl_seconds=settings.swarm_connection_ttl_seconds,
        timeout_seconds=settings.swarm_timeout_seconds,
    )


def build_services(
    provider: LLMProvider | None = None,
    budget_store: BudgetStore | None = None,
    tracer: Tracer | None = None,
    swarm: SwarmCoordinator | None = None,
    learning_sink: LearningSink | None = None,
    retry_wait_seconds: float | None = None,
) -> AgentServices:
    """Wire the runtime, registry and orchestration components."""
    tracer = tracer or create_tracer(settings.tracing_backend)
    budget = BudgetGuard(budget_store or default_budget_store())
    runtime = AgentRuntime(
        provider or get_llm_provider(),
        budget,
        tracer,
        retry_wait_seconds=retry_wait_seconds,
    )

    job_match = JobMatchAgent()
    registry = AgentRegistry([job_match, ResumeAgent(), CoverLetterAgent(), ProfileAgent()])

    services = AgentServices(
        runtime=runtime,
        registry=registry,
        tracer=tracer,
        budget=budget,
        planner=PlanExecutor(runtime, registry),
        batch=BatchMatcher(runtime, job_match, swarm=swarm or default_swarm()),
        learning_sink=learning_sink,
    )
    logger.info(
        "%s %s: agent services ready (%d agents, tracing=%s, budget=%s, swarm=%s)",
        settings.app_name, settings.app_version, len(registry),
        type(tracer).__name__, type(budget.store).__name__,
        services.batch.swarm is not None,
    )
    return services


_services: AgentServices | None = None


def get_services() -> AgentServices:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
