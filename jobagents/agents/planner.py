# =============================================================================
# Plan Executor — Dependency-ordered Composition of Agents
# =============================================================================
#
# A plan is a DAG of steps, each naming an agent by registry id. Execution
# proceeds in rounds:
#
#   round k = every unfinished step whose depends_on are all finished
#
# Rounds are strictly sequential; the steps of one round may run together
# (settings.plan_parallel_rounds). Because skipped and failed-optional
# steps still count as finished, the rounds depend only on the plan's
# shape and are computed up front, together with every other
# configuration check, before any step runs:
#
#   duplicate step ids                 → PlanConfigurationError
#   depends_on naming a missing step   → PlanConfigurationError
#   input mapping naming a step that
#     is not an ancestor               → PlanConfigurationError
#   unknown agent id                   → UnknownAgentError
#   no ready step while unfinished     → CircularDependencyError
#
# At run time:
#
#   condition false, optional  → skipped, its output resolves to None
#   condition false, required  → plan aborts
#   agent fails, optional      → recorded, plan continues
#   agent fails, required      → plan aborts, later rounds never start
#
# Conditions see the accumulated plan context: {"input": plan.input,
# "<step_id>": output, ...}. A condition that raises counts as false.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from jobagents.agents.errors import (
    CircularDependencyError,
    OperationCancelledError,
    PlanConfigurationError,
)
from jobagents.agents.registry import AgentRegistry
from jobagents.agents.runtime import AgentRuntime
from jobagents.config import settings
from jobagents.models.runtime import (
    AgentOutcome,
    ExecutionContext,
    OrchestrationPlan,
    OrchestrationResult,
    OrchestrationStep,
)

logger = logging.getLogger(__name__)

INPUT_ROOT = "input"


# ---------------------------------------------------------------------------
# Plan Validation
# ---------------------------------------------------------------------------


def execution_rounds(steps: tuple[OrchestrationStep, ...]) -> list[list[OrchestrationStep]]:
    """
    Group steps into rounds of mutually independent steps.

    Raises:
        CircularDependencyError: Some steps can never become ready.
    """
    finished: set[str] = set()
    remaining = list(steps)
    rounds: list[list[OrchestrationStep]] = []

    while remaining:
        ready = [s for s in remaining if all(d in finished for d in s.depends_on)]
        if not ready:
            blocked = ", ".join(s.id for s in remaining)
            raise CircularDependencyError(
                f"Circular dependency detected in orchestration plan (steps: {blocked})"
            )
        rounds.append(ready)
        finished.update(s.id for s in ready)
        remaining = [s for s in remaining if s.id not in finished]

    return rounds


def _ancestors(step_id: str, by_id: Mapping[str, OrchestrationStep]) -> set[str]:
    seen: set[str] = set()
    stack = list(by_id[step_id].depends_on)
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(by_id[current].depends_on)
    return seen


def validate_plan(
    plan: OrchestrationPlan,
    registry: AgentRegistry,
) -> list[list[OrchestrationStep]]:
    """
    Check a plan's configuration and return its execution rounds.

    Raises:
        PlanConfigurationError: Duplicate ids, dangling dependencies or
            mappings that reference a step which does not precede the step.
        CircularDependencyError: The dependencies contain a cycle.
        UnknownAgentError: A step names an agent missing from the registry.
    """
    by_id: dict[str, OrchestrationStep] = {}
    for step in plan.steps:
        if step.id == INPUT_ROOT:
            raise PlanConfigurationError(f"Step id '{INPUT_ROOT}' is reserved")
        if step.id in by_id:
            raise PlanConfigurationError(f"Duplicate step id: {step.id}")
        by_id[step.id] = step

    for step in plan.steps:
        registry.get(step.agent_id)
        for dep in step.depends_on:
            if dep not in by_id:
                raise PlanConfigurationError(
                    f"Step {step.id} depends on unknown step: {dep}"
                )

    rounds = execution_rounds(plan.steps)

    for step in plan.steps:
        ancestors = _ancestors(step.id, by_id)
        for key, ref in step.input_mapping.items():
            root = ref.split(".", 1)[0]
            if root == INPUT_ROOT:
                continue
            if root not in by_id:
                raise PlanConfigurationError(
                    f"Step {step.id} maps '{key}' from unknown source: {ref}"
                )
            if root not in ancestors:
                raise PlanConfigurationError(
                    f"Step {step.id} maps '{key}' from {root}, "
                    "which is not one of its prerequisites"
                )

    return rounds


# ---------------------------------------------------------------------------
# Input Mapping
# ---------------------------------------------------------------------------


def resolve_reference(ref: str, plan_context: Mapping[str, Any]) -> Any:
    """
    Look up a dotted reference ("input.job", "match.breakdown.skills")
    in the plan context. Missing keys, attributes and skipped steps all
    resolve to None.
    """
    root, *path = ref.split(".")
    value = plan_context.get(root)
    for part in path:
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def build_step_input(step: OrchestrationStep, plan_context: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: resolve_reference(ref, plan_context)
        for key, ref in step.input_mapping.items()
    }


def _condition_holds(step: OrchestrationStep, plan_context: Mapping[str, Any]) -> bool:
    if step.condition is None:
        return True
    try:
        return bool(step.condition(plan_context))
    except Exception as exc:
        logger.warning("Condition for step %s raised, treating as false: %s", step.id, exc)
        return False


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class _PlanAborted(Exception):
    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(message)
        self.step_id = step_id


class PlanExecutor:
    """Runs orchestration plans against a registry of agent tasks."""

    def __init__(
        self,
        runtime: AgentRuntime,
        registry: AgentRegistry,
        parallel_rounds: bool | None = None,
    ) -> None:
        self.runtime = runtime
        self.registry = registry
        self.parallel_rounds = (
            settings.plan_parallel_rounds if parallel_rounds is None else parallel_rounds
        )

    async def execute(
        self,
        plan: OrchestrationPlan,
        context: ExecutionContext,
    ) -> OrchestrationResult:
        """
        Execute `plan` and report per-step outcomes.

        Step failures are reported in the result; only configuration
        errors raise (see validate_plan).
        """
        rounds = validate_plan(plan, self.registry)

        start = time.perf_counter()
        span = context.span.span(
            f"plan:{plan.name}",
            input=dict(plan.input),
            metadata={"plan_id": plan.id, "step_count": len(plan.steps)},
        )
        plan_ctx = context.child(span)
        result = OrchestrationResult(
            plan_id=plan.id, success=True, trace_id=context.trace_id,
        )
        logger.info("Executing plan %s (%s, %d steps)", plan.id, plan.name, len(plan.steps))

        try:
            await asyncio.wait_for(
                self._run_rounds(rounds, plan, plan_ctx, result),
                timeout=plan.timeout_seconds,
            )
        except _PlanAborted as exc:
            result.success = False
            result.failed_step = exc.step_id
            result.error = str(exc)
        except asyncio.TimeoutError:
            result.success = False
            result.error = f"Plan timed out after {plan.timeout_seconds:g}s"
        except OperationCancelledError as exc:
            result.success = False
            result.error = str(exc)

        result.total_cost_cents = sum(o.cost_cents for o in result.step_results.values())
        result.total_duration_ms = sum(o.duration_ms for o in result.step_results.values())

        span.end(
            output={"success": result.success, "failed_step": result.failed_step},
            metadata={
                "total_cost_cents": result.total_cost_cents,
                "total_duration_ms": result.total_duration_ms,
                "wall_ms": (time.perf_counter() - start) * 1000,
            },
            level="DEFAULT" if result.success else "ERROR",
            status_message=result.error,
        )
        if result.success:
            logger.info(
                "Plan %s completed (%d steps run, %d skipped, %.4f cents)",
                plan.id, len(result.step_results), len(result.skipped_steps),
                result.total_cost_cents,
            )
        else:
            logger.warning("Plan %s failed: %s", plan.id, result.error)
        return result

    async def _run_rounds(
        self,
        rounds: list[list[OrchestrationStep]],
        plan: OrchestrationPlan,
        context: ExecutionContext,
        result: OrchestrationResult,
    ) -> None:
        plan_context: dict[str, Any] = {INPUT_ROOT: plan.input}

        for steps in rounds:
            context.checkpoint()

            runnable: list[OrchestrationStep] = []
            for step in steps:
                if _condition_holds(step, plan_context):
                    runnable.append(step)
                elif step.optional:
                    logger.info("Skipping optional step %s (condition not met)", step.id)
                    result.skipped_steps.append(step.id)
                    plan_context[step.id] = None
                else:
                    raise _PlanAborted(step.id, f"Required step {step.id} condition not met")

            if self.parallel_rounds and len(runnable) > 1:
                outcomes = await asyncio.gather(*(
                    self._run_step(step, plan_context, context) for step in runnable
                ))
                for step, outcome in zip(runnable, outcomes):
                    self._record(step, outcome, plan_context, result)
                for step, outcome in zip(runnable, outcomes):
                    _raise_if_required_failed(step, outcome)
            else:
                for step in runnable:
                    outcome = await self._run_step(step, plan_context, context)
                    self._record(step, outcome, plan_context, result)
                    _raise_if_required_failed(step, outcome)

    async def _run_step(
        self,
        step: OrchestrationStep,
        plan_context: Mapping[str, Any],
        context: ExecutionContext,
    ) -> AgentOutcome:
        task = self.registry.get(step.agent_id)
        span = context.span.span(
            step.name or step.id,
            metadata={"step_id": step.id, "agent_id": step.agent_id},
        )
        outcome = await self.runtime.execute(
            task, build_step_input(step, plan_context), context.child(span),
        )
        span.end(output={"success": outcome.success})
        return outcome

    def _record(
        self,
        step: OrchestrationStep,
        outcome: AgentOutcome,
        plan_context: dict[str, Any],
        result: OrchestrationResult,
    ) -> None:
        result.step_results[step.id] = outcome
        plan_context[step.id] = outcome.data if outcome.success else None
        if not outcome.success and step.optional:
            logger.warning("Optional step %s failed: %s", step.id, outcome.error)


def _raise_if_required_failed(step: OrchestrationStep, outcome: AgentOutcome) -> None:
    if not outcome.success and not step.optional:
        raise _PlanAborted(step.id, f"Required step {step.id} failed: {outcome.error}")
