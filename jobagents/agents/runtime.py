# =============================================================================
# Agent Runtime — Lifecycle Harness for Agent Tasks
# =============================================================================
#
# Every agent task runs through AgentRuntime.execute(), which owns the
# lifecycle so individual agents only implement their task body:
#
#   idle → planning → executing → validating → completed → idle
#             │           │            │
#             └───────────┴────────────┴──→ failed → idle
#
#   planning    cancellation checkpoint, budget check (denial fails fast,
#               no generation call is made), input coercion
#   executing   the task body; each attempt bounded by the descriptor's
#               timeout; RATE_LIMITED / API_ERROR / TIMEOUT retried with
#               tenacity up to max_retries extra attempts
#   validating  the task's post-condition
#
# State lives in a per-execution AgentRun, not on the task, so one task
# instance can run concurrently (batch matching fans one job-match task
# out over many jobs).
#
# Inside the body, the task talks to the outside world only through its
# run: run.generate() / run.stream() for budget-gated, traced, billed
# generation and run.call_tool() for tools.
#
# The runtime never raises past its boundary: every failure becomes a
# failed AgentOutcome with an ErrorKind. asyncio.CancelledError is the
# exception: it is re-raised so task cancellation keeps working.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar, Protocol

import pydantic
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from jobagents.agents.errors import (
    AgentValidationError,
    InvalidInputError,
    ToolNotFoundError,
    categorize_error,
    is_retryable,
    user_message,
)
from jobagents.agents.tools import Tool, invoke_tool, parse_json_block
from jobagents.config import settings
from jobagents.models.runtime import (
    AgentDescriptor,
    AgentOutcome,
    ExecutionContext,
    TokenUsage,
    ToolOutcome,
)
from jobagents.services.budget import BudgetGuard, UsageRecord, get_provider_from_model
from jobagents.services.llm import GenerationStream, LLMProvider, LLMResponse
from jobagents.services.pricing import estimate_cost_cents
from jobagents.services.tracing import Span, Tracer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


class AgentState(str, enum.Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.IDLE: frozenset({AgentState.PLANNING}),
    AgentState.PLANNING: frozenset({AgentState.EXECUTING, AgentState.FAILED}),
    AgentState.EXECUTING: frozenset({AgentState.VALIDATING, AgentState.FAILED}),
    AgentState.VALIDATING: frozenset({AgentState.COMPLETED, AgentState.FAILED}),
    AgentState.COMPLETED: frozenset({AgentState.IDLE}),
    AgentState.FAILED: frozenset({AgentState.IDLE}),
}


# ---------------------------------------------------------------------------
# Task Contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationResult:
    content: str
    model: str
    usage: TokenUsage
    cost_cents: float
    json: Any = None    # parsed object when json_mode=True and parsing succeeded


class AgentTask(Protocol):
    descriptor: AgentDescriptor
    input_model: type[BaseModel] | None
    tools: Mapping[str, Tool]

    async def execute_task(self, input: Any, run: AgentRun) -> Any: ...

    def validate(self, output: Any, input: Any) -> list[str]: ...


class BaseAgentTask:
    """
    Convenience base for agent tasks.

    Subclasses set ``descriptor`` (and usually ``input_model``), list
    their tools in ``tool_list``, and implement ``execute_task``.
    """

    descriptor: ClassVar[AgentDescriptor]
    input_model: ClassVar[type[BaseModel] | None] = None
    tool_list: ClassVar[tuple[Tool, ...]] = ()

    def __init__(self) -> None:
        self.tools: dict[str, Tool] = {tool.id: tool for tool in self.tool_list}

    async def execute_task(self, input: Any, run: AgentRun) -> Any:
        raise NotImplementedError

    def validate(self, output: Any, input: Any) -> list[str]:
        return []


# ---------------------------------------------------------------------------
# Per-execution State
# ---------------------------------------------------------------------------


class AgentRun:
    """
    One execution of one task: state, accumulated cost and usage, and the
    capabilities (generate / stream / call_tool) handed to the task body.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        task: AgentTask,
        context: ExecutionContext,
        span: Span,
    ) -> None:
        self.runtime = runtime
        self.task = task
        self.span = span
        # Child context: tool spans and nested work hang below the agent span
        self.context = context.child(span)
        self.state = AgentState.IDLE
        self.history: list[AgentState] = [AgentState.IDLE]
        self.cost_cents = 0.0
        self.usage = TokenUsage()
        self.attempts = 0
        self.generation_calls = 0

    @property
    def user_id(self) -> str:
        return self.context.user_id

    def transition(self, state: AgentState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid agent state transition {self.state.value} → {state.value}"
            )
        self.state = state
        self.history.append(state)

    def fail(self) -> None:
        if AgentState.FAILED in _TRANSITIONS[self.state]:
            self.transition(AgentState.FAILED)

    def reset(self) -> None:
        if AgentState.IDLE in _TRANSITIONS[self.state]:
            self.transition(AgentState.IDLE)

    # -- generation ---------------------------------------------------------

    async def generate(
        self,
        prompt: str | None = None,
        *,
        messages: list[dict[str, str]] | None = None,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
        purpose: str | None = None,
    ) -> GenerationResult:
        """
        One budget-gated, traced, billed generation call.

        Raises:
            BudgetExceededError: The budget guard denied the call.
            OperationCancelledError: Cancellation was requested before or
                after the call.
        """
        self.context.checkpoint()
        await self.runtime.budget.ensure(self.user_id)

        span = self._generation_span(prompt, purpose)
        try:
            response = await self.runtime.provider.complete(
                _messages(prompt, messages),
                system=system,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except BaseException as exc:
            span.end(level="ERROR", status_message=str(exc) or exc.__class__.__name__)
            raise

        result = await self._account(response, span, purpose, json_mode)
        self.context.checkpoint()
        return result

    def stream(
        self,
        prompt: str | None = None,
        *,
        messages: list[dict[str, str]] | None = None,
        system: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        purpose: str | None = None,
    ) -> GenerationStream:
        """
        Streaming variant of generate().

        Budget is checked when iteration starts; usage is recorded when the
        upstream stream completes. The final ``result()`` is the provider's
        LLMResponse.
        """

        async def source():
            self.context.checkpoint()
            await self.runtime.budget.ensure(self.user_id)

            span = self._generation_span(prompt, purpose)
            upstream = self.runtime.provider.stream(
                _messages(prompt, messages),
                system=system,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            try:
                async for chunk in upstream:
                    self.context.checkpoint()
                    yield chunk
                response = await upstream.result()
            except BaseException as exc:
                span.end(
                    level="ERROR", status_message=str(exc) or exc.__class__.__name__,
                )
                raise

            await self._account(response, span, purpose, json_mode=False)
            yield response

        return GenerationStream(source())

    def _generation_span(self, prompt: str | None, purpose: str | None) -> Span:
        return self.span.generation(
            "generation",
            model=self.task.descriptor.default_model,
            input=prompt,
            metadata={
                "agent_id": self.task.descriptor.id,
                "purpose": purpose or self.task.descriptor.id,
            },
        )

    async def _account(
        self,
        response: LLMResponse,
        span: Span,
        purpose: str | None,
        json_mode: bool,
    ) -> GenerationResult:
        usage = TokenUsage(response.input_tokens, response.output_tokens)
        cost = estimate_cost_cents(
            response.provider_type,
            response.model,
            response.input_tokens,
            response.output_tokens,
        )
        if cost is None:
            logger.warning(
                "No pricing for %s/%s; recording zero cost",
                response.provider_type or "?", response.model,
            )
            cost = 0.0

        self.usage = self.usage + usage
        self.cost_cents += cost
        self.generation_calls += 1

        span.end(
            output=response.content,
            metadata={
                "model": response.model,
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "cost_cents": cost,
            },
        )

        await self.runtime.budget.record(UsageRecord(
            user_id=self.user_id,
            model=response.model,
            provider=get_provider_from_model(response.model),
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cost_cents=cost,
            purpose=purpose or self.task.descriptor.id,
            job_id=self.context.correlation_id,
            trace_id=self.context.trace_id,
            metadata={"agent_id": self.task.descriptor.id},
        ))

        parsed = parse_json_block(response.content) if json_mode else None
        return GenerationResult(
            content=response.content,
            model=response.model,
            usage=usage,
            cost_cents=cost,
            json=parsed,
        )

    # -- tools --------------------------------------------------------------

    async def call_tool(self, tool_id: str, input: Any) -> ToolOutcome:
        """
        Raises:
            ToolNotFoundError: The task never registered `tool_id`.
            ToolFailedError: The tool failed.
        """
        tool = self.task.tools.get(tool_id)
        if tool is None:
            raise ToolNotFoundError(tool_id)
        return await invoke_tool(tool, input, self.context, generate=self.generate)


def _messages(
    prompt: str | None,
    messages: list[dict[str, str]] | None,
) -> list[dict[str, str]]:
    if messages is not None:
        return messages
    if prompt is None:
        raise ValueError("generate() needs a prompt or messages")
    return [{"role": "user", "content": prompt}]


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


class AgentRuntime:
    """Executes agent tasks under the lifecycle contract."""

    def __init__(
        self,
        provider: LLMProvider,
        budget: BudgetGuard,
        tracer: Tracer,
        retry_wait_seconds: float | None = None,
    ) -> None:
        self.provider = provider
        self.budget = budget
        self.tracer = tracer
        self.retry_wait_seconds = (
            settings.agent_retry_wait_seconds
            if retry_wait_seconds is None
            else retry_wait_seconds
        )

    async def execute(
        self,
        task: AgentTask,
        input: Any,
        context: ExecutionContext,
    ) -> AgentOutcome:
        descriptor = task.descriptor
        start = time.perf_counter()
        span = context.span.span(
            f"agent:{descriptor.id}",
            input=input,
            metadata={
                "agent_id": descriptor.id,
                "priority": descriptor.priority.value,
            },
        )
        run = AgentRun(self, task, context, span)

        try:
            run.transition(AgentState.PLANNING)
            context.checkpoint()
            await self.budget.ensure(context.user_id)
            task_input = self._coerce_input(task, input)

            run.transition(AgentState.EXECUTING)
            output = await self._execute_with_retry(task, task_input, run)

            run.transition(AgentState.VALIDATING)
            errors = task.validate(output, task_input)
            if errors:
                raise AgentValidationError(errors)

            run.transition(AgentState.COMPLETED)
            outcome = AgentOutcome(
                success=True,
                data=output,
                duration_ms=_elapsed_ms(start),
                cost_cents=run.cost_cents,
                usage=run.usage,
                trace_id=context.trace_id,
                attempts=run.attempts,
            )
            span.end(
                output=output,
                metadata={
                    "duration_ms": outcome.duration_ms,
                    "cost_cents": outcome.cost_cents,
                    "success": True,
                },
            )
            logger.info(
                "Agent %s completed in %.0fms (%.4f cents, %d attempt(s))",
                descriptor.id, outcome.duration_ms, outcome.cost_cents, run.attempts,
            )

        except asyncio.CancelledError:
            run.fail()
            span.end(level="WARNING", status_message="Task cancelled")
            raise

        except Exception as exc:
            kind = categorize_error(exc)
            run.fail()
            outcome = AgentOutcome(
                success=False,
                error=user_message(kind, exc),
                error_kind=kind,
                duration_ms=_elapsed_ms(start),
                cost_cents=run.cost_cents,
                usage=run.usage,
                trace_id=context.trace_id,
                attempts=run.attempts,
            )
            span.end(
                level="ERROR",
                status_message=outcome.error,
                metadata={
                    "duration_ms": outcome.duration_ms,
                    "cost_cents": outcome.cost_cents,
                    "error_kind": kind.value,
                },
            )
            logger.warning(
                "Agent %s failed (%s) after %d attempt(s): %s",
                descriptor.id, kind.value, run.attempts, exc,
            )

        finally:
            run.reset()

        await self._flush()
        return outcome

    def _coerce_input(self, task: AgentTask, input: Any) -> Any:
        model = getattr(task, "input_model", None)
        if model is None or isinstance(input, model):
            return input
        if not isinstance(input, Mapping):
            raise InvalidInputError(
                f"{task.descriptor.id} expects {model.__name__}, "
                f"got {type(input).__name__}"
            )
        try:
            return model.model_validate(input)
        except pydantic.ValidationError as exc:
            raise InvalidInputError(
                f"Invalid input for {task.descriptor.id}: {exc}"
            ) from exc

    async def _execute_with_retry(
        self,
        task: AgentTask,
        task_input: Any,
        run: AgentRun,
    ) -> Any:
        descriptor = task.descriptor

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(descriptor.max_retries + 1),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception(is_retryable),
            before_sleep=_log_retry(descriptor.id),
            reraise=True,
        ):
            with attempt:
                run.attempts += 1
                run.context.checkpoint()
                return await asyncio.wait_for(
                    task.execute_task(task_input, run),
                    timeout=descriptor.timeout_seconds,
                )

    async def _flush(self) -> None:
        try:
            await self.tracer.flush()
        except Exception:
            logger.warning("Tracer flush failed", exc_info=True)


def _log_retry(agent_id: str):
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Retrying agent %s (attempt %d failed: %s)",
            agent_id, retry_state.attempt_number, exc,
        )

    return before_sleep


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
