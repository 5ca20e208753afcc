# =============================================================================
# Runtime Records — Execution Context, Descriptors, Outcomes, Plans
# =============================================================================
#
# Internal records that flow between the agent runtime, the plan executor
# and the batch matcher. Plain dataclasses (frozen where immutable), kept
# separate from the pydantic domain models in domain.py:
#
#   - domain.py models are INPUTS from callers and get validated
#   - these records are produced by our own code and are trusted
#
# AgentOutcome is the only object that crosses an agent boundary. Its
# cost and usage fields are always present (zero when unknown) so they
# can be summed unconditionally.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from jobagents.agents.errors import ErrorKind, OperationCancelledError

if TYPE_CHECKING:
    from jobagents.services.tracing import Span, Tracer


# ---------------------------------------------------------------------------
# Execution Context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionContext:
    """
    Per-operation carrier of identity, tracing position and cancellation.

    Created once per logical operation (one application generation, one
    batch, one plan) and never reused. Nested work derives a child
    context with ``child(span)``; the cancel event is shared with the
    parent so one signal stops the whole tree.
    """

    user_id: str
    trace: Span
    correlation_id: str | None = None      # job id, when there is one
    application_id: str | None = None
    parent_span: Span | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def start(
        cls,
        tracer: Tracer,
        name: str,
        user_id: str,
        correlation_id: str | None = None,
        application_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        """Open a root trace and build a fresh context around it."""
        meta = dict(metadata or {})
        trace = tracer.trace(
            name,
            user_id=user_id,
            metadata={
                **meta,
                "correlation_id": correlation_id,
                "application_id": application_id,
            },
        )
        return cls(
            user_id=user_id,
            trace=trace,
            correlation_id=correlation_id,
            application_id=application_id,
            metadata=meta,
        )

    @property
    def span(self) -> Span:
        """The span new child spans should hang from."""
        return self.parent_span or self.trace

    @property
    def trace_id(self) -> str:
        return self.trace.trace_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def child(self, span: Span, **overrides: Any) -> ExecutionContext:
        return replace(self, parent_span=span, **overrides)

    def cancel(self) -> None:
        self.cancel_event.set()

    def checkpoint(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self.cancel_event.is_set():
            raise OperationCancelledError()


# ---------------------------------------------------------------------------
# Agent Descriptor & Outcomes
# ---------------------------------------------------------------------------


class AgentPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class AgentDescriptor:
    """Static configuration of an agent task."""

    id: str
    name: str
    description: str = ""
    default_model: str | None = None   # None → provider's configured model
    max_retries: int = 2               # extra attempts after the first
    timeout_seconds: float = 60.0      # per attempt
    priority: AgentPriority = AgentPriority.NORMAL


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


@dataclass(frozen=True)
class AgentOutcome:
    """
    Result of one agent execution.

    On success ``data`` holds the task's validated output and ``error`` /
    ``error_kind`` are None; on failure the reverse.
    """

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: float = 0.0
    cost_cents: float = 0.0
    usage: TokenUsage = field(default_factory=TokenUsage)
    trace_id: str | None = None
    attempts: int = 1


@dataclass(frozen=True)
class ToolOutcome:
    success: bool
    data: Any = None
    error: str | None = None
    cached: bool = False
    duration_ms: float = 0.0


# ---------------------------------------------------------------------------
# Orchestration Plans
# ---------------------------------------------------------------------------

# Accumulated plan state: {"input": plan.input, "<step_id>": step output}
PlanContext = Mapping[str, Any]


@dataclass(frozen=True)
class OrchestrationStep:
    """
    One node of a plan.

    ``input_mapping`` maps agent input keys to references into the plan
    context: ``"input.<field>"`` for plan input, ``"<step_id>.<field>"``
    (optionally deeper, dot-separated) for a prior step's output, or a
    bare ``"<step_id>"`` for the whole output.
    """

    id: str
    agent_id: str
    name: str = ""
    input_mapping: Mapping[str, str] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    optional: bool = False
    condition: Callable[[PlanContext], bool] | None = None


@dataclass(frozen=True)
class OrchestrationPlan:
    id: str
    name: str
    steps: tuple[OrchestrationStep, ...]
    input: Mapping[str, Any] = field(default_factory=dict)
    timeout_seconds: float = 300.0

    @classmethod
    def build(
        cls,
        name: str,
        steps: list[OrchestrationStep],
        input: Mapping[str, Any] | None = None,
        timeout_seconds: float = 300.0,
    ) -> OrchestrationPlan:
        """Build a plan with a fresh id."""
        return cls(
            id=f"plan_{uuid.uuid4().hex[:12]}",
            name=name,
            steps=tuple(steps),
            input=dict(input or {}),
            timeout_seconds=timeout_seconds,
        )


@dataclass
class OrchestrationResult:
    plan_id: str
    success: bool
    step_results: dict[str, AgentOutcome] = field(default_factory=dict)
    skipped_steps: list[str] = field(default_factory=list)
    total_duration_ms: float = 0.0
    total_cost_cents: float = 0.0
    trace_id: str | None = None
    failed_step: str | None = None
    error: str | None = None
