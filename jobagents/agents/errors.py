# =============================================================================
# Agent Error Taxonomy — Kinds, Typed Errors, Categorisation
# =============================================================================
#
# Every failure that crosses the agent runtime boundary is reduced to one
# ErrorKind. Categorisation is fixed-priority:
#
#   1. Typed errors raised by this package (budget, validation, cancel,
#      tool, invalid input)
#   2. Typed errors from the standard library and the provider SDKs
#      (TimeoutError, pydantic ValidationError, anthropic/openai errors)
#   3. Message-substring sniffing for opaque upstream errors
#   4. UNKNOWN
#
# Plan configuration errors (dangling prerequisites, cycles, unknown agent
# ids) are NOT categorised: they raise straight to the caller.
# =============================================================================

from __future__ import annotations

import asyncio
import enum
from typing import TYPE_CHECKING

import anthropic
import openai
import pydantic

if TYPE_CHECKING:
    from jobagents.models.runtime import AgentOutcome
    from jobagents.services.budget import BudgetCheck


class ErrorKind(str, enum.Enum):
    """Flat failure taxonomy carried by every failed outcome."""

    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    INVALID_INPUT = "INVALID_INPUT"
    TOOL_FAILED = "TOOL_FAILED"
    UNKNOWN = "UNKNOWN"


# Kinds worth another attempt. Everything else fails on first occurrence.
RETRYABLE_KINDS = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.API_ERROR,
    ErrorKind.TIMEOUT,
})

# Fixed user-facing text for kinds whose upstream message must not leak.
_SANITISED_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.BUDGET_EXCEEDED: "Budget exceeded",
    ErrorKind.CANCELLED: "Operation cancelled",
}


# ---------------------------------------------------------------------------
# Runtime Errors (categorised into an outcome)
# ---------------------------------------------------------------------------


class AgentError(Exception):
    """Base class for errors raised inside an agent execution."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class BudgetExceededError(AgentError):
    """The budget guard denied a billed operation."""

    kind = ErrorKind.BUDGET_EXCEEDED

    def __init__(self, budget_check: BudgetCheck) -> None:
        super().__init__(budget_check.message or "Budget exceeded")
        self.budget_check = budget_check


class AgentValidationError(AgentError):
    """The task's post-condition rejected its own output."""

    kind = ErrorKind.VALIDATION_FAILED

    def __init__(self, errors: list[str]) -> None:
        super().__init__(f"Validation failed: {', '.join(errors)}")
        self.errors = errors


class OperationCancelledError(AgentError):
    """The execution context's cancellation signal was set."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class InvalidInputError(AgentError):
    """Input could not be coerced into what the task expects."""

    kind = ErrorKind.INVALID_INPUT


class ToolFailedError(AgentError):
    """A tool reported failure or raised while executing."""

    kind = ErrorKind.TOOL_FAILED

    def __init__(self, tool_id: str, message: str) -> None:
        super().__init__(message)
        self.tool_id = tool_id


class PipelineStepError(AgentError):
    """
    A required agent of a multi-agent pipeline returned a failed outcome.

    Carries that outcome; ``kind`` is the failed agent's error kind.
    """

    def __init__(self, step: str, outcome: AgentOutcome) -> None:
        super().__init__(f"{step} failed: {outcome.error}")
        self.step = step
        self.outcome = outcome
        self.kind = outcome.error_kind or ErrorKind.UNKNOWN


class ToolNotFoundError(AgentError, LookupError):
    """An agent asked for a tool it never registered (programming error)."""

    kind = ErrorKind.UNKNOWN

    def __init__(self, tool_id: str) -> None:
        super().__init__(f"Tool not found: {tool_id}")
        self.tool_id = tool_id


# ---------------------------------------------------------------------------
# Configuration Errors (raised to the caller)
# ---------------------------------------------------------------------------


class PlanConfigurationError(ValueError):
    """An orchestration plan is malformed (duplicate ids, dangling refs)."""


class CircularDependencyError(PlanConfigurationError):
    """No step is ready while the plan is unfinished."""


class UnknownAgentError(LookupError):
    """A plan or caller referenced an agent id missing from the registry."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Unknown agent: {agent_id}")
        self.agent_id = agent_id


# ---------------------------------------------------------------------------
# Categorisation
# ---------------------------------------------------------------------------

# Checked in order; the first rule with a matching substring wins.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], ErrorKind], ...] = (
    (("rate limit", "too many requests", "429"), ErrorKind.RATE_LIMITED),
    (("timeout", "timed out"), ErrorKind.TIMEOUT),
    (("cancelled", "canceled", "aborted"), ErrorKind.CANCELLED),
    (("invalid",), ErrorKind.INVALID_INPUT),
    (("tool",), ErrorKind.TOOL_FAILED),
    (
        ("api error", "status code", "service unavailable", "overloaded"),
        ErrorKind.API_ERROR,
    ),
)


def categorize_error(error: BaseException) -> ErrorKind:
    """Map any exception raised inside an agent to an ErrorKind."""
    if isinstance(error, AgentError):
        return error.kind

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, pydantic.ValidationError):
        return ErrorKind.INVALID_INPUT

    # Provider SDKs: timeout is a subclass of the generic API error,
    # so it has to be checked first.
    if isinstance(error, (anthropic.RateLimitError, openai.RateLimitError)):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, (anthropic.APITimeoutError, openai.APITimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (anthropic.APIError, openai.APIError)):
        return ErrorKind.API_ERROR

    message = str(error).lower()
    for needles, kind in _MESSAGE_RULES:
        if any(needle in message for needle in needles):
            return kind

    return ErrorKind.UNKNOWN


def user_message(kind: ErrorKind, error: BaseException) -> str:
    """
    The message attached to a failed outcome.

    Budget and cancellation failures get a fixed sanitised text; every
    other kind passes the upstream message through for debuggability.
    """
    if kind in _SANITISED_MESSAGES:
        return _SANITISED_MESSAGES[kind]
    return str(error) or error.__class__.__name__


def is_retryable(error: BaseException) -> bool:
    """True when the error's kind is worth another attempt."""
    return categorize_error(error) in RETRYABLE_KINDS
