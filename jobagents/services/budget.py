# =============================================================================
# Budget Guard — Gate Billed Work, Record Consumption
# =============================================================================
#
# Every billed generation call is preceded by BudgetGuard.check() and
# followed by BudgetGuard.record():
#
#   check  → BudgetCheck(allowed, remaining, usage%, message)
#            denial surfaces as BudgetExceededError / BUDGET_EXCEEDED
#   record → append a UsageRecord to the ledger; fire-and-forget, a store
#            failure is logged and never fails the generation that
#            already succeeded
#
# Budget state lives in the store and is authoritative there: the guard
# keeps no cache, so concurrent agents always see the latest total.
#
# ARCHITECTURE:
#   BudgetStore (Protocol)
#   ├── InMemoryBudgetStore  — process-local ledger (tests, local runs)
#   └── SqlBudgetStore       — user_budgets + token_usage tables
#   BudgetGuard              — check / ensure / record over a store
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobagents.agents.errors import BudgetExceededError
from jobagents.db.engine import get_session
from jobagents.db.models import TokenUsageRecord, UserBudget

logger = logging.getLogger(__name__)

BUDGET_EXCEEDED_MESSAGE = "Monthly budget exceeded"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BudgetCheck:
    allowed: bool
    remaining_cents: float
    usage_percent: float
    message: str | None = None


@dataclass(frozen=True)
class UsageRecord:
    """One billed generation call, as written to the ledger."""

    user_id: str
    model: str
    provider: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_cents: float
    purpose: str | None = None      # agent id
    job_id: str | None = None       # correlation id
    trace_id: str | None = None
    cached: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


def evaluate_budget(used_cents: float, budget_cents: float) -> BudgetCheck:
    """Turn a usage total and a budget into a BudgetCheck."""
    remaining = budget_cents - used_cents
    usage_percent = (used_cents / budget_cents) * 100 if budget_cents > 0 else 100.0
    allowed = remaining > 0
    return BudgetCheck(
        allowed=allowed,
        remaining_cents=remaining,
        usage_percent=usage_percent,
        message=None if allowed else BUDGET_EXCEEDED_MESSAGE,
    )


def get_provider_from_model(model: str) -> str:
    """Best-effort provider label from a model name."""
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gpt"):
        return "openai"
    if model.startswith("gemini"):
        return "google"
    return "unknown"


def current_period_start(now: datetime | None = None) -> datetime:
    """First instant (UTC) of the calendar month containing `now`."""
    now = now or datetime.now(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class BudgetStore(Protocol):
    async def check(self, user_id: str) -> BudgetCheck: ...

    async def record(self, usage: UsageRecord) -> None: ...


# ---------------------------------------------------------------------------
# Implementation 1: In-Memory
# ---------------------------------------------------------------------------


class InMemoryBudgetStore:
    """
    Process-local budget ledger.

    Budgets default to `default_budget_cents` on first sight of a user.
    Usage totals are kept per calendar month, so a new month starts at zero.
    """

    def __init__(self, default_budget_cents: int = 10_000) -> None:
        self.default_budget_cents = default_budget_cents
        self.budgets: dict[str, int] = {}
        self.ledger: list[UsageRecord] = []
        self._usage: dict[tuple[str, datetime], float] = {}

    def set_budget(self, user_id: str, budget_cents: int) -> None:
        self.budgets[user_id] = budget_cents

    def used_cents(self, user_id: str) -> float:
        return self._usage.get((user_id, current_period_start()), 0.0)

    async def check(self, user_id: str) -> BudgetCheck:
        budget = self.budgets.setdefault(user_id, self.default_budget_cents)
        return evaluate_budget(self.used_cents(user_id), budget)

    async def record(self, usage: UsageRecord) -> None:
        self.ledger.append(usage)
        key = (usage.user_id, current_period_start())
        self._usage[key] = self._usage.get(key, 0.0) + usage.cost_cents


# ---------------------------------------------------------------------------
# Implementation 2: SQL (PostgreSQL via SQLAlchemy async)
# ---------------------------------------------------------------------------


class SqlBudgetStore:
    """
    Budget ledger in PostgreSQL.

    check(): reads the user's user_budgets row, creating it with the
    default budget on first sight, and resets the running total when the
    stored period is older than the current month.

    record(): inserts a token_usage row and increments the running total
    in the same transaction.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        default_budget_cents: int = 10_000,
    ) -> None:
        self._session_factory = session_factory
        self.default_budget_cents = default_budget_cents

    async def check(self, user_id: str) -> BudgetCheck:
        period = current_period_start()
        async with get_session(self._session_factory) as session:
            row = await session.get(UserBudget, user_id)
            if row is None:
                row = UserBudget(
                    user_id=user_id,
                    monthly_budget_cents=self.default_budget_cents,
                    current_period_start=period,
                    current_period_usage_cents=0.0,
                )
                session.add(row)
                logger.info(
                    "Created budget for user %s (%d cents)",
                    user_id, self.default_budget_cents,
                )
            elif row.current_period_start < period:
                row.current_period_start = period
                row.current_period_usage_cents = 0.0

            return evaluate_budget(
                row.current_period_usage_cents, row.monthly_budget_cents,
            )

    async def record(self, usage: UsageRecord) -> None:
        async with get_session(self._session_factory) as session:
            session.add(TokenUsageRecord(
                user_id=usage.user_id,
                model=usage.model,
                provider=usage.provider,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                cost_cents=usage.cost_cents,
                purpose=usage.purpose,
                job_id=usage.job_id,
                trace_id=usage.trace_id,
                cached=usage.cached,
                metadata_=usage.metadata,
            ))
            await session.execute(
                update(UserBudget)
                .where(UserBudget.user_id == usage.user_id)
                .values(
                    current_period_usage_cents=(
                        UserBudget.current_period_usage_cents + usage.cost_cents
                    ),
                )
            )

    async def get_budget(self, user_id: str) -> UserBudget | None:
        async with get_session(self._session_factory) as session:
            result = await session.execute(
                select(UserBudget).where(UserBudget.user_id == user_id)
            )
            return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class BudgetGuard:
    """Gate billed operations against a BudgetStore."""

    def __init__(self, store: BudgetStore) -> None:
        self.store = store

    async def check(self, user_id: str) -> BudgetCheck:
        return await self.store.check(user_id)

    async def ensure(self, user_id: str) -> BudgetCheck:
        """
        Check the budget and raise on denial.

        Raises:
            BudgetExceededError: If the store denies the user.
        """
        budget_check = await self.store.check(user_id)
        if not budget_check.allowed:
            logger.warning(
                "Budget denied for user %s (%.1f%% used)",
                user_id, budget_check.usage_percent,
            )
            raise BudgetExceededError(budget_check)
        return budget_check

    async def record(self, usage: UsageRecord) -> None:
        """Record usage; store failures are logged, never raised."""
        try:
            await self.store.record(usage)
        except Exception:
            logger.exception(
                "Failed to record usage for user %s (model=%s, %.4f cents)",
                usage.user_id, usage.model, usage.cost_cents,
            )
