# =============================================================================
# Database Models — Budget Ledger (SQLAlchemy ORM)
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌────────────────────────────────┐       ┌──────────────────────────────┐
# │  user_budgets                  │       │  token_usage                 │
# ├────────────────────────────────┤       ├──────────────────────────────┤
# │ user_id (PK)                   │──1:N─▶│ id (PK)                      │
# │ monthly_budget_cents           │       │ user_id                      │
# │ current_period_start           │       │ model, provider              │
# │ current_period_usage_cents     │       │ prompt/completion/total tok. │
# │ created_at, updated_at         │       │ cost_cents                   │
# └────────────────────────────────┘       │ purpose (agent id)           │
#                                          │ job_id, trace_id, cached     │
#                                          │ metadata_ (jsonb)            │
#                                          │ created_at                   │
#                                          └──────────────────────────────┘
#
# user_budgets holds the running total for the current calendar month so a
# budget check is one primary-key read; token_usage is the append-only
# ledger the total is derived from.
#
# No ForeignKey from token_usage to user_budgets: the ledger row must be
# writable even if the budget row was never created.
# =============================================================================

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class UserBudget(Base):
    """Monthly budget and current-period consumption for one user."""

    __tablename__ = "user_budgets"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    monthly_budget_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=10_000,
    )

    # First instant of the calendar month the usage total belongs to.
    # A check in a later month resets the total.
    current_period_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    current_period_usage_cents: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<UserBudget(user_id='{self.user_id}', "
            f"used={self.current_period_usage_cents}/"
            f"{self.monthly_budget_cents})>"
        )


class TokenUsageRecord(Base):
    """One billed generation call."""

    __tablename__ = "token_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    model: Mapped[str] = mapped_column(String(200), nullable=False)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)

    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost_cents: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Agent id that made the call (e.g. "job-match-agent")
    purpose: Mapped[str | None] = mapped_column(String(100), nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cached: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # `metadata_` avoids the collision with DeclarativeBase.metadata
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True, default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<TokenUsageRecord(id={self.id}, user_id='{self.user_id}', "
            f"model='{self.model}', cost_cents={self.cost_cents})>"
        )


# Per-user period queries scan the ledger by user and time
token_usage_user_created_idx = Index(
    "idx_token_usage_user_created",
    TokenUsageRecord.user_id,
    TokenUsageRecord.created_at,
)
