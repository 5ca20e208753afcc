# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine and the budget ledger ORM models.
#
# Key exports:
#   - async_session_factory: session factory for SqlBudgetStore
#   - Base: SQLAlchemy declarative base
#   - UserBudget, TokenUsageRecord: monthly budget and usage ledger rows
# =============================================================================
