# =============================================================================
# Job Agents Orchestration Engine
# =============================================================================
# A control layer for running bounded, budget-gated LLM "agent" tasks over
# job-search data: compatibility scoring, document tailoring, and profile
# enrichment, sequenced by a dependency-graph plan executor or fanned out by
# a bounded-concurrency batch matcher.
#
# Package structure:
#   jobagents/
#   ├── agents/       → runtime harness, tools, concrete agents, plan
#   │                    executor, batch matcher, LangGraph pipeline
#   ├── db/           → async SQLAlchemy engine and budget ledger models
#   ├── models/       → dataclass runtime records and pydantic domain models
#   ├── services/     → generation providers, pricing, budget guard,
#   │                    tracing, collaborator pool, swarm client
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
