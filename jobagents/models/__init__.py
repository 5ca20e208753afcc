# =============================================================================
# Models Package — Runtime Records and Domain Schemas
# =============================================================================
#   - runtime.py: dataclass records produced by the engine (execution
#     context, agent descriptors, outcomes, orchestration plans)
#   - domain.py: pydantic v2 models for caller-supplied data (jobs,
#     profiles, options) and the structured output of each agent
#
# Kept separate from the ORM models in jobagents/db/models.py.
# =============================================================================
