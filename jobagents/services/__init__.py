# =============================================================================
# Services Package — External Collaborators
# =============================================================================
#   - llm.py: multi-provider generation backend (Anthropic, OpenAI-compatible)
#   - pricing.py: per-model token pricing in cents
#   - budget.py: budget guard and its in-memory / SQL stores
#   - tracing.py: span protocol with no-op and logging backends
#   - pool.py: bounded client pool with TTL pruning
#   - swarm.py: HTTP swarm coordinator for large batch hand-off
# =============================================================================
