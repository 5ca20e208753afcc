# =============================================================================
# Agents Package — Runtime, Agents and Orchestration
# =============================================================================
#   - errors.py: ErrorKind taxonomy, typed errors, categorisation
#   - runtime.py: AgentRuntime lifecycle (budget gate, retry, timeout,
#     validation, tracing) and the per-execution AgentRun
#   - tools.py: Tool contract, invoker, skill-extractor tool
#   - scoring.py: deterministic job/profile compatibility scoring
#   - job_match.py, documents.py, profile.py: concrete agent tasks
#   - registry.py: id → task mapping
#   - planner.py: dependency-ordered plan executor
#   - batch.py: bounded-concurrency batch matcher with swarm hand-off
#   - orchestrator.py: LangGraph application pipeline
#   - bootstrap.py: wires the above into AgentServices
# =============================================================================
