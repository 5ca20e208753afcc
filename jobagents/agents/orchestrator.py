# =============================================================================
# LangGraph Orchestrator — Application Pipeline
# =============================================================================
#
# Generating an application runs three agents in a LangGraph StateGraph:
#
#   START ──▶ match ──▶ resume ──┬──▶ cover_letter ──▶ END
#                                └──────────────────▶ END
#                                 (cover letter not requested)
#
# match and resume are required: a failed outcome raises PipelineStepError
# out of the graph. The cover letter is secondary: its failure is logged
# and the result simply has no cover letter.
#
# The services bundle (runtime, registry, tracer, budget guard) and the
# execution context travel in the graph state. No checkpointer is
# configured, so the state never has to be serialisable.
#
# After a successful run, a resume with ATS score >= 70 is offered to the
# optional LearningSink as a success pattern. Sink failures are logged.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from jobagents.agents.bootstrap import AgentServices
from jobagents.agents.errors import PipelineStepError
from jobagents.models.domain import (
    ApplicationRequest,
    ApplicationResult,
    CoverLetterAgentInput,
    CoverLetterOptions,
    JobMatchInput,
    ProfileAgentInput,
    ProfileEnhancement,
    ResumeAgentInput,
)
from jobagents.models.runtime import AgentOutcome, ExecutionContext

logger = logging.getLogger(__name__)

JOB_MATCH_AGENT = "job-match-agent"
RESUME_AGENT = "resume-agent"
COVER_LETTER_AGENT = "cover-letter-agent"
PROFILE_AGENT = "profile-agent"

# Resumes scoring at least this are reported to the learning sink.
SUCCESS_PATTERN_MIN_ATS = 70


# ---------------------------------------------------------------------------
# Learning Sink
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SuccessPattern:
    user_id: str
    job_id: str
    job_title: str
    company: str
    ats_score: int
    match_score: int
    matched_skills: list[str] = field(default_factory=list)
    application_id: str | None = None


class LearningSink(Protocol):
    async def record_success(self, pattern: SuccessPattern) -> None: ...


# ---------------------------------------------------------------------------
# Pipeline State
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """State flowing through the application graph; nodes return partial updates."""

    # --- Input (set by caller) ---
    request: ApplicationRequest
    services: AgentServices
    context: ExecutionContext

    # --- Set by nodes ---
    match_outcome: AgentOutcome
    resume_outcome: AgentOutcome
    cover_letter_outcome: AgentOutcome


async def _run_agent(state: PipelineState, agent_id: str, input: Any) -> AgentOutcome:
    services = state["services"]
    return await services.runtime.execute(
        services.registry.get(agent_id), input, state["context"],
    )


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def match_node(state: PipelineState) -> dict:
    request = state["request"]
    outcome = await _run_agent(
        state, JOB_MATCH_AGENT,
        JobMatchInput(job=request.job, profile=request.profile),
    )
    if not outcome.success:
        raise PipelineStepError("Job matching", outcome)

    logger.info(
        "Match score for job %s: %d", request.job.id, outcome.data.overall_score,
    )
    return {"match_outcome": outcome}


async def resume_node(state: PipelineState) -> dict:
    request = state["request"]
    outcome = await _run_agent(
        state, RESUME_AGENT,
        ResumeAgentInput(
            job=request.job, profile=request.profile, resume=request.resume,
        ),
    )
    if not outcome.success:
        raise PipelineStepError("Resume generation", outcome)
    return {"resume_outcome": outcome}


async def cover_letter_node(state: PipelineState) -> dict:
    request = state["request"]
    outcome = await _run_agent(
        state, COVER_LETTER_AGENT,
        CoverLetterAgentInput(
            job=request.job,
            profile=request.profile,
            resume=request.resume,
            options=CoverLetterOptions(tone=request.options.cover_letter_tone),
        ),
    )
    if not outcome.success:
        logger.warning(
            "Cover letter generation failed for job %s (%s): %s",
            request.job.id, outcome.error_kind, outcome.error,
        )
    return {"cover_letter_outcome": outcome}


def route_after_resume(state: PipelineState) -> str:
    if state["request"].options.generate_cover_letter:
        return "cover_letter"
    return END


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(PipelineState)
_builder.add_node("match", match_node)
_builder.add_node("resume", resume_node)
_builder.add_node("cover_letter", cover_letter_node)

_builder.add_edge(START, "match")
_builder.add_edge("match", "resume")
_builder.add_conditional_edges(
    "resume", route_after_resume, {"cover_letter": "cover_letter", END: END},
)
_builder.add_edge("cover_letter", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def generate_application(
    request: ApplicationRequest | dict,
    services: AgentServices,
) -> ApplicationResult:
    """
    Match, tailor a resume and (optionally) write a cover letter.

    Raises:
        BudgetExceededError: The user has no budget left; nothing ran.
        PipelineStepError: Matching or resume generation failed.
    """
    if not isinstance(request, ApplicationRequest):
        request = ApplicationRequest.model_validate(request)

    start = time.perf_counter()
    await services.budget.ensure(request.user_id)

    context = ExecutionContext.start(
        services.tracer,
        "application-generation",
        user_id=request.user_id,
        correlation_id=request.job.id,
        application_id=request.application_id,
        metadata={
            "job_title": request.job.title,
            "company": request.job.company,
        },
    )
    logger.info(
        "Generating application: user=%s, job=%s, cover_letter=%s",
        request.user_id, request.job.id, request.options.generate_cover_letter,
    )

    try:
        state = await graph.ainvoke({
            "request": request,
            "services": services,
            "context": context,
        })
    except PipelineStepError as exc:
        context.trace.update(output={"success": False, "error": str(exc)})
        await _flush(services)
        raise

    outcomes = [
        state[key]
        for key in ("match_outcome", "resume_outcome", "cover_letter_outcome")
        if key in state
    ]
    letter_outcome = state.get("cover_letter_outcome")
    result = ApplicationResult(
        resume=state["resume_outcome"].data,
        cover_letter=(
            letter_outcome.data if letter_outcome and letter_outcome.success else None
        ),
        match_score=state["match_outcome"].data,
        total_cost_cents=sum(o.cost_cents for o in outcomes),
        duration_ms=(time.perf_counter() - start) * 1000,
        trace_id=context.trace_id,
    )

    if result.resume.ats_score >= SUCCESS_PATTERN_MIN_ATS:
        await _record_success(services, request, result)

    context.trace.update(output={
        "success": True,
        "match_score": result.match_score.overall_score,
        "ats_score": result.resume.ats_score,
        "has_cover_letter": result.cover_letter is not None,
        "total_cost_cents": result.total_cost_cents,
    })
    await _flush(services)

    logger.info(
        "Application generated for job %s in %.0fms (%.4f cents)",
        request.job.id, result.duration_ms, result.total_cost_cents,
    )
    return result


async def analyze_profile(
    input: ProfileAgentInput | dict,
    services: AgentServices,
    user_id: str,
) -> ProfileEnhancement:
    """
    Run the profile agent on its own.

    Raises:
        PipelineStepError: The profile agent failed.
    """
    context = ExecutionContext.start(services.tracer, "profile-analysis", user_id=user_id)
    outcome = await services.runtime.execute(
        services.registry.get(PROFILE_AGENT), input, context,
    )
    await _flush(services)
    if not outcome.success:
        raise PipelineStepError("Profile analysis", outcome)
    return outcome.data


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _record_success(
    services: AgentServices,
    request: ApplicationRequest,
    result: ApplicationResult,
) -> None:
    if services.learning_sink is None:
        return
    pattern = SuccessPattern(
        user_id=request.user_id,
        job_id=request.job.id,
        job_title=request.job.title,
        company=request.job.company,
        ats_score=result.resume.ats_score,
        match_score=result.match_score.overall_score,
        matched_skills=list(result.resume.matched_skills),
        application_id=request.application_id,
    )
    try:
        await services.learning_sink.record_success(pattern)
    except Exception:
        logger.warning("Failed to record success pattern", exc_info=True)


async def _flush(services: AgentServices) -> None:
    try:
        await services.tracer.flush()
    except Exception:
        logger.warning("Tracer flush failed", exc_info=True)
