# =============================================================================
# Batch Matcher — One Profile Against Many Jobs
# =============================================================================
#
# Flow:
#
#   jobs >= swarm_batch_threshold and a swarm is configured?
#     └── yes → offer the whole set to the swarm
#           ├── error / unavailable / empty → everything runs locally
#           └── partial result → the jobs it did not score run locally
#   local:
#     chunks of `max_concurrency` jobs; each chunk runs under
#     asyncio.gather and completes before the next one starts
#   filter score >= min_score, sort by score descending (ties keep input
#   order)
#
# A failed item is counted as "no match" and never aborts the batch; its
# cost is still included in the total.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Sequence

from jobagents.agents.runtime import AgentRuntime, AgentTask
from jobagents.config import settings
from jobagents.models.domain import (
    BatchMatchRequest,
    BatchMatchResult,
    EducationScore,
    ExperienceScore,
    JobInfo,
    JobMatch,
    JobMatchInput,
    LocationScore,
    MatchBreakdown,
    MatchScore,
    SalaryScore,
    SkillsScore,
)
from jobagents.models.runtime import AgentOutcome, ExecutionContext
from jobagents.services.swarm import SwarmCoordinator, SwarmMatch

logger = logging.getLogger(__name__)


def _clamp(value: int) -> int:
    return max(0, min(100, int(value)))


def swarm_match_to_score(match: SwarmMatch) -> MatchScore:
    """
    Express a swarm result as a MatchScore.

    The swarm reports only numeric sub-scores; salary is not scored
    remotely and is reported as fully compatible.
    """
    b = match.breakdown
    return MatchScore(
        overall_score=_clamp(match.match_score),
        breakdown=MatchBreakdown(
            skills=SkillsScore(score=_clamp(b.get("skills", 0))),
            experience=ExperienceScore(score=_clamp(b.get("experience", 0)), relevance=""),
            education=EducationScore(score=_clamp(b.get("education", 0)), relevance=""),
            location=LocationScore(score=_clamp(b.get("location", 0)), compatible=True),
            salary=SalaryScore(score=100, in_range=True),
        ),
        match_reasons=list(match.reasons),
    )


def chunked(items: Sequence, size: int) -> list[Sequence]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchMatcher:
    """Runs the job-match agent across a list of jobs with bounded concurrency."""

    def __init__(
        self,
        runtime: AgentRuntime,
        task: AgentTask,
        swarm: SwarmCoordinator | None = None,
        max_concurrency: int | None = None,
        swarm_threshold: int | None = None,
    ) -> None:
        self.runtime = runtime
        self.task = task
        self.swarm = swarm
        self.max_concurrency = max_concurrency or settings.orchestrator_max_concurrency
        self.swarm_threshold = (
            settings.swarm_batch_threshold if swarm_threshold is None else swarm_threshold
        )

    async def match(
        self,
        request: BatchMatchRequest,
        context: ExecutionContext,
    ) -> BatchMatchResult:
        """
        Score every job in `request` and return the matches above threshold.

        Raises:
            OperationCancelledError: The context was cancelled between chunks.
        """
        min_score = (
            settings.batch_min_score if request.min_score is None else request.min_score
        )
        jobs = request.jobs
        span = context.span.span(
            "batch-matching",
            input={"job_count": len(jobs), "min_score": min_score},
        )
        batch_ctx = context.child(span)

        # Keyed by position in `jobs`: ids are not required to be unique.
        scored: dict[int, MatchScore] = {}
        used_swarm = False
        if self.swarm is not None and len(jobs) >= self.swarm_threshold:
            swarm_scores = await self._try_swarm(request, min_score, batch_ctx)
            if swarm_scores:
                used_swarm = True
                id_counts = Counter(job.id for job in jobs)
                for index, job in enumerate(jobs):
                    # A shared id cannot tell its jobs apart remotely
                    if id_counts[job.id] == 1 and job.id in swarm_scores:
                        scored[index] = swarm_scores[job.id]

        remaining = [
            (index, job) for index, job in enumerate(jobs) if index not in scored
        ]
        if used_swarm and remaining:
            logger.info(
                "Swarm scored %d/%d jobs; processing %d locally",
                len(scored), len(jobs), len(remaining),
            )

        total_cost = 0.0
        failed = 0
        for chunk in chunked(remaining, self.max_concurrency):
            batch_ctx.checkpoint()
            outcomes = await self._run_chunk([job for _, job in chunk], request, batch_ctx)
            for (index, job), outcome in zip(chunk, outcomes):
                total_cost += outcome.cost_cents
                if outcome.success:
                    scored[index] = outcome.data
                else:
                    failed += 1
                    logger.warning(
                        "Match failed for job %s (%s): %s",
                        job.id, outcome.error_kind, outcome.error,
                    )

        matches = [
            JobMatch(job=job, score=scored[index])
            for index, job in enumerate(jobs)
            if index in scored and scored[index].overall_score >= min_score
        ]
        # sort() is stable, so equal scores keep input order
        matches.sort(key=lambda m: m.score.overall_score, reverse=True)

        result = BatchMatchResult(
            matches=matches,
            total_cost_cents=total_cost,
            processed_count=len(jobs),
            filtered_count=len(matches),
            failed_count=failed,
            used_swarm=used_swarm,
            trace_id=context.trace_id,
        )
        span.end(
            output={
                "matched": result.filtered_count,
                "top_score": matches[0].score.overall_score if matches else None,
            },
            metadata={
                "total_cost_cents": total_cost,
                "failed": failed,
                "used_swarm": used_swarm,
            },
        )
        logger.info(
            "Batch for user %s: %d/%d jobs matched (%d failed, swarm=%s, %.4f cents)",
            request.user_id, result.filtered_count, result.processed_count,
            failed, used_swarm, total_cost,
        )
        return result

    async def _try_swarm(
        self,
        request: BatchMatchRequest,
        min_score: int,
        context: ExecutionContext,
    ) -> dict[str, MatchScore]:
        span = context.span.span("swarm-batch-matching", input={"job_count": len(request.jobs)})
        try:
            results = await self.swarm.coordinate_batch_matching(
                request.jobs,
                request.profile,
                min_score=min_score,
                max_concurrency=self.max_concurrency,
                timeout=settings.swarm_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("Swarm batch matching failed, processing locally: %s", exc)
            span.end(level="WARNING", status_message=str(exc))
            return {}

        scores = {r.job_id: swarm_match_to_score(r) for r in results}
        span.end(output={"scored": len(scores), "used_swarm": bool(scores)})
        return scores

    async def _run_chunk(
        self,
        chunk: Sequence[JobInfo],
        request: BatchMatchRequest,
        context: ExecutionContext,
    ) -> list[AgentOutcome]:
        return await asyncio.gather(*(
            self.runtime.execute(
                self.task,
                JobMatchInput(job=job, profile=request.profile, weights=request.weights),
                context.child(context.span, correlation_id=job.id),
            )
            for job in chunk
        ))
