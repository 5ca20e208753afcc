# =============================================================================
# Swarm Coordinator — Batch Hand-off to an External Matching Swarm
# =============================================================================
#
# Large batches can be delegated to an external coordinator that scores
# many jobs in parallel. The batch matcher treats it as optional:
#
#   - SwarmUnavailableError, any other error, or an empty result
#     → the batch matcher processes the whole batch locally
#   - a partial result → jobs missing from it are processed locally
#
# The coordinator returns every job it scored, unfiltered; the score
# threshold is applied by the batch matcher so a job the swarm scored
# below threshold is not mistaken for one it skipped.
#
# HttpSwarmCoordinator keeps its httpx clients in a ClientPool so a burst
# of batches reuses connections instead of opening one client per call.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from jobagents.models.domain import JobInfo, ProfileInfo
from jobagents.services.pool import ClientPool

logger = logging.getLogger(__name__)

# Descriptions are truncated before leaving the process
_MAX_DESCRIPTION_CHARS = 2000
_MAX_REQUIREMENTS = 10


class SwarmUnavailableError(Exception):
    """The swarm coordinator could not be reached or refused the task."""


@dataclass(frozen=True)
class SwarmMatch:
    job_id: str
    match_score: int
    breakdown: dict[str, int] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0


class SwarmCoordinator(Protocol):
    """
    Scores a batch remotely.

    `min_score` is the caller's threshold, for logging only: results must
    come back unfiltered.
    """

    async def coordinate_batch_matching(
        self,
        jobs: list[JobInfo],
        profile: ProfileInfo,
        min_score: int,
        max_concurrency: int,
        timeout: float,
    ) -> list[SwarmMatch]: ...


def build_batch_task(jobs: list[JobInfo], profile: ProfileInfo) -> dict:
    """The task payload sent to the coordinator; it carries no threshold."""
    return {
        "type": "batch_job_matching",
        "jobs": [
            {
                "id": job.id,
                "title": job.title,
                "company": job.company,
                "description": job.description[:_MAX_DESCRIPTION_CHARS],
                "requirements": job.requirements[:_MAX_REQUIREMENTS],
                "location": job.location,
                "isRemote": job.is_remote,
            }
            for job in jobs
        ],
        "profile": {
            "id": profile.id,
            "skills": profile.skills,
            "experience": [
                {"title": e.title, "company": e.company, "skills": e.skills}
                for e in profile.experience
            ],
            "education": [
                {"degree": e.degree, "field": e.field} for e in profile.education
            ],
            "location": profile.location,
        },
    }


def parse_swarm_results(payload: dict, job_ids: set[str]) -> list[SwarmMatch]:
    """
    Convert a coordinator response into SwarmMatch records.

    Results for unknown job ids are dropped. A response without
    ``success: true`` raises SwarmUnavailableError.
    """
    if not payload.get("success"):
        raise SwarmUnavailableError(
            payload.get("error") or "Swarm coordinator reported failure"
        )

    matches: list[SwarmMatch] = []
    for item in payload.get("results") or []:
        job_id = str(item.get("jobId", ""))
        if job_id not in job_ids:
            logger.warning("Swarm returned a result for unknown job %s", job_id)
            continue
        breakdown = item.get("breakdown") or {}
        matches.append(SwarmMatch(
            job_id=job_id,
            match_score=int(round(item.get("matchScore", 0))),
            breakdown={
                key: int(breakdown.get(key, 0))
                for key in ("skills", "experience", "education", "location")
            },
            reasons=list(item.get("reasons") or []),
            processing_time_ms=float(item.get("processingTimeMs") or 0),
        ))
    return matches


class HttpSwarmCoordinator:
    """SwarmCoordinator over HTTP: POST {base_url}/coordination/orchestrate."""

    def __init__(
        self,
        base_url: str,
        pool_size: int = 4,
        ttl_seconds: float = 300.0,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self.pool: ClientPool[httpx.AsyncClient] = ClientPool(
            factory=self._new_client,
            max_size=pool_size,
            ttl_seconds=ttl_seconds,
            closer=lambda client: client.aclose(),
        )
        logger.info(
            "Initialized HttpSwarmCoordinator (url=%s, pool=%d)",
            self._base_url, pool_size,
        )

    async def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)

    async def coordinate_batch_matching(
        self,
        jobs: list[JobInfo],
        profile: ProfileInfo,
        min_score: int,
        max_concurrency: int,
        timeout: float,
    ) -> list[SwarmMatch]:
        if not jobs:
            return []

        body = {
            "task": build_batch_task(jobs, profile),
            "agents": ["job-match-agent"],
            "strategy": "parallel",
            "maxAgents": max_concurrency,
            "timeout": int(timeout * 1000),
        }

        logger.debug(
            "Offering %d jobs to swarm (threshold %d applied locally)",
            len(jobs), min_score,
        )
        await self.pool.prune()
        client = await self.pool.acquire()
        broken = False
        try:
            response = await client.post(
                "/coordination/orchestrate", json=body, timeout=timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TransportError as exc:
            broken = True
            raise SwarmUnavailableError(f"Swarm unreachable: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise SwarmUnavailableError(
                f"Swarm returned status {exc.response.status_code}"
            ) from exc
        finally:
            if broken:
                await self.pool.discard(client)
            else:
                await self.pool.release(client)

        return parse_swarm_results(payload, {job.id for job in jobs})

    async def aclose(self) -> None:
        await self.pool.close_all()
