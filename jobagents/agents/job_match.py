# =============================================================================
# Job Match Agent — Compatibility Score with Explanation
# =============================================================================
#
# 1. Skills: use the job's explicit required/preferred lists; when both
#    are empty, extract them from the description with skill-extractor
# 2. Score: pure deterministic scoring (scoring.score_match)
# 3. Explain: one best-effort generation call for reasons / suggestions /
#    concerns; any failure falls back to a list derived from the scores
#
# The score never depends on the explanation call. Only cancellation
# propagates out of step 3.
# =============================================================================

from __future__ import annotations

import logging

from jobagents.agents.errors import OperationCancelledError
from jobagents.agents.runtime import AgentRun, BaseAgentTask
from jobagents.agents.scoring import fallback_insights, score_match
from jobagents.agents.tools import SKILL_EXTRACTOR_ID, skill_extractor
from jobagents.models.domain import JobMatchInput, MatchScore
from jobagents.models.runtime import AgentDescriptor, AgentPriority

logger = logging.getLogger(__name__)

_INSIGHTS_PROMPT = """Analyze this job match and provide insights.

JOB: {job_title} at {company}
CANDIDATE: {candidate} - {headline}

SCORES:
- Overall: {overall}%
- Skills: {skills}% (matched: {matched}, missing: {missing})
- Experience: {experience}% - {experience_relevance}
- Education: {education}% - {education_relevance}
- Location: {location}% - {location_note}

Return JSON with:
{{
  "reasons": ["3-5 key reasons why this is a good/poor match"],
  "suggestions": ["2-3 actionable suggestions to improve candidacy"],
  "concerns": ["1-3 potential concerns or red flags, if any"]
}}"""


class JobMatchAgent(BaseAgentTask):
    """Scores a profile against one job posting."""

    descriptor = AgentDescriptor(
        id="job-match-agent",
        name="Job Matching Agent",
        description="Calculates job-profile match scores with detailed analysis",
        default_model="gemini-1.5-flash",
        max_retries=2,
        timeout_seconds=30.0,
        priority=AgentPriority.NORMAL,
    )
    input_model = JobMatchInput
    tool_list = (skill_extractor,)

    async def execute_task(self, input: JobMatchInput, run: AgentRun) -> MatchScore:
        job = input.job
        required, preferred = job.required_skills, job.preferred_skills

        if not required and not preferred and job.description.strip():
            extracted = await run.call_tool(
                SKILL_EXTRACTOR_ID,
                {"text": job.description, "context": "job_description"},
            )
            skills = extracted.data["skills"]
            required = [s.name for s in skills if s.importance == "required"]
            preferred = [s.name for s in skills if s.importance != "required"]

        match = score_match(
            job,
            input.profile,
            weights=input.weights,
            required_skills=required,
            preferred_skills=preferred,
            now=input.now,
        )

        reasons, suggestions, concerns = await self._insights(input, match, run)
        return match.model_copy(update={
            "match_reasons": reasons,
            "suggestions": suggestions,
            "concerns": concerns,
        })

    async def _insights(
        self,
        input: JobMatchInput,
        match: MatchScore,
        run: AgentRun,
    ) -> tuple[list[str], list[str], list[str]]:
        b = match.breakdown
        prompt = _INSIGHTS_PROMPT.format(
            job_title=input.job.title,
            company=input.job.company,
            candidate=input.profile.full_name,
            headline=input.profile.headline or "",
            overall=match.overall_score,
            skills=b.skills.score,
            matched=", ".join(b.skills.matched),
            missing=", ".join(b.skills.missing),
            experience=b.experience.score,
            experience_relevance=b.experience.relevance,
            education=b.education.score,
            education_relevance=b.education.relevance,
            location=b.location.score,
            location_note=(
                "Compatible" if b.location.compatible else "May require relocation"
            ),
        )

        try:
            result = await run.generate(
                prompt,
                max_tokens=500,
                temperature=0.3,
                json_mode=True,
                purpose="match-insights",
            )
        except OperationCancelledError:
            raise
        except Exception as exc:
            logger.warning("Match insights generation failed: %s", exc)
            return fallback_insights(match)

        data = result.json
        if isinstance(data, dict) and all(
            isinstance(data.get(key), list)
            for key in ("reasons", "suggestions", "concerns")
        ):
            return (
                [str(r) for r in data["reasons"]],
                [str(s) for s in data["suggestions"]],
                [str(c) for c in data["concerns"]],
            )

        logger.warning("Match insights were not valid JSON; using fallback")
        return fallback_insights(match)

    def validate(self, output: MatchScore, input: JobMatchInput) -> list[str]:
        errors = []
        if not 0 <= output.overall_score <= 100:
            errors.append(f"overall score out of range: {output.overall_score}")
        for name in ("skills", "experience", "education", "location", "salary"):
            score = getattr(output.breakdown, name).score
            if not 0 <= score <= 100:
                errors.append(f"{name} score out of range: {score}")
        return errors
