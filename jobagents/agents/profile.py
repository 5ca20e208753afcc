# =============================================================================
# Profile Agent — Enrichment Suggestions for a Candidate Profile
# =============================================================================
#
# 1. Skills evidenced by experience descriptions (skill-extractor) that the
#    profile does not list yet → suggested_skills
# 2. Enhanced summary (required generation)
# 3. Headline suggestions (best effort)
# 4. Rewrites of the most recent experience descriptions (best effort,
#    one call each, only for descriptions with enough text to improve)
# 5. Profile strength: deterministic completeness score
# 6. Recommendations: derived from the gaps found in 5 plus step 1
#
# Prompts insist on rephrasing only. Nothing in the output may introduce
# facts that are not already in the profile.
# =============================================================================

from __future__ import annotations

import logging

from jobagents.agents.errors import BudgetExceededError, OperationCancelledError
from jobagents.agents.runtime import AgentRun, BaseAgentTask
from jobagents.agents.scoring import skill_matches
from jobagents.agents.tools import SKILL_EXTRACTOR_ID, skill_extractor
from jobagents.models.domain import (
    ExperienceEnhancement,
    ExperienceItem,
    ProfileAgentInput,
    ProfileEnhancement,
    ProfileInfo,
)
from jobagents.models.runtime import AgentDescriptor, AgentPriority

logger = logging.getLogger(__name__)

_SUMMARY_PROMPT = """Write an enhanced professional summary based ONLY on the provided information.

## TRUTHFULNESS REQUIREMENTS (MANDATORY)
- ONLY use information explicitly provided below
- Do NOT invent years of experience unless calculable from the experience dates
- Do NOT add specific achievements or skills not listed
- If information is limited, keep the summary appropriately brief

## PROVIDED PROFILE DATA
NAME: {name}
CURRENT HEADLINE: {headline}
CURRENT SUMMARY: {summary}
KEY SKILLS: {skills}
EXPERIENCE: {experience}
{targets}

## GUIDELINES
- 2-3 impactful sentences
- Reference skills and experience ONLY from the data above
- Use active voice and strong verbs

Write only the summary, no labels or explanations."""

_HEADLINE_PROMPT = """Generate 3 professional headline options for LinkedIn/resume:

CURRENT: {headline}
EXPERIENCE: {titles}
SKILLS: {skills}
{targets}

Guidelines:
- Max 120 characters each
- Include key skills/technologies
- Be specific, avoid generic titles

Return 3 headlines, one per line, no numbers or bullets."""

_ENHANCE_PROMPT = """Improve the clarity and impact of this job description while maintaining COMPLETE ACCURACY.

- You may ONLY rephrase and restructure the provided information
- Do NOT add metrics, numbers, percentages, or statistics not in the original
- Do NOT assume technologies or processes not mentioned

Role: {title} at {company}
Description: {description}
{targets}

Return JSON:
{{
  "enhanced": "improved description using ONLY information from the original",
  "reason": "brief explanation of improvements made"
}}"""

# Descriptions shorter than this have too little to rephrase.
MIN_DESCRIPTION_LENGTH = 50


# ---------------------------------------------------------------------------
# Deterministic Parts
# ---------------------------------------------------------------------------


def profile_strength(profile: ProfileInfo) -> int:
    """Completeness score in [0, 100], starting from a base of 50."""
    score = 50
    if profile.summary and len(profile.summary) > 50:
        score += 10
    if profile.headline and len(profile.headline) > 10:
        score += 5
    if len(profile.skills) >= 5:
        score += 10
    if len(profile.skills) >= 10:
        score += 5
    if len(profile.experience) >= 2:
        score += 10
    if profile.education:
        score += 5
    if profile.linkedin_url:
        score += 3
    if profile.github_handle:
        score += 2

    described = sum(
        1 for item in profile.experience
        if item.description and len(item.description) > MIN_DESCRIPTION_LENGTH
    )
    score += min(described * 3, 10)
    return max(0, min(100, score))


def missing_skills(current: list[str], extracted: list[str], limit: int = 10) -> list[str]:
    """Extracted skills not already listed, ignoring case, aliases and variations."""
    held = {s.lower().strip() for s in current if s and s.strip()}
    suggestions: list[str] = []
    for name in extracted:
        if not name.strip() or skill_matches(name, held):
            continue
        if name not in suggestions:
            suggestions.append(name)
    return suggestions[:limit]


def compile_recommendations(
    profile: ProfileInfo,
    suggested_skills: list[str],
    strength: int,
    limit: int = 8,
) -> list[str]:
    recommendations: list[str] = []
    if not profile.summary:
        recommendations.append("Add a professional summary")
    if not profile.headline:
        recommendations.append("Add a headline that names your role and core skills")
    if len(profile.skills) < 5:
        recommendations.append("List at least five skills")
    if any(
        not item.description or len(item.description) <= MIN_DESCRIPTION_LENGTH
        for item in profile.experience
    ):
        recommendations.append("Describe what you did and achieved in each position")
    if not profile.education:
        recommendations.append("Add your education history")
    if suggested_skills:
        recommendations.append(
            "Consider adding these skills based on your experience: "
            + ", ".join(suggested_skills[:5])
        )

    if strength < 50:
        recommendations.append(
            "Focus on completing your profile with a detailed summary and skills list"
        )
    elif strength < 70:
        recommendations.append("Add quantifiable achievements to your experience descriptions")
    elif strength < 85:
        recommendations.append("Consider adding portfolio links or certifications to stand out")

    return list(dict.fromkeys(recommendations))[:limit]


def parse_headlines(content: str, limit: int = 3) -> list[str]:
    lines = (line.strip().lstrip("-*•0123456789.) ").strip() for line in content.splitlines())
    return [line for line in lines if 10 < len(line) < 150][:limit]


def _targets(label: str, roles: list[str]) -> str:
    return f"{label}: {', '.join(roles)}" if roles else ""


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class ProfileAgent(BaseAgentTask):
    """Suggests improvements to a candidate profile."""

    descriptor = AgentDescriptor(
        id="profile-agent",
        name="Profile Enhancement Agent",
        description="Analyzes profiles and suggests improvements",
        default_model="claude-3-haiku-20240307",
        max_retries=2,
        timeout_seconds=45.0,
        priority=AgentPriority.LOW,
    )
    input_model = ProfileAgentInput
    tool_list = (skill_extractor,)

    async def execute_task(
        self, input: ProfileAgentInput, run: AgentRun,
    ) -> ProfileEnhancement:
        profile = input.profile

        suggested = await self._suggested_skills(profile, run)
        summary = await self._summary(input, run)
        headlines = await self._headlines(input, run)
        enhancements = []
        for item in profile.experience[:3]:
            enhancement = await self._enhance(item, input.target_roles, run)
            if enhancement is not None:
                enhancements.append(enhancement)

        strength = profile_strength(profile)
        return ProfileEnhancement(
            enhanced_summary=summary,
            headline_suggestions=headlines,
            suggested_skills=suggested,
            experience_enhancements=enhancements,
            profile_strength=strength,
            recommendations=compile_recommendations(profile, suggested, strength),
        )

    async def _suggested_skills(self, profile: ProfileInfo, run: AgentRun) -> list[str]:
        text = "\n".join(
            f"{e.title} at {e.company}: {e.description or ''} {', '.join(e.skills)}"
            for e in profile.experience
        )
        if not text.strip():
            return []
        extracted = await run.call_tool(
            SKILL_EXTRACTOR_ID, {"text": text, "context": "profile"},
        )
        return missing_skills(profile.skills, [s.name for s in extracted.data["skills"]])

    async def _summary(self, input: ProfileAgentInput, run: AgentRun) -> str:
        profile = input.profile
        result = await run.generate(
            _SUMMARY_PROMPT.format(
                name=profile.full_name,
                headline=profile.headline or "[Not provided]",
                summary=profile.summary or "[Not provided]",
                skills=", ".join(profile.skills[:10]),
                experience=", ".join(
                    f"{e.title} at {e.company}" for e in profile.experience[:3]
                ),
                targets=_targets("TARGET ROLES", input.target_roles),
            ),
            max_tokens=300,
            temperature=0.6,
            purpose="profile-summary",
        )
        return result.content.strip()

    async def _headlines(self, input: ProfileAgentInput, run: AgentRun) -> list[str]:
        profile = input.profile
        try:
            result = await run.generate(
                _HEADLINE_PROMPT.format(
                    headline=profile.headline or "No headline",
                    titles=", ".join(e.title for e in profile.experience[:2]),
                    skills=", ".join(profile.skills[:8]),
                    targets=_targets("TARGETING", input.target_roles),
                ),
                max_tokens=200,
                temperature=0.8,
                purpose="profile-headlines",
            )
        except (OperationCancelledError, BudgetExceededError):
            raise
        except Exception as exc:
            logger.warning("Headline generation failed: %s", exc)
            return []
        return parse_headlines(result.content)

    async def _enhance(
        self,
        item: ExperienceItem,
        target_roles: list[str],
        run: AgentRun,
    ) -> ExperienceEnhancement | None:
        if not item.description or len(item.description) < MIN_DESCRIPTION_LENGTH:
            return None
        try:
            result = await run.generate(
                _ENHANCE_PROMPT.format(
                    title=item.title,
                    company=item.company,
                    description=item.description[:300],
                    targets=_targets("Context: candidate is targeting", target_roles),
                ),
                max_tokens=300,
                temperature=0.5,
                json_mode=True,
                purpose="experience-enhancement",
            )
        except (OperationCancelledError, BudgetExceededError):
            raise
        except Exception as exc:
            logger.warning("Experience enhancement failed for %s: %s", item.title, exc)
            return None

        data = result.json
        if not isinstance(data, dict) or not data.get("enhanced"):
            return None
        return ExperienceEnhancement(
            original=item.description[:200],
            enhanced=str(data["enhanced"]),
            reason=str(data.get("reason") or ""),
        )

    def validate(self, output: ProfileEnhancement, input: ProfileAgentInput) -> list[str]:
        errors = []
        if not output.enhanced_summary:
            errors.append("Enhanced summary is empty")
        if not 0 <= output.profile_strength <= 100:
            errors.append(f"Profile strength out of range: {output.profile_strength}")
        return errors
