# =============================================================================
# Document Agents — Tailored Resume & Cover Letter
# =============================================================================
#
# Both agents follow the same shape:
#
#   1. Keywords: the job's explicit skill lists, or skill-extractor output
#      when the job lists none
#   2. Generate: one generation call with a grounded prompt
#      ("never fabricate experience")
#   3. Post-process deterministically: keyword coverage, highlights,
#      gaps, structure heuristics
#
# Scores attached to the documents (ATS score, quality score) are computed
# from the generated text, never asked of the model, so the same text
# always gets the same score.
# =============================================================================

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from jobagents.agents.runtime import AgentRun, BaseAgentTask
from jobagents.agents.scoring import (
    SKILL_ALIASES,
    profile_skill_names,
    round_half_up,
    roles_are_similar,
    score_skills,
)
from jobagents.agents.tools import SKILL_EXTRACTOR_ID, skill_extractor
from jobagents.models.domain import (
    CoverLetter,
    CoverLetterAgentInput,
    CoverLetterTone,
    JobInfo,
    ProfileInfo,
    ResumeAgentInput,
    TailoredResume,
)
from jobagents.models.runtime import AgentDescriptor, AgentPriority

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Shared Helpers
# ---------------------------------------------------------------------------


async def job_keywords(job: JobInfo, run: AgentRun) -> tuple[list[str], list[str]]:
    """Required and preferred skills for `job`, extracting them if none are listed."""
    if job.required_skills or job.preferred_skills:
        return list(job.required_skills), list(job.preferred_skills)
    if not job.description.strip():
        return [], []

    extracted = await run.call_tool(
        SKILL_EXTRACTOR_ID,
        {"text": job.description, "context": "job_description"},
    )
    skills = extracted.data["skills"]
    return (
        [s.name for s in skills if s.importance == "required"],
        [s.name for s in skills if s.importance != "required"],
    )


def _spellings(skill: str) -> set[str]:
    lower = skill.lower().strip()
    names = {lower}
    for primary, aliases in SKILL_ALIASES.items():
        if lower == primary or lower in aliases:
            names.add(primary)
            names.update(aliases)
    return names


def mentions_skill(text: str, skill: str) -> bool:
    """
    True if `text` mentions `skill` (or one of its aliases) as a whole word.

    Word boundaries keep short aliases like "ts" from matching inside
    "results".
    """
    lower = text.lower()
    return any(
        re.search(rf"(?<!\w){re.escape(name)}(?!\w)", lower)
        for name in _spellings(skill)
        if name
    )


def profile_highlights(
    profile: ProfileInfo,
    job: JobInfo,
    keywords: Iterable[str],
    limit: int = 5,
) -> list[str]:
    """Relevant roles first, then the job keywords the profile already covers."""
    highlights: list[str] = []
    job_title = job.title.lower()
    for item in profile.experience:
        title = item.title.lower()
        if title and (
            title in job_title or job_title in title
            or roles_are_similar(title, job_title)
        ):
            where = f" at {item.company}" if item.company else ""
            highlights.append(f"{item.title}{where}")

    covered = score_skills(keywords, [], profile_skill_names(profile)).matched
    if covered:
        highlights.append("Hands-on with " + ", ".join(covered[:6]))

    return highlights[:limit]


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------

_RESUME_SYSTEM_PROMPT = """You are an expert resume writer specializing in creating highly targeted, ATS-optimized resumes.

Your task is to create a tailored resume for {position} at {company}.

CRITICAL RULES:
1. NEVER fabricate experience, skills, or achievements
2. Only highlight and reframe EXISTING qualifications
3. Use keywords from the job description naturally
4. Quantify achievements wherever data is available
5. Keep format clean and ATS-friendly (no tables, columns, or graphics)
6. Maximum {pages}

Output the resume in clean markdown format."""

_RESUME_SECTIONS = {
    "summary": re.compile(r"^#+\s*.*\b(summary|profile|about)\b", re.I | re.M),
    "experience": re.compile(r"^#+\s*.*\b(experience|employment|work history)\b", re.I | re.M),
    "education": re.compile(r"^#+\s*.*\beducation\b", re.I | re.M),
    "skills": re.compile(r"^#+\s*.*\b(skills|technologies|competencies)\b", re.I | re.M),
}

_FENCE = re.compile(r"^```(?:markdown|md)?\s*\n([\s\S]*?)\n```\s*$", re.I)


def strip_fence(content: str) -> str:
    """Unwrap a document the model returned inside a single code fence."""
    stripped = content.strip()
    fenced = _FENCE.match(stripped)
    return fenced.group(1).strip() if fenced else stripped


def resume_sections(resume: str) -> list[str]:
    return [name for name, pattern in _RESUME_SECTIONS.items() if pattern.search(resume)]


def ats_score(resume: str, keywords: list[str]) -> int:
    """
    Deterministic ATS estimate in [0, 100].

    70% keyword coverage (no keywords counts as full coverage) plus 30%
    for the standard sections a parser looks for.
    """
    coverage = (
        sum(mentions_skill(resume, k) for k in keywords) / len(keywords)
        if keywords else 1.0
    )
    structure = len(resume_sections(resume)) / len(_RESUME_SECTIONS)
    return round_half_up(coverage * 70 + structure * 30)


def _resume_prompt(input: ResumeAgentInput, required: list[str], preferred: list[str]) -> str:
    job, profile, resume, options = input.job, input.profile, input.resume, input.options

    lines = [
        "# Job Details",
        f"**Position:** {job.title}",
        f"**Company:** {job.company}",
    ]
    if job.location:
        lines.append(f"**Location:** {job.location}{' (Remote)' if job.is_remote else ''}")
    lines += [
        "",
        "**Description:**",
        job.description,
        "",
        f"**Required Skills:** {', '.join(required)}",
        f"**Preferred Skills:** {', '.join(preferred)}",
        "",
        "# Candidate Profile",
        f"**Name:** {profile.full_name}",
    ]
    if profile.email:
        lines.append(f"**Email:** {profile.email}")
    if profile.location:
        lines.append(f"**Location:** {profile.location}")
    lines += [
        f"**Headline:** {profile.headline or 'Professional'}",
        "",
        "**Summary:**",
        profile.summary or "Not provided",
        "",
        f"**Skills:** {', '.join(profile.skills)}",
        "",
        "**Experience:**",
    ]
    for item in profile.experience:
        end = "Present" if item.current else (item.end_date or "N/A")
        lines.append(f"### {item.title} at {item.company}")
        lines.append(f"{item.start_date or 'N/A'} - {end}")
        if item.description:
            lines.append(item.description)
        if item.skills:
            lines.append(f"Technologies: {', '.join(item.skills)}")
    lines += ["", "**Education:**"]
    for edu in profile.education:
        field = f" in {edu.field}" if edu.field else ""
        lines.append(f"- {edu.degree}{field} - {edu.institution}")

    if resume and resume.parsed_content:
        lines += ["", "**Original Resume Content:**", resume.parsed_content[:3000]]
    if options.focus_areas:
        lines += ["", f"**Focus Areas:** {', '.join(options.focus_areas)}"]

    lines += [
        "",
        "---",
        "",
        "Create a tailored resume that:",
        "1. Emphasizes the candidate's most relevant experience for this role",
        "2. Incorporates required and preferred skills naturally",
        "3. Highlights achievements with quantifiable results",
        "4. Uses language and keywords from the job description",
    ]
    return "\n".join(lines)


class ResumeAgent(BaseAgentTask):
    """Writes a resume tailored to one job and scores its keyword coverage."""

    descriptor = AgentDescriptor(
        id="resume-agent",
        name="Resume Generation Agent",
        description="Generates tailored, ATS-optimized resumes for specific job applications",
        default_model="claude-sonnet-4-5-20250929",
        max_retries=2,
        timeout_seconds=120.0,
        priority=AgentPriority.HIGH,
    )
    input_model = ResumeAgentInput
    tool_list = (skill_extractor,)

    async def execute_task(self, input: ResumeAgentInput, run: AgentRun) -> TailoredResume:
        required, preferred = await job_keywords(input.job, run)
        two_pages = input.options.max_length == "two_page"

        result = await run.generate(
            _resume_prompt(input, required, preferred),
            system=_RESUME_SYSTEM_PROMPT.format(
                position=input.job.title,
                company=input.job.company,
                pages="2 pages" if two_pages else "1 page",
            ),
            max_tokens=4000 if two_pages else 2500,
            temperature=0.5,
            purpose="resume-generation",
        )
        resume = strip_fence(result.content)

        keywords = required + preferred
        matched = [k for k in keywords if mentions_skill(resume, k)]
        gaps = [k for k in required if not mentions_skill(resume, k)]
        score = ats_score(resume, keywords)
        logger.info(
            "Resume for job %s: %d/%d keywords, ATS %d",
            input.job.id, len(matched), len(keywords), score,
        )

        return TailoredResume(
            resume=resume,
            highlights=profile_highlights(input.profile, input.job, keywords),
            matched_skills=matched,
            gaps=gaps,
            ats_score=score,
        )

    def validate(self, output: TailoredResume, input: ResumeAgentInput) -> list[str]:
        errors = []
        if not output.resume.strip():
            errors.append("Resume content is empty")
        if not 0 <= output.ats_score <= 100:
            errors.append(f"ATS score out of range: {output.ats_score}")
        return errors


# ---------------------------------------------------------------------------
# Cover Letter
# ---------------------------------------------------------------------------

TONE_INSTRUCTIONS: dict[str, str] = {
    "formal": "Use a professional, formal tone throughout. Avoid contractions.",
    "conversational": (
        "Use a warm, approachable tone while remaining professional. "
        "Light use of contractions is acceptable."
    ),
    "enthusiastic": (
        "Use an energetic, enthusiastic tone that conveys genuine excitement. "
        "Show passion for the opportunity."
    ),
}

TONE_TEMPERATURES: dict[str, float] = {
    "formal": 0.5,
    "conversational": 0.7,
    "enthusiastic": 0.8,
}

_COVER_LETTER_SYSTEM_PROMPT = """You are an expert cover letter writer who creates compelling, personalized cover letters.

Guidelines:
1. {tone_instruction}
2. Be specific to the company and role - avoid generic statements
3. Highlight 2-3 key achievements that directly relate to the position
4. Keep to 3-4 paragraphs (about 300-350 words)
5. Include a clear call to action in the closing
6. Never fabricate achievements, experience, or facts about the company

Structure:
- Opening: Hook with a compelling reason for interest
- Body: 1-2 paragraphs highlighting relevant achievements
- Closing: Reiterate interest and include call to action"""

_HEADER_LINE = re.compile(r"^(subject|date|re):.*(\n|$)", re.I | re.M)
_QUANTIFIED = re.compile(r"\d+%|\$\d+|\d+ (years|team|projects|clients)", re.I)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_SIGN_OFFS = ("sincerely", "regards")


def format_cover_letter(content: str, name: str) -> str:
    """Drop header lines the model sometimes adds and ensure a sign-off."""
    formatted = _HEADER_LINE.sub("", strip_fence(content)).strip()
    if not formatted:
        return ""
    lower = formatted.lower()
    if not any(word in lower for word in _SIGN_OFFS):
        formatted += f"\n\nSincerely,\n{name}"
    return formatted


def extract_key_points(letter: str, highlights: list[str], limit: int = 5) -> list[str]:
    """Sentences with quantified achievements or that echo a profile highlight."""
    points = []
    for sentence in _SENTENCE_SPLIT.split(letter):
        sentence = sentence.strip()
        if not sentence:
            continue
        lower = sentence.lower()
        if _QUANTIFIED.search(sentence) or any(
            h and h.lower()[:20] in lower for h in highlights
        ):
            points.append(sentence)
    return points[:limit]


def identify_customizations(letter: str, job: JobInfo) -> list[str]:
    customizations = []
    lower = letter.lower()
    if job.company:
        mentions = lower.count(job.company.lower())
        if mentions > 1:
            customizations.append(f"Referenced {job.company} {mentions} times")
    if job.title and job.title.lower() in lower:
        customizations.append("Directly addressed target role")
    return customizations


def cover_letter_quality(letter: str, job: JobInfo) -> int:
    """
    Structure heuristic in [0, 100].

    paragraphs 3-5: 25, words 150-500: 25, names the company: 20,
    names the role: 15, has a sign-off: 15.
    """
    lower = letter.lower()
    paragraphs = [p for p in re.split(r"\n\s*\n", letter) if p.strip()]
    words = len(letter.split())

    score = 0
    if 3 <= len(paragraphs) <= 5:
        score += 25
    if 150 <= words <= 500:
        score += 25
    if job.company and job.company.lower() in lower:
        score += 20
    if job.title and job.title.lower() in lower:
        score += 15
    if any(word in lower for word in _SIGN_OFFS):
        score += 15
    return score


def _cover_letter_prompt(input: CoverLetterAgentInput, highlights: list[str]) -> str:
    job, profile, options = input.job, input.profile, input.options

    lines = [
        "# Job Details",
        f"**Position:** {job.title}",
        f"**Company:** {job.company}",
    ]
    if job.location:
        lines.append(f"**Location:** {job.location}")
    lines += [
        "",
        "**Job Description:**",
        job.description[:1500],
        "",
        "Company research is not available. Express genuine interest in the role "
        "and company without making specific claims about company culture, "
        "values, or initiatives.",
        "",
        "# Candidate Profile",
        f"**Name:** {profile.full_name}",
        f"**Current Role:** {profile.headline or 'Professional'}",
        "",
        "**Summary:**",
        profile.summary or "[Summary not provided - focus on the experience listed below]",
        "",
        f"**Key Skills:** {', '.join(profile.skills[:10])}",
        "",
        "**Top Achievements/Experience:**",
        *(f"- {h}" for h in highlights),
        "",
        "**Recent Roles:**",
    ]
    for item in profile.experience[:2]:
        lines.append(f"- {item.title} at {item.company}")
        if item.description:
            lines.append(f"  {item.description[:200]}")
    if input.resume and input.resume.parsed_content:
        lines += ["", "**Resume Excerpt:**", input.resume.parsed_content[:1500]]
    if options.focus_points:
        lines += ["", "**Focus Points to Address:**"]
        lines += [f"- {p}" for p in options.focus_points]

    lines += [
        "",
        "---",
        "",
        f"Write a compelling cover letter for {profile.full_name} applying to the "
        f"{job.title} position at {job.company}.",
        "",
        "Requirements:",
        '- Address to "Hiring Manager" (no specific name available)',
        "- Highlight 2-3 specific achievements relevant to this role",
        "- Close with enthusiasm and a clear call to action",
        "- Do NOT include a subject line or date",
    ]
    return "\n".join(lines)


class CoverLetterAgent(BaseAgentTask):
    """Writes a cover letter in the requested tone."""

    descriptor = AgentDescriptor(
        id="cover-letter-agent",
        name="Cover Letter Agent",
        description="Generates personalized cover letters for job applications",
        default_model="gpt-4o",
        max_retries=2,
        timeout_seconds=60.0,
        priority=AgentPriority.NORMAL,
    )
    input_model = CoverLetterAgentInput
    tool_list = (skill_extractor,)

    async def execute_task(self, input: CoverLetterAgentInput, run: AgentRun) -> CoverLetter:
        tone: CoverLetterTone = input.options.tone
        required, preferred = await job_keywords(input.job, run)
        highlights = profile_highlights(input.profile, input.job, required + preferred)

        result = await run.generate(
            _cover_letter_prompt(input, highlights),
            system=_COVER_LETTER_SYSTEM_PROMPT.format(
                tone_instruction=TONE_INSTRUCTIONS[tone],
            ),
            max_tokens=1500,
            temperature=TONE_TEMPERATURES[tone],
            purpose="cover-letter-generation",
        )
        letter = format_cover_letter(result.content, input.profile.full_name)

        return CoverLetter(
            cover_letter=letter,
            key_points=extract_key_points(letter, highlights),
            customizations=identify_customizations(letter, input.job),
            quality_score=cover_letter_quality(letter, input.job),
        )

    def validate(self, output: CoverLetter, input: CoverLetterAgentInput) -> list[str]:
        if not output.cover_letter.strip():
            return ["Cover letter content is empty"]
        return []
