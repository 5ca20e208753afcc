# =============================================================================
# Compatibility Scoring — Deterministic Job / Profile Match
# =============================================================================
#
# Pure functions: (job, profile, weights, skills, now) → MatchScore.
# No I/O, no clock reads (the reference time is a parameter), no
# dependence on list order beyond what is reported back.
#
# Five dimensions, each 0-100:
#
#   skills      required coverage ·70 + preferred coverage ·30
#               (an empty list earns its full share); alias- and
#               substring-aware, case-insensitive
#   experience  total tenure / years implied by the level, capped at
#               100, +10 for a similar previous role
#   education   degree required by the description vs highest held,
#               +10 for a relevant field
#   location    remote / missing data / token overlap / same country
#   salary      overlap of the candidate's expectation with the range
#
# overall = round-half-up( Σ score·weight / Σ weight )
# =============================================================================

from __future__ import annotations

import math
import re
from collections.abc import Iterable
from datetime import datetime, timezone

from jobagents.models.domain import (
    EducationScore,
    ExperienceItem,
    ExperienceScore,
    JobInfo,
    LocationScore,
    MatchBreakdown,
    MatchScore,
    ProfileInfo,
    SalaryScore,
    ScoringWeights,
    SkillsScore,
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# Skills
# ---------------------------------------------------------------------------

SKILL_ALIASES: dict[str, tuple[str, ...]] = {
    "javascript": ("js", "ecmascript", "es6", "es2015"),
    "typescript": ("ts",),
    "react": ("reactjs", "react.js"),
    "node": ("nodejs", "node.js"),
    "python": ("py",),
    "postgresql": ("postgres", "psql"),
    "mongodb": ("mongo",),
    "kubernetes": ("k8s",),
    "docker": ("containerization",),
    "aws": ("amazon web services",),
    "gcp": ("google cloud", "google cloud platform"),
    "azure": ("microsoft azure",),
}


def skill_matches(skill: str, profile_skills: set[str]) -> bool:
    """
    True if `skill` is covered by the lower-cased `profile_skills`.

    Matches directly, through the alias table (either side may use the
    primary name or an alias), or by substring containment either way
    ("react native" covers "react").
    """
    normalised = skill.lower().strip()
    if not normalised:
        return False
    if normalised in profile_skills:
        return True

    for primary, aliases in SKILL_ALIASES.items():
        if normalised == primary or normalised in aliases:
            if primary in profile_skills or any(a in profile_skills for a in aliases):
                return True

    return any(
        normalised in held or held in normalised
        for held in profile_skills
        if held
    )


def score_skills(
    required: Iterable[str],
    preferred: Iterable[str],
    profile_skills: Iterable[str],
) -> SkillsScore:
    held = {s.lower().strip() for s in profile_skills if s and s.strip()}
    required = list(required)
    preferred = list(preferred)

    matched_required = [s for s in required if skill_matches(s, held)]
    matched_preferred = [s for s in preferred if skill_matches(s, held)]

    required_points = len(matched_required) / len(required) * 70 if required else 70
    preferred_points = (
        len(matched_preferred) / len(preferred) * 30 if preferred else 30
    )

    return SkillsScore(
        score=round_half_up(required_points + preferred_points),
        matched=matched_required + matched_preferred,
        missing=[s for s in required if s not in matched_required],
    )


def profile_skill_names(profile: ProfileInfo) -> list[str]:
    """Declared skills plus skills listed on individual positions."""
    names = list(profile.skills)
    for item in profile.experience:
        names.extend(item.skills)
    return names


# ---------------------------------------------------------------------------
# Experience
# ---------------------------------------------------------------------------

_MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

_YEAR_MONTH = re.compile(r"^(\d{4})[-/](\d{1,2})")
_MONTH_NAME_YEAR = re.compile(r"^([A-Za-z]+)\.?\s+(\d{4})")
_YEAR_ONLY = re.compile(r"^(\d{4})$")

_ROLE_CATEGORIES: dict[str, tuple[str, ...]] = {
    "engineering": ("engineer", "developer", "programmer", "coder"),
    "design": ("designer", "ux", "ui", "product design"),
    "product": ("product manager", "pm", "product owner"),
    "data": ("data scientist", "data analyst", "data engineer", "ml engineer"),
    "devops": ("devops", "sre", "platform engineer", "infrastructure"),
    "management": ("manager", "lead", "director", "head of"),
}


def parse_year_month(value: str | None) -> tuple[int, int] | None:
    """
    Parse a position date into (year, month).

    Accepts "2024-01[-15]", "2024/01", "January 2024" / "Jan 2024" and a
    bare "2024" (January). Unknown month names fall back to January.
    Returns None for anything else.
    """
    if not value:
        return None
    value = value.strip()

    match = _YEAR_MONTH.match(value)
    if match:
        month = int(match.group(2))
        return (int(match.group(1)), month) if 1 <= month <= 12 else None

    match = _MONTH_NAME_YEAR.match(value)
    if match:
        return int(match.group(2)), _MONTHS.get(match.group(1).lower(), 1)

    match = _YEAR_ONLY.match(value)
    if match:
        return int(match.group(1)), 1

    return None


_OPEN_ENDED = frozenset({"present", "current", "now"})


def is_open_ended(end_date: str | None) -> bool:
    """True for a missing end date or one written as "Present" and the like."""
    return not end_date or end_date.strip().lower() in _OPEN_ENDED


def total_experience_years(
    experience: Iterable[ExperienceItem],
    now: datetime,
) -> float:
    """
    Sum of month-granular tenure across positions, in years to one decimal.

    Current positions, and positions without an end date or ending
    "Present", count up to `now`.
    Unparseable start dates are skipped; negative spans count as zero.
    """
    total_months = 0
    for item in experience:
        start = parse_year_month(item.start_date)
        if start is None:
            continue
        if item.current or is_open_ended(item.end_date):
            end = (now.year, now.month)
        else:
            end = parse_year_month(item.end_date)
            if end is None:
                continue
        months = (end[0] - start[0]) * 12 + (end[1] - start[1])
        total_months += max(0, months)

    return round_half_up(total_months / 12 * 10) / 10


def roles_are_similar(first: str, second: str) -> bool:
    return any(
        any(k in first for k in keywords) and any(k in second for k in keywords)
        for keywords in _ROLE_CATEGORIES.values()
    )


def _is_relevant_role(title: str, job_title: str) -> bool:
    if not title or not job_title:
        return False
    return title in job_title or job_title in title or roles_are_similar(title, job_title)


def required_years(job: JobInfo, years: float) -> tuple[int, str]:
    """Years implied by the job's level / description, plus a relevance label."""
    level = (job.experience_level or "").lower()
    description = job.description.lower()

    if "entry" in level or "junior" in level or "0-2 years" in description:
        return 1, "Entry-level match"
    if "mid" in level or "3-5 years" in description or "2-4 years" in description:
        return 3, "Mid-level match" if years >= 2 else "Below mid-level requirements"
    if "senior" in level or "5+ years" in description or "5-7 years" in description:
        return 5, "Senior-level match" if years >= 5 else "Below senior requirements"
    if "lead" in level or "principal" in level or "7+ years" in description:
        return 7, (
            "Leadership-level match" if years >= 7 else "Below leadership requirements"
        )
    return 2, (
        "Experience level appears adequate" if years >= 2 else "May need more experience"
    )


def score_experience(
    job: JobInfo,
    profile: ProfileInfo,
    now: datetime,
) -> ExperienceScore:
    years = total_experience_years(profile.experience, now)
    needed, relevance = required_years(job, years)
    score = min(100.0, years / needed * 100)

    job_title = job.title.lower()
    relevant = [
        item for item in profile.experience
        if _is_relevant_role(item.title.lower(), job_title)
    ]
    if relevant:
        score = min(100.0, score + 10)
        relevance += f" ({len(relevant)} relevant roles)"

    return ExperienceScore(
        score=round_half_up(score),
        relevance=relevance,
        years=years,
        required_years=needed,
    )


# ---------------------------------------------------------------------------
# Education
# ---------------------------------------------------------------------------

_PHD = re.compile(r"\bph\.?d|\bdoctor")

# Requirements are read from free text, so only unambiguous abbreviations
# count there ("BA" and "MA" also mean business analyst and Massachusetts).
_MASTER_REQUIRED = re.compile(r"\bmaster|\bm\.?sc?\b")
_BACHELOR_REQUIRED = re.compile(r"\bbachelor|\bb\.?sc?\b")
_MASTER_HELD = re.compile(r"\bmaster|\bm\.?sc?\b|\bm\.?a\b|\bmba\b")
_BACHELOR_HELD = re.compile(r"\bbachelor|\bb\.?sc?\b|\bb\.?a\b")

RELEVANT_FIELDS = (
    "computer science",
    "software",
    "engineering",
    "mathematics",
    "physics",
    "data science",
)


def score_education(job: JobInfo, profile: ProfileInfo) -> EducationScore:
    if not profile.education:
        return EducationScore(score=50, relevance="No education listed")

    description = job.description.lower()
    requires_phd = bool(_PHD.search(description))
    requires_master = bool(_MASTER_REQUIRED.search(description))
    requires_bachelor = bool(_BACHELOR_REQUIRED.search(description))

    degrees = [e.degree.lower() for e in profile.education]
    has_phd = any(_PHD.search(d) for d in degrees)
    has_master = any(_MASTER_HELD.search(d) for d in degrees)
    has_bachelor = any(_BACHELOR_HELD.search(d) for d in degrees)

    score = 70
    relevance = "Education meets general requirements"

    if requires_phd:
        score = 100 if has_phd else 60 if has_master else 40
        relevance = "PhD requirement met" if has_phd else "PhD preferred but not held"
    elif requires_master:
        met = has_master or has_phd
        score = 100 if met else 70 if has_bachelor else 50
        relevance = "Master's requirement met" if met else "Master's preferred"
    elif requires_bachelor:
        met = has_bachelor or has_master or has_phd
        score = 100 if met else 60
        relevance = "Bachelor's requirement met" if met else "Degree preferred"

    relevant_field = any(
        field in (e.field or "").lower() or field in e.degree.lower()
        for e in profile.education
        for field in RELEVANT_FIELDS
    )
    if relevant_field:
        score = min(100, score + 10)
        relevance += " (relevant field)"

    return EducationScore(score=score, relevance=relevance)


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

_LOCATION_SPLIT = re.compile(r"[,\s]+")
_US_MARKERS = ("usa", "united states")


def score_location(job: JobInfo, profile: ProfileInfo) -> LocationScore:
    if job.is_remote:
        return LocationScore(score=100, compatible=True)
    if not job.location:
        return LocationScore(score=90, compatible=True)
    if not profile.location:
        return LocationScore(score=80, compatible=True)

    job_location = job.location.lower()
    profile_location = profile.location.lower()
    job_parts = [p for p in _LOCATION_SPLIT.split(job_location) if p]
    profile_parts = [p for p in _LOCATION_SPLIT.split(profile_location) if p]

    if any(jp in pp or pp in jp for jp in job_parts for pp in profile_parts):
        return LocationScore(score=100, compatible=True)

    same_country = any(m in job_location for m in _US_MARKERS) and any(
        m in profile_location for m in _US_MARKERS
    )
    if same_country:
        return LocationScore(score=70, compatible=True)

    return LocationScore(score=40, compatible=False)


# ---------------------------------------------------------------------------
# Salary
# ---------------------------------------------------------------------------


def score_salary(job: JobInfo, profile: ProfileInfo) -> SalaryScore:
    if not job.salary_min and not job.salary_max:
        return SalaryScore(score=70, in_range=True)
    if not profile.min_salary and not profile.max_salary:
        return SalaryScore(score=75, in_range=True)

    job_min = job.salary_min or 0
    job_max = job.salary_max or math.inf
    profile_min = profile.min_salary or 0
    profile_max = profile.max_salary or math.inf

    if job_min <= profile_min and job_max >= profile_max:
        return SalaryScore(score=100, in_range=True)

    overlap_min = max(job_min, profile_min)
    overlap_max = min(job_max, profile_max)
    if overlap_min <= overlap_max:
        profile_range = (profile.max_salary or profile_min) - profile_min
        if profile_range > 0:
            overlap_percent = (overlap_max - overlap_min) / profile_range * 100
            return SalaryScore(
                score=min(round_half_up(50 + overlap_percent * 0.5), 100),
                in_range=True,
            )
        # Single-point expectation inside the job's range
        return SalaryScore(score=90, in_range=True)

    if job_max < profile_min:
        gap_percent = (profile_min - job_max) / profile_min
        return SalaryScore(
            score=max(20, round_half_up(60 - gap_percent * 100)),
            in_range=False,
        )

    # Job pays more than expected
    return SalaryScore(score=85, in_range=True)


# ---------------------------------------------------------------------------
# Overall
# ---------------------------------------------------------------------------


def weighted_overall(breakdown: MatchBreakdown, weights: ScoringWeights) -> int:
    """
    Raises:
        ValueError: If a weight is negative or all weights are zero.
    """
    values = (
        (breakdown.skills.score, weights.skills),
        (breakdown.experience.score, weights.experience),
        (breakdown.education.score, weights.education),
        (breakdown.location.score, weights.location),
        (breakdown.salary.score, weights.salary),
    )
    if any(w < 0 for _, w in values):
        raise ValueError("Scoring weights must be non-negative")
    total = sum(w for _, w in values)
    if total <= 0:
        raise ValueError("Scoring weights must have a positive sum")
    return round_half_up(sum(s * w for s, w in values) / total)


def score_match(
    job: JobInfo,
    profile: ProfileInfo,
    weights: ScoringWeights | None = None,
    required_skills: Iterable[str] | None = None,
    preferred_skills: Iterable[str] | None = None,
    now: datetime | None = None,
) -> MatchScore:
    """
    Score a profile against a job.

    `required_skills` / `preferred_skills` default to the job's own lists.
    `now` defaults to the current UTC time; pass it explicitly for
    reproducible results. The returned MatchScore has no reasons,
    suggestions or concerns; see fallback_insights().
    """
    weights = weights or ScoringWeights()
    now = now or datetime.now(timezone.utc)

    breakdown = MatchBreakdown(
        skills=score_skills(
            job.required_skills if required_skills is None else required_skills,
            job.preferred_skills if preferred_skills is None else preferred_skills,
            profile_skill_names(profile),
        ),
        experience=score_experience(job, profile, now),
        education=score_education(job, profile),
        location=score_location(job, profile),
        salary=score_salary(job, profile),
    )
    return MatchScore(
        overall_score=weighted_overall(breakdown, weights),
        breakdown=breakdown,
    )


def fallback_insights(match: MatchScore) -> tuple[list[str], list[str], list[str]]:
    """Deterministic (reasons, suggestions, concerns) derived from sub-scores."""
    skills = match.breakdown.skills
    reasons = [
        "Strong overall match"
        if match.overall_score >= 70
        else "Moderate match with room for improvement",
        f"Matches {len(skills.matched)} key skills"
        if skills.matched
        else "Limited skill overlap",
        match.breakdown.experience.relevance,
    ]
    suggestions = (
        [f"Consider highlighting or developing: {', '.join(skills.missing[:3])}"]
        if skills.missing
        else []
    )
    concerns = (
        ["Below typical match threshold - consider if this role aligns with your background"]
        if match.overall_score < 60
        else []
    )
    return reasons, suggestions, concerns
