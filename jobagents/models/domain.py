# =============================================================================
# Domain Models — Pydantic V2 Schemas
# =============================================================================
#
# Jobs, profiles and the structured outputs of each agent.
#
# Inputs arrive as plain dicts from Celery payloads or plan mappings and
# are validated into these models by the agent runtime; a malformed payload
# surfaces as INVALID_INPUT instead of an AttributeError deep inside a task.
#
# Field names are snake_case; `populate_by_name` + camelCase aliases accept
# payloads produced by the JavaScript front end unchanged.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class DomainModel(BaseModel):
    """Base for all domain models: snake_case fields, camelCase accepted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Jobs & Profiles
# ---------------------------------------------------------------------------


class JobInfo(DomainModel):
    """A job posting to score or apply to."""

    id: str
    title: str
    company: str = ""
    description: str = ""
    requirements: list[str] = Field(default_factory=list)
    benefits: list[str] = Field(default_factory=list)
    location: str | None = None
    is_remote: bool = False
    salary_min: float | None = None
    salary_max: float | None = None
    experience_level: str | None = None
    employment_type: str | None = None
    source_url: str = ""

    # Explicit skill lists. When both are empty the job-match agent
    # extracts them from the description with the skill-extractor tool.
    required_skills: list[str] = Field(default_factory=list)
    preferred_skills: list[str] = Field(default_factory=list)


class ExperienceItem(DomainModel):
    title: str
    company: str = ""
    location: str | None = None
    start_date: str | None = None   # "2020-01", "2020/01", "January 2020", "2020"
    end_date: str | None = None
    current: bool = False
    description: str | None = None
    skills: list[str] = Field(default_factory=list)


class EducationItem(DomainModel):
    institution: str = ""
    degree: str
    field: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    gpa: str | None = None


class ProfileInfo(DomainModel):
    """A candidate profile."""

    id: str
    full_name: str
    email: str | None = None
    headline: str | None = None
    summary: str | None = None
    location: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience: list[ExperienceItem] = Field(default_factory=list)
    education: list[EducationItem] = Field(default_factory=list)
    linkedin_url: str | None = None
    github_handle: str | None = None
    min_salary: float | None = None
    max_salary: float | None = None


class ResumeInfo(DomainModel):
    id: str
    name: str
    parsed_content: str | None = None
    structured_data: dict | None = None


# ---------------------------------------------------------------------------
# Compatibility Scoring
# ---------------------------------------------------------------------------


class ScoringWeights(DomainModel):
    """
    Relative weight of each scoring dimension.

    Weights are rescaled by their sum, so they need not add up to 1,
    but each must be non-negative and at least one must be positive.
    """

    skills: float = Field(default=0.35, ge=0)
    experience: float = Field(default=0.30, ge=0)
    education: float = Field(default=0.15, ge=0)
    location: float = Field(default=0.10, ge=0)
    salary: float = Field(default=0.10, ge=0)

    @model_validator(mode="after")
    def _positive_sum(self) -> ScoringWeights:
        if self.total <= 0:
            raise ValueError("Scoring weights must have a positive sum")
        return self

    @property
    def total(self) -> float:
        return (
            self.skills + self.experience + self.education
            + self.location + self.salary
        )


class SkillsScore(DomainModel):
    score: int
    matched: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


class ExperienceScore(DomainModel):
    score: int
    relevance: str
    years: float = 0.0
    required_years: int = 0


class EducationScore(DomainModel):
    score: int
    relevance: str


class LocationScore(DomainModel):
    score: int
    compatible: bool


class SalaryScore(DomainModel):
    score: int
    in_range: bool


class MatchBreakdown(DomainModel):
    skills: SkillsScore
    experience: ExperienceScore
    education: EducationScore
    location: LocationScore
    salary: SalaryScore


class MatchScore(DomainModel):
    """Output of the job-match agent."""

    overall_score: int = Field(ge=0, le=100)
    breakdown: MatchBreakdown
    match_reasons: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class JobMatchInput(DomainModel):
    job: JobInfo
    profile: ProfileInfo
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    # Reference time for open-ended positions; None → current UTC time.
    now: datetime | None = None


class BatchMatchRequest(DomainModel):
    """One profile scored against many jobs."""

    user_id: str
    profile: ProfileInfo
    jobs: list[JobInfo]
    min_score: int | None = Field(default=None, ge=0, le=100)  # None → settings
    weights: ScoringWeights = Field(default_factory=ScoringWeights)


class JobMatch(DomainModel):
    job: JobInfo
    score: MatchScore


class BatchMatchResult(DomainModel):
    matches: list[JobMatch] = Field(default_factory=list)   # best first
    total_cost_cents: float = 0.0
    processed_count: int = 0
    filtered_count: int = 0     # matches at or above the threshold
    failed_count: int = 0
    used_swarm: bool = False
    trace_id: str | None = None


# ---------------------------------------------------------------------------
# Skill Extraction
# ---------------------------------------------------------------------------

SkillCategory = Literal[
    "programming_language",
    "framework",
    "database",
    "cloud",
    "devops",
    "soft_skill",
    "methodology",
    "tool",
    "domain",
    "certification",
    "other",
]

SkillImportance = Literal["required", "preferred", "nice_to_have"]


class ExtractedSkill(DomainModel):
    name: str
    category: SkillCategory = "other"
    importance: SkillImportance = "required"
    years_required: float | None = None
    source_text: str | None = None


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class ResumeOptions(DomainModel):
    focus_areas: list[str] = Field(default_factory=list)
    max_length: Literal["one_page", "two_page"] = "one_page"


class ResumeAgentInput(DomainModel):
    job: JobInfo
    profile: ProfileInfo
    resume: ResumeInfo | None = None
    options: ResumeOptions = Field(default_factory=ResumeOptions)


class TailoredResume(DomainModel):
    """Output of the resume agent."""

    resume: str                     # markdown
    highlights: list[str] = Field(default_factory=list)
    matched_skills: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)
    ats_score: int = 0


CoverLetterTone = Literal["formal", "conversational", "enthusiastic"]


class CoverLetterOptions(DomainModel):
    tone: CoverLetterTone = "conversational"
    focus_points: list[str] = Field(default_factory=list)


class CoverLetterAgentInput(DomainModel):
    job: JobInfo
    profile: ProfileInfo
    resume: ResumeInfo | None = None
    options: CoverLetterOptions = Field(default_factory=CoverLetterOptions)


class CoverLetter(DomainModel):
    """Output of the cover-letter agent."""

    cover_letter: str
    key_points: list[str] = Field(default_factory=list)
    customizations: list[str] = Field(default_factory=list)
    quality_score: int = 0


# ---------------------------------------------------------------------------
# Profile Enrichment
# ---------------------------------------------------------------------------


class ProfileAgentInput(DomainModel):
    profile: ProfileInfo
    resume: ResumeInfo | None = None
    target_roles: list[str] = Field(default_factory=list)


class ExperienceEnhancement(DomainModel):
    original: str
    enhanced: str
    reason: str = ""


class ProfileEnhancement(DomainModel):
    """Output of the profile agent."""

    enhanced_summary: str
    headline_suggestions: list[str] = Field(default_factory=list)
    suggested_skills: list[str] = Field(default_factory=list)
    experience_enhancements: list[ExperienceEnhancement] = Field(
        default_factory=list,
    )
    profile_strength: int = 0
    recommendations: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Application Pipeline
# ---------------------------------------------------------------------------


class ApplicationOptions(DomainModel):
    generate_cover_letter: bool = True
    cover_letter_tone: CoverLetterTone = "formal"


class ApplicationRequest(DomainModel):
    user_id: str
    application_id: str | None = None
    job: JobInfo
    profile: ProfileInfo
    resume: ResumeInfo | None = None
    options: ApplicationOptions = Field(default_factory=ApplicationOptions)


class ApplicationResult(DomainModel):
    resume: TailoredResume
    cover_letter: CoverLetter | None = None
    match_score: MatchScore
    total_cost_cents: float = 0.0
    duration_ms: float = 0.0
    trace_id: str | None = None
