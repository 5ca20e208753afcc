# =============================================================================
# Unit Tests — Compatibility Scoring
# =============================================================================
#
# Pure functions only; no runtime, provider or budget involved.
# =============================================================================

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from jobagents.agents.scoring import (
    fallback_insights,
    parse_year_month,
    round_half_up,
    score_education,
    score_experience,
    score_location,
    score_match,
    score_salary,
    score_skills,
    skill_matches,
    total_experience_years,
    weighted_overall,
)
from jobagents.models.domain import (
    EducationItem,
    ExperienceItem,
    JobInfo,
    ProfileInfo,
    ScoringWeights,
)

NOW = datetime(2025, 1, 15, tzinfo=timezone.utc)


def _job(**kwargs) -> JobInfo:
    return JobInfo(id="j", title=kwargs.pop("title", "Engineer"), **kwargs)


def _profile(**kwargs) -> ProfileInfo:
    return ProfileInfo(id="p", full_name="Sam", **kwargs)


# ---------------------------------------------------------------------------
# Test: Rounding
# ---------------------------------------------------------------------------


class TestRoundHalfUp:
    def test_half_rounds_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(0.5) == 1

    def test_below_half_rounds_down(self):
        assert round_half_up(2.49) == 2


# ---------------------------------------------------------------------------
# Test: Skills
# ---------------------------------------------------------------------------


class TestSkillMatches:
    def test_case_insensitive(self):
        assert skill_matches("Python", {"python"})

    def test_alias_symmetry(self):
        assert skill_matches("k8s", {"kubernetes"})
        assert skill_matches("Kubernetes", {"k8s"})

    def test_alias_to_alias(self):
        assert skill_matches("postgres", {"psql"})

    def test_substring_both_ways(self):
        assert skill_matches("React", {"react native"})
        assert skill_matches("React Native", {"react"})

    def test_no_match(self):
        assert not skill_matches("Rust", {"python", "go"})

    def test_empty_skill_never_matches(self):
        assert not skill_matches("  ", {"python"})


class TestScoreSkills:
    def test_full_coverage(self):
        result = score_skills(["Python"], ["Go"], ["python", "go"])
        assert result.score == 100
        assert result.matched == ["Python", "Go"]
        assert result.missing == []

    def test_empty_requirements_give_full_points(self):
        assert score_skills([], [], []).score == 100

    def test_partial_required(self):
        result = score_skills(["Python", "Rust"], [], ["Python"])
        # 1/2 of 70 + 30 for the empty preferred list
        assert result.score == 65
        assert result.missing == ["Rust"]

    def test_missing_lists_only_required(self):
        result = score_skills(["Python"], ["Rust"], ["Python"])
        assert result.missing == []
        assert result.score == 70


# ---------------------------------------------------------------------------
# Test: Experience
# ---------------------------------------------------------------------------


class TestParseYearMonth:
    @pytest.mark.parametrize("value, expected", [
        ("2020-01", (2020, 1)),
        ("2020-01-15", (2020, 1)),
        ("2020/6", (2020, 6)),
        ("January 2020", (2020, 1)),
        ("Sept 2019", (2019, 9)),
        ("2018", (2018, 1)),
    ])
    def test_supported_formats(self, value, expected):
        assert parse_year_month(value) == expected

    @pytest.mark.parametrize("value", [None, "", "soon", "2020-13"])
    def test_unparseable(self, value):
        assert parse_year_month(value) is None


class TestExperienceYears:
    def test_closed_position(self):
        items = [ExperienceItem(title="Dev", start_date="2020-01", end_date="2022-06")]
        assert total_experience_years(items, NOW) == 2.4

    def test_open_position_counts_to_now(self):
        items = [ExperienceItem(title="Dev", start_date="2023-01", current=True)]
        assert total_experience_years(items, NOW) == 2.0

    def test_missing_end_date_counts_to_now(self):
        items = [ExperienceItem(title="Dev", start_date="2024-01")]
        assert total_experience_years(items, NOW) == 1.0

    @pytest.mark.parametrize("end_date", ["Present", "current", " NOW "])
    def test_present_end_date_counts_to_now(self, end_date):
        items = [ExperienceItem(title="Dev", start_date="2020-01", end_date=end_date)]
        assert total_experience_years(items, NOW) == 5.0

    def test_present_with_fixed_reference_time(self):
        items = [ExperienceItem(title="Eng", start_date="2020-01", end_date="Present")]
        assert total_experience_years(items, datetime(2024, 1, 1)) == 4.0

    def test_unparseable_start_skipped(self):
        items = [ExperienceItem(title="Dev", start_date="whenever", end_date="2022-01")]
        assert total_experience_years(items, NOW) == 0.0

    def test_positions_are_summed(self):
        items = [
            ExperienceItem(title="A", start_date="2018-01", end_date="2019-01"),
            ExperienceItem(title="B", start_date="2019-01", end_date="2021-01"),
        ]
        assert total_experience_years(items, NOW) == 3.0


class TestScoreExperience:
    def test_senior_requirement_not_met(self):
        job = _job(title="Accountant", experience_level="Senior")
        profile = _profile(experience=[
            ExperienceItem(title="Clerk", start_date="2020-01", end_date="2022-07"),
        ])
        result = score_experience(job, profile, NOW)
        # 2.5 / 5 years
        assert result.score == 50
        assert result.required_years == 5
        assert result.relevance == "Below senior requirements"

    def test_similar_role_bonus(self):
        job = _job(title="Backend Developer", experience_level="mid")
        profile = _profile(experience=[
            ExperienceItem(title="Software Engineer", start_date="2023-01", end_date="2024-07"),
        ])
        result = score_experience(job, profile, NOW)
        # 1.5 / 3 years = 50, +10 for an engineering role
        assert result.score == 60
        assert "1 relevant roles" in result.relevance

    def test_default_requirement(self):
        result = score_experience(_job(), _profile(), NOW)
        assert result.required_years == 2
        assert result.score == 0


# ---------------------------------------------------------------------------
# Test: Education
# ---------------------------------------------------------------------------


class TestScoreEducation:
    def test_no_education(self):
        assert score_education(_job(), _profile()).score == 50

    def test_general_requirement(self):
        profile = _profile(education=[EducationItem(degree="Diploma", field="Arts")])
        assert score_education(_job(), profile).score == 70

    def test_phd_required_with_master(self):
        job = _job(description="A PhD in a quantitative field is required.")
        profile = _profile(education=[EducationItem(degree="Master of Arts", field="History")])
        assert score_education(job, profile).score == 60

    def test_master_required_with_bachelor(self):
        job = _job(description="Master's degree preferred.")
        profile = _profile(education=[EducationItem(degree="BA", field="History")])
        assert score_education(job, profile).score == 70

    def test_bachelor_met_with_relevant_field(self):
        job = _job(description="Bachelor's degree in a technical field.")
        profile = _profile(education=[
            EducationItem(degree="Bachelor of Science", field="Computer Science"),
        ])
        result = score_education(job, profile)
        assert result.score == 100
        assert "relevant field" in result.relevance

    def test_state_abbreviation_is_not_a_requirement(self):
        job = _job(description="Office in Boston, MA.")
        profile = _profile(education=[EducationItem(degree="Diploma", field="Arts")])
        assert score_education(job, profile).score == 70


# ---------------------------------------------------------------------------
# Test: Location & Salary
# ---------------------------------------------------------------------------


class TestScoreLocation:
    def test_remote(self):
        result = score_location(_job(is_remote=True, location="NYC"), _profile(location="Paris"))
        assert result.score == 100

    def test_no_job_location(self):
        assert score_location(_job(), _profile(location="Paris")).score == 90

    def test_no_candidate_location(self):
        assert score_location(_job(location="Paris"), _profile()).score == 80

    def test_token_overlap(self):
        result = score_location(_job(location="Berlin, Germany"), _profile(location="Berlin"))
        assert result.score == 100

    def test_same_country(self):
        result = score_location(
            _job(location="New York, United States"), _profile(location="Austin, USA"),
        )
        assert result.score == 70
        assert result.compatible is True

    def test_incompatible(self):
        result = score_location(_job(location="Tokyo"), _profile(location="Lisbon"))
        assert result.score == 40
        assert result.compatible is False


class TestScoreSalary:
    def test_no_target_range(self):
        assert score_salary(_job(), _profile(min_salary=100)).score == 70

    def test_no_expectation(self):
        assert score_salary(_job(salary_min=100), _profile()).score == 75

    def test_expectation_inside_range(self):
        result = score_salary(
            _job(salary_min=90_000, salary_max=130_000),
            _profile(min_salary=100_000, max_salary=120_000),
        )
        assert result.score == 100

    def test_partial_overlap(self):
        result = score_salary(
            _job(salary_min=100_000, salary_max=140_000),
            _profile(min_salary=120_000, max_salary=150_000),
        )
        assert 50 < result.score < 100
        assert result.in_range is True

    def test_target_below_expectation(self):
        result = score_salary(
            _job(salary_min=50_000, salary_max=80_000),
            _profile(min_salary=100_000, max_salary=120_000),
        )
        # gap 20% → 60 - 20
        assert result.score == 40
        assert result.in_range is False

    def test_large_gap_floors_at_twenty(self):
        result = score_salary(
            _job(salary_min=10_000, salary_max=20_000),
            _profile(min_salary=100_000, max_salary=120_000),
        )
        assert result.score == 20

    def test_target_exceeds_expectation(self):
        result = score_salary(
            _job(salary_min=150_000, salary_max=200_000),
            _profile(min_salary=100_000, max_salary=120_000),
        )
        assert result.score == 85


# ---------------------------------------------------------------------------
# Test: Overall
# ---------------------------------------------------------------------------


class TestScoreMatch:
    def test_fixture_profile_breakdown(self, job, profile):
        result = score_match(job, profile, now=NOW)
        b = result.breakdown
        assert b.skills.score == 70
        assert b.skills.missing == []
        assert b.experience.score == 100
        assert b.education.score == 80
        assert b.location.score == 100
        assert b.salary.score == 100

    def test_custom_weights_are_rescaled(self, job, profile):
        weights = ScoringWeights(
            skills=1, experience=1, education=0, location=0, salary=0,
        )
        result = score_match(job, profile, weights=weights, now=NOW)
        assert result.overall_score == 85

    def test_explicit_skill_lists_override_job(self, job, profile):
        result = score_match(
            job, profile, required_skills=["Haskell"], preferred_skills=[], now=NOW,
        )
        assert result.breakdown.skills.missing == ["Haskell"]

    def test_deterministic(self, job, profile):
        assert score_match(job, profile, now=NOW) == score_match(job, profile, now=NOW)

    def test_order_independent(self, job, profile):
        reordered = profile.model_copy(update={
            "experience": list(reversed(profile.experience)),
            "skills": list(reversed(profile.skills)),
        })
        first = score_match(job, profile, now=NOW)
        second = score_match(job, reordered, now=NOW)
        assert first.overall_score == second.overall_score

    def test_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            ScoringWeights(skills=0, experience=0, education=0, location=0, salary=0)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            ScoringWeights(skills=-1)

    def test_weighted_overall_rejects_zero_sum(self, job, profile):
        breakdown = score_match(job, profile, now=NOW).breakdown
        weights = ScoringWeights.model_construct(
            skills=0, experience=0, education=0, location=0, salary=0,
        )
        with pytest.raises(ValueError):
            weighted_overall(breakdown, weights)


class TestFallbackInsights:
    def test_strong_match(self, job, profile):
        match = score_match(job, profile, now=NOW)
        reasons, suggestions, concerns = fallback_insights(match)
        assert reasons[0] == "Strong overall match"
        assert suggestions == []
        assert concerns == []

    def test_weak_match_lists_missing_skills(self):
        match = score_match(
            _job(required_skills=["Rust", "Zig"], location="Tokyo"),
            _profile(location="Lisbon"),
            now=NOW,
        )
        reasons, suggestions, concerns = fallback_insights(match)
        assert reasons[1] == "Limited skill overlap"
        assert "Rust" in suggestions[0]
        assert concerns
