# =============================================================================
# Unit Tests — Resume & Cover Letter Agents
# =============================================================================
#
# Deterministic post-processing is tested directly; the agents run through
# the runtime with scripted provider output.
# =============================================================================

from __future__ import annotations

import asyncio

from jobagents.agents.documents import (
    CoverLetterAgent,
    ResumeAgent,
    ats_score,
    cover_letter_quality,
    extract_key_points,
    format_cover_letter,
    identify_customizations,
    mentions_skill,
    profile_highlights,
    resume_sections,
    strip_fence,
)
from jobagents.agents.errors import ErrorKind


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


RESUME = """# Alex Doe

## Summary
Backend engineer building Python and PostgreSQL services.

## Experience
### Senior Software Engineer at Initech
Ran Kubernetes clusters for 40 services.

## Education
BSc Computer Science, TU Berlin

## Skills
Python, Postgres, k8s, Docker
"""


def _paragraph(words: int) -> str:
    return " ".join(["word"] * words)


# ---------------------------------------------------------------------------
# Test: Keyword helpers
# ---------------------------------------------------------------------------


class TestMentionsSkill:
    def test_alias_counts(self):
        assert mentions_skill("Ran k8s clusters", "Kubernetes")
        assert mentions_skill("Built on Kubernetes", "k8s")

    def test_whole_words_only(self):
        assert not mentions_skill("Great results", "ts")
        assert not mentions_skill("Good governance", "Go")

    def test_punctuated_names(self):
        assert mentions_skill("Frontend in react.js", "React")


class TestProfileHighlights:
    def test_relevant_roles_then_skills(self, job, profile):
        highlights = profile_highlights(profile, job, ["Python", "PostgreSQL", "Go"])
        assert highlights == [
            "Backend Engineer at Globex",
            "Senior Software Engineer at Initech",
            "Hands-on with Python, PostgreSQL",
        ]

    def test_limit(self, job, profile):
        assert len(profile_highlights(profile, job, ["Python"], limit=1)) == 1


# ---------------------------------------------------------------------------
# Test: Resume scoring
# ---------------------------------------------------------------------------


class TestAtsScore:
    def test_sections_detected_from_headings(self):
        assert resume_sections(RESUME) == ["summary", "experience", "education", "skills"]

    def test_partial_coverage(self):
        # 3/4 keywords · 70 + 4/4 sections · 30
        assert ats_score(RESUME, ["Python", "PostgreSQL", "Kubernetes", "Go"]) == 83

    def test_no_keywords_is_full_coverage(self):
        assert ats_score("plain text, no headings", []) == 70

    def test_rounding(self):
        # 1/2 · 70 + 1/4 · 30 = 42.5
        assert ats_score("## Skills\nRust", ["Rust", "Go"]) == 43

    def test_deterministic(self):
        keywords = ["Python", "Go"]
        assert ats_score(RESUME, keywords) == ats_score(RESUME, keywords)


class TestStripFence:
    def test_unwraps_markdown_fence(self):
        assert strip_fence("```markdown\n# Resume\n## Skills\n```") == "# Resume\n## Skills"

    def test_leaves_plain_text(self):
        assert strip_fence("  # Resume  ") == "# Resume"


# ---------------------------------------------------------------------------
# Test: Resume agent
# ---------------------------------------------------------------------------


class TestResumeAgent:
    def test_tailored_resume(self, runtime, provider, job, profile, make_context):
        provider.script(RESUME)
        outcome = _run(runtime.execute(
            ResumeAgent(), {"job": job, "profile": profile}, make_context(),
        ))

        assert outcome.success
        resume = outcome.data
        assert resume.resume == RESUME.strip()
        assert resume.matched_skills == ["Python", "PostgreSQL", "Kubernetes"]
        assert resume.gaps == []
        assert resume.ats_score == 83
        assert resume.highlights[0] == "Backend Engineer at Globex"

        call = provider.calls[0]
        assert call["max_tokens"] == 2500
        assert call["temperature"] == 0.5
        assert "Senior Backend Engineer at Acme" in call["system"]

    def test_gaps_list_missing_required_skills(self, runtime, provider, job, profile, make_context):
        provider.script("## Skills\nPython")
        outcome = _run(runtime.execute(
            ResumeAgent(), {"job": job, "profile": profile}, make_context(),
        ))
        assert outcome.data.gaps == ["PostgreSQL", "Kubernetes"]

    def test_two_page_budget(self, runtime, provider, job, profile, make_context):
        payload = {"job": job, "profile": profile, "options": {"maxLength": "two_page"}}
        _run(runtime.execute(ResumeAgent(), payload, make_context()))
        assert provider.calls[0]["max_tokens"] == 4000

    def test_empty_resume_fails_validation(self, runtime, provider, job, profile, make_context):
        provider.script("   ")
        outcome = _run(runtime.execute(
            ResumeAgent(), {"job": job, "profile": profile}, make_context(),
        ))
        assert outcome.error_kind == ErrorKind.VALIDATION_FAILED
        assert "Resume content is empty" in outcome.error


# ---------------------------------------------------------------------------
# Test: Cover letter post-processing
# ---------------------------------------------------------------------------


class TestFormatCoverLetter:
    def test_strips_headers_and_adds_sign_off(self):
        content = "Subject: Application\nDate: today\nDear Hiring Manager,\n\nI am keen."
        assert format_cover_letter(content, "Alex Doe") == (
            "Dear Hiring Manager,\n\nI am keen.\n\nSincerely,\nAlex Doe"
        )

    def test_existing_sign_off_kept(self):
        content = "Dear Hiring Manager,\n\nThanks.\n\nBest regards,\nAlex"
        assert format_cover_letter(content, "Alex Doe") == content

    def test_empty_stays_empty(self):
        assert format_cover_letter("Subject: hi\n", "Alex Doe") == ""


class TestLetterAnalysis:
    def test_key_points(self):
        letter = (
            "I grew revenue 40%. I like cats. I managed 12 clients across Europe. "
            "As a Backend Engineer at Globex I shipped APIs."
        )
        points = extract_key_points(letter, ["Backend Engineer at Globex"])
        assert points == [
            "I grew revenue 40%",
            "I managed 12 clients across Europe",
            "As a Backend Engineer at Globex I shipped APIs",
        ]

    def test_customizations(self, job):
        letter = "Acme builds great things. I want the Senior Backend Engineer role at Acme."
        assert identify_customizations(letter, job) == [
            "Referenced Acme 2 times",
            "Directly addressed target role",
        ]

    def test_quality_full_marks(self, job):
        letter = "\n\n".join([
            "Dear Hiring Manager, I am applying for the Senior Backend Engineer role at Acme.",
            _paragraph(70),
            _paragraph(70),
            "Sincerely,\nAlex Doe",
        ])
        assert cover_letter_quality(letter, job) == 100

    def test_quality_of_a_stub(self, job):
        assert cover_letter_quality("Hi", job) == 0


# ---------------------------------------------------------------------------
# Test: Cover letter agent
# ---------------------------------------------------------------------------


class TestCoverLetterAgent:
    def test_default_tone_is_conversational(self, runtime, provider, job, profile, make_context):
        provider.script("Dear Hiring Manager,\n\nI would love to join Acme.")
        outcome = _run(runtime.execute(
            CoverLetterAgent(), {"job": job, "profile": profile}, make_context(),
        ))

        assert outcome.success
        assert outcome.data.cover_letter.endswith("Sincerely,\nAlex Doe")
        assert provider.calls[0]["temperature"] == 0.7
        assert provider.calls[0]["max_tokens"] == 1500

    def test_tone_sets_temperature(self, runtime, provider, job, profile, make_context):
        payload = {"job": job, "profile": profile, "options": {"tone": "enthusiastic"}}
        _run(runtime.execute(CoverLetterAgent(), payload, make_context()))
        assert provider.calls[0]["temperature"] == 0.8
        assert "enthusiastic" in provider.calls[0]["system"]

    def test_empty_letter_fails(self, runtime, provider, job, profile, make_context):
        provider.script("")
        outcome = _run(runtime.execute(
            CoverLetterAgent(), {"job": job, "profile": profile}, make_context(),
        ))
        assert outcome.error_kind == ErrorKind.VALIDATION_FAILED
