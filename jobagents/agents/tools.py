# =============================================================================
# Tools — Contract, Invoker, and the Skill Extractor
# =============================================================================
#
# A tool is an auxiliary capability an agent can call mid-task (extract
# skills from text, analyse a profile, ...). Tools satisfy the Tool
# protocol; FunctionTool adapts a plain coroutine function.
#
# invoke_tool() is the only path from an agent to a tool:
#
#   1. cancellation checkpoint
#   2. child span "tool:<id>" under the caller's span
#   3. execute
#   4. translate failure:
#        reported failure (success=False)  ┐
#        raised exception                  ┘→ ToolFailedError (TOOL_FAILED)
#        OperationCancelledError / BudgetExceededError → re-raised unchanged
#
# Tools get a ToolContext whose `generate` is the owning run's
# budget-aware generation callable, so a tool's LLM calls are gated,
# traced and billed exactly like the agent's own.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, get_args

from jobagents.agents.errors import (
    BudgetExceededError,
    OperationCancelledError,
    ToolFailedError,
)
from jobagents.models.domain import ExtractedSkill, SkillCategory
from jobagents.models.runtime import ExecutionContext, ToolOutcome

if TYPE_CHECKING:
    from jobagents.services.tracing import Span

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")
_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")


def parse_json_block(content: str, expect: type = dict) -> Any | None:
    """
    Parse JSON out of model output.

    Tries, in order: a fenced ```json block, the whole text, then the
    outermost {...} (or [...] when expect is list). Returns None when
    nothing parses to the expected type.
    """
    candidates: list[str] = []
    fenced = _FENCED_BLOCK.search(content)
    if fenced:
        candidates.append(fenced.group(1).strip())
    candidates.append(content.strip())
    span = (_ARRAY_SPAN if expect is list else _OBJECT_SPAN).search(content)
    if span:
        candidates.append(span.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, expect):
            return parsed
    return None


# ---------------------------------------------------------------------------
# Tool Contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    span: Span
    cancel_event: asyncio.Event
    # Bound AgentRun.generate of the calling run; None outside a run.
    generate: Callable[..., Awaitable[Any]] | None = None

    def checkpoint(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelledError()


class Tool(Protocol):
    id: str
    name: str
    description: str
    input_schema: dict[str, Any]

    async def execute(self, input: Any, context: ToolContext) -> ToolOutcome: ...


ToolFunction = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass
class FunctionTool:
    """
    Tool backed by a coroutine function.

    The function may return a ToolOutcome (used as-is, duration filled in
    if missing) or any other value (wrapped as a successful outcome).
    """

    id: str
    name: str
    func: ToolFunction
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    async def execute(self, input: Any, context: ToolContext) -> ToolOutcome:
        start = time.perf_counter()
        result = await self.func(input, context)
        duration_ms = (time.perf_counter() - start) * 1000
        if isinstance(result, ToolOutcome):
            if result.duration_ms:
                return result
            return ToolOutcome(
                success=result.success,
                data=result.data,
                error=result.error,
                cached=result.cached,
                duration_ms=duration_ms,
            )
        return ToolOutcome(success=True, data=result, duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------


async def invoke_tool(
    tool: Tool,
    input: Any,
    context: ExecutionContext,
    generate: Callable[..., Awaitable[Any]] | None = None,
) -> ToolOutcome:
    """
    Run one tool call under its own span.

    Raises:
        ToolFailedError: The tool reported failure or raised.
        OperationCancelledError: Cancellation was requested.
        BudgetExceededError: A generation inside the tool was denied.
    """
    context.checkpoint()

    span = context.span.span(f"tool:{tool.id}", input=input)
    tool_context = ToolContext(
        user_id=context.user_id,
        span=span,
        cancel_event=context.cancel_event,
        generate=generate,
    )

    try:
        outcome = await tool.execute(input, tool_context)
    except (OperationCancelledError, BudgetExceededError, asyncio.CancelledError) as exc:
        span.end(level="WARNING", status_message=str(exc) or exc.__class__.__name__)
        raise
    except Exception as exc:
        span.end(level="ERROR", status_message=str(exc))
        logger.warning("Tool %s raised: %s", tool.id, exc)
        raise ToolFailedError(tool.id, f"Tool {tool.id} failed: {exc}") from exc

    if not outcome.success:
        message = outcome.error or "unknown error"
        span.end(level="ERROR", status_message=message)
        logger.warning("Tool %s reported failure: %s", tool.id, message)
        raise ToolFailedError(tool.id, f"Tool {tool.id} failed: {message}")

    span.end(
        output=outcome.data,
        metadata={"duration_ms": outcome.duration_ms, "cached": outcome.cached},
    )
    return outcome


# ---------------------------------------------------------------------------
# Skill Extractor
# ---------------------------------------------------------------------------

SKILL_EXTRACTOR_ID = "skill-extractor"

_VALID_CATEGORIES: frozenset[str] = frozenset(get_args(SkillCategory))

_SKILL_NORMALISATIONS = {
    "js": "JavaScript",
    "ts": "TypeScript",
    "react.js": "React",
    "reactjs": "React",
    "vue.js": "Vue",
    "vuejs": "Vue",
    "node.js": "Node.js",
    "nodejs": "Node.js",
    "express.js": "Express",
    "expressjs": "Express",
    "postgres": "PostgreSQL",
    "mongo": "MongoDB",
    "k8s": "Kubernetes",
    "aws": "AWS",
    "gcp": "Google Cloud",
    "google cloud platform": "Google Cloud",
}

_CONTEXT_HINTS = {
    "job_description": "This is a job description. Identify required vs preferred skills.",
    "resume": "This is a resume. Extract all skills the candidate possesses.",
    "profile": "This is a profile. Extract skills from experience descriptions.",
}

_EXTRACTION_PROMPT = """Extract all skills from the following {label}. {hint}

TEXT:
{text}

Return a JSON array of skills with the following structure:
[
  {{
    "name": "skill name (normalized, e.g., 'Python' not 'python programming')",
    "category": "one of: {categories}",
    "importance": "one of: required, preferred, nice_to_have",
    "yearsRequired": number or null,
    "sourceText": "brief quote from source showing the skill"
  }}
]

Normalize skill names ("JS" -> "JavaScript", "React.js" -> "React").
Return ONLY the JSON array, no other text."""


def normalise_skill_name(name: str) -> str:
    return _SKILL_NORMALISATIONS.get(name.lower().strip(), name.strip())


def normalise_category(category: str | None) -> str:
    normalised = (category or "").lower().replace(" ", "_")
    return normalised if normalised in _VALID_CATEGORIES else "other"


def normalise_importance(importance: str | None) -> str:
    lower = (importance or "").lower()
    if lower in ("required", "must_have", "must have"):
        return "required"
    if lower in ("preferred", "nice to have"):
        return "preferred"
    return "nice_to_have"


def parse_extracted_skills(content: str) -> list[ExtractedSkill]:
    """Turn model output into ExtractedSkill records; junk entries are skipped."""
    parsed = parse_json_block(content, expect=list)
    if parsed is None:
        logger.warning("Skill extraction returned no parseable JSON array")
        return []

    skills: list[ExtractedSkill] = []
    for item in parsed:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        years = item.get("yearsRequired")
        skills.append(ExtractedSkill(
            name=normalise_skill_name(str(item["name"])),
            category=normalise_category(item.get("category")),
            importance=normalise_importance(item.get("importance")),
            years_required=years if isinstance(years, (int, float)) else None,
            source_text=item.get("sourceText"),
        ))
    return skills


async def _extract_skills(input: dict, context: ToolContext) -> ToolOutcome:
    if context.generate is None:
        return ToolOutcome(success=False, error="No generation service available")

    text = input.get("text", "")
    kind = input.get("context", "job_description")

    context.checkpoint()
    result = await context.generate(
        _EXTRACTION_PROMPT.format(
            label=kind.replace("_", " "),
            hint=_CONTEXT_HINTS.get(kind, ""),
            text=text,
            categories=", ".join(sorted(_VALID_CATEGORIES)),
        ),
        max_tokens=2000,
        temperature=0.2,
        purpose=SKILL_EXTRACTOR_ID,
    )

    skills = parse_extracted_skills(result.content)
    return ToolOutcome(
        success=True,
        data={
            "skills": skills,
            "required_count": sum(s.importance == "required" for s in skills),
            "preferred_count": sum(s.importance == "preferred" for s in skills),
        },
    )


skill_extractor = FunctionTool(
    id=SKILL_EXTRACTOR_ID,
    name="Skill Extractor",
    func=_extract_skills,
    description=(
        "Extract skills from job descriptions, resumes, or profiles. "
        "Categorizes skills and identifies importance levels."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "text": {"type": "string"},
            "context": {
                "type": "string",
                "enum": ["job_description", "resume", "profile"],
            },
        },
        "required": ["text", "context"],
    },
)
