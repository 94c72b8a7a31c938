"""
Prompt template registry.

Maps a grading domain or technology tag to a persona prompt, a default
rubric and a list of learning resources. The table is built once and is
read-only afterwards, so it can be shared between concurrent requests.
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field

from feedback_engine.models import FeedbackRequest, RubricItem


class TemplateKey(str, Enum):
    """Registered template identifiers."""

    GENERIC = "generic"
    FRONTEND = "frontend"
    FRONTEND_REACT = "frontend_react"
    BACKEND = "backend"
    BACKEND_FASTAPI = "backend_fastapi"
    WRITING = "writing"
    ALGORITHM = "algorithm"


class PromptTemplate(BaseModel):
    """Persona text plus the rubric used when the request carries none."""

    model_config = ConfigDict(frozen=True)

    key: TemplateKey
    persona: str = Field(..., min_length=1)
    default_rubric: tuple[RubricItem, ...] = Field(..., min_length=1)
    learning_resources: tuple[str, ...] = Field(default=())


# ==============================================================================
# Built-in rubrics
# ==============================================================================

GENERIC_RUBRIC: tuple[RubricItem, ...] = (
    RubricItem(
        title="Requirements coverage",
        points=40,
        details=("Every stated requirement is addressed", "Recommendations are considered"),
    ),
    RubricItem(
        title="Quality",
        points=30,
        details=("Readable, well-organised work", "Correct and complete content"),
    ),
    RubricItem(
        title="Best practices",
        points=20,
        details=("Follows the conventions of the field",),
    ),
    RubricItem(
        title="Creativity",
        points=10,
        details=("Original ideas or improvements beyond the brief",),
    ),
)

FRONTEND_RUBRIC: tuple[RubricItem, ...] = (
    RubricItem(
        title="Component structure",
        points=25,
        details=("Sensible component boundaries", "Single responsibility per component"),
    ),
    RubricItem(
        title="Hook usage",
        points=20,
        details=("useState/useEffect/useRef used correctly", "No stale closures or missing dependencies"),
    ),
    RubricItem(
        title="State management",
        points=20,
        details=("State lives at the right level", "Data flows through props predictably"),
    ),
    RubricItem(
        title="UI/UX",
        points=15,
        details=("Clean, consistent interface", "Accessible and responsive layout"),
    ),
    RubricItem(
        title="Code quality",
        points=20,
        details=("Readable naming and formatting", "No dead code or duplicated logic"),
    ),
)

BACKEND_RUBRIC: tuple[RubricItem, ...] = (
    RubricItem(
        title="API design",
        points=25,
        details=("Consistent resource naming and status codes", "Clear request/response schemas"),
    ),
    RubricItem(
        title="Data modelling",
        points=20,
        details=("Appropriate models and relations", "Validation at the boundary"),
    ),
    RubricItem(
        title="Error handling",
        points=20,
        details=("Failures produce meaningful responses", "No swallowed exceptions"),
    ),
    RubricItem(
        title="Security",
        points=15,
        details=("Input is validated and sanitised", "Secrets are not hard-coded"),
    ),
    RubricItem(
        title="Code quality",
        points=20,
        details=("Layered structure", "Readable, tested code"),
    ),
)

# ==============================================================================
# Personas
# ==============================================================================

GENERIC_PERSONA = """You are an experienced programming mentor reviewing a learner's assignment.
Write constructive, specific feedback in markdown.

Feedback principles:
- Start with what the learner did well, with concrete examples
- Explain each problem and show how to fix it
- Give practical advice that applies to real-world development
- Adapt the depth of explanation to the learner's level
- End with an encouraging message"""

FRONTEND_PERSONA = """You are a senior frontend engineer mentoring learners on web UI development.
Review the submission as you would review a pull request from a junior colleague.

Feedback principles:
- Evaluate component boundaries, data flow and state placement
- Check hook usage and rendering behaviour
- Comment on UI/UX, accessibility and responsiveness
- Suggest concrete refactorings with short code examples
- Keep the tone positive and encouraging"""

FRONTEND_REACT_PERSONA = """You are a senior frontend engineer specialising in React, mentoring learners.
Review the submission as you would review a pull request from a junior colleague.

Feedback principles:
- Evaluate component decomposition and props design
- Check useState, useEffect and useRef usage, including dependency arrays
- Look for state that should be lifted, derived or colocated
- Comment on UI/UX, accessibility and responsiveness
- Suggest concrete refactorings with short JSX examples"""

BACKEND_PERSONA = """You are a senior backend engineer mentoring learners on server-side development.
Review the submission as you would review a pull request from a junior colleague.

Feedback principles:
- Evaluate API design, data modelling and layering
- Check error handling, validation and security practices
- Point out performance pitfalls such as N+1 queries
- Suggest concrete improvements with short code examples
- Keep the tone positive and encouraging"""

BACKEND_FASTAPI_PERSONA = """You are a senior backend engineer specialising in FastAPI, mentoring learners.
Review the submission as you would review a pull request from a junior colleague.

Feedback principles:
- Evaluate route design, Pydantic schemas and dependency injection
- Check async usage, error responses and status codes
- Review database access patterns and session handling
- Check authentication, input validation and secret handling
- Suggest concrete improvements with short code examples"""

WRITING_PERSONA = """You are an experienced technical writing coach helping developers write blog posts.
Review the submission for clarity, structure and usefulness to readers.

Feedback principles:
- Favour reader-friendly explanations
- Check structure, headings and readability
- Balance code samples with explanation
- Point out unclear or unsupported claims
- Keep the tone positive and encouraging"""

ALGORITHM_PERSONA = """You are an algorithms and data structures instructor.
Review the submission for correctness, efficiency and clarity of reasoning.

Feedback principles:
- Analyse time and space complexity
- Present alternative approaches and compare them
- Include practical tips for coding interviews
- Explain the reasoning step by step
- Suggest optimisations where they matter"""

PROGRAMMING_RESOURCES = (
    "The Modern JavaScript Tutorial: https://javascript.info/",
    "MDN Web Docs: https://developer.mozilla.org/",
    "The Python Tutorial: https://docs.python.org/3/tutorial/",
)

FRONTEND_RESOURCES = (
    "React documentation: https://react.dev/learn",
    "MDN Web Docs: https://developer.mozilla.org/",
    "web.dev accessibility guide: https://web.dev/learn/accessibility",
)

BACKEND_RESOURCES = (
    "FastAPI documentation: https://fastapi.tiangolo.com/",
    "OWASP Top Ten: https://owasp.org/www-project-top-ten/",
    "SQLAlchemy tutorial: https://docs.sqlalchemy.org/en/20/tutorial/",
)

WRITING_RESOURCES = (
    "Google technical writing courses: https://developers.google.com/tech-writing",
    "Markdown guide: https://www.markdownguide.org/",
    "Write the Docs guide: https://www.writethedocs.org/guide/",
)

ALGORITHM_RESOURCES = (
    "Baekjoon Online Judge: https://www.acmicpc.net/",
    "LeetCode: https://leetcode.com/",
    "CP-Algorithms: https://cp-algorithms.com/",
)

# Domain tags that resolve to a template without being template keys
_DOMAIN_ALIASES: dict[str, TemplateKey] = {
    "programming": TemplateKey.GENERIC,
    "code": TemplateKey.GENERIC,
    "blog": TemplateKey.WRITING,
    "design": TemplateKey.GENERIC,
    "analysis": TemplateKey.GENERIC,
}


def _normalize_tag(tag: str | None) -> str:
    if not tag:
        return ""
    return tag.strip().lower().replace("-", "_").replace(" ", "_")


def _build_templates() -> Mapping[TemplateKey, PromptTemplate]:
    entries = (
        (TemplateKey.GENERIC, GENERIC_PERSONA, GENERIC_RUBRIC, PROGRAMMING_RESOURCES),
        (TemplateKey.FRONTEND, FRONTEND_PERSONA, FRONTEND_RUBRIC, FRONTEND_RESOURCES),
        (TemplateKey.FRONTEND_REACT, FRONTEND_REACT_PERSONA, FRONTEND_RUBRIC, FRONTEND_RESOURCES),
        (TemplateKey.BACKEND, BACKEND_PERSONA, BACKEND_RUBRIC, BACKEND_RESOURCES),
        (TemplateKey.BACKEND_FASTAPI, BACKEND_FASTAPI_PERSONA, BACKEND_RUBRIC, BACKEND_RESOURCES),
        (TemplateKey.WRITING, WRITING_PERSONA, GENERIC_RUBRIC, WRITING_RESOURCES),
        (TemplateKey.ALGORITHM, ALGORITHM_PERSONA, GENERIC_RUBRIC, ALGORITHM_RESOURCES),
    )
    table = {
        key: PromptTemplate(
            key=key,
            persona=persona,
            default_rubric=rubric,
            learning_resources=resources,
        )
        for key, persona, rubric, resources in entries
    }
    missing = set(TemplateKey) - set(table)
    if missing:
        raise RuntimeError(f"Templates missing for keys: {sorted(k.value for k in missing)}")
    return MappingProxyType(table)


class TemplateRegistry:
    """
    Resolves prompt templates by technology or domain tag.

    Precedence:
    1. Exact technology-tag match
    2. Domain-tag match (including aliases such as ``blog`` -> writing)
    3. Generic fallback

    Resolution never fails; unknown tags resolve to the generic template.
    """

    def __init__(self) -> None:
        self._templates = _build_templates()

    def keys(self) -> tuple[TemplateKey, ...]:
        """Return all registered template keys."""
        return tuple(self._templates)

    def get(self, key: TemplateKey) -> PromptTemplate:
        """Return the template registered under a key."""
        return self._templates[key]

    def resolve_key(self, domain: str | None, technology: str | None = None) -> TemplateKey:
        """Resolve the template key for a domain/technology pair."""
        tech = _normalize_tag(technology)
        if tech:
            try:
                return TemplateKey(tech)
            except ValueError:
                pass

        dom = _normalize_tag(domain)
        if dom:
            try:
                return TemplateKey(dom)
            except ValueError:
                alias = _DOMAIN_ALIASES.get(dom)
                if alias is not None:
                    return alias

        return TemplateKey.GENERIC

    def select(self, domain: str | None, technology: str | None = None) -> PromptTemplate:
        """Select the template for a domain/technology pair."""
        return self._templates[self.resolve_key(domain, technology)]

    def default_rubric(self, domain: str | None) -> tuple[RubricItem, ...]:
        """
        Default rubric for a domain tag.

        Only the domain decides; the technology tag picks the persona but
        never the rubric.
        """
        return self._templates[self.resolve_key(domain)].default_rubric

    def render_rubric(self, request: FeedbackRequest) -> str:
        """
        Render the rubric block handed to the model.

        Args:
            request: The feedback request.

        Returns:
            Structured items as ``"<n>. <title> (<points> pts)"`` with indented
            detail bullets, flat lines numbered, or the domain's default
            rubric when the request carries none.
        """
        rubric = request.rubric
        if rubric is None:
            return format_rubric_items(self.default_rubric(request.domain))

        if all(isinstance(item, RubricItem) for item in rubric):
            return format_rubric_items(rubric)  # type: ignore[arg-type]

        return "\n".join(f"{i}. {line}" for i, line in enumerate(rubric, start=1))


def format_rubric_items(items: tuple[RubricItem, ...]) -> str:
    """Format structured rubric items as a numbered block."""
    lines: list[str] = []
    for i, item in enumerate(items, start=1):
        lines.append(f"{i}. {item.title} ({item.points} pts)")
        for detail in item.details:
            lines.append(f"   - {detail}")
    return "\n".join(lines)
