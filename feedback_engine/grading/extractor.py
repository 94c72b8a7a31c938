"""
Best-effort extraction of scores and suggestions from free-form feedback.

Model output drifts between JSON, markdown and plain prose. These helpers
pull labelled numbers and improvement bullets out of whatever text came
back. Only ``clamp_score`` raises, and only for non-numeric values.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

DEFAULT_OVERALL_SCORE = 75
GENERIC_SUGGESTION = "Review the feedback above and revise your submission accordingly."

CRITERIA: tuple[str, ...] = ("requirements_met", "code_quality", "best_practices", "creativity")

# Applied when prose has no per-criterion number: each criterion is a fixed
# fraction of the overall score, not a measured sub-score.
CRITERION_FRACTIONS: dict[str, Decimal] = {
    "requirements_met": Decimal("0.90"),
    "code_quality": Decimal("0.85"),
    "best_practices": Decimal("0.80"),
    "creativity": Decimal("0.70"),
}

_NUMBER = r"(\d{1,3}(?:\.\d+)?)(?!\d)"
# Optional "/N" denominator; scores out of anything but 100 are rescaled
_OUT_OF = r"(?:\s*/\s*(\d+(?:\.\d+)?))?"
_GAP = r"[\s*_:=\-]*"

OVERALL_PATTERN = re.compile(
    r"(?:\b(?:total|overall|final)(?:[\s_]+(?:score|grade|mark))?|총점|종합\s*점수)"
    + _GAP
    + _NUMBER
    + _OUT_OF,
    re.IGNORECASE,
)

_CRITERION_LABELS: dict[str, str] = {
    "requirements_met": r"requirements?[\s_]+(?:met|coverage|fulfil(?:l)?ment)|요구사항\s*충족(?:도)?",
    "code_quality": r"(?:code|content)[\s_]+quality|코드\s*품질",
    "best_practices": r"best[\s_]+practices?|모범\s*사례",
    "creativity": r"creativity|창의성",
}

CRITERION_PATTERNS: dict[str, re.Pattern[str]] = {
    name: re.compile(r"(?:" + label + r")" + _GAP + _NUMBER + _OUT_OF, re.IGNORECASE)
    for name, label in _CRITERION_LABELS.items()
}

_SECTION_KEYWORDS = re.compile(
    r"improve|improvement|areas?\s+to\s+work\s+on|next\s+steps|개선",
    re.IGNORECASE,
)
_HEADING_LINE = re.compile(r"^\s*(?:#{1,6}\s+.+|\*\*.+\*\*:?|[^-*•+\d].{0,60}:)\s*$")
_MARKDOWN_HEADING = re.compile(r"^\s*#{1,6}\s+")
_BULLET_LINE = re.compile(r"^\s*(?:[-*•+]|\d+[.)])\s+(.+?)\s*$")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_SUGGESTION_KEYWORDS = re.compile(
    r"\b(?:improve|improvement|consider|should|could|recommend|suggest)\w*|개선|권장|추천",
    re.IGNORECASE,
)

MAX_SECTION_SUGGESTIONS = 10
MAX_KEYWORD_SUGGESTIONS = 3


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp_score(value: Any) -> int:
    """
    Convert a model-supplied score to an integer in [0, 100].

    Args:
        value: Number or numeric string.

    Returns:
        The rounded, clamped score.

    Raises:
        ValueError: If the value is not numeric.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid score value: {value!r}")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid score value: {value!r}") from e
    if not number.is_finite():
        raise ValueError(f"Invalid score value: {value!r}")
    return max(0, min(100, round_half_up(number)))


def _score_from_match(match: re.Match[str]) -> int | None:
    """Score from a labelled match, rescaled to 100 when written as ``n/N``."""
    value = Decimal(match.group(1))
    denominator = match.group(2)
    if denominator is None:
        return clamp_score(value)
    total = Decimal(denominator)
    if total == 0:
        return None
    return clamp_score(value * 100 / total)


def extract_overall_score(text: str) -> int | None:
    """Find a labelled total/overall score in prose."""
    match = OVERALL_PATTERN.search(text)
    if not match:
        return None
    return _score_from_match(match)


def extract_criterion_score(text: str, criterion: str) -> int | None:
    """Find a labelled score for one criterion in prose."""
    pattern = CRITERION_PATTERNS.get(criterion)
    if pattern is None:
        return None
    match = pattern.search(text)
    if not match:
        return None
    return _score_from_match(match)


def derive_criterion_score(overall: int, criterion: str) -> int:
    """Derive a criterion score as a fixed fraction of the overall score."""
    return clamp_score(round_half_up(Decimal(overall) * CRITERION_FRACTIONS[criterion]))


def derive_criteria_scores(text: str, overall: int) -> dict[str, int]:
    """
    Score every criterion from prose.

    Explicitly labelled numbers win; unlabelled criteria fall back to the
    fixed-fraction rule.
    """
    scores: dict[str, int] = {}
    for criterion in CRITERIA:
        explicit = extract_criterion_score(text, criterion)
        scores[criterion] = explicit if explicit is not None else derive_criterion_score(overall, criterion)
    return scores


def _clean_item(item: str) -> str:
    return item.replace("**", "").strip().rstrip(":").strip()


def extract_section_suggestions(text: str) -> list[str]:
    """Collect bullet or numbered lines under an improvement-titled heading."""
    lines = text.splitlines()
    for index, line in enumerate(lines):
        if not (_HEADING_LINE.match(line) and _SECTION_KEYWORDS.search(line)):
            continue

        items: list[str] = []
        for following in lines[index + 1 :]:
            if not following.strip():
                continue
            bullet = _BULLET_LINE.match(following)
            if bullet:
                item = _clean_item(bullet.group(1))
                if item:
                    items.append(item)
                if len(items) >= MAX_SECTION_SUGGESTIONS:
                    break
                continue
            if _MARKDOWN_HEADING.match(following) or items:
                break

        if items:
            return items
    return []


def extract_keyword_suggestions(text: str, limit: int = MAX_KEYWORD_SUGGESTIONS) -> list[str]:
    """Pick sentences that mention improvement-related keywords."""
    found: list[str] = []
    for sentence in _SENTENCE_SPLIT.split(text):
        bullet = _BULLET_LINE.match(sentence)
        candidate = _clean_item(bullet.group(1) if bullet else sentence.lstrip("#").strip())
        if not candidate or candidate in found:
            continue
        if _SUGGESTION_KEYWORDS.search(candidate):
            found.append(candidate)
            if len(found) >= limit:
                break
    return found


def extract_suggestions(text: str) -> list[str]:
    """
    Extract improvement suggestions from prose.

    Order of preference: an improvement section's bullets, then up to three
    keyword sentences, then one generic suggestion.
    """
    suggestions = extract_section_suggestions(text)
    if suggestions:
        return suggestions
    suggestions = extract_keyword_suggestions(text)
    if suggestions:
        return suggestions
    return [GENERIC_SUGGESTION]
