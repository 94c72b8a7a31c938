"""
Response parser and scorer for LLM feedback output.

Turns raw model text into a score-bounded ``AIFeedbackResponse``. The raw
text is first decoded into one of three explicit outcomes:

- ``StructuredJson``: a JSON object carrying the expected fields
- ``FreeformText``: prose, scored by the best-effort extractor
- ``Malformed``: output that claims to be JSON but cannot be decoded

Malformed output, and any unexpected failure while scoring, takes the
``ParseDegradation`` branch and yields a deterministic low-confidence
fallback response. ``ResponseParser.parse`` never raises.
"""

import json
import re
from typing import Any, NamedTuple

from loguru import logger

from feedback_engine.grading.extractor import (
    CRITERIA,
    DEFAULT_OVERALL_SCORE,
    clamp_score,
    derive_criteria_scores,
    extract_overall_score,
    extract_suggestions,
)
from feedback_engine.models import (
    AIFeedbackResponse,
    CacheInfo,
    CriteriaScores,
    FeedbackQuality,
    FeedbackRequest,
    ModelInfo,
)

DEFAULT_CRITERION_SCORE = 75
DEFAULT_CONFIDENCE = 85
DEFAULT_APPROPRIATENESS = 90
DEFAULT_ACTIONABILITY = 80

FALLBACK_SCORE = 70
FALLBACK_CONFIDENCE = 50
FALLBACK_APPROPRIATENESS = 80
FALLBACK_ACTIONABILITY = 60
FALLBACK_SUGGESTION = "The feedback could not be fully analysed. Please request feedback again."

STRUCTURED_FIELDS = frozenset({"overall_score", "score", "criteria_scores", "feedback"})

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
_LEADING_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


class StructuredJson(NamedTuple):
    """Raw text decoded to an object with the expected fields."""

    fields: dict[str, Any]


class FreeformText(NamedTuple):
    """Raw text to be treated as narrative."""

    text: str


class Malformed(NamedTuple):
    """Raw text that could not be decoded."""

    error: str


DecodedResponse = StructuredJson | FreeformText | Malformed


class ParseDegradation(Exception):
    """
    Raised inside the parser when model output cannot be used as-is.

    Never escapes ``ResponseParser.parse``; it selects the fallback branch.
    """

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


def decode_response(raw_text: str) -> DecodedResponse:
    """
    Classify raw model output.

    Args:
        raw_text: Text returned by the provider.

    Returns:
        StructuredJson, FreeformText or Malformed.
    """
    if not raw_text or not raw_text.strip():
        return Malformed("Empty response")

    fence = _JSON_FENCE.search(raw_text)
    if fence:
        try:
            payload = json.loads(fence.group(1))
        except json.JSONDecodeError as e:
            return Malformed(f"Invalid JSON in fenced block: {e}")
        if not isinstance(payload, dict):
            return Malformed(f"Fenced JSON is a {type(payload).__name__}, not an object")
        return _classify_object(payload, raw_text)

    stripped = raw_text.strip()
    if stripped.startswith("{"):
        try:
            payload, _ = json.JSONDecoder().raw_decode(stripped)
        except json.JSONDecodeError as e:
            return Malformed(f"Invalid JSON in response: {e}")
        return _classify_object(payload, raw_text)

    # JSON object embedded somewhere in prose
    decoder = json.JSONDecoder()
    start = stripped.find("{")
    while start != -1:
        try:
            payload, _ = decoder.raw_decode(stripped, start)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict) and STRUCTURED_FIELDS & payload.keys():
            return StructuredJson(payload)
        start = stripped.find("{", start + 1)

    return FreeformText(raw_text)


def _classify_object(payload: Any, raw_text: str) -> DecodedResponse:
    if isinstance(payload, dict) and STRUCTURED_FIELDS & payload.keys():
        return StructuredJson(payload)
    return FreeformText(raw_text)


def _score(value: Any, default: int) -> int:
    """Clamp a model-supplied score, using the default when absent or unusable."""
    if value is None:
        return default
    try:
        return clamp_score(value)
    except ValueError:
        match = _LEADING_NUMBER.search(str(value))
        if match:
            return clamp_score(match.group(0))
        return default


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


class ResponseParser:
    """
    Parses LLM feedback output into a structured response.

    Ensures:
    1. Every score is an integer in [0, 100]
    2. Missing fields get documented defaults
    3. At least one improvement suggestion is present
    4. Unusable output degrades to a deterministic fallback
    """

    def parse(
        self,
        raw_text: str,
        request: FeedbackRequest,
        *,
        cache_key: str,
        model_info: ModelInfo,
        learning_resources: tuple[str, ...] = (),
    ) -> AIFeedbackResponse:
        """
        Parse an LLM response into an AIFeedbackResponse.

        Args:
            raw_text: Raw LLM output.
            request: The request the output answers.
            cache_key: Cache key of the request.
            model_info: Provider and model that produced the output.
            learning_resources: Resources to attach to the response.

        Returns:
            A well-formed response; never raises.
        """
        try:
            decoded = decode_response(raw_text)
            match decoded:
                case StructuredJson(fields=fields):
                    return self._from_structured(
                        fields, raw_text, cache_key, model_info, learning_resources
                    )
                case FreeformText(text=text):
                    return self._from_freeform(text, cache_key, model_info, learning_resources)
                case Malformed(error=error):
                    raise ParseDegradation(error, raw_response=raw_text)
            raise ParseDegradation(f"Unrecognised decode result: {decoded!r}", raw_response=raw_text)
        except ParseDegradation as e:
            degradation = e
        except Exception as e:  # pylint: disable=broad-except
            degradation = ParseDegradation(f"Unexpected parser failure: {e}", raw_response=raw_text)

        logger.warning(
            f"Parse degradation for assignment {request.assignment_id} "
            f"({model_info.provider}/{model_info.model}): {degradation}"
        )
        return self.fallback(
            raw_text,
            cache_key=cache_key,
            model_info=model_info,
            learning_resources=learning_resources,
        )

    def fallback(
        self,
        raw_text: str,
        *,
        cache_key: str,
        model_info: ModelInfo,
        learning_resources: tuple[str, ...] = (),
    ) -> AIFeedbackResponse:
        """
        Build the low-confidence response used when output is unusable.

        The raw text is kept verbatim as content; all criteria score 70 and
        confidence drops to 50.
        """
        return AIFeedbackResponse(
            content=raw_text or "",
            score=FALLBACK_SCORE,
            criteria_scores=CriteriaScores(
                requirements_met=FALLBACK_SCORE,
                code_quality=FALLBACK_SCORE,
                best_practices=FALLBACK_SCORE,
                creativity=FALLBACK_SCORE,
            ),
            quality=FeedbackQuality(
                confidence=FALLBACK_CONFIDENCE,
                appropriateness=FALLBACK_APPROPRIATENESS,
                actionability=FALLBACK_ACTIONABILITY,
            ),
            improvement_suggestions=(FALLBACK_SUGGESTION,),
            next_steps=(FALLBACK_SUGGESTION,),
            learning_resources=learning_resources,
            cache=CacheInfo(key=cache_key),
            model_info=model_info,
            degraded=True,
        )

    def _from_structured(
        self,
        fields: dict[str, Any],
        raw_text: str,
        cache_key: str,
        model_info: ModelInfo,
        learning_resources: tuple[str, ...],
    ) -> AIFeedbackResponse:
        overall_value = fields.get("overall_score", fields.get("score"))
        criteria = fields.get("criteria_scores")
        criteria = criteria if isinstance(criteria, dict) else {}
        quality = fields.get("feedback_quality")
        quality = quality if isinstance(quality, dict) else {}

        feedback = fields.get("feedback")
        content = feedback.strip() if isinstance(feedback, str) and feedback.strip() else raw_text

        suggestions = _string_list(fields.get("improvement_suggestions")) or extract_suggestions(content)
        next_steps = _string_list(fields.get("next_steps")) or suggestions

        return AIFeedbackResponse(
            content=content,
            score=_score(overall_value, DEFAULT_OVERALL_SCORE),
            criteria_scores=CriteriaScores(
                **{name: _score(criteria.get(name), DEFAULT_CRITERION_SCORE) for name in CRITERIA}
            ),
            quality=FeedbackQuality(
                confidence=_score(
                    quality.get("confidence_score", quality.get("confidence")),
                    DEFAULT_CONFIDENCE,
                ),
                appropriateness=_score(
                    quality.get("cultural_appropriateness", quality.get("appropriateness")),
                    DEFAULT_APPROPRIATENESS,
                ),
                actionability=_score(quality.get("actionability"), DEFAULT_ACTIONABILITY),
            ),
            improvement_suggestions=tuple(suggestions),
            next_steps=tuple(next_steps),
            learning_resources=learning_resources,
            cache=CacheInfo(key=cache_key),
            model_info=model_info,
        )

    def _from_freeform(
        self,
        text: str,
        cache_key: str,
        model_info: ModelInfo,
        learning_resources: tuple[str, ...],
    ) -> AIFeedbackResponse:
        overall = extract_overall_score(text)
        if overall is None:
            overall = DEFAULT_OVERALL_SCORE

        suggestions = extract_suggestions(text)

        return AIFeedbackResponse(
            content=text,
            score=overall,
            criteria_scores=CriteriaScores(**derive_criteria_scores(text, overall)),
            quality=FeedbackQuality(
                confidence=DEFAULT_CONFIDENCE,
                appropriateness=DEFAULT_APPROPRIATENESS,
                actionability=DEFAULT_ACTIONABILITY,
            ),
            improvement_suggestions=tuple(suggestions),
            next_steps=tuple(suggestions),
            learning_resources=learning_resources,
            cache=CacheInfo(key=cache_key),
            model_info=model_info,
        )
