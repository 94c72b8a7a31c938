"""
Submission content validation.

Asks the model whether a submission covers the assignment requirements and
falls back to keyword matching whenever the model is unavailable or its
answer cannot be decoded.
"""

import json
import re

from loguru import logger

from feedback_engine.grading.llm_client import LLMError, ProviderGateway
from feedback_engine.grading.prompt_builder import PromptBuilder
from feedback_engine.models import ValidationResult

VALIDATION_PERSONA = (
    "You are a teaching assistant checking whether a submission covers the "
    "assignment requirements. Answer with JSON only."
)

_KEYWORD_SPLIT = re.compile(r"[\s,]+")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def basic_validation(content: str, requirements: tuple[str, ...]) -> ValidationResult:
    """
    Keyword check: a requirement counts as met when any of its words longer
    than two characters appears in the content.
    """
    lowered = content.lower()
    missing: list[str] = []
    for requirement in requirements:
        keywords = [k for k in _KEYWORD_SPLIT.split(requirement.lower()) if len(k) > 2]
        if not any(keyword in lowered for keyword in keywords):
            missing.append(requirement)

    return ValidationResult(
        is_valid=not missing,
        missing_requirements=tuple(missing),
        suggestions=tuple(f"Add content that addresses: {req}" for req in missing),
    )


def parse_validation_response(text: str) -> ValidationResult:
    """
    Decode the model's validation verdict.

    Raises:
        ValueError: If no usable JSON object is present.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ValueError("No JSON found in validation response")

    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Validation response is not an object")

    def _strings(value: object) -> tuple[str, ...]:
        if not isinstance(value, list):
            return ()
        return tuple(str(v) for v in value if str(v).strip())

    return ValidationResult(
        is_valid=bool(data.get("is_valid", False)),
        missing_requirements=_strings(data.get("missing_requirements")),
        suggestions=_strings(data.get("suggestions")),
    )


class SubmissionValidator:
    """Checks submissions against requirement lists."""

    def __init__(self, gateway: ProviderGateway):
        self._gateway = gateway

    async def validate(self, content: str, requirements: tuple[str, ...]) -> ValidationResult:
        """
        Validate content against requirements.

        Args:
            content: Submission text.
            requirements: Requirement strings.

        Returns:
            The model's verdict, or the keyword-based verdict on any failure.
        """
        if not requirements:
            return ValidationResult(is_valid=True)

        prompt = PromptBuilder.build_validation_prompt(content, requirements)
        try:
            generation = await self._gateway.generate(VALIDATION_PERSONA, prompt)
            return parse_validation_response(generation.text)
        except (LLMError, ValueError) as e:
            logger.warning(f"Content validation fell back to keyword matching: {e}")
            return basic_validation(content, requirements)
