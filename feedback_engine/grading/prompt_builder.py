"""
Prompt builder for feedback generation.

Constructs the user prompt handed to the model:
- Assignment information, requirements and recommendations
- The submission itself, fenced with a detected language
- Learner context, when supplied
- The rubric block and the expected JSON output format
"""

from feedback_engine.models import (
    FeedbackRequest,
    FeedbackTone,
    LearnerContext,
    LearningLevel,
    SubmissionKind,
)

_TONE_INSTRUCTIONS: dict[FeedbackTone, str] = {
    FeedbackTone.DETAILED: "detailed explanations with examples",
    FeedbackTone.CONCISE: "a concise summary of the key points",
    FeedbackTone.ENCOURAGING: "an encouraging, motivating tone",
}

_LEVEL_NAMES: dict[LearningLevel, str] = {
    LearningLevel.BEGINNER: "beginner",
    LearningLevel.INTERMEDIATE: "intermediate",
    LearningLevel.ADVANCED: "advanced",
}


class PromptBuilder:
    """
    Builds feedback prompts that ask for one JSON object.

    The JSON shape matches what ``ResponseParser`` decodes on its structured
    path; anything else the model returns is handled by the free-form path.
    """

    @staticmethod
    def build_feedback_prompt(request: FeedbackRequest, rubric_text: str) -> str:
        """
        Build the user prompt for feedback generation.

        Args:
            request: The feedback request.
            rubric_text: Rendered rubric block from the template registry.

        Returns:
            The formatted user prompt.
        """
        sections = [
            "## Assignment Review Request",
            PromptBuilder._format_assignment(request),
            PromptBuilder._format_submission(request),
        ]

        if request.learner is not None:
            sections.append(PromptBuilder._format_learner(request.learner))

        sections.append(f"### Evaluation Rubric\n{rubric_text}")
        sections.append(PromptBuilder._format_output_instructions())

        return "\n\n".join(sections)

    @staticmethod
    def build_validation_prompt(content: str, requirements: tuple[str, ...]) -> str:
        """Build the prompt asking whether content meets a list of requirements."""
        numbered = "\n".join(f"{i}. {req}" for i, req in enumerate(requirements, start=1))
        return f"""Evaluate how well the following content meets the requirements.

## Requirements
{numbered}

## Submitted Content
```
{content}
```

Respond with ONLY this JSON:
{{
  "is_valid": <true|false>,
  "missing_requirements": ["<requirements that are not met>"],
  "suggestions": ["<specific improvement suggestions>"]
}}"""

    @staticmethod
    def _format_assignment(request: FeedbackRequest) -> str:
        lines = [
            "### Assignment",
            f"- **Title**: {request.title}",
            f"- **Assignment ID**: {request.assignment_id}",
            f"- **Domain**: {request.domain}",
        ]
        if request.technology:
            lines.append(f"- **Technology**: {request.technology}")
        lines.append(f"- **Difficulty**: {request.difficulty.value}")

        if request.requirements:
            lines.append("\n### Requirements")
            lines.extend(f"{i}. {req}" for i, req in enumerate(request.requirements, start=1))

        if request.recommendations:
            lines.append("\n### Recommendations")
            lines.extend(f"{i}. {rec}" for i, rec in enumerate(request.recommendations, start=1))

        return "\n".join(lines)

    @staticmethod
    def _format_submission(request: FeedbackRequest) -> str:
        kind = "Source code" if request.submission_kind == SubmissionKind.CODE else "Technical writing"
        fence = (
            detect_language(request.submission_text)
            if request.submission_kind == SubmissionKind.CODE
            else "markdown"
        )
        lines = [
            "### Submission",
            f"- **Type**: {kind}",
            f"- **Title**: {request.submission_title or 'Untitled'}",
        ]
        if request.submission_url:
            lines.append(f"- **URL**: {request.submission_url}")
        lines.append(f"\n```{fence}\n{request.submission_text}\n```")
        return "\n".join(lines)

    @staticmethod
    def _format_learner(learner: LearnerContext) -> str:
        return "\n".join(
            [
                "### Learner",
                f"- **Previous submissions**: {learner.previous_submissions}",
                f"- **Average score**: {learner.average_score:g}",
                f"- **Level**: {_LEVEL_NAMES[learner.learning_level]}",
                f"- **Preferred feedback style**: {_TONE_INSTRUCTIONS[learner.preferred_tone]}",
            ]
        )

    @staticmethod
    def _format_output_instructions() -> str:
        return """### Output Format
Respond with ONLY this JSON object, no other text:
{
  "feedback": "<detailed markdown feedback>",
  "overall_score": <0-100>,
  "criteria_scores": {
    "requirements_met": <0-100>,
    "code_quality": <0-100>,
    "best_practices": <0-100>,
    "creativity": <0-100>
  },
  "feedback_quality": {
    "confidence_score": <0-100>,
    "cultural_appropriateness": <0-100>,
    "actionability": <0-100>
  },
  "improvement_suggestions": ["<specific improvement>"],
  "next_steps": ["<next learning step>"]
}

### Feedback Guidelines
1. Start with what was done well, citing concrete examples.
2. Explain each issue with a specific fix.
3. Give practical advice that applies to real projects.
4. Suggest what to learn next.
5. Close with an encouraging message."""


def detect_language(content: str) -> str:
    """Guess a code fence language from a few telltale tokens."""
    if "function" in content or "const " in content or "let " in content:
        return "javascript"
    if "def " in content or "import " in content:
        return "python"
    if "public class" in content or "System.out" in content:
        return "java"
    if "#include" in content or "cout" in content:
        return "cpp"
    return "text"
