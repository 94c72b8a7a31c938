"""
Feedback Generation Module.

Provider dispatch with retry, prompt construction, tolerant response
parsing and the orchestrating engine.
"""

from feedback_engine.grading.engine import FeedbackEngine
from feedback_engine.grading.llm_client import (
    ConfigurationError,
    LLMError,
    ProviderError,
    ProviderGateway,
)
from feedback_engine.grading.prompt_builder import PromptBuilder
from feedback_engine.grading.scorer import ParseDegradation, ResponseParser

__all__ = [
    "ConfigurationError",
    "FeedbackEngine",
    "LLMError",
    "ParseDegradation",
    "PromptBuilder",
    "ProviderError",
    "ProviderGateway",
    "ResponseParser",
]
