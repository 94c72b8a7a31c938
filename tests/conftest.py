"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import logging
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from loguru import logger

from feedback_engine.config import ProviderId, Settings
from feedback_engine.grading.llm_client import ProviderGateway
from feedback_engine.models import (
    FeedbackRequest,
    LearnerContext,
    RubricItem,
    SubmissionKind,
)
from tests.fakes import FakeProvider, RecordingSleep


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with both providers configured."""
    return Settings(
        _env_file=None,
        anthropic_api_key="test-anthropic-key",
        openai_api_key="test-openai-key",
        ai_model_preference=ProviderId.ANTHROPIC,
        anthropic_model="claude-test",
        openai_model="gpt-test",
        max_tokens=1000,
        temperature=0.2,
        cache_ttl_seconds=1800,
        redis_url=None,
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    """Settings with no provider credentials."""
    return Settings(_env_file=None, anthropic_api_key=None, openai_api_key=None, redis_url=None)


# ==============================================================================
# Request Fixtures
# ==============================================================================


@pytest.fixture
def sample_code() -> str:
    """Sample React submission."""
    return """import { useState } from "react";

export function Counter() {
  const [count, setCount] = useState(0);
  return <button onClick={() => setCount(count + 1)}>{count}</button>;
}
"""


@pytest.fixture
def sample_request(sample_code: str) -> FeedbackRequest:
    """Generic programming request without a rubric."""
    return FeedbackRequest(
        assignment_id="A-101",
        title="Counter component",
        requirements=("Render a button", "Track the click count in state"),
        recommendations=("Extract a custom hook",),
        domain="programming",
        submission_kind=SubmissionKind.CODE,
        submission_text=sample_code,
        submission_title="Counter.jsx",
    )


@pytest.fixture
def react_request(sample_code: str) -> FeedbackRequest:
    """Frontend request tagged with the React technology."""
    return FeedbackRequest(
        assignment_id="FE-7",
        title="React counter",
        requirements=("Use useState",),
        domain="frontend",
        technology="frontend_react",
        submission_kind=SubmissionKind.CODE,
        submission_text=sample_code,
        learner=LearnerContext(previous_submissions=3, average_score=82.5),
    )


@pytest.fixture
def structured_rubric() -> tuple[RubricItem, ...]:
    """Two-item structured rubric."""
    return (
        RubricItem(title="Correctness", points=60, details=("Handles edge cases",)),
        RubricItem(title="Style", points=40),
    )


# ==============================================================================
# LLM Response Fixtures
# ==============================================================================


@pytest.fixture
def sample_llm_response() -> str:
    """Structured LLM response in JSON format."""
    return json.dumps(
        {
            "feedback": "## Strengths\nClean component.\n\n## Improvements\n- Extract a hook",
            "overall_score": 88,
            "criteria_scores": {
                "requirements_met": 95,
                "code_quality": 85,
                "best_practices": 80,
                "creativity": 70,
            },
            "feedback_quality": {
                "confidence_score": 92,
                "cultural_appropriateness": 95,
                "actionability": 85,
            },
            "improvement_suggestions": ["Extract a useCounter hook", "Add an aria-label"],
            "next_steps": ["Learn about custom hooks"],
        }
    )


@pytest.fixture
def prose_llm_response() -> str:
    """Free-form prose response without any labelled numbers."""
    return (
        "The component renders correctly and the state update is simple.\n\n"
        "Improvements:\n"
        "- Use the functional form of setCount\n"
        "- Add a label for screen readers\n"
    )


# ==============================================================================
# Provider Fixtures
# ==============================================================================


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Backoff sleep that returns immediately."""
    return RecordingSleep()


@pytest.fixture
def fake_anthropic(sample_llm_response: str) -> FakeProvider:
    """Anthropic-flavoured fake returning the structured response."""
    return FakeProvider(ProviderId.ANTHROPIC, [sample_llm_response], model="claude-test")


@pytest.fixture
def fake_openai(sample_llm_response: str) -> FakeProvider:
    """OpenAI-flavoured fake returning the structured response."""
    return FakeProvider(ProviderId.OPENAI, [sample_llm_response], model="gpt-test")


@pytest.fixture
def gateway(
    test_settings: Settings,
    fake_anthropic: FakeProvider,
    fake_openai: FakeProvider,
    recording_sleep: RecordingSleep,
) -> ProviderGateway:
    """Gateway wired to both fake providers."""
    return ProviderGateway(
        test_settings,
        providers={ProviderId.ANTHROPIC: fake_anthropic, ProviderId.OPENAI: fake_openai},
        sleep=recording_sleep,
    )


# ==============================================================================
# Logging Fixtures
# ==============================================================================


@pytest.fixture
def caplog_loguru(caplog: pytest.LogCaptureFixture) -> Generator[pytest.LogCaptureFixture, None, None]:
    """Propagate loguru records to pytest's caplog."""

    class PropagateHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}", level="DEBUG")
    caplog.set_level(logging.DEBUG)
    yield caplog
    try:
        logger.remove(handler_id)
    except ValueError:
        pass
