"""
Integration tests for the feedback engine.

Tests the full request path (template selection, provider dispatch,
parsing, caching and metrics) with scripted fake providers.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from feedback_engine.cache import FeedbackCache, InMemoryCacheBackend, RedisCacheBackend, build_cache_key
from feedback_engine.config import ProviderId, Settings
from feedback_engine.grading import ConfigurationError, FeedbackEngine, ProviderError, ProviderGateway
from feedback_engine.grading.llm_client import Completion, GenerationParams
from feedback_engine.metrics import MetricsTracker
from feedback_engine.models import FeedbackRequest, PerformanceHints
from feedback_engine.templates.registry import FRONTEND_REACT_PERSONA, FRONTEND_RESOURCES
from tests.fakes import FakeProvider, RecordingSleep


class TickingClock:
    """Clock that advances 1ms per reading and can be moved forward manually."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        self.now += 0.001
        return self.now


class SlowProvider(FakeProvider):
    """Fake provider that advances a clock to simulate network latency."""

    def __init__(self, clock: TickingClock, delay_seconds: float, **kwargs):
        super().__init__(**kwargs)
        self._clock = clock
        self._delay_seconds = delay_seconds

    async def complete(self, system_text: str, user_text: str, params: GenerationParams) -> Completion:
        self._clock.now += self._delay_seconds
        return await super().complete(system_text, user_text, params)


@pytest.fixture
def metrics() -> MetricsTracker:
    return MetricsTracker()


@pytest.fixture
def cache() -> FeedbackCache:
    return FeedbackCache(InMemoryCacheBackend())


@pytest.fixture
def engine(
    test_settings: Settings,
    gateway: ProviderGateway,
    cache: FeedbackCache,
    metrics: MetricsTracker,
) -> FeedbackEngine:
    return FeedbackEngine(test_settings, gateway=gateway, cache=cache, metrics=metrics)


def _engine_with(
    settings: Settings,
    provider: FakeProvider,
    sleep: RecordingSleep,
    cache: FeedbackCache | None = None,
    metrics: MetricsTracker | None = None,
) -> FeedbackEngine:
    gateway = ProviderGateway(settings, providers={provider.PROVIDER_ID: provider}, sleep=sleep)
    return FeedbackEngine(
        settings,
        gateway=gateway,
        cache=cache or FeedbackCache(InMemoryCacheBackend()),
        metrics=metrics or MetricsTracker(),
    )


class TestGenerateFeedback:
    """Tests for FeedbackEngine.generate_feedback."""

    @pytest.mark.asyncio
    async def test_generate_structured_feedback(
        self,
        engine: FeedbackEngine,
        sample_request: FeedbackRequest,
        fake_anthropic: FakeProvider,
        metrics: MetricsTracker,
    ) -> None:
        response = await engine.generate_feedback(sample_request)

        assert response.score == 88
        assert response.cache.hit is False
        assert response.cache.key == build_cache_key(sample_request)
        assert response.model_info.provider == "anthropic"
        assert response.model_info.model == "claude-test"
        assert response.model_info.tokens_used == 42
        assert fake_anthropic.call_count == 1
        assert metrics.snapshot().count == 1

    @pytest.mark.asyncio
    async def test_frontend_react_template(
        self,
        engine: FeedbackEngine,
        react_request: FeedbackRequest,
        fake_anthropic: FakeProvider,
    ) -> None:
        """Test a React request uses the React persona and the five-item frontend rubric."""
        response = await engine.generate_feedback(react_request)

        system_text, user_text, _ = fake_anthropic.calls[0]
        assert system_text == FRONTEND_REACT_PERSONA
        assert "frontend" in system_text.lower()
        for line in (
            "1. Component structure (25 pts)",
            "2. Hook usage (20 pts)",
            "3. State management (20 pts)",
            "4. UI/UX (15 pts)",
            "5. Code quality (20 pts)",
        ):
            assert line in user_text
        assert "6. " not in user_text.split("### Evaluation Rubric")[1].split("###")[0]
        assert "### Learner" in user_text
        assert response.learning_resources == FRONTEND_RESOURCES

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(
        self,
        test_settings: Settings,
        sample_llm_response: str,
        sample_request: FeedbackRequest,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test an identical second request is served from cache much faster."""
        clock = TickingClock()
        provider = SlowProvider(clock, 0.5, responses=[sample_llm_response])
        metrics = MetricsTracker()
        engine = _engine_with(
            test_settings,
            provider,
            recording_sleep,
            cache=FeedbackCache(InMemoryCacheBackend(), clock=clock),
            metrics=metrics,
        )

        first = await engine.generate_feedback(sample_request)
        second = await engine.generate_feedback(sample_request)

        assert first.cache.hit is False
        assert second.cache.hit is True
        assert second.cache.latency_ms * 10 <= first.cache.latency_ms
        assert second.content == first.content
        assert second.score == first.score
        assert second.criteria_scores == first.criteria_scores
        assert provider.call_count == 1

        snapshot = metrics.snapshot()
        assert snapshot.count == 2
        assert snapshot.hit_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_cache_ignores_learner_context(
        self,
        engine: FeedbackEngine,
        react_request: FeedbackRequest,
        fake_anthropic: FakeProvider,
    ) -> None:
        await engine.generate_feedback(react_request)
        other = react_request.model_copy(update={"learner": None})

        response = await engine.generate_feedback(other)

        assert response.cache.hit is True
        assert fake_anthropic.call_count == 1

    @pytest.mark.asyncio
    async def test_use_cache_false_skips_read_but_stores(
        self,
        engine: FeedbackEngine,
        sample_request: FeedbackRequest,
        fake_anthropic: FakeProvider,
    ) -> None:
        await engine.generate_feedback(sample_request)
        uncached = sample_request.model_copy(update={"hints": PerformanceHints(use_cache=False)})

        response = await engine.generate_feedback(uncached)
        again = await engine.generate_feedback(sample_request)

        assert response.cache.hit is False
        assert fake_anthropic.call_count == 2
        assert again.cache.hit is True

    @pytest.mark.asyncio
    async def test_provider_exhaustion_propagates(
        self,
        engine: FeedbackEngine,
        sample_request: FeedbackRequest,
        fake_anthropic: FakeProvider,
        fake_openai: FakeProvider,
        recording_sleep: RecordingSleep,
        metrics: MetricsTracker,
    ) -> None:
        """Test three failed attempts raise ProviderError without failover."""
        fake_anthropic.script([TimeoutError("timed out")])

        with pytest.raises(ProviderError):
            await engine.generate_feedback(sample_request)

        assert fake_anthropic.call_count == 3
        assert fake_openai.call_count == 0
        assert recording_sleep.delays == [1.0, 2.0]
        assert metrics.snapshot().count == 0

    @pytest.mark.asyncio
    async def test_failed_request_is_not_cached(
        self,
        engine: FeedbackEngine,
        sample_request: FeedbackRequest,
        sample_llm_response: str,
        fake_anthropic: FakeProvider,
    ) -> None:
        fake_anthropic.script([RuntimeError("a"), RuntimeError("b"), RuntimeError("c"), sample_llm_response])

        with pytest.raises(ProviderError):
            await engine.generate_feedback(sample_request)
        response = await engine.generate_feedback(sample_request)

        assert response.cache.hit is False
        assert response.score == 88

    @pytest.mark.asyncio
    async def test_no_credentials(
        self, unconfigured_settings: Settings, sample_request: FeedbackRequest, metrics: MetricsTracker
    ) -> None:
        engine = FeedbackEngine(
            unconfigured_settings,
            cache=FeedbackCache(InMemoryCacheBackend()),
            metrics=metrics,
        )

        with pytest.raises(ConfigurationError):
            await engine.generate_feedback(sample_request)

        assert metrics.snapshot().count == 0

    @pytest.mark.asyncio
    async def test_prose_output(
        self,
        test_settings: Settings,
        prose_llm_response: str,
        sample_request: FeedbackRequest,
        recording_sleep: RecordingSleep,
    ) -> None:
        """Test prose output scores 75 with derived criteria 68/64/60/53."""
        engine = _engine_with(test_settings, FakeProvider(responses=[prose_llm_response]), recording_sleep)

        response = await engine.generate_feedback(sample_request)

        assert response.content == prose_llm_response
        assert response.score == 75
        assert response.criteria_scores.requirements_met == 68
        assert response.criteria_scores.code_quality == 64
        assert response.criteria_scores.best_practices == 60
        assert response.criteria_scores.creativity == 53

    @pytest.mark.asyncio
    async def test_malformed_output_degrades(
        self,
        test_settings: Settings,
        sample_request: FeedbackRequest,
        recording_sleep: RecordingSleep,
    ) -> None:
        engine = _engine_with(
            test_settings, FakeProvider(responses=['{"overall_score": 9']), recording_sleep
        )

        response = await engine.generate_feedback(sample_request)

        assert response.degraded is True
        assert response.quality.confidence == 50
        assert response.criteria_scores.creativity == 70

    @pytest.mark.asyncio
    async def test_broken_cache_does_not_abort(
        self,
        test_settings: Settings,
        gateway: ProviderGateway,
        sample_request: FeedbackRequest,
    ) -> None:
        class DownBackend:
            async def get(self, key: str) -> str | None:
                raise ConnectionError("redis down")

            async def set(self, key: str, value: str, ttl_seconds: int) -> None:
                raise ConnectionError("redis down")

        engine = FeedbackEngine(test_settings, gateway=gateway, cache=FeedbackCache(DownBackend()))

        response = await engine.generate_feedback(sample_request)

        assert response.score == 88
        assert response.cache.hit is False


class TestEngineOperations:
    """Tests for the engine's auxiliary operations."""

    @pytest.mark.asyncio
    async def test_switch_provider(
        self, engine: FeedbackEngine, sample_request: FeedbackRequest, fake_openai: FakeProvider
    ) -> None:
        assert engine.switch_provider(ProviderId.OPENAI) is True
        assert engine.model_info().provider == "openai"

        response = await engine.generate_feedback(sample_request)

        assert response.model_info.provider == "openai"
        assert fake_openai.call_count == 1

    @pytest.mark.asyncio
    async def test_health_check(self, engine: FeedbackEngine) -> None:
        assert await engine.health_check() is True

    @pytest.mark.asyncio
    async def test_aclose_closes_cache_backend(
        self, test_settings: Settings, gateway: ProviderGateway
    ) -> None:
        client = MagicMock()
        client.aclose = AsyncMock()
        engine = FeedbackEngine(test_settings, gateway=gateway, cache=FeedbackCache(RedisCacheBackend(client)))

        await engine.aclose()

        client.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_validate_submission(
        self, test_settings: Settings, recording_sleep: RecordingSleep
    ) -> None:
        provider = FakeProvider(
            responses=['{"is_valid": false, "missing_requirements": ["Tests"], "suggestions": ["Add tests"]}']
        )
        engine = _engine_with(test_settings, provider, recording_sleep)

        result = await engine.validate_submission("def f(): pass", ["Tests"])

        assert result.is_valid is False
        assert result.missing_requirements == ("Tests",)

    @pytest.mark.asyncio
    async def test_performance_report(
        self, engine: FeedbackEngine, sample_request: FeedbackRequest
    ) -> None:
        await engine.generate_feedback(sample_request)
        await engine.generate_feedback(sample_request)

        report = engine.performance_report()

        assert report["total_requests"] == 2
        assert report["cache_hit_rate"] == pytest.approx(0.5)
        assert report["cache_config"] == {"ttl_seconds": 1800, "performance_target_ms": 100}
        assert report["model_config"]["provider"] == "anthropic"
        assert report["model_config"]["model"] == "claude-test"
        assert report["model_config"]["max_tokens"] == 1000
        assert engine.performance_snapshot().count == 2
