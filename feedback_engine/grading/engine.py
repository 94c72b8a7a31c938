"""
Feedback engine - the core orchestrator.

Composes template selection, provider dispatch, response parsing,
cache-aside reuse and rolling metrics into one ``generate_feedback`` call.
"""

from typing import Any

from loguru import logger

from feedback_engine.cache import FeedbackCache, build_cache_key, create_cache_backend
from feedback_engine.config import ProviderId, Settings, get_settings
from feedback_engine.grading.llm_client import ConfigurationError, ProviderError, ProviderGateway
from feedback_engine.grading.prompt_builder import PromptBuilder
from feedback_engine.grading.scorer import ResponseParser
from feedback_engine.grading.validation import SubmissionValidator
from feedback_engine.metrics import MetricsTracker
from feedback_engine.models import (
    AIFeedbackResponse,
    FeedbackRequest,
    ModelInfo,
    PerformanceSnapshot,
    ValidationResult,
)
from feedback_engine.templates import TemplateRegistry


class FeedbackEngine:
    """
    Main feedback engine.

    Flow per request: cache key -> cache lookup -> (miss) template selection
    -> provider call with retry -> parsing -> cache store -> metrics.

    Only ``ConfigurationError`` and retry-exhausted ``ProviderError`` reach
    the caller; parse and cache problems degrade to a well-formed response.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        gateway: ProviderGateway | None = None,
        cache: FeedbackCache | None = None,
        metrics: MetricsTracker | None = None,
        registry: TemplateRegistry | None = None,
    ):
        """
        Initialize the feedback engine.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            gateway: Provider gateway. Built from settings if not provided.
            cache: Response cache. In-memory or Redis per settings if not provided.
            metrics: Metrics tracker. A fresh one if not provided.
            registry: Template registry. The built-in one if not provided.
        """
        self._settings = settings or get_settings()
        self._gateway = gateway or ProviderGateway(self._settings)
        self._cache = cache or FeedbackCache(
            create_cache_backend(self._settings),
            default_ttl=self._settings.cache_ttl_seconds,
        )
        self._metrics = metrics or MetricsTracker()
        self._registry = registry or TemplateRegistry()
        self._response_parser = ResponseParser()
        self._validator = SubmissionValidator(self._gateway)

    @property
    def registry(self) -> TemplateRegistry:
        return self._registry

    async def generate_feedback(self, request: FeedbackRequest) -> AIFeedbackResponse:
        """
        Generate feedback for a submission, reusing a cached result when possible.

        Args:
            request: The feedback request.

        Returns:
            AIFeedbackResponse tagged with cache metadata.

        Raises:
            ConfigurationError: If no provider is configured.
            ProviderError: If the provider failed on every attempt.
        """
        cache_key = build_cache_key(request)

        async def compute() -> AIFeedbackResponse:
            return await self._generate(request, cache_key)

        try:
            response, was_hit = await self._cache.get_or_compute(
                cache_key,
                compute,
                ttl=self._settings.cache_ttl_seconds,
                read=request.hints.use_cache,
            )
        except (ConfigurationError, ProviderError) as e:
            logger.error(f"AI feedback generation failed for assignment {request.assignment_id}: {e}")
            raise

        self._metrics.record(response.cache.latency_ms, was_hit)

        if was_hit:
            logger.info(
                f"Cache hit for AI feedback request {cache_key[:24]}... "
                f"({response.cache.latency_ms:.1f}ms)"
            )
        else:
            logger.info(
                f"Generated AI feedback for assignment {request.assignment_id} via "
                f"{response.model_info.provider} in {response.cache.latency_ms:.0f}ms "
                f"(score: {response.score})"
            )

        return response

    async def _generate(self, request: FeedbackRequest, cache_key: str) -> AIFeedbackResponse:
        """
        Run one provider call and parse its output.

        Args:
            request: The feedback request.
            cache_key: Cache key recorded on the response.

        Returns:
            Parsed response (cache metadata filled in by the caller).
        """
        template = self._registry.select(request.domain, request.technology)
        rubric_text = self._registry.render_rubric(request)
        user_prompt = PromptBuilder.build_feedback_prompt(request, rubric_text)

        logger.debug(
            f"Requesting feedback for {request.assignment_id} with template "
            f"{template.key.value}"
        )
        generation = await self._gateway.generate(template.persona, user_prompt)

        return self._response_parser.parse(
            generation.text,
            request,
            cache_key=cache_key,
            model_info=ModelInfo(
                provider=generation.provider_id,
                model=generation.model,
                tokens_used=generation.tokens_used,
            ),
            learning_resources=template.learning_resources,
        )

    async def validate_submission(
        self, content: str, requirements: tuple[str, ...] | list[str]
    ) -> ValidationResult:
        """Check whether content covers the given requirements."""
        return await self._validator.validate(content, tuple(requirements))

    async def health_check(self) -> bool:
        """
        Check if the feedback engine is operational.

        Returns:
            True if the active provider is reachable.
        """
        return await self._gateway.is_available()

    async def aclose(self) -> None:
        """Release cache connections held by the engine."""
        await self._cache.aclose()

    def switch_provider(self, provider_id: ProviderId | str) -> bool:
        """Switch the active provider for subsequent requests."""
        return self._gateway.switch_active(provider_id)

    def model_info(self) -> ModelInfo:
        """Describe the active provider and model."""
        return self._gateway.model_info()

    def performance_snapshot(self) -> PerformanceSnapshot:
        """Current rolling metrics."""
        return self._metrics.snapshot()

    def performance_report(self) -> dict[str, Any]:
        """Rolling metrics together with the cache and model configuration."""
        snapshot = self._metrics.snapshot()
        return {
            "total_requests": snapshot.count,
            "avg_response_time_ms": snapshot.avg_latency_ms,
            "cache_hit_rate": snapshot.hit_rate,
            "cache_config": {
                "ttl_seconds": self._settings.cache_ttl_seconds,
                "performance_target_ms": self._settings.performance_target_ms,
            },
            "model_config": {
                **self._gateway.model_info().model_dump(exclude={"tokens_used"}),
                "max_tokens": self._settings.max_tokens,
                "temperature": self._settings.temperature,
            },
        }
