"""
Provider gateway for LLM backends.

Wraps the Anthropic and OpenAI async SDKs behind one interface, resolves
the active provider from configuration, and applies bounded retry with
exponential backoff to every generation call.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, ClassVar, Mapping, NamedTuple

from anthropic import AsyncAnthropic
from loguru import logger
from openai import AsyncOpenAI

from feedback_engine.config import ProviderId, Settings, get_settings
from feedback_engine.models import ModelInfo


class LLMError(Exception):
    """Base class for failures talking to an LLM backend."""

    def __init__(self, message: str, cause: Exception | None = None, retryable: bool = False):
        self.cause = cause
        self.retryable = retryable
        super().__init__(message)


class ConfigurationError(LLMError):
    """Raised when no provider credentials are available at all."""


class ProviderError(LLMError):
    """Raised when a provider call fails after all retry attempts."""


class GenerationParams(NamedTuple):
    """Sampling parameters for one call."""

    max_tokens: int
    temperature: float


class Completion(NamedTuple):
    """Raw provider output."""

    text: str
    tokens_used: int | None


class Generation(NamedTuple):
    """Provider output annotated with the provider that produced it."""

    text: str
    provider_id: str
    model: str
    tokens_used: int | None


class LLMProvider(ABC):
    """
    Abstract base class for LLM backends.

    Every provider takes the same request shape (persona text, user prompt,
    max tokens, temperature) and returns generated text plus a token count.
    """

    PROVIDER_ID: ClassVar[ProviderId]

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def complete(self, system_text: str, user_text: str, params: GenerationParams) -> Completion:
        """
        Send one generation request.

        Raises:
            Exception: Any SDK or network error; the gateway decides whether to retry.
        """
        ...

    @abstractmethod
    async def ping(self) -> None:
        """Send a minimal request; raises if the backend is unreachable."""
        ...


class AnthropicProvider(LLMProvider):
    """Claude via the Anthropic Messages API."""

    PROVIDER_ID = ProviderId.ANTHROPIC

    def __init__(self, api_key: str, model: str, client: AsyncAnthropic | None = None):
        super().__init__(model)
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def complete(self, system_text: str, user_text: str, params: GenerationParams) -> Completion:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            system=system_text,
            messages=[{"role": "user", "content": user_text}],
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text:
            raise LLMError("Empty response from Anthropic", retryable=True)

        tokens: int | None = None
        if response.usage is not None:
            tokens = response.usage.input_tokens + response.usage.output_tokens
        return Completion(text=text, tokens_used=tokens)

    async def ping(self) -> None:
        await self._client.messages.create(
            model=self.model,
            max_tokens=10,
            messages=[{"role": "user", "content": "ping"}],
        )


class OpenAIProvider(LLMProvider):
    """GPT models via the OpenAI Chat Completions API."""

    PROVIDER_ID = ProviderId.OPENAI

    def __init__(self, api_key: str, model: str, client: AsyncOpenAI | None = None):
        super().__init__(model)
        self._client = client or AsyncOpenAI(api_key=api_key)

    async def complete(self, system_text: str, user_text: str, params: GenerationParams) -> Completion:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_text},
                {"role": "user", "content": user_text},
            ],
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            response_format={"type": "json_object"},
        )

        if not response.choices or not response.choices[0].message.content:
            raise LLMError("Empty response from OpenAI", retryable=True)

        tokens = response.usage.total_tokens if response.usage is not None else None
        return Completion(text=response.choices[0].message.content, tokens_used=tokens)

    async def ping(self) -> None:
        await self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": "ping"}],
            max_tokens=5,
        )


PROVIDER_CLASSES: dict[ProviderId, type[AnthropicProvider] | type[OpenAIProvider]] = {
    ProviderId.ANTHROPIC: AnthropicProvider,
    ProviderId.OPENAI: OpenAIProvider,
}


class ProviderGateway:
    """
    Dispatches generation calls to the active LLM provider.

    At construction the preferred provider is used if its credentials are
    configured; otherwise the alternate one is used with a warning. With no
    credentials at all, construction succeeds but every ``generate`` call
    raises ``ConfigurationError`` without touching the network.

    The active provider is read once at the start of each call, so
    ``switch_active`` only affects calls issued afterwards.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        providers: Mapping[ProviderId, LLMProvider] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the gateway.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            providers: Pre-built provider clients. Built from settings credentials if not provided.
            sleep: Awaitable used for backoff waits.
        """
        self._settings = settings or get_settings()
        self._providers: dict[ProviderId, LLMProvider] = (
            dict(providers) if providers is not None else self._init_providers()
        )
        self._sleep = sleep

        # Retry configuration
        self._max_attempts = self._settings.retry_max_attempts
        self._base_delay = self._settings.retry_base_delay_seconds
        self._max_delay = 30.0  # seconds

        self._active = self._resolve_active(self._settings.ai_model_preference)
        if self._active is not None:
            logger.info(
                f"Provider gateway initialized with provider: {self._active.value} "
                f"(model: {self._providers[self._active].model})"
            )

    def _init_providers(self) -> dict[ProviderId, LLMProvider]:
        providers: dict[ProviderId, LLMProvider] = {}
        for provider_id, provider_cls in PROVIDER_CLASSES.items():
            api_key = self._settings.api_key_for(provider_id)
            if not api_key:
                continue
            try:
                providers[provider_id] = provider_cls(
                    api_key=api_key, model=self._settings.model_for(provider_id)
                )
                logger.info(
                    f"{provider_id.value} client initialized with model: "
                    f"{self._settings.model_for(provider_id)}"
                )
            except Exception as e:  # pylint: disable=broad-except
                logger.error(f"Failed to initialize {provider_id.value} client: {e}")
        return providers

    def _resolve_active(self, preference: ProviderId) -> ProviderId | None:
        if preference in self._providers:
            return preference

        alternates = [p for p in self._providers if p != preference]
        if alternates:
            logger.warning(
                f"{preference.value} preferred but not available. "
                f"Falling back to {alternates[0].value}."
            )
            return alternates[0]

        logger.error("No AI provider configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY")
        return None

    @property
    def active_provider_id(self) -> ProviderId | None:
        """The provider new calls will be sent to, or None if unconfigured."""
        return self._active

    @property
    def configured_providers(self) -> tuple[ProviderId, ...]:
        """Providers whose clients were initialized."""
        return tuple(self._providers)

    def default_params(self) -> GenerationParams:
        """Sampling parameters from configuration."""
        return GenerationParams(
            max_tokens=self._settings.max_tokens,
            temperature=self._settings.temperature,
        )

    def model_info(self) -> ModelInfo:
        """Describe the active provider and model."""
        if self._active is None:
            return ModelInfo(provider="none", model="none")
        return ModelInfo(provider=self._active.value, model=self._providers[self._active].model)

    async def generate(
        self,
        system_text: str,
        user_text: str,
        params: GenerationParams | None = None,
    ) -> Generation:
        """
        Generate a response from the active provider.

        Args:
            system_text: Persona text defining the model's role.
            user_text: User prompt with the actual request.
            params: Sampling overrides (uses config defaults if None).

        Returns:
            The generated text with provider metadata.

        Raises:
            ConfigurationError: If no provider is configured.
            ProviderError: If generation fails after all attempts.
        """
        active = self._active
        if active is None:
            raise ConfigurationError(
                "No AI provider configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY"
            )

        provider = self._providers[active]
        return await self._call_with_retry(provider, system_text, user_text, params or self.default_params())

    async def _call_with_retry(
        self,
        provider: LLMProvider,
        system_text: str,
        user_text: str,
        params: GenerationParams,
    ) -> Generation:
        """
        Call the provider with exponential backoff retry.

        Raises:
            ProviderError: If every attempt fails.
        """
        last_error: Exception | None = None
        name = provider.PROVIDER_ID.value

        for attempt in range(1, self._max_attempts + 1):
            try:
                completion = await provider.complete(system_text, user_text, params)
                return Generation(
                    text=completion.text,
                    provider_id=name,
                    model=provider.model,
                    tokens_used=completion.tokens_used,
                )
            except Exception as e:  # pylint: disable=broad-except
                last_error = e
                if attempt < self._max_attempts:
                    delay = self._calculate_delay(attempt)
                    logger.warning(
                        f"{name} attempt {attempt}/{self._max_attempts} failed: {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    await self._sleep(delay)

        logger.error(f"{name} failed after {self._max_attempts} attempts: {last_error}")
        raise ProviderError(
            f"{name} failed after {self._max_attempts} attempts: {last_error}",
            cause=last_error,
            retryable=False,
        ) from last_error

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: The attempt that just failed (1-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._base_delay * (2 ** (attempt - 1))
        return min(delay, self._max_delay)

    def switch_active(self, provider_id: ProviderId | str) -> bool:
        """
        Make another initialized provider the active one.

        Returns:
            True if switched, False if that provider was never initialized.
        """
        try:
            target = ProviderId(provider_id)
        except ValueError:
            logger.error(f"Cannot switch to unknown provider: {provider_id}")
            return False

        if target not in self._providers:
            logger.error(f"Cannot switch to {target.value}: client not initialized")
            return False

        self._active = target
        logger.info(f"Switched active provider to {target.value}")
        return True

    async def is_available(self) -> bool:
        """
        Check if the active provider is reachable.

        Returns:
            True if a minimal request succeeds, False otherwise.
        """
        active = self._active
        if active is None:
            return False
        try:
            await self._providers[active].ping()
            return True
        except Exception as e:  # pylint: disable=broad-except
            logger.error(f"AI service availability check failed: {e}")
            return False
