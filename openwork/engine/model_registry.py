"""Model/provider catalog.

A static, process-wide list of providers and models. Catalog changes ship
with a release; the only runtime-writable value is the default model id.
Availability is derived: a model is available when its provider has a
credential in the credential store.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from .errors import NotFoundError, ProviderUnconfiguredError
from .models import ModelConfig, Provider

if TYPE_CHECKING:
    from openwork.shared.services.credentials import CredentialStore
    from openwork.shared.services.preferences import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_MODEL_ID = "claude-sonnet-4-5-20250929"

PROVIDERS: tuple[Provider, ...] = (
    Provider(id="anthropic", name="Anthropic"),
    Provider(id="openai", name="OpenAI"),
    Provider(id="google", name="Google"),
    Provider(id="zai", name="Z.ai"),
)


def _model(model_id: str, name: str, provider: str, description: str) -> ModelConfig:
    return ModelConfig(
        id=model_id, name=name, provider=provider, model=model_id, description=description,
    )


AVAILABLE_MODELS: tuple[ModelConfig, ...] = (
    # Anthropic Claude 4.5 series
    _model("claude-opus-4-5-20251101", "Claude Opus 4.5", "anthropic",
           "Premium model with maximum intelligence"),
    _model("claude-sonnet-4-5-20250929", "Claude Sonnet 4.5", "anthropic",
           "Best balance of intelligence, speed, and cost for agents"),
    _model("claude-haiku-4-5-20251001", "Claude Haiku 4.5", "anthropic",
           "Fastest model with near-frontier intelligence"),
    # Anthropic legacy
    _model("claude-opus-4-1-20250805", "Claude Opus 4.1", "anthropic",
           "Previous generation premium model with extended thinking"),
    _model("claude-sonnet-4-20250514", "Claude Sonnet 4", "anthropic",
           "Fast and capable previous generation model"),
    # OpenAI GPT-5 series
    _model("gpt-5.2", "GPT-5.2", "openai",
           "Latest flagship with enhanced coding and agentic capabilities"),
    _model("gpt-5.1", "GPT-5.1", "openai",
           "Advanced reasoning and robust performance"),
    # OpenAI o-series
    _model("o3", "o3", "openai", "Advanced reasoning for complex problem-solving"),
    _model("o3-mini", "o3 Mini", "openai", "Cost-effective reasoning with faster response times"),
    _model("o4-mini", "o4 Mini", "openai", "Fast, efficient reasoning model succeeding o3"),
    _model("o1", "o1", "openai", "Premium reasoning for research, coding, math and science"),
    # OpenAI GPT-4 series
    _model("gpt-4.1", "GPT-4.1", "openai", "Strong instruction-following with 1M context window"),
    _model("gpt-4.1-mini", "GPT-4.1 Mini", "openai",
           "Faster, smaller version balancing performance and efficiency"),
    _model("gpt-4.1-nano", "GPT-4.1 Nano", "openai", "Most cost-efficient for lighter tasks"),
    _model("gpt-4o", "GPT-4o", "openai", "Versatile model for text generation and comprehension"),
    _model("gpt-4o-mini", "GPT-4o Mini", "openai", "Cost-efficient variant with faster response times"),
    # Google Gemini
    _model("gemini-3-pro-preview", "Gemini 3 Pro Preview", "google",
           "State-of-the-art reasoning and multimodal understanding"),
    _model("gemini-3-flash-preview", "Gemini 3 Flash Preview", "google",
           "Fast frontier-class model with low latency and cost"),
    _model("gemini-2.5-pro", "Gemini 2.5 Pro", "google",
           "High-capability model for complex reasoning and coding"),
    _model("gemini-2.5-flash", "Gemini 2.5 Flash", "google",
           "Lightning-fast with balance of intelligence and latency"),
    _model("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite", "google",
           "Fast, low-cost, high-performance model"),
    # Z.ai GLM
    _model("glm-4.7", "GLM-4.7", "zai",
           "Latest flagship model with excellent agentic coding capabilities"),
    _model("glm-4.6v", "GLM-4.6V", "zai",
           "Multimodal model with 128K context and SOTA vision understanding"),
    _model("glm-4-plus", "GLM-4 Plus", "zai", "Enhanced reasoning and accuracy"),
    _model("glm-4-flash", "GLM-4 Flash", "zai", "Fast and cost-efficient model"),
    _model("glm-4.5", "GLM-4.5", "zai", "Advanced chain-of-thought reasoning"),
    _model("glm-4.5-air", "GLM-4.5 Air", "zai", "Lightweight version with faster inference"),
    _model("glm-4-32b-0414-128k", "GLM-4-32B-128K", "zai",
           "32B parameter model with 128K context window"),
    _model("glm-4.5v", "GLM-4.5V", "zai", "Vision model supporting image understanding"),
)


class ModelRegistry:
    """Catalog lookups decorated with credential-derived availability.

    The credential store and settings store are injected so tests can
    substitute fakes.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        settings: SettingsStore,
        models: tuple[ModelConfig, ...] = AVAILABLE_MODELS,
        providers: tuple[Provider, ...] = PROVIDERS,
        fallback_model: str = DEFAULT_MODEL_ID,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._models = {m.id: m for m in models}
        self._providers = providers
        self._fallback_model = fallback_model

    def get(self, model_id: str) -> ModelConfig | None:
        entry = self._models.get(model_id)
        if entry is None:
            return None
        return replace(entry, available=self._credentials.has(entry.provider))

    def list_models(self) -> list[ModelConfig]:
        configured: dict[str, bool] = {}
        result = []
        for entry in self._models.values():
            if entry.provider not in configured:
                configured[entry.provider] = self._credentials.has(entry.provider)
            result.append(replace(entry, available=configured[entry.provider]))
        return result

    def list_providers(self) -> list[Provider]:
        return [
            replace(p, has_api_key=self._credentials.has(p.id))
            for p in self._providers
        ]

    def get_default_model(self) -> str:
        return self._settings.get_default_model() or self._fallback_model

    def set_default_model(self, model_id: str) -> None:
        if model_id not in self._models:
            raise NotFoundError("Model", model_id)
        self._settings.set_default_model(model_id)
        logger.info("Default model set to %s", model_id)

    def require_available(self, model_id: str | None = None) -> ModelConfig:
        """Resolve *model_id* (or the default) to an available catalog entry."""
        resolved_id = model_id or self.get_default_model()
        entry = self.get(resolved_id)
        if entry is None:
            raise NotFoundError("Model", resolved_id)
        if not entry.available:
            raise ProviderUnconfiguredError(entry.id, entry.provider)
        return entry

    def api_key_for(self, model: ModelConfig) -> str | None:
        return self._credentials.get(model.provider)
