from __future__ import annotations

from pathlib import Path

import pytest

from openwork.engine.errors import NotFoundError, ProviderUnconfiguredError
from openwork.engine.model_registry import AVAILABLE_MODELS, DEFAULT_MODEL_ID, PROVIDERS, ModelRegistry
from openwork.shared.services.credentials import CredentialStore
from openwork.shared.services.preferences import SettingsStore


@pytest.fixture
def registry(tmp_path: Path) -> ModelRegistry:
    credentials = CredentialStore(tmp_path / ".env", use_environment=False)
    settings = SettingsStore.open(tmp_path / "settings.json")
    return ModelRegistry(credentials, settings)


def test_catalog_is_static_and_unique() -> None:
    ids = [m.id for m in AVAILABLE_MODELS]
    assert len(ids) == len(set(ids))
    assert DEFAULT_MODEL_ID in ids
    provider_ids = {p.id for p in PROVIDERS}
    assert {m.provider for m in AVAILABLE_MODELS} <= provider_ids


def test_availability_follows_credentials(registry: ModelRegistry, tmp_path: Path) -> None:
    assert not any(m.available for m in registry.list_models())

    CredentialStore(tmp_path / ".env").set("openai", "sk-o")
    # A second store writing the same file is picked up by a fresh registry.
    registry = ModelRegistry(
        CredentialStore(tmp_path / ".env", use_environment=False),
        SettingsStore.open(tmp_path / "settings.json"),
    )
    for model in registry.list_models():
        assert model.available == (model.provider == "openai")


def test_availability_is_never_stored_on_the_catalog(registry: ModelRegistry) -> None:
    registry._credentials.set("anthropic", "k")
    assert registry.get(DEFAULT_MODEL_ID).available
    assert not next(m for m in AVAILABLE_MODELS if m.id == DEFAULT_MODEL_ID).available


def test_list_providers_reports_key_presence(registry: ModelRegistry) -> None:
    registry._credentials.set("zai", "z")
    providers = {p.id: p for p in registry.list_providers()}
    assert providers["zai"].has_api_key
    assert not providers["google"].has_api_key
    assert providers["zai"].to_dict() == {"id": "zai", "name": "Z.ai", "hasApiKey": True}


def test_default_model_fallback_and_update(registry: ModelRegistry) -> None:
    assert registry.get_default_model() == DEFAULT_MODEL_ID
    registry.set_default_model("gpt-4o")
    assert registry.get_default_model() == "gpt-4o"


def test_set_default_model_rejects_unknown_id(registry: ModelRegistry) -> None:
    with pytest.raises(NotFoundError):
        registry.set_default_model("no-such-model")
    assert registry.get_default_model() == DEFAULT_MODEL_ID


def test_require_available(registry: ModelRegistry) -> None:
    with pytest.raises(ProviderUnconfiguredError) as exc_info:
        registry.require_available()
    assert exc_info.value.provider == "anthropic"

    registry._credentials.set("anthropic", "k")
    assert registry.require_available().id == DEFAULT_MODEL_ID
    with pytest.raises(NotFoundError):
        registry.require_available("missing")


def test_api_key_for_model(registry: ModelRegistry) -> None:
    registry._credentials.set("google", "g-key")
    model = registry.get("gemini-2.5-pro")
    assert registry.api_key_for(model) == "g-key"
