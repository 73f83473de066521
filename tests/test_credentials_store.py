from __future__ import annotations

import os
import stat
import sys
import threading
from pathlib import Path

import pytest

from openwork.shared.services.credentials import CredentialStore, env_var_for


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GOOGLE_API_KEY", "ZAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_env_var_names() -> None:
    assert env_var_for("anthropic") == "ANTHROPIC_API_KEY"
    assert env_var_for("zai") == "ZAI_API_KEY"
    assert env_var_for("my-provider") == "MY_PROVIDER_API_KEY"


def test_set_get_has_delete(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")

    assert store.get("anthropic") is None
    assert not store.has("anthropic")

    store.set("anthropic", "sk-ant-123")
    assert store.get("anthropic") == "sk-ant-123"
    assert store.has("anthropic")
    assert not store.has("openai")

    store.delete("anthropic")
    assert store.get("anthropic") is None
    assert not store.has("anthropic")


def test_values_survive_a_new_store_instance(tmp_path: Path, clean_env) -> None:
    CredentialStore(tmp_path / ".env").set("openai", "sk-openai")
    assert CredentialStore(tmp_path / ".env").get("openai") == "sk-openai"


def test_empty_secret_is_rejected(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")
    with pytest.raises(ValueError):
        store.set("anthropic", "   ")


def test_delete_missing_key_is_noop(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")
    store.delete("google")
    assert not store.has("google")


def test_stored_value_wins_over_environment(tmp_path: Path, clean_env) -> None:
    clean_env.setenv("ANTHROPIC_API_KEY", "from-env")
    store = CredentialStore(tmp_path / ".env")

    assert store.get("anthropic") == "from-env"
    assert store.has("anthropic")

    store.set("anthropic", "from-store")
    assert store.get("anthropic") == "from-store"

    store.delete("anthropic")
    # Delete only removes the stored value; the environment still answers.
    assert store.get("anthropic") == "from-env"


def test_environment_fallback_can_be_disabled(tmp_path: Path, clean_env) -> None:
    clean_env.setenv("OPENAI_API_KEY", "from-env")
    store = CredentialStore(tmp_path / ".env", use_environment=False)
    assert store.get("openai") is None
    assert not store.has("openai")


def test_keys_are_independent_per_provider(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")
    store.set("anthropic", "a")
    store.set("openai", "o")
    store.delete("anthropic")
    assert store.get("openai") == "o"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_is_owner_only(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")
    store.set("anthropic", "secret")
    mode = stat.S_IMODE(os.stat(store.path).st_mode)
    assert mode == 0o600


def test_concurrent_writes_are_serialized(tmp_path: Path, clean_env) -> None:
    store = CredentialStore(tmp_path / ".env")
    providers = [f"p{i}" for i in range(8)]

    threads = [
        threading.Thread(target=store.set, args=(name, f"key-{name}"))
        for name in providers
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    fresh = CredentialStore(tmp_path / ".env", use_environment=False)
    for name in providers:
        assert fresh.get(name) == f"key-{name}"


def test_secret_is_not_logged(tmp_path: Path, clean_env, caplog) -> None:
    store = CredentialStore(tmp_path / ".env")
    with caplog.at_level("DEBUG"):
        store.set("anthropic", "sk-very-secret")
        store.get("anthropic")
        store.delete("anthropic")
    assert "sk-very-secret" not in caplog.text
