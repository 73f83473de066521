"""Per-provider API key storage.

Keys live in a dotenv file (``~/.openwork/.env``) that is never shared
with general settings. Each provider maps to its conventional environment
variable name, so the same file can be sourced by the agent runtime.

Lookup order: the stored value first, then the process environment.
``delete`` only removes the stored value.
"""
from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from dotenv import dotenv_values, set_key, unset_key

logger = logging.getLogger(__name__)

ENV_FILENAME = ".env"

PROVIDER_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "zai": "ZAI_API_KEY",
    "ollama": "OLLAMA_API_KEY",
}


def env_var_for(provider: str) -> str:
    """Environment variable name holding *provider*'s key."""
    known = PROVIDER_ENV_VARS.get(provider)
    if known:
        return known
    normalized = "".join(c if c.isalnum() else "_" for c in provider.upper())
    return f"{normalized}_API_KEY"


class CredentialStore:
    """get/set/delete/has for provider secrets.

    Writes are serialized by a lock; reads use a cached parse of the file
    that is refreshed after every write.
    """

    def __init__(self, env_path: Path, *, use_environment: bool = True) -> None:
        self._path = env_path
        self._use_environment = use_environment
        self._write_lock = threading.Lock()
        self._cache: dict[str, str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _stored(self) -> dict[str, str]:
        if self._cache is None:
            if self._path.exists():
                values = dotenv_values(self._path)
                self._cache = {k: v for k, v in values.items() if v}
            else:
                self._cache = {}
        return self._cache

    def _ensure_file(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self._path.touch(mode=0o600)
        os.chmod(self._path, 0o600)

    def get(self, provider: str) -> str | None:
        name = env_var_for(provider)
        stored = self._stored().get(name)
        if stored:
            return stored
        if self._use_environment:
            return os.environ.get(name) or None
        return None

    def has(self, provider: str) -> bool:
        name = env_var_for(provider)
        if name in self._stored():
            return True
        return bool(self._use_environment and os.environ.get(name))

    def set(self, provider: str, secret: str) -> None:
        if not secret or not secret.strip():
            raise ValueError(f"API key for {provider} must not be empty")
        name = env_var_for(provider)
        with self._write_lock:
            self._ensure_file()
            set_key(str(self._path), name, secret.strip(), quote_mode="never")
            # set_key rewrites through a temp file; keep the mode tight.
            os.chmod(self._path, 0o600)
            self._cache = None
        logger.info("Stored API key for provider %s", provider)

    def delete(self, provider: str) -> None:
        name = env_var_for(provider)
        with self._write_lock:
            if name in self._stored():
                unset_key(str(self._path), name, quote_mode="never")
                logger.info("Deleted API key for provider %s", provider)
            self._cache = None
