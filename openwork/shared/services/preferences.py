"""General settings: persistent values stored in ~/.openwork/settings.json.

Holds only non-sensitive settings: the default model id and the legacy
global workspace path used when an operation has no session context.
API keys never live here (see credentials.py).
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

from openwork.engine.errors import SettingsStoreError
from openwork.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"


@dataclass
class AppSettings:
    """Persisted settings.

    Attributes:
        default_model: Model id selected by the operator, or None to use
            the catalog fallback.
        workspace_path: Legacy global workspace slot. Independent of every
            per-session binding.
    """

    default_model: str | None = None
    workspace_path: str | None = None

    def validate(self) -> None:
        """Drop values of the wrong type."""
        if not isinstance(self.default_model, str) or not self.default_model.strip():
            self.default_model = None
        if not isinstance(self.workspace_path, str) or not self.workspace_path.strip():
            self.workspace_path = None


class SettingsStore:
    """Load and save ``AppSettings``; every setter persists immediately."""

    def __init__(self, path: Path, settings: AppSettings | None = None) -> None:
        self._path = path
        self._settings = settings or AppSettings()

    @property
    def path(self) -> Path:
        return self._path

    @classmethod
    def open(cls, path: Path) -> SettingsStore:
        """Open the store at *path*.

        A missing file yields defaults and a corrupt one is logged and
        replaced by defaults. Raises ``SettingsStoreError`` when the file
        or its directory cannot be accessed at all.
        """
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SettingsStoreError(str(path), exc.strerror or str(exc)) from exc

        if not path.exists():
            logger.debug("Settings file not found at %s; using defaults", path)
            return cls(path)

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SettingsStoreError(str(path), exc.strerror or str(exc)) from exc

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("settings root is not an object")
        except ValueError:
            logger.warning("Corrupt settings file %s; using defaults", path)
            return cls(path)

        settings = AppSettings(**{
            k: v for k, v in data.items()
            if k in AppSettings.__dataclass_fields__
        })
        settings.validate()
        logger.debug("Loaded settings from %s", path)
        return cls(path, settings)

    def save(self) -> None:
        try:
            atomic_write_json(self._path, asdict(self._settings))
        except OSError:
            logger.exception("Failed to save settings to %s", self._path)
            raise

    def get_default_model(self) -> str | None:
        return self._settings.default_model

    def set_default_model(self, model_id: str) -> None:
        self._settings.default_model = model_id
        self.save()

    def get_workspace_path(self) -> str | None:
        return self._settings.workspace_path

    def set_workspace_path(self, path: str | None) -> None:
        self._settings.workspace_path = path
        self.save()
