"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via OPENWORK_* env vars,
then optionally via the ``bridge:`` section of a YAML file (see
yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes"}


def default_home_dir() -> str:
    return str(Path.home() / ".openwork")


@dataclass
class BridgeConfig:
    """Workspace bridge configuration."""

    # Root of all persistent state (settings, credentials, threads, logs).
    home_dir: str = ""

    # Watcher: raw changes inside the debounce window form one batch.
    watch_debounce_ms: int = 300
    watch_step_ms: int = 50
    # Polling works on network mounts and in containers without inotify.
    watch_force_polling: bool = False

    # Max wait for an operator decision on a tool call; the request is
    # rejected when it elapses. Set to 0 (or a negative value) to wait forever.
    approval_timeout_seconds: float = 0.0

    # Per-session stream queue bound.
    event_queue_size: int = 5000

    # HTTP boundary. Port 0 lets the OS choose; the chosen port is
    # announced on stdout.
    host: str = "127.0.0.1"
    port: int = 0

    # Optional agent runtime factory, "module:attr".
    agent_runtime: str | None = None

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.home_dir:
            self.home_dir = default_home_dir()
        self.home_dir = os.path.expanduser(self.home_dir)

    # ── Derived paths ──

    @property
    def home(self) -> Path:
        return Path(self.home_dir)

    @property
    def settings_path(self) -> Path:
        return self.home / "settings.json"

    @property
    def env_path(self) -> Path:
        return self.home / ".env"

    @property
    def threads_dir(self) -> Path:
        return self.home / "threads"

    @property
    def logs_dir(self) -> Path:
        return self.home / "logs"

    @property
    def default_yaml_path(self) -> Path:
        return self.home / "openwork.yaml"

    @property
    def approval_timeout(self) -> float | None:
        """Timeout in seconds, or None to wait forever."""
        if self.approval_timeout_seconds <= 0:
            return None
        return self.approval_timeout_seconds

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load configuration from OPENWORK_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("OPENWORK_")
        }
        if overrides:
            logger.info(
                "BridgeConfig.from_env: OPENWORK_* env overrides: %s",
                ", ".join(sorted(overrides)),
            )
        else:
            logger.debug("BridgeConfig.from_env: no OPENWORK_* env vars set, using defaults")

        config = cls(
            home_dir=os.getenv("OPENWORK_HOME", ""),
            watch_debounce_ms=int(os.getenv(
                "OPENWORK_WATCH_DEBOUNCE_MS", str(cls.watch_debounce_ms)
            )),
            watch_step_ms=int(os.getenv(
                "OPENWORK_WATCH_STEP_MS", str(cls.watch_step_ms)
            )),
            watch_force_polling=(
                os.getenv("OPENWORK_WATCH_FORCE_POLLING", "").lower()
                in _TRUE_VALUES
            ),
            approval_timeout_seconds=float(os.getenv(
                "OPENWORK_APPROVAL_TIMEOUT_SECONDS",
                str(cls.approval_timeout_seconds),
            )),
            event_queue_size=int(os.getenv(
                "OPENWORK_EVENT_QUEUE_SIZE", str(cls.event_queue_size)
            )),
            host=os.getenv("OPENWORK_HOST", cls.host),
            port=int(os.getenv("OPENWORK_PORT", str(cls.port))),
            agent_runtime=os.getenv("OPENWORK_AGENT_RUNTIME") or None,
            log_level=os.getenv("OPENWORK_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "BridgeConfig.from_env: home=%s debounce=%dms polling=%s log_level=%s",
            config.home_dir, config.watch_debounce_ms,
            config.watch_force_polling, config.log_level,
        )
        return config
