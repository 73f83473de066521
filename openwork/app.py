"""openwork: workspace bridge entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"


def configure_logging(log_level: str, log_dir: Path) -> Path:
    """Route the root logger to a rotating file under *log_dir* and stderr.

    stdout is reserved for the ``{"port": N}`` handshake line.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "openwork-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="openwork",
        description="openwork: local workspace bridge for the desktop shell",
    )
    parser.add_argument(
        "--host", default=None,
        help="Bind address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Server port (0=random available port)",
    )
    parser.add_argument(
        "--home", metavar="DIR",
        help="State directory (default: ~/.openwork or $OPENWORK_HOME)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: <home>/openwork.yaml when present)",
    )
    parser.add_argument(
        "--runtime", metavar="MODULE:ATTR",
        help="Agent runtime factory to install",
    )
    parser.add_argument(
        "--list-sessions", action="store_true",
        help="List saved sessions and exit",
    )
    parser.add_argument(
        "--list-models", action="store_true",
        help="List catalog models with availability and exit",
    )
    args = parser.parse_args()

    from openwork.engine.config import BridgeConfig
    from openwork.engine.errors import SettingsStoreError
    from openwork.engine.yaml_config import resolve_config

    base = BridgeConfig.from_env()
    if args.home:
        base = replace(base, home_dir=args.home)
    try:
        config = resolve_config(args.config, base)
    except (OSError, ValueError) as exc:
        print(f"openwork: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.runtime:
        overrides["agent_runtime"] = args.runtime
    if overrides:
        config = replace(config, **overrides)

    log_file = configure_logging(config.log_level, config.logs_dir)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting openwork home=%s host=%s port=%s config=%s log=%s",
        config.home_dir, config.host, config.port, args.config or "<auto>", log_file,
    )

    from openwork.adapters.orchestrator import WorkspaceBridge

    try:
        bridge = WorkspaceBridge.from_config(config)
    except SettingsStoreError:
        logger.exception("Cannot open settings store; exiting")
        sys.exit(1)
    except (ImportError, ValueError, TypeError):
        logger.exception("Cannot load agent runtime %s; exiting", config.agent_runtime)
        sys.exit(2)

    if args.list_sessions:
        threads = bridge.sessions.list_threads()
        if not threads:
            print("No saved sessions.")
        for thread in threads:
            print(f"  {thread.thread_id}  {thread.title or ''}  {thread.workspace_path or '-'}")
        sys.exit(0)

    if args.list_models:
        for model in bridge.models.list_models():
            flag = "+" if model.available else " "
            print(f"{flag} {model.id:32} {model.provider:10} {model.name}")
        sys.exit(0)

    from openwork.desktop.server import OpenworkServer

    server = OpenworkServer(bridge, host=config.host, port=config.port)
    asyncio.run(server.start())
    sys.exit(0)


if __name__ == "__main__":
    main()
