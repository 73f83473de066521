"""Thread (session) records and their typed metadata."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from openwork.engine.models import SessionStatus, format_timestamp

logger = logging.getLogger(__name__)

METADATA_SCHEMA_VERSION = 2

# Key used by version-1 records for the bound workspace.
_LEGACY_WORKSPACE_KEY = "workspacePath"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return _utcnow()


@dataclass
class ThreadMetadata:
    """Structured per-thread metadata.

    ``workspace_path`` is the session's workspace binding; ``None`` means
    no workspace is linked. Keys this version does not know are kept in
    ``extra`` and written back unchanged.
    """
    workspace_path: str | None = None
    schema_version: int = METADATA_SCHEMA_VERSION
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = dict(self.extra)
        d["workspace_path"] = self.workspace_path
        d["schema_version"] = self.schema_version
        return d

    @classmethod
    def from_raw(cls, raw: Any) -> ThreadMetadata:
        """Build metadata from any stored form, migrating older schemas.

        Version 1 stored metadata as an opaque JSON string (or dict) with
        the workspace under ``workspacePath``.
        """
        if raw is None:
            return cls()
        if isinstance(raw, str):
            try:
                raw = json.loads(raw) if raw.strip() else {}
            except ValueError:
                logger.warning("Discarding unparseable thread metadata blob")
                return cls()
        if not isinstance(raw, dict):
            return cls()

        data = dict(raw)
        version = data.pop("schema_version", 1)
        workspace = data.pop("workspace_path", None)
        legacy = data.pop(_LEGACY_WORKSPACE_KEY, None)
        if version == 1 or workspace is None:
            workspace = workspace or legacy
        if not isinstance(workspace, str) or not workspace:
            workspace = None
        return cls(
            workspace_path=workspace,
            schema_version=METADATA_SCHEMA_VERSION,
            extra=data,
        )


@dataclass
class Thread:
    """One conversation / work unit."""

    thread_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SessionStatus = SessionStatus.IDLE
    title: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: ThreadMetadata = field(default_factory=ThreadMetadata)

    @property
    def workspace_path(self) -> str | None:
        return self.metadata.workspace_path

    def touch(self) -> None:
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "thread_id": self.thread_id,
            "status": self.status.value,
            "title": self.title,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Thread:
        try:
            status = SessionStatus(data.get("status", "idle"))
        except ValueError:
            status = SessionStatus.IDLE
        return cls(
            thread_id=str(data["thread_id"]),
            status=status,
            title=data.get("title"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            metadata=ThreadMetadata.from_raw(data.get("metadata")),
        )
