from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from openwork.engine.errors import NotFoundError, SettingsStoreError
from openwork.engine.models import SessionStatus
from openwork.shared.models.session import METADATA_SCHEMA_VERSION, Thread, ThreadMetadata
from openwork.shared.services.persistence import SessionStore
from openwork.shared.services.preferences import SettingsStore


# ── Settings ──


def test_settings_defaults_when_missing() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SettingsStore.open(Path(tmpdir) / "settings.json")
        assert store.get_default_model() is None
        assert store.get_workspace_path() is None


def test_settings_persist_immediately() -> None:
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.json"
        store = SettingsStore.open(path)
        store.set_default_model("gpt-4o")
        store.set_workspace_path("/tmp/project")

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload == {"default_model": "gpt-4o", "workspace_path": "/tmp/project"}

        reopened = SettingsStore.open(path)
        assert reopened.get_default_model() == "gpt-4o"
        assert reopened.get_workspace_path() == "/tmp/project"


def test_corrupt_settings_fall_back_to_defaults() -> None:
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        store = SettingsStore.open(path)
        assert store.get_default_model() is None


def test_settings_ignore_unknown_and_mistyped_keys() -> None:
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "settings.json"
        path.write_text(json.dumps({"default_model": 42, "theme": "dark"}), encoding="utf-8")
        store = SettingsStore.open(path)
        assert store.get_default_model() is None


def test_settings_directory_unusable_is_fatal() -> None:
    with TemporaryDirectory() as tmpdir:
        blocker = Path(tmpdir) / "blocker"
        blocker.write_text("file, not a directory")
        with pytest.raises(SettingsStoreError):
            SettingsStore.open(blocker / "settings.json")


# ── Threads ──


def test_create_get_list_delete_thread() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        first = store.create(title="first")
        second = store.create(thread_id="thread-2")

        assert store.get(first.thread_id).title == "first"
        assert {t.thread_id for t in store.list_threads()} == {first.thread_id, "thread-2"}

        assert store.delete(second.thread_id)
        assert store.get("thread-2") is None
        assert not store.delete("thread-2")


def test_duplicate_thread_id_is_rejected() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        store.create(thread_id="dup")
        with pytest.raises(ValueError):
            store.create(thread_id="dup")


def test_thread_ids_cannot_escape_the_store() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir) / "threads")
        assert store.get("../settings") is None
        assert not store.has_session("../../etc/passwd")
        with pytest.raises(ValueError):
            store.create(thread_id="../escape")


def test_non_string_thread_ids_are_rejected() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        assert store.get(42) is None
        assert not store.delete(42)
        with pytest.raises(ValueError, match="Invalid thread id"):
            store.create(thread_id=42)
        assert store.list_threads() == []


def test_require_unknown_thread() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        with pytest.raises(NotFoundError):
            store.require("nope")


def test_workspace_binding_round_trip_through_disk() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        thread = store.create(thread_id="t1")
        store.set_workspace_path(thread.thread_id, "/work/a")

        fresh = SessionStore(Path(tmpdir))
        assert fresh.get_workspace_path("t1") == "/work/a"
        assert fresh.bound_sessions() == {"t1": "/work/a"}

        fresh.set_workspace_path("t1", None)
        assert SessionStore(Path(tmpdir)).get_workspace_path("t1") is None


def test_set_status_persists() -> None:
    with TemporaryDirectory() as tmpdir:
        store = SessionStore(Path(tmpdir))
        store.create(thread_id="t1")
        store.set_status("t1", SessionStatus.BUSY)
        assert SessionStore(Path(tmpdir)).require("t1").status == SessionStatus.BUSY


def test_version_one_string_metadata_is_migrated_and_rewritten() -> None:
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "legacy.json"
        path.write_text(json.dumps({
            "thread_id": "legacy",
            "status": "idle",
            "created_at": "2025-01-01T00:00:00Z",
            "updated_at": "2025-01-02T00:00:00Z",
            "metadata": json.dumps({"workspacePath": "/old/project", "color": "blue"}),
        }), encoding="utf-8")

        store = SessionStore(Path(tmpdir))
        thread = store.require("legacy")

        assert thread.workspace_path == "/old/project"
        assert thread.metadata.extra == {"color": "blue"}
        rewritten = json.loads(path.read_text(encoding="utf-8"))
        assert rewritten["metadata"]["schema_version"] == METADATA_SCHEMA_VERSION
        assert rewritten["metadata"]["workspace_path"] == "/old/project"
        assert "workspacePath" not in rewritten["metadata"]


def test_metadata_from_raw_variants() -> None:
    assert ThreadMetadata.from_raw(None).workspace_path is None
    assert ThreadMetadata.from_raw("").workspace_path is None
    assert ThreadMetadata.from_raw("not json").workspace_path is None
    assert ThreadMetadata.from_raw({"workspacePath": "/a"}).workspace_path == "/a"
    current = ThreadMetadata.from_raw({"schema_version": 2, "workspace_path": "/b"})
    assert current.workspace_path == "/b"
    assert ThreadMetadata.from_raw({"workspace_path": 7}).workspace_path is None


def test_thread_to_dict_round_trip() -> None:
    thread = Thread(thread_id="abc", title="T", metadata=ThreadMetadata(workspace_path="/w"))
    restored = Thread.from_dict(thread.to_dict())
    assert restored.thread_id == "abc"
    assert restored.title == "T"
    assert restored.workspace_path == "/w"
    assert thread.to_dict()["created_at"].endswith("Z")
