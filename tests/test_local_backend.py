from __future__ import annotations

import stat
from pathlib import Path

import pytest

from openwork.engine import errors
from openwork.engine.backend import READ_ONLY_TOOLS, LocalWorkspaceBackend


@pytest.fixture
def backend(tmp_path: Path) -> LocalWorkspaceBackend:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\nprint('hello')\nprint('bye')\n")
    (tmp_path / "src" / "util.py").write_text("def hello():\n    return 1\n")
    (tmp_path / "README.md").write_text("hello readme\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config").write_text("hello git\n")
    (tmp_path / "blob.bin").write_bytes(b"hello\x00binary")
    return LocalWorkspaceBackend(str(tmp_path))


def test_read_only_tool_set() -> None:
    assert READ_ONLY_TOOLS == {"ls", "read_file", "glob", "grep"}


def test_ls_one_level_filtered(backend: LocalWorkspaceBackend) -> None:
    entries = backend.ls("/")
    assert [e.path for e in entries] == ["/README.md", "/blob.bin", "/src"]
    assert [e.path for e in backend.ls("/src")] == ["/src/app.py", "/src/util.py"]


def test_ls_errors(backend: LocalWorkspaceBackend) -> None:
    with pytest.raises(errors.AccessDeniedError):
        backend.ls("/../")
    with pytest.raises(errors.NotFoundError):
        backend.ls("/missing")
    with pytest.raises(errors.NotADirectoryError):
        backend.ls("/README.md")


def test_read_file_numbers_lines(backend: LocalWorkspaceBackend) -> None:
    text = backend.read_file("/src/app.py")
    assert text.splitlines()[0] == "     1\timport os"
    window = backend.read_file("/src/app.py", offset=1, limit=1)
    assert window == "     2\tprint('hello')"


def test_write_file_refuses_overwrite(backend: LocalWorkspaceBackend, tmp_path: Path) -> None:
    assert backend.write_file("/docs/new.md", "# new") == "/docs/new.md"
    assert (tmp_path / "docs" / "new.md").read_text() == "# new"

    with pytest.raises(errors.WorkspaceIOError):
        backend.write_file("/README.md", "clobber")
    assert (tmp_path / "README.md").read_text() == "hello readme\n"


def test_write_outside_workspace_is_denied(backend: LocalWorkspaceBackend, tmp_path: Path) -> None:
    with pytest.raises(errors.AccessDeniedError):
        backend.write_file("/../escape.txt", "x")
    assert not (tmp_path.parent / "escape.txt").exists()


def test_edit_file(backend: LocalWorkspaceBackend, tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="2 times"):
        backend.edit_file("/src/app.py", "print", "log")
    with pytest.raises(ValueError, match="not found"):
        backend.edit_file("/src/app.py", "missing", "x")

    assert backend.edit_file("/src/app.py", "import os", "import sys") == 1
    assert backend.edit_file("/src/app.py", "print", "log", replace_all=True) == 2
    assert (tmp_path / "src" / "app.py").read_text() == "import sys\nlog('hello')\nlog('bye')\n"


def test_edit_file_keeps_permissions(backend: LocalWorkspaceBackend, tmp_path: Path) -> None:
    script = tmp_path / "run.sh"
    script.write_text("#!/bin/sh\necho old\n")
    script.chmod(0o755)

    backend.edit_file("/run.sh", "old", "new")

    assert script.read_text() == "#!/bin/sh\necho new\n"
    assert stat.S_IMODE(script.stat().st_mode) == 0o755


def test_glob(backend: LocalWorkspaceBackend) -> None:
    assert [f.path for f in backend.glob("*.py")] == ["/src/app.py", "/src/util.py"]
    assert [f.path for f in backend.glob("app.py", "/src")] == ["/src/app.py"]
    assert backend.glob("*.cfg") == []


def test_grep_is_literal_and_skips_hidden_and_binary(backend: LocalWorkspaceBackend) -> None:
    matches = backend.grep("hello")
    assert [(m.path, m.line) for m in matches] == [
        ("/README.md", 1),
        ("/src/app.py", 2),
        ("/src/util.py", 1),
    ]
    assert backend.grep("print('", glob="*.py")[0].text == "print('hello')"
    assert backend.grep("(") != []


def test_execute_dispatch(backend: LocalWorkspaceBackend) -> None:
    listing = backend.execute("ls", {"path": "/src"})
    assert listing[0]["path"] == "/src/app.py"
    assert backend.execute("write_file", {"path": "/x.txt", "content": "x"}) == "/x.txt"
    with pytest.raises(ValueError, match="Unknown tool"):
        backend.execute("shell", {"command": "rm -rf /"})
    with pytest.raises(KeyError):
        backend.execute("read_file", {})
