from __future__ import annotations

import os

import pytest

from openwork.engine.errors import AccessDeniedError, ErrorKind
from openwork.engine.sandbox import (
    is_excluded_name,
    is_excluded_relative,
    normalize_root,
    resolve,
    to_virtual,
)

ROOT = os.path.join(os.sep, "home", "u", "proj")


@pytest.mark.parametrize(
    ("virtual", "expected"),
    [
        ("/", ROOT),
        ("", ROOT),
        ("/src/main.py", os.path.join(ROOT, "src", "main.py")),
        ("src/main.py", os.path.join(ROOT, "src", "main.py")),
        ("/src/../README.md", os.path.join(ROOT, "README.md")),
        ("/./a/./b", os.path.join(ROOT, "a", "b")),
        ("//double//slash", os.path.join(ROOT, "double", "slash")),
    ],
)
def test_resolve_inside_root(virtual: str, expected: str) -> None:
    assert resolve(virtual, ROOT) == expected


@pytest.mark.parametrize(
    "virtual",
    [
        "/../etc/passwd",
        "../../etc/passwd",
        "/src/../../outside",
        "/..",
        "/a/b/../../../x",
    ],
)
def test_resolve_rejects_escape(virtual: str) -> None:
    with pytest.raises(AccessDeniedError) as exc_info:
        resolve(virtual, ROOT)
    assert exc_info.value.kind == ErrorKind.ACCESS_DENIED
    assert str(exc_info.value) == "Access denied: path outside workspace"


def test_resolve_rejects_sibling_with_shared_prefix() -> None:
    # "/home/u/proj-other" starts with the root string but is not inside it.
    with pytest.raises(AccessDeniedError):
        resolve("/../proj-other/secret", ROOT)


def test_resolve_rejects_nul_byte() -> None:
    with pytest.raises(AccessDeniedError):
        resolve("/a\x00b", ROOT)


def test_resolve_normalizes_root_trailing_separator() -> None:
    assert resolve("/x", ROOT + os.sep) == os.path.join(ROOT, "x")


def test_normalize_root_requires_absolute_path() -> None:
    with pytest.raises(ValueError):
        normalize_root("relative/root")
    with pytest.raises(ValueError):
        normalize_root("")


def test_to_virtual_inverts_resolve() -> None:
    assert to_virtual(ROOT, ROOT) == "/"
    assert to_virtual(resolve("/src/a.py", ROOT), ROOT) == "/src/a.py"


def test_to_virtual_result_always_resolves_back_inside() -> None:
    for virtual in ("/a", "/a/b/c.txt", "/x/../y"):
        real = resolve(virtual, ROOT)
        assert resolve(to_virtual(real, ROOT), ROOT) == real


def test_excluded_names() -> None:
    assert is_excluded_name(".git")
    assert is_excluded_name(".env")
    assert is_excluded_name("node_modules")
    assert not is_excluded_name("src")
    assert not is_excluded_name("node_modules_backup")


def test_excluded_relative_checks_every_component() -> None:
    assert is_excluded_relative(os.path.join("src", ".cache", "x"))
    assert is_excluded_relative(os.path.join("web", "node_modules", "lib", "i.js"))
    assert not is_excluded_relative(os.path.join("src", "app", "main.py"))
