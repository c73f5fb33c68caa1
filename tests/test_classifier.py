"""Unit tests for file classification and repository traversal."""
import os
from pathlib import Path, PurePosixPath, PureWindowsPath

import pytest

from app.ingest.classifier import (
    CATEGORY_CODE,
    CATEGORY_DOCUMENTATION,
    UNKNOWN_LANGUAGE,
    classify_content_category,
    collect_indexable_files,
    detect_language,
    is_allowed_extension,
    is_binary,
    is_ignored_directory,
    is_ignored_file,
    is_indexable_file,
    relative_posix_path,
)


def _touch(root: Path, rel: str, content: str = "x") -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.mark.parametrize("name", ["node_modules", ".git", "dist", "build", "__pycache__"])
def test_ignored_directories(name):
    assert is_ignored_directory(name)


def test_regular_directory_not_ignored():
    assert not is_ignored_directory("src")


def test_ignored_files():
    assert is_ignored_file("package-lock.json")
    assert is_ignored_file(".env")
    assert not is_ignored_file("package.json")


def test_allowed_extension_is_case_insensitive():
    assert is_allowed_extension("main.PY")
    assert is_allowed_extension("docs/guide.rst")
    assert not is_allowed_extension("Makefile")
    assert not is_allowed_extension("archive.7z")


def test_binary_extensions():
    assert is_binary("logo.png")
    assert is_binary("fonts/Inter.woff2")
    assert not is_binary("main.py")


def test_detect_language():
    assert detect_language("src/app.tsx") == "TypeScript React"
    assert detect_language("main.py") == "Python"
    assert detect_language("notes.unknownext") == UNKNOWN_LANGUAGE


def test_classify_content_category():
    assert classify_content_category("README.md") == CATEGORY_DOCUMENTATION
    assert classify_content_category("notes.txt") == CATEGORY_DOCUMENTATION
    assert classify_content_category("docs/index.rst") == CATEGORY_DOCUMENTATION
    assert classify_content_category("main.py") == CATEGORY_CODE
    assert classify_content_category("config.yaml") == CATEGORY_CODE


def test_is_indexable_file():
    assert is_indexable_file("src/main.py")
    assert not is_indexable_file("yarn.lock")
    assert not is_indexable_file("image.png")


def test_collect_prunes_ignored_directories(tmp_path):
    _touch(tmp_path, "src/main.py")
    _touch(tmp_path, "node_modules/lib/index.js")
    _touch(tmp_path, "src/node_modules/inner.js")
    _touch(tmp_path, ".git/config.json")

    found = [relative_posix_path(tmp_path, p) for p in collect_indexable_files(tmp_path)]
    assert found == ["src/main.py"]


def test_collect_skips_disallowed_and_binary(tmp_path):
    _touch(tmp_path, "README.md", "# hi")
    _touch(tmp_path, "logo.png")
    _touch(tmp_path, "Makefile")
    _touch(tmp_path, "package-lock.json", "{}")

    found = [relative_posix_path(tmp_path, p) for p in collect_indexable_files(tmp_path)]
    assert found == ["README.md"]


def test_collect_is_sorted_and_depth_first(tmp_path):
    _touch(tmp_path, "b.py")
    _touch(tmp_path, "a/z.py")
    _touch(tmp_path, "a/b/c.py")
    _touch(tmp_path, "c.md")

    found = [relative_posix_path(tmp_path, p) for p in collect_indexable_files(tmp_path)]
    assert found == ["a/b/c.py", "a/z.py", "b.py", "c.md"]
    assert all(p.is_absolute() for p in collect_indexable_files(tmp_path))


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
def test_collect_does_not_follow_symlinked_directories(tmp_path):
    outside = tmp_path / "outside"
    _touch(outside, "secret.py")
    repo = tmp_path / "repo"
    _touch(repo, "main.py")
    try:
        os.symlink(outside, repo / "linked", target_is_directory=True)
    except OSError:
        pytest.skip("cannot create symlinks here")

    found = [relative_posix_path(repo, p) for p in collect_indexable_files(repo)]
    assert found == ["main.py"]


def test_relative_posix_path_uses_forward_slashes(tmp_path):
    path = tmp_path / "src" / "pkg" / "mod.py"
    assert relative_posix_path(tmp_path, path) == "src/pkg/mod.py"


def test_relative_posix_path_translates_windows_separators():
    rel = relative_posix_path(r"C:\work\repo", r"C:\work\repo\src\pkg\mod.py", flavor=PureWindowsPath)
    assert rel == "src/pkg/mod.py"


def test_relative_posix_path_keeps_backslash_in_posix_names():
    rel = relative_posix_path("/srv/repo", "/srv/repo/src/a\\b.py", flavor=PurePosixPath)
    assert rel == "src/a\\b.py"
    assert rel != relative_posix_path("/srv/repo", "/srv/repo/src/a/b.py", flavor=PurePosixPath)
