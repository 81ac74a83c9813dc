"""Tests for repository tree eligibility rules."""

from __future__ import annotations

import pytest

from stackmemory.crawler.filters import filter_tree, is_eligible, language_of


def _blob(path: str) -> dict:
    return {"path": path, "type": "blob", "url": f"https://api.github.com/blobs/{path}"}


@pytest.mark.parametrize(
    "path",
    [
        "src/index.ts",
        "README.md",
        "app/page.tsx",
        "requirements.txt",
        "Makefile",
    ],
)
def test_source_files_are_eligible(path):
    assert is_eligible(_blob(path))


@pytest.mark.parametrize(
    "path",
    [
        "node_modules/react/index.js",
        "dist/bundle.js",
        "packages/web/node_modules/x.js",
        "package-lock.json",
        ".env",
        "public/assets/logo.txt",
        "src/buildHelpers.ts",  # substring match on "build"
    ],
)
def test_ignored_paths_are_dropped(path):
    assert not is_eligible(_blob(path))


@pytest.mark.parametrize("path", ["logo.png", "docs/spec.pdf", "release.tar", "lib.so", "intro.mp4"])
def test_ignored_extensions_are_dropped(path):
    assert not is_eligible(_blob(path))


def test_extension_match_is_case_sensitive():
    assert is_eligible(_blob("Logo.PNG"))


def test_trees_are_not_eligible():
    assert not is_eligible({"path": "src", "type": "tree"})


def test_filter_tree_preserves_order():
    tree = [_blob("b.py"), {"path": "src", "type": "tree"}, _blob("a.png"), _blob("a.py")]
    assert [e["path"] for e in filter_tree(tree)] == ["b.py", "a.py"]


@pytest.mark.parametrize(
    "path, expected",
    [("src/app.py", "py"), ("archive.tar.gz", "gz"), ("Makefile", "Makefile")],
)
def test_language_of(path, expected):
    assert language_of(path) == expected
