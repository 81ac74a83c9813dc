"""Eligibility rules for repository tree entries.

A path is dropped when it contains (anywhere) or starts with one of the
ignored path fragments, or ends with an ignored extension. Matching is plain
substring / suffix and case-sensitive, so ``src/buildHelpers.ts`` is dropped
by the ``build`` fragment.
"""

from __future__ import annotations

IGNORED_PATHS: tuple[str, ...] = (
    "node_modules",
    ".git",
    "dist",
    "build",
    ".next",
    "coverage",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    ".DS_Store",
    ".env",
    ".env.local",
    ".vercel",
    "public/assets",
)

IGNORED_EXTENSIONS: tuple[str, ...] = (
    # images
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    # documents
    ".pdf", ".doc", ".docx",
    # archives
    ".zip", ".tar", ".gz",
    # binaries
    ".exe", ".dll", ".so", ".dylib",
    # media
    ".mp4", ".mp3", ".mov",
)


def is_ignored_path(path: str) -> bool:
    return any(
        ignored in path or path.startswith(ignored + "/") for ignored in IGNORED_PATHS
    )


def has_ignored_extension(path: str) -> bool:
    return path.endswith(IGNORED_EXTENSIONS)


def is_eligible(entry: dict) -> bool:
    """Return True if a git tree entry should be fetched and indexed.

    Args:
        entry: One item of the GitHub trees API ``tree`` array
            (``path``, ``type``, ``url`` …).
    """
    if entry.get("type") != "blob":
        return False
    path = entry.get("path", "")
    return not is_ignored_path(path) and not has_ignored_extension(path)


def filter_tree(tree: list[dict]) -> list[dict]:
    """Return the eligible entries of *tree*, preserving order."""
    return [entry for entry in tree if is_eligible(entry)]


def language_of(path: str) -> str:
    """Language tag for a path: the text after the last '.', or the whole path."""
    return path.rsplit(".", 1)[-1]
