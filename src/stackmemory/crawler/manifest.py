"""Project manifest parsing: package.json / requirements.txt → tech stack."""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass, field

from stackmemory.db.models import StackItem

# Tried in order; the first one present wins.
MANIFEST_FILES: tuple[str, ...] = ("package.json", "requirements.txt")

MAX_STACK_ITEMS = 10

# package.json dependencies are kept only when the name contains one of these.
_MAJOR_TECH: tuple[str, ...] = (
    "next",
    "react",
    "vue",
    "nuxt",
    "svelte",
    "angular",
    "tailwindcss",
    "typescript",
    "supabase",
    "firebase",
    "prisma",
    "framer-motion",
    "redux",
    "zustand",
    "tanstack",
    "radix",
    "lucide",
    "axios",
    "graphql",
    "apollo",
    "trpc",
    "drizzle",
)

_REQUIREMENT_RE = re.compile(
    r"^\s*(?P<name>[A-Za-z0-9][A-Za-z0-9._\-]*)(?:\[[^\]]*\])?\s*(?P<spec>[=<>!~]=?=?[^;#\s]+)?"
)


class ManifestStatus(str, enum.Enum):
    FOUND = "found"
    MISSING = "missing"
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"


class ManifestParseError(ValueError):
    """The manifest file exists but its content could not be read as a manifest."""


@dataclass
class ManifestResult:
    status: ManifestStatus
    file: str | None = None
    stack: list[StackItem] = field(default_factory=list)
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "file": self.file,
            "stack": [item.to_dict() for item in self.stack],
        }


def _is_major_tech(name: str) -> bool:
    return any(tech in name for tech in _MAJOR_TECH)


def _clean_version(version: str) -> str:
    return version.replace("^", "v", 1).replace("~", "v", 1)


def parse_package_json(text: str) -> list[StackItem]:
    """Extract major frameworks and libraries from a package.json document.

    Raises:
        ManifestParseError: If *text* is not a JSON object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ManifestParseError(f"package.json is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestParseError("package.json must contain a JSON object")

    deps: dict = {}
    for section in ("dependencies", "devDependencies"):
        value = data.get(section) or {}
        if not isinstance(value, dict):
            raise ManifestParseError(f"package.json '{section}' must be an object")
        for name, version in value.items():
            deps.setdefault(name, version)

    stack = [
        StackItem(name=name, version=_clean_version(str(version)))
        for name, version in deps.items()
        if _is_major_tech(name)
    ]
    return stack[:MAX_STACK_ITEMS]


def parse_requirements(text: str) -> list[StackItem]:
    """Extract requirement names and version specifiers from requirements.txt.

    Comment lines, blank lines and pip options (``-r``, ``--index-url`` …) are
    skipped.

    Raises:
        ManifestParseError: If no line could be read as a requirement while
            the file is not empty.
    """
    stack: list[StackItem] = []
    meaningful = 0
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        meaningful += 1
        if "://" in line:
            continue  # direct URL / VCS requirement
        match = _REQUIREMENT_RE.match(line)
        if match is None:
            continue
        spec = match.group("spec")
        stack.append(StackItem(name=match.group("name"), version=spec.lstrip("=") if spec else None))

    if meaningful and not stack:
        raise ManifestParseError("requirements.txt contains no parseable requirements")
    return stack[:MAX_STACK_ITEMS]


def parse_manifest(filename: str, text: str) -> list[StackItem]:
    if filename == "package.json":
        return parse_package_json(text)
    if filename == "requirements.txt":
        return parse_requirements(text)
    raise ValueError(f"unsupported manifest '{filename}'")


def merge_stack(current: list[StackItem], incoming: list[StackItem]) -> list[StackItem]:
    """Merge a freshly parsed stack into the stored one.

    Items from *incoming* replace same-named items in *current*; remaining
    items of *current* (e.g. added by hand) are kept ahead of the incoming ones.
    """
    incoming_names = {item.name for item in incoming}
    kept = [item for item in current if item.name not in incoming_names]
    return kept + list(incoming)
