"""GitHub repository crawler.

Pipeline:
  1. Parse ``github.com/<owner>/<repo>`` out of the repository URL.
  2. Fetch the recursive git tree for ``main`` (one retry on ``master`` if
     ``main`` 404s).
  3. Keep eligible blobs (see stackmemory.crawler.filters), capped at
     ``max_files`` in tree order.
  4. Fetch raw content for each blob on a bounded thread pool. A failed
     fetch is logged and recorded; it never aborts the crawl.

Access tokens are sent only in the Authorization header and never logged.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import httpx

from stackmemory.crawler.filters import filter_tree, language_of
from stackmemory.crawler.manifest import (
    MANIFEST_FILES,
    ManifestParseError,
    ManifestResult,
    ManifestStatus,
    parse_manifest,
)
from stackmemory.errors import CrawlFailed, InvalidReference
from stackmemory.results import BatchSummary, Outcome

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
DEFAULT_BRANCH = "main"
FALLBACK_BRANCH = "master"

_ACCEPT_JSON = "application/vnd.github.v3+json"
_ACCEPT_RAW = "application/vnd.github.v3.raw"

_REPO_RE = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class FileRecord:
    """One fetched source file. ``path`` is unique within a crawl."""

    path: str
    content: str
    size: int
    language: str


@dataclass
class CrawlResult:
    """Outcome of crawling one repository.

    Attributes:
        ref: Parsed repository reference.
        branch: Branch the tree was read from.
        files: Fetched files (tree order) and per-file fetch failures.
        total_entries: Number of entries in the git tree.
        eligible: Number of entries that passed the filter, before the cap.
    """

    ref: RepoRef
    branch: str
    files: BatchSummary[FileRecord] = field(default_factory=BatchSummary)
    total_entries: int = 0
    eligible: int = 0


def parse_repo_url(url: str) -> RepoRef:
    """Return the owner/repo pair of a GitHub URL.

    Raises:
        InvalidReference: If *url* does not contain ``github.com/<owner>/<repo>``.
    """
    match = _REPO_RE.search(url or "")
    if match is None:
        raise InvalidReference(f"not a GitHub repository URL: {url!r}")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        raise InvalidReference(f"not a GitHub repository URL: {url!r}")
    return RepoRef(owner=owner, repo=repo)


# ---------------------------------------------------------------------------
# Crawler
# ---------------------------------------------------------------------------


class GitHubCrawler:
    """Fetches eligible source files from a GitHub repository.

    Args:
        token: GitHub access token; may be empty for public repositories.
        max_files: Cap on eligible files fetched per crawl.
        workers: Size of the content-fetch thread pool.
        client: Optional preconfigured httpx.Client (tests pass one with a
            MockTransport). The crawler closes only clients it created.
        api_base: GitHub API root.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token: str | None,
        *,
        max_files: int = 50,
        workers: int = 8,
        client: httpx.Client | None = None,
        api_base: str = GITHUB_API,
        timeout: float = 30.0,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.max_files = max_files
        self.workers = workers
        self.api_base = api_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._auth_headers = {"Authorization": f"token {token}"} if token else {}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> GitHubCrawler:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------

    def fetch_tree(self, ref: RepoRef, branch: str = DEFAULT_BRANCH) -> tuple[str, list[dict]]:
        """Return (branch_used, tree_entries) for *ref*.

        Raises:
            CrawlFailed: On any non-2xx response (after the master fallback),
                a transport error, or a body that is not a JSON object.
        """
        url = f"{self.api_base}/repos/{ref.owner}/{ref.repo}/git/trees/{branch}"
        try:
            response = self._client.get(
                url,
                params={"recursive": "1"},
                headers={**self._auth_headers, "Accept": _ACCEPT_JSON},
            )
        except httpx.HTTPError as exc:
            raise CrawlFailed(f"{ref.full_name}@{branch}: {type(exc).__name__}: {exc}") from exc

        if response.status_code == 404 and branch == DEFAULT_BRANCH:
            logger.warning(
                "%s: branch '%s' not found, trying '%s'",
                ref.full_name,
                DEFAULT_BRANCH,
                FALLBACK_BRANCH,
            )
            return self.fetch_tree(ref, FALLBACK_BRANCH)

        if response.status_code != 200:
            raise CrawlFailed(
                f"{ref.full_name}@{branch}: tree request returned {response.status_code}",
                http_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise CrawlFailed(
                f"{ref.full_name}@{branch}: tree response is not JSON: {exc}",
                http_status=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise CrawlFailed(
                f"{ref.full_name}@{branch}: unexpected tree payload {type(body).__name__}",
                http_status=response.status_code,
            )
        return branch, body.get("tree") or []

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def fetch_file(self, entry: dict) -> FileRecord:
        """Fetch raw content for one tree entry.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx response.
        """
        response = self._client.get(
            entry["url"], headers={**self._auth_headers, "Accept": _ACCEPT_RAW}
        )
        response.raise_for_status()
        content = response.text
        path = entry["path"]
        return FileRecord(
            path=path,
            content=content,
            size=entry.get("size") or len(content),
            language=language_of(path),
        )

    def _fetch_outcome(self, entry: dict) -> Outcome[FileRecord]:
        path = entry.get("path", "?")
        try:
            return Outcome.success(path, self.fetch_file(entry))
        except (httpx.HTTPError, KeyError) as exc:
            logger.warning("Failed to fetch %s: %s", path, exc)
            return Outcome.error(path, exc)

    def fetch_files(self, entries: list[dict]) -> BatchSummary[FileRecord]:
        """Fetch *entries* concurrently; results keep the input order."""
        summary: BatchSummary[FileRecord] = BatchSummary()
        if not entries:
            return summary
        with ThreadPoolExecutor(max_workers=min(self.workers, len(entries))) as pool:
            for outcome in pool.map(self._fetch_outcome, entries):
                summary.add(outcome)
        return summary

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def crawl(self, repo_url: str) -> CrawlResult:
        """Crawl *repo_url* and return its eligible files with content.

        Raises:
            InvalidReference: If *repo_url* is not a GitHub repository URL.
            CrawlFailed: If the tree cannot be fetched.
        """
        ref = parse_repo_url(repo_url)
        logger.info("Crawling %s", ref.full_name)

        branch, tree = self.fetch_tree(ref)
        eligible = filter_tree(tree)
        selected = eligible[: self.max_files]
        logger.info(
            "%s: %d tree entries, %d eligible, fetching %d",
            ref.full_name,
            len(tree),
            len(eligible),
            len(selected),
        )

        files = self.fetch_files(selected)
        return CrawlResult(
            ref=ref,
            branch=branch,
            files=files,
            total_entries=len(tree),
            eligible=len(eligible),
        )

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def fetch_manifest(self, ref: RepoRef) -> ManifestResult:
        """Fetch and parse the first manifest file present in the repository.

        Never raises for remote or parse problems; the status field says
        which one happened.
        """
        for filename in MANIFEST_FILES:
            url = f"{self.api_base}/repos/{ref.owner}/{ref.repo}/contents/{filename}"
            try:
                response = self._client.get(
                    url, headers={**self._auth_headers, "Accept": _ACCEPT_RAW}
                )
            except httpx.HTTPError as exc:
                logger.warning("%s: fetching %s failed: %s", ref.full_name, filename, exc)
                return ManifestResult(
                    status=ManifestStatus.FETCH_FAILED, file=filename, detail=str(exc)
                )

            if response.status_code == 404:
                continue
            if response.status_code != 200:
                logger.warning(
                    "%s: fetching %s returned %d", ref.full_name, filename, response.status_code
                )
                return ManifestResult(
                    status=ManifestStatus.FETCH_FAILED,
                    file=filename,
                    detail=f"HTTP {response.status_code}",
                )

            try:
                stack = parse_manifest(filename, response.text)
            except ManifestParseError as exc:
                logger.warning("%s: %s", ref.full_name, exc)
                return ManifestResult(
                    status=ManifestStatus.PARSE_FAILED, file=filename, detail=str(exc)
                )
            return ManifestResult(status=ManifestStatus.FOUND, file=filename, stack=stack)

        return ManifestResult(
            status=ManifestStatus.MISSING,
            detail=f"none of {', '.join(MANIFEST_FILES)} found",
        )
