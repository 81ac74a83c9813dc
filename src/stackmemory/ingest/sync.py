"""Project sync: crawl a repository, index its files, refresh the tech stack.

``sync_project`` never raises for crawl problems. It returns a SyncResult
whose ``status`` / ``reason`` say what happened, so HTTP and CLI callers can
tell "repository not found" from "bad URL" from other fetch errors.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from stackmemory.crawler.github import FileRecord, GitHubCrawler
from stackmemory.crawler.manifest import ManifestResult, ManifestStatus, merge_stack
from stackmemory.db.models import StackItem
from stackmemory.db.repository import Repository
from stackmemory.errors import CrawlFailed, InvalidReference, ProjectNotFound
from stackmemory.ingest.indexer import Indexer, IndexSummary
from stackmemory.results import UnitFailure

logger = logging.getLogger(__name__)


class SyncStatus(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass
class SyncResult:
    status: SyncStatus
    reason: str | None = None
    message: str = ""
    files_found: int = 0
    chunks_stored: int = 0
    failed: list[UnitFailure] = field(default_factory=list)
    manifest: ManifestResult | None = None
    stack: list[StackItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "filesFound": self.files_found,
            "chunksStored": self.chunks_stored,
            "failed": [f.to_dict() for f in self.failed],
            "manifest": self.manifest.to_dict() if self.manifest else None,
            "stack": [item.to_dict() for item in self.stack],
        }


def sync_project(
    project_id: str,
    repo_url: str,
    *,
    repo: Repository,
    crawler: GitHubCrawler,
    indexer: Indexer,
    on_file: Callable[[FileRecord], None] | None = None,
) -> SyncResult:
    """Crawl *repo_url* and (re)index it into *project_id*.

    Args:
        project_id: Target project; must exist.
        repo_url: GitHub repository URL.
        repo: Open repository.
        crawler: Configured crawler (token, limits).
        indexer: Indexer bound to the same repository.
        on_file: Progress callback passed to the indexer.

    Returns:
        SyncResult. ``status`` is ``ok`` even when some files failed; see
        ``failed`` and ``manifest`` for partial problems.

    Raises:
        ProjectNotFound: If *project_id* does not exist.
        StoreUnavailable: If the store cannot be reached.
    """
    project = repo.get_project(project_id)
    if project is None:
        raise ProjectNotFound(f"project '{project_id}' does not exist")

    try:
        crawl = crawler.crawl(repo_url)
    except InvalidReference as exc:
        logger.info("Sync %s rejected: %s", project_id, exc)
        return SyncResult(
            status=SyncStatus.ERROR, reason="invalid_reference", message=exc.user_message
        )
    except CrawlFailed as exc:
        logger.warning("Sync %s crawl failed: %s", project_id, exc)
        if exc.not_found:
            return SyncResult(
                status=SyncStatus.NOT_FOUND,
                reason="repository_not_found",
                message="Repository not found or not accessible with this token",
            )
        return SyncResult(status=SyncStatus.ERROR, reason="fetch_failed", message=exc.user_message)

    files = crawl.files.succeeded
    summary: IndexSummary = indexer.index_files(
        project_id, files, user_id=project.owner_id, on_file=on_file
    )

    manifest = crawler.fetch_manifest(crawl.ref)
    stack = project.stack
    if manifest.status is ManifestStatus.FOUND:
        stack = merge_stack(project.stack, manifest.stack)
        repo.update_stack(project_id, stack)
    else:
        logger.info("Sync %s: manifest %s (%s)", project_id, manifest.status.value, manifest.detail)

    if project.repo_url != repo_url:
        repo.update_repo_url(project_id, repo_url)
    repo.mark_synced(project_id)

    return SyncResult(
        status=SyncStatus.OK,
        message=f"Indexed {summary.chunks_stored} chunks from {summary.files_indexed} files",
        files_found=len(files),
        chunks_stored=summary.chunks_stored,
        failed=crawl.files.failed + summary.failed,
        manifest=manifest,
        stack=stack,
    )


def sync_status(repo: Repository, project_id: str) -> str | None:
    """Timestamp of the newest stored chunk for *project_id*, or None if never indexed."""
    return repo.last_indexed_at(project_id)
