"""Repository crawling: tree fetch, eligibility filter, content + manifest fetch."""

from stackmemory.crawler.filters import filter_tree, is_eligible
from stackmemory.crawler.github import (
    CrawlResult,
    FileRecord,
    GitHubCrawler,
    RepoRef,
    parse_repo_url,
)
from stackmemory.crawler.manifest import ManifestResult, ManifestStatus, merge_stack

__all__ = [
    "CrawlResult",
    "FileRecord",
    "GitHubCrawler",
    "ManifestResult",
    "ManifestStatus",
    "RepoRef",
    "filter_tree",
    "is_eligible",
    "merge_stack",
    "parse_repo_url",
]
