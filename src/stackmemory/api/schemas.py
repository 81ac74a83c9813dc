"""Pydantic request bodies for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from stackmemory.chat.orchestrator import ChatRequest


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatBody(_Body):
    """POST /api/chat. Field rules are enforced by ChatRequest.validate()."""

    project_id: str | None = Field(default=None, alias="projectId")
    query: str | None = None
    media: str | None = Field(default=None, description="data:<mime>;base64,<payload>")
    media_url: str | None = Field(default=None, alias="mediaUrl")

    def to_request(self) -> ChatRequest:
        return ChatRequest(
            project_id=self.project_id,
            query=self.query,
            media=self.media,
            media_url=self.media_url,
        )


class SearchBody(_Body):
    project_id: str = Field(..., alias="projectId", min_length=1)
    query: str = Field(..., min_length=1)


class CrawlBody(_Body):
    project_id: str = Field(..., alias="projectId", min_length=1)
    repo_url: str = Field(..., alias="repoUrl", min_length=1)
    github_token: str | None = Field(default=None, alias="githubToken")


class InsightBody(_Body):
    project_id: str = Field(..., alias="projectId", min_length=1)
