"""FastAPI server for StackMemory.

Every request opens its own SQLite connection. Non-streaming endpoints are
plain ``def`` handlers (FastAPI runs them in the threadpool) and close their
connection on return. /api/chat keeps its connection open until the stream
relay finishes or the client goes away.
"""

from __future__ import annotations

import importlib.metadata
import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from stackmemory.access.auth import SESSION_COOKIE, Credentials, Identity
from stackmemory.api.schemas import ChatBody, CrawlBody, InsightBody, SearchBody
from stackmemory.chat.protocol import (
    PLAIN_MEDIA_TYPE,
    SSE_MEDIA_TYPE,
    ChatEvent,
    encode_plain,
    encode_sse,
    sse_done,
)
from stackmemory.config import load_config
from stackmemory.db.models import Project
from stackmemory.db.repository import Repository
from stackmemory.errors import ProjectNotFound, StackMemoryError
from stackmemory.ingest.sync import SyncStatus, sync_project, sync_status
from stackmemory.rag.retriever import retrieve
from stackmemory.services import Services, build_services

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return importlib.metadata.version("stackmemory")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _credentials(request: Request) -> Credentials:
    return Credentials.from_headers(
        request.cookies.get(SESSION_COOKIE), request.headers.get("authorization")
    )


def _owned_project(repo: Repository, project_id: str, identity: Identity) -> Project:
    project = repo.get_project(project_id)
    if project is None or project.owner_id != identity.user_id:
        raise ProjectNotFound(f"project '{project_id}' not visible to {identity.user_id}")
    return project


def _wants_sse(request: Request) -> bool:
    return SSE_MEDIA_TYPE in request.headers.get("accept", "")


async def _relay(
    request: Request, events: Iterator[ChatEvent], repo: Repository, sse: bool
) -> AsyncIterator[str]:
    """Pull chat events one at a time off the event loop and encode them.

    Closing *events* early (client gone) cancels the upstream generation.
    """
    encode = encode_sse if sse else encode_plain
    finished = False
    try:
        while True:
            if await request.is_disconnected():
                logger.info("Client disconnected from %s", request.url.path)
                break
            event = await run_in_threadpool(next, events, None)
            if event is None:
                finished = True
                break
            chunk = encode(event)
            if chunk:
                yield chunk
        if finished and sse:
            yield sse_done()
    finally:
        events.close()
        repo.conn.close()


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        services: Pre-built services (tests). When None, configuration is
            loaded from the working directory at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(load_config(), check_same_thread=False)
        logger.info("Starting StackMemory API (db %s)", app.state.services.config.database.path)
        yield
        logger.info("Shutting down StackMemory API")

    app = FastAPI(
        title="StackMemory API",
        description="Questions about a code project, answered from its indexed source",
        version=_version(),
        lifespan=lifespan,
    )
    app.state.services = services

    def _services(request: Request) -> Services:
        return request.app.state.services

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @app.exception_handler(StackMemoryError)
    async def _pipeline_error(request: Request, exc: StackMemoryError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "%s %s -> %d %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            type(exc).__name__,
            exc,
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else ""
        message = f"Invalid or missing field: {field}" if field else "Invalid request body"
        logger.info("%s %s -> 400: %s", request.method, request.url.path, errors)
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    @app.post("/api/chat")
    async def chat(body: ChatBody, request: Request):
        """Stream an answer grounded in the project's indexed files.

        Plain text by default, with a ``__SOURCES__`` trailer; SSE when the
        client accepts ``text/event-stream``.
        """
        services = _services(request)
        repo = await run_in_threadpool(services.open_repository)
        try:
            orchestrator = services.chat(repo)
            turn = await run_in_threadpool(orchestrator.prepare, body.to_request(), _credentials(request))
        except BaseException:
            repo.conn.close()
            raise

        sse = _wants_sse(request)
        return StreamingResponse(
            _relay(request, orchestrator.stream(turn), repo, sse),
            media_type=SSE_MEDIA_TYPE if sse else PLAIN_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/search")
    def search(body: SearchBody, request: Request) -> dict:
        """Raw similarity search (elevated tiers only)."""
        services = _services(request)
        with services.session() as repo:
            identity = services.authenticator(repo).require(_credentials(request))
            project = _owned_project(repo, body.project_id, identity)
            gate = services.gate(repo)
            gate.require(gate.profile(identity.user_id), "search")
            matches = retrieve(project.id, body.query, repo, services.embedder, services.retrieval)
            return {"success": True, "results": [m.to_dict() for m in matches]}

    @app.post("/api/crawl")
    def crawl(body: CrawlBody, request: Request) -> dict:
        """Crawl a GitHub repository into the project and refresh its stack."""
        services = _services(request)
        with services.session() as repo:
            identity = services.authenticator(repo).require(_credentials(request))
            _owned_project(repo, body.project_id, identity)
            with services.crawler(body.github_token) as crawler:
                result = sync_project(
                    body.project_id,
                    body.repo_url,
                    repo=repo,
                    crawler=crawler,
                    indexer=services.indexer(repo),
                )
            return {"success": result.status is SyncStatus.OK, **result.to_dict()}

    @app.get("/api/projects/{project_id}/sync-status")
    def project_sync_status(project_id: str, request: Request) -> dict:
        services = _services(request)
        with services.session() as repo:
            identity = services.authenticator(repo).require(_credentials(request))
            _owned_project(repo, project_id, identity)
            return {"success": True, "lastSynced": sync_status(repo, project_id)}

    @app.get("/api/usage")
    def usage(request: Request) -> dict:
        """Tier and this month's counters per metered feature."""
        services = _services(request)
        with services.session() as repo:
            identity = services.authenticator(repo).require(_credentials(request))
            gate = services.gate(repo)
            profile = gate.profile(identity.user_id)
            return {
                "success": True,
                "tier": profile.tier,
                "elevated": gate.is_elevated(profile),
                "usage": {name: u.to_dict() for name, u in gate.usage(profile).items()},
            }

    @app.post("/api/insight")
    def insight(body: InsightBody, request: Request) -> dict:
        services = _services(request)
        with services.session() as repo:
            identity = services.authenticator(repo).require(_credentials(request))
            report = services.insight(repo).report(identity.user_id, body.project_id)
            return {"success": True, "report": report}

    return app
