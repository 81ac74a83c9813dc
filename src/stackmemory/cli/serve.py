"""stackmemory serve: run the HTTP API with uvicorn."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn
from rich.console import Console

from stackmemory.api.server import create_app
from stackmemory.cli.common import load_cfg, require_api_key
from stackmemory.db.connection import Database
from stackmemory.db.schema import initialize
from stackmemory.log import configure_logging
from stackmemory.services import build_services

console = Console()


def serve_cmd(
    host: Annotated[str | None, typer.Option("--host", help="Bind address (default: from config).")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Port (default: from config).")] = None,
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Python log level.")] = "INFO",
) -> None:
    """Serve /api/chat, /api/search, /api/crawl and friends."""
    cfg = load_cfg(db)
    require_api_key(cfg.generation.model)
    require_api_key(cfg.embedding.model)

    # Migrate once up front so request handlers never race on schema creation.
    with Database(cfg.database.path) as conn:
        initialize(conn)

    configure_logging(log_level, rich_output=False)
    app = create_app(build_services(cfg, check_same_thread=False))

    bind_host = host or cfg.server.host
    bind_port = port or cfg.server.port
    console.print(f"[bold]StackMemory API[/] on http://{bind_host}:{bind_port}  (db {cfg.database.path})")
    uvicorn.run(app, host=bind_host, port=bind_port, log_level=log_level.lower())
