"""stackmemory ask: stream an answer from a running StackMemory server.

Posts to /api/chat with a bearer token and writes each chunk to stdout as it
arrives. The ``__SOURCES__`` trailer is held back and rendered as a table.
"""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import Annotated

import httpx
import typer
from rich.console import Console
from rich.table import Table

from stackmemory.chat.protocol import SOURCES_SENTINEL, split_sources
from stackmemory.cli.common import fail, load_cfg
from stackmemory.cli.errors import err_not_authenticated, err_server_response, err_server_unreachable

console = Console()


class TrailerFilter:
    """Passes answer text through and holds back the sources trailer.

    A chunk boundary can fall inside the sentinel, so the last
    ``len(SOURCES_SENTINEL) - 1`` characters are held until more text arrives.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._in_trailer = False

    def feed(self, chunk: str) -> str:
        if self._in_trailer:
            return ""
        self._pending += chunk
        idx = self._pending.find(SOURCES_SENTINEL)
        if idx >= 0:
            out = self._pending[:idx]
            self._pending = ""
            self._in_trailer = True
            return out
        hold = len(SOURCES_SENTINEL) - 1
        if len(self._pending) <= hold:
            return ""
        out, self._pending = self._pending[:-hold], self._pending[-hold:]
        return out

    def flush(self) -> str:
        out, self._pending = self._pending, ""
        return out


def _data_uri(path: Path) -> str:
    mime = mimetypes.guess_type(path.name)[0]
    if mime is None or not mime.startswith(("image/", "video/")):
        fail(f"[red]Error:[/] '{path}' is not an image or video file.")
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{payload}"


def ask_cmd(
    project_id: Annotated[str, typer.Argument(help="Project to ask about.")],
    query: Annotated[str | None, typer.Argument(help="Your question.")] = None,
    media: Annotated[
        Path | None,
        typer.Option("--media", exists=True, dir_okay=False, help="Attach a local image or video."),
    ] = None,
    media_url: Annotated[str | None, typer.Option("--media-url", help="Attach a remote image or video.")] = None,
    server: Annotated[
        str | None,
        typer.Option("--server", envvar="STACKMEMORY_SERVER", help="Server URL (default: from config)."),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", envvar="STACKMEMORY_TOKEN", help="API token (default: $STACKMEMORY_TOKEN)."),
    ] = None,
    show_sources: Annotated[bool, typer.Option("--sources/--no-sources", help="Show cited files.")] = True,
) -> None:
    """Ask a question about a project and stream the answer."""
    if not token:
        fail(err_not_authenticated())
    if not query and media is None and not media_url:
        fail("[red]Error:[/] Provide a question, --media or --media-url.")

    cfg = load_cfg()
    base_url = (server or f"http://{cfg.server.host}:{cfg.server.port}").rstrip("/")
    body: dict = {"projectId": project_id, "query": query}
    if media is not None:
        body["media"] = _data_uri(media)
    if media_url:
        body["mediaUrl"] = media_url

    received: list[str] = []
    trailer = TrailerFilter()
    try:
        with httpx.stream(
            "POST",
            f"{base_url}/api/chat",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=httpx.Timeout(10.0, read=300.0),
        ) as response:
            if response.status_code != 200:
                response.read()
                _fail_response(response)
            for chunk in response.iter_text():
                received.append(chunk)
                typer.echo(trailer.feed(chunk), nl=False)
    except httpx.HTTPError as exc:
        fail(err_server_unreachable(base_url, type(exc).__name__))
    typer.echo(trailer.flush())

    _, sources = split_sources("".join(received))
    if show_sources and sources:
        table = Table(title="Sources", show_header=True, header_style="bold")
        table.add_column("File", style="bold")
        table.add_column("Chunk", justify="right")
        table.add_column("Similarity", justify="right")
        for source in sources:
            table.add_row(
                str(source.get("file_path", "?")),
                str(source.get("chunk_index", 0)),
                f"{float(source.get('similarity', 0.0)):.2f}",
            )
        console.print(table)


def _fail_response(response: httpx.Response) -> None:
    if response.status_code == 401:
        fail(err_not_authenticated())
    try:
        message = response.json().get("error", response.text)
    except ValueError:
        message = response.text
    fail(err_server_response(response.status_code, message))
