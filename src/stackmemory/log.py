"""Logging setup for the CLI and the HTTP server.

Modules log through ``logging.getLogger(__name__)``; this module only decides
where records go. The CLI renders them with rich, the server writes plain lines
that interleave cleanly with uvicorn's access log.
"""

from __future__ import annotations

import logging

import litellm
from rich.console import Console
from rich.logging import RichHandler

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "WARNING", *, rich_output: bool = True) -> None:
    """Install a single root handler at *level*.

    Args:
        level: Logging level name or number.
        rich_output: Use a stderr RichHandler (CLI) instead of a plain
            StreamHandler (server).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    if rich_output:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # LiteLLM logs full request payloads at INFO; keep it at WARNING regardless.
    litellm.suppress_debug_info = True
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
