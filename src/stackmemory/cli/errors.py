"""StackMemory rich error messages.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from stackmemory.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("gemini"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_ENV_MAP = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "azure": "AZURE_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'gemini'. Set:  export GEMINI_API_KEY=...
    """
    env_var = _ENV_MAP.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str = ".stackmemory.db") -> str:
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  stackmemory init"
    )


def err_config(detail: str) -> str:
    return f"[red]Config error:[/] {detail}"


def err_user_not_found(user_id: str) -> str:
    return (
        f"[red]Error:[/] No user '{user_id}'.\n"
        "  Run:  stackmemory admin add-user <email>"
    )


def err_project_not_found(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{project_id}' not found for this user.\n"
        "  Run:  stackmemory admin list-projects"
    )


def err_no_repo_url(project_id: str) -> str:
    return (
        f"[red]Error:[/] Project '{project_id}' has no repository URL.\n"
        f"  Run:  stackmemory sync {project_id} --repo https://github.com/<owner>/<repo>"
    )


def err_forbidden(message: str) -> str:
    """Tier or quota refusal; *message* already carries the upgrade hint."""
    return (
        f"[yellow]Not available:[/] {message}\n"
        "  Check your counters with:  stackmemory usage"
    )


def err_not_authenticated() -> str:
    return (
        "[red]Error:[/] The server rejected the request (401).\n"
        "  Create a token:  stackmemory admin issue-token <user-id>\n"
        "  Then:            export STACKMEMORY_TOKEN=<token>"
    )


def err_server_unreachable(url: str, detail: str) -> str:
    return (
        f"[red]Error:[/] Cannot reach StackMemory server at {url} ({detail}).\n"
        "  Start it with:  stackmemory serve"
    )


def err_server_response(status: int, message: str) -> str:
    return f"[red]Error {status}:[/] {message}"


def err_pipeline(message: str, detail: str) -> str:
    """Any other StackMemoryError: user message plus operator detail (dimmed)."""
    return f"[red]Error:[/] {message}\n  [dim]{detail}[/]"


def warn_manifest(status: str, detail: str) -> str:
    """Sync succeeded but the stack manifest could not be used."""
    if status == "missing":
        hint = "Add a package.json or requirements.txt at the repository root to detect the stack."
    else:
        hint = "Fix the manifest and run sync again to refresh the stack."
    return (
        f"[yellow]⚠[/] Stack manifest {status.replace('_', ' ')}"
        + (f": {detail}" if detail else "")
        + f"\n  {hint}"
    )
