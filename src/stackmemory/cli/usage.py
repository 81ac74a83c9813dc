"""stackmemory usage: a user's tier, monthly counters and token costs."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackmemory.access.gate import UsageGate
from stackmemory.access.usage import UsageLedger
from stackmemory.cli.common import load_cfg, open_repo, require_user

console = Console()


def usage_cmd(
    user_id: Annotated[str, typer.Argument(help="User id.")],
    db: Annotated[Path | None, typer.Option("--db", help="Path to the database.")] = None,
) -> None:
    """Show tier, this month's feature counters and token cost totals."""
    cfg = load_cfg(db)
    repo = open_repo(cfg.database.path)
    try:
        user = require_user(repo, user_id)
        ledger = UsageLedger(repo)
        gate = UsageGate(repo, ledger)
        elevated = gate.is_elevated(user)
        counters = gate.usage(user)
        month = ledger.totals(user_id=user_id, this_month=True)
        summary = ledger.cost_summary(user_id=user_id)
    finally:
        repo.conn.close()

    plan = f"Tier: [bold]{user.tier}[/]"
    if user.pro_trial_ends_at:
        plan += f"  (trial until {user.pro_trial_ends_at})"
    plan += "  |  Pro features: " + ("[green]✓[/]" if elevated else "[dim]✗[/]")

    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Feature")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    for name, u in counters.items():
        style = "red" if u.remaining == 0 else ""
        table.add_row(name, f"[{style}]{u.current}[/]" if style else str(u.current), str(u.limit))

    console.print(Panel(plan, title=f"[bold]{user.email or user.id}[/]", expand=False))
    console.print(Panel(table, title="[bold]This month[/]", expand=False))

    if not summary["actions"]:
        console.print("[dim]No usage recorded yet.[/]")
        return

    costs = Table(show_header=True, header_style="bold")
    costs.add_column("Action")
    costs.add_column("Events (month)", justify="right")
    costs.add_column("Events (all)", justify="right")
    costs.add_column("Tokens in", justify="right")
    costs.add_column("Tokens out", justify="right")
    costs.add_column("Cost (USD)", justify="right")
    monthly = {row["action"]: row["events"] for row in month}
    for row in summary["actions"]:
        costs.add_row(
            row["action"],
            str(monthly.get(row["action"], 0)),
            str(row["events"]),
            f"{row['input_tokens']:,}",
            f"{row['output_tokens']:,}",
            f"${row['cost']:.4f}",
        )
    costs.add_row("[bold]total[/]", "", "", f"{summary['input_tokens']:,}", f"{summary['output_tokens']:,}",
                  f"[bold]${summary['cost']:.4f}[/]")
    console.print(costs)
