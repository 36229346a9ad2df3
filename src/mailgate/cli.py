"""Command-line interface for mailgate."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from mailgate import __version__
from mailgate.config import Settings, load_rules, load_settings
from mailgate.maildb import MailDBClient, MailDBError
from mailgate.models import MailStatus, Rule
from mailgate.processors.rules import describe_action, describe_match
from mailgate.service import DryRunHandler, MailDispatcher
from mailgate.utils.message import parse_email

app = typer.Typer(
    name="mailgate",
    help="Rule-driven mail routing: decide whether to drop, forward or hand off each message.",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"mailgate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", help="Enable debug logging")] = False,
) -> None:
    """Rule-driven mail routing."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_rules_or_exit(settings: Settings, rules_path: Path | None) -> list[Rule]:
    path = rules_path or settings.rules_path
    if path is None or not path.exists():
        console.print(f"[red]Rules file not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        return load_rules(path)
    except Exception as e:
        console.print(f"[red]Could not load rules from {path}: {e}[/red]")
        raise typer.Exit(1)


# ─── Rule Commands ──────────────────────────────────────────────────────────


rules_app = typer.Typer(help="Inspect and test routing rules", no_args_is_help=True)
app.add_typer(rules_app, name="rules")


@rules_app.command("show")
def rules_show(
    rules_path: Annotated[Path | None, typer.Option("--rules", "-r", help="Rules file")] = None,
) -> None:
    """List rules in evaluation order."""
    settings = load_settings()
    rules = _load_rules_or_exit(settings, rules_path)

    table = Table(title="Routing Rules")
    table.add_column("#", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Matches")
    table.add_column("Actions", style="green")

    for i, rule in enumerate(rules, 1):
        table.add_row(
            str(i),
            rule.id or "-",
            "\n".join(describe_match(m) for m in rule.matches) or "always",
            "\n".join(describe_action(a) for a in rule.actions) or "-",
        )

    if table.row_count == 0:
        console.print("[yellow]No rules configured; every message is dropped.[/yellow]")
    else:
        console.print(table)


@rules_app.command("check")
def rules_check(
    message: Annotated[Path, typer.Argument(help="Raw message file (RFC 5322)")],
    rules_path: Annotated[Path | None, typer.Option("--rules", "-r", help="Rules file")] = None,
    mail_from: Annotated[str | None, typer.Option("--from", help="Envelope sender")] = None,
    rcpt_to: Annotated[
        list[str] | None, typer.Option("--to", help="Envelope recipient (repeatable)")
    ] = None,
) -> None:
    """Show which rule a message selects and the actions it would trigger.

    Nothing is sent or dropped.
    """
    settings = load_settings()
    rules = _load_rules_or_exit(settings, rules_path)

    if not message.exists():
        console.print(f"[red]Message file not found: {message}[/red]")
        raise typer.Exit(1)

    email = parse_email(message.read_bytes(), mail_from=mail_from, rcpt_to=rcpt_to or None)
    dispatcher = MailDispatcher(rules, DryRunHandler(), send_timeout=settings.send_timeout)
    decision = asyncio.run(dispatcher.process(email))

    if decision.error:
        console.print(f"[red]Rule evaluation failed: {decision.error}[/red]")
        raise typer.Exit(1)

    if decision.rule_id is None:
        console.print("[yellow]No rule matched.[/yellow]")
    else:
        console.print(f"Matched rule: [cyan]{decision.rule_id or '(no id)'}[/cyan]")

    table = Table(title="Actions")
    table.add_column("#", style="dim")
    table.add_column("Channel", style="cyan")
    table.add_column("Details")
    for i, event in enumerate(decision.events, 1):
        if event.channel == "send":
            details = f"forward to {event.to}"
        elif event.channel == "drop":
            details = "dropped by rule" if event.dropped_by_rule else "dropped by default"
        else:
            details = "accepted for webhook"
        table.add_row(str(i), event.channel, details)
    console.print(table)


# ─── Mail Database Commands ─────────────────────────────────────────────────


maildb_app = typer.Typer(help="Report message status to the mail database", no_args_is_help=True)
app.add_typer(maildb_app, name="maildb")


def _run_maildb(settings: Settings, call) -> None:
    if not settings.maildb.token:
        console.print("[red]No mail database token configured.[/red]")
        console.print("Set MAILGATE_MAILDB__TOKEN or maildb.token in config.yaml")
        raise typer.Exit(1)

    async def _run() -> None:
        async with MailDBClient.from_config(settings.maildb) as client:
            await call(client)

    try:
        asyncio.run(_run())
    except MailDBError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


@maildb_app.command("new")
def maildb_new(
    domain: Annotated[str, typer.Argument(help="Mail domain")],
    message_id: Annotated[str, typer.Argument(help="Message ID")],
) -> None:
    """Register a new message."""
    settings = load_settings()
    _run_maildb(settings, lambda client: client.new(domain, message_id))
    console.print(f"[green]Registered {message_id}[/green]")


@maildb_app.command("status")
def maildb_status(
    domain: Annotated[str, typer.Argument(help="Mail domain")],
    message_id: Annotated[str, typer.Argument(help="Message ID")],
    status: Annotated[str, typer.Argument(help="Status name (e.g. forwarded) or number")],
) -> None:
    """Update the lifecycle status of a message."""
    try:
        value = int(status) if status.isdigit() else int(MailStatus[status.upper()])
    except KeyError:
        names = ", ".join(s.name.lower() for s in MailStatus)
        console.print(f"[red]Unknown status '{status}'. Use a number or one of: {names}[/red]")
        raise typer.Exit(1)

    settings = load_settings()
    _run_maildb(settings, lambda client: client.update_status(domain, message_id, value))
    console.print(f"[green]Updated {message_id} status to {value}[/green]")


@maildb_app.command("set")
def maildb_set(
    domain: Annotated[str, typer.Argument(help="Mail domain")],
    message_id: Annotated[str, typer.Argument(help="Message ID")],
    field: Annotated[str, typer.Argument(help="Field name")],
    value: Annotated[str, typer.Argument(help="Field value")],
) -> None:
    """Set a field on a message."""
    settings = load_settings()
    _run_maildb(settings, lambda client: client.set_field(domain, message_id, field, value))
    console.print(f"[green]Set {field} on {message_id}[/green]")


if __name__ == "__main__":
    app()
