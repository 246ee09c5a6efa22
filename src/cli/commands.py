"""CLI command implementations."""

from __future__ import annotations

import logging
import sys
from datetime import timedelta

import click
import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from src.api.app import create_app
from src.cli.preview import html_to_preview
from src.config.settings import AppSettings
from src.mail.imap_client import AuthenticationError, MailboxError
from src.retrieval.handler import ConfigurationError, EmailRetriever, ValidationError
from src.retrieval.types import RetrievalResult, SearchRequest

logger = logging.getLogger(__name__)
console = Console(width=200)


@click.command()
@click.option("--host", default="127.0.0.1", show_default=True, help="Interface to bind.")
@click.option("--port", default=8000, show_default=True, type=int, help="Port to listen on.")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes (development).")
@click.pass_obj
def serve(settings: AppSettings, host: str, port: int, reload: bool) -> None:
    """Run the HTTP API under uvicorn."""
    console.print(
        f"Serving on [bold]http://{host}:{port}[/bold] "
        f"with {len(settings.accounts)} configured account(s)"
    )
    if reload:
        # Reload needs an import string; the factory re-reads the environment
        uvicorn.run(
            "src.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level=settings.log_level.lower(),
        )
        return
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


@click.command()
@click.argument("search")
@click.option("--user", default=None, help="Account to search. Defaults to the first configured.")
@click.option(
    "--window-minutes",
    default=None,
    type=click.FloatRange(min=0, min_open=True),
    help="Recency window in minutes. Defaults to SEARCH_WINDOW_MINUTES.",
)
@click.option("--strict", is_flag=True, help="Drop matches older than the exact window.")
@click.option("--all-accounts", is_flag=True, help="Try every configured account in order.")
@click.option("--html", "show_html", is_flag=True, help="Print raw markup instead of a text preview.")
@click.pass_obj
def fetch(
    settings: AppSettings,
    search: str,
    user: str | None,
    window_minutes: float | None,
    strict: bool,
    all_accounts: bool,
    show_html: bool,
) -> None:
    """Print the newest email matching SEARCH."""
    window = (
        timedelta(minutes=window_minutes) if window_minutes is not None else settings.search_window
    )
    strict = strict or settings.strict_recency
    retriever = EmailRetriever.from_settings(settings)

    try:
        if all_accounts:
            result = retriever.retrieve_any(search, window, strict)
        else:
            default = settings.accounts.default
            account = user or (default.account if default else "")
            if not account:
                raise ConfigurationError(
                    "No mailbox accounts configured. Set EMAIL_1 and APP_PASSWORD_1."
                )
            result = retriever.retrieve(SearchRequest(account, search, window, strict))
    except (ValidationError, ConfigurationError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        sys.exit(2)
    except AuthenticationError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        sys.exit(1)
    except MailboxError as exc:
        console.print(f"[red]Mailbox error: {escape(str(exc))}[/red]")
        sys.exit(1)

    _print_result(result, show_html)


def _print_result(result: RetrievalResult, show_html: bool) -> None:
    if result.email is None:
        console.print(f"[yellow]{escape(result.message or '')}[/yellow]")
        return

    email = result.email
    header = Table.grid(padding=(0, 2))
    header.add_column(style="dim")
    header.add_column()
    header.add_row("From", Text(email.sender or "(unknown)"))
    header.add_row("Subject", Text(email.subject or "(no subject)"))
    header.add_row("Date", email.date.isoformat() if email.date else "(unknown)")
    console.print(header)

    body = email.html if show_html else html_to_preview(email.html)
    console.print(Panel(Text(body or "(no visible text)"), border_style="blue"))
