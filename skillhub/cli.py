"""Operator commands for a SkillHub aggregate store.

Commands:
- init-db: Create tables and indexes
- status: Settings in effect plus row counts per table
- reconcile: Rebuild last-message previews and membership back-references
- notifications: Show a user's notifications, newest first
- unread: Print a user's unread count
- metrics: Dump the Prometheus registry

Example:
    $ skillhub init-db -d ./data/skillhub.db
    $ skillhub notifications u1 --unread
"""

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from skillhub.config import settings
from skillhub.core import SkillHub
from skillhub.logging import setup_logging
from skillhub.metrics import generate_metrics_output
from skillhub.store import AggregateStore

app = typer.Typer(
    name="skillhub",
    help="SkillHub interaction and notification core",
    add_completion=False,
)
console = Console()


def database_option() -> Any:
    return typer.Option(
        None,
        "--database",
        "-d",
        help="SQLite file to operate on (defaults to DATABASE_PATH)",
    )


def verbose_option() -> Any:
    return typer.Option(False, "--verbose", "-v", help="Show DEBUG logs on stderr")


def configure_cli_logging(verbose: bool) -> None:
    # Keep stdout for command output.
    setup_logging(
        level="DEBUG" if verbose else "WARNING",
        json_logs=settings.log_json,
        stream=sys.stderr,
    )


@contextmanager
def open_hub(database: Optional[Path], failure: str) -> Iterator[SkillHub]:
    """Yield an initialized hub; any error prints ``failure`` and exits 1."""
    try:
        with SkillHub(store=AggregateStore(database or settings.database_path)) as hub:
            yield hub
    except Exception as e:
        console.print(f"\n❌ [bold red]{failure}: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db(
    database: Optional[Path] = database_option(),
    verbose: bool = verbose_option(),
) -> None:
    """Create the store schema; existing rows are left alone.

    Examples:
        $ skillhub init-db
        $ skillhub init-db --database ./tmp/skillhub.db
    """
    configure_cli_logging(verbose)
    console.print("🏗️  [bold cyan]SkillHub Initialization[/bold cyan]\n")

    with open_hub(database, "Initialization failed") as hub:
        console.print(f"✅ Database ready at [yellow]{hub.store.database_path}[/yellow]")


@app.command()
def status(
    database: Optional[Path] = database_option(),
    verbose: bool = verbose_option(),
) -> None:
    """Print the active settings and how many rows each table holds."""
    configure_cli_logging(verbose)
    console.print("📊 [bold cyan]SkillHub Status[/bold cyan]\n")

    with open_hub(database, "Status failed") as hub:
        settings_table = Table(title="Configuration", show_header=False)
        settings_table.add_column("Key", style="cyan")
        settings_table.add_column("Value", style="yellow")
        for key, value in (
            ("Environment", settings.environment.value),
            ("Database Path", str(hub.store.database_path)),
            ("Preview Length", str(settings.preview_length)),
            ("CAS Attempts", str(settings.cas_max_attempts)),
        ):
            settings_table.add_row(key, value)

        counts_table = Table(title="Entity Counts")
        counts_table.add_column("Table", style="cyan")
        counts_table.add_column("Rows", justify="right", style="green")
        for table_name, count in hub.store.entity_counts().items():
            counts_table.add_row(table_name, f"{count:,}")

    console.print(settings_table)
    console.print()
    console.print(counts_table)


@app.command()
def reconcile(
    database: Optional[Path] = database_option(),
    verbose: bool = verbose_option(),
) -> None:
    """Repair derived community data.

    Needed after a crash between a message insert and its preview update,
    or after membership rows were written outside the join transaction.
    """
    configure_cli_logging(verbose)
    console.print("🔧 [bold cyan]SkillHub Reconcile[/bold cyan]\n")

    with open_hub(database, "Reconcile failed") as hub:
        communities = hub.store.list_communities()
        for community in communities:
            hub.communities.reconcile_last_message(community.id)
        repaired = hub.communities.reconcile_memberships()

    console.print(f"💬 Previews checked: [yellow]{len(communities)}[/yellow]")
    console.print(f"👥 Membership records repaired: [yellow]{repaired}[/yellow]")
    console.print("\n✅ [bold green]Reconcile complete![/bold green]")


@app.command()
def notifications(
    user_id: str = typer.Argument(..., help="Recipient user ID"),
    unread: bool = typer.Option(False, "--unread", "-u", help="Skip notifications already read"),
    database: Optional[Path] = database_option(),
    verbose: bool = verbose_option(),
) -> None:
    """List a user's notifications, newest first.

    Examples:
        $ skillhub notifications u1 --unread
    """
    configure_cli_logging(verbose)

    with open_hub(database, "Listing failed") as hub:
        items = hub.notifications.list_notifications(user_id, unread_only=unread)

    if not items:
        console.print(f"📭 No notifications for [yellow]{user_id}[/yellow]")
        return

    table = Table(title=f"Notifications for {user_id}")
    table.add_column("Created", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Content")
    table.add_column("Read", justify="center")
    for item in items:
        table.add_row(
            item.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            item.type.value,
            item.content,
            "✓" if item.read else "",
        )
    console.print(table)


@app.command()
def unread(
    user_id: str = typer.Argument(..., help="Recipient user ID"),
    database: Optional[Path] = database_option(),
    verbose: bool = verbose_option(),
) -> None:
    """Print how many of a user's notifications are unread."""
    configure_cli_logging(verbose)

    with open_hub(database, "Count failed") as hub:
        count = hub.notifications.get_unread_count(user_id)

    console.print(str(count))


@app.command()
def metrics() -> None:
    """Write the Prometheus text exposition to stdout."""
    sys.stdout.write(generate_metrics_output().decode("utf-8"))


if __name__ == "__main__":
    app()
