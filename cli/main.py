import asyncio
import io
import json
import time
import typer
from pathlib import Path
from typing import Optional
from firebase_admin import db
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from ordersync.config import load_settings
from ordersync.credentials import init_firebase
from ordersync.errors import OrderSyncError
from ordersync.oauth import build_flow, request_authorization
from ordersync.pipeline import append_order, parse_order
from ordersync.processor import rows_to_frame, split_order
from ordersync.sheets_client import build_row_appender

app = typer.Typer()
console = Console()


@app.command()
def process(
    order_path: str = typer.Option(..., "--order", "-o", help="Path to a JSON file holding one order record."),
    dry_run: bool = typer.Option(False, "--dry-run", "--shadow-mode", help="Split the order without writing to Google Sheets"),
    config_path: Optional[str] = typer.Option(None, "--config", help="Path to settings.json"),
):
    """
    Split one order into sheet rows and append them to Google Sheets.
    """
    if not Path(order_path).exists():
        console.print(f"[bold red]Error: File not found: {order_path}[/bold red]")
        raise typer.Exit(code=1)

    settings = load_settings(config_path)
    with open(order_path, 'r') as f:
        record = json.load(f)

    try:
        rows = split_order(parse_order(record), settings.timezone)
        console.print(f"Split order into {len(rows)} row(s).")

        if dry_run:
            console.print("[bold yellow]SHADOW MODE: Not updating Google Sheets[/bold yellow]")
            print_rows_table(rows)
            console.print("\n[bold]CSV Format (for verification):[/bold]")
            csv_buf = io.StringIO()
            rows_to_frame(rows).to_csv(csv_buf, index=False)
            console.print(csv_buf.getvalue(), soft_wrap=True)
            return

        console.print("[bold blue]Updating Google Sheets...[/bold blue]")
        appender = build_row_appender(settings)
        asyncio.run(appender.append_all(rows))
        console.print(f"[bold green]Appended {len(rows)} row(s)![/bold green]")
    except OrderSyncError as e:
        console.print(f"[bold red]Error: {escape(str(e))}[/bold red]")
        raise typer.Exit(code=1)


@app.command("auth-url")
def auth_url(config_path: Optional[str] = typer.Option(None, "--config", help="Path to settings.json")):
    """Print the consent URL used to authorize the app."""
    settings = load_settings(config_path)
    console.print(request_authorization(build_flow(settings)), soft_wrap=True)


@app.command()
def listen(config_path: Optional[str] = typer.Option(None, "--config", help="Path to settings.json")):
    """
    Watch the orders path in the Realtime Database and append every new record.
    """
    settings = load_settings(config_path)
    if not settings.database_url:
        console.print("[bold red]Error: database_url is not configured.[/bold red]")
        raise typer.Exit(code=1)

    init_firebase(settings.database_url)
    appender = build_row_appender(settings)
    handler = NewRecordHandler(appender, settings.timezone)
    registration = db.reference(settings.data_path).listen(handler)
    console.print(f"[bold green]Listening for new records under {settings.data_path}[/bold green]")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        registration.close()
        console.print("[yellow]Stopped listening.[/yellow]")


class NewRecordHandler:
    """
    Realtime Database listener callback.
    The first event is a snapshot of everything already under the path; those
    keys are remembered and skipped so only newly created children are appended.
    New children arrive either as a put at /<key> or, when several are written
    with one update(), as a patch at / keyed by child.
    """

    def __init__(self, appender, timezone: str = "UTC"):
        self.appender = appender
        self.timezone = timezone
        self.known_keys = None

    def __call__(self, event):
        if self.known_keys is None:
            self.known_keys = set((event.data or {}).keys()) if event.path == "/" else set()
            return

        for key, record in self.new_records(event):
            self.known_keys.add(key)
            self.append(key, record)

    def new_records(self, event) -> list[tuple]:
        path = event.path.strip("/")
        if event.event_type == "put" and path and "/" not in path:
            records = {path: event.data}
        elif event.event_type == "patch" and not path:
            records = event.data or {}
        else:
            # Whole-path replacement or an edit inside an existing record
            return []
        return [(key, record) for key, record in records.items()
                if record is not None and key not in self.known_keys]

    def append(self, key: str, record):
        # Exceptions must not leave the callback, or the listener thread stops for good
        try:
            asyncio.run(append_order(record, self.appender, timezone=self.timezone))
            console.print(f"[green]Appended order {key}[/green]")
        except OrderSyncError as e:
            console.print(f"[bold red]Failed to append order {key}: {escape(str(e))}[/bold red]")
        except Exception as e:
            console.print(f"[bold red]Unexpected error appending order {key}: {escape(repr(e))}[/bold red]")


def print_rows_table(rows: list[dict]):
    """Prints a rich table of the split rows."""
    df = rows_to_frame(rows)
    if df.empty:
        console.print("[yellow]No rows to display.[/yellow]")
        return

    table = Table(title=f"Order Rows ({len(df)})")
    # Skip columns that are blank for every row to keep the table readable
    columns = [col for col in df.columns if (df[col].astype(str) != "").any()]
    for col in columns:
        style = "cyan" if col in ("first", "last") else "white"
        table.add_column(col, style=style)

    for _, row in df.iterrows():
        table.add_row(*[str(row[col]) for col in columns])

    console.print(table)


if __name__ == "__main__":
    app()
