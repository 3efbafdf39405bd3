"""persistream CLI: Typer + Rich terminal interface.

Commands: serve, create, show, list, export, delete, clear, sweep,
watch, config.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from persistream import __version__
from persistream.schemas.config import StreamingConfig
from persistream.schemas.stream import StreamBody, StreamStatus
from persistream.settings import default_config_path, load_config

console = Console()

app = typer.Typer(
    name="persistream",
    help="Live text streaming with a durable ledger.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Set by the --config option of the app callback
_config_path: Path | None = None


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"persistream {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config: Path = typer.Option(
        None, "--config", "-c",
        help="Path to a TOML config file with a [streaming] table.",
    ),
) -> None:
    """persistream: live text streaming with a durable ledger."""
    global _config_path
    _config_path = config


# ── Helpers ──────────────────────────────────────────────────────


def _load_config() -> StreamingConfig:
    """Load the streaming config, exit on error."""
    try:
        return load_config(_config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _status_style(status: str) -> str:
    """Return a Rich style string for a stream status."""
    return {
        "pending": "dim",
        "streaming": "bold cyan",
        "done": "bold green",
        "error": "bold red",
        "timeout": "bold yellow",
    }.get(status, "white")


def _render_body(stream_id: str, body: StreamBody) -> Panel:
    return Panel(
        Markdown(body.text) if body.text else Text("Thinking...", style="dim"),
        title=f"[bold]{stream_id}[/bold]",
        subtitle=Text(body.status.value, style=_status_style(body.status.value)),
        border_style="blue",
    )


async def _with_ledger(config: StreamingConfig, fn):
    """Open the ledger, run ``fn(ledger)`` and close the database."""
    from persistream.persistence.database import close_db, init_db
    from persistream.persistence.ledger import StreamLedger

    db = await init_db(config.db_path)
    try:
        return await fn(StreamLedger(db))
    finally:
        await close_db(db)


# ── persistream serve ────────────────────────────────────────────


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="Port (default from config)"),
    model: str = typer.Option(None, "--model", "-m", help="LiteLLM model id"),
    log_level: str = typer.Option("info", "--log-level", help="uvicorn log level"),
) -> None:
    """Start the streaming HTTP server."""
    import uvicorn

    from persistream.server import create_app

    config = _load_config()
    overrides = {
        k: v for k, v in {"host": host, "port": port, "model": model}.items()
        if v is not None
    }
    if overrides:
        config = config.model_copy(update=overrides)

    console.print(Panel(
        f"[bold]URL:[/bold] http://{config.host}:{config.port}\n"
        f"[bold]Ledger:[/bold] {config.db_path}\n"
        f"[bold]Model:[/bold] {config.model}",
        title="[bold blue]persistream[/bold blue]",
        border_style="blue",
    ))

    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=log_level)


# ── Ledger commands ──────────────────────────────────────────────


@app.command()
def create(
    prompt: str = typer.Argument("", help="Prompt the producer generates from"),
) -> None:
    """Create a pending stream and print its id."""
    config = _load_config()

    async def _create(ledger):
        return await ledger.create(prompt)

    stream_id = asyncio.run(_with_ledger(config, _create))
    console.print(stream_id)


@app.command()
def show(
    stream_id: str = typer.Argument(..., help="Stream ID"),
) -> None:
    """Show the persisted body of a stream."""
    from persistream.errors import StreamNotFound

    config = _load_config()

    async def _get(ledger):
        try:
            return await ledger.get_body(stream_id)
        except StreamNotFound:
            return None

    body = asyncio.run(_with_ledger(config, _get))
    if body is None:
        console.print(f"[red]Stream not found:[/red] {stream_id}")
        raise typer.Exit(1) from None

    console.print(_render_body(stream_id, body))


@app.command("list")
def list_streams(
    limit: int = typer.Option(20, "--limit", "-n", help="Max streams to show"),
    status: StreamStatus = typer.Option(None, "--status", help="Filter by status"),
) -> None:
    """Show recent streams."""
    config = _load_config()

    async def _list(ledger):
        return await ledger.list_streams(limit=limit, status=status)

    records = asyncio.run(_with_ledger(config, _list))

    if not records:
        console.print("[dim]No streams found.[/dim]")
        return

    table = Table(title=f"Streams ({len(records)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Prompt", max_width=40)
    table.add_column("Chunks", justify="right")
    table.add_column("Created", style="dim")

    for r in records:
        table.add_row(
            r.stream_id,
            Text(r.status.value, style=_status_style(r.status.value)),
            r.prompt[:40],
            str(r.chunk_count),
            r.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )

    console.print(table)


@app.command()
def export(
    stream_id: str = typer.Argument(..., help="Stream ID"),
    fmt: str = typer.Option(
        "markdown", "--format", "-f",
        help="Export format: json or markdown",
    ),
) -> None:
    """Export a stream as JSON or Markdown."""
    from persistream.errors import StreamNotFound
    from persistream.persistence.export import export_json, export_markdown

    if fmt not in ("json", "markdown"):
        console.print(f"[red]Invalid format:[/red] '{fmt}'. Choose json or markdown.")
        raise typer.Exit(1) from None

    config = _load_config()

    async def _get(ledger):
        try:
            return await ledger.get_stream(stream_id), await ledger.get_body(stream_id)
        except StreamNotFound:
            return None

    found = asyncio.run(_with_ledger(config, _get))
    if found is None:
        console.print(f"[red]Stream not found:[/red] {stream_id}")
        raise typer.Exit(1) from None

    record, body = found
    if fmt == "json":
        console.print_json(export_json(record, body))
    else:
        console.print(export_markdown(record, body))


@app.command()
def delete(
    stream_id: str = typer.Argument(..., help="Stream ID"),
) -> None:
    """Delete a single stream."""
    config = _load_config()

    async def _delete(ledger):
        return await ledger.delete_stream(stream_id)

    if asyncio.run(_with_ledger(config, _delete)):
        console.print(f"[green]Stream deleted:[/green] {stream_id}")
    else:
        console.print(f"[red]Stream not found:[/red] {stream_id}")
        raise typer.Exit(1) from None


@app.command()
def clear(
    yes: bool = typer.Option(
        False, "--yes", "-y",
        help="Skip confirmation prompt",
    ),
) -> None:
    """Delete every stream and chunk."""
    if not yes:
        confirm = typer.confirm("Delete ALL streams? This cannot be undone.")
        if not confirm:
            console.print("[dim]Cancelled.[/dim]")
            return

    config = _load_config()

    async def _clear(ledger):
        return await ledger.clear()

    deleted = asyncio.run(_with_ledger(config, _clear))
    console.print(f"[green]Cleared {deleted} stream(s).[/green]")


@app.command()
def sweep(
    older_than: float = typer.Option(
        None, "--older-than",
        help="Seconds without writes before a stream times out (default from config)",
    ),
) -> None:
    """Mark stalled streaming streams as timed out."""
    config = _load_config()
    cutoff = older_than if older_than is not None else config.stale_after
    if cutoff <= 0:
        console.print("[red]No cutoff:[/red] pass --older-than or set stale_after.")
        raise typer.Exit(1) from None

    async def _sweep(ledger):
        return await ledger.expire_stale(cutoff)

    expired = asyncio.run(_with_ledger(config, _sweep))
    if not expired:
        console.print("[dim]No stalled streams.[/dim]")
        return
    for stream_id in expired:
        console.print(f"[yellow]timeout[/yellow] {stream_id}")


# ── persistream watch ────────────────────────────────────────────


@app.command()
def watch(
    stream_id: str = typer.Argument(..., help="Stream ID"),
    url: str = typer.Option(
        None, "--url", "-u",
        help="Server base URL (default from config)",
    ),
    drive: bool = typer.Option(
        False, "--drive",
        help="Begin the stream and read it live instead of following the ledger",
    ),
) -> None:
    """Render a stream as it is produced."""
    import httpx

    from persistream.client.subscription import HttpBodySource, StreamSubscription
    from persistream.events import EventType

    config = _load_config()
    base_url = (url or f"http://{config.host}:{config.port}").rstrip("/")

    async def _watch() -> StreamBody:
        async with httpx.AsyncClient(timeout=None) as client:
            sub = StreamSubscription(
                driven=drive,
                stream_id=stream_id,
                stream_url=f"{base_url}/stream",
                body_source=HttpBodySource(client, base_url),
                client=client,
            )
            with Live(_render_body(stream_id, sub.body), console=console) as live:

                def _on_event(event) -> None:
                    if event.type == EventType.TEXT_CHANGED:
                        live.update(_render_body(stream_id, sub.body))

                sub.emitter.add_listener(_on_event)
                await sub.start()
                body = await sub.poll(config.poll_interval)
                live.update(_render_body(stream_id, body))
                return body

    try:
        body = asyncio.run(_watch())
    except httpx.HTTPError as e:
        console.print(f"[red]Could not read stream:[/red] {e}")
        raise typer.Exit(1) from None

    if body.status is not StreamStatus.DONE:
        raise typer.Exit(1)


# ── persistream config ───────────────────────────────────────────


@app.command("config")
def config_show() -> None:
    """Show the effective configuration."""
    config = _load_config()

    table = Table(title="Streaming Configuration", show_header=False)
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for key, value in config.model_dump().items():
        table.add_row(key, str(value))
    table.add_row("config file", str(_config_path or default_config_path()))

    console.print(table)


# ── Entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    app()
