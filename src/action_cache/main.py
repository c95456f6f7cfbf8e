"""Main entry point for the action-cache CLI.

Provides a Typer-based CLI for inspecting and exercising the action cache
from a shell: recording entries, looking them up, and handing out signed
URLs for stored outputs.
"""

import sys
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from action_cache import __version__
from action_cache.cache import RemoteActionCache, create_action_cache
from action_cache.config import (
    CacheSettings,
    get_config_path,
    load_settings,
    save_settings,
)
from action_cache.errors import ActionCacheError, PartialUploadFailure
from action_cache.logging_config import get_logger, setup_logging
from action_cache.models import FileDigest
from action_cache.services.digest import compute_file_digest
from action_cache.storage.local import DiskActionCache

console = Console()
logger = get_logger(__name__)

app = typer.Typer(
    name="action-cache",
    help="Inspect and populate the build action cache",
    rich_markup_mode="rich",
)

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config file")


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"action-cache version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """action-cache: remote-tiered build action cache.

    ## Commands

    * [bold cyan]put[/bold cyan] - Record an entry and publish its outputs
    * [bold cyan]get[/bold cyan] - Look up an entry
    * [bold cyan]remove[/bold cyan] - Remove an entry
    * [bold cyan]dump[/bold cyan] - Print all local entries
    * [bold cyan]sign-url[/bold cyan] - Presigned URL for a stored output
    * [bold cyan]config[/bold cyan] - Show or create configuration
    """
    pass


@contextmanager
def open_cache(config_path: Optional[Path]) -> Iterator[RemoteActionCache]:
    """Open the configured cache and persist it on exit."""
    settings = load_settings(config_path)
    if settings.log_dir is not None:
        setup_logging(settings.log_dir)

    try:
        cache = create_action_cache(DiskActionCache(settings.local_path), settings)
    except ActionCacheError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    with cache:
        try:
            yield cache
        finally:
            # Local entries persist even when the remote publish failed.
            written = cache.save()
            logger.debug(f"Saved local cache ({written} bytes)")


@app.command()
def put(
    key: str = typer.Argument(..., help="Cache key (an output path of the action)"),
    action_key: str = typer.Argument(..., help="Action key fingerprint"),
    outputs: List[Path] = typer.Argument(..., help="Output files produced by the action"),
    discovers_inputs: bool = typer.Option(
        False, "--discovers-inputs", help="Action discovers its inputs at execution time"
    ),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Record an entry for KEY and publish OUTPUTS remotely.

    The entry digest is the digest of the first output file.
    """
    for output in outputs:
        if not output.is_file():
            console.print(f"[red]Output not found: {output}[/red]")
            raise typer.Exit(1)

    with open_cache(config_path) as cache:
        entry = cache.create_entry(action_key, discovers_inputs).with_digest(
            compute_file_digest(outputs[0])
        )
        try:
            results = cache.put(key, entry, outputs)
        except PartialUploadFailure as e:
            console.print(f"[yellow]Stored locally; remote publish failed: {e}[/yellow]")
            for result in e.failed:
                error = result.error.value if result.error else "unknown"
                console.print(f"  [red]✗[/red] {result.source_file} ({error})")
            raise typer.Exit(1)
        except ActionCacheError as e:
            console.print(f"[yellow]Stored locally; remote publish failed: {e}[/yellow]")
            raise typer.Exit(1)

    console.print(f"[green]Stored {key}[/green] digest={entry.digest.hex}")
    if results:
        table = Table(title="Published outputs")
        table.add_column("File", style="cyan")
        table.add_column("Object key")
        table.add_column("Status")
        for result in results:
            status = "exists" if result.skipped else "uploaded"
            table.add_row(str(result.source_file), result.remote_object_key, status)
        console.print(table)


@app.command()
def get(
    key: str = typer.Argument(..., help="Cache key"),
    strict: bool = typer.Option(False, "--strict", help="Fail on remote errors"),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Look up the entry for KEY."""
    with open_cache(config_path) as cache:
        try:
            entry = cache.get(key, strict=strict or None)
        except ActionCacheError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)

    if entry is None:
        console.print(f"[yellow]Miss: {key}[/yellow]")
        raise typer.Exit(1)

    digest = entry.digest.hex if entry.digest is not None else "[not set]"
    console.print(
        Panel.fit(
            f"[cyan]Action key:[/cyan] {entry.action_key}\n"
            f"[cyan]Digest:[/cyan] {digest}\n"
            f"[cyan]Discovers inputs:[/cyan] {entry.discovers_inputs}",
            title=key,
            border_style="green",
        )
    )


@app.command()
def remove(
    key: str = typer.Argument(..., help="Cache key"),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Remove the entry for KEY."""
    with open_cache(config_path) as cache:
        cache.remove(key)
    console.print(f"[green]Removed {key}[/green]")


@app.command()
def dump(config_path: Path = CONFIG_OPTION) -> None:
    """Print every local entry."""
    with open_cache(config_path) as cache:
        cache.dump(sys.stdout)


@app.command("sign-url")
def sign_url(
    digest_hex: str = typer.Argument(..., help="Hex digest of the stored output"),
    method: str = typer.Option("GET", "--method", "-m", help="GET or PUT"),
    expires: int = typer.Option(3600, "--expires", "-e", help="Lifetime in seconds"),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Print a presigned URL for the output with DIGEST_HEX."""
    try:
        digest = FileDigest.from_hex(digest_hex)
    except ValueError as e:
        console.print(f"[red]Invalid digest: {e}[/red]")
        raise typer.Exit(1)

    with open_cache(config_path) as cache:
        try:
            url = cache.signed_url(digest, method, timedelta(seconds=expires))
        except (RuntimeError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
    console.print(url, soft_wrap=True)


@app.command()
def config(
    action: str = typer.Argument(..., help="Action to perform (show, path, init)"),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Manage configuration.

    Examples:
        action-cache config show   # Show effective configuration
        action-cache config path   # Show config file path
        action-cache config init   # Write a default config file
    """
    path = config_path or get_config_path()

    if action == "show":
        try:
            settings = load_settings(path)
        except Exception as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            raise typer.Exit(1)

        console.print(
            Panel.fit(
                f"[cyan]Remote enabled:[/cyan] {settings.remote_enabled}\n"
                f"[cyan]Shared mode:[/cyan] {settings.shared_mode}\n"
                f"[cyan]Bucket:[/cyan] {settings.bucket}\n"
                f"[cyan]Endpoint:[/cyan] {settings.endpoint_url or '[not set]'}\n"
                f"[cyan]Region:[/cyan] {settings.region}\n"
                f"[cyan]Key prefix:[/cyan] {settings.key_prefix}\n"
                f"[cyan]Max concurrent uploads:[/cyan] {settings.max_concurrent_uploads}\n"
                f"[cyan]Local cache:[/cyan] {settings.local_path}",
                title="Configuration",
                border_style="green",
            )
        )

    elif action == "path":
        console.print(str(path))

    elif action == "init":
        if path.exists():
            console.print(f"[yellow]Config already exists at {path}[/yellow]")
            raise typer.Exit(1)
        save_settings(CacheSettings(), path)
        console.print(f"[green]Created default config at {path}[/green]")

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Valid actions: show, path, init")
        raise typer.Exit(1)


# Entry point for the CLI
def cli_entry() -> None:
    """Entry point for the CLI application."""
    app()


if __name__ == "__main__":
    cli_entry()
