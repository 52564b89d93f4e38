"""
Playground Housekeeping CLI - Contract templates and NuGet package cache.

Usage:
  playground templates refresh
  playground templates refresh --every-hours 24
  playground templates list
  playground cache populate
  playground cache upload
  playground cache download
"""

import signal
import sys
import threading
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from playground_orch.cli.common import get_object_store

console = Console()

_tool_option = click.option('--tool', envvar='PLAYGROUND_TOOL', default='dotnet', show_default=True, help='Toolchain executable')
_cache_dir_option = click.option(
    '--cache-dir',
    type=click.Path(file_okay=False, path_type=Path),
    help='Local package cache (default: ~/.nuget/packages)',
)


@click.group()
def templates():
    """Install contract templates and publish them (refresh, list)."""
    pass


@templates.command()
@_tool_option
@click.option('--package', help='Template package to install (default: AElf.ContractTemplates)')
@click.option('--every-hours', type=float, help='Keep running and refresh every N hours')
def refresh(tool, package, every_hours):
    """Install the template package, publish the list and a zip per template."""
    from playground_orch.housekeeping.templates import DEFAULT_TEMPLATE_PACKAGE, TemplateCatalog
    from playground_orch.jobs.toolchain import ToolRunner

    store = get_object_store()
    store.ensure_bucket()
    catalog = TemplateCatalog(ToolRunner(), store, executable=tool, package=package or DEFAULT_TEMPLATE_PACKAGE)

    if every_hours:
        if every_hours <= 0:
            console.print("[red]Error:[/red] --every-hours must be positive")
            sys.exit(1)
        stop_event = threading.Event()
        signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())
        signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())
        console.print(f"Refreshing templates every [cyan]{every_hours}[/cyan] hours (Ctrl+C to stop)")
        catalog.refresh_periodically(stop_event, every_hours=every_hours)
        return

    try:
        published = catalog.refresh()
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Published {len(published)} template(s): {', '.join(published)}")


@templates.command('list')
def list_templates():
    """List published template short names."""
    from playground_orch.errors import ObjectNotFound
    from playground_orch.housekeeping.templates import read_published_templates, template_zip_key

    store = get_object_store()
    try:
        names = read_published_templates(store)
    except ObjectNotFound:
        console.print("[yellow]No templates published yet.[/yellow] Run: playground templates refresh")
        return

    table = Table(title="Contract Templates")
    table.add_column("Short Name", style="cyan")
    table.add_column("Zip Key", style="dim")
    for name in names:
        table.add_row(name, template_zip_key(name))
    console.print(table)


@click.group()
def cache():
    """Share the NuGet package cache between workers (populate, upload, download)."""
    pass


@cache.command()
@_tool_option
@click.option('--template', default='aelf', show_default=True, help='Template whose packages seed the cache')
def populate(tool, template):
    """Fill the local package cache by restoring a sample project."""
    from playground_orch.housekeeping.package_cache import populate as populate_cache
    from playground_orch.jobs.toolchain import ToolRunner

    try:
        populate_cache(ToolRunner(), executable=tool, template=template)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print("[green]✓[/green] Package cache populated")


@cache.command()
@_cache_dir_option
def upload(cache_dir):
    """Zip the local package cache and publish it."""
    from playground_orch.housekeeping.package_cache import CACHE_KEY, upload as upload_cache

    store = get_object_store()
    store.ensure_bucket()
    try:
        size = upload_cache(store, cache_dir)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Uploaded [cyan]{CACHE_KEY}[/cyan] ({size} bytes)")


@cache.command()
@_cache_dir_option
def download(cache_dir):
    """Extract the published package cache into the local cache."""
    from playground_orch.errors import ObjectNotFound
    from playground_orch.housekeeping.package_cache import download as download_cache

    try:
        count = download_cache(get_object_store(), cache_dir)
    except ObjectNotFound as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print(f"[green]✓[/green] Extracted {count} file(s)")
