"""
Playground Share CLI - Share files through the object store.

Usage:
  playground share create contract.zip
  playground share get <key> -o contract.zip
"""

import sys
from contextlib import contextmanager

import click
from rich.console import Console

from playground_orch.cli.common import get_object_store, get_stream_client, load_producer_config

console = Console()


@contextmanager
def _correlator():
    from playground_orch.core.correlator import Correlator

    cfg = load_producer_config()
    queue = get_stream_client(cfg.queue)
    try:
        yield Correlator(cfg, queue, get_object_store(cfg.store))
    finally:
        queue.close()


@click.group()
def share():
    """Store a file under a fresh key, or fetch it back."""
    pass


@share.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
def create(file):
    """Upload FILE and print its key."""
    with open(file, 'rb') as f:
        data = f.read()
    try:
        with _correlator() as correlator:
            key = correlator.share(data)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    click.echo(key)


@share.command()
@click.argument('key')
@click.option('-o', '--output', type=click.Path(dir_okay=False), help='Write to this file instead of stdout')
def get(key, output):
    """Download the file shared under KEY."""
    from playground_orch.errors import ObjectNotFound

    try:
        with _correlator() as correlator:
            data = correlator.fetch_shared(key)
    except (ObjectNotFound, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if output:
        with open(output, 'wb') as f:
            f.write(data)
        console.print(f"[green]✓[/green] Wrote {len(data)} bytes to [cyan]{output}[/cyan]")
    else:
        click.get_binary_stream('stdout').write(data)
