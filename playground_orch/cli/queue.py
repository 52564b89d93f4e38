"""
Playground Queue CLI - Inspect and prepare the job stream.

Usage:
  playground queue ensure-group
  playground queue stats --stream buildstream --group consumergroup
"""

import sys

import click
from rich.console import Console
from rich.table import Table

from playground_orch.cli.common import get_stream_client, load_queue_config
from playground_orch.errors import QueueUnavailable

console = Console()


@click.group()
def queue():
    """Manage the job stream (ensure-group, stats)."""
    pass


@queue.command('ensure-group')
@click.option('--redis-url', help='Redis URL (default: from PLAYGROUND_REDIS_URL)')
@click.option('--stream', help='Stream name (default: from PLAYGROUND_STREAM_NAME or buildstream)')
@click.option('--group', help='Consumer group (default: from PLAYGROUND_GROUP_NAME or consumergroup)')
def ensure_group(redis_url, stream, group):
    """Create the stream and its consumer group if missing."""
    cfg = load_queue_config(stream, group, redis_url)
    client = get_stream_client(cfg)
    try:
        client.ensure_group(cfg.stream_name, cfg.group_name)
        console.print(f"[green]✓[/green] Group [cyan]{cfg.group_name}[/cyan] ready on stream [cyan]{cfg.stream_name}[/cyan]")
    except QueueUnavailable as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        client.close()


@queue.command()
@click.option('--redis-url', help='Redis URL (default: from PLAYGROUND_REDIS_URL)')
@click.option('--stream', help='Stream name (default: from PLAYGROUND_STREAM_NAME or buildstream)')
@click.option('--group', help='Consumer group (default: from PLAYGROUND_GROUP_NAME or consumergroup)')
def stats(redis_url, stream, group):
    """Show stream statistics."""
    cfg = load_queue_config(stream, group, redis_url)
    client = get_stream_client(cfg)
    try:
        stats_data = client.stats(cfg.stream_name, cfg.group_name)
    except QueueUnavailable as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        client.close()

    table = Table(title=f"Stream Stats: {cfg.stream_name} / {cfg.group_name}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Entries", str(stats_data['length']))
    table.add_row("Pending (unacknowledged)", str(stats_data['pending']))
    table.add_row("Oldest Pending", str(stats_data['min'] or '-'))
    table.add_row("Newest Pending", str(stats_data['max'] or '-'))
    for consumer, count in sorted(stats_data['consumers'].items()):
        table.add_row(f"Pending on {consumer}", str(count))

    console.print(table)
