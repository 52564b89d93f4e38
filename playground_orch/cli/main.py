#!/usr/bin/env python3
"""
Playground Orchestration CLI - Main entry point.

Commands:
  playground worker     - Run a worker that processes build/test/template jobs
  playground submit     - Submit a job and wait for its result
  playground queue      - Inspect and prepare the job stream
  playground templates  - Refresh or list published contract templates
  playground cache      - Populate, upload or download the NuGet cache
  playground share      - Share files through the object store
"""

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from playground_orch import __version__

# Setup rich console
console = Console()

# Load environment variables from .env file if present
load_dotenv()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)]
    )


@click.group()
@click.version_option(version=__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, verbose):
    """Playground Orchestration - build, test and scaffold jobs over Redis streams."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


# Import subcommands
from playground_orch.cli.worker import worker
from playground_orch.cli.submit import submit
from playground_orch.cli.queue import queue
from playground_orch.cli.housekeeping import cache, templates
from playground_orch.cli.share import share

cli.add_command(worker)
cli.add_command(submit)
cli.add_command(queue)
cli.add_command(templates)
cli.add_command(cache)
cli.add_command(share)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if '--verbose' in sys.argv or '-v' in sys.argv:
            raise
        sys.exit(1)


if __name__ == '__main__':
    main()
