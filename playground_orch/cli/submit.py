"""
Playground Submit CLI - Submit a job and wait for its result.

Usage:
  playground submit build project.zip -o Contract.dll.b64
  playground submit test project.zip
  playground submit template --template aelf --project-name HelloWorld -o hello.zip.b64

The result is written as received: base64 for build/template, test output
for test, or the error text when the job failed. Exit code 2 means no result
arrived before the timeout.
"""

import sys
from contextlib import contextmanager

import click
from rich.console import Console

from playground_orch.cli.common import get_object_store, get_stream_client, load_producer_config

console = Console()

TIMEOUT_EXIT_CODE = 2


@contextmanager
def _correlator(timeout):
    from playground_orch.core.correlator import Correlator

    cfg = load_producer_config(timeout)
    queue = get_stream_client(cfg.queue)
    try:
        correlator = Correlator(cfg, queue, get_object_store(cfg.store))
        correlator.initialize()
        yield correlator
    finally:
        queue.close()


def _emit(outcome, output):
    from playground_orch.core.models import TIMEOUT

    if outcome is TIMEOUT:
        console.print("[yellow]Timeout:[/yellow] no result received")
        sys.exit(TIMEOUT_EXIT_CODE)

    if output:
        with open(output, 'wb') as f:
            f.write(outcome)
        console.print(f"[green]✓[/green] Result written to [cyan]{output}[/cyan] ({len(outcome)} bytes)")
    else:
        click.echo(outcome.decode('utf-8', errors='replace'))


@click.group()
def submit():
    """Submit build, test and template jobs."""
    pass


@submit.command()
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('-o', '--output', type=click.Path(dir_okay=False), help='Write the result to this file')
@click.option('--timeout', type=float, help='Seconds to wait (default: PLAYGROUND_TIMEOUT_SECONDS or 180)')
def build(archive, output, timeout):
    """Build a zipped contract project; the result is the base64 artifact."""
    with open(archive, 'rb') as f:
        data = f.read()
    with _correlator(timeout) as correlator:
        outcome = correlator.build(data)
    _emit(outcome, output)


@submit.command()
@click.argument('archive', type=click.Path(exists=True, dir_okay=False))
@click.option('-o', '--output', type=click.Path(dir_okay=False), help='Write the result to this file')
@click.option('--timeout', type=float, help='Seconds to wait (default: PLAYGROUND_TIMEOUT_SECONDS or 180)')
def test(archive, output, timeout):
    """Run the test project of a zipped contract solution."""
    with open(archive, 'rb') as f:
        data = f.read()
    with _correlator(timeout) as correlator:
        outcome = correlator.test(data)
    _emit(outcome, output)


@submit.command()
@click.option('--template', 'template_name', required=True, help='Template short name (see: playground templates list)')
@click.option('--project-name', required=True, help='Name of the generated project')
@click.option('-o', '--output', type=click.Path(dir_okay=False), help='Write the result to this file')
@click.option('--timeout', type=float, help='Seconds to wait (default: PLAYGROUND_TIMEOUT_SECONDS or 180)')
def template(template_name, project_name, output, timeout):
    """Scaffold a project from a template; the result is the base64 zip."""
    try:
        with _correlator(timeout) as correlator:
            outcome = correlator.template(template_name, project_name)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    _emit(outcome, output)
