"""Command line interface for the log console."""

import asyncio
from typing import Optional

import click
import httpx
import uvicorn

from .client import ConsoleClient
from .config import config
from .console import ConsoleViewer, KeyReader


@click.group()
@click.option("--url", default=config.server_url, show_default=True, help="Log console server URL.")
@click.pass_context
def main(ctx, url: str):
    """Live and historical logs for PM2 processes."""
    ctx.obj = {"url": url}


@main.command()
@click.option("--host", default=config.host, show_default=True)
@click.option("--port", default=config.port, show_default=True, type=int)
def serve(host: str, port: int):
    """Run the log console server."""
    uvicorn.run(
        "logconsole.main:app",
        host=host,
        port=port,
        reload=False,
    )


async def _fetch_processes(url: str):
    async with ConsoleClient(url) as client:
        return await client.list_processes()


@main.command()
@click.pass_context
def processes(ctx):
    """List supervised processes."""
    try:
        found = asyncio.run(_fetch_processes(ctx.obj["url"]))
    except httpx.HTTPError as e:
        raise click.ClickException(f"Failed to fetch processes: {e}")

    if not found:
        click.echo("No PM2 processes found.")
        return

    click.echo(f"{'ID':<6} {'NAME':<24} {'STATUS':<12} {'CPU':>6} {'MEMORY':>10}")
    click.echo("-" * 62)
    for p in found:
        memory_mb = p.memory / 1024 / 1024
        click.echo(f"{p.process_id:<6} {p.name:<24} {p.status:<12} {p.cpu:>5.0f}% {memory_mb:>8.1f}MB")


async def _watch(url: str, process_id: Optional[int], lines: int, show_out: bool, show_err: bool):
    async with ConsoleClient(url) as client:
        viewer = ConsoleViewer(client, history_lines=lines)
        viewer.session.set_filter(show_out, show_err)
        with KeyReader() as keys:
            await viewer.run(process_id, keys=keys)


@main.command()
@click.argument("pm_id", type=int, required=False)
@click.option("--lines", "-n", default=config.viewer_history_lines, show_default=True,
              help="History lines to load per stream.")
@click.option("--out/--no-out", "show_out", default=True, help="Show stdout lines.")
@click.option("--err/--no-err", "show_err", default=True, help="Show stderr lines.")
@click.pass_context
def watch(ctx, pm_id: Optional[int], lines: int, show_out: bool, show_err: bool):
    """
    Follow the output of process PM_ID (default: the first process).

    Keys: c clear, o/e toggle stdout/stderr, f or space pause/resume,
    n next process, q quit.
    """
    try:
        asyncio.run(_watch(ctx.obj["url"], pm_id, lines, show_out, show_err))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
