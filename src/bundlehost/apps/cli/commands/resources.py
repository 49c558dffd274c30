# src/bundlehost/apps/cli/commands/resources.py
import asyncio
from typing import Optional

import typer

from bundlehost.apps.cli.session import console, render_state, run_session
from bundlehost.services.client import ResourceClient


async def _state(client: ResourceClient):
    fut = client.expect("state")
    client.get_state()
    return await fut


def state():
    """Show the current supervisor state."""
    client, _ = asyncio.run(run_session(_state, verbose=False))
    console.print(render_state(client.state))


def set_url(
    url: str = typer.Argument(..., help="Repository (.git) or direct archive URL"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch to track"),
):
    """Point the supervisor at a new resource source."""

    async def _run(client: ResourceClient):
        fut = client.expect("state", "error")
        client.set_resource_url(url, branch)
        return await fut

    client, message = asyncio.run(run_session(_run, verbose=False))
    if message is not None and message.kind == "error":
        raise typer.Exit(code=1)
    console.print(render_state(client.state))


def download():
    """Download and install the configured bundle."""

    async def _run(client: ResourceClient):
        fut = client.expect("download-complete", "error")
        client.download_resources()
        return await fut

    client, message = asyncio.run(run_session(_run))
    if message is not None and message.kind == "error":
        raise typer.Exit(code=1)
    console.print(render_state(client.state))
