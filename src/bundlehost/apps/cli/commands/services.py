# src/bundlehost/apps/cli/commands/services.py
import asyncio

import typer

from bundlehost.apps.cli.session import console, render_state, run_session
from bundlehost.services.client import ResourceClient


def serve(
    web: bool = typer.Option(True, "--web/--no-web", help="Serve the installed bundle over HTTP"),
    script: bool = typer.Option(True, "--script/--no-script", help="Run the bundle's entry script"),
):
    """Start the bundle services and keep them running until Ctrl+C."""

    async def _run(client: ResourceClient):
        if script:
            fut = client.expect("server-started", "error")
            client.start_server()
            if (await fut).kind == "error":
                return False
        if web:
            fut = client.expect("web-started", "error")
            client.start_web()
            if (await fut).kind == "error":
                return False
        console.print(render_state(client.state))
        console.print("[green]running[/green] (Ctrl+C to stop)")
        await asyncio.Event().wait()
        return True

    try:
        _, ok = asyncio.run(run_session(_run))
    except KeyboardInterrupt:
        console.print("[yellow]stopped[/yellow]")
        return
    if ok is False:
        raise typer.Exit(code=1)
