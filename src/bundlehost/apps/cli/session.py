# src/bundlehost/apps/cli/session.py
from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from rich.console import Console
from rich.table import Table

from bundlehost.adapters.channels import MemoryChannel
from bundlehost.apps.bootstrap import build_supervisor
from bundlehost.services.app_context import get_ctx
from bundlehost.services.client import ResourceClient, ResourceState

T = TypeVar("T")

console = Console()


def _echo_message(message: Any) -> None:
    if message.kind == "download-progress":
        return
    if message.kind == "error":
        data = message.data or {}
        console.print(f"[red]error[/red] ({data.get('context')}): {data.get('message')}")
        return
    suffix = ""
    if message.kind == "web-started":
        suffix = f" port={(message.data or {}).get('port')}"
    console.print(f"[cyan]{message.kind}[/cyan]{suffix}")


def render_state(state: ResourceState) -> Table:
    table = Table(title="bundlehost state", show_header=False)
    table.add_column("key", style="bold")
    table.add_column("value")
    table.add_row("resource url", state.resource_url)
    table.add_row("branch", str(state.branch))
    table.add_row("version", str(state.version))
    table.add_row("resources installed", "yes" if state.has_resources else "no")
    table.add_row("script service", "running" if state.server_running else "stopped")
    table.add_row("web port", str(state.web_server_port) if state.web_server_port else "-")
    return table


async def run_session(script: Callable[[ResourceClient], Awaitable[T]], *, verbose: bool = True) -> tuple[ResourceClient, Optional[T]]:
    """
    Runs an in-process supervisor and drives it through a ResourceClient,
    exactly as a host shell would over its channel.
    """
    client: Optional[ResourceClient] = None

    def deliver(message: dict[str, Any]) -> None:
        if client is not None:
            client.handle_message(message)

    channel = MemoryChannel(on_send=deliver)
    client = ResourceClient(send=channel.put)
    if verbose:
        client.on_message(_echo_message)

    supervisor = build_supervisor(get_ctx(), channel)
    runner = asyncio.create_task(supervisor.run())
    result: Optional[T] = None
    try:
        result = await script(client)
    finally:
        client.shutdown()
        await runner
        await channel.aclose()
    return client, result
