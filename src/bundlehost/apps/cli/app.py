# src/bundlehost/apps/cli/app.py
from __future__ import annotations

import asyncio
import os
import shutil
import traceback
from typing import Optional

from dotenv import load_dotenv, find_dotenv
import typer

# .env is read once, before Settings picks up BUNDLEHOST_* variables
load_dotenv(find_dotenv())

from bundlehost.adapters.channels import StdioChannel
from bundlehost.apps.bootstrap import build_supervisor, init_ctx
from bundlehost.apps.cli.commands import resources, services
from bundlehost.services.app_context import get_ctx
from bundlehost.services.settings import Settings

app = typer.Typer(help="bundlehost: download, install and serve a resource bundle")


def _run_safe(func):
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            if os.getenv("BUNDLEHOST_CLI_DEBUG") == "1":
                traceback.print_exc()
            raise

    return wrapper


# -------- composition root --------


@_run_safe
@app.callback()
def main(
    base_dir: Optional[str] = typer.Option(None, "--base-dir", help="Base directory (default ~/.bundlehost or from .env/ENV)"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level for stderr and the log file"),
):
    """
    Runs before any subcommand: builds the process-wide context.
    """
    settings = Settings.from_sources().with_overrides(base_dir=base_dir, log_level=log_level)
    init_ctx(settings)


@app.command("run")
def run():
    """Serve the host protocol over stdin/stdout (one JSON message per line)."""

    async def _main():
        channel = StdioChannel()
        supervisor = build_supervisor(get_ctx(), channel)
        try:
            await supervisor.run(channel)
        finally:
            await channel.aclose()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        pass


@app.command("where")
def where():
    ctx = get_ctx()
    print("base_dir:", ctx.settings.base_dir)
    print("bundle:", ctx.paths.slot_dir())
    print("log:", ctx.paths.logs_dir())


@app.command("reset")
def reset(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Remove the installed bundle and saved source configuration."""
    paths = get_ctx().paths
    if not yes:
        typer.confirm(f"Remove {paths.resources_dir()} and {paths.downloads_dir()}?", abort=True)
    removed = False
    for target in (paths.resources_dir(), paths.downloads_dir()):
        if target.exists():
            shutil.rmtree(target)
            removed = True
    typer.echo("bundle removed" if removed else "nothing to remove")


app.command("state")(resources.state)
app.command("set-url")(resources.set_url)
app.command("download")(resources.download)
app.command("serve")(services.serve)

if __name__ == "__main__":
    app()
