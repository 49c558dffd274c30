# src/bundlehost/apps/bootstrap.py
from __future__ import annotations
from typing import Optional

import httpx

from bundlehost.adapters.fs.path_provider import PathProvider
from bundlehost.ports import Channel
from bundlehost.services.app_context import AppContext, set_ctx
from bundlehost.services.bridge import MessageBridge
from bundlehost.services.eventbus import LocalEventBus
from bundlehost.services.logging import attach_event_logger, setup_logging
from bundlehost.services.resources import Fetcher, Installer, SourceResolver
from bundlehost.services.script_host import ScriptHost
from bundlehost.services.settings import Settings
from bundlehost.services.static_server import StaticServer
from bundlehost.services.supervisor import Supervisor


def init_ctx(settings: Optional[Settings] = None) -> AppContext:
    """Builds the application context (paths, logging, bus) and publishes it."""
    settings = settings or Settings.from_sources()
    paths = PathProvider(settings)
    paths.ensure_tree()

    bus = LocalEventBus()
    root_logger = setup_logging(paths, settings.log_level)
    attach_event_logger(bus, root_logger.getChild("events"))

    ctx = AppContext(settings=settings, paths=paths, bus=bus, logger=root_logger)
    set_ctx(ctx)
    return ctx


def make_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": settings.user_agent},
        timeout=httpx.Timeout(settings.http_timeout_sec),
        follow_redirects=False,
        transport=transport,
    )


def build_supervisor(
    ctx: AppContext,
    channel: Channel,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Supervisor:
    settings, paths = ctx.settings, ctx.paths
    http = make_http_client(settings, transport)
    return Supervisor(
        settings=settings,
        paths=paths,
        bridge=MessageBridge(channel, ctx.bus),
        resolver=SourceResolver(
            http,
            api_url=settings.github_api_url,
            codeload_url=settings.github_codeload_url,
            fallback_branch=settings.branch or "main",
        ),
        fetcher=Fetcher(http),
        installer=Installer(slot_dir=paths.slot_dir(), scratch_dir=paths.scratch_dir()),
        script_host=ScriptHost(
            intercept_module=settings.intercept_module,
            intercept_export=settings.intercept_export,
            output=ctx.logger.getChild("script"),
        ),
        static_server=StaticServer(host=settings.static_host),
        http=http,
    )
