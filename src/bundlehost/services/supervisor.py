# src/bundlehost/services/supervisor.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

import httpx

from bundlehost.adapters.fs.path_provider import PathProvider
from bundlehost.domain import Command, DownloadProgress, ProcessState, SourceConfig
from bundlehost.ports import Channel
from bundlehost.services.bridge import MessageBridge, normalize
from bundlehost.services.errors import NotInstalledError, ScriptHostError
from bundlehost.services.fs.safe_io import remove_file, remove_tree
from bundlehost.services.resources import Fetcher, Installer, SourceResolver
from bundlehost.services.script_host import ScriptHost
from bundlehost.services.settings import Settings
from bundlehost.services.source_config import load_config, save_config
from bundlehost.services.static_server import StaticServer

_log = logging.getLogger("bundlehost.supervisor")

CommandHandler = Callable[[Mapping[str, Any]], Awaitable[None]]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Supervisor:
    """
    Owns the source configuration and every running service, and is the only
    dispatcher of normalized commands.

    Commands are idempotent: each handler checks current state (and the set of
    commands still in flight) before acting, so repeated or overlapping commands
    are no-ops rather than races. Handlers are the single catch boundary; any
    failure becomes an ``error`` event tagged with the command kind.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        paths: PathProvider,
        bridge: MessageBridge,
        resolver: SourceResolver,
        fetcher: Fetcher,
        installer: Installer,
        script_host: ScriptHost,
        static_server: StaticServer,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.paths = paths
        self.bridge = bridge
        self.resolver = resolver
        self.fetcher = fetcher
        self.installer = installer
        self.script_host = script_host
        self.static_server = static_server
        self._http = http
        self.config: SourceConfig = load_config(paths.metadata_path(), settings)
        self._inflight: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._stopped = asyncio.Event()
        self._started = False
        self._handlers: Dict[str, CommandHandler] = {
            "get-state": self._cmd_get_state,
            "set-resource-url": self._cmd_set_resource_url,
            "download-resources": self._cmd_download,
            "start-server": self._cmd_start_server,
            "stop-server": self._cmd_stop_server,
            "start-web": self._cmd_start_web,
            "stop-web": self._cmd_stop_web,
            "shutdown": self._cmd_shutdown,
        }

    # ---------- state ----------

    def snapshot(self) -> ProcessState:
        return ProcessState(
            config=SourceConfig(self.config.locator, self.config.tracked_branch, self.config.installed_version),
            has_installation=self.installer.has_installation(),
            script_service_running=self.script_host.running,
            static_service_port=self.static_server.port,
        )

    def state_payload(self) -> dict[str, Any]:
        return self.snapshot().to_payload()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def start(self) -> None:
        """Prepares the on-disk tree and announces readiness."""
        if self._started:
            return
        self.paths.ensure_tree()
        self._started = True
        self.bridge.emit("ready", {"state": self.state_payload()})

    def get_state(self) -> None:
        self.bridge.emit("state", {"state": self.state_payload()})

    def _persist(self) -> None:
        save_config(self.paths.metadata_path(), self.config)

    # ---------- lifecycle operations ----------

    async def reconfigure(self, locator: str, branch: Optional[str] = None) -> None:
        self.config.locator = locator
        if branch:
            self.config.tracked_branch = branch
        self._persist()
        self.get_state()

    def _report_progress(self, progress: DownloadProgress) -> None:
        self.bridge.emit("download-progress", progress.to_payload())

    async def download_and_install(self) -> None:
        if "download" in self._inflight:
            _log.info("download.skipped", extra={"extra": {"reason": "already running"}})
            return
        self._inflight.add("download")
        archive = self.paths.archive_path()
        try:
            self.bridge.emit("download-started")
            resolved = await self.resolver.resolve(self.config.locator, self.config.tracked_branch)
            _log.info("download.resolved", extra={"extra": {"url": resolved.download_url, "branch": resolved.branch, "version": resolved.version}})
            await self.fetcher.download(resolved.download_url, archive, on_progress=self._report_progress)
            await asyncio.to_thread(self.installer.unpack_and_install, archive)
        except BaseException:
            remove_file(archive)
            remove_tree(self.paths.scratch_dir())
            raise
        finally:
            self._inflight.discard("download")

        self.config.tracked_branch = resolved.branch
        self.config.installed_version = resolved.version or utc_timestamp()
        self._persist()
        self.bridge.emit("download-complete", {"state": self.state_payload()})

    async def start_script_service(self) -> None:
        if self.script_host.running or "start-server" in self._inflight:
            return
        if not self.installer.has_installation():
            raise NotInstalledError()
        entry = self.paths.entry_script()
        if not entry.is_file():
            raise ScriptHostError(f"{self.settings.entry_script} not found in resources")
        self._inflight.add("start-server")
        try:
            await asyncio.to_thread(self.script_host.start, entry)
        finally:
            self._inflight.discard("start-server")
        self.bridge.emit("server-started")
        self.get_state()

    async def stop_script_service(self) -> None:
        if not self.script_host.running:
            return
        try:
            await asyncio.to_thread(self.script_host.close)
        except Exception:
            _log.exception("script_service.close.failed")
        self.bridge.emit("server-stopped")
        self.get_state()

    async def start_static_service(self) -> None:
        if self.static_server.running:
            self.bridge.emit("web-started", {"port": self.static_server.port})
            return
        if "start-web" in self._inflight:
            return
        if not self.installer.has_installation():
            raise NotInstalledError()
        self._inflight.add("start-web")
        try:
            port = await self.static_server.start(self.paths.slot_dir(), self.settings.static_port)
        finally:
            self._inflight.discard("start-web")
        self.bridge.emit("web-started", {"port": port})

    async def stop_static_service(self) -> None:
        if not self.static_server.running:
            return
        try:
            await self.static_server.stop()
        except Exception:
            _log.exception("static_service.close.failed")
        self.bridge.emit("web-stopped")

    async def shutdown(self) -> None:
        if self._stopped.is_set():
            return
        for stop in (self.stop_static_service, self.stop_script_service):
            try:
                await stop()
            except Exception:
                _log.exception("shutdown.step.failed")
        self._stopped.set()
        _log.info("supervisor.stopped")

    # ---------- command handlers ----------

    async def _cmd_get_state(self, data: Mapping[str, Any]) -> None:
        self.get_state()

    async def _cmd_set_resource_url(self, data: Mapping[str, Any]) -> None:
        url = data.get("url")
        if not isinstance(url, str) or not url.strip():
            _log.debug("set-resource-url.ignored", extra={"extra": {"data": dict(data)}})
            return
        branch = data.get("branch")
        await self.reconfigure(url.strip(), branch.strip() if isinstance(branch, str) and branch.strip() else None)

    async def _cmd_download(self, data: Mapping[str, Any]) -> None:
        await self.download_and_install()

    async def _cmd_start_server(self, data: Mapping[str, Any]) -> None:
        await self.start_script_service()

    async def _cmd_stop_server(self, data: Mapping[str, Any]) -> None:
        await self.stop_script_service()

    async def _cmd_start_web(self, data: Mapping[str, Any]) -> None:
        await self.start_static_service()

    async def _cmd_stop_web(self, data: Mapping[str, Any]) -> None:
        await self.stop_static_service()

    async def _cmd_shutdown(self, data: Mapping[str, Any]) -> None:
        await self.shutdown()

    # ---------- dispatch ----------

    async def handle(self, command: Command) -> None:
        handler = self._handlers.get(command.kind)
        if handler is None:
            _log.debug("command.unknown", extra={"extra": {"kind": command.kind}})
            return
        try:
            await handler(command.data or {})
        except Exception as e:
            _log.error("command.failed", exc_info=True, extra={"extra": {"kind": command.kind}})
            self.bridge.emit("error", {"context": command.kind, "message": str(e) or type(e).__name__})

    def dispatch(self, command: Command) -> Optional[asyncio.Task]:
        """State reads answer inline; everything else runs as its own task."""
        if command.kind == "get-state":
            self.get_state()
            return None
        task = asyncio.create_task(self.handle(command), name=f"bundlehost-{command.kind}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def submit(self, raw: Any) -> Optional[asyncio.Task]:
        command = normalize(raw)
        if command is None:
            return None
        return self.dispatch(command)

    async def run(self, channel: Optional[Channel] = None) -> None:
        """
        Message loop: reads envelopes until ``shutdown`` or end of input.
        End of input performs the same best-effort shutdown.
        """
        channel = channel or self.bridge.channel
        self.start()
        stream = channel.receive().__aiter__()
        stop_wait = asyncio.create_task(self._stopped.wait())
        try:
            while not self._stopped.is_set():
                next_raw = asyncio.ensure_future(stream.__anext__())
                done, _ = await asyncio.wait({next_raw, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if next_raw not in done:
                    next_raw.cancel()
                    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                        await next_raw
                    break
                try:
                    raw = next_raw.result()
                except StopAsyncIteration:
                    break
                self.submit(raw)
        finally:
            stop_wait.cancel()
            await self.shutdown()
            for task in list(self._tasks):
                if task is not asyncio.current_task():
                    task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
