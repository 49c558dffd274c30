# src/bundlehost/services/client.py
from __future__ import annotations
import asyncio
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional

from bundlehost.config import const
from bundlehost.domain import DownloadProgress
from bundlehost.services.bridge import encode, normalize

Listener = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class ResourceState:
    resource_url: str = const.DEFAULT_RESOURCE_URL
    branch: Optional[str] = const.DEFAULT_BRANCH
    version: Optional[str] = None
    has_resources: bool = False
    server_running: bool = False
    web_server_port: Optional[int] = None


def _pick(data: Mapping[str, Any], key: str, kind: type | tuple[type, ...], current: Any) -> Any:
    value = data.get(key)
    if isinstance(value, bool) and kind is not bool:
        return current
    return value if isinstance(value, kind) else current


class ResourceClient:
    """
    Host-side mirror of the supervisor state.

    Consumes outbound supervisor events (tolerantly: unknown fields and wrong
    types keep the previous value), tracks download progress and errors, and
    sends canonical commands through ``send``.
    """

    def __init__(self, send: Callable[[Mapping[str, Any]], None]) -> None:
        self._send = send
        self.state = ResourceState()
        self.progress: Optional[DownloadProgress] = None
        self.errors: list[str] = []
        self._state_listeners: list[Listener] = []
        self._progress_listeners: list[Listener] = []
        self._error_listeners: list[Listener] = []
        self._message_listeners: list[Listener] = []
        self._waiters: list[tuple[frozenset[str], asyncio.Future]] = []

    # --- subscriptions ---
    def on_state(self, listener: Listener) -> None:
        self._state_listeners.append(listener)
        listener(self.state)

    def on_progress(self, listener: Listener) -> None:
        self._progress_listeners.append(listener)
        listener(self.progress)

    def on_error(self, listener: Listener) -> None:
        self._error_listeners.append(listener)

    def on_message(self, listener: Listener) -> None:
        self._message_listeners.append(listener)

    def expect(self, *kinds: str) -> asyncio.Future:
        """Future resolved with the next message whose kind is one of ``kinds``."""
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append((frozenset(kinds), fut))
        return fut

    # --- commands ---
    def command(self, kind: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._send(encode(kind, data))

    def get_state(self) -> None:
        self.command("get-state")

    def set_resource_url(self, url: str, branch: Optional[str] = None) -> None:
        self.state = replace(self.state, resource_url=url, branch=branch or self.state.branch)
        data: dict[str, Any] = {"url": url}
        if branch:
            data["branch"] = branch
        self.command("set-resource-url", data)
        self._emit_state()

    def download_resources(self) -> None:
        self.progress = None
        self._emit_progress()
        self.command("download-resources")

    def start_server(self) -> None:
        self.command("start-server")

    def stop_server(self) -> None:
        self.command("stop-server")

    def start_web(self) -> None:
        self.command("start-web")

    def stop_web(self) -> None:
        self.command("stop-web")

    def shutdown(self) -> None:
        self.command("shutdown")

    # --- inbound ---
    def handle_message(self, raw: Any) -> None:
        message = normalize(raw)
        if message is None:
            return
        kind, data = message.kind, message.data or {}
        if kind in ("ready", "state", "download-complete"):
            self._update_state(data.get("state"))
            if kind == "download-complete":
                self.progress = None
                self._emit_progress()
        elif kind == "download-started":
            self.progress = DownloadProgress(0, 0)
            self._emit_progress()
        elif kind == "download-progress":
            self.progress = DownloadProgress(
                bytes_received=_pick(data, "downloaded", int, 0),
                total_bytes=_pick(data, "total", int, 0),
            )
            self._emit_progress()
        elif kind == "server-started":
            self._set(server_running=True)
        elif kind == "server-stopped":
            self._set(server_running=False)
        elif kind == "web-started":
            port = data.get("port")
            if isinstance(port, int) and not isinstance(port, bool):
                self._set(web_server_port=port)
        elif kind == "web-stopped":
            self._set(web_server_port=None)
        elif kind == "error":
            text = data.get("message")
            if isinstance(text, str):
                self.errors.append(text)
                for listener in list(self._error_listeners):
                    listener(text)

        for listener in list(self._message_listeners):
            listener(message)
        self._resolve_waiters(kind, message)

    def _resolve_waiters(self, kind: str, message: Any) -> None:
        pending = []
        for kinds, fut in self._waiters:
            if fut.done():
                continue
            if kind in kinds:
                fut.set_result(message)
            else:
                pending.append((kinds, fut))
        self._waiters = pending

    def _update_state(self, payload: Any) -> None:
        if not isinstance(payload, Mapping):
            return
        s = self.state
        self.state = ResourceState(
            resource_url=_pick(payload, "resourceUrl", str, s.resource_url),
            branch=_pick(payload, "branch", str, s.branch),
            version=_pick(payload, "version", str, s.version),
            has_resources=_pick(payload, "hasResources", bool, s.has_resources),
            server_running=_pick(payload, "serverRunning", bool, s.server_running),
            web_server_port=_pick(payload, "webServerPort", int, s.web_server_port),
        )
        self._emit_state()

    def _set(self, **changes: Any) -> None:
        self.state = replace(self.state, **changes)
        self._emit_state()

    def _emit_state(self) -> None:
        for listener in list(self._state_listeners):
            listener(self.state)

    def _emit_progress(self) -> None:
        for listener in list(self._progress_listeners):
            listener(self.progress)
