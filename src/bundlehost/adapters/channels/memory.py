# src/bundlehost/adapters/channels/memory.py
from __future__ import annotations
import asyncio
from typing import Any, AsyncIterator, Callable, Mapping, Optional

_EOF = object()


class MemoryChannel:
    """
    In-process channel: inbound envelopes are queued with ``put``; outbound
    messages are collected in ``sent`` and handed to ``on_send`` when given.
    """

    def __init__(self, on_send: Optional[Callable[[dict[str, Any]], None]] = None) -> None:
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()
        self._on_send = on_send
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    def put(self, raw: Any) -> None:
        self._inbound.put_nowait(raw)

    def send(self, message: Mapping[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("channel is closed")
        message = dict(message)
        self.sent.append(message)
        if self._on_send is not None:
            self._on_send(message)

    async def receive(self) -> AsyncIterator[Any]:
        while True:
            raw = await self._inbound.get()
            if raw is _EOF:
                return
            yield raw

    def end(self) -> None:
        """Signals end of input to ``receive``."""
        self._inbound.put_nowait(_EOF)

    async def aclose(self) -> None:
        self.closed = True

    def kinds(self) -> list[str]:
        return [m["kind"] for m in self.sent]

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["kind"] == kind]

    def clear(self) -> None:
        self.sent.clear()
