from __future__ import annotations
from typing import Any, AsyncIterator, Callable, Mapping, Protocol

from bundlehost.domain import Event


class EventBus(Protocol):
    def subscribe(self, type_prefix: str, handler: Callable[[Event], Any]) -> None: ...
    def publish(self, event: Event) -> None: ...


class Channel(Protocol):
    """Host transport: raw inbound envelopes in, flat outbound messages out."""

    def send(self, message: Mapping[str, Any]) -> None: ...
    def receive(self) -> AsyncIterator[Any]: ...
    async def aclose(self) -> None: ...
