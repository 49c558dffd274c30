from __future__ import annotations
import logging
import time
from collections import defaultdict
from threading import RLock
from typing import Any, Callable, DefaultDict, List

from bundlehost.domain import Event
from bundlehost.ports import EventBus

Handler = Callable[[Event], Any]

_log = logging.getLogger("bundlehost.eventbus")


class LocalEventBus(EventBus):
    """
    In-process bus keyed by event type prefixes.
      * prefix "" or "*" subscribes to everything.
      * handlers run synchronously on the publishing thread, in subscription order.
      * a failing handler is logged and skipped; publish never raises.
    """

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._lock = RLock()

    def subscribe(self, type_prefix: str, handler: Handler) -> None:
        with self._lock:
            self._subs[type_prefix].append(handler)

    def publish(self, event: Event) -> None:
        with self._lock:
            matched = [h for p, hs in self._subs.items() if p in ("", "*") or event.type.startswith(p) for h in hs]
        for handler in matched:
            try:
                handler(event)
            except Exception:
                _log.exception("eventbus.handler.failed", extra={"extra": {"type": event.type}})


def emit(bus: EventBus, type_: str, payload: dict, source: str) -> None:
    bus.publish(Event(type=type_, payload=payload, source=source, ts=time.time()))
