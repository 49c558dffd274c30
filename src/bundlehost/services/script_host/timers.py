# src/bundlehost/services/script_host/timers.py
from __future__ import annotations
import itertools
import logging
import threading
from typing import Any, Callable, Dict

_log = logging.getLogger("bundlehost.script_host.timers")


class TimerRegistry:
    """Timers granted to a bundle script. Delays are in seconds; all are cancelled on close."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._stops: Dict[int, threading.Event] = {}
        self._lock = threading.Lock()

    def _run(self, timer_id: int, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except Exception:
            _log.exception("timer.callback.failed", extra={"extra": {"timer": timer_id}})

    def _spawn(self, delay: float, callback: Callable[..., Any], args: tuple, repeat: bool) -> int:
        timer_id = next(self._ids)
        stop = threading.Event()
        with self._lock:
            self._stops[timer_id] = stop
        interval = max(0.01 if repeat else 0.0, float(delay))

        def loop() -> None:
            try:
                while not stop.wait(interval):
                    self._run(timer_id, callback, args)
                    if not repeat:
                        return
            finally:
                with self._lock:
                    self._stops.pop(timer_id, None)

        threading.Thread(target=loop, name=f"bundle-timer-{timer_id}", daemon=True).start()
        return timer_id

    def set_timeout(self, callback: Callable[..., Any], delay: float = 0.0, *args: Any) -> int:
        return self._spawn(delay, callback, args, repeat=False)

    def set_interval(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        return self._spawn(delay, callback, args, repeat=True)

    def clear(self, timer_id: int) -> None:
        with self._lock:
            stop = self._stops.pop(timer_id, None)
        if stop is not None:
            stop.set()

    def cancel_all(self) -> None:
        with self._lock:
            stops = list(self._stops.values())
            self._stops.clear()
        for stop in stops:
            stop.set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._stops)
