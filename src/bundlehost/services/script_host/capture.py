# src/bundlehost/services/script_host/capture.py
from __future__ import annotations
import threading
import types
from typing import Any, Optional

from bundlehost.services.script_host.policy import GrantedModule, ModuleGrant

_STATE_ATTR = "_bundlehost_service"


class ServiceState:
    """Serving/closed flags of one captured service, changed together under ``lock``."""

    __slots__ = ("lock", "serving", "closed")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.serving = False
        self.closed = False


def _state(instance: Any) -> Optional[ServiceState]:
    return getattr(instance, "__dict__", {}).get(_STATE_ATTR)


class CaptureSlot:
    """
    Holds the last service instance built through the intercepted constructor.
    ``constructed`` is set once that constructor has returned; ``notify`` (when
    given) is set at the same moment so a waiter can watch several sources.
    """

    def __init__(self, notify: Optional[threading.Event] = None) -> None:
        self._value: Optional[Any] = None
        self._lock = threading.Lock()
        self._notify = notify
        self.constructed = threading.Event()

    def record(self, instance: Any) -> None:
        with self._lock:
            self._value = instance

    def mark_constructed(self) -> None:
        self.constructed.set()
        if self._notify is not None:
            self._notify.set()

    @property
    def value(self) -> Optional[Any]:
        with self._lock:
            return self._value

    def clear(self) -> Optional[Any]:
        with self._lock:
            value, self._value = self._value, None
            return value

    def discard(self, instance: Any) -> None:
        with self._lock:
            if self._value is instance:
                self._value = None

    def __bool__(self) -> bool:
        return self.value is not None


def intercepting_subclass(base: type, slot: CaptureSlot) -> type:
    """
    Subclass of ``base`` that records each new instance into ``slot`` before the
    real constructor runs. Servers with ``serve_forever`` also track whether they
    are serving, so the host knows whether ``shutdown()`` can return.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.__dict__[_STATE_ATTR] = ServiceState()
        slot.record(self)
        try:
            base.__init__(self, *args, **kwargs)
        except BaseException:
            slot.discard(self)
            raise
        slot.mark_constructed()

    ns: dict[str, Any] = {"__init__": __init__, "__module__": base.__module__, "__qualname__": base.__qualname__}

    if callable(getattr(base, "serve_forever", None)):

        def serve_forever(self, *args: Any, **kwargs: Any) -> Any:
            state = _state(self)
            with state.lock:
                if state.closed:
                    return None
                state.serving = True
            try:
                return base.serve_forever(self, *args, **kwargs)
            finally:
                with state.lock:
                    state.serving = False

        ns["serve_forever"] = serve_forever

    return types.new_class(base.__name__, (base,), exec_body=lambda body: body.update(ns))


def begin_close(instance: Any) -> bool:
    """Marks ``instance`` closed; True when ``serve_forever`` is running and needs ``shutdown()``."""
    state = _state(instance)
    if state is None:
        return False
    with state.lock:
        state.closed = True
        return state.serving


class CapabilityProxy(GrantedModule):
    """
    Stand-in for the intercepted module: its service export resolves to an
    intercepting subclass, everything else behaves like any granted module.
    """

    def __init__(self, target: types.ModuleType, export: str, slot: CaptureSlot, grant: ModuleGrant) -> None:
        super().__init__(target, grant)
        self.__dict__[export] = intercepting_subclass(getattr(target, export), slot)
