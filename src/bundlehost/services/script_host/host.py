# src/bundlehost/services/script_host/host.py
from __future__ import annotations
import builtins
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from bundlehost.config import const
from bundlehost.services.errors import ScriptHostError
from bundlehost.services.script_host.capture import CaptureSlot, begin_close
from bundlehost.services.script_host.loader import GrantedLoader
from bundlehost.services.script_host.policy import DENIED_MODULES, ModulePolicy, compile_script, guarded_getattr
from bundlehost.services.script_host.timers import TimerRegistry

_log = logging.getLogger("bundlehost.script_host")

# interactive helpers and ways to run code outside the restricted builtins
_REMOVED_BUILTINS = ("exit", "quit", "input", "breakpoint", "help", "copyright", "credits", "license", "exec", "eval", "compile")
_KEPT_DUNDERS = ("__build_class__", "__debug__", "__name__")


@dataclass(frozen=True)
class ScriptProcess:
    """Read-only process handle granted to bundle scripts."""

    pid: int
    argv: tuple[str, ...]
    platform: str
    env: Mapping[str, str] = field(default_factory=dict)
    cwd_path: str = ""

    def cwd(self) -> str:
        return self.cwd_path


def _output_sink(logger: logging.Logger):
    def _print(*args: Any, sep: Optional[str] = " ", end: Optional[str] = "\n", file: Any = None, flush: bool = False) -> None:
        if file is not None:
            builtins.print(*args, sep=sep, end=end, file=file, flush=flush)
            return
        logger.info((sep if sep is not None else " ").join(str(a) for a in args))

    return _print


def restricted_builtins(loader: GrantedLoader, sink: Any) -> dict[str, Any]:
    ns = {
        k: v
        for k, v in vars(builtins).items()
        if k not in _REMOVED_BUILTINS and (not k.startswith("__") or k in _KEPT_DUNDERS)
    }
    ns["__import__"] = loader
    ns["print"] = sink
    ns["getattr"] = guarded_getattr
    return ns


class ScriptHost:
    """
    Runs a bundle's entry script as a module body in an isolated namespace and
    captures the service object it builds through the intercepted capability.

    Granted to the script: a dependency loader (``import``, limited to the
    module policy), an output sink (``print``), timers (``set_timeout`` /
    ``set_interval`` and their ``clear_*``), a buffer type (``Buffer``) and a
    process handle (``process``).

    The module body runs on its own daemon thread. ``start`` returns as soon as
    the service has been constructed, so a body that ends in ``serve_forever()``
    keeps serving on that thread. "Running" means the capture slot holds an
    instance.
    """

    def __init__(
        self,
        *,
        intercept_module: str = const.INTERCEPT_MODULE,
        intercept_export: str = const.INTERCEPT_EXPORT,
        granted: Iterable[str] = const.GRANTED_MODULES,
        denied: Iterable[str] = DENIED_MODULES,
        output: Optional[logging.Logger] = None,
        startup_timeout: float = 30.0,
        settle_time: float = 0.25,
        stop_timeout: float = 5.0,
    ) -> None:
        self.intercept_module = intercept_module
        self.intercept_export = intercept_export
        self.policy = ModulePolicy(granted, denied)
        self.output = output or logging.getLogger("bundlehost.script")
        self.startup_timeout = startup_timeout
        self.settle_time = settle_time
        self.stop_timeout = stop_timeout
        self._slot = CaptureSlot()
        self._timers: Optional[TimerRegistry] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return bool(self._slot)

    @property
    def handle(self) -> Optional[Any]:
        return self._slot.value

    def _namespace(self, path: Path, loader: GrantedLoader, timers: TimerRegistry) -> dict[str, Any]:
        sink = _output_sink(self.output)
        restricted = restricted_builtins(loader, sink)
        loader.bind(restricted)
        return {
            "__name__": "__bundle_main__",
            "__file__": str(path),
            "__package__": "",
            "__builtins__": restricted,
            "print": sink,
            "set_timeout": timers.set_timeout,
            "clear_timeout": timers.clear,
            "set_interval": timers.set_interval,
            "clear_interval": timers.clear,
            "Buffer": bytearray,
            "process": ScriptProcess(
                pid=os.getpid(),
                argv=(str(path),),
                platform=sys.platform,
                env=MappingProxyType(dict(os.environ)),
                cwd_path=os.getcwd(),
            ),
        }

    def start(self, entry_script: Path | str) -> Any:
        if self.running:
            return self.handle
        path = Path(entry_script)
        if not path.is_file():
            raise ScriptHostError(f"Entry script not found: {path}")
        try:
            code = compile_script(path)
        except (SyntaxError, OSError, UnicodeDecodeError) as e:
            raise ScriptHostError(f"Entry script failed: {e}") from e

        wake = threading.Event()
        done = threading.Event()
        started = threading.Event()
        failures: list[BaseException] = []
        slot = CaptureSlot(notify=wake)
        timers = TimerRegistry()
        loader = GrantedLoader(
            path.parent,
            intercept_module=self.intercept_module,
            intercept_export=self.intercept_export,
            slot=slot,
            policy=self.policy,
        )
        namespace = self._namespace(path, loader, timers)

        def run_body() -> None:
            try:
                exec(code, namespace)
            except BaseException as e:  # SystemExit from the script included
                failures.append(e)
                if started.is_set():
                    _log.error("script_host.body.failed", exc_info=True, extra={"extra": {"entry": str(path)}})
            finally:
                done.set()
                wake.set()

        thread = threading.Thread(target=run_body, name="bundle-main", daemon=True)
        thread.start()
        if not wake.wait(self.startup_timeout):
            self._abort(slot, timers, thread)
            raise ScriptHostError(f"Entry script did not create its service within {self.startup_timeout:g}s")
        # a body still running after construction is serving; one about to finish or fail gets settle_time
        done.wait(self.settle_time)

        if done.is_set() and failures:
            self._abort(slot, timers, thread)
            e = failures[0]
            raise ScriptHostError(f"Entry script failed: {e}") from e
        if not (slot.constructed.is_set() and slot):
            self._abort(slot, timers, thread)
            raise ScriptHostError(f"Entry script did not create a service via {self.intercept_module}.{self.intercept_export}")

        started.set()
        self._slot, self._timers, self._thread = slot, timers, thread
        _log.info("script_host.started", extra={"extra": {"entry": str(path), "service": type(slot.value).__name__}})
        return slot.value

    def _abort(self, slot: CaptureSlot, timers: TimerRegistry, thread: threading.Thread) -> None:
        timers.cancel_all()
        instance = slot.clear()
        if instance is not None:
            try:
                _shutdown_service(instance)
            except Exception:
                _log.warning("script_host.cleanup.failed", exc_info=True)
        thread.join(self.stop_timeout if instance is not None else 0)

    def close(self) -> None:
        """Stops the captured service. The host is stopped afterwards even if closing raised."""
        instance = self._slot.clear()
        timers, self._timers = self._timers, None
        thread, self._thread = self._thread, None
        if timers is not None:
            timers.cancel_all()
        try:
            if instance is not None:
                _shutdown_service(instance)
                _log.info("script_host.closed", extra={"extra": {"service": type(instance).__name__}})
        finally:
            if thread is not None:
                thread.join(self.stop_timeout)
                if thread.is_alive():
                    _log.warning("script_host.body.still_running")


def _shutdown_service(instance: Any) -> None:
    # shutdown() blocks until serve_forever returns, so only call it while serving
    if begin_close(instance) and callable(getattr(instance, "shutdown", None)):
        instance.shutdown()
    for name in ("server_close", "close"):
        closer = getattr(instance, name, None)
        if callable(closer):
            closer()
            return
