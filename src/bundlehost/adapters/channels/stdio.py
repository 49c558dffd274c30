# src/bundlehost/adapters/channels/stdio.py
from __future__ import annotations
import asyncio
import json
import sys
import threading
from typing import Any, AsyncIterator, Mapping, Optional, TextIO


class StdioChannel:
    """
    Newline-delimited JSON over stdin/stdout.
    Each inbound line is handed over as-is (the bridge decodes it); each
    outbound message is written as one compact JSON line.
    """

    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        self._in = stdin or sys.stdin
        self._out = stdout or sys.stdout
        self._write_lock = threading.Lock()
        self.closed = False

    def send(self, message: Mapping[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("channel is closed")
        line = json.dumps(message, ensure_ascii=False, separators=(",", ":"), default=str)
        with self._write_lock:
            self._out.write(line + "\n")
            self._out.flush()

    async def receive(self) -> AsyncIterator[Any]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

        def _push(item: Optional[str]) -> bool:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, item)
            except RuntimeError:
                # loop already closed; the reader thread just ends
                return False
            return True

        def _pump() -> None:
            for line in self._in:
                if not _push(line):
                    return
            _push(None)

        # daemon thread: a blocked readline must not hold the process open after shutdown
        threading.Thread(target=_pump, name="bundlehost-stdin", daemon=True).start()
        while not self.closed:
            line = await queue.get()
            if line is None:
                return
            if line.strip():
                yield line

    async def aclose(self) -> None:
        self.closed = True
