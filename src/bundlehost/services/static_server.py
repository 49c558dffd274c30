# src/bundlehost/services/static_server.py
from __future__ import annotations
import asyncio
import contextlib
import logging
import socket
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from bundlehost.config import const
from bundlehost.services.errors import StaticServiceError

_log = logging.getLogger("bundlehost.static")


def create_static_app(root: Path | str) -> FastAPI:
    app = FastAPI(title="BundleHost static", docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def drain_body(request: Request, call_next):
        # request bodies are consumed before the file handler sees the request
        await request.body()
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def file_error(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))

    app.mount("/", StaticFiles(directory=str(root), html=True), name="bundle")
    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to its owner."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class StaticServer:
    def __init__(self, *, host: str = const.STATIC_HOST, startup_timeout: float = 5.0, stop_timeout: float = 5.0) -> None:
        self.host = host
        self.startup_timeout = startup_timeout
        self.stop_timeout = stop_timeout
        self._server: Optional[_EmbeddedServer] = None
        self._task: Optional[asyncio.Task] = None
        self._sock: Optional[socket.socket] = None
        self._port: Optional[int] = None

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def running(self) -> bool:
        return self._server is not None

    def _bind(self, port: int) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, port))
        except OSError as e:
            sock.close()
            raise StaticServiceError(f"Cannot bind {self.host}:{port}: {e}") from e
        return sock

    async def start(self, root: Path | str, port: int = const.STATIC_PORT) -> int:
        if self._server is not None:
            return self._port  # type: ignore[return-value]
        root = Path(root)
        if not root.is_dir():
            raise StaticServiceError(f"Document root is not a directory: {root}")

        sock = self._bind(port)
        bound_port = sock.getsockname()[1]
        config = uvicorn.Config(
            create_static_app(root),
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        server = _EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]), name="bundlehost-static")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while not server.started:
            if task.done():
                sock.close()
                exc = None if task.cancelled() else task.exception()
                raise StaticServiceError(f"Static server exited during startup: {exc or 'no error reported'}")
            if loop.time() > deadline:
                server.should_exit = True
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                sock.close()
                raise StaticServiceError("Static server did not start in time")
            await asyncio.sleep(0.01)

        self._server, self._task, self._sock, self._port = server, task, sock, bound_port
        _log.info("static.started", extra={"extra": {"host": self.host, "port": bound_port, "root": str(root)}})
        return bound_port

    async def stop(self) -> None:
        server, task, sock = self._server, self._task, self._sock
        self._server = self._task = self._sock = None
        self._port = None
        if server is None:
            return
        try:
            server.should_exit = True
            if task is not None:
                try:
                    await asyncio.wait_for(asyncio.shield(task), timeout=self.stop_timeout)
                except asyncio.TimeoutError:
                    server.force_exit = True
                    await task
        finally:
            if sock is not None:
                sock.close()
        _log.info("static.stopped")
