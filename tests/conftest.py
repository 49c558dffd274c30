# tests/conftest.py
from __future__ import annotations
import io
import zipfile
from pathlib import Path
from typing import Callable, Mapping, Optional

import httpx
import pytest

from bundlehost.adapters.channels import MemoryChannel
from bundlehost.apps.bootstrap import build_supervisor, init_ctx
from bundlehost.services.app_context import AppContext, clear_ctx
from bundlehost.services.settings import Settings

SERVER_SCRIPT = """\
import socketserver


class Handler(socketserver.BaseRequestHandler):
    def handle(self):
        self.request.sendall(b"pong")


server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), Handler)
print("listening on", server.server_address[1])
"""


def make_zip(files: Mapping[str, str | bytes], *, root: Optional[str] = "noname-main") -> bytes:
    """Zip archive with ``files`` placed under ``root/`` (GitHub codeload layout)."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        if root:
            zf.writestr(f"{root}/", b"")
        for name, data in files.items():
            zf.writestr(f"{root}/{name}" if root else name, data)
    return buf.getvalue()


def bundle_zip(extra: Optional[Mapping[str, str | bytes]] = None, *, root: str = "noname-main") -> bytes:
    files: dict[str, str | bytes] = {
        "index.html": "<html><body>bundle</body></html>",
        "game/server.py": SERVER_SCRIPT,
    }
    files.update(extra or {})
    return make_zip(files, root=root)


# ---------- context for every test ----------
@pytest.fixture(autouse=True)
def _autocontext(tmp_path, monkeypatch):
    base_dir = tmp_path / "base"
    monkeypatch.setenv("BUNDLEHOST_BASE_DIR", str(base_dir))
    for key in ("BUNDLEHOST_RESOURCE_URL", "BUNDLEHOST_BRANCH", "BUNDLEHOST_STATIC_PORT", "BUNDLEHOST_LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)

    # static port 0: every test gets an ephemeral loopback port
    settings = Settings.from_sources(env_file=None).with_overrides(base_dir=str(base_dir), static_port=0, log_level="DEBUG")
    ctx = init_ctx(settings)
    try:
        yield ctx
    finally:
        clear_ctx()


@pytest.fixture
def ctx(_autocontext) -> AppContext:
    return _autocontext


@pytest.fixture
def settings(ctx) -> Settings:
    return ctx.settings


@pytest.fixture
def tmp_base_dir(ctx) -> Path:
    return ctx.paths.base_dir()


@pytest.fixture
def channel() -> MemoryChannel:
    return MemoryChannel()


@pytest.fixture
def make_supervisor(ctx, channel):
    """Supervisor wired like production, with HTTP answered by ``handler``."""

    def _make(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        def _unreachable(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("network disabled in tests", request=request)

        transport = httpx.MockTransport(handler or _unreachable)
        return build_supervisor(ctx, channel, transport=transport)

    return _make


@pytest.fixture
def cli_app():
    from bundlehost.apps.cli.app import app

    return app


@pytest.fixture(name="make_zip")
def make_zip_fixture():
    return make_zip


@pytest.fixture(name="bundle_zip")
def bundle_zip_fixture():
    return bundle_zip


@pytest.fixture(name="server_script")
def server_script_fixture() -> str:
    return SERVER_SCRIPT
