import socket
import socketserver
import textwrap
import threading
import time

import pytest

from bundlehost.services.errors import ScriptHostError
from bundlehost.services.script_host import CaptureSlot, ScriptHost, intercepting_subclass
from bundlehost.services.script_host.capture import begin_close


def _entry(tmp_path, source: str, **siblings: str):
    game = tmp_path / "bundle" / "game"
    game.mkdir(parents=True, exist_ok=True)
    for name, body in siblings.items():
        (game / f"{name}.py").write_text(textwrap.dedent(body), encoding="utf-8")
    entry = game / "server.py"
    entry.write_text(textwrap.dedent(source), encoding="utf-8")
    return entry


@pytest.fixture
def host():
    h = ScriptHost()
    yield h
    h.close()


def test_captures_the_service_instance(tmp_path, host, server_script):
    handle = host.start(_entry(tmp_path, server_script))

    assert host.running
    assert host.handle is handle
    assert isinstance(handle, socketserver.ThreadingTCPServer)
    assert handle.server_address[0] == "127.0.0.1"

    host.close()
    assert not host.running
    assert handle.socket.fileno() == -1


def test_start_twice_keeps_one_capture(tmp_path, host, server_script):
    entry = _entry(tmp_path, server_script)
    first = host.start(entry)
    assert host.start(entry) is first


def test_serving_instance_is_shut_down(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import socketserver
        import threading


        class Handler(socketserver.BaseRequestHandler):
            def handle(self):
                self.request.sendall(b"pong")


        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), Handler)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        """,
    )
    handle = host.start(entry)
    port = handle.server_address[1]
    with socket.create_connection(("127.0.0.1", port), timeout=5) as conn:
        assert conn.recv(4) == b"pong"

    host.close()
    assert not host.running
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1).close()


def test_other_exports_pass_through(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import socketserver
        from socketserver import BaseRequestHandler, ThreadingTCPServer

        assert socketserver.TCPServer.__module__ == "socketserver"
        server = ThreadingTCPServer(("127.0.0.1", 0), BaseRequestHandler)
        """,
    )
    assert isinstance(host.start(entry), socketserver.ThreadingTCPServer)


def test_sibling_modules_resolve_next_to_entry(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import socketserver
        import settings

        server = socketserver.ThreadingTCPServer(("127.0.0.1", settings.PORT), socketserver.BaseRequestHandler)
        """,
        settings="PORT = 0\n",
    )
    host.start(entry)
    assert host.running


def test_script_without_the_capability_fails(tmp_path, host):
    with pytest.raises(ScriptHostError):
        host.start(_entry(tmp_path, "value = 1 + 1\n"))
    assert not host.running


def test_missing_entry(tmp_path, host):
    with pytest.raises(ScriptHostError):
        host.start(tmp_path / "nope" / "server.py")


def test_failing_script_releases_captured_service(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import socketserver

        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), socketserver.BaseRequestHandler)
        raise RuntimeError("boom")
        """,
    )
    with pytest.raises(ScriptHostError, match="boom"):
        host.start(entry)
    assert not host.running


@pytest.mark.parametrize("module", ["sys", "importlib", "bundlehost.services.supervisor", "builtins"])
def test_denied_modules(tmp_path, host, module):
    entry = _entry(tmp_path, f"import {module}\n")
    with pytest.raises(ScriptHostError):
        host.start(entry)


def test_exit_builtins_are_removed(tmp_path, host):
    with pytest.raises(ScriptHostError):
        host.start(_entry(tmp_path, "exit(0)\n"))


_SERVER_LINE = "import socketserver\nserver = socketserver.ThreadingTCPServer((\"127.0.0.1\", 0), socketserver.BaseRequestHandler)\n"


@pytest.mark.parametrize(
    "source",
    [
        "from os import sys\n",
        "import os\nmodules = os.sys.modules\n",
        "import socketserver\nmodules = socketserver.sys.modules\n",
        "import threading\nmodules = threading._sys.modules\n",
        "import subprocess\n",
        "import ctypes\n",
        "def f():\n    pass\nscope = f.__globals__\n",
        "scope = getattr(lambda: 0, \"__glob\" + \"als__\")\n",
        "exec(\"import sys\")\n",
        "eval(\"1\")\n",
        "loader = __loader__\n",
    ],
)
def test_script_cannot_reach_interpreter_internals(tmp_path, host, source):
    with pytest.raises(ScriptHostError):
        host.start(_entry(tmp_path, source + _SERVER_LINE))
    assert not host.running


def test_denied_attribute_in_sibling_module(tmp_path, host):
    entry = _entry(tmp_path, "import helpers\n" + _SERVER_LINE, helpers="scope = (lambda: 0).__globals__\n")
    with pytest.raises(ScriptHostError, match="__globals__"):
        host.start(entry)


def test_granted_modules_and_submodules(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import json
        import os.path
        from collections import abc
        from os import path
        import socketserver

        assert os.path.join("a", "b") == path.join("a", "b")
        assert abc.Mapping is not None
        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), socketserver.BaseRequestHandler)
        server.payload = json.dumps({"ok": True})
        """,
    )
    assert host.start(entry).payload == '{"ok": true}'


def test_top_level_serve_forever(tmp_path, host):
    entry = _entry(
        tmp_path,
        """
        import socketserver


        class Handler(socketserver.BaseRequestHandler):
            def handle(self):
                self.request.sendall(b"pong")


        server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), Handler)
        server.serve_forever()
        """,
    )
    handle = host.start(entry)
    assert host.running
    port = handle.server_address[1]
    with socket.create_connection(("127.0.0.1", port), timeout=5) as conn:
        assert conn.recv(4) == b"pong"

    host.close()
    assert not host.running
    assert not any(t.name == "bundle-main" and t.is_alive() for t in threading.enumerate())
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=1).close()


def test_closed_service_does_not_start_serving():
    slot = CaptureSlot()
    server_cls = intercepting_subclass(socketserver.ThreadingTCPServer, slot)
    server = server_cls(("127.0.0.1", 0), socketserver.BaseRequestHandler)
    try:
        assert slot.value is server
        assert slot.constructed.is_set()
        assert begin_close(server) is False

        worker = threading.Thread(target=server.serve_forever, daemon=True)
        worker.start()
        worker.join(2)
        assert not worker.is_alive()
    finally:
        server.server_close()

