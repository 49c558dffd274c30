import asyncio
import json
import re

import httpx
import pytest

from bundlehost.domain import Command
from bundlehost.services.supervisor import utc_timestamp

DIRECT_URL = "https://cdn.example.test/bundle.zip"
TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


def _serve(archives):
    """MockTransport handler answering the direct URL with successive archives."""
    queue = list(archives)

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == DIRECT_URL and queue:
            return httpx.Response(200, content=queue.pop(0) if len(queue) > 1 else queue[0])
        return httpx.Response(404)

    return handler


async def _install(sup, channel):
    await sup.handle(Command("set-resource-url", {"url": DIRECT_URL}))
    await sup.handle(Command("download-resources"))
    assert channel.of_kind("error") == []


def test_initial_state(make_supervisor, settings):
    sup = make_supervisor()
    state = sup.state_payload()
    assert state == {
        "resourceUrl": settings.resource_url,
        "branch": "main",
        "version": None,
        "hasResources": False,
        "serverRunning": False,
        "webServerPort": None,
    }


def test_utc_timestamp_format():
    assert TIMESTAMP_RE.match(utc_timestamp())


@pytest.mark.asyncio
async def test_plain_url_install_uses_timestamp_version(make_supervisor, channel, bundle_zip, ctx):
    sup = make_supervisor(_serve([bundle_zip()]))
    await _install(sup, channel)

    kinds = channel.kinds()
    assert kinds[0] == "state"
    assert kinds[1] == "download-started"
    assert "download-progress" in kinds
    assert kinds[-1] == "download-complete"

    state = channel.of_kind("download-complete")[0]["data"]["state"]
    assert state["hasResources"] is True
    assert state["resourceUrl"] == DIRECT_URL
    assert state["branch"] == "main"
    assert TIMESTAMP_RE.match(state["version"])

    saved = json.loads(ctx.paths.metadata_path().read_text(encoding="utf-8"))
    assert saved == {"resourceUrl": DIRECT_URL, "branch": "main", "version": state["version"]}
    assert not ctx.paths.archive_path().exists()
    assert (ctx.paths.slot_dir() / "index.html").is_file()
    await sup.aclose()


@pytest.mark.asyncio
async def test_repository_install_records_revision(ctx, channel, make_supervisor, bundle_zip):
    api, codeload = ctx.settings.github_api_url, ctx.settings.github_codeload_url

    def handler(request):
        url = str(request.url)
        if url == f"{api}/repos/libnoname/noname":
            return httpx.Response(200, json={"default_branch": "develop"})
        if url == f"{api}/repos/libnoname/noname/commits/develop":
            return httpx.Response(200, json={"sha": "0123abcd"})
        if url == f"{codeload}/libnoname/noname/zip/refs/heads/develop":
            return httpx.Response(302, headers={"Location": "https://objects.example.test/archive.zip"})
        if url == "https://objects.example.test/archive.zip":
            return httpx.Response(200, content=bundle_zip(root="noname-develop"))
        return httpx.Response(404)

    sup = make_supervisor(handler)
    sup.config.tracked_branch = None
    await sup.handle(Command("download-resources"))

    assert channel.of_kind("error") == []
    state = sup.state_payload()
    assert state["branch"] == "develop"
    assert state["version"] == "0123abcd"
    assert state["hasResources"] is True
    await sup.aclose()


@pytest.mark.asyncio
async def test_second_install_replaces_previous_bundle(make_supervisor, channel, bundle_zip, ctx):
    first = bundle_zip({"old.txt": "old"})
    second = bundle_zip(root="noname-next")
    sup = make_supervisor(_serve([first, second]))

    await _install(sup, channel)
    assert (ctx.paths.slot_dir() / "old.txt").exists()
    await sup.handle(Command("download-resources"))

    assert not (ctx.paths.slot_dir() / "old.txt").exists()
    assert [p.name for p in ctx.paths.resources_dir().iterdir() if p.is_dir()] == ["bundle"]
    await sup.aclose()


@pytest.mark.asyncio
async def test_download_failure_is_reported_and_state_unchanged(make_supervisor, channel, ctx):
    sup = make_supervisor(lambda r: httpx.Response(500))
    await sup.handle(Command("set-resource-url", {"url": DIRECT_URL}))
    before = sup.state_payload()

    await sup.handle(Command("download-resources"))

    errors = channel.of_kind("error")
    assert len(errors) == 1
    assert errors[0]["data"]["context"] == "download-resources"
    assert "500" in errors[0]["data"]["message"]
    assert sup.state_payload() == before
    assert not ctx.paths.archive_path().exists()
    await sup.aclose()


@pytest.mark.asyncio
async def test_bad_locator_is_reported(make_supervisor, channel):
    sup = make_supervisor()
    await sup.handle(Command("set-resource-url", {"url": "ftp://example.test/bundle.zip"}))
    await sup.handle(Command("download-resources"))
    assert channel.of_kind("error")[0]["data"]["context"] == "download-resources"
    await sup.aclose()


@pytest.mark.asyncio
async def test_start_server_requires_installation(make_supervisor, channel):
    sup = make_supervisor()
    await sup.handle(Command("start-server"))
    await sup.handle(Command("start-web"))

    assert [e["data"] for e in channel.of_kind("error")] == [
        {"context": "start-server", "message": "Resources not downloaded"},
        {"context": "start-web", "message": "Resources not downloaded"},
    ]
    await sup.aclose()


@pytest.mark.asyncio
async def test_start_server_is_idempotent(make_supervisor, channel, bundle_zip):
    sup = make_supervisor(_serve([bundle_zip()]))
    await _install(sup, channel)
    channel.clear()

    await sup.handle(Command("start-server"))
    handle = sup.script_host.handle
    await sup.handle(Command("start-server"))

    assert channel.of_kind("server-started") == [{"kind": "server-started"}]
    assert sup.script_host.handle is handle
    assert sup.state_payload()["serverRunning"] is True

    await sup.handle(Command("stop-server"))
    await sup.handle(Command("stop-server"))
    assert len(channel.of_kind("server-stopped")) == 1
    assert sup.state_payload()["serverRunning"] is False
    await sup.aclose()


@pytest.mark.asyncio
async def test_stop_while_stopped_is_silent(make_supervisor, channel):
    sup = make_supervisor()
    await sup.handle(Command("stop-server"))
    await sup.handle(Command("stop-web"))
    assert channel.sent == []
    await sup.aclose()


@pytest.mark.asyncio
async def test_missing_entry_script(make_supervisor, channel, make_zip):
    sup = make_supervisor(_serve([make_zip({"index.html": "x"})]))
    await _install(sup, channel)
    await sup.handle(Command("start-server"))
    error = channel.of_kind("error")[0]["data"]
    assert error["context"] == "start-server"
    assert "game/server.py" in error["message"]
    assert sup.state_payload()["serverRunning"] is False
    await sup.aclose()


@pytest.mark.asyncio
async def test_static_service_lifecycle(make_supervisor, channel, bundle_zip):
    sup = make_supervisor(_serve([bundle_zip()]))
    await _install(sup, channel)

    await sup.handle(Command("start-web"))
    port = channel.of_kind("web-started")[0]["data"]["port"]
    assert sup.state_payload()["webServerPort"] == port

    async with httpx.AsyncClient() as client:
        r = await client.get(f"http://127.0.0.1:{port}/index.html")
        assert r.status_code == 200

    # already running: the current port is re-announced
    await sup.handle(Command("start-web"))
    assert [e["data"]["port"] for e in channel.of_kind("web-started")] == [port, port]

    await sup.handle(Command("stop-web"))
    await sup.handle(Command("stop-web"))
    assert len(channel.of_kind("web-stopped")) == 1
    assert sup.state_payload()["webServerPort"] is None
    await sup.aclose()


@pytest.mark.asyncio
async def test_reconfigure_persists_and_reports(make_supervisor, channel, ctx):
    sup = make_supervisor()
    await sup.handle(Command("set-resource-url", {"url": "https://github.com/acme/pack.git", "branch": "dev"}))

    state = channel.of_kind("state")[-1]["data"]["state"]
    assert state["resourceUrl"] == "https://github.com/acme/pack.git"
    assert state["branch"] == "dev"
    saved = json.loads(ctx.paths.metadata_path().read_text(encoding="utf-8"))
    assert saved["branch"] == "dev"

    # a fresh supervisor picks the persisted document up
    channel.clear()
    again = make_supervisor()
    assert again.state_payload()["resourceUrl"] == "https://github.com/acme/pack.git"
    await sup.aclose()
    await again.aclose()


@pytest.mark.asyncio
async def test_set_url_without_url_is_ignored(make_supervisor, channel):
    sup = make_supervisor()
    await sup.handle(Command("set-resource-url", {"branch": "dev"}))
    await sup.handle(Command("no-such-command"))
    assert channel.sent == []
    await sup.aclose()


@pytest.mark.asyncio
async def test_run_loop_answers_and_shuts_down(make_supervisor, channel, bundle_zip):
    sup = make_supervisor(_serve([bundle_zip()]))
    channel.put('{"kind":"get-state"}')
    channel.put("garbage")
    channel.put({"event": "message", "payload": [{"kind": "set-resource-url", "data": {"url": DIRECT_URL}}]})
    channel.put({"kind": "shutdown"})

    await asyncio.wait_for(sup.run(channel), timeout=10)

    kinds = channel.kinds()
    assert kinds[0] == "ready"
    assert kinds[1] == "state"
    assert "error" not in kinds
    assert sup.stopped
    assert sup.config.locator == DIRECT_URL


@pytest.mark.asyncio
async def test_run_loop_stops_services_on_end_of_input(make_supervisor, channel, bundle_zip):
    sup = make_supervisor(_serve([bundle_zip()]))
    await _install(sup, channel)
    await sup.handle(Command("start-server"))
    await sup.handle(Command("start-web"))
    channel.clear()

    channel.end()
    await asyncio.wait_for(sup.run(channel), timeout=10)

    kinds = channel.kinds()
    assert "web-stopped" in kinds
    assert "server-stopped" in kinds
    assert not sup.script_host.running
    assert not sup.static_server.running


@pytest.mark.asyncio
async def test_get_state_answers_during_download(make_supervisor, channel, bundle_zip):
    release = asyncio.Event()
    payload = bundle_zip()

    class SlowStream(httpx.AsyncByteStream):
        async def __aiter__(self):
            await release.wait()
            yield payload

    def handler(request):
        return httpx.Response(200, stream=SlowStream())

    sup = make_supervisor(handler)
    await sup.handle(Command("set-resource-url", {"url": DIRECT_URL}))
    channel.clear()

    task = sup.dispatch(Command("download-resources"))
    await asyncio.sleep(0.05)
    assert sup.dispatch(Command("get-state")) is None
    assert channel.kinds() == ["download-started", "state"]

    # a second download request while one is in flight is a no-op
    await sup.handle(Command("download-resources"))
    assert channel.kinds().count("download-started") == 1

    release.set()
    await task
    assert channel.kinds()[-1] == "download-complete"
    await sup.aclose()
