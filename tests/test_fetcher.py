import httpx
import pytest

from bundlehost.services.errors import DownloadError
from bundlehost.services.resources import Fetcher

PAYLOAD = b"x" * 50_000


def _fetcher(handler, **kw) -> Fetcher:
    return Fetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)), **kw)


@pytest.mark.asyncio
async def test_download_streams_and_reports_progress(tmp_path):
    def handler(request):
        return httpx.Response(200, content=PAYLOAD)

    progress = []
    dest = tmp_path / "dl" / "resource.zip"
    await _fetcher(handler).download("https://files.example.test/a.zip", dest, on_progress=progress.append)

    assert dest.read_bytes() == PAYLOAD
    assert progress
    assert progress[-1].bytes_received == len(PAYLOAD)
    assert all(p.total_bytes == len(PAYLOAD) for p in progress)
    received = [p.bytes_received for p in progress]
    assert received == sorted(received)


@pytest.mark.asyncio
async def test_redirect_is_followed(tmp_path):
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/old.zip":
            return httpx.Response(302, headers={"Location": "/new.zip"}, content=b"moved")
        return httpx.Response(200, content=PAYLOAD)

    dest = tmp_path / "dl" / "resource.zip"
    dest.parent.mkdir()
    dest.write_bytes(b"stale partial")
    await _fetcher(handler).download("https://files.example.test/old.zip", dest)

    assert seen == ["/old.zip", "/new.zip"]
    assert dest.read_bytes() == PAYLOAD
    assert list(dest.parent.iterdir()) == [dest]


@pytest.mark.asyncio
async def test_redirect_loop_fails_and_leaves_nothing(tmp_path):
    def handler(request):
        return httpx.Response(301, headers={"Location": str(request.url)})

    dest = tmp_path / "resource.zip"
    with pytest.raises(DownloadError):
        await _fetcher(handler, max_redirects=3).download("https://files.example.test/loop.zip", dest)
    assert not dest.exists()


@pytest.mark.asyncio
async def test_error_status_raises(tmp_path):
    def handler(request):
        return httpx.Response(404, content=b"missing")

    dest = tmp_path / "resource.zip"
    with pytest.raises(DownloadError) as ei:
        await _fetcher(handler).download("https://files.example.test/missing.zip", dest)
    assert ei.value.status == 404
    assert not dest.exists()


@pytest.mark.asyncio
async def test_transport_error_removes_partial_file(tmp_path):
    class Broken(httpx.AsyncByteStream):
        async def __aiter__(self):
            yield b"partial"
            raise httpx.ReadError("connection reset")

    def handler(request):
        return httpx.Response(200, stream=Broken())

    dest = tmp_path / "resource.zip"
    with pytest.raises(DownloadError):
        await _fetcher(handler).download("https://files.example.test/a.zip", dest)
    assert not dest.exists()
