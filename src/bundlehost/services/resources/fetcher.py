# src/bundlehost/services/resources/fetcher.py
from __future__ import annotations
import logging
from pathlib import Path
from typing import Callable, Optional

import httpx

from bundlehost.config import const
from bundlehost.domain import DownloadProgress
from bundlehost.services.errors import DownloadError
from bundlehost.services.fs.safe_io import remove_file

_log = logging.getLogger("bundlehost.resources.fetcher")

ProgressCallback = Callable[[DownloadProgress], None]


class Fetcher:
    """
    Streams an artifact to disk.
      - 3xx + Location: the partial file is dropped and the new location is fetched
      - status >= 400: DownloadError
      - any failure removes the destination, so it is either complete or absent
    """

    def __init__(self, client: httpx.AsyncClient, *, max_redirects: int = const.MAX_REDIRECTS) -> None:
        self._client = client
        self._max_redirects = max_redirects

    async def download(self, url: str, dest: Path | str, on_progress: Optional[ProgressCallback] = None) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            return await self._download(url, dest, on_progress, hops=0)
        except DownloadError:
            remove_file(dest)
            raise
        except (httpx.HTTPError, OSError) as e:
            remove_file(dest)
            raise DownloadError(f"Download failed: {e}", url=url) from e

    async def _download(self, url: str, dest: Path, on_progress: Optional[ProgressCallback], hops: int) -> Path:
        next_url: Optional[str] = None
        async with self._client.stream("GET", url, follow_redirects=False) as resp:
            location = resp.headers.get("location")
            if 300 <= resp.status_code < 400 and location:
                remove_file(dest)
                if hops >= self._max_redirects:
                    raise DownloadError(f"Too many redirects (>{self._max_redirects})", url=url, status=resp.status_code)
                next_url = str(resp.url.join(location))
                _log.debug("fetcher.redirect", extra={"extra": {"from": url, "to": next_url, "status": resp.status_code}})
            elif resp.status_code >= 400:
                raise DownloadError(f"Download failed with status {resp.status_code}", url=url, status=resp.status_code)
            else:
                await self._write_body(resp, dest, on_progress)
        # the redirect hop is fetched after its response is closed
        if next_url is not None:
            return await self._download(next_url, dest, on_progress, hops + 1)
        return dest

    @staticmethod
    async def _write_body(resp: httpx.Response, dest: Path, on_progress: Optional[ProgressCallback]) -> None:
        try:
            total = int(resp.headers.get("content-length") or 0)
        except ValueError:
            total = 0
        received = 0
        with dest.open("wb") as fh:
            async for chunk in resp.aiter_bytes():
                if not chunk:
                    continue
                fh.write(chunk)
                received += len(chunk)
                if on_progress is not None:
                    on_progress(DownloadProgress(bytes_received=received, total_bytes=total))
