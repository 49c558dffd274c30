# src/bundlehost/services/resources/resolver.py
from __future__ import annotations
import json
import logging
import re
from typing import Any, Optional

import httpx

from bundlehost.config import const
from bundlehost.domain import ResolvedSource
from bundlehost.services.errors import ResolutionError

_log = logging.getLogger("bundlehost.resources.resolver")

_GITHUB_RE = re.compile(r"github\.com/(.+?)/(.+?)(?:\.git)?$")


def parse_repository(locator: str) -> Optional[tuple[str, str]]:
    """owner/repo for a ``.git`` locator hosted on GitHub, else None."""
    if not locator.endswith(".git"):
        return None
    m = _GITHUB_RE.search(locator)
    if not m:
        return None
    return m.group(1), m.group(2)


def _require_url(locator: str) -> str:
    if not locator or not locator.strip():
        raise ResolutionError(locator, "empty locator")
    try:
        url = httpx.URL(locator.strip())
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise ResolutionError(locator, str(e)) from e
    if url.scheme not in ("http", "https"):
        raise ResolutionError(locator, "only http(s) URLs are supported")
    if not url.host:
        raise ResolutionError(locator, "URL has no host")
    return str(url)


class SourceResolver:
    """Turns a locator (+ optional branch) into an artifact URL and, when known, a version tag."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str = const.GITHUB_API_URL,
        codeload_url: str = const.GITHUB_CODELOAD_URL,
        fallback_branch: str = const.DEFAULT_BRANCH,
    ) -> None:
        self._client = client
        self._api = api_url.rstrip("/")
        self._codeload = codeload_url.rstrip("/")
        self._fallback = fallback_branch

    async def resolve(self, locator: str, branch: Optional[str] = None) -> ResolvedSource:
        repo = parse_repository(locator or "")
        if repo is None:
            return ResolvedSource(download_url=_require_url(locator), branch=branch or self._fallback, version=None)

        owner, name = repo
        resolved_branch = branch or await self._default_branch(owner, name)
        download_url = f"{self._codeload}/{owner}/{name}/zip/refs/heads/{resolved_branch}"
        version = await self._revision(owner, name, resolved_branch)
        return ResolvedSource(download_url=download_url, branch=resolved_branch, version=version)

    async def _default_branch(self, owner: str, name: str) -> str:
        data = await self._fetch_json(f"{self._api}/repos/{owner}/{name}")
        value = data.get("default_branch") if isinstance(data, dict) else None
        return value if isinstance(value, str) and value else self._fallback

    async def _revision(self, owner: str, name: str, branch: str) -> Optional[str]:
        data = await self._fetch_json(f"{self._api}/repos/{owner}/{name}/commits/{branch}")
        value = data.get("sha") if isinstance(data, dict) else None
        return value if isinstance(value, str) and value else None

    async def _fetch_json(self, url: str) -> Any:
        # metadata lookups never fail resolution
        try:
            r = await self._client.get(url, headers={"Accept": "application/vnd.github+json"}, follow_redirects=True)
            r.raise_for_status()
            return r.json()
        except (httpx.HTTPError, json.JSONDecodeError, UnicodeDecodeError) as e:
            _log.debug("resolver.metadata.unavailable", extra={"extra": {"url": url, "error": str(e)}})
            return None
