# src/bundlehost/services/source_config.py
from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Mapping

from bundlehost.domain import SourceConfig
from bundlehost.services.fs.safe_io import read_json, write_json_atomic
from bundlehost.services.settings import Settings

_log = logging.getLogger("bundlehost.config")


def default_config(settings: Settings) -> SourceConfig:
    return SourceConfig(locator=settings.resource_url, tracked_branch=settings.branch or None, installed_version=None)


def _merge(conf: SourceConfig, raw: Mapping[str, Any]) -> SourceConfig:
    url = raw.get("resourceUrl")
    branch = raw.get("branch")
    version = raw.get("version")
    return SourceConfig(
        locator=url if isinstance(url, str) and url else conf.locator,
        tracked_branch=branch if isinstance(branch, str) and branch else conf.tracked_branch,
        installed_version=version if isinstance(version, str) and version else conf.installed_version,
    )


def load_config(path: Path, settings: Settings) -> SourceConfig:
    """Persisted document merged over defaults; a missing or broken file yields the defaults."""
    conf = default_config(settings)
    if not path.exists():
        return conf
    try:
        raw = read_json(path)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        _log.error("config.load.failed", extra={"extra": {"path": str(path), "error": str(e)}})
        return conf
    if not isinstance(raw, dict):
        _log.error("config.load.failed", extra={"extra": {"path": str(path), "error": "not an object"}})
        return conf
    return _merge(conf, raw)


def save_config(path: Path, conf: SourceConfig) -> None:
    write_json_atomic(path, conf.to_document())
