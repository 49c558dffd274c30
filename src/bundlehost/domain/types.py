# src/bundlehost/domain/types.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True, slots=True)
class Event:
    type: str
    payload: Mapping[str, Any]
    source: str
    ts: float


@dataclass(frozen=True, slots=True)
class Command:
    kind: str
    data: Optional[Mapping[str, Any]] = None


@dataclass(slots=True)
class SourceConfig:
    locator: str
    tracked_branch: Optional[str] = None
    installed_version: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        return {"resourceUrl": self.locator, "branch": self.tracked_branch, "version": self.installed_version}


@dataclass(frozen=True, slots=True)
class ResolvedSource:
    download_url: str
    branch: str
    version: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DownloadProgress:
    bytes_received: int
    total_bytes: int = 0  # 0 = unknown

    def to_payload(self) -> dict[str, int]:
        return {"downloaded": self.bytes_received, "total": self.total_bytes}


@dataclass(frozen=True, slots=True)
class ProcessState:
    config: SourceConfig
    has_installation: bool = False
    script_service_running: bool = False
    static_service_port: Optional[int] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "resourceUrl": self.config.locator,
            "branch": self.config.tracked_branch,
            "version": self.config.installed_version,
            "hasResources": self.has_installation,
            "serverRunning": self.script_service_running,
            "webServerPort": self.static_service_port,
        }
