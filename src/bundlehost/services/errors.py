"""Error hierarchy shared by the resource pipeline, the script host and the supervisor."""

from __future__ import annotations

from typing import Optional


class BundleHostError(RuntimeError):
    """Base class for every error a supervisor command can report."""


class ResolutionError(BundleHostError):
    """Raised when a locator cannot be turned into an artifact URL."""

    def __init__(self, locator: str, detail: Optional[str] = None) -> None:
        self.locator = locator
        self.detail = detail
        message = f"Cannot resolve resource locator '{locator}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DownloadError(BundleHostError):
    """Raised for HTTP statuses >= 400, redirect loops and transport failures."""

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        self.url = url
        self.status = status
        super().__init__(message)


class ArchiveError(BundleHostError):
    """Raised when a downloaded archive is empty, unreadable or unsafe."""


class InstallError(BundleHostError):
    """Raised when the filesystem fails while swapping the installation slot."""


class ScriptHostError(BundleHostError):
    """Raised when the entry script is missing, fails, or never builds its service."""


class StaticServiceError(BundleHostError):
    """Raised when the static listener cannot be bound or started."""


class NotInstalledError(BundleHostError):
    """Raised when a command needs an installed bundle and there is none."""

    def __init__(self, detail: str = "Resources not downloaded") -> None:
        super().__init__(detail)


__all__ = [
    "BundleHostError",
    "ResolutionError",
    "DownloadError",
    "ArchiveError",
    "InstallError",
    "ScriptHostError",
    "StaticServiceError",
    "NotInstalledError",
]
