# src/bundlehost/adapters/fs/path_provider.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from bundlehost.config import const
from bundlehost.services.settings import Settings


@dataclass(slots=True)
class PathProvider:
    """Single source of truth for the on-disk layout. Always works with pathlib.Path."""

    base: Path
    entry_script_rel: str

    def __init__(self, settings: Settings):
        object.__setattr__(self, "base", Path(settings.base_dir).expanduser().resolve())
        object.__setattr__(self, "entry_script_rel", settings.entry_script)

    def base_dir(self) -> Path:
        return self.base

    def resources_dir(self) -> Path:
        return (self.base / "resources").resolve()

    def downloads_dir(self) -> Path:
        return (self.base / "downloads").resolve()

    def logs_dir(self) -> Path:
        return (self.base / "logs").resolve()

    # --- files inside the tree ---
    def slot_dir(self) -> Path:
        return self.resources_dir() / const.SLOT_NAME

    def metadata_path(self) -> Path:
        return self.resources_dir() / const.METADATA_FILE

    def archive_path(self) -> Path:
        return self.downloads_dir() / const.ARCHIVE_FILE

    def scratch_dir(self) -> Path:
        return self.downloads_dir() / const.SCRATCH_DIR

    def entry_script(self) -> Path:
        return self.slot_dir() / self.entry_script_rel

    def ensure_tree(self) -> None:
        for p in (self.base_dir(), self.resources_dir(), self.downloads_dir(), self.logs_dir()):
            p.mkdir(parents=True, exist_ok=True)
