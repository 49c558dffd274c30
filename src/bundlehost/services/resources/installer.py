# src/bundlehost/services/resources/installer.py
from __future__ import annotations
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath

from bundlehost.services.errors import ArchiveError, InstallError
from bundlehost.services.fs.safe_io import remove_file, remove_tree

_log = logging.getLogger("bundlehost.resources.installer")


def _check_member(name: str) -> None:
    p = PurePosixPath(name.replace("\\", "/"))
    if p.is_absolute() or ".." in p.parts:
        raise ArchiveError(f"Archive entry escapes extraction root: {name}")


class Installer:
    """
    Owns the single installation slot.

    ``unpack`` extracts into a scratch directory and returns the archive root;
    ``install`` removes the current slot and moves that root into its place.
    The slot is never merged with or versioned alongside a previous bundle.
    """

    def __init__(self, *, slot_dir: Path, scratch_dir: Path) -> None:
        self.slot_dir = Path(slot_dir)
        self.scratch_dir = Path(scratch_dir)

    def has_installation(self) -> bool:
        return self.slot_dir.exists()

    def unpack(self, archive: Path | str) -> Path:
        archive = Path(archive)
        try:
            remove_tree(self.scratch_dir)
            self.scratch_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallError(f"Cannot prepare scratch directory: {e}") from e

        try:
            with zipfile.ZipFile(archive) as zf:
                for name in zf.namelist():
                    _check_member(name)
                zf.extractall(self.scratch_dir)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError) as e:
            raise ArchiveError(f"Archive is not readable: {e}") from e
        except FileNotFoundError as e:
            raise ArchiveError(f"Archive not found: {archive}") from e
        except OSError as e:
            raise ArchiveError(f"Archive extraction failed: {e}") from e

        entries = sorted(self.scratch_dir.iterdir(), key=lambda p: p.name)
        if not entries:
            raise ArchiveError("Archive did not contain any files")
        root = next((e for e in entries if e.is_dir()), entries[0])
        _log.debug("installer.unpacked", extra={"extra": {"archive": str(archive), "root": root.name}})
        return root

    def install(self, extracted_root: Path | str, archive: Path | str | None = None) -> Path:
        # prior content is removed before the move; a crash in between leaves no slot
        try:
            remove_tree(self.slot_dir)
            self.slot_dir.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(extracted_root), str(self.slot_dir))
            if archive is not None:
                remove_file(archive)
            remove_tree(self.scratch_dir)
        except OSError as e:
            raise InstallError(f"Install failed: {e}") from e
        _log.info("installer.installed", extra={"extra": {"slot": str(self.slot_dir)}})
        return self.slot_dir

    def unpack_and_install(self, archive: Path | str) -> Path:
        return self.install(self.unpack(archive), archive)
