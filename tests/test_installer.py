import pytest

from bundlehost.services.errors import ArchiveError
from bundlehost.services.resources import Installer


@pytest.fixture
def installer(tmp_path) -> Installer:
    return Installer(slot_dir=tmp_path / "resources" / "bundle", scratch_dir=tmp_path / "downloads" / "extracted")


def _archive(tmp_path, data: bytes):
    path = tmp_path / "downloads" / "resource.zip"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def test_install_moves_archive_root_into_slot(tmp_path, installer, make_zip):
    archive = _archive(tmp_path, make_zip({"index.html": "v1", "game/server.py": "pass"}))
    assert not installer.has_installation()

    slot = installer.unpack_and_install(archive)

    assert installer.has_installation()
    assert (slot / "index.html").read_text() == "v1"
    assert (slot / "game" / "server.py").is_file()
    assert not archive.exists()
    assert not installer.scratch_dir.exists()
    assert [p.name for p in slot.parent.iterdir()] == ["bundle"]


def test_second_install_leaves_no_prior_files(tmp_path, installer, make_zip):
    installer.unpack_and_install(_archive(tmp_path, make_zip({"old.txt": "1", "index.html": "v1"})))
    installer.unpack_and_install(_archive(tmp_path, make_zip({"index.html": "v2"}, root="noname-dev")))

    files = sorted(p.relative_to(installer.slot_dir).as_posix() for p in installer.slot_dir.rglob("*"))
    assert files == ["index.html"]
    assert (installer.slot_dir / "index.html").read_text() == "v2"


def test_flat_archive_uses_first_entry(tmp_path, installer, make_zip):
    root = installer.unpack(_archive(tmp_path, make_zip({"b.txt": "b", "a.txt": "a"}, root=None)))
    assert root.name == "a.txt"


def test_directory_preferred_over_files(tmp_path, installer, make_zip):
    data = make_zip({"a.txt": "a", "site/index.html": "x"}, root=None)
    root = installer.unpack(_archive(tmp_path, data))
    assert root.name == "site"


def test_empty_archive(tmp_path, installer, make_zip):
    with pytest.raises(ArchiveError):
        installer.unpack(_archive(tmp_path, make_zip({}, root=None)))
    assert not installer.has_installation()


def test_unreadable_archive(tmp_path, installer):
    with pytest.raises(ArchiveError):
        installer.unpack(_archive(tmp_path, b"definitely not a zip"))


def test_entries_outside_root_are_rejected(tmp_path, installer, make_zip):
    with pytest.raises(ArchiveError):
        installer.unpack(_archive(tmp_path, make_zip({"../evil.txt": "x"}, root=None)))
    assert not (tmp_path / "downloads" / "evil.txt").exists()
