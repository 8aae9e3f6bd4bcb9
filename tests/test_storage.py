import errno
import os
import stat

import pytest

from imgrake import storage
from imgrake.errors import StorageError
from imgrake.models import ErrorKind, ImageFormat, ImageRecord, SizeTier
from imgrake.storage import (
    LARGE_LIMIT,
    SMALL_LIMIT,
    DownloadOrganizer,
    _storage_kind,
    sanitize_basename,
    sanitize_domain,
    short_hash,
    size_tier,
    write_atomic,
)


def _record(identity: str, size: int = 10, fmt: ImageFormat = ImageFormat.JPG, domain: str = "example.com"):
    return ImageRecord(
        identity=identity,
        body=b"\xff" * size,
        format=fmt,
        domain=domain,
        content_type="image/jpeg" if fmt is ImageFormat.JPG else "image/gif",
        discovered_at=0,
    )


@pytest.mark.parametrize(
    "size,tier",
    [
        (0, SizeTier.SMALL),
        (SMALL_LIMIT - 1, SizeTier.SMALL),
        (SMALL_LIMIT, SizeTier.MEDIUM),
        (LARGE_LIMIT, SizeTier.MEDIUM),
        (LARGE_LIMIT + 1, SizeTier.LARGE),
    ],
)
def test_size_tier_boundaries(size, tier):
    assert size_tier(size) is tier


@pytest.mark.parametrize(
    "url,fmt,expected",
    [
        ("http://example.com/a/photo.jpg", ImageFormat.JPG, "photo.jpg"),
        ("http://example.com/a/photo.JPEG?w=100", ImageFormat.JPG, "photo.JPEG"),
        ("http://example.com/my%20pic.gif", ImageFormat.GIF, "my_pic.gif"),
        ("http://example.com/render", ImageFormat.GIF, "render.gif"),
        ("http://example.com/misnamed.png", ImageFormat.JPG, "misnamed.png.jpg"),
        ("http://example.com/", ImageFormat.JPG, "index.jpg"),
        ("http://example.com/..%2F..%2Fetc%2Fpasswd", ImageFormat.JPG, "etc_passwd.jpg"),
    ],
)
def test_sanitize_basename(url, fmt, expected):
    assert sanitize_basename(url, fmt) == expected


def test_sanitize_basename_caps_length():
    name = sanitize_basename("http://example.com/" + "a" * 500 + ".jpg", ImageFormat.JPG)
    assert len(name) <= 200
    assert name.endswith(".jpg")


def test_sanitize_domain():
    assert sanitize_domain("Img.Example.com") == "img.example.com"
    assert sanitize_domain("[::1]") == "___1_"
    assert sanitize_domain("") == "unknown"


def test_layout(tmp_path):
    org = DownloadOrganizer(tmp_path)
    path = org.persist(_record("http://img.example.com/x/a.gif", size=SMALL_LIMIT + 5, fmt=ImageFormat.GIF,
                               domain="img.example.com"))
    assert path == tmp_path / "gif" / "img.example.com" / "medium" / "a.gif"
    assert path.read_bytes() == b"\xff" * (SMALL_LIMIT + 5)


def test_colliding_names_all_get_hash_suffix(tmp_path):
    org = DownloadOrganizer(tmp_path)
    a = _record("http://example.com/one/photo.jpg")
    b = _record("http://example.com/two/photo.jpg")
    c = _record("http://example.com/three/other.jpg")
    results = dict((rec.identity, path) for rec, path in org.persist_all([a, b, c]))
    folder = tmp_path / "jpg" / "example.com" / "small"
    assert results[a.identity] == folder / f"photo_{short_hash(a.identity)}.jpg"
    assert results[b.identity] == folder / f"photo_{short_hash(b.identity)}.jpg"
    assert results[c.identity] == folder / "other.jpg"


def test_plan_independent_of_order(tmp_path):
    a = _record("http://example.com/one/photo.jpg")
    b = _record("http://example.com/two/photo.jpg")
    assert DownloadOrganizer(tmp_path).plan([a, b]) == DownloadOrganizer(tmp_path).plan([b, a])


def test_rerun_overwrites_same_paths(tmp_path):
    rec = _record("http://example.com/a.jpg")
    first = [p for _, p in DownloadOrganizer(tmp_path).persist_all([rec])]
    second = [p for _, p in DownloadOrganizer(tmp_path).persist_all([rec])]
    assert first == second
    assert sorted(p.name for p in (tmp_path / "jpg" / "example.com" / "small").iterdir()) == ["a.jpg"]


def test_write_atomic_leaves_nothing_on_failure(tmp_path, monkeypatch):
    target = tmp_path / "out" / "a.jpg"

    def boom(*args, **kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(os, "replace", boom)
    with pytest.raises(OSError):
        write_atomic(target, b"data")
    assert list((tmp_path / "out").iterdir()) == []


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_write_atomic_uses_umask_mode(tmp_path, monkeypatch):
    monkeypatch.setattr(storage, "FILE_MODE", 0o666 & ~0o022)
    target = tmp_path / "a.jpg"
    write_atomic(target, b"data")
    assert stat.S_IMODE(target.stat().st_mode) == 0o644


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_saved_images_are_not_private_to_owner(tmp_path):
    target = tmp_path / "b.gif"
    write_atomic(target, b"data")
    assert stat.S_IMODE(target.stat().st_mode) == 0o666 & ~storage._UMASK


def test_persist_failure_is_classified(tmp_path, monkeypatch):
    org = DownloadOrganizer(tmp_path)

    def full(*args, **kwargs):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(os, "replace", full)
    outcomes = list(org.persist_all([_record("http://example.com/a.jpg"), _record("http://example.com/b.jpg")]))
    assert len(outcomes) == 2
    for _, outcome in outcomes:
        assert isinstance(outcome, StorageError)
        assert outcome.kind == ErrorKind.DISK_FULL.value


def test_directory_in_the_way_is_a_path_collision(tmp_path):
    org = DownloadOrganizer(tmp_path)
    rec = _record("http://example.com/a.jpg")
    org.base_path(rec).mkdir(parents=True)
    with pytest.raises(StorageError) as exc:
        org.persist(rec)
    assert exc.value.kind == ErrorKind.PATH_COLLISION.value


def test_prepare_fails_when_root_is_a_file(tmp_path):
    root = tmp_path / "downloads"
    root.write_text("not a directory")
    with pytest.raises(StorageError):
        DownloadOrganizer(root).prepare()


@pytest.mark.parametrize(
    "exc,kind",
    [
        (OSError(errno.ENOSPC, "full"), ErrorKind.DISK_FULL),
        (PermissionError(errno.EACCES, "denied"), ErrorKind.PERMISSION),
        (OSError(errno.EROFS, "read-only"), ErrorKind.PERMISSION),
        (NotADirectoryError(errno.ENOTDIR, "not a dir"), ErrorKind.PATH_COLLISION),
        (OSError(errno.EIO, "io"), ErrorKind.STORAGE),
    ],
)
def test_storage_kind(exc, kind):
    assert _storage_kind(exc) is kind
