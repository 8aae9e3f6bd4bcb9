"""Path building, filename sanitization, and atomic image writes."""

import errno
import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, Iterator
from urllib.parse import unquote, urlsplit

from imgrake.errors import StorageError
from imgrake.models import ErrorKind, ImageFormat, ImageRecord, SizeTier

logger = logging.getLogger(__name__)

OUTPUT_STRUCTURE = "downloads/<jpg|gif>/<domain>/<small|medium|large>/<filename>"

SMALL_LIMIT = 100 * 1024  # below: small
LARGE_LIMIT = 1024 * 1024  # above: large

FORMAT_EXTENSIONS = {
    ImageFormat.JPG: (".jpg", ".jpeg", ".jpe"),
    ImageFormat.GIF: (".gif",),
}

MAX_NAME_LENGTH = 200

# os.umask can only be read by setting it; do it once, before any worker thread starts
_UMASK = os.umask(0o022)
os.umask(_UMASK)
FILE_MODE = 0o666 & ~_UMASK


def size_tier(size: int) -> SizeTier:
    if size < SMALL_LIMIT:
        return SizeTier.SMALL
    if size > LARGE_LIMIT:
        return SizeTier.LARGE
    return SizeTier.MEDIUM


def sanitize_domain(domain: str) -> str:
    """Make a host name safe as a directory name."""
    domain = re.sub(r"[^\w.-]", "_", domain.lower())
    return domain.strip(".") or "unknown"


def sanitize_basename(url: str, fmt: ImageFormat) -> str:
    """
    Last path segment of url as a safe filename, with an extension matching fmt.
    Query strings are dropped; unsafe characters become "_".
    """
    path = urlsplit(url).path or "/"
    name = unquote(path.rstrip("/").split("/")[-1]) or "index"
    name = re.sub(r"[^\w.-]", "_", name)
    name = name.strip("_.") or "image"
    stem, ext = os.path.splitext(name)
    if ext.lower() not in FORMAT_EXTENSIONS[fmt]:
        stem, ext = name, FORMAT_EXTENSIONS[fmt][0]
    stem = stem[: MAX_NAME_LENGTH - len(ext)]
    return f"{stem}{ext}"


def short_hash(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]


def _storage_kind(exc: OSError) -> ErrorKind:
    if exc.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
        return ErrorKind.DISK_FULL
    if exc.errno in (errno.EACCES, errno.EPERM, errno.EROFS) or isinstance(exc, PermissionError):
        return ErrorKind.PERMISSION
    if isinstance(exc, (IsADirectoryError, NotADirectoryError, FileExistsError)):
        return ErrorKind.PATH_COLLISION
    return ErrorKind.STORAGE


def write_atomic(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory so a failed write leaves nothing behind."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.is_dir():
        raise IsADirectoryError(errno.EISDIR, "target is a directory", str(path))
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as f:
            # mkstemp creates 0600; give the final file the mode open() would
            os.chmod(tmp, FILE_MODE)
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class DownloadOrganizer:
    """
    Lays images out as <root>/<format>/<domain>/<tier>/<filename>.

    Names are planned per batch (persist_all): if two identities in the batch would
    land on the same path, each of them gets a short hash of its URL appended, so the
    result depends only on the set of images and not on crawl order.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._planned: dict[str, Path] = {}

    def prepare(self) -> None:
        """Create the output root; failure here is fatal for the run."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(_storage_kind(e).value, f"cannot create output root {self.root}: {e}", self.root) from e
        if not os.access(self.root, os.W_OK | os.X_OK):
            raise StorageError(ErrorKind.PERMISSION.value, f"output root {self.root} is not writable", self.root)

    def base_path(self, record: ImageRecord) -> Path:
        """Path for record before collision handling."""
        return (
            self.root
            / record.format.value
            / sanitize_domain(record.domain)
            / size_tier(record.size).value
            / sanitize_basename(record.identity, record.format)
        )

    def plan(self, records: Iterable[ImageRecord]) -> dict[str, Path]:
        """Assign a final path to every record; colliding names all get a hash suffix."""
        by_path: dict[Path, list[ImageRecord]] = {}
        for rec in records:
            by_path.setdefault(self.base_path(rec), []).append(rec)
        planned: dict[str, Path] = {}
        for path, group in by_path.items():
            if len({r.identity for r in group}) == 1:
                planned[group[0].identity] = path
                continue
            for rec in group:
                planned[rec.identity] = path.with_name(f"{path.stem}_{short_hash(rec.identity)}{path.suffix}")
        self._planned.update(planned)
        return planned

    def persist(self, record: ImageRecord) -> Path:
        """Write one record. Raises StorageError; nothing partial is left on failure."""
        path = self._planned.get(record.identity) or self.base_path(record)
        try:
            write_atomic(path, record.body)
        except OSError as e:
            raise StorageError(_storage_kind(e).value, f"cannot write {path}: {e}", path) from e
        logger.debug("Saved %s -> %s", record.identity, path)
        return path

    def persist_all(self, records: list[ImageRecord]) -> Iterator[tuple[ImageRecord, Path | StorageError]]:
        """Plan names for the batch, then write each record; yields (record, path or error)."""
        self.plan(records)
        for rec in records:
            try:
                yield rec, self.persist(rec)
            except StorageError as e:
                yield rec, e
