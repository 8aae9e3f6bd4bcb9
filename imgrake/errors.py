"""Exception types raised by the crawl core."""

from pathlib import Path


class ImgrakeError(Exception):
    """Base class for all imgrake errors."""


class SeedURLError(ImgrakeError, ValueError):
    """Seed URL is unparseable or not http(s). Fatal before any worker starts."""


class CrawlCancelled(ImgrakeError):
    """Raised at a suspension point once the crawl has been cancelled."""


class TransportError(ImgrakeError):
    """Network-level failure from the transport (no HTTP response)."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class StorageError(ImgrakeError):
    """Writing an image (or preparing the output root) failed."""

    def __init__(self, kind: str, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.path = path
