"""
Data model shared by the crawl components.

Fetch results are a small closed family of dataclasses (HtmlPage, ImageCandidate,
OtherContent, Failure); the orchestrator dispatches on their type.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union


class TaskKind(str, Enum):
    """What the orchestrator expects a URL to serve."""

    PAGE = "page"
    IMAGE = "image"


class ImageFormat(str, Enum):
    """Supported image formats; the value doubles as the output directory name."""

    JPG = "jpg"
    GIF = "gif"


class SizeTier(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class ErrorKind(str, Enum):
    """Per-task failures, tallied in CrawlSummary.errors_by_kind."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    HTTP_STATUS = "http-status"
    PARSE = "parse"
    PERMISSION = "permission"
    DISK_FULL = "disk-full"
    PATH_COLLISION = "path-collision"
    STORAGE = "storage"
    INTERNAL = "internal"


class DropReason(str, Enum):
    """Expected, non-error reasons a URL or result is discarded."""

    SCOPE_REJECTED = "scope-rejected"
    ALREADY_VISITED = "already-visited"
    DEPTH_EXCEEDED = "depth-exceeded"
    UNSUPPORTED_TYPE = "unsupported-type"
    NOT_LARGER = "not-larger"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CrawlTask:
    url: str
    depth: int
    kind: TaskKind = TaskKind.PAGE


@dataclass(frozen=True)
class ImageReference:
    """An image URL found on a page, with the domain of the page that referenced it."""

    url: str
    referrer_domain: str


@dataclass
class HtmlPage:
    url: str
    body: bytes
    encoding: str | None = None


@dataclass
class ImageCandidate:
    """A fetched JPEG/GIF payload. source_url is the canonical post-redirect URL."""

    source_url: str
    body: bytes
    content_type: str
    format: ImageFormat
    content_length: int | None = None

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass
class OtherContent:
    """Response of a type the crawler does not handle; dropped, not an error."""

    url: str
    content_type: str | None


@dataclass
class Failure:
    url: str
    kind: ErrorKind
    detail: str = ""


FetchResult = Union[HtmlPage, ImageCandidate, OtherContent, Failure]


@dataclass
class ImageRecord:
    """Best-known variant of one image identity. Owned by ImageRegistry."""

    identity: str
    body: bytes
    format: ImageFormat
    domain: str
    content_type: str
    discovered_at: int

    @property
    def size(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class CrawlEvent:
    """Progress notification: one per resolved task and one per persisted image."""

    url: str
    kind: str  # "page", "image" or "file"
    outcome: str  # "done", "failed", "dropped", "cancelled" or "saved"
    detail: str = ""


@dataclass
class CrawlSummary:
    pages_visited: int = 0
    images_downloaded: int = 0
    bytes_written: int = 0
    errors_by_kind: Counter = field(default_factory=Counter)
    dropped_by_kind: Counter = field(default_factory=Counter)
    files: list[Path] = field(default_factory=list)
    cancelled: bool = False

    @property
    def errors(self) -> int:
        return sum(self.errors_by_kind.values())
