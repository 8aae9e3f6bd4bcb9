"""Thread-safe per-run registries: visited URLs and best image variants."""

import itertools
import threading

from imgrake.models import ImageFormat, ImageRecord


class VisitedSet:
    """Canonical URLs already admitted to the frontier. Insert-if-absent, never removed."""

    def __init__(self) -> None:
        self._urls: set[str] = set()
        self._lock = threading.Lock()

    def add(self, url: str) -> bool:
        """Admit url; True only for the first caller."""
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    def snapshot(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._urls)


class ImageRegistry:
    """
    Map from image identity (canonical source URL) to its largest fetched variant.

    offer() is a compare-and-replace under one lock, so concurrent offers for the
    same identity end with the maximum-size one stored regardless of arrival order.
    """

    def __init__(self) -> None:
        self._records: dict[str, ImageRecord] = {}
        self._lock = threading.Lock()
        self._order = itertools.count()
        self._finalized = False

    def offer(
        self,
        identity: str,
        body: bytes,
        *,
        format: ImageFormat,
        domain: str,
        content_type: str,
    ) -> bool:
        """Store body for identity iff nothing is stored yet or it is strictly larger."""
        with self._lock:
            if self._finalized:
                raise RuntimeError("image registry is finalized")
            existing = self._records.get(identity)
            if existing is not None and len(body) <= existing.size:
                return False
            discovered_at = existing.discovered_at if existing is not None else next(self._order)
            self._records[identity] = ImageRecord(
                identity=identity,
                body=body,
                format=format,
                domain=domain,
                content_type=content_type,
                discovered_at=discovered_at,
            )
            return True

    def best_size(self, identity: str) -> int | None:
        with self._lock:
            rec = self._records.get(identity)
            return rec.size if rec is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def finalize(self) -> list[ImageRecord]:
        """Freeze the registry and return its records sorted by identity."""
        with self._lock:
            self._finalized = True
            return [self._records[k] for k in sorted(self._records)]
