"""Shared fixtures: an in-memory transport standing in for the network."""

import threading
from collections import Counter
from dataclasses import dataclass

import pytest

from imgrake.config import CrawlConfig
from imgrake.errors import TransportError
from imgrake.fetcher import TransportResponse


def jpeg(size: int, fill: bytes = b"\x00") -> bytes:
    """JPEG magic followed by padding, size bytes in total."""
    head = b"\xff\xd8\xff\xe0"
    return head + fill * (size - len(head))


def gif(size: int) -> bytes:
    head = b"GIF89a"
    return head + b"\x00" * (size - len(head))


@dataclass
class Route:
    status: int = 200
    content_type: str = "text/html"
    body: bytes = b""
    final_url: str | None = None
    error: str | None = None  # TransportError kind to raise


class FakeTransport:
    """Serves canned responses by URL and records every request (thread-safe)."""

    def __init__(self) -> None:
        self.routes: dict[str, Route] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self.hooks: dict[str, object] = {}
        self._lock = threading.Lock()

    def page(self, url: str, html: str, **kw) -> None:
        self.routes[url] = Route(content_type="text/html; charset=utf-8", body=html.encode("utf-8"), **kw)

    def image(self, url: str, body: bytes, content_type: str = "image/jpeg", **kw) -> None:
        self.routes[url] = Route(content_type=content_type, body=body, **kw)

    def error(self, url: str, kind: str) -> None:
        self.routes[url] = Route(error=kind)

    def status(self, url: str, status: int) -> None:
        self.routes[url] = Route(status=status, content_type="text/html", body=b"nope")

    def gets(self, url: str | None = None) -> Counter:
        with self._lock:
            counts = Counter(u for m, u in self.calls if m == "GET")
        return counts if url is None else counts[url]

    def _respond(self, method: str, url: str) -> TransportResponse:
        with self._lock:
            self.calls.append((method, url))
        hook = self.hooks.get(url)
        if hook is not None:
            hook()
        route = self.routes.get(url)
        if route is None:
            return TransportResponse(url=url, status=404, headers={"content-type": "text/html"}, body=b"missing")
        if route.error:
            raise TransportError(route.error, f"{route.error} for {url}")
        headers = {"content-type": route.content_type, "content-length": str(len(route.body))}
        body = route.body if method == "GET" else b""
        return TransportResponse(url=route.final_url or url, status=route.status, headers=headers, body=body)

    def fetch(self, url: str, timeout: float) -> TransportResponse:
        return self._respond("GET", url)

    def head(self, url: str, timeout: float) -> TransportResponse:
        return self._respond("HEAD", url)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config(tmp_path) -> CrawlConfig:
    return CrawlConfig(
        output_root=tmp_path / "downloads",
        workers=4,
        max_concurrency=2,
        per_host_interval=0.0,
        retry_backoff=0.0,
        timeout=5.0,
    )
