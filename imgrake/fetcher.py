"""HTTP fetching: a pooled httpx transport plus a rate-limited, classifying Fetcher."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Mapping, Protocol

import filetype
import httpx

from imgrake.errors import CrawlCancelled, TransportError
from imgrake.models import (
    ErrorKind,
    Failure,
    FetchResult,
    HtmlPage,
    ImageCandidate,
    ImageFormat,
    OtherContent,
)
from imgrake.ratelimit import HostRateLimiter
from imgrake.urls import canonicalize, host_of

logger = logging.getLogger(__name__)

# Browser-like UA to reduce 403 from sites that block scrapers
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 30.0
MAX_TIMEOUT = 120.0  # largest accepted --timeout
RETRY_BACKOFF = 1.0  # seconds before the single retry of a transient failure

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/jpeg,image/gif,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

HTML_TYPES = frozenset({"text/html", "application/xhtml+xml"})
IMAGE_TYPES = {
    "image/jpeg": ImageFormat.JPG,
    "image/pjpeg": ImageFormat.JPG,
    "image/jpg": ImageFormat.JPG,
    "image/gif": ImageFormat.GIF,
}
# Declared types that say nothing useful; sniff the body instead.
GENERIC_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})

TRANSIENT_KINDS = frozenset({ErrorKind.TIMEOUT.value, ErrorKind.CONNECTION.value})


@dataclass
class TransportResponse:
    """Raw response. url is the final URL after redirects; header names are lowercase."""

    url: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""


class Transport(Protocol):
    def fetch(self, url: str, timeout: float) -> TransportResponse: ...

    def head(self, url: str, timeout: float) -> TransportResponse: ...

    def close(self) -> None: ...


def _media_type(headers: Mapping[str, str]) -> str:
    ct = headers.get("content-type", "") or ""
    return ct.split(";")[0].strip().lower()


def _charset(headers: Mapping[str, str]) -> str | None:
    ct = headers.get("content-type", "") or ""
    for param in ct.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip("'\"")
    return None


def _content_length(headers: Mapping[str, str]) -> int | None:
    cl = (headers.get("content-length") or "").strip()
    return int(cl) if cl.isdigit() else None


def sniff_image_format(body: bytes) -> ImageFormat | None:
    """Measured format from magic bytes; None unless JPEG or GIF."""
    kind = filetype.guess(body) if body else None
    if kind is None:
        return None
    if kind.extension in ("jpg", "jpeg"):
        return ImageFormat.JPG
    if kind.extension == "gif":
        return ImageFormat.GIF
    return None


def _looks_like_html(body: bytes) -> bool:
    head = body[:512].lstrip().lower()
    return head.startswith((b"<!doctype html", b"<html"))


class HttpxTransport:
    """httpx client with connection pooling and redirects. Safe to share across threads."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        http_transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        # Injected httpx transport (e.g. httpx.MockTransport in tests)
        self._http_transport = http_transport
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        with self._lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.Client(
                    follow_redirects=True,
                    timeout=self._timeout,
                    headers=self._headers,
                    transport=self._http_transport,
                )
            return self._client

    def _request(self, method: str, url: str, timeout: float) -> TransportResponse:
        """
        One request with a whole-response deadline. httpx's own timeout bounds each
        phase (connect, each read), so a slowly trickling body is checked between chunks.
        """
        deadline = time.monotonic() + timeout
        try:
            with self._get_client().stream(method, url, timeout=timeout) as resp:
                chunks = []
                for chunk in resp.iter_bytes():
                    chunks.append(chunk)
                    if time.monotonic() > deadline:
                        raise TransportError(ErrorKind.TIMEOUT.value, f"timeout fetching {url}: body took over {timeout}s")
                headers = {k.lower(): v for k, v in resp.headers.items()}
                return TransportResponse(url=str(resp.url), status=resp.status_code, headers=headers, body=b"".join(chunks))
        except httpx.TimeoutException as e:
            raise TransportError(ErrorKind.TIMEOUT.value, f"timeout fetching {url}: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(ErrorKind.CONNECTION.value, f"{type(e).__name__} fetching {url}: {e}") from e

    def fetch(self, url: str, timeout: float) -> TransportResponse:
        return self._request("GET", url, timeout)

    def head(self, url: str, timeout: float) -> TransportResponse:
        return self._request("HEAD", url, timeout)

    def close(self) -> None:
        with self._lock:
            if self._client is not None and not self._client.is_closed:
                self._client.close()

    def __enter__(self) -> "HttpxTransport":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class Fetcher:
    """
    Rate-limited fetch that classifies responses into HtmlPage, ImageCandidate,
    OtherContent or Failure. Transient transport failures (timeout, connection)
    are retried once after a backoff; HTTP error statuses are not retried.
    """

    def __init__(
        self,
        transport: Transport,
        limiter: HostRateLimiter,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_backoff: float = RETRY_BACKOFF,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self._transport = transport
        self._limiter = limiter
        self._timeout = timeout
        self._retry_backoff = retry_backoff
        self._cancel = cancel_event or threading.Event()

    def _call(self, method: str, url: str) -> TransportResponse:
        host = host_of(url)
        last_exc: TransportError | None = None
        for attempt in range(2):
            try:
                with self._limiter.acquire(host):
                    if method == "HEAD":
                        return self._transport.head(url, self._timeout)
                    return self._transport.fetch(url, self._timeout)
            except TransportError as e:
                last_exc = e
                if e.kind in TRANSIENT_KINDS and attempt == 0:
                    logger.debug("Retrying %s after %s", url, e.kind)
                    if self._cancel.wait(self._retry_backoff):
                        raise CrawlCancelled(f"cancelled before retrying {url}") from e
                    continue
                raise
        raise last_exc  # type: ignore[misc]

    def fetch(self, url: str) -> FetchResult:
        try:
            resp = self._call("GET", url)
        except TransportError as e:
            kind = ErrorKind.TIMEOUT if e.kind == ErrorKind.TIMEOUT.value else ErrorKind.CONNECTION
            return Failure(url, kind, str(e))
        final_url = canonicalize(resp.url) or url
        if not 200 <= resp.status < 300:
            return Failure(final_url, ErrorKind.HTTP_STATUS, f"HTTP {resp.status}")
        return classify(final_url, resp)

    def head_metadata(self, url: str) -> tuple[str, int | None] | None:
        """HEAD request; returns (final canonical URL, declared Content-Length) or None on failure."""
        try:
            resp = self._call("HEAD", url)
        except TransportError as e:
            logger.debug("HEAD %s failed: %s", url, e)
            return None
        if not 200 <= resp.status < 300:
            return None
        return canonicalize(resp.url) or url, _content_length(resp.headers)


def classify(url: str, resp: TransportResponse) -> FetchResult:
    """Map a 2xx response to a fetch result by declared type, checked against the bytes."""
    media = _media_type(resp.headers)
    if media in HTML_TYPES or (media in GENERIC_TYPES and _looks_like_html(resp.body)):
        return HtmlPage(url=url, body=resp.body, encoding=_charset(resp.headers))
    if media in IMAGE_TYPES or media in GENERIC_TYPES:
        fmt = sniff_image_format(resp.body)
        if fmt is None:
            return OtherContent(url, media or None)
        return ImageCandidate(
            source_url=url,
            body=resp.body,
            content_type=media if media in IMAGE_TYPES else f"image/{'jpeg' if fmt is ImageFormat.JPG else 'gif'}",
            format=fmt,
            content_length=_content_length(resp.headers),
        )
    return OtherContent(url, media)
