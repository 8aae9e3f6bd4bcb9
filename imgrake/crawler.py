"""
Crawl orchestration: frontier queue, worker pool, quiescence detection and the final
flush of the image registry to disk.

Each Crawler owns its visited set, image registry and rate limiter, so independent
crawls can run side by side in one process.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from queue import Queue
from typing import Callable

from imgrake.config import CrawlConfig
from imgrake.errors import CrawlCancelled, SeedURLError, StorageError
from imgrake.extractors import extract
from imgrake.fetcher import Fetcher, HttpxTransport, Transport
from imgrake.models import (
    CrawlEvent,
    CrawlSummary,
    CrawlTask,
    DropReason,
    ErrorKind,
    Failure,
    FetchResult,
    HtmlPage,
    ImageCandidate,
    OtherContent,
    TaskKind,
)
from imgrake.ratelimit import HostRateLimiter
from imgrake.registry import ImageRegistry, VisitedSet
from imgrake.storage import DownloadOrganizer
from imgrake.urls import canonicalize, host_of, in_scope, registrable_domain

logger = logging.getLogger(__name__)

EventCallback = Callable[[CrawlEvent], None]


class Crawler:
    """
    Domain-scoped image crawler.

    run() admits the seed, starts `workers` threads pulling CrawlTasks from one queue
    and returns once the crawl is quiescent. `pending` counts queued plus in-flight
    tasks; a task's children are admitted before its own count is released, so the
    counter can only reach zero when no task is left that could produce more work.
    """

    def __init__(
        self,
        config: CrawlConfig | None = None,
        *,
        transport: Transport | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self.config = config or CrawlConfig()
        self.config.validate()
        self._owns_transport = transport is None
        self._transport = transport or HttpxTransport(timeout=self.config.timeout, headers=self.config.headers)
        self._on_event = on_event
        self._cancel = threading.Event()

        self.visited = VisitedSet()
        self.registry = ImageRegistry()
        self.limiter = HostRateLimiter(
            max_concurrency=self.config.max_concurrency,
            interval=self.config.per_host_interval,
            jitter=self.config.jitter,
            cancel_event=self._cancel,
        )
        self.fetcher = Fetcher(
            self._transport,
            self.limiter,
            timeout=self.config.timeout,
            retry_backoff=self.config.retry_backoff,
            cancel_event=self._cancel,
        )
        self.organizer = DownloadOrganizer(self.config.output_root)
        self.summary = CrawlSummary()

        self._summary_lock = threading.Lock()
        self._queue: Queue[CrawlTask | None] = Queue()
        self._pending = 0
        self._pending_lock = threading.Lock()
        self._root_domain = ""
        self._started = False

    # -- public API ---------------------------------------------------------

    def cancel(self) -> None:
        """Stop admitting work; queued tasks resolve as cancelled, in-flight ones drain."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, seed: str) -> CrawlSummary:
        """Crawl from seed until quiescent (or cancelled), then write the images out."""
        if self._started:
            raise RuntimeError("Crawler.run() can only be called once; create a new Crawler")
        self._started = True
        seed_url = canonicalize(seed)
        if seed_url is None:
            raise SeedURLError(f"invalid seed URL: {seed!r} (expected an absolute http(s) URL)")
        self._root_domain = registrable_domain(host_of(seed_url))
        self.organizer.prepare()

        workers = self.config.workers
        logger.info(
            "Crawl started at %s (domain %s, %d workers, max depth %s)",
            seed_url, self._root_domain, workers,
            "unbounded" if self.config.max_depth is None else self.config.max_depth,
        )
        if not self._admit(seed_url, 0, TaskKind.PAGE):
            # Cancelled before start: nothing will ever release the workers otherwise.
            for _ in range(workers):
                self._queue.put(None)
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="imgrake") as executor:
                futs = [executor.submit(self._worker) for _ in range(workers)]
                self._wait(futs)
        finally:
            if self._owns_transport:
                self._transport.close()

        self._flush()
        self.summary.cancelled = self.cancelled
        logger.info(
            "Crawl finished: %d pages, %d images, %d errors%s",
            self.summary.pages_visited, self.summary.images_downloaded, self.summary.errors,
            " (cancelled)" if self.summary.cancelled else "",
        )
        return self.summary

    # -- coordination -------------------------------------------------------

    def _wait(self, futs: list) -> None:
        while True:
            try:
                for f in as_completed(futs):
                    f.result()
                return
            except KeyboardInterrupt:
                logger.warning("Interrupted; finishing in-flight requests")
                self.cancel()

    def _admit(self, url: str, depth: int, kind: TaskKind) -> bool:
        """Enqueue url if it is in scope, within depth and not yet visited."""
        if self.cancelled:
            self._drop(DropReason.CANCELLED)
            return False
        if not in_scope(url, self._root_domain):
            self._drop(DropReason.SCOPE_REJECTED)
            return False
        max_depth = self.config.max_depth
        if kind is TaskKind.PAGE and max_depth is not None and depth > max_depth:
            self._drop(DropReason.DEPTH_EXCEEDED)
            return False
        if not self.visited.add(url):
            self._drop(DropReason.ALREADY_VISITED)
            return False
        with self._pending_lock:
            self._pending += 1
        self._queue.put(CrawlTask(url=url, depth=depth, kind=kind))
        return True

    def _task_done(self) -> None:
        with self._pending_lock:
            self._pending -= 1
            if self._pending == 0:
                for _ in range(self.config.workers):
                    self._queue.put(None)

    def _worker(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                return
            try:
                self._run_task(task)
            finally:
                self._task_done()

    # -- task execution -----------------------------------------------------

    def _run_task(self, task: CrawlTask) -> None:
        if self.cancelled:
            self._drop(DropReason.CANCELLED)
            self._emit(task.url, task.kind.value, "cancelled")
            return
        logger.debug("[%d] %s %s", task.depth, task.kind.value, task.url)
        try:
            if task.kind is TaskKind.IMAGE and self.config.head_precheck and self._not_larger_by_head(task):
                return
            result = self.fetcher.fetch(task.url)
            self._handle(task, result)
        except CrawlCancelled:
            self._drop(DropReason.CANCELLED)
            self._emit(task.url, task.kind.value, "cancelled")
        except Exception as e:
            logger.exception("Unexpected error processing %s", task.url)
            self._error(ErrorKind.INTERNAL)
            self._emit(task.url, task.kind.value, "failed", f"{type(e).__name__}: {e}")

    def _handle(self, task: CrawlTask, result: FetchResult) -> None:
        if isinstance(result, Failure):
            logger.warning("Failed %s: %s", task.url, result.detail or result.kind.value)
            self._error(result.kind)
            self._emit(task.url, task.kind.value, "failed", result.kind.value)
        elif isinstance(result, OtherContent):
            logger.debug("Skipping %s (%s)", task.url, result.content_type or "no content-type")
            self._drop(DropReason.UNSUPPORTED_TYPE)
            self._emit(task.url, task.kind.value, "dropped", DropReason.UNSUPPORTED_TYPE.value)
        elif isinstance(result, HtmlPage):
            if task.kind is TaskKind.IMAGE:
                self._drop(DropReason.UNSUPPORTED_TYPE)
                self._emit(task.url, task.kind.value, "dropped", DropReason.UNSUPPORTED_TYPE.value)
                return
            self._handle_page(task, result)
        elif isinstance(result, ImageCandidate):
            self._handle_image(task, result)

    def _redirect_ok(self, task: CrawlTask, final_url: str, *, admit: bool) -> bool:
        """Check a redirect target; when admit is set it must also be new to the visited set."""
        if final_url == task.url:
            return True
        reason = None
        if not in_scope(final_url, self._root_domain):
            reason = DropReason.SCOPE_REJECTED
        elif not self.visited.add(final_url) and admit:
            reason = DropReason.ALREADY_VISITED
        if reason is None:
            return True
        logger.debug("Redirect %s -> %s dropped (%s)", task.url, final_url, reason.value)
        self._drop(reason)
        self._emit(task.url, task.kind.value, "dropped", reason.value)
        return False

    def _handle_page(self, task: CrawlTask, page: HtmlPage) -> None:
        if not self._redirect_ok(task, page.url, admit=True):
            return
        with self._summary_lock:
            self.summary.pages_visited += 1
        found = extract(page)
        if found.skipped:
            self._error(ErrorKind.PARSE)
        admitted = 0
        for link in sorted(found.links):
            admitted += self._admit(link, task.depth + 1, TaskKind.PAGE)
        for ref in sorted(found.images, key=lambda r: r.url):
            admitted += self._admit(ref.url, task.depth + 1, TaskKind.IMAGE)
        self._emit(
            task.url, task.kind.value, "done",
            f"{len(found.links)} links, {len(found.images)} images, {admitted} new",
        )

    def _handle_image(self, task: CrawlTask, image: ImageCandidate) -> None:
        # Image bytes are already here; a redirect onto a known identity is just another offer.
        if not self._redirect_ok(task, image.source_url, admit=False):
            return
        accepted = self.registry.offer(
            image.source_url,
            image.body,
            format=image.format,
            domain=host_of(image.source_url),
            content_type=image.content_type,
        )
        if not accepted:
            self._drop(DropReason.NOT_LARGER)
        self._emit(
            task.url, TaskKind.IMAGE.value, "done",
            f"{image.size} bytes {'kept' if accepted else 'smaller than stored variant'}",
        )

    def _not_larger_by_head(self, task: CrawlTask) -> bool:
        """HEAD pre-check: True (and dropped) if the stored variant is at least the declared size."""
        meta = self.fetcher.head_metadata(task.url)
        if meta is None:
            return False
        final_url, declared = meta
        stored = self.registry.best_size(final_url)
        if stored is None or declared is None or declared > stored:
            return False
        self._drop(DropReason.NOT_LARGER)
        self._emit(task.url, TaskKind.IMAGE.value, "dropped", DropReason.NOT_LARGER.value)
        return True

    # -- flush --------------------------------------------------------------

    def _flush(self) -> None:
        records = self.registry.finalize()
        if records:
            logger.info("Writing %d images to %s", len(records), self.organizer.root)
        for rec, outcome in self.organizer.persist_all(records):
            if isinstance(outcome, StorageError):
                logger.warning("Could not save %s: %s", rec.identity, outcome)
                self._error(ErrorKind(outcome.kind))
                self._emit(rec.identity, "file", "failed", outcome.kind)
                continue
            with self._summary_lock:
                self.summary.images_downloaded += 1
                self.summary.bytes_written += rec.size
                self.summary.files.append(outcome)
            self._emit(rec.identity, "file", "saved", str(outcome))

    # -- bookkeeping --------------------------------------------------------

    def _error(self, kind: ErrorKind) -> None:
        with self._summary_lock:
            self.summary.errors_by_kind[kind] += 1

    def _drop(self, reason: DropReason) -> None:
        with self._summary_lock:
            self.summary.dropped_by_kind[reason] += 1

    def _emit(self, url: str, kind: str, outcome: str, detail: str = "") -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(CrawlEvent(url=url, kind=kind, outcome=outcome, detail=detail))
        except Exception:
            logger.exception("Progress callback failed for %s", url)


def crawl(seed: str, config: CrawlConfig | None = None, **kwargs) -> CrawlSummary:
    """Convenience wrapper: run one crawl with a fresh Crawler."""
    return Crawler(config, **kwargs).run(seed)
