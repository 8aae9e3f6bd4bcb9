"""Configuration for a crawl run."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from imgrake.fetcher import DEFAULT_TIMEOUT, MAX_TIMEOUT, RETRY_BACKOFF
from imgrake.hardware import default_workers

DEFAULT_OUTPUT_ROOT = Path("downloads")
DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_PER_HOST_INTERVAL = 0.5


@dataclass
class CrawlConfig:
    """Settings that control crawling, politeness and output layout."""

    output_root: Path = DEFAULT_OUTPUT_ROOT
    max_depth: Optional[int] = None  # None = unbounded
    workers: int = field(default_factory=default_workers)
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY  # per host
    per_host_interval: float = DEFAULT_PER_HOST_INTERVAL
    jitter: float = 0.0  # fraction of per_host_interval
    timeout: float = DEFAULT_TIMEOUT  # whole-response deadline per request
    retry_backoff: float = RETRY_BACKOFF
    head_precheck: bool = False
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.output_root = Path(self.output_root)

    def validate(self) -> None:
        """Raise ValueError for settings the crawler cannot run with."""
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if self.per_host_interval < 0:
            raise ValueError("per_host_interval must be >= 0")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        if not 0 < self.timeout <= MAX_TIMEOUT:
            raise ValueError(f"timeout must be in (0, {MAX_TIMEOUT:g}]")
        if self.retry_backoff < 0:
            raise ValueError("retry_backoff must be >= 0")
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
