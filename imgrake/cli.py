"""imgrake CLI. Invoked as `imgrake` when installed with pip install -e ."""

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Sequence

try:
    from tqdm import tqdm
except ImportError:
    tqdm = None

from imgrake._deps import check_required, optional_hint
from imgrake.hardware import (
    AGGRESSIVENESS_CHOICES,
    default_workers,
    format_hardware,
    resolve_preset,
)

logger = logging.getLogger("imgrake.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imgrake",
        description="Crawl one site and download the largest version of every JPEG/GIF it links.",
    )
    parser.add_argument("url", nargs="?", default=None, help="Seed URL; only its registrable domain is crawled")
    parser.add_argument("--hardware", action="store_true", help="Print detected hardware and suggested workers, then exit.")
    parser.add_argument("--out-dir", default="downloads", help="Output directory (default: downloads)")
    parser.add_argument("--max-depth", type=int, default=None, metavar="N", help="Max link depth from the seed (default: unbounded)")
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help=f"Parallel crawl workers (default: auto from CPU, {default_workers()} here)",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Max simultaneous requests per host (default: 2)",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        metavar="SECS",
        help="Minimum interval between requests to the same host (default: 0.5)",
    )
    parser.add_argument("--timeout", type=float, default=30.0, metavar="SECS", help="Deadline for each request, headers and body together (default: 30, max: 120)")
    parser.add_argument(
        "--aggressiveness",
        choices=AGGRESSIVENESS_CHOICES,
        default=None,
        metavar="MODE",
        help="Preset for workers/delay/concurrency: auto, conservative, balanced, aggressive. Explicit flags win.",
    )
    parser.add_argument(
        "--head-precheck",
        action="store_true",
        help="HEAD an image before downloading it and skip it when a stored variant is at least as large.",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar (e.g. for scripting)")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _apply_preset(args: argparse.Namespace) -> None:
    """Fill workers/delay/max_concurrency from --aggressiveness where not given explicitly."""
    if args.aggressiveness is None:
        return
    preset = resolve_preset(args.aggressiveness)
    if args.workers is None:
        args.workers = preset.workers
    if args.delay is None:
        args.delay = preset.per_host_interval
    if args.max_concurrency is None:
        args.max_concurrency = preset.max_concurrency
    print(
        f"Aggressiveness: {args.aggressiveness} (workers={args.workers}, delay={args.delay}s, "
        f"per-host={args.max_concurrency})",
        file=sys.stderr,
    )


def format_summary(summary, out_dir: Path) -> str:
    """Human-readable final report."""
    lines = [
        "Crawling completed!" if not summary.cancelled else "Crawl cancelled.",
        f"  Pages visited:     {summary.pages_visited}",
        f"  Images downloaded: {summary.images_downloaded} ({summary.bytes_written:,} bytes)",
    ]
    if summary.errors:
        detail = ", ".join(f"{k.value}={n}" for k, n in sorted(summary.errors_by_kind.items(), key=lambda kv: kv[0].value))
        lines.append(f"  Errors:            {summary.errors} ({detail})")
    else:
        lines.append("  Errors:            0")
    lines.append(f"  Output:            {out_dir}")
    return "\n".join(lines)


class _Progress:
    """Progress collaborator: tqdm bar when available, otherwise plain stderr lines for failures."""

    def __init__(self, enabled: bool) -> None:
        self._lock = threading.Lock()
        self._pbar = tqdm(desc="Crawl", unit=" url", file=sys.stderr) if (tqdm and enabled) else None

    def _write(self, msg: str) -> None:
        if self._pbar is not None:
            self._pbar.write(msg, file=sys.stderr)
        else:
            print(msg, file=sys.stderr)

    def __call__(self, event) -> None:
        with self._lock:
            if event.kind == "file":
                if event.outcome == "saved":
                    self._write(f"  Saved: {event.detail}")
                else:
                    self._write(f"  Save fail {event.url}: {event.detail}")
                return
            if self._pbar is not None:
                self._pbar.update(1)
            if event.outcome == "failed":
                self._write(f"  Fail {event.url}: {event.detail}")

    def close(self) -> None:
        if self._pbar is not None:
            self._pbar.close()


def main(argv: Sequence[str] | None = None) -> None:
    check_required()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.hardware:
        print(format_hardware(), file=sys.stderr)
        sys.exit(0)
    if not args.url or not args.url.strip():
        parser.error("A seed URL is required (or use --hardware to print hardware info).")

    from imgrake.config import CrawlConfig
    from imgrake.crawler import Crawler
    from imgrake.errors import StorageError
    from imgrake.urls import canonicalize

    seed = args.url.strip()
    if canonicalize(seed) is None:
        parser.error(f"invalid seed URL: {seed!r} (expected an absolute http(s) URL)")

    _configure_logging(args)
    hint = optional_hint()
    if hint and not args.no_progress:
        print(hint, file=sys.stderr)
    _apply_preset(args)

    out_dir = Path(args.out_dir)
    config = CrawlConfig(output_root=out_dir, max_depth=args.max_depth, timeout=args.timeout,
                         head_precheck=args.head_precheck)
    if args.workers is not None:
        config.workers = args.workers
    if args.max_concurrency is not None:
        config.max_concurrency = args.max_concurrency
    if args.delay is not None:
        config.per_host_interval = args.delay
    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    print(f"Starting crawler for {seed}", file=sys.stderr)
    print(f"Images will be saved to the '{out_dir}' directory", file=sys.stderr)
    progress = _Progress(enabled=not args.no_progress)
    try:
        summary = Crawler(config, on_event=progress).run(seed)
    except StorageError as e:
        progress.close()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        progress.close()
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    progress.close()
    print("", file=sys.stderr)
    print(format_summary(summary, out_dir), file=sys.stderr)


if __name__ == "__main__":
    main()
