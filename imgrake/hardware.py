"""Worker-count autodetection and crawl speed presets."""

import os
from dataclasses import dataclass, replace

# Crawl workers scale with CPU, capped; most of a worker's life is spent waiting on the network.
MAX_WORKERS = 12
MIN_WORKERS = 1


@dataclass(frozen=True)
class Preset:
    """Throughput/politeness trade-off. workers=None means "from hardware"."""

    workers: int | None
    per_host_interval: float
    max_concurrency: int


PRESETS = {
    "conservative": Preset(workers=2, per_host_interval=1.0, max_concurrency=1),
    "balanced": Preset(workers=None, per_host_interval=0.5, max_concurrency=2),
    "aggressive": Preset(workers=MAX_WORKERS, per_host_interval=0.15, max_concurrency=4),
}
AGGRESSIVENESS_CHOICES = (*PRESETS, "auto")


def _clamp_workers(n: int) -> int:
    return max(MIN_WORKERS, min(n, MAX_WORKERS))


@dataclass(frozen=True)
class HardwareInfo:
    cpu_count: int
    memory_gb: float | None = None

    @property
    def workers(self) -> int:
        return _clamp_workers(self.cpu_count)


def default_workers() -> int:
    """Suggested number of crawl workers from CPU count."""
    return _clamp_workers(os.cpu_count() or MIN_WORKERS)


def _memory_gb() -> float | None:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (OSError, ValueError, AttributeError):
        # Not available on Windows
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return round((pages * page_size) / (1024**3), 2)


def detect_hardware() -> HardwareInfo:
    return HardwareInfo(cpu_count=max(1, os.cpu_count() or 1), memory_gb=_memory_gb())


def suggest_aggressiveness(hw: HardwareInfo | None = None) -> str:
    """'conservative' on weak hardware, 'aggressive' on strong hardware, else 'balanced'."""
    hw = hw or detect_hardware()
    memory_gb = hw.memory_gb or 0
    if hw.cpu_count <= 2 or 0 < memory_gb < 4:
        return "conservative"
    if hw.cpu_count >= 6 and (memory_gb >= 8 or memory_gb == 0):
        return "aggressive"
    return "balanced"


def resolve_preset(name: str, hw: HardwareInfo | None = None) -> Preset:
    """
    Concrete preset for name, with workers always filled in.
    'auto' picks one from the hardware; unknown names fall back to balanced.
    """
    hw = hw or detect_hardware()
    if name == "auto":
        name = suggest_aggressiveness(hw)
    preset = PRESETS.get(name, PRESETS["balanced"])
    if preset.workers is None:
        preset = replace(preset, workers=hw.workers)
    return preset


def format_hardware(hw: HardwareInfo | None = None) -> str:
    hw = hw or detect_hardware()
    suggested = suggest_aggressiveness(hw)
    preset = resolve_preset(suggested, hw)
    lines = [f"CPU cores: {hw.cpu_count}"]
    if hw.memory_gb is not None:
        lines.append(f"Memory: {hw.memory_gb} GB")
    lines.append(f"Crawl workers: {hw.workers}")
    lines.append(
        f"Suggested aggressiveness: {suggested} (workers={preset.workers}, "
        f"delay={preset.per_host_interval}s, per-host={preset.max_concurrency})"
    )
    return "\n".join(lines)
