import pytest

from imgrake.hardware import (
    MAX_WORKERS,
    PRESETS,
    HardwareInfo,
    default_workers,
    format_hardware,
    resolve_preset,
    suggest_aggressiveness,
)


@pytest.mark.parametrize(
    "hw,expected",
    [
        (HardwareInfo(cpu_count=2, memory_gb=16), "conservative"),
        (HardwareInfo(cpu_count=8, memory_gb=2), "conservative"),
        (HardwareInfo(cpu_count=4, memory_gb=8), "balanced"),
        (HardwareInfo(cpu_count=8, memory_gb=16), "aggressive"),
        (HardwareInfo(cpu_count=8, memory_gb=None), "aggressive"),
    ],
)
def test_suggest_aggressiveness(hw, expected):
    assert suggest_aggressiveness(hw) == expected


def test_workers_are_capped():
    assert HardwareInfo(cpu_count=64).workers == MAX_WORKERS
    assert 1 <= default_workers() <= MAX_WORKERS


def test_resolve_preset_fills_workers_from_hardware():
    hw = HardwareInfo(cpu_count=4, memory_gb=8)
    assert resolve_preset("balanced", hw).workers == 4
    assert resolve_preset("auto", hw) == resolve_preset("balanced", hw)
    assert resolve_preset("bogus", hw) == resolve_preset("balanced", hw)
    assert resolve_preset("conservative", hw) == PRESETS["conservative"]


def test_format_hardware():
    text = format_hardware(HardwareInfo(cpu_count=8, memory_gb=16.0))
    assert "CPU cores: 8" in text
    assert "Memory: 16.0 GB" in text
    assert "Suggested aggressiveness: aggressive" in text
