"""Startup dependency check for the CLI. Auto-install is opt-in via IMGRAKE_AUTO_INSTALL_DEPS=1."""

import importlib.util
import os
import subprocess
import sys

AUTO_INSTALL_ENV = "IMGRAKE_AUTO_INSTALL_DEPS"

# (import name, distribution name)
REQUIRED = [
    ("httpx", "httpx"),
    ("bs4", "beautifulsoup4"),
    ("lxml", "lxml"),
    ("tldextract", "tldextract"),
    ("filetype", "filetype"),
]
OPTIONAL = [
    ("tqdm", "tqdm"),
]

PROGRESS_EXTRA = "pip install 'imgrake[progress]'"


def _missing(deps: list[tuple[str, str]]) -> list[str]:
    return [dist for module, dist in deps if importlib.util.find_spec(module) is None]


def missing_required() -> list[str]:
    return _missing(REQUIRED)


def _auto_install(missing: list[str]) -> None:
    """pip install the missing distributions and exit; no-op unless the env switch is on."""
    if os.environ.get(AUTO_INSTALL_ENV, "").lower() not in ("1", "true", "yes"):
        return
    print(f"Installing {', '.join(missing)}...", file=sys.stderr)
    try:
        subprocess.run([sys.executable, "-m", "pip", "install", "-q", *missing], check=True)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        print(f"Auto-install failed: {e}", file=sys.stderr)
        sys.exit(1)
    print("Dependencies installed; run imgrake again.", file=sys.stderr)
    sys.exit(0)


def check_required() -> None:
    """Exit 1 with install instructions if a required library cannot be imported."""
    missing = missing_required()
    if not missing:
        return
    _auto_install(missing)
    print(
        "\n".join([
            f"imgrake is missing required libraries: {', '.join(missing)}",
            "",
            "  pip install imgrake            # from PyPI",
            "  pip install -e .               # from a source checkout",
            f"  {AUTO_INSTALL_ENV}=1 imgrake URL   # install them automatically",
        ]),
        file=sys.stderr,
    )
    sys.exit(1)


def optional_hint() -> str | None:
    """One-line hint when optional extras are missing, else None."""
    if not _missing(OPTIONAL):
        return None
    return f"Optional: {PROGRESS_EXTRA} for a progress bar."
