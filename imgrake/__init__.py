"""imgrake: domain-scoped crawler that downloads the largest version of every JPEG/GIF it finds."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("imgrake")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"
