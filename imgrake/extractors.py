"""Extract crawlable links and JPEG/GIF image references from HTML."""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from imgrake.models import HtmlPage, ImageReference
from imgrake.urls import canonicalize, host_of

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".jpe", ".gif"})

# Link targets that are never HTML pages; not worth a request.
ASSET_EXTENSIONS = frozenset({
    ".pdf", ".png", ".webp", ".svg", ".bmp", ".ico", ".tif", ".tiff", ".avif",
    ".zip", ".gz", ".tar", ".rar", ".7z", ".mp3", ".mp4", ".webm", ".mov", ".avi",
    ".css", ".js", ".json", ".xml", ".woff", ".woff2", ".ttf", ".exe", ".dmg",
})

# Lazy-load attributes, consulted when an <img> has no usable src/srcset
IMG_LAZY_ATTRS = ("data-src", "data-original", "data-lazy-src")


@dataclass
class Extraction:
    links: set[str] = field(default_factory=set)
    images: set[ImageReference] = field(default_factory=set)
    skipped: int = 0  # fragments that could not be handled


def _extension(url: str) -> str:
    return posixpath.splitext(urlsplit(url).path)[1].lower()


def is_image_url(url: str) -> bool | None:
    """True for jpg/jpeg/gif paths, None when the path has no extension, else False."""
    ext = _extension(url)
    if not ext:
        return None
    return ext in IMAGE_EXTENSIONS


_SRCSET_URL = re.compile(r"[\s,]*(\S+)")


def _usable(url: str) -> bool:
    """Worth returning as an image source: not inline data and not a known non-JPEG/GIF file."""
    return bool(url) and not url.lower().startswith("data:") and is_image_url(url) is not False


def _parse_srcset(srcset: str) -> list[tuple[str, float, float]]:
    """
    Parse srcset; return [(url, width, density)] with 0 for a missing descriptor.

    A candidate URL runs to the next whitespace, so commas inside it (data: URIs,
    query strings) are kept; descriptors run to the next comma. Inline data: candidates
    are dropped.
    """
    entries: list[tuple[str, float, float]] = []
    pos = 0
    while True:
        m = _SRCSET_URL.match(srcset, pos)
        if not m:
            break
        url, pos = m.group(1), m.end()
        descriptors = ""
        if url.endswith(","):
            url = url.rstrip(",")
        else:
            comma = srcset.find(",", pos)
            end = len(srcset) if comma == -1 else comma
            descriptors, pos = srcset[pos:end], min(end + 1, len(srcset))
        if not url or url.lower().startswith("data:"):
            continue
        width = density = 0.0
        for b in descriptors.split():
            try:
                if b.endswith("w"):
                    width = float(b[:-1])
                elif b.endswith("x"):
                    density = float(b[:-1])
            except ValueError:
                pass
        entries.append((url, width, density))
    return entries


def pick_largest_srcset(srcset: str) -> str | None:
    """
    URL of the widest (then densest) JPEG/GIF-eligible srcset candidate; first one if none
    has a descriptor. Candidates with another known image extension are ignored.
    """
    entries = [e for e in _parse_srcset(srcset) if _usable(e[0])]
    if not entries:
        return None
    return max(entries, key=lambda e: (e[1], e[2]))[0]


def _soup(page: HtmlPage) -> BeautifulSoup:
    markup: str | bytes = page.body
    if page.encoding:
        try:
            markup = page.body.decode(page.encoding, errors="replace")
        except LookupError:
            markup = page.body
    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:
        logger.debug("lxml failed on %s; retrying with html.parser", page.url, exc_info=True)
        return BeautifulSoup(markup, "html.parser")


def _image_sources(tag) -> list[str]:
    """
    Raw image URLs an <img> or <source> contributes: the largest eligible srcset
    candidate, else src, else the first lazy-load attribute.
    """
    srcset = tag.get("srcset")
    if srcset:
        picked = pick_largest_srcset(srcset)
        if picked:
            return [picked]
    if tag.name != "img":
        return []
    for attr in ("src", *IMG_LAZY_ATTRS):
        val = (tag.get(attr) or "").strip()
        if _usable(val):
            return [val]
    return []


def extract(page: HtmlPage) -> Extraction:
    """
    Collect same-page links and image references. Best effort: malformed fragments are
    counted in Extraction.skipped and the rest of the document is still processed.
    """
    result = Extraction()
    try:
        soup = _soup(page)
    except Exception:
        logger.warning("Could not parse %s", page.url, exc_info=True)
        result.skipped += 1
        return result

    base_url = page.url
    base = soup.find("base", href=True)
    if base is not None:
        base_url = canonicalize(base.get("href", ""), page.url) or page.url
    referrer = host_of(page.url)

    def add_image(raw: str) -> None:
        url = canonicalize(raw, base_url)
        if url is None:
            return
        if is_image_url(url) is False:
            return
        result.images.add(ImageReference(url=url, referrer_domain=referrer))

    for tag in soup.select("a[href], area[href]"):
        try:
            href = tag.get("href", "")
            url = canonicalize(href, base_url)
            if url is None:
                continue
            image = is_image_url(url)
            if image:
                result.images.add(ImageReference(url=url, referrer_domain=referrer))
            elif _extension(url) not in ASSET_EXTENSIONS:
                result.links.add(url)
        except Exception:
            logger.debug("Skipping malformed link on %s", page.url, exc_info=True)
            result.skipped += 1

    for tag in soup.select("img, picture source[srcset]"):
        try:
            for raw in _image_sources(tag):
                add_image(raw)
        except Exception:
            logger.debug("Skipping malformed image tag on %s", page.url, exc_info=True)
            result.skipped += 1

    return result
