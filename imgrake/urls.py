"""URL canonicalization and same-domain scoping. Pure functions, no state."""

import re
from urllib.parse import quote, urljoin, urlsplit, urlunsplit

import tldextract

DEFAULT_PORTS = {"http": 80, "https": 443}

# Characters left alone when re-quoting a path; "%" keeps existing escapes intact.
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"
_QUERY_SAFE = "/?%:@!$&'()*+,;=-._~"

_SKIP_PREFIXES = ("#", "mailto:", "javascript:", "data:", "tel:", "blob:")

# Bundled public-suffix snapshot only; never fetch the list over the network.
# Private suffixes (github.io, blogspot.com, ...) count, so each user site is its own domain.
_extract = tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)

_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def _remove_dot_segments(path: str) -> str:
    """Resolve "." and ".." segments (RFC 3986 5.2.4), keeping a trailing slash."""
    if "." not in path:
        return path
    out: list[str] = []
    segments = path.split("/")
    for i, seg in enumerate(segments):
        last = i == len(segments) - 1
        if seg == ".":
            if last:
                out.append("")
            continue
        if seg == "..":
            if len(out) > 1:
                out.pop()
            if last:
                out.append("")
            continue
        out.append(seg)
    result = "/".join(out)
    if not result.startswith("/"):
        result = "/" + result
    return result


def canonicalize(raw: str, base: str | None = None) -> str | None:
    """
    Resolve raw against base and normalize it. Returns None for anything that is not
    a parseable http(s) URL (mailto:, javascript:, bare fragments, bad ports, ...).
    """
    if not raw or not isinstance(raw, str):
        return None
    raw = raw.strip()
    if not raw or raw.lower().startswith(_SKIP_PREFIXES):
        return None
    try:
        absolute = urljoin(base, raw) if base else raw
        parts = urlsplit(absolute)
        scheme = parts.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            return None
        host = (parts.hostname or "").rstrip(".")
        if not host:
            return None
        port = parts.port
    except ValueError:
        return None
    if ":" in host:
        host = f"[{host}]"
    netloc = host if port is None or port == DEFAULT_PORTS[scheme] else f"{host}:{port}"
    path = _remove_dot_segments(parts.path) or "/"
    path = quote(path, safe=_PATH_SAFE)
    query = quote(parts.query, safe=_QUERY_SAFE)
    return urlunsplit((scheme, netloc, path, query, ""))


def host_of(url: str) -> str:
    """Lowercased hostname of url ("" when absent)."""
    try:
        return (urlsplit(url).hostname or "").rstrip(".")
    except ValueError:
        return ""


def registrable_domain(host: str) -> str:
    """
    Site-identifying part of host: "www.example.co.uk" -> "example.co.uk".
    IP addresses and single-label hosts (localhost) are returned unchanged.
    """
    host = host.lower().strip().rstrip(".")
    if not host or _IPV4_RE.match(host) or ":" in host:
        return host
    ext = _extract(host)
    return ".".join(p for p in (ext.domain, ext.suffix) if p) or host


def in_scope(url: str, root_domain: str) -> bool:
    """True if url belongs to root_domain (subdomains included)."""
    host = host_of(url)
    return bool(host) and registrable_domain(host) == root_domain
