"""URL canonicalization and hashing used for source records and dedupe keys."""

import base64
import hashlib
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "msclkid",
    "dclid",
    "mc_cid",
    "mc_eid",
    "ref",
    "ref_src",
    "_ga",
    "_gl",
    "igshid",
    "yclid",
}

DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_PARAMS


def normalize_url(url: str) -> str:
    """Return a canonical form of ``url`` so equivalent links hash the same."""
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    port = parsed.port
    netloc = host
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"

    path = parsed.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query_pairs = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if not _is_tracking_param(k)]
    query_pairs.sort()
    query = urlencode(query_pairs)

    return urlunparse((scheme, netloc, path, "", query, ""))


def hash_url(url: str) -> str:
    """Stable 22-character URL-safe hash of the normalized URL."""
    digest = hashlib.sha256(normalize_url(url).encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")[:22]


def site_name_from_url(url: str) -> Optional[str]:
    host = urlparse(url).hostname
    if not host:
        return None
    if host.lower().startswith("www."):
        host = host[4:]
    return host
