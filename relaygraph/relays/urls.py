"""relaygraph.relays.urls

Relay URL hygiene. Users type "relay.example.com"; relays live at
"wss://relay.example.com".
"""

from __future__ import annotations

from urllib.parse import urlparse, urlunparse

_ALLOWED_SCHEMES = ("ws", "wss")


def normalize_relay_url(url: str) -> str:
    """Return the canonical form of ``url`` or raise ``ValueError``.

    - bare hosts get ``wss://``
    - scheme and host are lowercased
    - a lone trailing ``/`` is dropped
    """

    trimmed = str(url).strip()
    if not trimmed:
        raise ValueError("relay url is empty")
    if "://" not in trimmed:
        trimmed = f"wss://{trimmed}"

    u = urlparse(trimmed)
    scheme = (u.scheme or "").lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise ValueError(f"relay url must use ws:// or wss://, got {url!r}")
    if not u.hostname:
        raise ValueError(f"relay url has no host: {url!r}")
    if u.username or u.password:
        raise ValueError(f"relay url must not carry credentials: {url!r}")

    path = "" if u.path == "/" else u.path
    return urlunparse((scheme, u.netloc.lower(), path, "", u.query, ""))


def is_valid_relay_url(url: str) -> bool:
    try:
        normalize_relay_url(url)
    except ValueError:
        return False
    return True


def dedupe_relays(urls: list[str]) -> list[str]:
    """Normalize and dedupe, preserving first-seen order. Invalid entries are dropped."""

    seen: set[str] = set()
    out: list[str] = []
    for url in urls:
        try:
            norm = normalize_relay_url(url)
        except ValueError:
            continue
        if norm not in seen:
            seen.add(norm)
            out.append(norm)
    return out
