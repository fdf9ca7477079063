"""relaygraph.security.ssrf

Outbound URL policy for payment endpoints.

Pay endpoint URLs are built from profile metadata (``lud16``/``lud06``), which
anyone can publish. A crafted address must not turn the engine into a scanner for
169.254.169.254, 127.0.0.1 or an RFC1918 host.

What a pay endpoint may look like:
- clearnet hosts over https only, resolving exclusively to public addresses
- ``.onion`` hosts over http or https, and only when the policy allows onion
  (the HTTP transport must be routed through Tor for those to resolve at all)
- no userinfo, no localhost, no IP literals outside public ranges
"""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

ONION_SUFFIX = ".onion"

_LOCAL_NAMES = frozenset({"localhost", "localhost.localdomain"})


@dataclass(frozen=True, slots=True)
class UrlCheck:
    allowed: bool
    reason: str | None = None
    host: str | None = None


def _public(ip: str) -> bool:
    addr = ipaddress.ip_address(ip)
    return addr.is_global and not addr.is_multicast


def _resolve(host: str) -> set[str]:
    infos = socket.getaddrinfo(host, None)
    return {str(info[4][0]) for info in infos if info[0] in (socket.AF_INET, socket.AF_INET6)}


@dataclass(frozen=True, slots=True)
class PayUrlPolicy:
    """Callable guard for :class:`~relaygraph.core.client.HttpClient`.

    Blocking: clearnet hosts are resolved with ``getaddrinfo``; the client runs
    the guard in a worker thread.
    """

    allow_onion: bool = False

    def __call__(self, url: str) -> UrlCheck:
        try:
            u = urlparse(str(url))
            host = (u.hostname or "").lower().rstrip(".")
        except ValueError:
            return UrlCheck(False, reason="invalid_url")

        scheme = (u.scheme or "").lower()
        if scheme not in ("http", "https"):
            return UrlCheck(False, reason="scheme_not_allowed")
        if u.username or u.password:
            return UrlCheck(False, reason="userinfo_not_allowed")
        if not host:
            return UrlCheck(False, reason="missing_host")
        if host in _LOCAL_NAMES or host.endswith(".localhost"):
            return UrlCheck(False, reason="host_denied", host=host)

        if host.endswith(ONION_SUFFIX):
            # Resolved by the proxy, never by local DNS.
            if not self.allow_onion:
                return UrlCheck(False, reason="onion_not_enabled", host=host)
            return UrlCheck(True, host=host)

        if scheme != "https":
            return UrlCheck(False, reason="https_required", host=host)

        try:
            ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            if not _public(host):
                return UrlCheck(False, reason="ip_not_public", host=host)
            return UrlCheck(True, host=host)

        try:
            ips = _resolve(host)
        except OSError:
            return UrlCheck(False, reason="dns_resolution_failed", host=host)
        if not ips:
            return UrlCheck(False, reason="dns_no_records", host=host)
        private = sorted(ip for ip in ips if not _public(ip))
        if private:
            return UrlCheck(False, reason=f"dns_ip_not_public:{private[0]}", host=host)
        return UrlCheck(True, host=host)


_DEFAULT_POLICY = PayUrlPolicy()


def check_url(url: str) -> UrlCheck:
    """Default pay endpoint policy: clearnet https only."""

    return _DEFAULT_POLICY(url)


def allow_all(url: str) -> UrlCheck:
    """Guard that allows everything. For tests and trusted local setups."""

    return UrlCheck(True, host=urlparse(str(url)).hostname)
