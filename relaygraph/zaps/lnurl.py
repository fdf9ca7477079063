"""relaygraph.zaps.lnurl

Recipient payment endpoint (LNURL-pay).

Resolution:
- ``lud16`` ``name@domain`` -> ``https://domain/.well-known/lnurlp/name``
- ``lud06`` bech32 ``lnurl1...`` -> the encoded URL

The endpoint describes itself with a ``payRequest`` document. It can take zaps
only if it says ``allowsNostr`` and names the key it signs receipts with.

Invoice acquisition is a single GET against the ``callback``. No retries: a
processor that fails once is not trusted with a second request for the same
payment.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relaygraph.core.client import HttpClient
from relaygraph.core.events import HEX64, Event
from relaygraph.core.exceptions import InvoiceError, PayEndpointError, UnsafeUrlError
from relaygraph.social.profiles import ProfileMetadata
from relaygraph.zaps.bolt11 import decode_amount_msat

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GEN = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: list[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= _BECH32_GEN[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: list[int], from_bits: int, to_bits: int) -> bytes:
    acc = 0
    bits = 0
    out = bytearray()
    maxv = (1 << to_bits) - 1
    for value in data:
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & maxv)
    if bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ValueError("invalid bech32 padding")
    return bytes(out)


def bech32_decode(value: str) -> tuple[str, bytes]:
    """Decode a bech32 string (no length cap: LNURLs exceed 90 chars)."""

    s = value.strip()
    if s.lower() != s and s.upper() != s:
        raise ValueError("mixed-case bech32")
    s = s.lower()
    sep = s.rfind("1")
    if sep < 1 or sep + 7 > len(s):
        raise ValueError("invalid bech32 separator position")
    hrp, data_part = s[:sep], s[sep + 1 :]
    try:
        data = [_BECH32_CHARSET.index(c) for c in data_part]
    except ValueError as e:
        raise ValueError("invalid bech32 character") from e
    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError("invalid bech32 checksum")
    return hrp, _convert_bits(data[:-6], 5, 8)


def lud16_to_url(address: str) -> str:
    name, sep, domain = address.strip().partition("@")
    if not sep or not name or not domain or "/" in domain:
        raise ValueError(f"invalid lightning address: {address!r}")
    scheme = "http" if domain.endswith(".onion") else "https"
    return f"{scheme}://{domain.lower()}/.well-known/lnurlp/{name.lower()}"


def lud06_to_url(lnurl: str) -> str:
    value = lnurl.strip()
    if value.lower().startswith("lightning:"):
        value = value[len("lightning:") :]
    hrp, payload = bech32_decode(value)
    if hrp != "lnurl":
        raise ValueError(f"unexpected bech32 prefix: {hrp}")
    return payload.decode("utf-8")


def resolve_pay_url(metadata: ProfileMetadata) -> str:
    """LNURL-pay URL from profile metadata. ``lud16`` wins over ``lud06``.

    Raises:
        ValueError: neither field present or parseable.
    """

    if metadata.lud16:
        return lud16_to_url(metadata.lud16)
    if metadata.lud06:
        return lud06_to_url(metadata.lud06)
    raise ValueError("no payment identifier")


class PayParams(BaseModel):
    """LNURL-pay ``payRequest`` document (LUD-06, LUD-12, NIP-57)."""

    tag: str
    callback: str
    min_sendable: int = Field(alias="minSendable", ge=0)
    max_sendable: int = Field(alias="maxSendable", ge=0)
    metadata: str = ""
    comment_allowed: int = Field(default=0, alias="commentAllowed")
    allows_nostr: bool = Field(default=False, alias="allowsNostr")
    nostr_pubkey: str | None = Field(default=None, alias="nostrPubkey", pattern=HEX64)

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    @property
    def supports_zaps(self) -> bool:
        return self.tag == "payRequest" and self.allows_nostr and bool(self.nostr_pubkey)

    def accepts(self, amount_msat: int) -> bool:
        return self.min_sendable <= amount_msat <= self.max_sendable


class LnurlClient:
    def __init__(self, http: HttpClient, *, invoice_timeout_s: float = 10.0, logger: logging.Logger | None = None) -> None:
        self.http = http
        self.invoice_timeout_s = invoice_timeout_s
        self._log = logger or logging.getLogger(__name__)

    async def fetch_pay_params(self, url: str) -> PayParams:
        try:
            data = await self.http.request_json("GET", url, expected=dict, timeout=self.invoice_timeout_s)
        except (httpx.HTTPError, UnsafeUrlError) as e:
            raise PayEndpointError(f"pay endpoint unreachable: {e}") from e
        try:
            params = PayParams.model_validate(data)
        except ValidationError as e:
            raise PayEndpointError("pay endpoint returned an invalid payRequest") from e
        if not params.supports_zaps:
            raise PayEndpointError("pay endpoint does not accept zaps")
        return params

    async def request_invoice(
        self,
        params: PayParams,
        *,
        amount_msat: int,
        zap_request: Event,
        lnurl: str | None = None,
    ) -> str:
        """Ask the processor for an invoice paying ``amount_msat`` for ``zap_request``.

        Raises:
            InvoiceError: non-success status, error body, missing ``pr``, or an
                invoice for a different amount.
        """

        query: dict[str, Any] = {
            "amount": str(amount_msat),
            "nostr": json.dumps(zap_request.to_wire(), separators=(",", ":")),
        }
        if lnurl:
            query["lnurl"] = lnurl
        try:
            resp = await self.http.request(
                "GET",
                params.callback,
                params=query,
                timeout=self.invoice_timeout_s,
                raise_for_status=False,
            )
        except (httpx.HTTPError, UnsafeUrlError) as e:
            raise InvoiceError(f"invoice request failed: {e}") from e

        try:
            body: Any = resp.json()
        except ValueError:
            body = None
        reason = body.get("reason") if isinstance(body, dict) else None

        if not resp.is_success:
            raise InvoiceError(f"HTTP {resp.status_code}: {reason or 'Unknown error'}")
        if isinstance(body, dict) and str(body.get("status", "")).upper() == "ERROR":
            raise InvoiceError(f"payment processor error: {reason or 'Unknown error'}")

        invoice = body.get("pr") if isinstance(body, dict) else None
        if not invoice or not isinstance(invoice, str):
            raise InvoiceError("payment processor did not return a valid invoice")

        try:
            invoiced = decode_amount_msat(invoice)
        except ValueError as e:
            raise InvoiceError(f"payment processor returned an unreadable invoice: {e}") from e
        if invoiced is not None and invoiced != amount_msat:
            raise InvoiceError(f"invoice amount {invoiced} msat does not match requested {amount_msat} msat")
        return invoice
