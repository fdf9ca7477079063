"""relaygraph.zaps.amounts

How much did a zap receipt pay?

Receipts are written by the recipient's payment processor, and processors
disagree about which fields they fill in. Precedence, first hit wins:

1. the receipt's own ``amount`` tag (millisats)
2. the amount encoded in the receipt's ``bolt11`` invoice
3. the ``amount`` tag of the original request embedded in ``description``

A receipt with none of these still counts as a zap; it just adds nothing.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from relaygraph.core.events import Event, first_tag_value
from relaygraph.zaps.bolt11 import decode_amount_sats

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ZapTotals:
    count: int = 0
    total_sats: int = 0
    # Receipt ids that counted but had no extractable amount.
    unparsed: list[str] = field(default_factory=list)


def _msat_tag_to_sats(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        msat = int(value.strip())
    except ValueError:
        return None
    if msat < 0:
        return None
    return msat // 1000


def _from_amount_tag(receipt: Event) -> int | None:
    return _msat_tag_to_sats(first_tag_value(receipt, "amount"))


def _from_bolt11(receipt: Event) -> int | None:
    invoice = first_tag_value(receipt, "bolt11")
    if not invoice:
        return None
    try:
        return decode_amount_sats(invoice)
    except ValueError as e:
        logger.debug("zap_bolt11_unparseable", extra={"receipt_id": receipt.id, "error": str(e)})
        return None


def embedded_request(receipt: Event) -> dict | None:
    raw = first_tag_value(receipt, "description")
    if not raw:
        return None
    try:
        req = json.loads(raw)
    except ValueError:
        logger.debug("zap_description_unparseable", extra={"receipt_id": receipt.id})
        return None
    return req if isinstance(req, dict) else None


def _from_embedded_request(receipt: Event) -> int | None:
    req = embedded_request(receipt)
    if req is None:
        return None
    tags = req.get("tags")
    if not isinstance(tags, list):
        return None
    for t in tags:
        if isinstance(t, list) and len(t) >= 2 and t[0] == "amount" and isinstance(t[1], str):
            return _msat_tag_to_sats(t[1])
    return None


_EXTRACTORS = (_from_amount_tag, _from_bolt11, _from_embedded_request)


def extract_zap_amount(receipt: Event) -> int | None:
    """Sats paid by ``receipt``, or ``None`` if no source yields an amount."""

    for extractor in _EXTRACTORS:
        sats = extractor(receipt)
        if sats is not None:
            return sats
    return None


def total_zaps(receipts: Sequence[Event]) -> ZapTotals:
    total = 0
    unparsed: list[str] = []
    for r in receipts:
        sats = extract_zap_amount(r)
        if sats is None:
            logger.warning("zap_amount_missing", extra={"receipt_id": r.id})
            unparsed.append(r.id)
            continue
        total += sats
    return ZapTotals(count=len(receipts), total_sats=total, unparsed=unparsed)
