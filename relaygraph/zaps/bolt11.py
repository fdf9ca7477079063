"""relaygraph.zaps.bolt11

Amount decoding for BOLT-11 invoices.

Only the human-readable prefix is read: ``ln`` + network + optional amount +
optional multiplier, e.g. ``lnbc100n1...`` is 100 nano-BTC = 10 sats. The tagged
data section and the signature are none of our business.
"""

from __future__ import annotations

import re

MSAT_PER_BTC = 100_000_000_000

_HRP_RE = re.compile(r"^ln(bcrt|bc|tbs|tb|sb)(\d*)([munp]?)$")

# Divisor applied to msat-per-BTC for each multiplier.
_MULTIPLIER_DIVISOR = {
    "": 1,
    "m": 1_000,
    "u": 1_000_000,
    "n": 1_000_000_000,
    "p": 1_000_000_000_000,
}


def human_readable_part(invoice: str) -> str:
    s = invoice.strip().lower()
    if s.startswith("lightning:"):
        s = s[len("lightning:") :]
    sep = s.rfind("1")
    if sep <= 0:
        raise ValueError("invoice has no bech32 separator")
    return s[:sep]


def decode_amount_msat(invoice: str) -> int | None:
    """Amount in millisatoshis, or ``None`` for "any amount" invoices.

    Raises:
        ValueError: not a lightning invoice, or an amount that is not a whole
            number of millisatoshis.
    """

    m = _HRP_RE.match(human_readable_part(invoice))
    if m is None:
        raise ValueError("not a lightning invoice")
    digits, multiplier = m.group(2), m.group(3)
    if not digits:
        if multiplier:
            raise ValueError("multiplier without amount")
        return None
    if len(digits) > 1 and digits.startswith("0"):
        raise ValueError("amount has leading zeros")

    amount = int(digits) * MSAT_PER_BTC
    divisor = _MULTIPLIER_DIVISOR[multiplier]
    if amount % divisor:
        raise ValueError("amount is not a whole number of millisatoshis")
    return amount // divisor


def decode_amount_sats(invoice: str) -> int | None:
    msat = decode_amount_msat(invoice)
    return None if msat is None else msat // 1000
