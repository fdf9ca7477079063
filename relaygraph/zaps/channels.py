"""relaygraph.zaps.channels

Payment channels.

A channel is one way of getting an invoice paid: a connected external wallet,
a wallet the hosting environment provides, or the user paying by hand. They
are tried in a fixed order; one failing only means the next one gets a turn.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

from relaygraph.core.exceptions import PaymentChannelError


class ChannelKind(StrEnum):
    EXTERNAL = "external"
    IN_ENVIRONMENT = "in_environment"
    MANUAL = "manual"


CHANNEL_ORDER: tuple[ChannelKind, ...] = (ChannelKind.EXTERNAL, ChannelKind.IN_ENVIRONMENT, ChannelKind.MANUAL)


@runtime_checkable
class PaymentSender(Protocol):
    async def send_payment(self, invoice: str) -> Any: ...


@dataclass(frozen=True, slots=True)
class ChannelOutcome:
    kind: ChannelKind
    paid: bool
    detail: str = ""
    preimage: str | None = None


class PaymentChannel(Protocol):
    kind: ChannelKind

    @property
    def available(self) -> bool: ...

    async def attempt(self, invoice: str) -> ChannelOutcome: ...


def _preimage(result: Any) -> str | None:
    if isinstance(result, dict):
        value = result.get("preimage")
        return value if isinstance(value, str) else None
    value = getattr(result, "preimage", None)
    return value if isinstance(value, str) else None


async def _send(kind: ChannelKind, sender: PaymentSender, invoice: str) -> ChannelOutcome:
    try:
        result = await sender.send_payment(invoice)
    except Exception as e:  # noqa: BLE001
        raise PaymentChannelError(f"{kind}: {e}") from e
    return ChannelOutcome(kind=kind, paid=True, preimage=_preimage(result))


@dataclass(slots=True)
class ExternalWalletChannel:
    """Wallet connected over a remote-wallet protocol (e.g. NWC)."""

    descriptor: str
    sender: PaymentSender
    connected: bool = True
    kind: ChannelKind = ChannelKind.EXTERNAL

    @property
    def available(self) -> bool:
        return self.connected and bool(self.descriptor)

    async def attempt(self, invoice: str) -> ChannelOutcome:
        return await _send(self.kind, self.sender, invoice)


@dataclass(slots=True)
class InEnvironmentChannel:
    """Wallet exposed by the host environment, resolved lazily.

    ``provider`` returns the sender or ``None`` when the environment has none.
    """

    provider: Callable[[], PaymentSender | None | Awaitable[PaymentSender | None]]
    kind: ChannelKind = ChannelKind.IN_ENVIRONMENT

    @property
    def available(self) -> bool:
        return True

    async def attempt(self, invoice: str) -> ChannelOutcome:
        sender = self.provider()
        if inspect.isawaitable(sender):
            sender = await sender
        if sender is None:
            return ChannelOutcome(kind=self.kind, paid=False, detail="no wallet in environment")
        return await _send(self.kind, sender, invoice)


@dataclass(slots=True)
class ManualChannel:
    """Hands the invoice to the user. Never pays by itself."""

    kind: ChannelKind = ChannelKind.MANUAL

    @property
    def available(self) -> bool:
        return True

    async def attempt(self, invoice: str) -> ChannelOutcome:
        return ChannelOutcome(kind=self.kind, paid=False, detail="awaiting manual payment")


def ordered(channels: Sequence[PaymentChannel]) -> list[PaymentChannel]:
    rank = {k: i for i, k in enumerate(CHANNEL_ORDER)}
    return sorted(channels, key=lambda c: rank.get(c.kind, len(rank)))


async def run_chain(
    channels: Sequence[PaymentChannel],
    invoice: str,
    *,
    logger: logging.Logger | None = None,
) -> ChannelOutcome | None:
    """First paid outcome, or ``None`` once every channel has had its turn."""

    log = logger or logging.getLogger(__name__)
    for channel in ordered(channels):
        if not channel.available:
            log.debug("zap_channel_unavailable", extra={"channel": str(channel.kind)})
            continue
        try:
            outcome = await channel.attempt(invoice)
        except Exception as e:  # noqa: BLE001
            log.warning("zap_channel_failed", extra={"channel": str(channel.kind), "error": str(e)})
            continue
        if outcome.paid:
            log.info("zap_channel_paid", extra={"channel": str(channel.kind)})
            return outcome
        log.info("zap_channel_declined", extra={"channel": str(channel.kind), "detail": outcome.detail})
    return None
