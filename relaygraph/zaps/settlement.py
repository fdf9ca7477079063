"""relaygraph.zaps.settlement

Zap Settlement Engine.

A zap is a payment with a receipt. The engine gets an invoice for a signed zap
request, tries to have it paid, and if nobody paid it on the spot, watches the
relays for the processor's receipt until the confirmation window closes.

The engine never claims a payment happened. ``settled`` means either a channel
reported success or a receipt carrying the exact invoice showed up.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from relaygraph.context import EngineContext, resolve_actor
from relaygraph.core.events import Event, EventDraft, Filter, Kind, coordinate, first_tag_value
from relaygraph.core.exceptions import InvoiceError, PayEndpointError, SignerError
from relaygraph.core.types import FailureReason, MutationResult
from relaygraph.security.signer import sign
from relaygraph.social.profiles import ProfileRepository
from relaygraph.zaps.amounts import ZapTotals, total_zaps
from relaygraph.zaps.channels import ChannelOutcome, ManualChannel, PaymentChannel, run_chain
from relaygraph.zaps.lnurl import LnurlClient, resolve_pay_url
from relaygraph.zaps.state import ZapState, ZapStateMachine

MSAT_PER_SAT = 1000


class ZapFailureReason(StrEnum):
    INVALID_AMOUNT = "invalid_amount"
    NOT_AUTHENTICATED = "not_authenticated"
    AUTHOR_NOT_FOUND = "author_not_found"
    NO_PAYMENT_IDENTIFIER = "no_payment_identifier"
    NO_ZAP_ENDPOINT = "no_zap_endpoint"
    AMOUNT_OUT_OF_RANGE = "amount_out_of_range"
    SIGNER_DECLINED = "signer_declined"
    INVOICE_UNAVAILABLE = "invoice_unavailable"
    NO_RECEIPT_RELAYS = "no_receipt_relays"
    NO_CONFIRMATION = "no_confirmation"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class ZapTarget:
    """What is being zapped: an event, or an addressable event by coordinate."""

    event_id: str
    author: str
    coordinate: str | None = None

    @classmethod
    def of(cls, event: Event) -> ZapTarget:
        return cls(event_id=event.id, author=event.pubkey, coordinate=coordinate(event) if event.is_addressable else None)

    @property
    def cache_key(self) -> tuple[str, str]:
        return ("zaps", self.coordinate or self.event_id)

    def reference_tag(self) -> list[str]:
        if self.coordinate:
            return ["a", self.coordinate]
        return ["e", self.event_id]

    def receipt_filter(self, *, since: int | None = None) -> Filter:
        if self.coordinate:
            return Filter(kinds=[Kind.ZAP_RECEIPT], a=[self.coordinate], since=since)
        return Filter(kinds=[Kind.ZAP_RECEIPT], e=[self.event_id], since=since)


@dataclass(frozen=True, slots=True)
class ZapSnapshot:
    target: ZapTarget
    amount_sats: int
    state: ZapState
    invoice: str | None = None
    reason: ZapFailureReason | None = None
    message: str = ""
    channel: ChannelOutcome | None = None
    receipt_id: str | None = None


SuccessCallback = Callable[[ZapSnapshot], Any]


@dataclass(slots=True, eq=False)
class ZapSession:
    """One zap in flight. Mutated only by the engine and by :meth:`cancel`."""

    target: ZapTarget
    amount_sats: int
    comment: str = ""
    state: ZapState = ZapState.IDLE
    invoice: str | None = None
    reason: ZapFailureReason | None = None
    message: str = ""
    request: Event | None = None
    channel: ChannelOutcome | None = None
    receipt_id: str | None = None
    history: list[tuple[ZapState, str]] = field(default_factory=list)
    _task: asyncio.Task[None] | None = field(default=None, repr=False)
    _sm: ZapStateMachine = field(default_factory=ZapStateMachine, repr=False)

    @property
    def done(self) -> bool:
        return self._sm.is_terminal(self.state)

    def move(self, new_state: ZapState, reason: str) -> None:
        t = self._sm.transition(state=self.state, new_state=new_state, reason=reason)
        self.history.append((t.new, t.reason))
        self.state = t.new

    def snapshot(self) -> ZapSnapshot:
        return ZapSnapshot(
            target=self.target,
            amount_sats=self.amount_sats,
            state=self.state,
            invoice=self.invoice,
            reason=self.reason,
            message=self.message,
            channel=self.channel,
            receipt_id=self.receipt_id,
        )

    def cancel(self) -> bool:
        """Abandon a zap waiting for manual payment. Returns whether it was live."""

        if self.state is not ZapState.AWAITING_MANUAL_PAYMENT:
            return False
        self.move(ZapState.CANCELLED, "cancelled by caller")
        self.reason = ZapFailureReason.CANCELLED
        self.invoice = None
        if self._task is not None:
            self._task.cancel()
        return True

    async def wait(self) -> ZapSnapshot:
        """Wait for reconciliation to finish (if running) and return the final snapshot."""

        if self._task is not None:
            await asyncio.wait([self._task])
        return self.snapshot()


_ACTOR_REASONS = {
    FailureReason.NOT_AUTHENTICATED: ZapFailureReason.NOT_AUTHENTICATED,
    FailureReason.SIGNER_DECLINED: ZapFailureReason.SIGNER_DECLINED,
}


class ZapSettlementEngine:
    def __init__(
        self,
        ctx: EngineContext,
        *,
        profiles: ProfileRepository,
        lnurl: LnurlClient,
        channels: Sequence[PaymentChannel] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.ctx = ctx
        self.profiles = profiles
        self.lnurl = lnurl
        self.channels: list[PaymentChannel] = list(channels) if channels is not None else [ManualChannel()]
        self._log = logger or logging.getLogger(__name__)
        self._sessions: set[ZapSession] = set()

    def set_channels(self, channels: Sequence[PaymentChannel]) -> None:
        self.channels = list(channels)

    def _fail(self, session: ZapSession, reason: ZapFailureReason, message: str) -> ZapSession:
        session.move(ZapState.FAILED, reason.value)
        session.reason = reason
        session.message = message
        session.invoice = None
        self._log.info(
            "zap_failed",
            extra={"target": session.target.event_id, "reason": reason.value, "detail": message},
        )
        return session

    async def _settle(self, session: ZapSession, on_success: SuccessCallback | None, reason: str) -> None:
        session.move(ZapState.SETTLED, reason)
        self.ctx.cache.invalidate(session.target.cache_key)
        self._log.info(
            "zap_settled",
            extra={"target": session.target.event_id, "amount_sats": session.amount_sats, "via": reason},
        )
        if on_success is None:
            return
        try:
            result = on_success(session.snapshot())
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            self._log.warning("zap_callback_failed", extra={"target": session.target.event_id, "error": str(e)})

    async def zap(
        self,
        target: Event | ZapTarget,
        amount_sats: int,
        *,
        comment: str = "",
        on_success: SuccessCallback | None = None,
    ) -> ZapSession:
        """Run a zap up to settlement or manual payment.

        Failures come back as a session in ``failed`` with a
        :class:`ZapFailureReason`; nothing here raises for an expected failure.
        A session left in ``awaiting_manual_payment`` keeps reconciling in the
        background; use :meth:`ZapSession.wait` or :meth:`ZapSession.cancel`.
        """

        zt = target if isinstance(target, ZapTarget) else ZapTarget.of(target)
        session = ZapSession(target=zt, amount_sats=amount_sats, comment=comment)

        if amount_sats <= 0:
            return self._fail(session, ZapFailureReason.INVALID_AMOUNT, "amount must be positive")
        amount_msat = amount_sats * MSAT_PER_SAT

        actor = await resolve_actor(self.ctx, "zap")
        if isinstance(actor, MutationResult):
            reason = _ACTOR_REASONS.get(actor.reason, ZapFailureReason.NOT_AUTHENTICATED)  # type: ignore[arg-type]
            return self._fail(session, reason, actor.message)

        # The processor publishes the receipt to the relays named in the request.
        relays = list(self.ctx.gateway.relays)
        if not relays:
            return self._fail(session, ZapFailureReason.NO_RECEIPT_RELAYS, "no relays to receive the zap receipt")

        profile = await self.profiles.get_profile(zt.author)
        if profile is None:
            return self._fail(session, ZapFailureReason.AUTHOR_NOT_FOUND, "author profile not found")
        if not profile.metadata.payment_identifier:
            return self._fail(session, ZapFailureReason.NO_PAYMENT_IDENTIFIER, "author has no lightning address")

        try:
            pay_url = resolve_pay_url(profile.metadata)
            params = await self.lnurl.fetch_pay_params(pay_url)
        except (ValueError, PayEndpointError) as e:
            return self._fail(session, ZapFailureReason.NO_ZAP_ENDPOINT, str(e))

        if not params.accepts(amount_msat):
            return self._fail(
                session,
                ZapFailureReason.AMOUNT_OUT_OF_RANGE,
                f"amount must be between {params.min_sendable // MSAT_PER_SAT} and "
                f"{params.max_sendable // MSAT_PER_SAT} sats",
            )

        session.move(ZapState.REQUESTING_INVOICE, "endpoint ready")

        draft = EventDraft(
            kind=Kind.ZAP_REQUEST,
            content=comment,
            tags=[
                ["relays", *relays],
                ["amount", str(amount_msat)],
                ["p", zt.author],
                zt.reference_tag(),
            ],
        )
        assert self.ctx.signer is not None
        try:
            request = await sign(self.ctx.signer, draft, expected_pubkey=actor)
        except SignerError as e:
            return self._fail(session, ZapFailureReason.SIGNER_DECLINED, str(e))
        session.request = request

        lnurl = profile.metadata.lud06 if not profile.metadata.lud16 else None
        try:
            invoice = await self.lnurl.request_invoice(params, amount_msat=amount_msat, zap_request=request, lnurl=lnurl)
        except InvoiceError as e:
            return self._fail(session, ZapFailureReason.INVOICE_UNAVAILABLE, str(e))
        session.invoice = invoice

        session.move(ZapState.CHANNEL_ATTEMPT, "invoice received")
        outcome = await run_chain(self.channels, invoice, logger=self._log)
        if outcome is not None:
            session.channel = outcome
            await self._settle(session, on_success, f"channel:{outcome.kind}")
            return session

        session.move(ZapState.AWAITING_MANUAL_PAYMENT, "channels exhausted")
        self._log.info("zap_awaiting_manual_payment", extra={"target": zt.event_id, "amount_sats": amount_sats})
        self._sessions.add(session)
        session._task = asyncio.create_task(self._reconcile(session, on_success))
        session._task.add_done_callback(lambda _t: self._sessions.discard(session))
        return session

    def _matches_invoice(self, receipt: Event, invoice: str) -> bool:
        bolt11 = first_tag_value(receipt, "bolt11")
        return bolt11 is not None and bolt11.strip().lower() == invoice.strip().lower()

    async def _reconcile(self, session: ZapSession, on_success: SuccessCallback | None) -> None:
        cfg = self.ctx.config.zaps
        loop = asyncio.get_running_loop()
        deadline = loop.time() + cfg.confirmation_window_s
        assert session.request is not None and session.invoice is not None
        invoice = session.invoice
        since = session.request.created_at - cfg.receipt_lookback_s

        while session.state is ZapState.AWAITING_MANUAL_PAYMENT:
            try:
                receipts = await self.ctx.gateway.query(
                    session.target.receipt_filter(since=since),
                    timeout_s=self.ctx.config.timeouts.aggregate_s,
                )
            except Exception as e:  # noqa: BLE001
                self._log.warning("zap_reconcile_error", extra={"target": session.target.event_id, "error": str(e)})
                receipts = []

            match = next((r for r in receipts if self._matches_invoice(r, invoice)), None)
            if match is not None and session.state is ZapState.AWAITING_MANUAL_PAYMENT:
                session.receipt_id = match.id
                await self._settle(session, on_success, "receipt")
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                if session.state is ZapState.AWAITING_MANUAL_PAYMENT:
                    self._fail(session, ZapFailureReason.NO_CONFIRMATION, "no receipt within confirmation window")
                return
            await asyncio.sleep(min(cfg.poll_interval_s, remaining))

    async def get_zap_totals(self, target: Event | ZapTarget | str, *, fresh: bool = False) -> ZapTotals:
        if isinstance(target, str):
            zt = ZapTarget(event_id=target, author="")
        elif isinstance(target, Event):
            zt = ZapTarget.of(target)
        else:
            zt = target

        if not fresh:
            cached = self.ctx.cache.get(zt.cache_key)
            if cached is not None:
                return cached

        receipts = await self.ctx.gateway.query(
            zt.receipt_filter(),
            timeout_s=self.ctx.config.timeouts.aggregate_s,
        )
        totals = total_zaps(receipts)
        self.ctx.cache.set(zt.cache_key, totals, ttl_s=self.ctx.config.cache.ttl_s)
        return totals

    @property
    def live_sessions(self) -> list[ZapSession]:
        return list(self._sessions)

    async def aclose(self) -> None:
        sessions = list(self._sessions)
        for s in sessions:
            s.cancel()
        tasks = [s._task for s in sessions if s._task is not None]
        if tasks:
            await asyncio.wait(tasks)
        self._sessions.clear()
