from __future__ import annotations

import json

import pytest

from relaygraph.core.config import Config
from relaygraph.core.events import Kind
from relaygraph.engine import SocialEngine
from relaygraph.security.ssrf import allow_all
from relaygraph.zaps.channels import ExternalWalletChannel, InEnvironmentChannel, ManualChannel
from relaygraph.zaps.settlement import ZapFailureReason
from relaygraph.zaps.state import ZapState
from tests.fakes import ALICE, BOB, PROCESSOR, FakePayServer, FakeSigner, FakeTransport, FakeWallet, make_event


def _engine(test_config: Config, transport: FakeTransport, server: FakePayServer, channels=None) -> SocialEngine:
    return SocialEngine(
        test_config,
        transport=transport,
        http_transport=server.transport(),
        url_guard=allow_all,
        signer=FakeSigner(ALICE),
        channels=channels,
    )


def _seed_recipient(transport: FakeTransport):
    transport.seed(make_event(BOB, Kind.METADATA, json.dumps({"name": "bob", "lud16": "bob@pay.test"})))
    note = make_event(BOB, Kind.TEXT_NOTE, "worth a zap")
    transport.seed(note)
    return note


@pytest.mark.anyio
async def test_manual_zap_settles_when_processor_publishes_receipt(test_config, transport: FakeTransport):
    note = _seed_recipient(transport)
    server = FakePayServer()
    engine = _engine(test_config, transport, server, channels=[ManualChannel()])
    try:
        before = await engine.zaps.get_zap_totals(note)
        assert before.count == 0

        session = await engine.zaps.zap(note, 21, comment="gm")
        assert session.state is ZapState.AWAITING_MANUAL_PAYMENT

        # The processor saw the payment and publishes the receipt.
        zap_request = server.zap_requests[0]
        receipt = make_event(
            PROCESSOR,
            Kind.ZAP_RECEIPT,
            "",
            [
                ["p", BOB],
                ["e", note.id],
                ["bolt11", session.invoice or ""],
                ["description", json.dumps(zap_request)],
            ],
        )
        transport.seed(receipt)

        final = await session.wait()
        assert final.state is ZapState.SETTLED
        assert final.receipt_id == receipt.id

        # settlement dropped the cached zero
        after = await engine.zaps.get_zap_totals(note)
        assert (after.count, after.total_sats) == (1, 21)
    finally:
        await engine.aclose()


@pytest.mark.anyio
async def test_manual_zap_fails_after_confirmation_window(test_config, transport: FakeTransport):
    note = _seed_recipient(transport)
    engine = _engine(test_config, transport, FakePayServer())
    try:
        session = await engine.zaps.zap(note, 21)
        assert session.state is ZapState.AWAITING_MANUAL_PAYMENT
        final = await session.wait()
        assert final.state is ZapState.FAILED
        assert final.reason is ZapFailureReason.NO_CONFIRMATION
        assert final.invoice is None
    finally:
        await engine.aclose()


@pytest.mark.anyio
async def test_wallet_fallback_chain(test_config, transport: FakeTransport):
    note = _seed_recipient(transport)
    env_wallet = FakeWallet()
    engine = _engine(
        test_config,
        transport,
        FakePayServer(),
        channels=[
            ExternalWalletChannel("nostr+walletconnect://broken", FakeWallet(fail=True)),
            InEnvironmentChannel(lambda: env_wallet),
            ManualChannel(),
        ],
    )
    try:
        session = await engine.zaps.zap(note, 50)
        assert session.state is ZapState.SETTLED
        assert len(env_wallet.paid) == 1
        assert engine.zaps.live_sessions == []
    finally:
        await engine.aclose()


@pytest.mark.anyio
async def test_cancel_stops_reconciliation(test_config, transport: FakeTransport):
    note = _seed_recipient(transport)
    engine = _engine(test_config, transport, FakePayServer())
    engine.zaps.set_channels([ExternalWalletChannel("", FakeWallet()), ManualChannel()])
    try:
        session = await engine.zaps.zap(note, 5)
        assert session.state is ZapState.AWAITING_MANUAL_PAYMENT
        assert not session.done
        assert session.cancel()
        final = await session.wait()
        assert session.done
        assert final.state is ZapState.CANCELLED
        assert final.reason is ZapFailureReason.CANCELLED
        assert not session.cancel()
    finally:
        await engine.aclose()
