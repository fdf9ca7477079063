from __future__ import annotations

import json

import pytest

from relaygraph.core.config import Config
from relaygraph.core.events import Kind
from relaygraph.core.types import FailureReason
from relaygraph.engine import SocialEngine
from tests.fakes import ALICE, BOB, CAROL, RELAY_A, FakeSigner, FakeTransport, make_event

NEW_RELAY = "wss://relay-new.test"


def _engine(test_config: Config, transport: FakeTransport, **kwargs) -> SocialEngine:
    return SocialEngine(test_config, transport=transport, **kwargs)


@pytest.mark.anyio
async def test_logged_out_reads_work_and_writes_fail_fast(test_config, transport: FakeTransport):
    note = make_event(BOB, Kind.TEXT_NOTE, "public note")
    transport.seed(note, make_event(CAROL, Kind.REACTION, "+", [["e", note.id]]))
    engine = _engine(test_config, transport)
    try:
        state = await engine.interactions.get_reaction_state(note.id)
        assert state.count == 1
        sends_before = len(transport.sends)
        result = await engine.interactions.toggle_reaction(note.id, BOB)
        assert result.reason is FailureReason.NOT_AUTHENTICATED
        assert len(transport.sends) == sends_before
    finally:
        await engine.aclose()


@pytest.mark.anyio
async def test_follow_react_and_thread(test_config, transport: FakeTransport):
    root = make_event(BOB, Kind.TEXT_NOTE, "root post", created_at=100)
    reply = make_event(CAROL, Kind.TEXT_NOTE, "a reply", [["e", root.id, "", "root"]], created_at=110)
    transport.seed(root, reply)

    engine = _engine(test_config, transport)
    engine.login(FakeSigner(ALICE))
    try:
        assert (await engine.follows.follow(ALICE, BOB)).ok
        assert await engine.follows.is_following(ALICE, BOB)
        assert await engine.follows.get_followers(BOB) == [ALICE]

        assert (await engine.interactions.toggle_reaction(root.id, BOB)).ok
        assert (await engine.interactions.get_reaction_state(root.id, ALICE)).viewer_has_reacted

        view = await engine.threads.build_thread(root.id)
        assert [n.event.content for n in view.walk()] == ["root post", "a reply"]
    finally:
        await engine.aclose()
    assert transport.closed


@pytest.mark.anyio
async def test_switch_relay_syncs_identity_and_persists(test_config, transport: FakeTransport):
    profile = make_event(ALICE, Kind.METADATA, json.dumps({"name": "alice"}))
    transport.seed(profile, relays=[RELAY_A])

    engine = _engine(test_config, transport, signer=FakeSigner(ALICE))
    try:
        report = await engine.switch_relay("relay-new.test")
        assert report is not None and report.ok
        assert engine.local_state.state.relay_url == NEW_RELAY
        assert engine.gateway.relays[0] == NEW_RELAY
        assert profile.id in {e.id for e in transport.stored(NEW_RELAY)}
        assert [e.kind for e in transport.stored(NEW_RELAY)].count(Kind.RELAY_LIST) == 1
    finally:
        await engine.aclose()

    # a fresh engine picks the persisted choice back up
    again = _engine(test_config, transport)
    try:
        assert again.gateway.relays[0] == NEW_RELAY
    finally:
        await again.aclose()


@pytest.mark.anyio
async def test_switch_relay_without_login_skips_sync(test_config, transport: FakeTransport):
    engine = _engine(test_config, transport)
    try:
        assert await engine.switch_relay(NEW_RELAY) is None
        assert transport.sends == []
        with pytest.raises(ValueError):
            await engine.switch_relay("https://not-a-relay.test")
    finally:
        await engine.aclose()


@pytest.mark.anyio
async def test_login_logout_and_theme(test_config, transport: FakeTransport):
    engine = _engine(test_config, transport)
    try:
        assert not engine.ctx.authenticated
        engine.login(FakeSigner(ALICE))
        assert engine.ctx.authenticated and engine.signer is not None
        engine.logout()
        assert engine.signer is None
        result = await engine.follows.follow(ALICE, BOB)
        assert result.reason is FailureReason.NOT_AUTHENTICATED

        state = engine.set_theme("dark")
        assert state.theme == "dark"
        assert engine.local_state.state.relay_url == RELAY_A
    finally:
        await engine.aclose()
