from __future__ import annotations

import pytest

from relaygraph.context import EngineContext
from relaygraph.core.events import Kind
from relaygraph.core.types import FailureReason
from relaygraph.social.interactions import InteractionAggregator, tombstoned_ids
from tests.fakes import ALICE, BOB, CAROL, FakeTransport, make_event


def _note():
    return make_event(BOB, Kind.TEXT_NOTE, "a note", created_at=1000)


def test_deletion_only_counts_from_the_same_author():
    note = _note()
    r = make_event(CAROL, Kind.REACTION, "+", [["e", note.id]])
    foreign_delete = make_event(ALICE, Kind.DELETION, tags=[["e", r.id]])
    own_delete = make_event(CAROL, Kind.DELETION, tags=[["e", r.id]])
    assert tombstoned_ids([r], [foreign_delete]) == set()
    assert tombstoned_ids([r], [own_delete]) == {r.id}


@pytest.mark.anyio
async def test_reaction_state_counts_positive_live_reactions(ctx: EngineContext, transport: FakeTransport):
    note = _note()
    plus = make_event(CAROL, Kind.REACTION, "+", [["e", note.id]])
    empty = make_event(ALICE, Kind.REACTION, "", [["e", note.id]])
    minus = make_event(BOB, Kind.REACTION, "-", [["e", note.id]])
    deleted = make_event(BOB, Kind.REACTION, "+", [["e", note.id]], created_at=5)
    tomb = make_event(BOB, Kind.DELETION, tags=[["e", deleted.id]])
    transport.seed(note, plus, empty, minus, deleted, tomb)

    state = await InteractionAggregator(ctx).get_reaction_state(note.id, ALICE)
    assert state.count == 2
    assert state.viewer_has_reacted
    assert state.viewer_event is not None and state.viewer_event.id == empty.id


@pytest.mark.anyio
async def test_toggle_reaction_twice_returns_to_original_state(ctx: EngineContext, transport: FakeTransport):
    note = _note()
    transport.seed(note)
    agg = InteractionAggregator(ctx)

    before = await agg.get_reaction_state(note.id, ALICE)
    assert before.count == 0

    liked = await agg.toggle_reaction(note.id, BOB)
    assert liked.ok and liked.event is not None
    assert liked.event.kind == Kind.REACTION
    assert liked.event.content == "+"
    assert ["p", BOB] in liked.event.tags
    assert ["k", "1"] in liked.event.tags
    mid = await agg.get_reaction_state(note.id, ALICE)
    assert mid.count == 1 and mid.viewer_has_reacted

    unliked = await agg.toggle_reaction(note.id, BOB)
    assert unliked.ok and unliked.event is not None
    assert unliked.event.kind == Kind.DELETION
    assert unliked.event.content == "Unliked"
    assert ["e", liked.event.id] in unliked.event.tags
    assert ["k", "7"] in unliked.event.tags

    after = await agg.get_reaction_state(note.id, ALICE)
    assert after.count == before.count
    assert not after.viewer_has_reacted


@pytest.mark.anyio
async def test_toggle_reaction_requires_signer(anon_ctx: EngineContext, transport: FakeTransport):
    result = await InteractionAggregator(anon_ctx).toggle_reaction(_note().id, BOB)
    assert result.reason is FailureReason.NOT_AUTHENTICATED
    assert transport.fetches == []


@pytest.mark.anyio
async def test_repost_text_note_embeds_target(ctx: EngineContext, transport: FakeTransport):
    note = _note()
    transport.seed(note)
    agg = InteractionAggregator(ctx)

    result = await agg.toggle_repost(note)
    assert result.ok and result.event is not None
    assert result.event.kind == Kind.REPOST
    assert note.id in result.event.content
    assert (await agg.get_repost_state(note.id, ALICE)).count == 1

    undone = await agg.toggle_repost(note)
    assert undone.event is not None
    assert undone.event.kind == Kind.DELETION
    assert undone.event.content == "Unreposted"
    assert (await agg.get_repost_state(note.id, ALICE)).count == 0


@pytest.mark.anyio
async def test_repost_other_kinds_is_generic(ctx: EngineContext, transport: FakeTransport):
    article = make_event(BOB, Kind.LONG_FORM, "long read", [["d", "slug"]])
    transport.seed(article)
    result = await InteractionAggregator(ctx).toggle_repost(article)
    assert result.event is not None
    assert result.event.kind == Kind.GENERIC_REPOST
    assert ["k", "30023"] in result.event.tags
    assert result.event.content == ""
