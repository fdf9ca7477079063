from __future__ import annotations

import pytest

from relaygraph.context import EngineContext
from relaygraph.core.events import Kind
from relaygraph.core.types import FailureReason, MutationStatus
from relaygraph.social.follows import FollowAction, FollowRepository, apply_follow_action
from tests.fakes import ALICE, BOB, CAROL, DAVE, FakeSigner, FakeTransport, make_event


def test_apply_follow_action_is_pure_and_idempotent():
    tags = [["p", BOB], ["t", "nostr"]]
    followed = apply_follow_action(tags, CAROL, FollowAction.FOLLOW)
    assert followed == [["p", BOB], ["t", "nostr"], ["p", CAROL]]
    assert apply_follow_action(followed, CAROL, FollowAction.FOLLOW) == followed
    assert tags == [["p", BOB], ["t", "nostr"]]
    dup = [["p", BOB, "wss://r.test"], ["p", BOB]]
    assert apply_follow_action(dup, BOB, FollowAction.UNFOLLOW) == []


@pytest.mark.anyio
async def test_state_uses_latest_list(ctx: EngineContext, transport: FakeTransport):
    transport.seed(make_event(ALICE, Kind.CONTACTS, tags=[["p", BOB]], created_at=100))
    transport.seed(make_event(ALICE, Kind.CONTACTS, tags=[["p", BOB], ["p", CAROL, "wss://r.test", "carol"]], created_at=200))

    repo = FollowRepository(ctx)
    state = await repo.get_follow_state(ALICE)
    assert state.following == {BOB, CAROL}
    assert state.contacts[1].petname == "carol"
    assert await repo.following_count(ALICE) == 2
    assert await repo.is_following(ALICE, CAROL)
    assert not await repo.is_following(ALICE, DAVE)


@pytest.mark.anyio
async def test_empty_state_when_no_list(ctx: EngineContext):
    state = await FollowRepository(ctx).get_follow_state(BOB)
    assert state.count == 0
    assert state.event is None


@pytest.mark.anyio
async def test_follow_then_unfollow_roundtrip(ctx: EngineContext, transport: FakeTransport):
    transport.seed(make_event(ALICE, Kind.CONTACTS, "relay prefs", tags=[["p", BOB], ["t", "keep"]], created_at=100))
    repo = FollowRepository(ctx)

    followed = await repo.follow(ALICE, CAROL)
    assert followed.status is MutationStatus.PUBLISHED
    assert followed.event is not None
    assert followed.event.tags == [["p", BOB], ["t", "keep"], ["p", CAROL]]
    assert followed.event.content == "relay prefs"
    assert await repo.is_following(ALICE, CAROL)

    unfollowed = await repo.unfollow(ALICE, CAROL)
    assert unfollowed.ok
    assert unfollowed.event is not None
    assert unfollowed.event.created_at > followed.event.created_at
    state = await repo.get_follow_state(ALICE)
    assert state.following == {BOB}


@pytest.mark.anyio
async def test_noop_when_nothing_changes(ctx: EngineContext, transport: FakeTransport):
    repo = FollowRepository(ctx)
    result = await repo.unfollow(ALICE, BOB)
    assert result.status is MutationStatus.NOOP
    assert transport.sends == []


@pytest.mark.anyio
async def test_unauthenticated_fails_without_network(anon_ctx: EngineContext, transport: FakeTransport):
    result = await FollowRepository(anon_ctx).follow(ALICE, BOB)
    assert result.status is MutationStatus.FAILED
    assert result.reason is FailureReason.NOT_AUTHENTICATED
    assert transport.fetches == []
    assert transport.sends == []


@pytest.mark.anyio
async def test_identity_mismatch_fails_without_network(ctx: EngineContext, transport: FakeTransport):
    result = await FollowRepository(ctx).follow(BOB, CAROL)
    assert result.reason is FailureReason.IDENTITY_MISMATCH
    assert transport.fetches == []


@pytest.mark.anyio
async def test_signer_decline_is_a_failed_result(ctx: EngineContext, transport: FakeTransport):
    ctx.signer = FakeSigner(ALICE, decline=True)
    result = await FollowRepository(ctx).follow(ALICE, BOB)
    assert result.reason is FailureReason.SIGNER_DECLINED
    assert transport.sends == []


@pytest.mark.anyio
async def test_followers_only_count_current_lists(ctx: EngineContext, transport: FakeTransport):
    transport.seed(
        make_event(BOB, Kind.CONTACTS, tags=[["p", ALICE]], created_at=100),
        make_event(BOB, Kind.CONTACTS, tags=[], created_at=200),
        make_event(CAROL, Kind.CONTACTS, tags=[["p", ALICE]], created_at=150),
        make_event(DAVE, Kind.CONTACTS, tags=[["p", ALICE], ["p", BOB]], created_at=120),
    )
    assert await FollowRepository(ctx).get_followers(ALICE) == sorted([CAROL, DAVE])


@pytest.mark.anyio
async def test_suggest_follows_ranks_friends_of_friends(ctx: EngineContext, transport: FakeTransport):
    erin, frank = "1" * 64, "2" * 64
    transport.seed(
        make_event(ALICE, Kind.CONTACTS, tags=[["p", BOB], ["p", CAROL]], created_at=100),
        make_event(BOB, Kind.CONTACTS, tags=[["p", ALICE], ["p", CAROL], ["p", DAVE], ["p", erin]], created_at=100),
        make_event(CAROL, Kind.CONTACTS, tags=[["p", DAVE], ["p", frank]], created_at=100),
        # carol's older list is superseded
        make_event(CAROL, Kind.CONTACTS, tags=[["p", erin]], created_at=50),
        # alice does not follow dave, so dave's list is not sampled
        make_event(DAVE, Kind.CONTACTS, tags=[["p", frank]], created_at=100),
    )
    suggestions = await FollowRepository(ctx).suggest_follows(ALICE)
    assert suggestions == sorted([(DAVE, 2), (erin, 1), (frank, 1)], key=lambda kv: (-kv[1], kv[0]))
    assert await FollowRepository(ctx).suggest_follows(ALICE, limit=1) == [(DAVE, 2)]


@pytest.mark.anyio
async def test_suggest_follows_without_follow_list_is_empty(ctx: EngineContext, transport: FakeTransport):
    assert await FollowRepository(ctx).suggest_follows(ALICE) == []
    # only the follow list lookup went out
    assert {tuple(f.authors or ()) for _url, fs in transport.fetches for f in fs} == {(ALICE,)}
