"""relaygraph.social.follows

Social Graph Repository.

A follow list is one kind-3 event per identity; the newest one is the list.
Following someone means publishing a whole new list with them added. Two
mutations racing from the same stale read will lose one of them. That is the
protocol, not a bug here.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum

from relaygraph.context import EngineContext, resolve_actor, sign_and_publish
from relaygraph.core.events import (
    Event,
    EventDraft,
    Filter,
    Kind,
    latest,
    latest_by_author,
    supersede_time,
    tags_named,
)
from relaygraph.core.types import MutationResult, MutationStatus

# Friends-of-friends: how many followed lists to sample, and how many lists to ask for.
SUGGESTION_SAMPLE = 10
SUGGESTION_QUERY_LIMIT = 50


class FollowAction(StrEnum):
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


@dataclass(frozen=True, slots=True)
class Contact:
    pubkey: str
    relay: str = ""
    petname: str = ""


@dataclass(frozen=True, slots=True)
class FollowState:
    identity: str
    contacts: list[Contact] = field(default_factory=list)
    event: Event | None = None

    @property
    def following(self) -> set[str]:
        return {c.pubkey for c in self.contacts}

    @property
    def count(self) -> int:
        return len(self.following)

    def __contains__(self, pubkey: object) -> bool:
        return pubkey in self.following


def contacts_of(event: Event | None) -> list[Contact]:
    if event is None:
        return []
    out: list[Contact] = []
    for t in tags_named(event, "p"):
        out.append(Contact(pubkey=t[1], relay=t[2] if len(t) > 2 else "", petname=t[3] if len(t) > 3 else ""))
    return out


def apply_follow_action(tags: list[list[str]], target: str, action: FollowAction) -> list[list[str]]:
    """New full tag list for a kind-3 after ``action``. Pure."""

    if action == FollowAction.FOLLOW:
        if any(len(t) >= 2 and t[0] == "p" and t[1] == target for t in tags):
            return [list(t) for t in tags]
        return [*[list(t) for t in tags], ["p", target]]
    return [list(t) for t in tags if not (len(t) >= 2 and t[0] == "p" and t[1] == target)]


class FollowRepository:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    async def latest_follow_list(self, identity: str) -> Event | None:
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.CONTACTS], authors=[identity], limit=1),
            timeout_s=self.ctx.config.timeouts.lookup_s,
        )
        # Several relays may each hand back "their" latest.
        return latest([e for e in events if e.pubkey == identity])

    async def get_follow_state(self, identity: str, *, fresh: bool = False) -> FollowState:
        key = ("follows", identity)
        if not fresh:
            cached = self.ctx.cache.get(key)
            if cached is not None:
                return cached
        event = await self.latest_follow_list(identity)
        state = FollowState(identity=identity, contacts=contacts_of(event), event=event)
        self.ctx.cache.set(key, state, ttl_s=self.ctx.config.cache.ttl_s)
        return state

    async def following_count(self, identity: str) -> int:
        return (await self.get_follow_state(identity)).count

    async def is_following(self, viewer: str, target: str) -> bool:
        return target in await self.get_follow_state(viewer)

    async def get_followers(self, identity: str, *, limit: int = 500) -> list[str]:
        """Identities whose current follow list includes ``identity``.

        Only each author's newest list counts: someone who unfollowed is not a
        follower just because an older list is still around.
        """

        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.CONTACTS], p=[identity], limit=limit),
            timeout_s=self.ctx.config.timeouts.lookup_s,
        )
        current = latest_by_author(events)
        followers = [pk for pk, ev in current.items() if any(c.pubkey == identity for c in contacts_of(ev))]
        return sorted(followers)

    async def mutate_follow(self, identity: str, target: str, action: FollowAction | str) -> MutationResult:
        action = FollowAction(action)
        actor = await resolve_actor(self.ctx, str(action), identity)
        if isinstance(actor, MutationResult):
            return actor

        # Always re-read: never build on a cached list.
        current = await self.latest_follow_list(identity)
        old_tags = [list(t) for t in current.tags] if current is not None else []
        new_tags = apply_follow_action(old_tags, target, action)
        if new_tags == old_tags:
            return MutationResult(status=MutationStatus.NOOP, action=str(action), event=current)

        draft = EventDraft(
            kind=Kind.CONTACTS,
            content=current.content if current is not None else "",
            tags=new_tags,
            created_at=supersede_time(current),
        )
        result = await sign_and_publish(self.ctx, draft, action=str(action), pubkey=actor)
        if result.ok:
            self.ctx.cache.invalidate(("follows", identity))
            self.ctx.logger.info("follow_mutated", extra={"action": str(action), "target": target})
        return result

    async def follow(self, identity: str, target: str) -> MutationResult:
        return await self.mutate_follow(identity, target, FollowAction.FOLLOW)

    async def unfollow(self, identity: str, target: str) -> MutationResult:
        return await self.mutate_follow(identity, target, FollowAction.UNFOLLOW)

    async def suggest_follows(self, identity: str, *, limit: int = 5) -> list[tuple[str, int]]:
        """Friends of friends, best first, as ``(pubkey, score)``.

        The score is how many of the sampled followed identities' current lists
        include the candidate. ``identity`` and anyone it already follows are
        never suggested.
        """

        state = await self.get_follow_state(identity)
        sampled = list(dict.fromkeys(c.pubkey for c in state.contacts))[:SUGGESTION_SAMPLE]
        if not sampled:
            return []

        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.CONTACTS], authors=sampled, limit=SUGGESTION_QUERY_LIMIT),
            timeout_s=self.ctx.config.timeouts.profile_s,
        )
        current = latest_by_author([e for e in events if e.pubkey in sampled])

        excluded = state.following | {identity}
        scores: Counter[str] = Counter()
        for ev in current.values():
            scores.update({c.pubkey for c in contacts_of(ev)} - excluded)
        ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:limit]
