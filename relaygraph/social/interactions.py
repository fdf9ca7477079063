"""relaygraph.social.interactions

Interaction Aggregator: likes and reposts.

Counts are recomputed from whatever the relays return right now. A kind-5
deletion is honoured only when it comes from the author of the reaction it
targets, and only when we actually see it; relays that ignore deletions will keep
serving the original. Toggles never trust a previous answer: they re-query,
find the viewer's own live event, and tombstone it or create a new one.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from relaygraph.context import EngineContext, resolve_actor, sign_and_publish
from relaygraph.core.events import REPOST_KINDS, Event, EventDraft, Filter, Kind, tag_values
from relaygraph.core.types import MutationResult

POSITIVE_REACTIONS = frozenset({"+", ""})


@dataclass(frozen=True, slots=True)
class InteractionState:
    count: int
    viewer_has_reacted: bool
    viewer_events: tuple[Event, ...] = ()

    @property
    def viewer_event(self) -> Event | None:
        return self.viewer_events[0] if self.viewer_events else None


def is_positive_reaction(event: Event) -> bool:
    return event.content in POSITIVE_REACTIONS


def tombstoned_ids(events: Sequence[Event], deletions: Sequence[Event]) -> set[str]:
    """Ids in ``events`` that their own author asked to delete."""

    author_of = {e.id: e.pubkey for e in events}
    dead: set[str] = set()
    for d in deletions:
        if d.kind != Kind.DELETION:
            continue
        for ref in tag_values(d, "e"):
            if author_of.get(ref) == d.pubkey:
                dead.add(ref)
    return dead


def summarize(events: Sequence[Event], viewer: str | None, *, positive_only: bool) -> InteractionState:
    counted = [e for e in events if is_positive_reaction(e)] if positive_only else list(events)
    mine: tuple[Event, ...] = ()
    if viewer:
        mine = tuple(sorted((e for e in counted if e.pubkey == viewer), key=lambda e: (e.created_at, e.id)))
    return InteractionState(count=len(counted), viewer_has_reacted=bool(mine), viewer_events=mine)


class InteractionAggregator:
    def __init__(self, ctx: EngineContext, *, limit: int = 500) -> None:
        self.ctx = ctx
        self.limit = limit

    async def _live(self, kinds: list[int], target_id: str) -> list[Event]:
        gw = self.ctx.gateway
        timeout = self.ctx.config.timeouts.lookup_s
        events = await gw.query(Filter(kinds=kinds, e=[target_id], limit=self.limit), timeout_s=timeout)
        events = [e for e in events if e.kind in kinds and target_id in tag_values(e, "e")]
        if not events:
            return []
        deletions = await gw.query(
            Filter(kinds=[Kind.DELETION], e=[e.id for e in events]),
            timeout_s=timeout,
        )
        dead = tombstoned_ids(events, deletions)
        return [e for e in events if e.id not in dead]

    # -----------------
    # Reactions
    # -----------------

    async def get_reaction_state(self, target_id: str, viewer: str | None = None, *, fresh: bool = False) -> InteractionState:
        key = ("reactions", target_id, viewer)
        if not fresh:
            cached = self.ctx.cache.get(key)
            if cached is not None:
                return cached
        state = summarize(await self._live([Kind.REACTION], target_id), viewer, positive_only=True)
        self.ctx.cache.set(key, state, ttl_s=self.ctx.config.cache.ttl_s)
        return state

    async def toggle_reaction(self, target_id: str, target_author: str, *, target_kind: int = Kind.TEXT_NOTE) -> MutationResult:
        actor = await resolve_actor(self.ctx, "react")
        if isinstance(actor, MutationResult):
            return actor

        state = await self.get_reaction_state(target_id, actor, fresh=True)
        if state.viewer_has_reacted:
            draft = EventDraft(
                kind=Kind.DELETION,
                content="Unliked",
                tags=[*[["e", e.id] for e in state.viewer_events], ["k", str(int(Kind.REACTION))]],
            )
            result = await sign_and_publish(self.ctx, draft, action="unreact", pubkey=actor)
        else:
            draft = EventDraft(
                kind=Kind.REACTION,
                content="+",
                tags=[
                    ["e", target_id, "", target_author],
                    ["p", target_author],
                    ["k", str(int(target_kind))],
                ],
            )
            result = await sign_and_publish(self.ctx, draft, action="react", pubkey=actor)

        if result.ok:
            self.ctx.cache.invalidate_prefix("reactions", target_id)
        return result

    # -----------------
    # Reposts
    # -----------------

    async def get_repost_state(self, target_id: str, viewer: str | None = None, *, fresh: bool = False) -> InteractionState:
        key = ("reposts", target_id, viewer)
        if not fresh:
            cached = self.ctx.cache.get(key)
            if cached is not None:
                return cached
        state = summarize(await self._live(list(REPOST_KINDS), target_id), viewer, positive_only=False)
        self.ctx.cache.set(key, state, ttl_s=self.ctx.config.cache.ttl_s)
        return state

    async def toggle_repost(self, target: Event) -> MutationResult:
        actor = await resolve_actor(self.ctx, "repost")
        if isinstance(actor, MutationResult):
            return actor

        state = await self.get_repost_state(target.id, actor, fresh=True)
        if state.viewer_has_reacted:
            kinds = sorted({e.kind for e in state.viewer_events})
            draft = EventDraft(
                kind=Kind.DELETION,
                content="Unreposted",
                tags=[*[["e", e.id] for e in state.viewer_events], *[["k", str(k)] for k in kinds]],
            )
            result = await sign_and_publish(self.ctx, draft, action="unrepost", pubkey=actor)
        else:
            tags = [["e", target.id, "", target.pubkey], ["p", target.pubkey]]
            if target.kind == Kind.TEXT_NOTE:
                draft = EventDraft(kind=Kind.REPOST, content=target.model_dump_json(), tags=tags)
            else:
                tags.append(["k", str(target.kind)])
                draft = EventDraft(kind=Kind.GENERIC_REPOST, content="", tags=tags)
            result = await sign_and_publish(self.ctx, draft, action="repost", pubkey=actor)

        if result.ok:
            self.ctx.cache.invalidate_prefix("reposts", target.id)
        return result
