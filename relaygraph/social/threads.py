"""relaygraph.social.threads

Thread Reconstructor.

Replies point at their ancestors with ``e`` tags. The last ``e`` tag is the
direct parent; the one marked ``root`` (or else the first) is the thread root.
A reply-to-a-reply usually mentions the root too, so "has an ``e`` tag for X" is
not the same as "replies to X".

Threads are kept as an arena keyed by event id. Expansion is breadth-first with
a depth limit and a visited set, so circular or absurdly wide tag data costs a
bounded number of queries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from relaygraph.context import EngineContext
from relaygraph.core.events import Event, Filter, Kind, tags_named


def e_tags(event: Event) -> list[list[str]]:
    return tags_named(event, "e")


def parent_of(event: Event) -> str | None:
    """Direct parent id: the last ``e`` tag."""

    tags = e_tags(event)
    return tags[-1][1] if tags else None


def root_of(event: Event) -> str | None:
    """Thread root id: the ``root``-marked ``e`` tag, else the first one."""

    tags = e_tags(event)
    if not tags:
        return None
    for t in tags:
        if len(t) >= 4 and t[3] == "root":
            return t[1]
    return tags[0][1]


def is_direct_reply(event: Event, parent_id: str) -> bool:
    return event.id != parent_id and parent_of(event) == parent_id


@dataclass(slots=True)
class ThreadNode:
    event: Event
    parent_id: str | None
    root_id: str | None
    depth: int
    child_ids: list[str] = field(default_factory=list)
    # Direct replies that exist but were not expanded (depth limit).
    hidden_reply_count: int = 0

    @property
    def id(self) -> str:
        return self.event.id

    @property
    def reply_count(self) -> int:
        return len(self.child_ids) + self.hidden_reply_count


@dataclass(slots=True)
class ThreadView:
    root_id: str
    nodes: dict[str, ThreadNode] = field(default_factory=dict)
    max_depth: int = 3

    @property
    def root(self) -> ThreadNode | None:
        return self.nodes.get(self.root_id)

    def children(self, event_id: str) -> list[ThreadNode]:
        node = self.nodes.get(event_id)
        if node is None:
            return []
        return [self.nodes[c] for c in node.child_ids if c in self.nodes]

    def walk(self) -> list[ThreadNode]:
        """Depth-first, oldest reply first."""

        out: list[ThreadNode] = []
        stack = [self.root_id] if self.root_id in self.nodes else []
        seen: set[str] = set()
        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            seen.add(nid)
            node = self.nodes[nid]
            out.append(node)
            stack.extend(reversed([c for c in node.child_ids if c in self.nodes]))
        return out


class ThreadReconstructor:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    async def get_replies(self, event_id: str) -> list[Event]:
        """Direct replies to ``event_id``, oldest first."""

        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.TEXT_NOTE], e=[event_id], limit=self.ctx.config.threads.reply_limit),
            timeout_s=self.ctx.config.timeouts.lookup_s,
        )
        direct = [e for e in events if is_direct_reply(e, event_id)]
        return sorted(direct, key=lambda e: (e.created_at, e.id))

    async def reply_count(self, event_id: str) -> int:
        return len(await self.get_replies(event_id))

    async def get_parent(self, event: Event) -> Event | None:
        pid = parent_of(event)
        if pid is None:
            return None
        return await self.ctx.gateway.get(pid, timeout_s=self.ctx.config.timeouts.lookup_s)

    async def get_root(self, event: Event) -> Event | None:
        rid = root_of(event)
        if rid is None:
            return None
        return await self.ctx.gateway.get(rid, timeout_s=self.ctx.config.timeouts.lookup_s)

    async def build_thread(self, root_id: str, *, max_depth: int | None = None, root: Event | None = None) -> ThreadView:
        """Expand replies under ``root_id`` down to ``max_depth`` levels.

        Nodes at the limit are not expanded further; their replies are counted in
        ``hidden_reply_count`` instead.
        """

        depth_limit = self.ctx.config.threads.max_depth if max_depth is None else int(max_depth)
        view = ThreadView(root_id=root_id, max_depth=depth_limit)

        if root is None:
            root = await self.ctx.gateway.get(root_id, timeout_s=self.ctx.config.timeouts.lookup_s)
        if root is None:
            self.ctx.logger.info("thread_root_missing", extra={"event_id": root_id})
            return view

        view.nodes[root.id] = ThreadNode(event=root, parent_id=parent_of(root), root_id=root_of(root), depth=0)
        frontier = [root.id]
        depth = 0
        while frontier:
            next_frontier: list[str] = []
            batches = await asyncio.gather(*(self.get_replies(nid) for nid in frontier))
            for nid, replies in zip(frontier, batches):
                node = view.nodes[nid]
                if depth >= depth_limit:
                    node.hidden_reply_count = len(replies)
                    continue
                for r in replies:
                    if r.id in view.nodes:
                        continue
                    view.nodes[r.id] = ThreadNode(
                        event=r,
                        parent_id=nid,
                        root_id=root_of(r) or root.id,
                        depth=depth + 1,
                    )
                    node.child_ids.append(r.id)
                    next_frontier.append(r.id)
            frontier = next_frontier
            depth += 1
        return view
