"""relaygraph.social.discovery

Read-only queries that surface content: single event lookup, global feed,
mention notifications, trending hashtags, search.

None of these are authoritative. They are samples of whatever the relays felt
like returning before the deadline.
"""

from __future__ import annotations

import json
import re
import time
from collections import Counter
from dataclasses import dataclass, field

from relaygraph.context import EngineContext
from relaygraph.core.events import Event, Filter, Kind
from relaygraph.social.profiles import plausible_timestamp

DAY_S = 24 * 60 * 60
HASHTAG_RE = re.compile(r"#\w+")
MIN_SEARCH_LEN = 2


@dataclass(frozen=True, slots=True)
class Trending:
    popular_posts: list[Event] = field(default_factory=list)
    top_hashtags: list[tuple[str, int]] = field(default_factory=list)
    top_mentions: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SearchResults:
    posts: list[Event] = field(default_factory=list)
    profiles: list[Event] = field(default_factory=list)


def _profile_matches(event: Event, term: str) -> bool:
    try:
        meta = json.loads(event.content)
    except ValueError:
        return False
    if not isinstance(meta, dict):
        return False
    for key in ("name", "display_name", "about", "nip05"):
        value = meta.get(key)
        if isinstance(value, str) and term in value.lower():
            return True
    return False


class Discovery:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    async def get_event(self, event_id: str) -> Event | None:
        return await self.ctx.gateway.get(event_id, timeout_s=self.ctx.config.timeouts.lookup_s)

    async def feed(self, *, limit: int = 50) -> list[Event]:
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.TEXT_NOTE, Kind.REPOST, Kind.GENERIC_REPOST], limit=limit),
            timeout_s=self.ctx.config.timeouts.aggregate_s,
        )
        return [e for e in events if plausible_timestamp(e)][:limit]

    async def mentions(self, identity: str, *, window_s: int = DAY_S, limit: int = 50) -> list[Event]:
        since = int(time.time()) - window_s
        return await self.ctx.gateway.query(
            Filter(kinds=[Kind.TEXT_NOTE], p=[identity], since=since, limit=limit),
            timeout_s=self.ctx.config.timeouts.notifications_s,
        )

    async def notification_count(self, identity: str) -> int:
        return len([e for e in await self.mentions(identity) if e.pubkey != identity])

    async def trending(self, *, window_s: int = DAY_S, sample: int = 100, top: int = 10) -> Trending:
        since = int(time.time()) - window_s
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.TEXT_NOTE], since=since, limit=sample),
            timeout_s=self.ctx.config.timeouts.aggregate_s,
        )
        valid = [e for e in events if plausible_timestamp(e) and len(e.content) > 10]

        hashtags: Counter[str] = Counter()
        mentions: Counter[str] = Counter()
        for e in valid:
            hashtags.update(tag.lower() for tag in HASHTAG_RE.findall(e.content))
            mentions.update(t[1] for t in e.tags if len(t) >= 2 and t[0] == "p" and t[1])

        return Trending(
            popular_posts=valid[:20],
            top_hashtags=hashtags.most_common(top),
            top_mentions=mentions.most_common(top),
        )

    async def search(self, query: str, *, post_limit: int = 20, profile_limit: int = 10) -> SearchResults:
        term = query.strip().lower()
        if len(term) < MIN_SEARCH_LEN:
            return SearchResults()

        timeout = self.ctx.config.timeouts.aggregate_s
        posts = await self.ctx.gateway.query(Filter(kinds=[Kind.TEXT_NOTE], search=term, limit=post_limit), timeout_s=timeout)
        # Relays without full-text search ignore the term and send recent profiles.
        profiles = await self.ctx.gateway.query(Filter(kinds=[Kind.METADATA], limit=profile_limit * 10), timeout_s=timeout)

        return SearchResults(
            posts=[p for p in posts if term in p.content.lower() and plausible_timestamp(p)][:post_limit],
            profiles=[p for p in profiles if _profile_matches(p, term)][:profile_limit],
        )
