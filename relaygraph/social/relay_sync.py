"""relaygraph.social.relay_sync

Relay List Publisher.

Switching relays should not strand the identity. The new relay list (kind
10002) goes out to the new relays, and the identity's existing profile and
follow list are carried along to old and new relays alike. The carried events
are re-broadcast as-is, still signed, never re-created, so nothing newer on some
relay can be overwritten by a stale copy.

Relays being down is routine. Partial success is logged and reported, never
raised.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from relaygraph.context import EngineContext, resolve_actor, sign_and_publish
from relaygraph.core.events import Event, EventDraft, Filter, Kind, latest
from relaygraph.core.types import FailureReason, MutationResult, PublishReport
from relaygraph.relays.urls import dedupe_relays, normalize_relay_url


@dataclass(frozen=True, slots=True)
class RelayPreference:
    url: str
    read: bool = True
    write: bool = True

    def to_tag(self) -> list[str]:
        url = normalize_relay_url(self.url)
        if self.read and not self.write:
            return ["r", url, "read"]
        if self.write and not self.read:
            return ["r", url, "write"]
        return ["r", url]


@dataclass(frozen=True, slots=True)
class SyncReport:
    identity: str
    relays: list[str]
    relay_list: MutationResult | None = None
    carried: dict[int, PublishReport] = field(default_factory=dict)
    reason: FailureReason | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.relay_list is not None and self.relay_list.ok

    @property
    def failed_relays(self) -> list[str]:
        failed: set[str] = set()
        reports = [r for r in self.carried.values()]
        if self.relay_list is not None and self.relay_list.report is not None:
            reports.append(self.relay_list.report)
        for r in reports:
            failed.update(r.rejected)
        return sorted(failed)


def relay_list_tags(prefs: Sequence[RelayPreference]) -> list[list[str]]:
    seen: set[str] = set()
    tags: list[list[str]] = []
    for p in prefs:
        tag = p.to_tag()
        if tag[1] in seen:
            continue
        seen.add(tag[1])
        tags.append(tag)
    return tags


class RelayListPublisher:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    async def _latest_facts(self, identity: str, relays: list[str]) -> dict[int, Event]:
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.METADATA, Kind.CONTACTS], authors=[identity]),
            timeout_s=self.ctx.config.timeouts.aggregate_s,
            relays=relays,
        )
        facts: dict[int, Event] = {}
        for kind in (Kind.METADATA, Kind.CONTACTS):
            newest = latest([e for e in events if e.kind == kind and e.pubkey == identity])
            if newest is not None:
                facts[int(kind)] = newest
        return facts

    async def sync_endpoints(
        self,
        identity: str,
        new_endpoints: Sequence[str | RelayPreference],
        *,
        old_endpoints: Sequence[str] | None = None,
    ) -> SyncReport:
        prefs = [p if isinstance(p, RelayPreference) else RelayPreference(url=p) for p in new_endpoints]
        try:
            new_urls = dedupe_relays([normalize_relay_url(p.url) for p in prefs])
        except ValueError as e:
            return SyncReport(identity=identity, relays=[], reason=FailureReason.INVALID_INPUT, message=str(e))
        if not new_urls:
            return SyncReport(identity=identity, relays=[], reason=FailureReason.INVALID_INPUT, message="no relays given")

        old_urls = dedupe_relays(list(old_endpoints if old_endpoints is not None else self.ctx.gateway.relays))
        union = dedupe_relays([*old_urls, *new_urls])

        actor = await resolve_actor(self.ctx, "sync_relays", identity)
        if isinstance(actor, MutationResult):
            return SyncReport(identity=identity, relays=union, relay_list=actor, reason=actor.reason, message=actor.message)

        draft = EventDraft(kind=Kind.RELAY_LIST, content="", tags=relay_list_tags(prefs))
        relay_list = await sign_and_publish(self.ctx, draft, action="sync_relays", pubkey=actor, relays=new_urls)

        carried: dict[int, PublishReport] = {}
        facts = await self._latest_facts(identity, union)
        for kind, event in facts.items():
            carried[kind] = await self.ctx.gateway.publish(event, union)

        report = SyncReport(
            identity=identity,
            relays=union,
            relay_list=relay_list,
            carried=carried,
            reason=relay_list.reason,
            message=relay_list.message,
        )
        if report.failed_relays:
            self.ctx.logger.warning(
                "relay_sync_partial",
                extra={"identity": identity, "failed": report.failed_relays, "relays": len(union)},
            )
        else:
            self.ctx.logger.info("relay_sync_complete", extra={"identity": identity, "relays": len(union)})
        return report
