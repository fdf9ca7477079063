"""relaygraph.core.events

The event is the primitive. Nothing else is state.

An event never changes after it is signed. "Updating" a profile or a follow list
means signing a newer event of the same kind; "deleting" means signing a kind-5
request that relays are free to ignore.
"""

from __future__ import annotations

import hashlib
import json
import time
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

HEX64 = r"^[0-9a-f]{64}$"

ADDRESSABLE_MIN = 30000
ADDRESSABLE_MAX = 40000


class Kind(IntEnum):
    """Protocol-fixed event kinds used by the engine."""

    METADATA = 0
    TEXT_NOTE = 1
    CONTACTS = 3
    DELETION = 5
    REPOST = 6
    REACTION = 7
    GENERIC_REPOST = 16
    ZAP_REQUEST = 9734
    ZAP_RECEIPT = 9735
    RELAY_LIST = 10002
    LONG_FORM = 30023


REPOST_KINDS: tuple[int, ...] = (Kind.REPOST, Kind.GENERIC_REPOST)


def unix_now() -> int:
    return int(time.time())


def canonical_json(data: Any) -> str:
    """Compact JSON with non-ASCII preserved, as used for event ids."""

    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def compute_event_id(
    *,
    pubkey: str,
    created_at: int,
    kind: int,
    tags: list[list[str]],
    content: str,
) -> str:
    """SHA-256 of ``[0, pubkey, created_at, kind, tags, content]``."""

    payload = canonical_json([0, pubkey, int(created_at), int(kind), tags, content])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class EventDraft(BaseModel):
    """Unsigned template. A signer turns it into an :class:`Event`."""

    kind: int
    content: str = ""
    tags: list[list[str]] = Field(default_factory=list)
    created_at: int = Field(default_factory=unix_now)

    model_config = ConfigDict(frozen=True)

    def event_id(self, pubkey: str) -> str:
        return compute_event_id(
            pubkey=pubkey,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
        )


class Event(BaseModel):
    """Signed, immutable event as exchanged with relays."""

    id: str = Field(pattern=HEX64)
    pubkey: str = Field(pattern=HEX64)
    created_at: int = Field(ge=0)
    kind: int = Field(ge=0, le=65535)
    tags: list[list[str]] = Field(default_factory=list)
    content: str = ""
    sig: str

    model_config = ConfigDict(frozen=True)

    def verify_id(self) -> bool:
        return self.id == compute_event_id(
            pubkey=self.pubkey,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @property
    def is_addressable(self) -> bool:
        return is_addressable(self.kind)


_event_adapter = TypeAdapter(Event)


def parse_event(obj: Any) -> Event:
    """Validate a raw relay payload. Raises ``pydantic.ValidationError``."""

    return _event_adapter.validate_python(obj)


def is_addressable(kind: int) -> bool:
    return ADDRESSABLE_MIN <= int(kind) < ADDRESSABLE_MAX


def tags_named(event: Event, name: str) -> list[list[str]]:
    return [t for t in event.tags if len(t) >= 2 and t[0] == name]


def tag_values(event: Event, name: str) -> list[str]:
    return [t[1] for t in tags_named(event, name)]


def first_tag_value(event: Event, name: str) -> str | None:
    for t in event.tags:
        if len(t) >= 2 and t[0] == name:
            return t[1]
    return None


def coordinate(event: Event) -> str:
    """``kind:pubkey:d`` address of an addressable event."""

    d = first_tag_value(event, "d") or ""
    return f"{event.kind}:{event.pubkey}:{d}"


def latest(events: list[Event]) -> Event | None:
    """Newest event; ties go to the lowest id so every caller agrees."""

    best: Event | None = None
    for ev in events:
        if best is None:
            best = ev
            continue
        if ev.created_at > best.created_at or (ev.created_at == best.created_at and ev.id < best.id):
            best = ev
    return best


def latest_by_author(events: list[Event]) -> dict[str, Event]:
    grouped: dict[str, list[Event]] = {}
    for ev in events:
        grouped.setdefault(ev.pubkey, []).append(ev)
    out: dict[str, Event] = {}
    for pubkey, evs in grouped.items():
        newest = latest(evs)
        if newest is not None:
            out[pubkey] = newest
    return out


class Filter(BaseModel):
    """Declarative relay query predicate. Passed verbatim to every relay."""

    ids: list[str] | None = None
    kinds: list[int] | None = None
    authors: list[str] | None = None
    e: list[str] | None = Field(default=None, alias="#e")
    p: list[str] | None = Field(default=None, alias="#p")
    a: list[str] | None = Field(default=None, alias="#a")
    d: list[str] | None = Field(default=None, alias="#d")
    since: int | None = None
    until: int | None = None
    limit: int | None = Field(default=None, ge=0)
    search: str | None = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def matches(self, event: Event) -> bool:
        if self.ids is not None and event.id not in self.ids:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.authors is not None and event.pubkey not in self.authors:
            return False
        for name in ("e", "p", "a", "d"):
            wanted = getattr(self, name)
            if wanted is not None and not set(tag_values(event, name)) & set(wanted):
                return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        if self.search is not None and self.search.lower() not in event.content.lower():
            return False
        return True


def supersede_time(previous: Event | None) -> int:
    """``created_at`` for a replacement of ``previous``.

    Strictly newer than what it replaces, so a quick follow-then-unfollow inside
    one second does not come down to an id tie-break.
    """

    now = unix_now()
    if previous is None:
        return now
    return max(now, previous.created_at + 1)
