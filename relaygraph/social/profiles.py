"""relaygraph.social.profiles

Profile lookup: the newest kind-0 event and its JSON content.

Profile content is free-form JSON written by anyone. Unknown keys are ignored,
wrong types are dropped field by field, and garbage yields an empty profile
rather than an error.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, ValidationError

from relaygraph.context import EngineContext
from relaygraph.core.events import Event, Filter, Kind, latest

# Posts dated more than a day in the future are clock skew or spam.
FUTURE_SKEW_S = 86400


class ProfileMetadata(BaseModel):
    name: str | None = None
    display_name: str | None = None
    about: str | None = None
    picture: str | None = None
    banner: str | None = None
    website: str | None = None
    nip05: str | None = None
    lud06: str | None = None
    lud16: str | None = None

    model_config = ConfigDict(extra="ignore", frozen=True)

    @property
    def payment_identifier(self) -> str | None:
        return self.lud16 or self.lud06 or None


def parse_metadata(content: str) -> ProfileMetadata:
    """Best-effort parse. Raises ``ValueError`` when content is not a JSON object."""

    raw = json.loads(content)
    if not isinstance(raw, dict):
        raise ValueError("profile content is not a JSON object")
    try:
        return ProfileMetadata.model_validate(raw)
    except ValidationError:
        fields = ProfileMetadata.model_fields
        cleaned = {k: v for k, v in raw.items() if k in fields and isinstance(v, str)}
        return ProfileMetadata.model_validate(cleaned)


@dataclass(frozen=True, slots=True)
class Profile:
    pubkey: str
    metadata: ProfileMetadata
    event: Event


def plausible_timestamp(event: Event, *, now: float | None = None) -> bool:
    ref = time.time() if now is None else now
    return 0 < event.created_at < ref + FUTURE_SKEW_S


class ProfileRepository:
    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx

    def to_profile(self, event: Event) -> Profile:
        try:
            metadata = parse_metadata(event.content)
        except ValueError:
            self.ctx.logger.info("profile_metadata_invalid", extra={"pubkey": event.pubkey, "event_id": event.id})
            metadata = ProfileMetadata()
        return Profile(pubkey=event.pubkey, metadata=metadata, event=event)

    async def latest_metadata_event(self, identity: str) -> Event | None:
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.METADATA], authors=[identity], limit=1),
            timeout_s=self.ctx.config.timeouts.profile_s,
        )
        return latest([e for e in events if e.pubkey == identity])

    async def get_profile(self, identity: str, *, fresh: bool = False) -> Profile | None:
        key = ("profile", identity)
        if not fresh:
            cached = self.ctx.cache.get(key)
            if cached is not None:
                return cached
        event = await self.latest_metadata_event(identity)
        if event is None:
            return None
        profile = self.to_profile(event)
        self.ctx.cache.set(key, profile, ttl_s=self.ctx.config.cache.ttl_s)
        return profile

    async def get_profiles(self, identities: list[str]) -> dict[str, Profile]:
        if not identities:
            return {}
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.METADATA], authors=list(identities)),
            timeout_s=self.ctx.config.timeouts.profile_s,
        )
        out: dict[str, Profile] = {}
        for pk in identities:
            ev = latest([e for e in events if e.pubkey == pk])
            if ev is not None:
                out[pk] = self.to_profile(ev)
        return out

    async def get_recent_posts(self, identity: str, *, limit: int = 20) -> list[Event]:
        events = await self.ctx.gateway.query(
            Filter(kinds=[Kind.TEXT_NOTE, Kind.REPOST, Kind.GENERIC_REPOST], authors=[identity], limit=limit),
            timeout_s=self.ctx.config.timeouts.profile_s,
        )
        return [e for e in events if plausible_timestamp(e)][:limit]
