"""relaygraph.relays.gateway

Endpoint Query Gateway: the only component that talks to relays.

Reads fan out to every relay at once, each under its own deadline. Whatever
answers in time is merged and deduplicated by id. A relay that times out, drops
the connection or sends garbage costs its share of the result, nothing more.
All relays failing is an empty result, not an error.

Writes go to each relay independently with a few retries. The caller gets the
per-relay picture and decides whether "at least one accepted" is good enough.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

import pydantic

from relaygraph.core.config import Config
from relaygraph.core.events import Event, Filter, parse_event
from relaygraph.core.exceptions import TransportError
from relaygraph.core.types import PublishReport, RelayOutcome
from relaygraph.relays.transport import RelayTransport, WebSocketTransport
from relaygraph.relays.urls import dedupe_relays


class RelayGateway:
    def __init__(
        self,
        config: Config,
        *,
        transport: RelayTransport | None = None,
        relays: Sequence[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.transport = transport or WebSocketTransport(logger=logger)
        self._relays = dedupe_relays(list(relays if relays is not None else config.relays.urls))
        self._log = logger or logging.getLogger(__name__)

    @property
    def relays(self) -> list[str]:
        return list(self._relays)

    def set_relays(self, relays: Sequence[str]) -> None:
        self._relays = dedupe_relays(list(relays))

    async def aclose(self) -> None:
        await self.transport.aclose()

    # -----------------
    # Read path
    # -----------------

    async def query(
        self,
        filters: Filter | Sequence[Filter],
        *,
        timeout_s: float | None = None,
        relays: Sequence[str] | None = None,
    ) -> list[Event]:
        """Merged, id-deduplicated events from every relay that answered in time.

        Newest first.
        """

        flist = [filters] if isinstance(filters, Filter) else list(filters)
        targets = dedupe_relays(list(relays)) if relays is not None else self.relays
        if not flist or not targets:
            return []
        deadline = float(timeout_s if timeout_s is not None else self.config.timeouts.aggregate_s)

        batches = await asyncio.gather(*(self._query_one(url, flist, deadline) for url in targets))

        merged: dict[str, Event] = {}
        for batch in batches:
            for ev in batch:
                merged.setdefault(ev.id, ev)
        return sorted(merged.values(), key=lambda e: (-e.created_at, e.id))

    async def _query_one(self, url: str, filters: list[Filter], deadline: float) -> list[Event]:
        try:
            raw = await asyncio.wait_for(self.transport.fetch(url, filters), timeout=deadline)
        except TimeoutError:
            self._log.warning("relay_query_timeout", extra={"relay": url, "deadline_s": deadline})
            return []
        except TransportError as e:
            self._log.warning("relay_query_failed", extra={"relay": url, "error": e.reason})
            return []
        except Exception as e:  # noqa: BLE001 - one relay must never sink the fan-out
            self._log.warning("relay_query_failed", extra={"relay": url, "error": f"{type(e).__name__}: {e}"})
            return []

        events: list[Event] = []
        dropped = 0
        for obj in raw:
            try:
                ev = parse_event(obj)
            except pydantic.ValidationError:
                dropped += 1
                continue
            if self.config.relays.verify_ids and not ev.verify_id():
                dropped += 1
                continue
            if not any(f.matches(ev) for f in filters):
                dropped += 1
                continue
            events.append(ev)
        if dropped:
            self._log.info("relay_events_dropped", extra={"relay": url, "dropped": dropped})
        return events

    async def get(self, event_id: str, *, timeout_s: float | None = None) -> Event | None:
        deadline = timeout_s if timeout_s is not None else self.config.timeouts.lookup_s
        events = await self.query(Filter(ids=[event_id], limit=1), timeout_s=deadline)
        return events[0] if events else None

    # -----------------
    # Write path
    # -----------------

    async def publish(self, event: Event, relays: Sequence[str] | None = None) -> PublishReport:
        targets = dedupe_relays(list(relays)) if relays is not None else self.relays
        outcomes = await asyncio.gather(*(self._publish_one(url, event) for url in targets))
        report = PublishReport(event_id=event.id, outcomes={o.url: o for o in outcomes})
        if not report.ok:
            self._log.warning("publish_rejected_everywhere", extra={"event_id": event.id, "kind": event.kind})
        elif report.partial:
            self._log.info(
                "publish_partial",
                extra={"event_id": event.id, "accepted": len(report.accepted), "rejected": report.rejected},
            )
        return report

    async def _publish_one(self, url: str, event: Event) -> RelayOutcome:
        cfg = self.config.publish
        message = ""
        for attempt in range(1, cfg.max_attempts + 1):
            try:
                accepted, message = await asyncio.wait_for(self.transport.send(url, event), timeout=cfg.ack_timeout_s)
            except TimeoutError:
                message = "timeout"
            except TransportError as e:
                message = e.reason
            except Exception as e:  # noqa: BLE001 - isolate relays from each other
                message = f"{type(e).__name__}: {e}"
            else:
                if accepted:
                    return RelayOutcome(url=url, accepted=True, attempts=attempt, message=message)
                # An explicit rejection ("blocked:", "invalid:") will not change on retry,
                # except for rate limiting.
                if not message.startswith("rate-limited"):
                    self._log.info("publish_rejected", extra={"relay": url, "event_id": event.id, "detail": message})
                    return RelayOutcome(url=url, accepted=False, attempts=attempt, message=message)

            self._log.info(
                "publish_attempt_failed",
                extra={"relay": url, "event_id": event.id, "attempt": attempt, "error": message},
            )
            if attempt < cfg.max_attempts:
                await asyncio.sleep(cfg.backoff_s)

        return RelayOutcome(url=url, accepted=False, attempts=cfg.max_attempts, message=message)
