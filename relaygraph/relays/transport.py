"""relaygraph.relays.transport

Wire protocol to a single relay (NIP-01 over websocket).

Client -> relay frames:
- ``["REQ", sub_id, filter, ...]``
- ``["CLOSE", sub_id]``
- ``["EVENT", event]``

Relay -> client frames:
- ``["EVENT", sub_id, event]``
- ``["EOSE", sub_id]``
- ``["OK", event_id, accepted, message]``
- ``["CLOSED", sub_id, message]``
- ``["NOTICE", message]``

Deadlines are not this module's concern; the gateway wraps every call.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Protocol, runtime_checkable

import aiohttp

from relaygraph.core.events import Event, Filter
from relaygraph.core.exceptions import TransportError


@runtime_checkable
class RelayTransport(Protocol):
    async def fetch(self, url: str, filters: list[Filter]) -> list[dict[str, Any]]:
        """Stored events matching ``filters``, as raw dicts, up to end-of-stored-events."""
        ...

    async def send(self, url: str, event: Event) -> tuple[bool, str]:
        """Submit ``event``; return the relay's ``(accepted, message)``."""
        ...

    async def aclose(self) -> None: ...


def _decode_frame(raw: str) -> list[Any] | None:
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
        return None
    return frame


class WebSocketTransport:
    """One short-lived websocket per call. Cheap to reason about, cheap to cancel."""

    def __init__(self, *, heartbeat_s: float = 20.0, logger: logging.Logger | None = None) -> None:
        self._heartbeat_s = heartbeat_s
        self._log = logger or logging.getLogger(__name__)
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch(self, url: str, filters: list[Filter]) -> list[dict[str, Any]]:
        sub_id = uuid.uuid4().hex[:16]
        events: list[dict[str, Any]] = []
        try:
            async with self._get_session().ws_connect(url, heartbeat=self._heartbeat_s) as ws:
                await ws.send_str(json.dumps(["REQ", sub_id, *[f.to_wire() for f in filters]]))
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        frame = _decode_frame(msg.data)
                        if frame is None:
                            self._log.debug("relay_frame_malformed", extra={"relay": url})
                            continue
                        kind = frame[0]
                        if kind == "EVENT" and len(frame) >= 3 and frame[1] == sub_id:
                            if isinstance(frame[2], dict):
                                events.append(frame[2])
                        elif kind == "EOSE" and len(frame) >= 2 and frame[1] == sub_id:
                            await ws.send_str(json.dumps(["CLOSE", sub_id]))
                            return events
                        elif kind == "CLOSED" and len(frame) >= 2 and frame[1] == sub_id:
                            reason = frame[2] if len(frame) > 2 else ""
                            raise TransportError(url, f"subscription closed: {reason}")
                        elif kind == "NOTICE":
                            self._log.info("relay_notice", extra={"relay": url, "notice": frame[1:]})
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
        except aiohttp.ClientError as e:
            raise TransportError(url, f"connection failed: {e}") from e
        raise TransportError(url, "connection closed before end of stored events")

    async def send(self, url: str, event: Event) -> tuple[bool, str]:
        try:
            async with self._get_session().ws_connect(url, heartbeat=self._heartbeat_s) as ws:
                await ws.send_str(json.dumps(["EVENT", event.to_wire()]))
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        frame = _decode_frame(msg.data)
                        if frame is None:
                            continue
                        if frame[0] == "OK" and len(frame) >= 3 and frame[1] == event.id:
                            message = frame[3] if len(frame) > 3 and isinstance(frame[3], str) else ""
                            return bool(frame[2]), message
                        if frame[0] == "NOTICE":
                            self._log.info("relay_notice", extra={"relay": url, "notice": frame[1:]})
                    elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                        break
        except aiohttp.ClientError as e:
            raise TransportError(url, f"connection failed: {e}") from e
        raise TransportError(url, "connection closed before OK")
