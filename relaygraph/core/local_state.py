"""relaygraph.core.local_state

The one record the engine keeps on disk: which relay the user picked and how they
like things displayed.

Lifecycle: load -> validate -> fall back to defaults. Bad data on disk is never
propagated; it is logged and replaced. Changes go through ``update()`` so that
subscribers hear about them.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from relaygraph.relays.urls import normalize_relay_url

STATE_VERSION = 1
STATE_FILENAME = "local_state.json"

Theme = Literal["dark", "light", "system"]


class LocalState(BaseModel):
    version: Literal[1] = STATE_VERSION
    relay_url: str
    theme: Theme = "system"

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("relay_url")
    @classmethod
    def relay_url_must_be_websocket(cls, v: str) -> str:
        return normalize_relay_url(v)


Listener = Callable[[LocalState], None]


class LocalStateStore:
    """Process-wide holder for :class:`LocalState`."""

    def __init__(
        self,
        path: Path,
        *,
        defaults: LocalState,
        logger: logging.Logger | None = None,
    ) -> None:
        self.path = Path(path)
        self.defaults = defaults
        self._log = logger or logging.getLogger(__name__)
        self._listeners: list[Listener] = []
        self._state = self._load()

    @classmethod
    def in_data_dir(cls, data_dir: Path, *, default_relay: str, logger: logging.Logger | None = None) -> LocalStateStore:
        return cls(data_dir / STATE_FILENAME, defaults=LocalState(relay_url=default_relay), logger=logger)

    @property
    def state(self) -> LocalState:
        return self._state

    def _load(self) -> LocalState:
        if not self.path.exists():
            return self.defaults
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return LocalState.model_validate(raw)
        except (OSError, ValueError) as e:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors.
            self._log.warning("local_state_invalid", extra={"path": str(self.path), "error": str(e)})
            return self.defaults

    def _persist(self, state: LocalState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, updater: Callable[[LocalState], LocalState | dict] | dict) -> LocalState:
        """Apply ``updater``, validate, persist, notify.

        ``updater`` is either a dict of changed fields or a function of the
        current state returning a new state or such a dict. Invalid results raise
        ``pydantic.ValidationError`` and leave the state untouched.
        """

        result = updater if isinstance(updater, dict) else updater(self._state)
        if isinstance(result, dict):
            merged = {**self._state.model_dump(), **result}
        else:
            merged = result.model_dump()
        new_state = LocalState.model_validate(merged)

        if new_state == self._state:
            return self._state

        self._persist(new_state)
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception:  # noqa: BLE001 - a broken listener must not block the update
                self._log.exception("local_state_listener_failed")
        return new_state

    def reset(self) -> LocalState:
        return self.update(lambda _current: self.defaults)
