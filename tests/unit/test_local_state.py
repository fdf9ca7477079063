from __future__ import annotations

import json
from pathlib import Path

import pydantic
import pytest

from relaygraph.core.local_state import LocalState, LocalStateStore


def _store(tmp_path: Path) -> LocalStateStore:
    return LocalStateStore.in_data_dir(tmp_path, default_relay="wss://relay-a.test")


def test_defaults_when_file_missing(tmp_path: Path):
    store = _store(tmp_path)
    assert store.state == LocalState(relay_url="wss://relay-a.test")
    assert store.state.theme == "system"
    assert store.state.version == 1


def test_update_persists_and_notifies(tmp_path: Path):
    store = _store(tmp_path)
    seen: list[LocalState] = []
    store.subscribe(seen.append)

    store.update({"relay_url": "relay-b.test", "theme": "dark"})

    on_disk = json.loads((tmp_path / "local_state.json").read_text())
    assert on_disk == {"version": 1, "relay_url": "wss://relay-b.test", "theme": "dark"}
    assert [s.relay_url for s in seen] == ["wss://relay-b.test"]
    assert _store(tmp_path).state.theme == "dark"


def test_update_accepts_fields_or_a_function(tmp_path: Path):
    store = _store(tmp_path)
    assert store.update({"theme": "dark"}).theme == "dark"
    flipped = store.update(lambda s: {"theme": "light" if s.theme == "dark" else "dark"})
    assert flipped.theme == "light"
    replaced = store.update(lambda s: s.model_copy(update={"relay_url": "wss://relay-c.test"}))
    assert replaced.relay_url == "wss://relay-c.test"
    assert _store(tmp_path).state == replaced


def test_unchanged_update_does_not_notify(tmp_path: Path):
    store = _store(tmp_path)
    seen: list[LocalState] = []
    store.subscribe(seen.append)
    store.update(lambda s: s)
    assert seen == []
    assert not (tmp_path / "local_state.json").exists()


def test_invalid_update_leaves_state_untouched(tmp_path: Path):
    store = _store(tmp_path)
    with pytest.raises(pydantic.ValidationError):
        store.update({"theme": "neon"})
    with pytest.raises(pydantic.ValidationError):
        store.update({"relay_url": "https://not-a-relay"})
    assert store.state.theme == "system"


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"version": 2, "relay_url": "wss://x.test", "theme": "dark"}),
        json.dumps({"version": 1, "relay_url": "wss://x.test", "theme": "dark", "extra": 1}),
        json.dumps(["a", "list"]),
    ],
)
def test_corrupt_file_falls_back_to_defaults(tmp_path: Path, content: str, caplog):
    (tmp_path / "local_state.json").write_text(content)
    with caplog.at_level("WARNING"):
        store = _store(tmp_path)
    assert store.state.relay_url == "wss://relay-a.test"
    assert any(r.getMessage() == "local_state_invalid" for r in caplog.records)


def test_unsubscribe_and_broken_listener(tmp_path: Path):
    store = _store(tmp_path)
    calls: list[str] = []

    def boom(_state: LocalState) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(boom)
    unsubscribe = store.subscribe(lambda s: calls.append(s.theme))
    store.update({"theme": "light"})
    unsubscribe()
    store.update({"theme": "dark"})
    assert calls == ["light"]
    assert store.state.theme == "dark"


def test_reset_restores_defaults(tmp_path: Path):
    store = _store(tmp_path)
    store.update({"theme": "dark"})
    assert store.reset().theme == "system"
