from __future__ import annotations

import sys
from pathlib import Path

import pytest

# pytest may run without installing the project; ensure repo root is importable.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from relaygraph.context import EngineContext  # noqa: E402
from relaygraph.core.cache import TTLCache  # noqa: E402
from relaygraph.core.config import Config  # noqa: E402
from relaygraph.relays.gateway import RelayGateway  # noqa: E402
from tests.fakes import ALICE, RELAYS, FakeSigner, FakeTransport  # noqa: E402


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_config(tmp_path: Path) -> Config:
    """Repo defaults with test relays, short deadlines and no publish backoff."""

    return Config.from_yaml(
        REPO_ROOT / "config" / "default.yaml",
        overlay={
            "data_dir": str(tmp_path / "data"),
            "relays": {"urls": list(RELAYS)},
            "timeouts": {"lookup_s": 0.2, "notifications_s": 0.2, "profile_s": 0.2, "aggregate_s": 0.2},
            "publish": {"max_attempts": 3, "backoff_s": 0.0, "ack_timeout_s": 0.2},
            "zaps": {"poll_interval_s": 0.01, "confirmation_window_s": 0.2, "receipt_lookback_s": 60},
            "http": {"rate_limit_rps": 1000.0},
        },
    )


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport(RELAYS)


@pytest.fixture()
def gateway(test_config: Config, transport: FakeTransport) -> RelayGateway:
    return RelayGateway(test_config, transport=transport)


@pytest.fixture()
def signer() -> FakeSigner:
    return FakeSigner(ALICE)


@pytest.fixture()
def ctx(test_config: Config, gateway: RelayGateway, signer: FakeSigner) -> EngineContext:
    return EngineContext(config=test_config, gateway=gateway, signer=signer, cache=TTLCache(test_config.cache.ttl_s))


@pytest.fixture()
def anon_ctx(test_config: Config, gateway: RelayGateway) -> EngineContext:
    return EngineContext(config=test_config, gateway=gateway, signer=None, cache=TTLCache(test_config.cache.ttl_s))
