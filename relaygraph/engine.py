"""relaygraph.engine

Facade: one object that owns the gateway, the HTTP client, local state and
every component, and hands the same context to all of them.

Data flow:
    caller -> component -> RelayGateway -> relays
                        -> HttpClient   -> payment endpoints (zaps only)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

import httpx

from relaygraph.context import EngineContext
from relaygraph.core.cache import TTLCache
from relaygraph.core.client import HttpClient
from relaygraph.core.config import Config
from relaygraph.core.exceptions import SignerError
from relaygraph.core.local_state import LocalState, LocalStateStore
from relaygraph.relays.gateway import RelayGateway
from relaygraph.relays.transport import RelayTransport
from relaygraph.relays.urls import dedupe_relays, normalize_relay_url
from relaygraph.security.signer import Signer, require_pubkey
from relaygraph.security.ssrf import PayUrlPolicy, UrlCheck
from relaygraph.social.discovery import Discovery
from relaygraph.social.follows import FollowRepository
from relaygraph.social.interactions import InteractionAggregator
from relaygraph.social.profiles import ProfileRepository
from relaygraph.social.relay_sync import RelayListPublisher, SyncReport
from relaygraph.social.threads import ThreadReconstructor
from relaygraph.zaps.channels import PaymentChannel
from relaygraph.zaps.lnurl import LnurlClient
from relaygraph.zaps.settlement import ZapSettlementEngine


class SocialEngine:
    def __init__(
        self,
        config: Config,
        *,
        transport: RelayTransport | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        url_guard: Callable[[str], UrlCheck] | None = None,
        signer: Signer | None = None,
        channels: Sequence[PaymentChannel] | None = None,
        state_path: Path | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.log = logger or logging.getLogger("relaygraph")

        default_relay = config.relays.urls[0] if config.relays.urls else "wss://relay.damus.io"
        if state_path is None:
            self.local_state = LocalStateStore.in_data_dir(config.data_dir, default_relay=default_relay, logger=self.log)
        else:
            self.local_state = LocalStateStore(
                state_path, defaults=LocalState(relay_url=default_relay), logger=self.log
            )

        self.gateway = RelayGateway(
            config,
            transport=transport,
            relays=self._relays_for(self.local_state.state.relay_url),
            logger=self.log,
        )
        guard = url_guard or PayUrlPolicy(allow_onion=config.http.allow_onion)
        self.http = HttpClient(config.http, url_guard=guard, transport=http_transport)
        self.ctx = EngineContext(
            config=config,
            gateway=self.gateway,
            signer=signer,
            cache=TTLCache(config.cache.ttl_s),
            logger=self.log,
        )

        self.profiles = ProfileRepository(self.ctx)
        self.follows = FollowRepository(self.ctx)
        self.interactions = InteractionAggregator(self.ctx, limit=config.threads.reply_limit)
        self.threads = ThreadReconstructor(self.ctx)
        self.discovery = Discovery(self.ctx)
        self.relay_sync = RelayListPublisher(self.ctx)
        self.zaps = ZapSettlementEngine(
            self.ctx,
            profiles=self.profiles,
            lnurl=LnurlClient(self.http, invoice_timeout_s=config.zaps.invoice_timeout_s, logger=self.log),
            channels=channels,
            logger=self.log,
        )

        self._unsubscribe = self.local_state.subscribe(self._on_local_state)

    @classmethod
    def from_yaml(cls, path: Path, **kwargs) -> SocialEngine:
        return cls(Config.from_yaml(path), **kwargs)

    def _relays_for(self, selected: str) -> list[str]:
        # Selected relay first; configured relays stay in the pool.
        return dedupe_relays([selected, *self.config.relays.urls])

    def _on_local_state(self, state: LocalState) -> None:
        self.gateway.set_relays(self._relays_for(state.relay_url))

    # -----------------
    # Identity
    # -----------------

    @property
    def signer(self) -> Signer | None:
        return self.ctx.signer

    def login(self, signer: Signer) -> None:
        self.ctx.signer = signer
        self.ctx.cache.clear()
        self.log.info("login")

    def logout(self) -> None:
        self.ctx.signer = None
        self.ctx.cache.clear()
        self.log.info("logout")

    # -----------------
    # Relay switching
    # -----------------

    async def switch_relay(self, relay_url: str) -> SyncReport | None:
        """Make ``relay_url`` the selected relay.

        When logged in, the identity's relay list, profile and follow list are
        synced to the new relay first. Sync trouble is reported, not raised; the
        switch happens either way.

        Raises:
            ValueError: ``relay_url`` is not a usable websocket URL.
        """

        new_url = normalize_relay_url(relay_url)
        old = self.gateway.relays
        report: SyncReport | None = None

        if self.ctx.signer is not None:
            try:
                pubkey = await require_pubkey(self.ctx.signer)
            except SignerError as e:
                self.log.warning("relay_switch_sync_skipped", extra={"relay": new_url, "error": str(e)})
            else:
                report = await self.relay_sync.sync_endpoints(pubkey, [new_url], old_endpoints=old)
            if report is not None and not report.ok:
                self.log.warning(
                    "relay_switch_sync_failed",
                    extra={"relay": new_url, "reason": str(report.reason), "detail": report.message},
                )

        self.local_state.update({"relay_url": new_url})
        self.ctx.cache.clear()
        self.log.info("relay_switched", extra={"relay": new_url})
        return report

    def set_theme(self, theme: str) -> LocalState:
        return self.local_state.update({"theme": theme})

    async def aclose(self) -> None:
        self._unsubscribe()
        await self.zaps.aclose()
        await self.http.aclose()
        await self.gateway.aclose()
