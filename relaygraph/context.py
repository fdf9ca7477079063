"""relaygraph.context

Shared context injected into every component, plus the one write path they all
use: check identity -> sign -> publish -> report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from relaygraph.core.cache import TTLCache
from relaygraph.core.config import Config
from relaygraph.core.events import EventDraft
from relaygraph.core.exceptions import NotAuthenticatedError, SignerError
from relaygraph.core.types import FailureReason, MutationResult, MutationStatus
from relaygraph.relays.gateway import RelayGateway
from relaygraph.security.signer import Signer, require_pubkey, sign


@dataclass(slots=True)
class EngineContext:
    config: Config
    gateway: RelayGateway
    signer: Signer | None = None
    cache: TTLCache = field(default_factory=TTLCache)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("relaygraph"))

    @property
    def authenticated(self) -> bool:
        return self.signer is not None


async def resolve_actor(ctx: EngineContext, action: str, identity: str | None = None) -> str | MutationResult:
    """Public key allowed to act, or a failed result explaining why not.

    No network I/O happens here: an unauthenticated caller fails before any relay
    is contacted.
    """

    try:
        pubkey = await require_pubkey(ctx.signer)
    except NotAuthenticatedError:
        return MutationResult.failed(action, FailureReason.NOT_AUTHENTICATED, "login required")
    except SignerError as e:
        return MutationResult.failed(action, FailureReason.SIGNER_DECLINED, str(e))
    if identity is not None and identity != pubkey:
        return MutationResult.failed(
            action, FailureReason.IDENTITY_MISMATCH, "cannot publish on behalf of another identity"
        )
    return pubkey


async def sign_and_publish(
    ctx: EngineContext,
    draft: EventDraft,
    *,
    action: str,
    pubkey: str,
    relays: list[str] | None = None,
) -> MutationResult:
    assert ctx.signer is not None
    try:
        event = await sign(ctx.signer, draft, expected_pubkey=pubkey)
    except SignerError as e:
        ctx.logger.warning("sign_failed", extra={"action": action, "error": str(e)})
        return MutationResult.failed(action, FailureReason.SIGNER_DECLINED, str(e))

    report = await ctx.gateway.publish(event, relays)
    if not report.ok:
        return MutationResult(
            status=MutationStatus.FAILED,
            action=action,
            event=event,
            report=report,
            reason=FailureReason.NO_RELAY_ACCEPTED,
            message="no relay accepted the event",
        )
    return MutationResult(status=MutationStatus.PUBLISHED, action=action, event=event, report=report)
