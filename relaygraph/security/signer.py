"""relaygraph.security.signer

The engine never holds keys. It asks a signer.

A signer may be a browser extension, a remote bunker, or a hardware device. Any
of them may refuse. Refusal is a user decision, not a crash: implementations
raise :class:`~relaygraph.core.exceptions.SignerError` and callers turn it into a
typed outcome.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from relaygraph.core.events import Event, EventDraft
from relaygraph.core.exceptions import NotAuthenticatedError, SignerError


@runtime_checkable
class Signer(Protocol):
    async def get_public_key(self) -> str: ...

    async def sign_event(self, draft: EventDraft) -> Event: ...


async def require_pubkey(signer: Signer | None) -> str:
    """Public key of ``signer``.

    Raises:
        NotAuthenticatedError: no signer configured.
        SignerError: signer could not produce a key.
    """

    if signer is None:
        raise NotAuthenticatedError("no signer configured")
    try:
        pubkey = await signer.get_public_key()
    except SignerError:
        raise
    except Exception as e:  # noqa: BLE001 - third-party signers raise anything
        raise SignerError(f"public key unavailable: {e}") from e
    if not pubkey:
        raise SignerError("public key unavailable")
    return pubkey


async def sign(signer: Signer, draft: EventDraft, *, expected_pubkey: str | None = None) -> Event:
    """Sign ``draft`` and check the result belongs to ``expected_pubkey``."""

    try:
        event = await signer.sign_event(draft)
    except SignerError:
        raise
    except Exception as e:  # noqa: BLE001 - third-party signers raise anything
        raise SignerError(f"signing failed: {e}") from e

    if expected_pubkey is not None and event.pubkey != expected_pubkey:
        raise SignerError("signer returned an event for a different identity")
    if not event.verify_id():
        raise SignerError("signer returned an event with a mismatching id")
    return event
