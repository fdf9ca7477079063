"""relaygraph.core.exceptions

Errors are part of the interface.

Transport and per-channel failures are absorbed where they happen. Authorization
and settlement failures travel to the caller as typed outcomes.
"""

from __future__ import annotations


class RelaygraphError(Exception):
    """Base exception for relaygraph."""


class ConfigError(RelaygraphError):
    """Configuration is missing, invalid, or inconsistent."""


class ValidationError(RelaygraphError):
    """Malformed event, filter, or persisted record."""


class TransportError(RelaygraphError):
    """A single relay failed to answer: timeout, connection, or bad frame."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class AuthorizationError(RelaygraphError):
    """The operation needs an identity the engine does not hold."""


class NotAuthenticatedError(AuthorizationError):
    """No signer configured."""


class SignerError(AuthorizationError):
    """Signer declined or has no key available."""


class SettlementError(RelaygraphError):
    """Zap settlement failed."""


class InvoiceError(SettlementError):
    """Payment endpoint did not produce a usable invoice. Not retried."""


class PaymentChannelError(SettlementError):
    """A single payment channel failed. Triggers fallback, never abort."""


class ZapStateError(SettlementError):
    """Invalid zap state transition."""


class UnsafeUrlError(RelaygraphError):
    """Outbound URL rejected by the SSRF guard."""


class PayEndpointError(SettlementError):
    """Recipient's payment endpoint cannot be resolved or does not support zaps."""
