"""relaygraph.core.types

Lightweight dataclasses for outcomes.

Pydantic models own IO boundaries (events, filters, config); dataclasses carry
results back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from relaygraph.core.events import Event


@dataclass(frozen=True, slots=True)
class RelayOutcome:
    url: str
    accepted: bool
    attempts: int
    message: str = ""


@dataclass(frozen=True, slots=True)
class PublishReport:
    event_id: str
    outcomes: dict[str, RelayOutcome] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return any(o.accepted for o in self.outcomes.values())

    @property
    def accepted(self) -> list[str]:
        return [url for url, o in self.outcomes.items() if o.accepted]

    @property
    def rejected(self) -> list[str]:
        return [url for url, o in self.outcomes.items() if not o.accepted]

    @property
    def partial(self) -> bool:
        return self.ok and bool(self.rejected)


class MutationStatus(StrEnum):
    PUBLISHED = "published"
    NOOP = "noop"
    FAILED = "failed"


class FailureReason(StrEnum):
    NOT_AUTHENTICATED = "not_authenticated"
    IDENTITY_MISMATCH = "identity_mismatch"
    SIGNER_DECLINED = "signer_declined"
    NO_RELAY_ACCEPTED = "no_relay_accepted"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True, slots=True)
class MutationResult:
    """Outcome of appending one new fact.

    ``PUBLISHED`` means at least one relay accepted the event. It does not mean a
    later query will see it.
    """

    status: MutationStatus
    action: str
    event: Event | None = None
    report: PublishReport | None = None
    reason: FailureReason | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status != MutationStatus.FAILED

    @classmethod
    def failed(cls, action: str, reason: FailureReason, message: str = "") -> MutationResult:
        return cls(status=MutationStatus.FAILED, action=action, reason=reason, message=message)
