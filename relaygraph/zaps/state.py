"""relaygraph.zaps.state

Zap state machine.

IDLE → REQUESTING_INVOICE → CHANNEL_ATTEMPT → SETTLED
                                            → AWAITING_MANUAL_PAYMENT → SETTLED | FAILED | CANCELLED

Terminal states do not move. The machine does not pay anything; it restricts
what the settlement engine is allowed to claim happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from relaygraph.core.exceptions import ZapStateError


class ZapState(StrEnum):
    IDLE = "idle"
    REQUESTING_INVOICE = "requesting_invoice"
    CHANNEL_ATTEMPT = "channel_attempt"
    AWAITING_MANUAL_PAYMENT = "awaiting_manual_payment"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: Final[dict[ZapState, set[ZapState]]] = {
    ZapState.IDLE: {ZapState.REQUESTING_INVOICE, ZapState.FAILED},
    ZapState.REQUESTING_INVOICE: {ZapState.CHANNEL_ATTEMPT, ZapState.FAILED},
    ZapState.CHANNEL_ATTEMPT: {ZapState.SETTLED, ZapState.AWAITING_MANUAL_PAYMENT},
    ZapState.AWAITING_MANUAL_PAYMENT: {ZapState.SETTLED, ZapState.FAILED, ZapState.CANCELLED},
    ZapState.SETTLED: set(),
    ZapState.FAILED: set(),
    ZapState.CANCELLED: set(),
}

TERMINAL_STATES: Final[frozenset[ZapState]] = frozenset(s for s, nxt in ALLOWED_TRANSITIONS.items() if not nxt)


@dataclass(frozen=True, slots=True)
class ZapTransition:
    previous: ZapState
    new: ZapState
    reason: str


class ZapStateMachine:
    def transition(self, *, state: ZapState, new_state: ZapState, reason: str) -> ZapTransition:
        allowed = ALLOWED_TRANSITIONS.get(state, set())
        if new_state not in allowed:
            raise ZapStateError(f"Invalid transition {state} -> {new_state}")
        return ZapTransition(previous=state, new=new_state, reason=reason)

    def is_terminal(self, state: ZapState) -> bool:
        return state in TERMINAL_STATES
