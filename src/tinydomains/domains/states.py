"""Domain status state machine.

    pending ──BEGIN──> verifying ──CONFIRMED──> active
                          │  ^                    │
          BUDGET_EXHAUSTED│  │RETRIGGER   DEGRADED│
                          v  │                    │
                         failed        verifying <┘

Transitions are data: TRANSITIONS maps (status, event) to the next status.
Anything not listed is illegal, including pending -> active.
"""

from __future__ import annotations

from enum import Enum

from tinydomains.domains.errors import IllegalTransitionError


class DomainStatus(Enum):
    """Verification status of a custom domain."""

    PENDING = "pending"
    VERIFYING = "verifying"
    ACTIVE = "active"
    FAILED = "failed"


class DomainEvent(Enum):
    """Events that move a domain between statuses."""

    BEGIN = "begin"
    CONFIRMED = "confirmed"
    BUDGET_EXHAUSTED = "budget_exhausted"
    RETRIGGER = "retrigger"
    DEGRADED = "degraded"


TRANSITIONS: dict[tuple[DomainStatus, DomainEvent], DomainStatus] = {
    (DomainStatus.PENDING, DomainEvent.BEGIN): DomainStatus.VERIFYING,
    (DomainStatus.VERIFYING, DomainEvent.CONFIRMED): DomainStatus.ACTIVE,
    (DomainStatus.VERIFYING, DomainEvent.BUDGET_EXHAUSTED): DomainStatus.FAILED,
    (DomainStatus.FAILED, DomainEvent.RETRIGGER): DomainStatus.VERIFYING,
    (DomainStatus.ACTIVE, DomainEvent.DEGRADED): DomainStatus.VERIFYING,
    # Re-observing an active domain is a no-op.
    (DomainStatus.ACTIVE, DomainEvent.CONFIRMED): DomainStatus.ACTIVE,
}

# Events that (re)start the attempt budget window.
WINDOW_OPENING_EVENTS = frozenset(
    {DomainEvent.BEGIN, DomainEvent.RETRIGGER, DomainEvent.DEGRADED}
)

STATUS_LABELS: dict[DomainStatus, str] = {
    DomainStatus.PENDING: "Pending DNS Setup",
    DomainStatus.VERIFYING: "Verifying DNS...",
    DomainStatus.ACTIVE: "Active",
    DomainStatus.FAILED: "Verification Failed",
}


def can_transition(status: DomainStatus, event: DomainEvent) -> bool:
    return (status, event) in TRANSITIONS


def transition(status: DomainStatus, event: DomainEvent) -> DomainStatus:
    """Apply an event to a status.

    Raises:
        IllegalTransitionError: If the table has no edge for (status, event).
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise IllegalTransitionError(status.value, event.value) from None
