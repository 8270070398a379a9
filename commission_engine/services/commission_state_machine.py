"""
Commission State Machine

This module is the SINGLE SOURCE OF TRUTH for commission status transitions.
Manual changes are validated with include_system=False. The payout, refund
and cancellation flows validate their moves with include_system=True before
writing them.

    pending  -> approved, cancelled, refunded
    approved -> paid, cancelled, refunded
    paid     -> refunded, approved (approved only when a payout fails)
    cancelled, refunded -> terminal
"""

from typing import Dict, List, Tuple

from commission_engine.exceptions import InvalidStatusTransitionError
from commission_engine.models.commission import CommissionStatus


PENDING = CommissionStatus.PENDING.value
APPROVED = CommissionStatus.APPROVED.value
PAID = CommissionStatus.PAID.value
CANCELLED = CommissionStatus.CANCELLED.value
REFUNDED = CommissionStatus.REFUNDED.value


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
COMMISSION_TRANSITIONS: Dict[str, List[str]] = {
    PENDING: [
        APPROVED,       # Manual or bulk approval
        CANCELLED,      # Order cancelled
        REFUNDED,       # Order fully refunded
    ],
    APPROVED: [
        PAID,           # Included in a completed payout
        CANCELLED,      # Order cancelled
        REFUNDED,       # Order fully refunded
    ],
    PAID: [
        REFUNDED,       # Full refund after settlement
        APPROVED,       # Payout transfer failed
    ],
    CANCELLED: [],      # Terminal state
    REFUNDED: [],       # Terminal state
}

# Transitions only the payout flow may perform
SYSTEM_ONLY_TRANSITIONS: List[Tuple[str, str]] = [
    (APPROVED, PAID),
    (PAID, APPROVED),
]

# Statuses a cancellation / full refund may move from
CANCELLABLE_STATUSES = [PENDING, APPROVED]
REFUNDABLE_STATUSES = [PENDING, APPROVED]


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed."""
    return new_status in COMMISSION_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str, include_system: bool = False) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    allowed = COMMISSION_TRANSITIONS.get(current_status, [])
    if include_system:
        return list(allowed)
    return [s for s in allowed if (current_status, s) not in SYSTEM_ONLY_TRANSITIONS]


def is_terminal(status: str) -> bool:
    return not COMMISSION_TRANSITIONS.get(status)


def validate_transition(current_status: str, new_status: str, include_system: bool = False) -> None:
    """
    Validate a status transition. Raises InvalidStatusTransitionError if invalid.

    Manual changes (include_system=False) cannot settle or un-settle a
    commission; those moves belong to the payout flow.
    """
    if current_status == new_status:
        return  # No change, always allowed

    allowed = get_allowed_transitions(current_status, include_system=include_system)
    if new_status not in allowed:
        raise InvalidStatusTransitionError(current_status, new_status, allowed)
