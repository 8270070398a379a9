"""
Domain events emitted by the commission engine.

Collaborators (webhook dispatchers, audit logs) subscribe by providing an
EventSink. Delivery and retry are their concern; emit() is fire-and-forget.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class EventType:
    """Event names - use these instead of strings."""
    COMMISSION_CREATED = "commission.created"
    COMMISSIONS_CALCULATED = "commission.calculated"
    COMMISSION_STATUS_CHANGED = "commission.status_changed"
    COMMISSIONS_BULK_APPROVED = "commission.bulk_approved"
    COMMISSION_REFUNDED = "commission.refunded"
    COMMISSION_CANCELLED = "commission.cancelled"
    RULE_CREATED = "rule.created"
    RULE_UPDATED = "rule.updated"
    RULE_DELETED = "rule.deleted"
    PAYOUT_COMPLETED = "payout.completed"
    PAYOUT_FAILED = "payout.failed"
    PAYOUT_REVERSED = "payout.reversed"


class EventSink(ABC):
    """Abstract event sink interface."""

    @abstractmethod
    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        """Publish a domain event. Must not raise into the caller."""
        pass


class LoggingEventSink(EventSink):
    """Writes events to the log. Default sink when none is configured."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    async def emit(self, event: str, payload: Dict[str, Any]) -> None:
        logger.log(self.level, f"Event {event}: {payload}")


async def safe_emit(sink: Optional[EventSink], event: str, payload: Dict[str, Any]) -> None:
    """Emit through a sink, logging (not raising) sink failures."""
    if sink is None:
        return
    try:
        await sink.emit(event, payload)
    except Exception as e:
        logger.error(f"Event sink failed for '{event}': {e}")
