# Services module
from commission_engine.services.catalog import CatalogProvider, StaticCatalog
from commission_engine.services.event_service import EventSink, EventType, LoggingEventSink
from commission_engine.services.rule_engine import RuleResolver, DefaultRule, ResolvedRule
from commission_engine.services.rule_service import RuleService
from commission_engine.services.commission_calculator import CommissionCalculator
from commission_engine.services.commission_service import CommissionService

# Payouts
from commission_engine.services.transfer_service import (
    HttpTransferProvider,
    TransferOutcome,
    TransferProvider,
    TransferResult,
)
from commission_engine.services.payout_service import PayoutAggregator

__all__ = [
    "CatalogProvider",
    "StaticCatalog",
    "EventSink",
    "EventType",
    "LoggingEventSink",
    "RuleResolver",
    "DefaultRule",
    "ResolvedRule",
    "RuleService",
    "CommissionCalculator",
    "CommissionService",
    "HttpTransferProvider",
    "TransferOutcome",
    "TransferProvider",
    "TransferResult",
    "PayoutAggregator",
]
