from commission_engine.schemas.commission import (
    CommissionPreviewLine,
    CommissionSummary,
    OrderCommissionPreview,
    OrderData,
    OrderLineItem,
    PayoutDecline,
    PayoutDeclineReason,
    PayoutResult,
    PayoutSummary,
    RuleCreate,
    RulePreview,
    RulesSummary,
    RuleUpdate,
    ScheduledPayoutResult,
    StatusTotals,
    VendorBalance,
    VendorPayoutCandidate,
)

__all__ = [
    "CommissionPreviewLine",
    "CommissionSummary",
    "OrderCommissionPreview",
    "OrderData",
    "OrderLineItem",
    "PayoutDecline",
    "PayoutDeclineReason",
    "PayoutResult",
    "PayoutSummary",
    "RuleCreate",
    "RulePreview",
    "RulesSummary",
    "RuleUpdate",
    "ScheduledPayoutResult",
    "StatusTotals",
    "VendorBalance",
    "VendorPayoutCandidate",
]
