from commission_engine.models.commission import (
    CalculationMethod,
    Commission,
    CommissionRule,
    CommissionStatus,
    Payout,
    PayoutStatus,
    RuleStatus,
    RuleType,
)

__all__ = [
    "CalculationMethod",
    "Commission",
    "CommissionRule",
    "CommissionStatus",
    "Payout",
    "PayoutStatus",
    "RuleStatus",
    "RuleType",
]
