"""
Pydantic schemas for commission rules, commissions and payouts.

This module defines input/output schemas for:
- Orders handed to the calculator by the host platform
- Rule management
- Commission and payout records
- Previews, summaries and payout outcomes
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Dict

from pydantic import BaseModel, Field, model_validator

from commission_engine.models.commission import (
    CalculationMethod,
    PayoutStatus,
    RuleStatus,
    RuleType,
)
from commission_engine.schemas.base import BaseCreateSchema, BaseUpdateSchema


# ============================================================================
# Order payload (read-only data from the host platform)
# ============================================================================

class OrderLineItem(BaseCreateSchema):
    """One line of an order"""
    item_id: int
    product_id: int
    name: str = ""
    line_total: Decimal = Field(default=Decimal("0"))
    is_product: bool = True  # Shipping, fee and tax lines are not products


class OrderData(BaseCreateSchema):
    """Order as seen by the commission calculator"""
    id: int
    total: Decimal = Field(default=Decimal("0"))
    status: str = ""
    currency: Optional[str] = None
    items: List[OrderLineItem] = Field(default_factory=list)


# ============================================================================
# Rule Schemas
# ============================================================================

class RuleCreate(BaseCreateSchema):
    """Create a commission rule"""
    name: str = Field(..., min_length=1, max_length=255)
    rule_type: RuleType = RuleType.GLOBAL
    calculation_method: CalculationMethod = CalculationMethod.PERCENTAGE
    value: Decimal = Field(default=Decimal("0"), ge=0)
    target_id: Optional[int] = Field(default=None, gt=0)
    priority: int = Field(default=10, ge=0)
    status: RuleStatus = RuleStatus.ACTIVE
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_by: Optional[int] = None

    @model_validator(mode='after')
    def check_target_and_window(self):
        if self.rule_type == RuleType.GLOBAL:
            self.target_id = None
        elif self.target_id is None:
            raise ValueError(f"target_id is required for {self.rule_type.value} rules")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class RuleUpdate(BaseUpdateSchema):
    """Partial update of a commission rule"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    rule_type: Optional[RuleType] = None
    calculation_method: Optional[CalculationMethod] = None
    value: Optional[Decimal] = Field(default=None, ge=0)
    target_id: Optional[int] = Field(default=None, gt=0)
    priority: Optional[int] = Field(default=None, ge=0)
    status: Optional[RuleStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class RulesSummary(BaseModel):
    total: int = 0
    active: int = 0
    inactive: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)


class RulePreview(BaseModel):
    """Which rule would apply to a product and what it would earn"""
    product_id: int
    vendor_id: Optional[int] = None
    price: Decimal
    rule_id: Optional[int] = None
    rule_name: str
    rule_type: str
    calculation_method: str
    value: Decimal
    commission_amount: Decimal


# ============================================================================
# Commission Schemas
# ============================================================================

class CommissionPreviewLine(BaseModel):
    item_id: int
    product_id: int
    product: str = ""
    vendor_id: Optional[int] = None
    line_total: Decimal
    rule_id: Optional[int] = None
    rule: str
    rate: str
    commission: Decimal


class OrderCommissionPreview(BaseModel):
    order_id: int
    items: List[CommissionPreviewLine] = Field(default_factory=list)
    total: Decimal = Decimal("0")


class StatusTotals(BaseModel):
    count: int = 0
    amount: Decimal = Decimal("0")


class CommissionSummary(BaseModel):
    """Counts and amounts grouped by status"""
    total_count: int = 0
    total_amount: Decimal = Decimal("0")
    by_status: Dict[str, StatusTotals] = Field(default_factory=dict)


class VendorBalance(BaseModel):
    vendor_id: int
    pending_amount: Decimal = Decimal("0")
    approved_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")


# ============================================================================
# Payout Schemas
# ============================================================================

class PayoutSummary(BaseModel):
    total_count: int = 0
    total_amount: Decimal = Decimal("0")
    by_status: Dict[str, StatusTotals] = Field(default_factory=dict)


class VendorPayoutCandidate(BaseModel):
    """Vendor whose approved commissions reach a minimum"""
    vendor_id: int
    total_amount: Decimal
    commission_count: int


class PayoutDeclineReason(str, Enum):
    NOT_CONNECTED = "not_connected"
    NO_COMMISSIONS = "no_commissions"
    BELOW_MINIMUM = "below_minimum"


class PayoutDecline(BaseModel):
    """A payout that was not attempted. Not an error."""
    vendor_id: int
    reason: PayoutDeclineReason
    amount: Decimal = Decimal("0")
    minimum: Optional[Decimal] = None

    @property
    def succeeded(self) -> bool:
        return False


class PayoutResult(BaseModel):
    """Outcome of an attempted payout"""
    payout_id: int
    vendor_id: int
    status: PayoutStatus
    amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    currency: str
    commission_ids: List[int] = Field(default_factory=list)
    transfer_reference: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PayoutStatus.COMPLETED


class ScheduledPayoutResult(BaseModel):
    processed: int = 0
    failed: int = 0
    skipped: int = 0
