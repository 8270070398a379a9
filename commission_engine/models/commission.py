"""Commission rule, commission and payout models.

Supports:
- Priority-ranked commission rules (global, category, vendor, product)
- One commission per order line item
- Vendor payouts settling approved commissions through a transfer provider
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.database import Base
from commission_engine.db_types import JSONType, MoneyType, RateType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RuleType(str, Enum):
    """Scope a rule applies to."""
    GLOBAL = "global"
    CATEGORY = "category"
    VENDOR = "vendor"
    PRODUCT = "product"


class CalculationMethod(str, Enum):
    """How the rule value is applied."""
    PERCENTAGE = "percentage"   # value is a percent of the line total
    FIXED = "fixed"             # value is a flat amount per line


class RuleStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CommissionStatus(str, Enum):
    """Commission lifecycle status."""
    PENDING = "pending"         # Created, awaiting approval
    APPROVED = "approved"       # Approved for payout
    PAID = "paid"               # Settled by a completed payout
    CANCELLED = "cancelled"     # Order cancelled
    REFUNDED = "refunded"       # Order (effectively) fully refunded


class PayoutStatus(str, Enum):
    """Payout status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CommissionRule(Base):
    """
    Commission rule definition.
    A rule of type other than global targets one product, vendor or category.
    """
    __tablename__ = "commission_rules"
    __table_args__ = (
        Index("ix_commission_rules_type_status", "rule_type", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RuleType.GLOBAL.value
    )
    calculation_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CalculationMethod.PERCENTAGE.value
    )
    value: Mapped[Decimal] = mapped_column(
        RateType,
        nullable=False,
        default=Decimal("0"),
        comment="Percent or fixed amount depending on calculation_method"
    )
    target_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        index=True,
        comment="Product, vendor or category id; NULL for global rules"
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RuleStatus.ACTIVE.value
    )

    # Validity window
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Audit
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE.value

    def __repr__(self) -> str:
        return f"<CommissionRule(id={self.id}, type='{self.rule_type}', value={self.value})>"


class Commission(Base):
    """
    Commission owed to a vendor for one order line item.
    """
    __tablename__ = "vendor_commissions"
    __table_args__ = (
        UniqueConstraint("order_id", "order_item_id", name="uq_commission_order_item"),
        Index("ix_vendor_commissions_vendor_status", "vendor_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Order Reference
    order_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    order_item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    vendor_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Applied rule (NULL when the default rate was used)
    rule_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("commission_rules.id", ondelete="SET NULL"),
        nullable=True
    )

    # Values
    order_total: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0"),
        comment="Line amount charged"
    )
    commission_amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0")
    )
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        RateType,
        nullable=True,
        comment="Value of the applied rule"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionStatus.PENDING.value
    )

    payout_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("vendor_payouts.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    rule: Mapped[Optional["CommissionRule"]] = relationship("CommissionRule")
    payout: Mapped[Optional["Payout"]] = relationship(
        "Payout",
        back_populates="commissions"
    )

    def __repr__(self) -> str:
        return f"<Commission(order={self.order_id}, item={self.order_item_id}, amount={self.commission_amount})>"


class Payout(Base):
    """
    Transfer of a vendor's approved commissions.
    """
    __tablename__ = "vendor_payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    vendor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Totals
    amount: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        comment="Gross sum of settled commissions"
    )
    fee_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PayoutStatus.PENDING.value,
        index=True
    )

    # Transfer details
    transfer_reference: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Provider transfer id"
    )
    transfer_metadata: Mapped[Optional[dict]] = mapped_column(
        JSONType,
        nullable=True,
        comment="Commission ids being settled"
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Relationships
    commissions: Mapped[List["Commission"]] = relationship(
        "Commission",
        back_populates="payout"
    )

    @property
    def commission_ids(self) -> List[int]:
        return list((self.transfer_metadata or {}).get("commission_ids", []))

    def __repr__(self) -> str:
        return f"<Payout(id={self.id}, vendor={self.vendor_id}, status='{self.status}')>"
