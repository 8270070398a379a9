"""
Rule Engine

Resolves which commission rule applies to a product/vendor/category
combination and applies a rule to a line amount.

Resolution:
    candidates = product rules + vendor rules + category rules + global rules
    effective_priority = TYPE_WEIGHTS[rule_type] * 1000 + priority
    winner = max(effective_priority), newest created_at on ties

Rule type always dominates the numeric priority, which only orders rules of
the same type. Inactive rules and rules outside their validity window are
excluded by the candidate query. When nothing matches, a DefaultRule built
from DEFAULT_COMMISSION_RATE is returned; it has no id and is never stored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import ClassVar, Iterable, List, Optional, Sequence, Union

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.config import Settings, get_settings
from commission_engine.exceptions import RuleConfigurationError
from commission_engine.models.commission import (
    CalculationMethod,
    CommissionRule,
    RuleStatus,
    RuleType,
)
from commission_engine.schemas.commission import RulePreview
from commission_engine.services.catalog import CatalogProvider

logger = logging.getLogger(__name__)


# Higher number = higher priority
TYPE_WEIGHTS = {
    RuleType.GLOBAL.value: 1,
    RuleType.CATEGORY.value: 2,
    RuleType.VENDOR.value: 3,
    RuleType.PRODUCT.value: 4,
}

TYPE_WEIGHT_MULTIPLIER = 1000

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ResolvedRule:
    """A stored rule selected by the resolver."""
    id: int
    name: str
    rule_type: str
    calculation_method: str
    value: Decimal
    priority: int
    target_id: Optional[int] = None
    created_at: Optional[datetime] = None

    is_default: ClassVar[bool] = False

    @classmethod
    def from_model(cls, rule: CommissionRule) -> "ResolvedRule":
        return cls(
            id=rule.id,
            name=rule.name,
            rule_type=rule.rule_type,
            calculation_method=rule.calculation_method,
            value=Decimal(str(rule.value)),
            priority=rule.priority,
            target_id=rule.target_id,
            created_at=rule.created_at,
        )


@dataclass(frozen=True)
class DefaultRule:
    """Fallback rule used when no configured rule matches."""
    value: Decimal
    name: str = "Default Commission"

    id: ClassVar[None] = None
    rule_type: ClassVar[str] = RuleType.GLOBAL.value
    calculation_method: ClassVar[str] = CalculationMethod.PERCENTAGE.value
    priority: ClassVar[int] = 0
    target_id: ClassVar[None] = None
    is_default: ClassVar[bool] = True


Rule = Union[ResolvedRule, DefaultRule]


def effective_priority(rule_type: str, priority: int) -> int:
    """Combine type weight and rule priority into one ranking value."""
    return TYPE_WEIGHTS.get(rule_type, 0) * TYPE_WEIGHT_MULTIPLIER + (priority or 0)


def calculate_commission(line_amount: Decimal, rule: Rule) -> Decimal:
    """
    Apply a rule to a line amount.

    percentage: line_amount * value / 100
    fixed:      value, independent of the line amount

    The result is not rounded; callers round to the currency precision.
    """
    amount = Decimal(str(line_amount))
    value = Decimal(str(rule.value))
    if rule.calculation_method == CalculationMethod.PERCENTAGE.value:
        return amount * value / Decimal("100")
    return value


def _naive_utc(value: Optional[datetime]) -> datetime:
    # SQLite hands back naive datetimes; freshly created rows are aware.
    if value is None:
        return datetime.min
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def round_amount(amount: Decimal) -> Decimal:
    """Round to 2 decimal places (currency minor unit)."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


class RuleResolver:
    """
    Selects the commission rule for a product.

    Usage:
        resolver = RuleResolver(db, settings)
        rule = await resolver.resolve(product_id, vendor_id, category_ids)
        amount = calculate_commission(Decimal("100.00"), rule)
    """

    def __init__(self, db: AsyncSession, config: Optional[Settings] = None):
        self.db = db
        self.settings = config or get_settings()

    def default_rule(self) -> DefaultRule:
        return DefaultRule(value=Decimal(str(self.settings.DEFAULT_COMMISSION_RATE)))

    async def resolve(
        self,
        product_id: int,
        vendor_id: Optional[int],
        category_ids: Iterable[int] = (),
        now: Optional[datetime] = None,
    ) -> Rule:
        """
        Resolve the applicable rule for a product/vendor combination.

        Args:
            product_id: Product being sold.
            vendor_id: Owning vendor (None skips vendor rules).
            category_ids: Categories of the product (may be empty).
            now: Reference time for validity windows (defaults to UTC now).

        Returns:
            The winning ResolvedRule, or a DefaultRule when nothing matches.

        Raises:
            RuleConfigurationError: a non-global candidate has no target_id.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        candidates = await self.gather_candidates(product_id, vendor_id, category_ids, now)

        if not candidates:
            rule = self.default_rule()
            logger.info(
                f"No rule matched product {product_id} (vendor {vendor_id}); "
                f"using default rate {rule.value}%"
            )
            return rule

        for candidate in candidates:
            self._check_rule(candidate)

        winner = max(candidates, key=self._sort_key)
        resolved = ResolvedRule.from_model(winner)

        logger.info(
            f"Resolved rule '{resolved.name}' (#{resolved.id}, {resolved.rule_type}) "
            f"for product {product_id}, vendor {vendor_id}"
        )
        return resolved

    async def gather_candidates(
        self,
        product_id: int,
        vendor_id: Optional[int],
        category_ids: Iterable[int],
        now: datetime,
    ) -> List[CommissionRule]:
        """Gather active, currently valid rules from all four sources."""
        candidates: List[CommissionRule] = []

        # 1. Product-specific rules
        candidates.extend(await self._applicable_rules(RuleType.PRODUCT, [product_id], now))

        # 2. Vendor-specific rules
        if vendor_id is not None:
            candidates.extend(await self._applicable_rules(RuleType.VENDOR, [vendor_id], now))

        # 3. Category-specific rules
        category_ids = list(dict.fromkeys(category_ids or []))
        if category_ids:
            candidates.extend(await self._applicable_rules(RuleType.CATEGORY, category_ids, now))

        # 4. Global rules
        candidates.extend(await self._applicable_rules(RuleType.GLOBAL, None, now))

        return candidates

    async def _applicable_rules(
        self,
        rule_type: RuleType,
        target_ids: Optional[Sequence[int]],
        now: datetime,
    ) -> List[CommissionRule]:
        """
        Active rules of one type valid at `now`.

        Targeted rules with a NULL target are returned as well so that the
        misconfiguration surfaces in _check_rule instead of being ignored.
        """
        query = select(CommissionRule).where(
            CommissionRule.status == RuleStatus.ACTIVE.value,
            CommissionRule.rule_type == rule_type.value,
            or_(CommissionRule.start_date.is_(None), CommissionRule.start_date <= now),
            or_(CommissionRule.end_date.is_(None), CommissionRule.end_date >= now),
        )
        if target_ids is not None:
            query = query.where(
                or_(
                    CommissionRule.target_id.in_(list(target_ids)),
                    CommissionRule.target_id.is_(None),
                )
            )
        query = query.order_by(CommissionRule.priority.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _check_rule(rule: CommissionRule) -> None:
        if rule.rule_type != RuleType.GLOBAL.value and rule.target_id is None:
            raise RuleConfigurationError(
                f"Rule #{rule.id} '{rule.name}' has type '{rule.rule_type}' but no target_id",
                rule_id=rule.id,
            )
        if rule.rule_type not in TYPE_WEIGHTS:
            raise RuleConfigurationError(
                f"Rule #{rule.id} has unknown type '{rule.rule_type}'",
                rule_id=rule.id,
            )

    @staticmethod
    def _sort_key(rule: CommissionRule):
        # Newer rule wins on equal effective priority; id keeps it total.
        return (
            effective_priority(rule.rule_type, rule.priority),
            _naive_utc(rule.created_at),
            rule.id or 0,
        )

    async def preview(
        self,
        product_id: int,
        price: Decimal,
        catalog: CatalogProvider,
    ) -> RulePreview:
        """Preview which rule would apply for a product at a given price."""
        vendor_id = await catalog.get_product_owner(product_id)
        category_ids = await catalog.get_product_categories(product_id)

        rule = await self.resolve(product_id, vendor_id, category_ids)
        commission_amount = round_amount(calculate_commission(price, rule))

        return RulePreview(
            product_id=product_id,
            vendor_id=vendor_id,
            price=Decimal(str(price)),
            rule_id=rule.id,
            rule_name=rule.name,
            rule_type=rule.rule_type,
            calculation_method=rule.calculation_method,
            value=rule.value,
            commission_amount=commission_amount,
        )
