"""
Commission Calculator

Creates one commission per order line when an order reaches the trigger
status, and reacts to refunds and cancellations:

- calculate_order_commissions: resolve rule, compute, store pending rows
- handle_refund: refund >= 90% of the order total marks commissions refunded
- handle_cancellation: pending/approved commissions become cancelled
- recalculate / preview_order_commissions for admin tooling

An order's commissions are computed at most once unless recalculation is
forced. The (order_id, order_item_id) unique constraint backs the in-memory
checks against concurrent triggers.
"""

import logging
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.config import Settings, get_settings
from commission_engine.models.commission import Commission, CommissionStatus
from commission_engine.schemas.commission import (
    CommissionPreviewLine,
    OrderCommissionPreview,
    OrderData,
    OrderLineItem,
)
from commission_engine.services.catalog import CatalogProvider
from commission_engine.services.commission_state_machine import (
    CANCELLABLE_STATUSES,
    REFUNDABLE_STATUSES,
    validate_transition,
)
from commission_engine.services.event_service import EventSink, EventType, LoggingEventSink, safe_emit
from commission_engine.services.rule_engine import (
    Rule,
    RuleResolver,
    calculate_commission,
    round_amount,
)

logger = logging.getLogger(__name__)


# A refund of at least this share of the order total counts as a full refund
FULL_REFUND_THRESHOLD = Decimal("0.9")

ORDER_CANCELLED_STATUS = "cancelled"

# (amount, item, rule, order) -> adjusted amount, applied before rounding
AmountAdjuster = Callable[[Decimal, OrderLineItem, Rule, OrderData], Decimal]


class CommissionCalculator:
    """
    Service for per-order commission creation.

    Usage:
        calculator = CommissionCalculator(db, catalog, events=sink)
        commission_ids = await calculator.calculate_order_commissions(order)
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: CatalogProvider,
        events: Optional[EventSink] = None,
        resolver: Optional[RuleResolver] = None,
        adjuster: Optional[AmountAdjuster] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.settings = config or get_settings()
        self.events = events or LoggingEventSink()
        self.resolver = resolver or RuleResolver(db, self.settings)
        self.adjuster = adjuster

    # ========================================================================
    # Calculation
    # ========================================================================

    def calculate_commission(
        self,
        line_amount: Decimal,
        rule: Rule,
        item: Optional[OrderLineItem] = None,
        order: Optional[OrderData] = None,
    ) -> Decimal:
        """Apply the rule, then the optional adjuster, then round to cents."""
        amount = calculate_commission(line_amount, rule)
        if self.adjuster is not None:
            amount = Decimal(str(self.adjuster(amount, item, rule, order)))
        return round_amount(amount)

    async def calculate_order_commissions(self, order: OrderData, force: bool = False) -> List[int]:
        """
        Calculate commissions for an order.

        Without force the order is skipped when it already has any commission.
        With force only lines that already have a commission are skipped.

        Returns:
            Ids of the commissions created. Empty when the order already has
            commissions or no line produced a positive amount.
        """
        if not force and await self.get_by_order(order.id):
            logger.info(f"Commissions already exist for order {order.id}; skipping")
            return []

        commission_ids: List[int] = []
        for item in order.items:
            commission_id = await self._calculate_item_commission(order, item)
            if commission_id:
                commission_ids.append(commission_id)

        if commission_ids:
            await self.db.commit()
            logger.info(f"Created {len(commission_ids)} commission(s) for order {order.id}")
            await safe_emit(self.events, EventType.COMMISSIONS_CALCULATED, {
                "order_id": order.id,
                "commission_ids": commission_ids,
                "count": len(commission_ids),
            })

        return commission_ids

    async def _calculate_item_commission(self, order: OrderData, item: OrderLineItem) -> Optional[int]:
        """Create the commission for one line. Returns its id or None when skipped."""
        if not item.is_product:
            return None

        vendor_id = await self.catalog.get_product_owner(item.product_id)
        if not vendor_id:
            logger.warning(
                f"Could not determine vendor for product {item.product_id} "
                f"(order {order.id}, item {item.item_id}); skipping"
            )
            return None

        if await self.exists_for_order_item(order.id, item.item_id):
            logger.warning(f"Commission already exists for order {order.id}, item {item.item_id}")
            return None

        category_ids = await self.catalog.get_product_categories(item.product_id)
        rule = await self.resolver.resolve(item.product_id, vendor_id, category_ids)

        line_total = Decimal(str(item.line_total))
        commission_amount = self.calculate_commission(line_total, rule, item, order)

        if commission_amount <= 0:
            logger.debug(f"Zero commission for order {order.id}, item {item.item_id}; skipping")
            return None

        commission = Commission(
            order_id=order.id,
            order_item_id=item.item_id,
            product_id=item.product_id,
            vendor_id=vendor_id,
            rule_id=rule.id,
            order_total=line_total,
            commission_amount=commission_amount,
            commission_rate=None if rule.is_default else rule.value,
            status=CommissionStatus.PENDING.value,
        )

        try:
            async with self.db.begin_nested():
                self.db.add(commission)
        except IntegrityError:
            # Another trigger stored this line first
            logger.warning(
                f"Duplicate commission for order {order.id}, item {item.item_id}; skipping"
            )
            return None

        logger.info(
            f"Commission of {commission_amount} created for order {order.id}, "
            f"item {item.item_id}, vendor {vendor_id} (rule: {rule.name})"
        )
        await safe_emit(self.events, EventType.COMMISSION_CREATED, {
            "commission_id": commission.id,
            "order_id": order.id,
            "amount": str(commission_amount),
            "rule_id": rule.id,
            "rule_name": rule.name,
        })
        return commission.id

    # ========================================================================
    # Order lifecycle
    # ========================================================================

    async def handle_order_status_change(self, order: OrderData, new_status: str) -> List[int]:
        """Dispatch an order status change to the matching handler."""
        if new_status == self.settings.COMMISSION_TRIGGER_STATUS:
            return await self.calculate_order_commissions(order)
        if new_status == ORDER_CANCELLED_STATUS:
            return await self.handle_cancellation(order)
        return []

    async def handle_refund(self, order: OrderData, refund_amount: Decimal) -> List[int]:
        """
        Handle an order refund.

        A refund of at least 90% of the order total is treated as a full
        refund: every pending/approved commission becomes refunded. Smaller
        refunds leave commissions untouched.

        Returns:
            Ids of the commissions marked refunded.
        """
        order_total = Decimal(str(order.total))
        refund_total = abs(Decimal(str(refund_amount)))

        if refund_total < order_total * FULL_REFUND_THRESHOLD:
            logger.info(
                f"Partial refund of {refund_total} on order {order.id} "
                f"(total {order_total}); commissions unchanged"
            )
            return []

        refunded = await self._transition_order_commissions(
            order.id, REFUNDABLE_STATUSES, CommissionStatus.REFUNDED.value
        )
        for commission_id in refunded:
            await safe_emit(self.events, EventType.COMMISSION_REFUNDED, {
                "commission_id": commission_id,
                "order_id": order.id,
            })
        return refunded

    async def handle_cancellation(self, order: OrderData) -> List[int]:
        """Cancel pending/approved commissions of a cancelled order."""
        cancelled = await self._transition_order_commissions(
            order.id, CANCELLABLE_STATUSES, CommissionStatus.CANCELLED.value
        )
        for commission_id in cancelled:
            await safe_emit(self.events, EventType.COMMISSION_CANCELLED, {
                "commission_id": commission_id,
                "order_id": order.id,
            })
        return cancelled

    async def _transition_order_commissions(
        self,
        order_id: int,
        from_statuses: List[str],
        new_status: str,
    ) -> List[int]:
        """Move an order's commissions to new_status, compare-and-set per row."""
        commissions = await self.get_by_order(order_id)
        changed: List[int] = []

        for commission in commissions:
            if commission.status not in from_statuses:
                continue
            validate_transition(commission.status, new_status, include_system=True)
            result = await self.db.execute(
                update(Commission)
                .where(
                    Commission.id == commission.id,
                    Commission.status == commission.status,
                )
                .values(status=new_status)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount:
                changed.append(commission.id)
                logger.info(f"Commission {commission.id} of order {order_id} marked {new_status}")
            else:
                logger.warning(f"Commission {commission.id} changed concurrently; not marked {new_status}")

        if changed:
            await self.db.commit()
        return changed

    # ========================================================================
    # Admin tooling
    # ========================================================================

    async def recalculate(self, order: OrderData, force: bool = False) -> List[int]:
        """
        Recalculate commissions for an order.

        With force, existing commissions that are not paid and not attached
        to a payout are deleted first. Lines whose commission was kept are
        skipped, the others are created again.
        """
        if force:
            result = await self.db.execute(
                delete(Commission).where(
                    Commission.order_id == order.id,
                    Commission.status != CommissionStatus.PAID.value,
                    Commission.payout_id.is_(None),
                )
            )
            await self.db.commit()
            logger.info(f"Deleted {result.rowcount} commission(s) of order {order.id} for recalculation")

        return await self.calculate_order_commissions(order, force=force)

    async def preview_order_commissions(self, order: OrderData) -> OrderCommissionPreview:
        """Show what commissions an order would produce, without writing."""
        preview = OrderCommissionPreview(order_id=order.id)
        total = Decimal("0")

        for item in order.items:
            if not item.is_product:
                continue

            vendor_id = await self.catalog.get_product_owner(item.product_id)
            category_ids = await self.catalog.get_product_categories(item.product_id)
            rule = await self.resolver.resolve(item.product_id, vendor_id, category_ids)

            line_total = Decimal(str(item.line_total))
            amount = self.calculate_commission(line_total, rule, item, order)
            if rule.calculation_method == "percentage":
                rate = f"{rule.value}%"
            else:
                rate = str(rule.value)

            preview.items.append(CommissionPreviewLine(
                item_id=item.item_id,
                product_id=item.product_id,
                product=item.name,
                vendor_id=vendor_id,
                line_total=line_total,
                rule_id=rule.id,
                rule=rule.name,
                rate=rate,
                commission=amount,
            ))
            total += amount

        preview.total = round_amount(total)
        return preview

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_by_order(self, order_id: int) -> List[Commission]:
        result = await self.db.execute(
            select(Commission)
            .where(Commission.order_id == order_id)
            .order_by(Commission.id.asc())
        )
        return list(result.scalars().all())

    async def exists_for_order_item(self, order_id: int, order_item_id: int) -> bool:
        result = await self.db.execute(
            select(Commission.id).where(
                Commission.order_id == order_id,
                Commission.order_item_id == order_item_id,
            )
        )
        return result.scalar_one_or_none() is not None
