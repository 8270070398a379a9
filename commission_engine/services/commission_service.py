"""
Commission Service

Status management and reporting over stored commissions. Every status
change is validated against the commission state machine and written as a
compare-and-set update, so a concurrent change is detected instead of
overwritten.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.exceptions import CommissionNotFoundError, StaleCommissionError
from commission_engine.models.commission import Commission, CommissionStatus
from commission_engine.schemas.commission import CommissionSummary, StatusTotals, VendorBalance
from commission_engine.services.commission_state_machine import validate_transition
from commission_engine.services.event_service import EventSink, EventType, LoggingEventSink, safe_emit
from commission_engine.services.rule_engine import round_amount

logger = logging.getLogger(__name__)


def to_decimal(value) -> Decimal:
    """SUM() comes back as float on SQLite and Decimal on PostgreSQL."""
    return round_amount(Decimal(str(value or 0)))


class CommissionService:
    """
    Service for commission status changes and queries.

    Usage:
        service = CommissionService(db, events=sink)
        await service.update_status(commission_id, "approved")
    """

    def __init__(self, db: AsyncSession, events: Optional[EventSink] = None):
        self.db = db
        self.events = events or LoggingEventSink()

    async def get_commission(self, commission_id: int) -> Commission:
        result = await self.db.execute(
            select(Commission).where(Commission.id == commission_id)
        )
        commission = result.scalar_one_or_none()
        if commission is None:
            raise CommissionNotFoundError(commission_id)
        return commission

    # ========================================================================
    # Status changes
    # ========================================================================

    async def update_status(self, commission_id: int, new_status: str) -> Commission:
        """
        Manually change a commission's status.

        Raises:
            CommissionNotFoundError: unknown id.
            InvalidStatusTransitionError: the move is not allowed manually.
            StaleCommissionError: the status changed since it was read.
        """
        new_status = CommissionStatus(new_status).value
        commission = await self.get_commission(commission_id)
        old_status = commission.status

        validate_transition(old_status, new_status)
        if old_status == new_status:
            return commission

        result = await self.db.execute(
            update(Commission)
            .where(Commission.id == commission_id, Commission.status == old_status)
            .values(status=new_status)
            .execution_options(synchronize_session="fetch")
        )
        if not result.rowcount:
            await self.db.rollback()
            raise StaleCommissionError(commission_id, old_status)

        await self.db.commit()
        await self.db.refresh(commission)

        logger.info(f"Commission {commission_id} status changed: {old_status} -> {new_status}")
        await safe_emit(self.events, EventType.COMMISSION_STATUS_CHANGED, {
            "commission_id": commission_id,
            "old_status": old_status,
            "new_status": new_status,
        })
        return commission

    async def bulk_approve(self, commission_ids: Sequence[int]) -> int:
        """Approve the pending commissions among the given ids. Returns how many changed."""
        ids = list(dict.fromkeys(commission_ids))
        if not ids:
            return 0

        result = await self.db.execute(
            update(Commission)
            .where(
                Commission.id.in_(ids),
                Commission.status == CommissionStatus.PENDING.value,
            )
            .values(status=CommissionStatus.APPROVED.value)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()

        approved = result.rowcount or 0
        logger.info(f"Bulk approved {approved} of {len(ids)} commission(s)")
        if approved:
            await safe_emit(self.events, EventType.COMMISSIONS_BULK_APPROVED, {
                "commission_ids": ids,
                "count": approved,
            })
        return approved

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

    async def get_by_vendor(self, vendor_id: int, status: Optional[str] = None) -> List[Commission]:
        query = select(Commission).where(Commission.vendor_id == vendor_id)
        if status:
            query = query.where(Commission.status == status)
        result = await self.db.execute(query.order_by(Commission.created_at.desc(), Commission.id.desc()))
        return list(result.scalars().all())

    async def list_commissions(
        self,
        status: Optional[str] = None,
        vendor_id: Optional[int] = None,
        order_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Commission], int]:
        """List commissions with filters and pagination. Returns (items, total)."""
        filters = []
        if status:
            filters.append(Commission.status == status)
        if vendor_id:
            filters.append(Commission.vendor_id == vendor_id)
        if order_id:
            filters.append(Commission.order_id == order_id)

        count_query = select(func.count(Commission.id)).where(*filters)
        total = (await self.db.execute(count_query)).scalar() or 0

        page = max(page, 1)
        query = (
            select(Commission)
            .where(*filters)
            .order_by(Commission.created_at.desc(), Commission.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def summary(self, vendor_id: Optional[int] = None) -> CommissionSummary:
        """Counts and amounts grouped by status, optionally for one vendor."""
        query = select(
            Commission.status,
            func.count(Commission.id),
            func.coalesce(func.sum(Commission.commission_amount), 0),
        ).group_by(Commission.status)
        if vendor_id:
            query = query.where(Commission.vendor_id == vendor_id)

        result = await self.db.execute(query)

        by_status: Dict[str, StatusTotals] = {s.value: StatusTotals() for s in CommissionStatus}
        summary = CommissionSummary(by_status=by_status)
        for status, count, amount in result.all():
            amount = to_decimal(amount)
            summary.by_status[status] = StatusTotals(count=count, amount=amount)
            summary.total_count += count
            summary.total_amount += amount
        return summary

    async def vendor_balance(self, vendor_id: int) -> VendorBalance:
        """Pending, approved and paid totals of a vendor."""
        summary = await self.summary(vendor_id=vendor_id)
        return VendorBalance(
            vendor_id=vendor_id,
            pending_amount=summary.by_status[CommissionStatus.PENDING.value].amount,
            approved_amount=summary.by_status[CommissionStatus.APPROVED.value].amount,
            paid_amount=summary.by_status[CommissionStatus.PAID.value].amount,
        )
