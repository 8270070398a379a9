"""
Payout Aggregator

Groups a vendor's approved commissions into a payout and moves the money
through the transfer provider.

Payout lifecycle:
    processing -> completed   transfer succeeded, commissions become paid
    processing -> failed      transfer failed or timed out, commissions are
                              released back to approved
    completed  -> failed      provider later reports the transfer failed

Commissions are claimed for a payout by setting payout_id while they are
still approved and unclaimed, in the same transaction that creates the
payout row. A retry after a failure always creates a new payout.
"""

import asyncio
import logging
import weakref
from decimal import Decimal
from typing import List, Optional, Tuple, Union

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.config import Settings, get_settings
from commission_engine.models.commission import (
    Commission,
    CommissionStatus,
    Payout,
    PayoutStatus,
    utcnow,
)
from commission_engine.schemas.commission import (
    PayoutDecline,
    PayoutDeclineReason,
    PayoutResult,
    PayoutSummary,
    ScheduledPayoutResult,
    StatusTotals,
    VendorPayoutCandidate,
)
from commission_engine.services.commission_state_machine import validate_transition
from commission_engine.services.commission_service import to_decimal
from commission_engine.services.event_service import EventSink, EventType, LoggingEventSink, safe_emit
from commission_engine.services.rule_engine import round_amount
from commission_engine.services.transfer_service import (
    TransferOutcome,
    TransferProvider,
    TransferResult,
)

logger = logging.getLogger(__name__)


# One in-flight payout per vendor within this process. A lock is dropped
# once no payout holds or waits on it.
_vendor_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def vendor_lock(vendor_id: int) -> asyncio.Lock:
    lock = _vendor_locks.get(vendor_id)
    if lock is None:
        lock = asyncio.Lock()
        _vendor_locks[vendor_id] = lock
    return lock


def payout_key(payout_id: int) -> str:
    """Idempotency key and transfer group of a payout."""
    return f"payout_{payout_id}"


class PayoutAggregator:
    """
    Service for vendor payouts.

    Usage:
        aggregator = PayoutAggregator(db, transfers, events=sink)
        outcome = await aggregator.process_vendor_payout(vendor_id)
        if outcome.succeeded:
            ...
    """

    def __init__(
        self,
        db: AsyncSession,
        transfers: TransferProvider,
        events: Optional[EventSink] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.transfers = transfers
        self.settings = config or get_settings()
        self.events = events or LoggingEventSink()

    # ========================================================================
    # Aggregation
    # ========================================================================

    async def vendors_ready_for_payout(
        self,
        minimum_amount: Optional[Decimal] = None,
    ) -> List[VendorPayoutCandidate]:
        """Vendors whose unclaimed approved commissions reach the minimum, largest first."""
        if minimum_amount is None:
            minimum_amount = self.settings.MINIMUM_PAYOUT

        total = func.sum(Commission.commission_amount)
        result = await self.db.execute(
            select(Commission.vendor_id, total, func.count(Commission.id))
            .where(
                Commission.status == CommissionStatus.APPROVED.value,
                Commission.payout_id.is_(None),
            )
            .group_by(Commission.vendor_id)
            .having(total >= minimum_amount)
            .order_by(total.desc())
        )

        return [
            VendorPayoutCandidate(
                vendor_id=vendor_id,
                total_amount=to_decimal(amount),
                commission_count=count,
            )
            for vendor_id, amount, count in result.all()
        ]

    def calculate_fees(self, gross: Decimal) -> Tuple[Decimal, Decimal]:
        """
        Split a gross payout into (fee, net).

        platform: the platform absorbs transfer fees, fee is 0.
        vendor: PLATFORM_FEE_PERCENT of the gross is deducted.
        """
        gross = round_amount(gross)
        if self.settings.PAYOUT_FEE_HANDLING == "vendor":
            fee = round_amount(gross * Decimal(str(self.settings.PLATFORM_FEE_PERCENT)) / Decimal("100"))
        else:
            fee = Decimal("0.00")
        return fee, gross - fee

    async def _claimable_commissions(self, vendor_id: int) -> List[Commission]:
        result = await self.db.execute(
            select(Commission)
            .where(
                Commission.vendor_id == vendor_id,
                Commission.status == CommissionStatus.APPROVED.value,
                Commission.payout_id.is_(None),
            )
            .order_by(Commission.id.asc())
        )
        return list(result.scalars().all())

    # ========================================================================
    # Payout processing
    # ========================================================================

    async def process_vendor_payout(self, vendor_id: int) -> Union[PayoutResult, PayoutDecline]:
        """
        Pay out all approved commissions of a vendor.

        Returns a PayoutDecline when the vendor has no connected account, no
        approved commissions or a total below MINIMUM_PAYOUT. Otherwise the
        payout is attempted and a PayoutResult describes how it ended.
        """
        async with vendor_lock(vendor_id):
            return await self._process_vendor_payout(vendor_id)

    async def _process_vendor_payout(self, vendor_id: int) -> Union[PayoutResult, PayoutDecline]:
        if not await self.transfers.is_destination_connected(vendor_id):
            logger.info(f"Vendor {vendor_id} has no connected account; payout declined")
            return PayoutDecline(vendor_id=vendor_id, reason=PayoutDeclineReason.NOT_CONNECTED)
        destination = await self.transfers.get_destination(vendor_id)

        commissions = await self._claimable_commissions(vendor_id)
        if not commissions:
            logger.info(f"No approved commissions for vendor {vendor_id}")
            return PayoutDecline(vendor_id=vendor_id, reason=PayoutDeclineReason.NO_COMMISSIONS)

        gross = round_amount(sum((Decimal(str(c.commission_amount)) for c in commissions), Decimal("0")))
        minimum = Decimal(str(self.settings.MINIMUM_PAYOUT))
        if gross < minimum:
            logger.info(f"Vendor {vendor_id} balance {gross} is below minimum payout {minimum}")
            return PayoutDecline(
                vendor_id=vendor_id,
                reason=PayoutDeclineReason.BELOW_MINIMUM,
                amount=gross,
                minimum=minimum,
            )

        fee, net = self.calculate_fees(gross)
        commission_ids = [c.id for c in commissions]

        # Create the payout and claim its commissions in one transaction
        payout = Payout(
            vendor_id=vendor_id,
            amount=gross,
            fee_amount=fee,
            net_amount=net,
            currency=self.settings.CURRENCY,
            status=PayoutStatus.PROCESSING.value,
        )
        self.db.add(payout)
        await self.db.flush()

        claim = await self.db.execute(
            update(Commission)
            .where(
                Commission.id.in_(commission_ids),
                Commission.status == CommissionStatus.APPROVED.value,
                Commission.payout_id.is_(None),
            )
            .values(payout_id=payout.id)
            .execution_options(synchronize_session="fetch")
        )
        if claim.rowcount != len(commission_ids):
            await self.db.rollback()
            logger.warning(
                f"Commissions of vendor {vendor_id} changed while claiming "
                f"({claim.rowcount}/{len(commission_ids)}); payout abandoned"
            )
            return PayoutDecline(vendor_id=vendor_id, reason=PayoutDeclineReason.NO_COMMISSIONS)

        metadata = {
            "payout_id": payout.id,
            "vendor_id": vendor_id,
            "commission_ids": commission_ids,
        }
        payout.transfer_metadata = metadata
        await self.db.commit()

        logger.info(
            f"Payout {payout.id} for vendor {vendor_id}: gross {gross}, fee {fee}, "
            f"net {net} ({len(commission_ids)} commissions)"
        )

        try:
            transfer = await self.transfers.create_transfer(
                destination=destination,
                amount=net,
                currency=payout.currency,
                metadata=metadata,
                idempotency_key=payout_key(payout.id),
            )
        except Exception as e:
            logger.exception(f"Transfer for payout {payout.id} raised: {e}")
            transfer = TransferResult(outcome=TransferOutcome.FAILED, error_message=str(e))

        if transfer.succeeded:
            await self._complete_payout(payout, transfer.reference)
        else:
            message = transfer.error_message or f"Transfer {transfer.outcome.value}"
            await self._fail_payout(payout, message)

        return PayoutResult(
            payout_id=payout.id,
            vendor_id=vendor_id,
            status=PayoutStatus(payout.status),
            amount=gross,
            fee_amount=fee,
            net_amount=net,
            currency=payout.currency,
            commission_ids=commission_ids,
            transfer_reference=payout.transfer_reference,
            error_message=payout.error_message,
        )

    async def _complete_payout(self, payout: Payout, reference: Optional[str]) -> None:
        payout.status = PayoutStatus.COMPLETED.value
        payout.transfer_reference = reference
        payout.processed_at = utcnow()

        validate_transition(CommissionStatus.APPROVED.value, CommissionStatus.PAID.value, include_system=True)
        await self.db.execute(
            update(Commission)
            .where(
                Commission.payout_id == payout.id,
                Commission.status == CommissionStatus.APPROVED.value,
            )
            .values(status=CommissionStatus.PAID.value)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.commit()

        logger.info(f"Payout {payout.id} completed (transfer {reference})")
        await safe_emit(self.events, EventType.PAYOUT_COMPLETED, {
            "payout_id": payout.id,
            "vendor_id": payout.vendor_id,
            "amount": str(payout.net_amount),
            "transfer_reference": reference,
        })

    async def _fail_payout(self, payout: Payout, message: str) -> None:
        payout.status = PayoutStatus.FAILED.value
        payout.error_message = message
        payout.processed_at = utcnow()

        released = await self._release_commissions(payout.id, CommissionStatus.APPROVED.value)
        await self.db.commit()

        logger.error(f"Payout {payout.id} failed: {message}; {released} commission(s) released")
        await safe_emit(self.events, EventType.PAYOUT_FAILED, {
            "payout_id": payout.id,
            "vendor_id": payout.vendor_id,
            "error": message,
        })

    async def _release_commissions(self, payout_id: int, from_status: str) -> int:
        """Return a payout's commissions to approved and unclaimed."""
        validate_transition(from_status, CommissionStatus.APPROVED.value, include_system=True)
        result = await self.db.execute(
            update(Commission)
            .where(
                Commission.payout_id == payout_id,
                Commission.status == from_status,
            )
            .values(status=CommissionStatus.APPROVED.value, payout_id=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def process_all_scheduled_payouts(self) -> ScheduledPayoutResult:
        """
        Pay out every vendor at or above the minimum.

        Vendors without a connected account are skipped. A decline or an
        error for one vendor counts as failed and the batch continues.
        """
        summary = ScheduledPayoutResult()
        candidates = await self.vendors_ready_for_payout(self.settings.MINIMUM_PAYOUT)
        logger.info(f"Scheduled payouts: {len(candidates)} vendor(s) eligible")

        for candidate in candidates:
            vendor_id = candidate.vendor_id
            if not await self.transfers.is_destination_connected(vendor_id):
                summary.skipped += 1
                continue

            try:
                outcome = await self.process_vendor_payout(vendor_id)
            except Exception as e:
                logger.exception(f"Scheduled payout for vendor {vendor_id} failed: {e}")
                await self.db.rollback()
                summary.failed += 1
                continue

            if outcome.succeeded:
                summary.processed += 1
            else:
                summary.failed += 1

        logger.info(
            f"Scheduled payouts finished: {summary.processed} processed, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    # ========================================================================
    # Transfer notifications
    # ========================================================================

    async def get_by_reference(self, reference: str) -> Optional[Payout]:
        result = await self.db.execute(
            select(Payout).where(Payout.transfer_reference == reference)
        )
        return result.scalar_one_or_none()

    async def handle_transfer_failed(self, reference: str, message: str = "") -> Optional[Payout]:
        """
        The provider reports a transfer failed after it was accepted.

        The payout becomes failed and its paid commissions return to
        approved, unclaimed, so the next run can pay them again.
        """
        payout = await self.get_by_reference(reference)
        if payout is None:
            logger.warning(f"Transfer failure for unknown reference {reference}; ignored")
            return None
        if payout.status == PayoutStatus.FAILED.value:
            return payout

        payout.status = PayoutStatus.FAILED.value
        payout.error_message = message or "Transfer failed"

        released = await self._release_commissions(payout.id, CommissionStatus.PAID.value)
        released += await self._release_commissions(payout.id, CommissionStatus.APPROVED.value)
        await self.db.commit()

        logger.warning(f"Payout {payout.id} reversed ({reference}): {released} commission(s) released")
        await safe_emit(self.events, EventType.PAYOUT_REVERSED, {
            "payout_id": payout.id,
            "vendor_id": payout.vendor_id,
            "transfer_reference": reference,
            "error": payout.error_message,
        })
        return payout

    async def handle_transfer_paid(self, reference: str) -> Optional[Payout]:
        """The provider confirms a transfer; a processing payout becomes completed."""
        payout = await self.get_by_reference(reference)
        if payout is None:
            logger.warning(f"Transfer confirmation for unknown reference {reference}; ignored")
            return None
        if payout.status != PayoutStatus.PROCESSING.value:
            return payout

        await self._complete_payout(payout, reference)
        return payout

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_payouts(
        self,
        vendor_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[Payout], int]:
        filters = []
        if vendor_id:
            filters.append(Payout.vendor_id == vendor_id)
        if status:
            filters.append(Payout.status == status)

        total = (await self.db.execute(
            select(func.count(Payout.id)).where(*filters)
        )).scalar() or 0

        page = max(page, 1)
        result = await self.db.execute(
            select(Payout)
            .where(*filters)
            .order_by(Payout.created_at.desc(), Payout.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def payout_summary(self, vendor_id: Optional[int] = None) -> PayoutSummary:
        query = select(
            Payout.status,
            func.count(Payout.id),
            func.coalesce(func.sum(Payout.net_amount), 0),
        ).group_by(Payout.status)
        if vendor_id:
            query = query.where(Payout.vendor_id == vendor_id)

        result = await self.db.execute(query)

        summary = PayoutSummary(by_status={s.value: StatusTotals() for s in PayoutStatus})
        for status, count, amount in result.all():
            amount = to_decimal(amount)
            summary.by_status[status] = StatusTotals(count=count, amount=amount)
            summary.total_count += count
            summary.total_amount += amount
        return summary
