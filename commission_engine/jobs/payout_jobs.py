"""
Payout Jobs

Background job paying out every vendor whose approved commissions reach
the minimum payout.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from commission_engine.config import Settings, get_settings
from commission_engine.schemas.commission import ScheduledPayoutResult
from commission_engine.services.event_service import EventSink
from commission_engine.services.transfer_service import TransferProvider

logger = logging.getLogger(__name__)


async def run_scheduled_payouts(
    transfers: TransferProvider,
    events: Optional[EventSink] = None,
    config: Optional[Settings] = None,
) -> Optional[ScheduledPayoutResult]:
    """
    Process all scheduled payouts in one session.

    Runs daily or weekly depending on AUTO_PAYOUT_SCHEDULE:
    1. Find vendors with approved commissions at or above MINIMUM_PAYOUT
    2. Skip vendors without a connected account
    3. Create a payout and transfer funds for each remaining vendor
    """
    logger.info("Starting scheduled payouts...")
    start_time = datetime.now(timezone.utc)

    try:
        from commission_engine.database import get_db_session
        from commission_engine.services.payout_service import PayoutAggregator

        async with get_db_session() as session:
            aggregator = PayoutAggregator(session, transfers, events=events, config=config or get_settings())
            result = await aggregator.process_all_scheduled_payouts()

        duration = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(
            f"Scheduled payouts completed in {duration:.2f}s: "
            f"{result.processed} processed, {result.failed} failed, {result.skipped} skipped"
        )
        return result

    except Exception as e:
        logger.error(f"Scheduled payouts failed: {e}")
        return None
