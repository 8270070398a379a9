"""Commission status changes, state machine and reporting."""
from decimal import Decimal

import pytest
from sqlalchemy import update

from commission_engine.exceptions import (
    CommissionNotFoundError,
    InvalidStatusTransitionError,
    StaleCommissionError,
)
from commission_engine.models.commission import Commission
from commission_engine.services import commission_state_machine as sm
from commission_engine.services.commission_service import CommissionService
from commission_engine.services.event_service import EventType


@pytest.fixture
def service(session, sink):
    return CommissionService(session, events=sink)


class TestStateMachine:
    def test_allowed_transitions(self):
        assert sm.can_transition('pending', 'approved')
        assert sm.can_transition('approved', 'paid')
        assert sm.can_transition('paid', 'approved')
        assert not sm.can_transition('cancelled', 'approved')
        assert not sm.can_transition('refunded', 'pending')

    def test_terminal_states(self):
        assert sm.is_terminal('cancelled')
        assert sm.is_terminal('refunded')
        assert not sm.is_terminal('paid')

    def test_payout_moves_are_not_manual(self):
        assert 'paid' not in sm.get_allowed_transitions('approved')
        assert 'paid' in sm.get_allowed_transitions('approved', include_system=True)
        with pytest.raises(InvalidStatusTransitionError):
            sm.validate_transition('paid', 'approved')
        sm.validate_transition('paid', 'approved', include_system=True)

    def test_same_status_is_allowed(self):
        sm.validate_transition('cancelled', 'cancelled')


async def test_update_status(service, make_commission, sink):
    commission = await make_commission(vendor_id=7, amount='12.00', status='pending')

    updated = await service.update_status(commission.id, 'approved')

    assert updated.status == 'approved'
    assert sink.payloads(EventType.COMMISSION_STATUS_CHANGED) == [{
        'commission_id': commission.id,
        'old_status': 'pending',
        'new_status': 'approved',
    }]


async def test_update_status_rejects_invalid_transition(service, make_commission):
    commission = await make_commission(vendor_id=7, amount='12.00', status='cancelled')

    with pytest.raises(InvalidStatusTransitionError):
        await service.update_status(commission.id, 'approved')


async def test_manual_payment_is_rejected(service, make_commission):
    commission = await make_commission(vendor_id=7, amount='12.00', status='approved')

    with pytest.raises(InvalidStatusTransitionError):
        await service.update_status(commission.id, 'paid')


async def test_update_status_unknown_commission(service):
    with pytest.raises(CommissionNotFoundError):
        await service.update_status(404, 'approved')


async def test_update_status_detects_concurrent_change(service, make_commission, monkeypatch):
    commission = await make_commission(vendor_id=7, amount='12.00', status='pending')
    original_get = service.get_commission

    async def get_then_cancel(commission_id):
        loaded = await original_get(commission_id)
        # Another writer cancels the row after it was read
        await service.db.execute(
            update(Commission)
            .where(Commission.id == commission_id)
            .values(status='cancelled')
            .execution_options(synchronize_session=False)
        )
        return loaded

    monkeypatch.setattr(service, 'get_commission', get_then_cancel)

    with pytest.raises(StaleCommissionError):
        await service.update_status(commission.id, 'approved')


async def test_bulk_approve_only_changes_pending(service, make_commission, sink):
    pending = await make_commission(vendor_id=7, amount='10.00', status='pending')
    cancelled = await make_commission(vendor_id=7, amount='10.00', status='cancelled')
    other = await make_commission(vendor_id=8, amount='10.00', status='pending')

    count = await service.bulk_approve([pending.id, cancelled.id, other.id, pending.id])

    assert count == 2
    assert (await service.get_commission(cancelled.id)).status == 'cancelled'
    assert (await service.get_commission(other.id)).status == 'approved'
    assert EventType.COMMISSIONS_BULK_APPROVED in sink.names


async def test_bulk_approve_nothing(service):
    assert await service.bulk_approve([]) == 0


async def test_queries_and_summary(service, make_commission):
    await make_commission(vendor_id=7, amount='10.00', status='pending', order_id=1)
    await make_commission(vendor_id=7, amount='15.50', status='approved', order_id=1)
    await make_commission(vendor_id=7, amount='30.00', status='paid', order_id=2)
    await make_commission(vendor_id=8, amount='5.00', status='approved', order_id=2)

    assert len(await service.get_by_order(1)) == 2
    assert len(await service.get_by_vendor(7)) == 3
    assert len(await service.get_by_vendor(7, status='approved')) == 1

    items, total = await service.list_commissions(status='approved', per_page=1)
    assert total == 2
    assert len(items) == 1

    summary = await service.summary()
    assert summary.total_count == 4
    assert summary.total_amount == Decimal('60.50')
    assert summary.by_status['approved'].count == 2
    assert summary.by_status['approved'].amount == Decimal('20.50')
    assert summary.by_status['refunded'].count == 0

    balance = await service.vendor_balance(7)
    assert balance.pending_amount == Decimal('10.00')
    assert balance.approved_amount == Decimal('15.50')
    assert balance.paid_amount == Decimal('30.00')
