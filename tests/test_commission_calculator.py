"""Per-order commission creation, refunds and cancellations."""
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from commission_engine.models.commission import Commission
from commission_engine.schemas.commission import OrderData, OrderLineItem
from commission_engine.services.commission_calculator import CommissionCalculator
from commission_engine.services.event_service import EventType


def make_order(order_id=1, total='250.00', items=None):
    if items is None:
        items = [
            OrderLineItem(item_id=11, product_id=101, name='Lamp', line_total=Decimal('200.00')),
            OrderLineItem(item_id=12, product_id=201, name='Rug', line_total=Decimal('40.00')),
            OrderLineItem(item_id=13, product_id=0, name='Shipping', line_total=Decimal('10.00'), is_product=False),
        ]
    return OrderData(id=order_id, total=Decimal(total), status='completed', items=items)


@pytest.fixture
def calculator(session, catalog, sink, settings):
    return CommissionCalculator(session, catalog, events=sink, config=settings)


async def count_commissions(session, order_id):
    return (await session.execute(
        select(func.count(Commission.id)).where(Commission.order_id == order_id)
    )).scalar()


async def test_creates_one_commission_per_product_line(calculator, session):
    ids = await calculator.calculate_order_commissions(make_order())

    assert len(ids) == 2
    commissions = await calculator.get_by_order(1)
    by_item = {c.order_item_id: c for c in commissions}
    assert by_item[11].commission_amount == Decimal('20.00')
    assert by_item[11].vendor_id == 7
    assert by_item[11].status == 'pending'
    assert by_item[12].commission_amount == Decimal('4.00')
    assert 13 not in by_item


async def test_default_rule_leaves_rule_fields_empty(calculator):
    await calculator.calculate_order_commissions(make_order())

    for commission in await calculator.get_by_order(1):
        assert commission.rule_id is None
        assert commission.commission_rate is None


async def test_applied_rule_is_recorded(calculator, make_rule):
    rule = await make_rule(name='Vendor 7', rule_type='vendor', target_id=7, value=Decimal('15'))

    await calculator.calculate_order_commissions(make_order())

    lamp = [c for c in await calculator.get_by_order(1) if c.order_item_id == 11][0]
    assert lamp.rule_id == rule.id
    assert lamp.commission_rate == Decimal('15')
    assert lamp.commission_amount == Decimal('30.00')


async def test_fixed_rule(calculator, make_rule):
    await make_rule(name='Flat', rule_type='global', calculation_method='fixed', value=Decimal('5.00'))

    await calculator.calculate_order_commissions(make_order())

    amounts = sorted(c.commission_amount for c in await calculator.get_by_order(1))
    assert amounts == [Decimal('5.00'), Decimal('5.00')]


async def test_calculation_is_idempotent(calculator, session, sink):
    first = await calculator.calculate_order_commissions(make_order())
    second = await calculator.calculate_order_commissions(make_order())

    assert len(first) == 2
    assert second == []
    assert await count_commissions(session, 1) == 2
    assert sink.names.count(EventType.COMMISSIONS_CALCULATED) == 1
    assert sink.names.count(EventType.COMMISSION_CREATED) == 2


async def test_line_without_vendor_is_skipped(calculator, session):
    order = make_order(items=[
        OrderLineItem(item_id=21, product_id=999, line_total=Decimal('50.00')),
        OrderLineItem(item_id=22, product_id=101, line_total=Decimal('50.00')),
    ])

    ids = await calculator.calculate_order_commissions(order)

    assert len(ids) == 1
    assert (await calculator.get_by_order(1))[0].order_item_id == 22


async def test_zero_commission_is_not_stored(calculator, make_rule, session):
    await make_rule(name='Free', rule_type='vendor', target_id=8, value=Decimal('0'))

    await calculator.calculate_order_commissions(make_order())

    items = [c.order_item_id for c in await calculator.get_by_order(1)]
    assert items == [11]


async def test_forced_run_skips_existing_lines(calculator, session):
    await calculator.calculate_order_commissions(make_order())

    ids = await calculator.calculate_order_commissions(make_order(), force=True)

    assert ids == []
    assert await count_commissions(session, 1) == 2


async def test_adjuster_runs_before_rounding(session, catalog, settings):
    def halve(amount, item, rule, order):
        return amount / 2

    calculator = CommissionCalculator(session, catalog, adjuster=halve, config=settings)

    assert calculator.calculate_commission(Decimal('0.25'), calculator.resolver.default_rule()) == Decimal('0.01')

    await calculator.calculate_order_commissions(make_order())
    lamp = [c for c in await calculator.get_by_order(1) if c.order_item_id == 11][0]
    assert lamp.commission_amount == Decimal('10.00')


async def test_near_full_refund_marks_commissions_refunded(calculator, sink):
    order = make_order()
    await calculator.calculate_order_commissions(order)

    refunded = await calculator.handle_refund(order, Decimal('-237.50'))

    assert len(refunded) == 2
    assert {c.status for c in await calculator.get_by_order(1)} == {'refunded'}
    assert sink.names.count(EventType.COMMISSION_REFUNDED) == 2


async def test_partial_refund_leaves_commissions(calculator):
    order = make_order()
    await calculator.calculate_order_commissions(order)

    refunded = await calculator.handle_refund(order, Decimal('125.00'))

    assert refunded == []
    assert {c.status for c in await calculator.get_by_order(1)} == {'pending'}


async def test_refund_does_not_touch_paid_commissions(calculator, session):
    order = make_order()
    await calculator.calculate_order_commissions(order)
    lamp = [c for c in await calculator.get_by_order(1) if c.order_item_id == 11][0]
    lamp.status = 'paid'
    await session.commit()

    refunded = await calculator.handle_refund(order, Decimal('250.00'))

    assert len(refunded) == 1
    statuses = {c.order_item_id: c.status for c in await calculator.get_by_order(1)}
    assert statuses == {11: 'paid', 12: 'refunded'}


async def test_cancellation(calculator, session, sink):
    order = make_order()
    await calculator.calculate_order_commissions(order)
    rug = [c for c in await calculator.get_by_order(1) if c.order_item_id == 12][0]
    rug.status = 'approved'
    await session.commit()

    cancelled = await calculator.handle_cancellation(order)

    assert len(cancelled) == 2
    assert {c.status for c in await calculator.get_by_order(1)} == {'cancelled'}
    assert sink.names.count(EventType.COMMISSION_CANCELLED) == 2


async def test_order_status_change_dispatch(calculator):
    order = make_order()

    assert await calculator.handle_order_status_change(order, 'processing') == []
    assert len(await calculator.handle_order_status_change(order, 'completed')) == 2
    assert await calculator.handle_order_status_change(order, 'completed') == []
    assert len(await calculator.handle_order_status_change(order, 'cancelled')) == 2


async def test_recalculate_with_force_applies_new_rules(calculator, make_rule):
    order = make_order()
    await calculator.calculate_order_commissions(order)
    await make_rule(name='Product 101', rule_type='product', target_id=101, value=Decimal('25'))

    assert await calculator.recalculate(order) == []

    ids = await calculator.recalculate(order, force=True)

    assert len(ids) == 2
    lamp = [c for c in await calculator.get_by_order(1) if c.order_item_id == 11][0]
    assert lamp.commission_amount == Decimal('50.00')


async def test_recalculate_keeps_paid_lines_and_recreates_the_rest(calculator, session, make_rule):
    order = make_order()
    await calculator.calculate_order_commissions(order)
    lamp = [c for c in await calculator.get_by_order(1) if c.order_item_id == 11][0]
    lamp.status = 'paid'
    await session.commit()
    await make_rule(name='Vendor 8', rule_type='vendor', target_id=8, value=Decimal('20'))

    ids = await calculator.recalculate(order, force=True)

    assert len(ids) == 1
    by_item = {c.order_item_id: c for c in await calculator.get_by_order(1)}
    assert set(by_item) == {11, 12}
    assert by_item[11].status == 'paid'
    assert by_item[11].commission_amount == Decimal('20.00')
    assert by_item[12].status == 'pending'
    assert by_item[12].commission_amount == Decimal('8.00')


async def test_preview_does_not_write(calculator, session):
    preview = await calculator.preview_order_commissions(make_order())

    assert [line.item_id for line in preview.items] == [11, 12]
    assert preview.items[0].rate == '10%'
    assert preview.total == Decimal('24.00')
    assert await count_commissions(session, 1) == 0
