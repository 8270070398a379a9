"""Rule resolution and commission arithmetic."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from commission_engine.exceptions import RuleConfigurationError
from commission_engine.services.rule_engine import (
    DefaultRule,
    ResolvedRule,
    RuleResolver,
    calculate_commission,
    effective_priority,
    round_amount,
)


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver(session, settings):
    return RuleResolver(session, settings)


async def test_no_rules_falls_back_to_default(resolver):
    rule = await resolver.resolve(101, 7, [5], now=NOW)

    assert isinstance(rule, DefaultRule)
    assert rule.is_default
    assert rule.id is None
    assert rule.value == Decimal('10')
    assert rule.rule_type == 'global'
    assert round_amount(calculate_commission(Decimal('200.00'), rule)) == Decimal('20.00')


async def test_rule_type_dominates_priority(resolver, make_rule):
    await make_rule(name='Vendor', rule_type='vendor', target_id=7, priority=999, value=Decimal('20'))
    await make_rule(name='Product', rule_type='product', target_id=101, priority=0, value=Decimal('5'))
    await make_rule(name='Global', rule_type='global', priority=500, value=Decimal('12'))

    rule = await resolver.resolve(101, 7, [5], now=NOW)

    assert isinstance(rule, ResolvedRule)
    assert rule.name == 'Product'


async def test_category_rule_beats_global(resolver, make_rule):
    await make_rule(name='Global', rule_type='global', priority=900)
    await make_rule(name='Category 6', rule_type='category', target_id=6, priority=1, value=Decimal('8'))

    rule = await resolver.resolve(102, 7, [5, 6], now=NOW)

    assert rule.name == 'Category 6'
    assert rule.value == Decimal('8')


async def test_rules_for_other_targets_are_ignored(resolver, make_rule):
    await make_rule(name='Other product', rule_type='product', target_id=999)
    await make_rule(name='Other vendor', rule_type='vendor', target_id=999)

    rule = await resolver.resolve(101, 7, [5], now=NOW)

    assert rule.is_default


async def test_higher_priority_wins_within_type(resolver, make_rule):
    await make_rule(name='Low', rule_type='vendor', target_id=7, priority=5)
    await make_rule(name='High', rule_type='vendor', target_id=7, priority=50)

    rule = await resolver.resolve(101, 7, [], now=NOW)

    assert rule.name == 'High'


async def test_equal_priority_newer_rule_wins(resolver, make_rule):
    await make_rule(name='Newer', rule_type='vendor', target_id=7, created_at=datetime(2026, 3, 1, tzinfo=timezone.utc))
    await make_rule(name='Older', rule_type='vendor', target_id=7, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))

    rule = await resolver.resolve(101, 7, [], now=NOW)

    assert rule.name == 'Newer'


async def test_inactive_and_out_of_window_rules_excluded(resolver, make_rule):
    await make_rule(name='Inactive', rule_type='product', target_id=101, status='inactive')
    await make_rule(name='Expired', rule_type='product', target_id=101, end_date=NOW - timedelta(days=1))
    await make_rule(name='Future', rule_type='product', target_id=101, start_date=NOW + timedelta(days=1))
    await make_rule(name='Current', rule_type='vendor', target_id=7,
                    start_date=NOW - timedelta(days=1), end_date=NOW + timedelta(days=1))

    rule = await resolver.resolve(101, 7, [], now=NOW)

    assert rule.name == 'Current'


async def test_vendor_rules_skipped_without_vendor(resolver, make_rule):
    await make_rule(name='Vendor', rule_type='vendor', target_id=7)

    rule = await resolver.resolve(101, None, [], now=NOW)

    assert rule.is_default


async def test_targeted_rule_without_target_is_a_configuration_error(resolver, make_rule):
    broken = await make_rule(name='Broken', rule_type='vendor', target_id=None)

    with pytest.raises(RuleConfigurationError) as exc_info:
        await resolver.resolve(101, 7, [], now=NOW)

    assert exc_info.value.rule_id == broken.id


def test_effective_priority():
    assert effective_priority('product', 0) > effective_priority('vendor', 999)
    assert effective_priority('vendor', 0) > effective_priority('category', 999)
    assert effective_priority('category', 0) > effective_priority('global', 999)
    assert effective_priority('global', 10) == 1010


def test_calculate_commission_methods():
    percentage = ResolvedRule(id=1, name='p', rule_type='global', calculation_method='percentage',
                              value=Decimal('12.5'), priority=10)
    fixed = ResolvedRule(id=2, name='f', rule_type='global', calculation_method='fixed',
                         value=Decimal('5.00'), priority=10)

    assert calculate_commission(Decimal('80'), percentage) == Decimal('10')
    assert calculate_commission(Decimal('80'), fixed) == Decimal('5.00')
    assert calculate_commission(Decimal('1'), fixed) == Decimal('5.00')


def test_round_amount_half_up():
    assert round_amount(Decimal('0.125')) == Decimal('0.13')
    assert round_amount(Decimal('3.3333')) == Decimal('3.33')


async def test_preview(resolver, make_rule, catalog):
    await make_rule(name='Vendor 7', rule_type='vendor', target_id=7, value=Decimal('15'))

    preview = await resolver.preview(101, Decimal('40.00'), catalog)

    assert preview.vendor_id == 7
    assert preview.rule_name == 'Vendor 7'
    assert preview.commission_amount == Decimal('6.00')


async def test_vendor_rule_beats_category_and_global(resolver, make_rule):
    await make_rule(name='Global', rule_type='global', value=Decimal('10'), priority=10)
    await make_rule(name='Electronics', rule_type='category', target_id=5, value=Decimal('15'), priority=15)
    vendor = await make_rule(name='Vendor 7', rule_type='vendor', target_id=7, value=Decimal('12'), priority=12)

    rule = await resolver.resolve(101, 7, [5], now=NOW)
    assert rule.id == vendor.id
    assert round_amount(calculate_commission(Decimal('100.00'), rule)) == Decimal('12.00')

    vendor.status = 'inactive'
    await resolver.db.commit()

    rule = await resolver.resolve(101, 7, [5], now=NOW)
    assert rule.name == 'Electronics'
    assert round_amount(calculate_commission(Decimal('100.00'), rule)) == Decimal('15.00')
