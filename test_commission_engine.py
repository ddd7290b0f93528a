"""
test_commission_engine.py
=========================
Unit tests for commission rule resolution, aggregation, recalculation
diffs and the audit summary.
"""

import pytest

from commission_engine import (
    NO_COMMISSION, aggregate_order_commission, build_recalculation, calculate_item_commission,
    effective_rules, link_default_rule, resolve_commission_rule, snapshot, summarize_audit_logs,
)
from coupon_engine import allocate_coupon_discount, no_coupon_allocation
from schemas import (
    CartItem, CommissionBasis, CommissionRule, CommissionSource, Coupon, EarningSnapshot,
)


def make_cart():
    return [
        CartItem(product_id="prod-1", product_name="Produto A", price=100, quantity=2, category="categoria1"),
        CartItem(
            product_id="prod-2", product_name="Produto B", price=50, quantity=1, category="categoria2",
            addons=[{"name": "Extra", "price": 10, "quantity": 1}],
        ),
        CartItem(
            product_id="prod-3", product_name="Produto C", price=200, promotional_price=150, quantity=1,
            category="categoria1",
        ),
    ]


def make_rules(with_default=True):
    rules = [
        CommissionRule(id=1, applies_to="product", product_id="prod-1", commission_type="percentage", commission_value=20),
        CommissionRule(id=2, applies_to="category", category_name="categoria1", commission_type="percentage", commission_value=15),
    ]
    if with_default:
        rules.append(CommissionRule(id=3, applies_to="default", commission_type="percentage", commission_value=10))
    return rules


TEN_PERCENT = Coupon(id=1, code="TEST10", discount_type="percentage", discount_value=10, applies_to="all")


# ══════════════════════════════════════════════
#  Resolver
# ══════════════════════════════════════════════

class TestResolveCommissionRule:

    def test_product_rule_wins(self):
        resolved = resolve_commission_rule(make_cart()[0], make_rules())
        assert resolved.source == CommissionSource.specific_product
        assert resolved.commission_value == 20
        assert resolved.rule_id == 1

    def test_category_rule(self):
        resolved = resolve_commission_rule(make_cart()[2], make_rules())
        assert resolved.source == CommissionSource.specific_category
        assert resolved.commission_value == 15

    def test_category_match_is_case_insensitive(self):
        item = CartItem(product_id="x", price=10, quantity=1, category=" CATEGORIA1")
        assert resolve_commission_rule(item, make_rules()).source == CommissionSource.specific_category

    def test_default_rule(self):
        resolved = resolve_commission_rule(make_cart()[1], make_rules())
        assert resolved.source == CommissionSource.default
        assert resolved.commission_value == 10

    def test_no_rule_is_zero_commission(self):
        assert resolve_commission_rule(make_cart()[1], make_rules(with_default=False)) == NO_COMMISSION

    def test_inactive_rules_ignored(self):
        rules = make_rules()
        rules[0].is_active = False
        resolved = resolve_commission_rule(make_cart()[0], rules)
        assert resolved.source == CommissionSource.specific_category

    def test_empty_rules(self):
        assert resolve_commission_rule(make_cart()[0], []).source == CommissionSource.none


class TestLinkDefault:

    def test_disabled(self):
        assert link_default_rule(False, "percentage", 10) is None

    def test_zero_value(self):
        assert link_default_rule(True, "percentage", 0) is None

    def test_added_when_no_default_rule(self):
        rules = effective_rules(make_rules(with_default=False), link_default_rule(True, "fixed", 5))
        assert resolve_commission_rule(make_cart()[1], rules).commission_type == CommissionBasis.fixed

    def test_explicit_default_rule_wins(self):
        rules = effective_rules(make_rules(), link_default_rule(True, "fixed", 5))
        assert len(rules) == 3
        assert resolve_commission_rule(make_cart()[1], rules).commission_value == 10


# ══════════════════════════════════════════════
#  Aggregator
# ══════════════════════════════════════════════

class TestCalculateItemCommission:

    def test_percentage(self):
        assert calculate_item_commission(150, CommissionBasis.percentage, 10) == 15.0

    def test_fixed(self):
        assert calculate_item_commission(200, CommissionBasis.fixed, 25) == 25.0

    def test_rounding(self):
        assert calculate_item_commission(33.33, CommissionBasis.percentage, 10) == 3.33

    @pytest.mark.parametrize("base, value", [(0, 10), (100, 0), (-5, 10), (100, -1)])
    def test_non_positive_inputs(self, base, value):
        assert calculate_item_commission(base, CommissionBasis.percentage, value) == 0.0
        assert calculate_item_commission(base, CommissionBasis.fixed, value) == 0.0


class TestAggregateOrderCommission:

    def test_with_coupon(self):
        items = make_cart()
        allocation = allocate_coupon_discount(items, TEN_PERCENT)
        result = aggregate_order_commission(items, allocation, make_rules())

        assert [e.item_value_with_discount for e in result.items] == [180.0, 54.0, 135.0]
        assert [e.commission_amount for e in result.items] == [36.0, 5.4, 20.25]
        assert result.commission_amount == 61.65
        assert result.order_subtotal == 410.0
        assert result.coupon_discount == 41.0
        assert result.order_total == 369.0
        # order-level rule is the default one when it was used
        assert result.commission_type == CommissionBasis.percentage
        assert result.commission_value == 10

    def test_without_coupon(self):
        items = make_cart()
        result = aggregate_order_commission(items, no_coupon_allocation(items), make_rules())
        assert [e.commission_amount for e in result.items] == [40.0, 6.0, 22.5]
        assert result.commission_amount == 68.5
        assert all(e.item_discount == 0 for e in result.items)

    def test_unmatched_item_earns_nothing(self):
        items = make_cart()
        result = aggregate_order_commission(items, no_coupon_allocation(items), make_rules(with_default=False))
        assert result.items[1].commission_source == CommissionSource.none
        assert result.items[1].commission_amount == 0.0
        assert result.commission_amount == 62.5
        assert result.commission_value == 20

    def test_no_rules(self):
        items = make_cart()
        result = aggregate_order_commission(items, no_coupon_allocation(items), [])
        assert result.commission_amount == 0.0
        assert result.commission_value == 0.0

    def test_ineligible_items_use_full_subtotal(self):
        items = make_cart()
        coupon = Coupon(code="C2", discount_type="percentage", discount_value=10,
                        applies_to="category", category_names=["categoria2"])
        allocation = allocate_coupon_discount(items, coupon)
        result = aggregate_order_commission(items, allocation, make_rules())
        assert [e.item_value_with_discount for e in result.items] == [200.0, 54.0, 150.0]
        assert [e.is_coupon_eligible for e in result.items] == [False, True, False]

    def test_fixed_rule_per_line(self):
        items = make_cart()
        rules = [CommissionRule(applies_to="default", commission_type="fixed", commission_value=25)]
        result = aggregate_order_commission(items, no_coupon_allocation(items), rules)
        assert result.commission_amount == 75.0

    def test_item_breakdown_matches_total(self):
        items = make_cart()
        result = aggregate_order_commission(items, allocate_coupon_discount(items, TEN_PERCENT), make_rules())
        assert result.commission_amount == round(sum(e.commission_amount for e in result.items), 2)

    def test_mismatched_allocation(self):
        items = make_cart()
        with pytest.raises(ValueError):
            aggregate_order_commission(items, no_coupon_allocation(items[:2]), make_rules())


# ══════════════════════════════════════════════
#  Recalculation & audit summary
# ══════════════════════════════════════════════

class TestRecalculation:

    def test_unchanged_order_is_not_logged(self):
        items = make_cart()
        first = snapshot(aggregate_order_commission(items, no_coupon_allocation(items), make_rules()))
        second = snapshot(aggregate_order_commission(items, no_coupon_allocation(items), make_rules()))
        result = build_recalculation(first, second)
        assert result.commission_difference == 0.0
        assert result.logged is False

    def test_changed_commission_is_logged(self):
        before = EarningSnapshot(order_total=150, commission_amount=15, items_count=1)
        after = EarningSnapshot(order_total=200, commission_amount=20, items_count=2)
        result = build_recalculation(before, after)
        assert result.commission_difference == 5.0
        assert result.logged is True

    def test_negative_difference(self):
        before = EarningSnapshot(commission_amount=25)
        after = EarningSnapshot(commission_amount=10.1)
        assert build_recalculation(before, after).commission_difference == -14.9


class TestAuditSummary:

    def test_summary(self):
        summary = summarize_audit_logs([10, -4, 0, 6])
        assert summary.total_recalculations == 4
        assert summary.total_positive_variation == 16.0
        assert summary.total_negative_variation == 4.0
        assert summary.positive_count == 2
        assert summary.negative_count == 1
        assert summary.neutral_count == 1
        assert summary.average_variation == 3.0

    def test_empty(self):
        summary = summarize_audit_logs([])
        assert summary.total_recalculations == 0
        assert summary.average_variation == 0.0

    def test_invalid_values_count_as_neutral(self):
        summary = summarize_audit_logs([None, "abc", 5])
        assert summary.neutral_count == 2
        assert summary.positive_count == 1
