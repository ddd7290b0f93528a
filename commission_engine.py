"""
commission_engine.py
====================
Commission rule resolution and per-order aggregation.

Resolution precedence for a line item:
  1. active rule with applies_to="product" for the item's product id
  2. active rule with applies_to="category" for the item's category
     (case-insensitive)
  3. active rule with applies_to="default"
  4. nothing: the item earns no commission (a valid state, not an error)

Commission base for an item is its subtotal minus the coupon discount
allocated to it, floored at zero. Items outside the coupon's scope carry no
allocated discount, so they earn on their full subtotal. Fixed rules pay the
flat value once per matching line item.
"""

from typing import Iterable, List, Optional, Sequence

from currency import round_currency, to_safe_number
from schemas import (
    AuditSummary, CartItem, CommissionAppliesTo, CommissionBasis, CommissionRule,
    CommissionSource, CouponAllocation, EarningSnapshot, ItemEarningData,
    OrderCommission, RecalculationResult, ResolvedCommission,
)

NO_COMMISSION = ResolvedCommission(
    source=CommissionSource.none,
    commission_type=CommissionBasis.percentage,
    commission_value=0.0,
)


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _resolved(rule: CommissionRule, source: CommissionSource) -> ResolvedCommission:
    return ResolvedCommission(
        source=source,
        commission_type=rule.commission_type,
        commission_value=to_safe_number(rule.commission_value),
        rule_id=rule.id,
    )


# ─────────────────────────── Resolver ───────────────────────────

def resolve_commission_rule(item: CartItem, rules: Sequence[CommissionRule]) -> ResolvedCommission:
    active = [r for r in rules if r.is_active]

    for rule in active:
        if rule.applies_to == CommissionAppliesTo.product and rule.product_id == item.product_id:
            return _resolved(rule, CommissionSource.specific_product)

    category = _normalize(item.category)
    if category:
        for rule in active:
            if rule.applies_to == CommissionAppliesTo.category and _normalize(rule.category_name) == category:
                return _resolved(rule, CommissionSource.specific_category)

    for rule in active:
        if rule.applies_to == CommissionAppliesTo.default:
            return _resolved(rule, CommissionSource.default)

    return NO_COMMISSION


def link_default_rule(
    use_default_commission: bool,
    commission_type: str,
    commission_value: float,
) -> Optional[CommissionRule]:
    """The store-affiliate link's own default commission, expressed as a rule."""
    value = to_safe_number(commission_value)
    if not use_default_commission or value <= 0:
        return None
    return CommissionRule(
        applies_to=CommissionAppliesTo.default,
        commission_type=CommissionBasis(commission_type),
        commission_value=value,
    )


def effective_rules(rules: Sequence[CommissionRule], link_default: Optional[CommissionRule]) -> List[CommissionRule]:
    """Explicit rules, plus the link default unless a default rule already exists."""
    rules = list(rules)
    has_default = any(r.applies_to == CommissionAppliesTo.default and r.is_active for r in rules)
    if link_default is not None and not has_default:
        rules.append(link_default)
    return rules


# ─────────────────────────── Aggregator ───────────────────────────

def calculate_item_commission(base: float, commission_type: CommissionBasis, value: float) -> float:
    base = to_safe_number(base)
    value = to_safe_number(value)
    if value <= 0 or base <= 0:
        return 0.0
    if commission_type == CommissionBasis.percentage:
        return round_currency(base * value / 100)
    return round_currency(value)


def aggregate_order_commission(
    items: Sequence[CartItem],
    allocation: CouponAllocation,
    rules: Sequence[CommissionRule],
) -> OrderCommission:
    """
    Builds the item breakdown and the order-level earning for one affiliate.
    `allocation` must describe the same items, in the same order.
    """
    if len(allocation.items) != len(items):
        raise ValueError("Coupon allocation does not match the order items")

    item_earnings = []
    order_rule: Optional[ResolvedCommission] = None
    for item, allocated in zip(items, allocation.items):
        subtotal = allocated.item_subtotal
        discount = allocated.discount if allocated.is_coupon_eligible else 0.0
        base = round_currency(max(0.0, subtotal - discount))

        resolved = resolve_commission_rule(item, rules)
        amount = calculate_item_commission(base, resolved.commission_type, resolved.commission_value)

        if resolved.source == CommissionSource.default:
            order_rule = resolved
        elif order_rule is None and resolved.source != CommissionSource.none:
            order_rule = resolved

        item_earnings.append(ItemEarningData(
            product_id=item.product_id,
            product_name=item.product_name,
            product_category=item.category,
            item_subtotal=subtotal,
            item_discount=round_currency(discount),
            item_value_with_discount=base,
            commission_type=resolved.commission_type,
            commission_value=resolved.commission_value,
            commission_amount=amount,
            commission_source=resolved.source,
            is_coupon_eligible=allocated.is_coupon_eligible,
            coupon_scope=allocated.coupon_scope,
        ))

    order_rule = order_rule or NO_COMMISSION
    order_subtotal = round_currency(sum(e.item_subtotal for e in item_earnings))
    coupon_discount = round_currency(sum(e.item_discount for e in item_earnings))

    return OrderCommission(
        order_subtotal=order_subtotal,
        coupon_discount=coupon_discount,
        order_total=round_currency(max(0.0, order_subtotal - coupon_discount)),
        commission_type=order_rule.commission_type,
        commission_value=order_rule.commission_value,
        commission_amount=round_currency(sum(e.commission_amount for e in item_earnings)),
        items=item_earnings,
    )


def snapshot(result: OrderCommission) -> EarningSnapshot:
    return EarningSnapshot(
        order_total=result.order_total,
        coupon_discount=result.coupon_discount,
        commission_amount=result.commission_amount,
        items_count=len(result.items),
    )


def build_recalculation(before: EarningSnapshot, after: EarningSnapshot) -> RecalculationResult:
    """Only a non-zero commission difference is worth an audit log entry."""
    difference = round_currency(after.commission_amount - before.commission_amount)
    return RecalculationResult(
        before=before,
        after=after,
        commission_difference=difference,
        logged=difference != 0,
    )


# ─────────────────────────── Audit summary ───────────────────────────

def summarize_audit_logs(differences: Iterable[float]) -> AuditSummary:
    summary = AuditSummary()
    for diff in differences:
        diff = to_safe_number(diff)
        summary.total_recalculations += 1
        if diff > 0:
            summary.total_positive_variation += diff
            summary.positive_count += 1
        elif diff < 0:
            summary.total_negative_variation += abs(diff)
            summary.negative_count += 1
        else:
            summary.neutral_count += 1

    summary.total_positive_variation = round_currency(summary.total_positive_variation)
    summary.total_negative_variation = round_currency(summary.total_negative_variation)
    if summary.total_recalculations:
        summary.average_variation = round_currency(
            (summary.total_positive_variation - summary.total_negative_variation)
            / summary.total_recalculations
        )
    return summary
