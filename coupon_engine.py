"""
coupon_engine.py
================
Distributes a coupon's discount across the line items of an order.

Rules:
------
1. Eligibility:
   - scope "all" covers every item.
   - otherwise an item is eligible when its product id is in the coupon's
     product_ids or its category (case-insensitive) is in category_names.

2. Overrides:
   - a coupon may carry discount rules; a product rule beats a category
     rule, and either beats the coupon's own discount for matching items.

3. Amounts:
   - percentage: item subtotal * value / 100.
   - fixed: one amount shared by every item governed by the same rule (or
     by the coupon's own value), proportionally to the item subtotals and
     capped at their sum. Rounding drift lands on the last item of the group.
     FixedDiscountPolicy.per_item gives each matching item the full amount
     instead, capped at its subtotal.
   - no item is ever discounted below zero.

4. Rejections (returned as data, never raised):
   - inactive, not yet valid, expired, usage limit reached.
   - order subtotal below min_order_value.
   - no item inside the coupon's scope.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from currency import round_currency, to_safe_number
from maturation import as_utc, utc_now
from schemas import (
    CartItem, Coupon, CouponAllocation, CouponRejection, CouponScope, DiscountRule,
    DiscountRuleType, DiscountType, FixedDiscountPolicy, ItemDiscount,
)

REJECTION_MESSAGES = {
    CouponRejection.inactive: "Coupon is not active",
    CouponRejection.not_started: "Coupon is not valid yet",
    CouponRejection.expired: "Coupon has expired",
    CouponRejection.usage_limit_reached: "Coupon usage limit has been reached",
    CouponRejection.below_min_order_value: "Order subtotal is below the coupon minimum",
    CouponRejection.out_of_scope: "No item in the cart is covered by this coupon",
}


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def item_subtotal(item: CartItem) -> float:
    """effective unit price * quantity + sum(addon price * addon quantity)"""
    addons = sum(to_safe_number(a.price) * a.quantity for a in item.addons)
    return round_currency(to_safe_number(item.effective_price) * item.quantity + addons)


def cart_subtotal(items: Sequence[CartItem]) -> float:
    return round_currency(sum(item_subtotal(item) for item in items))


def is_item_eligible(item: CartItem, coupon: Coupon) -> bool:
    if coupon.applies_to == CouponScope.all:
        return True
    if item.product_id in coupon.product_ids:
        return True
    category = _normalize(item.category)
    return bool(category) and category in {_normalize(c) for c in coupon.category_names}


def _match_rule_index(item: CartItem, rules: Sequence[DiscountRule]) -> Optional[int]:
    for i, rule in enumerate(rules):
        if rule.rule_type == DiscountRuleType.product and rule.product_id == item.product_id:
            return i
    category = _normalize(item.category)
    if category:
        for i, rule in enumerate(rules):
            if rule.rule_type == DiscountRuleType.category and _normalize(rule.category_name) == category:
                return i
    return None


def find_discount_rule(item: CartItem, rules: Sequence[DiscountRule]) -> Optional[DiscountRule]:
    """Product rule > category rule > None (use the coupon's own discount)."""
    index = _match_rule_index(item, rules)
    return rules[index] if index is not None else None


# ─────────────────────────── Validity ───────────────────────────

def is_coupon_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return as_utc(expires_at) < (as_utc(now) if now else utc_now())


def check_coupon_validity(coupon: Coupon, now: Optional[datetime] = None) -> Optional[CouponRejection]:
    """Returns the reason the coupon cannot be used at `now`, or None."""
    now = as_utc(now) if now else utc_now()
    if not coupon.is_active:
        return CouponRejection.inactive
    if coupon.valid_from is not None and now < as_utc(coupon.valid_from):
        return CouponRejection.not_started
    if is_coupon_expired(coupon.expires_at, now):
        return CouponRejection.expired
    if coupon.max_uses is not None and coupon.uses_count >= coupon.max_uses:
        return CouponRejection.usage_limit_reached
    return None


# ─────────────────────────── Allocation ───────────────────────────

def _split_fixed(subtotals: List[float], amount: float) -> List[float]:
    """Share `amount` across `subtotals` proportionally; last share absorbs drift."""
    group_subtotal = sum(subtotals)
    if group_subtotal <= 0:
        return [0.0] * len(subtotals)

    group_total = round_currency(min(amount, group_subtotal))
    shares = [round_currency(s / group_subtotal * group_total) for s in subtotals]
    diff = round_currency(group_total - sum(shares))
    if shares:
        shares[-1] = round_currency(shares[-1] + diff)
    return shares


def _rejected(
    reason: CouponRejection,
    items: Sequence[CartItem],
    subtotals: List[float],
    scope: CouponScope,
    eligible: Optional[List[bool]] = None,
) -> CouponAllocation:
    eligible = eligible or [False] * len(items)
    return CouponAllocation(
        valid=False,
        reason=reason,
        message=REJECTION_MESSAGES[reason],
        order_subtotal=round_currency(sum(subtotals)),
        items=[
            ItemDiscount(
                index=i,
                product_id=item.product_id,
                item_subtotal=subtotals[i],
                is_coupon_eligible=eligible[i],
                discount=0.0,
                coupon_scope=scope,
            )
            for i, item in enumerate(items)
        ],
    )


def allocate_coupon_discount(
    items: Sequence[CartItem],
    coupon: Coupon,
    rules: Sequence[DiscountRule] = (),
    now: Optional[datetime] = None,
    fixed_policy: FixedDiscountPolicy = FixedDiscountPolicy.proportional,
    check_validity: bool = True,
) -> CouponAllocation:
    """
    Returns a CouponAllocation with one ItemDiscount per item, in input order.
    An unusable coupon yields valid=False, a reason, and all-zero discounts.

    check_validity=False skips the active/window/usage checks; recalculating an
    order re-applies the coupon it was accepted with.
    """
    subtotals = [item_subtotal(item) for item in items]
    order_subtotal = round_currency(sum(subtotals))
    scope = coupon.applies_to

    rejection = check_coupon_validity(coupon, now) if check_validity else None
    if rejection is not None:
        return _rejected(rejection, items, subtotals, scope)

    eligible = [is_item_eligible(item, coupon) for item in items]

    min_order = to_safe_number(coupon.min_order_value)
    if min_order > 0 and order_subtotal < min_order:
        return _rejected(CouponRejection.below_min_order_value, items, subtotals, scope, eligible)

    if items and not any(eligible):
        return _rejected(CouponRejection.out_of_scope, items, subtotals, scope, eligible)

    # Group eligible items by the rule that governs them (None = coupon default)
    groups: Dict[Optional[int], List[int]] = {}
    for i, item in enumerate(items):
        if eligible[i]:
            groups.setdefault(_match_rule_index(item, rules), []).append(i)

    discounts = [0.0] * len(items)
    for rule_index, indices in groups.items():
        if rule_index is None:
            discount_type, value = coupon.discount_type, to_safe_number(coupon.discount_value)
        else:
            rule = rules[rule_index]
            discount_type, value = rule.discount_type, to_safe_number(rule.discount_value)

        if value <= 0:
            continue

        if discount_type == DiscountType.percentage:
            for i in indices:
                discounts[i] = round_currency(subtotals[i] * value / 100)
        elif fixed_policy == FixedDiscountPolicy.per_item:
            for i in indices:
                discounts[i] = round_currency(min(value, subtotals[i]))
        else:
            shares = _split_fixed([subtotals[i] for i in indices], value)
            for i, share in zip(indices, shares):
                discounts[i] = share

    per_item = []
    for i, item in enumerate(items):
        discount = max(0.0, min(discounts[i], subtotals[i]))
        rule_index = _match_rule_index(item, rules) if eligible[i] else None
        per_item.append(ItemDiscount(
            index=i,
            product_id=item.product_id,
            item_subtotal=subtotals[i],
            is_coupon_eligible=eligible[i],
            discount=discount,
            rule_id=rules[rule_index].id if rule_index is not None else None,
            coupon_scope=scope,
        ))

    return CouponAllocation(
        valid=True,
        order_subtotal=order_subtotal,
        eligible_subtotal=round_currency(sum(s for s, ok in zip(subtotals, eligible) if ok)),
        total_discount=round_currency(sum(d.discount for d in per_item)),
        items=per_item,
    )


def no_coupon_allocation(items: Sequence[CartItem]) -> CouponAllocation:
    """Allocation used for orders placed without a coupon."""
    subtotals = [item_subtotal(item) for item in items]
    return CouponAllocation(
        valid=True,
        order_subtotal=round_currency(sum(subtotals)),
        items=[
            ItemDiscount(
                index=i,
                product_id=item.product_id,
                item_subtotal=subtotals[i],
                is_coupon_eligible=False,
                discount=0.0,
            )
            for i, item in enumerate(items)
        ],
    )
