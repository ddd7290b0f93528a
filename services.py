"""
services.py
===========
Workflows around the pure commission engine: they load rows, call the
engine, and persist the results in a single transaction each.

  place_order             - order + items + coupon usage + earning breakdown
  mark_order_delivered    - stamps commission_available_at
  edit_order / recalculate_order
                          - rebuilds unpaid earnings from scratch and writes an
                            audit log entry when the commission changed
  create_withdrawal_request / approve / reject / pay
                          - payout flow; a request claims the earnings it pays,
                            one open request per affiliate/store
  commission_audit_report - audit log listing plus summary statistics

Every write either commits completely or is rolled back; readers never see
item earnings that disagree with their order-level earning.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import schemas
from commission_engine import (
    aggregate_order_commission, build_recalculation, effective_rules, link_default_rule,
    snapshot, summarize_audit_logs,
)
from coupon_engine import allocate_coupon_discount, no_coupon_allocation
from currency import format_currency, round_currency
from exceptions import (
    CommissionError, CouponInapplicableError, InvalidTransitionError, MissingReferenceError,
    NoAvailableBalanceError, NotFoundError, WithdrawalConflictError, WithdrawalMismatchError,
)
from maturation import (
    as_utc, clamp_maturity_days, commission_available_at, derive_earning_status,
    format_countdown, is_available, remaining, utc_now,
)
from schemas import EarningStatus, FixedDiscountPolicy, WithdrawalStatus

logger = logging.getLogger(__name__)

DELIVERED_STATUSES = ("delivered", "entregue")

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.pending.value: {
        WithdrawalStatus.approved.value, WithdrawalStatus.paid.value, WithdrawalStatus.rejected.value,
    },
    WithdrawalStatus.approved.value: {WithdrawalStatus.paid.value, WithdrawalStatus.rejected.value},
}


def _require(db: Session, model, pk: int, label: str):
    row = db.get(model, pk)
    if row is None:
        raise NotFoundError(f"{label} with id={pk} not found")
    return row


# ─────────────────────────── Row <-> schema mapping ───────────────────────────

def cart_item_from_row(row: models.OrderItem) -> schemas.CartItem:
    return schemas.CartItem(
        product_id=row.product_id,
        product_name=row.product_name or "",
        price=row.price,
        promotional_price=row.promotional_price,
        quantity=row.quantity,
        category=row.category,
        addons=row.addons or [],
        flavors=row.flavors or [],
        selected_size=row.selected_size,
        selected_color=row.selected_color,
    )


def order_item_row(item: schemas.CartItem) -> models.OrderItem:
    return models.OrderItem(
        product_id=item.product_id,
        product_name=item.product_name,
        category=item.category,
        price=item.price,
        promotional_price=item.promotional_price,
        quantity=item.quantity,
        addons=[a.model_dump() for a in item.addons],
        flavors=[f.model_dump() for f in item.flavors],
        selected_size=item.selected_size.model_dump() if item.selected_size else None,
        selected_color=item.selected_color.model_dump() if item.selected_color else None,
    )


def coupon_schemas(coupon: models.Coupon) -> Tuple[schemas.Coupon, List[schemas.DiscountRule]]:
    return (
        schemas.Coupon.model_validate(coupon),
        [schemas.DiscountRule.model_validate(r) for r in coupon.discount_rules],
    )


def commission_rules_for(link: models.StoreAffiliate) -> List[schemas.CommissionRule]:
    rules = [schemas.CommissionRule.model_validate(r) for r in link.commission_rules]
    default = link_default_rule(
        link.use_default_commission, link.default_commission_type, link.default_commission_value,
    )
    return effective_rules(rules, default)


def find_coupon(db: Session, store_id: int, code: str) -> Optional[models.Coupon]:
    return (
        db.query(models.Coupon)
        .filter(models.Coupon.store_id == store_id)
        .filter(func.lower(models.Coupon.code) == code.strip().lower())
        .first()
    )


# ─────────────────────────── Coupons ───────────────────────────

def evaluate_coupon(
    db: Session,
    store_id: int,
    items: List[schemas.CartItem],
    code: str,
    now: Optional[datetime] = None,
    fixed_policy: FixedDiscountPolicy = FixedDiscountPolicy.proportional,
) -> schemas.CouponAllocation:
    coupon = find_coupon(db, store_id, code)
    if coupon is None:
        raise NotFoundError(f"Coupon '{code}' not found")
    coupon_data, rules = coupon_schemas(coupon)
    return allocate_coupon_discount(items, coupon_data, rules, now=now, fixed_policy=fixed_policy)


# ─────────────────────────── Orders ───────────────────────────

def _apply_totals(order: models.Order, allocation: schemas.CouponAllocation) -> None:
    order.subtotal = allocation.order_subtotal
    order.coupon_discount = allocation.total_discount
    order.total = round_currency(max(0.0, allocation.order_subtotal - allocation.total_discount))


def _item_earning_rows(result: schemas.OrderCommission) -> List[models.ItemEarning]:
    return [
        models.ItemEarning(
            product_id=item.product_id,
            product_name=item.product_name,
            product_category=item.product_category,
            item_subtotal=item.item_subtotal,
            item_discount=item.item_discount,
            item_value_with_discount=item.item_value_with_discount,
            commission_type=item.commission_type.value,
            commission_value=item.commission_value,
            commission_amount=item.commission_amount,
            commission_source=item.commission_source.value,
            is_coupon_eligible=item.is_coupon_eligible,
            coupon_scope=item.coupon_scope.value if item.coupon_scope else None,
        )
        for item in result.items
    ]


def _link_for(db: Session, store_affiliate_id: int, store_id: int) -> models.StoreAffiliate:
    link = db.get(models.StoreAffiliate, store_affiliate_id)
    if link is None or link.store_id != store_id:
        raise MissingReferenceError(f"Store-affiliate link {store_affiliate_id} does not exist for store {store_id}")
    if db.get(models.Affiliate, link.affiliate_id) is None:
        raise MissingReferenceError(f"Affiliate {link.affiliate_id} no longer exists")
    return link


def place_order(
    db: Session,
    payload: schemas.OrderCreate,
    now: Optional[datetime] = None,
    fixed_policy: FixedDiscountPolicy = FixedDiscountPolicy.proportional,
) -> models.Order:
    """Persists the order and, when an affiliate referred it, its earning."""
    now = as_utc(now) if now else utc_now()
    _require(db, models.Store, payload.store_id, "Store")

    coupon = None
    allocation = no_coupon_allocation(payload.items)
    if payload.coupon_code:
        coupon = find_coupon(db, payload.store_id, payload.coupon_code)
        if coupon is None:
            raise NotFoundError(f"Coupon '{payload.coupon_code}' not found")
        coupon_data, rules = coupon_schemas(coupon)
        allocation = allocate_coupon_discount(
            payload.items, coupon_data, rules, now=now, fixed_policy=fixed_policy,
        )
        if not allocation.valid:
            logger.warning(
                "Coupon %s rejected for store %s: %s", coupon.code, payload.store_id, allocation.reason.value,
            )
            raise CouponInapplicableError(allocation)

    link = None
    if payload.store_affiliate_id is not None:
        link = _link_for(db, payload.store_affiliate_id, payload.store_id)
        if not link.is_active:
            logger.info("Store-affiliate link %s is inactive; order earns no commission", link.id)
            link = None

    order = models.Order(
        store_id=payload.store_id,
        store_affiliate_id=payload.store_affiliate_id,
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
        status="pending",
        items=[order_item_row(item) for item in payload.items],
    )
    _apply_totals(order, allocation)

    try:
        db.add(order)
        if coupon is not None:
            coupon.uses_count = (coupon.uses_count or 0) + 1
        db.flush()

        if link is not None:
            result = aggregate_order_commission(payload.items, allocation, commission_rules_for(link))
            earning = models.AffiliateEarning(
                order_id=order.id,
                affiliate_id=link.affiliate_id,
                store_affiliate_id=link.id,
                store_id=order.store_id,
                commission_amount=result.commission_amount,
                commission_type=result.commission_type.value,
                commission_value=result.commission_value,
                order_total=result.order_total,
                status=EarningStatus.pending.value,
                items=_item_earning_rows(result),
            )
            db.add(earning)
            logger.info(
                "Earning for order %s: affiliate %s, commission %s",
                order.id, link.affiliate_id, format_currency(result.commission_amount),
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("Order %s placed for store %s, total %s", order.id, order.store_id, format_currency(order.total))
    return order


def order_earnings(db: Session, order_id: int) -> List[models.AffiliateEarning]:
    return (
        db.query(models.AffiliateEarning)
        .filter(models.AffiliateEarning.order_id == order_id)
        .all()
    )


def mark_order_delivered(db: Session, order_id: int, now: Optional[datetime] = None) -> models.Order:
    """
    Delivery starts the maturation clock. Delivering twice keeps the first
    timestamp so a commission cannot be pushed back by a repeated event.
    """
    now = as_utc(now) if now else utc_now()
    order = _require(db, models.Order, order_id, "Order")
    if order.status in DELIVERED_STATUSES and order.delivered_at is not None:
        return order

    store = _require(db, models.Store, order.store_id, "Store")
    maturity_days = clamp_maturity_days(store.affiliate_commission_maturity_days)

    order.status = "delivered"
    order.delivered_at = now
    for earning in order_earnings(db, order.id):
        earning.commission_available_at = commission_available_at(now, maturity_days)

    db.commit()
    db.refresh(order)
    logger.info("Order %s delivered; commissions mature in %s day(s)", order.id, maturity_days)
    return order


def _recalculate(
    db: Session,
    order: models.Order,
    reason: str,
    recalculated_by: Optional[str],
    now: datetime,
    fixed_policy: FixedDiscountPolicy,
) -> Optional[schemas.RecalculationResult]:
    """Rebuilds totals and earnings for `order` inside the caller's transaction."""
    items = [cart_item_from_row(row) for row in order.items]

    allocation = no_coupon_allocation(items)
    if order.coupon_id is not None:
        coupon = db.get(models.Coupon, order.coupon_id)
        if coupon is None:
            raise MissingReferenceError(f"Coupon {order.coupon_id} for order {order.id} no longer exists")
        coupon_data, rules = coupon_schemas(coupon)
        allocation = allocate_coupon_discount(
            items, coupon_data, rules, now=now, fixed_policy=fixed_policy, check_validity=False,
        )
        if not allocation.valid:
            logger.warning(
                "Coupon %s no longer applies to order %s (%s); discount dropped",
                coupon.code, order.id, allocation.reason.value,
            )
            allocation = no_coupon_allocation(items)

    previous_discount = order.coupon_discount or 0.0
    _apply_totals(order, allocation)

    earnings = order_earnings(db, order.id)
    if not earnings:
        return None

    result = None
    for earning in earnings:
        link = _link_for(db, earning.store_affiliate_id, order.store_id)
        if earning.affiliate_id != link.affiliate_id:
            raise MissingReferenceError(f"Affiliate {earning.affiliate_id} is no longer linked to order {order.id}")

        before = schemas.EarningSnapshot(
            order_total=earning.order_total or 0.0,
            coupon_discount=previous_discount,
            commission_amount=earning.commission_amount or 0.0,
            items_count=len(earning.items),
        )
        computed = aggregate_order_commission(items, allocation, commission_rules_for(link))
        result = build_recalculation(before, snapshot(computed))

        # Paid earnings are final; the diff is only recorded
        applied = earning.status != EarningStatus.paid.value
        if applied:
            earning.items = _item_earning_rows(computed)
            earning.commission_amount = computed.commission_amount
            earning.commission_type = computed.commission_type.value
            earning.commission_value = computed.commission_value
            earning.order_total = computed.order_total
        elif result.logged:
            logger.warning(
                "Earning %s of order %s is already paid; commission kept at %s (recalculated %s)",
                earning.id, order.id, format_currency(before.commission_amount),
                format_currency(result.after.commission_amount),
            )

        if result.logged:
            db.add(models.CommissionAuditLog(
                order_id=order.id,
                earning_id=earning.id,
                affiliate_id=earning.affiliate_id,
                store_affiliate_id=earning.store_affiliate_id,
                store_id=order.store_id,
                order_total_before=before.order_total,
                coupon_discount_before=before.coupon_discount,
                commission_amount_before=before.commission_amount,
                items_count_before=before.items_count,
                order_total_after=result.after.order_total,
                coupon_discount_after=result.after.coupon_discount,
                commission_amount_after=result.after.commission_amount,
                items_count_after=result.after.items_count,
                commission_difference=result.commission_difference,
                reason=reason,
                recalculated_by=recalculated_by,
                applied=applied,
                recalculated_at=now,
            ))
    return result


def _commit_recalculation(db: Session, order_id: int, work) -> Optional[schemas.RecalculationResult]:
    try:
        result = work()
        db.commit()
    except CommissionError as exc:
        db.rollback()
        logger.error("Recalculation of order %s aborted: %s", order_id, exc.message)
        raise
    except Exception:
        db.rollback()
        logger.exception("Recalculation of order %s failed; stored earnings left unchanged", order_id)
        raise

    if result is not None:
        logger.info(
            "Order %s recalculated: commission %s -> %s (difference %s)",
            order_id,
            format_currency(result.before.commission_amount),
            format_currency(result.after.commission_amount),
            format_currency(result.commission_difference),
        )
    return result


def recalculate_order(
    db: Session,
    order_id: int,
    reason: str,
    recalculated_by: Optional[str] = None,
    now: Optional[datetime] = None,
    fixed_policy: FixedDiscountPolicy = FixedDiscountPolicy.proportional,
) -> Optional[schemas.RecalculationResult]:
    """Explicit recalculate(order, reason) entry point for host workflows."""
    now = as_utc(now) if now else utc_now()
    order = db.get(models.Order, order_id)
    if order is None:
        raise MissingReferenceError(f"Order {order_id} no longer exists")
    return _commit_recalculation(
        db, order_id, lambda: _recalculate(db, order, reason, recalculated_by, now, fixed_policy),
    )


def edit_order(
    db: Session,
    order_id: int,
    payload: schemas.OrderUpdate,
    now: Optional[datetime] = None,
    fixed_policy: FixedDiscountPolicy = FixedDiscountPolicy.proportional,
) -> Tuple[models.Order, Optional[schemas.RecalculationResult]]:
    now = as_utc(now) if now else utc_now()
    order = _require(db, models.Order, order_id, "Order")

    def work():
        if payload.items is not None:
            order.items = [order_item_row(item) for item in payload.items]

        if payload.remove_coupon:
            order.coupon_id = None
            order.coupon_code = None
        elif payload.coupon_code and payload.coupon_code != order.coupon_code:
            coupon = find_coupon(db, order.store_id, payload.coupon_code)
            if coupon is None:
                raise NotFoundError(f"Coupon '{payload.coupon_code}' not found")
            coupon_data, rules = coupon_schemas(coupon)
            items = [cart_item_from_row(row) for row in order.items]
            check = allocate_coupon_discount(items, coupon_data, rules, now=now, fixed_policy=fixed_policy)
            if not check.valid:
                raise CouponInapplicableError(check)
            order.coupon_id = coupon.id
            order.coupon_code = coupon.code
            coupon.uses_count = (coupon.uses_count or 0) + 1

        db.flush()
        return _recalculate(db, order, payload.reason, payload.recalculated_by, now, fixed_policy)

    result = _commit_recalculation(db, order_id, work)
    db.refresh(order)
    return order, result


# ─────────────────────────── Earnings ───────────────────────────

def earning_response(earning: models.AffiliateEarning, now: Optional[datetime] = None) -> schemas.AffiliateEarningResponse:
    now = as_utc(now) if now else utc_now()
    status = derive_earning_status(earning.status, earning.commission_available_at, now)
    left = None
    if status != EarningStatus.paid and earning.commission_available_at is not None:
        left = remaining(now, earning.commission_available_at)
    return schemas.AffiliateEarningResponse(
        id=earning.id,
        order_id=earning.order_id,
        affiliate_id=earning.affiliate_id,
        store_affiliate_id=earning.store_affiliate_id,
        store_id=earning.store_id,
        commission_amount=earning.commission_amount,
        commission_type=earning.commission_type,
        commission_value=earning.commission_value,
        order_total=earning.order_total,
        status=status,
        commission_available_at=earning.commission_available_at,
        paid_at=earning.paid_at,
        withdrawal_request_id=earning.withdrawal_request_id,
        created_at=earning.created_at,
        updated_at=earning.updated_at,
        remaining=left,
        countdown=format_countdown(left) if left else None,
    )


def _unpaid_earnings(db: Session, affiliate_id: int, store_id: int) -> List[models.AffiliateEarning]:
    return (
        db.query(models.AffiliateEarning)
        .filter(models.AffiliateEarning.affiliate_id == affiliate_id)
        .filter(models.AffiliateEarning.store_id == store_id)
        .filter(models.AffiliateEarning.status != EarningStatus.paid.value)
        .order_by(models.AffiliateEarning.id)
        .all()
    )


def _withdrawable_earnings(
    db: Session, affiliate_id: int, store_id: int, now: datetime,
) -> List[models.AffiliateEarning]:
    """Matured, unpaid and not claimed by an open withdrawal request."""
    return [
        e for e in _unpaid_earnings(db, affiliate_id, store_id)
        if e.withdrawal_request_id is None and is_available(now, e.commission_available_at)
    ]


def available_balance(db: Session, affiliate_id: int, store_id: int, now: Optional[datetime] = None) -> float:
    """Always derived from the clock, never cached."""
    now = as_utc(now) if now else utc_now()
    return round_currency(sum(e.commission_amount for e in _withdrawable_earnings(db, affiliate_id, store_id, now)))


def balance(db: Session, affiliate_id: int, store_id: int, now: Optional[datetime] = None) -> schemas.BalanceResponse:
    now = as_utc(now) if now else utc_now()
    unpaid = _unpaid_earnings(db, affiliate_id, store_id)
    matured = [e for e in unpaid if is_available(now, e.commission_available_at)]
    available = round_currency(sum(e.commission_amount for e in matured if e.withdrawal_request_id is None))
    requested = round_currency(sum(e.commission_amount for e in matured if e.withdrawal_request_id is not None))
    maturing = round_currency(sum(
        e.commission_amount for e in unpaid if not is_available(now, e.commission_available_at)
    ))
    paid = (
        db.query(func.coalesce(func.sum(models.AffiliateEarning.commission_amount), 0))
        .filter(models.AffiliateEarning.affiliate_id == affiliate_id)
        .filter(models.AffiliateEarning.store_id == store_id)
        .filter(models.AffiliateEarning.status == EarningStatus.paid.value)
        .scalar()
    )
    return schemas.BalanceResponse(
        affiliate_id=affiliate_id,
        store_id=store_id,
        available=available,
        requested=requested,
        maturing=maturing,
        paid=round_currency(paid),
        formatted_available=format_currency(available),
    )


def mark_earning_paid(db: Session, earning_id: int, now: Optional[datetime] = None) -> models.AffiliateEarning:
    """Pays one matured earning directly. Earnings claimed by a withdrawal request are paid through it."""
    now = as_utc(now) if now else utc_now()
    earning = _require(db, models.AffiliateEarning, earning_id, "Earning")
    status = derive_earning_status(earning.status, earning.commission_available_at, now)
    if status != EarningStatus.available:
        raise InvalidTransitionError(status.value, EarningStatus.paid.value, "earning")
    if earning.withdrawal_request_id is not None:
        raise InvalidTransitionError("requested", EarningStatus.paid.value, "earning")
    earning.status = EarningStatus.paid.value
    earning.paid_at = now
    db.commit()
    db.refresh(earning)
    return earning


# ─────────────────────────── Withdrawals ───────────────────────────

OPEN_WITHDRAWAL_STATUSES = (WithdrawalStatus.pending.value, WithdrawalStatus.approved.value)


def _open_withdrawal(db: Session, affiliate_id: int, store_id: int) -> Optional[models.WithdrawalRequest]:
    return (
        db.query(models.WithdrawalRequest)
        .filter(models.WithdrawalRequest.affiliate_id == affiliate_id)
        .filter(models.WithdrawalRequest.store_id == store_id)
        .filter(models.WithdrawalRequest.status.in_(OPEN_WITHDRAWAL_STATUSES))
        .first()
    )


def _claimed_earnings(db: Session, request_id: int) -> List[models.AffiliateEarning]:
    return (
        db.query(models.AffiliateEarning)
        .filter(models.AffiliateEarning.withdrawal_request_id == request_id)
        .order_by(models.AffiliateEarning.id)
        .all()
    )


def create_withdrawal_request(
    db: Session,
    payload: schemas.WithdrawalCreate,
    now: Optional[datetime] = None,
) -> models.WithdrawalRequest:
    """
    Claims every withdrawable earning for the store and requests their sum.
    While the request is pending or approved, no other request can be made
    and the claimed earnings leave the available balance.
    """
    now = as_utc(now) if now else utc_now()
    _require(db, models.Affiliate, payload.affiliate_id, "Affiliate")
    _require(db, models.Store, payload.store_id, "Store")

    open_request = _open_withdrawal(db, payload.affiliate_id, payload.store_id)
    if open_request is not None:
        logger.warning(
            "Withdrawal attempt by affiliate %s at store %s while request %s is %s",
            payload.affiliate_id, payload.store_id, open_request.id, open_request.status,
        )
        raise WithdrawalConflictError(
            f"Withdrawal request {open_request.id} is still {open_request.status} for this store"
        )

    claimed = _withdrawable_earnings(db, payload.affiliate_id, payload.store_id, now)
    amount = round_currency(sum(e.commission_amount for e in claimed))
    if amount <= 0:
        raise NoAvailableBalanceError()

    link = (
        db.query(models.StoreAffiliate)
        .filter(models.StoreAffiliate.store_id == payload.store_id)
        .filter(models.StoreAffiliate.affiliate_id == payload.affiliate_id)
        .first()
    )
    request = models.WithdrawalRequest(
        affiliate_id=payload.affiliate_id,
        store_id=payload.store_id,
        store_affiliate_id=link.id if link else None,
        amount=amount,
        status=WithdrawalStatus.pending.value,
        pix_key=payload.pix_key,
        notes=payload.notes,
        requested_at=now,
    )
    db.add(request)
    try:
        db.flush()
        for earning in claimed:
            earning.withdrawal_request_id = request.id
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent request; the partial index rejected it
        db.rollback()
        logger.warning(
            "Concurrent withdrawal rejected for affiliate %s at store %s", payload.affiliate_id, payload.store_id,
        )
        raise WithdrawalConflictError()

    db.refresh(request)
    logger.info(
        "Withdrawal %s requested by affiliate %s: %s over %s earning(s)",
        request.id, request.affiliate_id, format_currency(amount), len(claimed),
    )
    return request


def _transition(db: Session, request_id: int, target: WithdrawalStatus) -> models.WithdrawalRequest:
    request = _require(db, models.WithdrawalRequest, request_id, "Withdrawal request")
    if target.value not in WITHDRAWAL_TRANSITIONS.get(request.status, set()):
        raise InvalidTransitionError(request.status, target.value, "withdrawal request")
    return request


def approve_withdrawal(
    db: Session, request_id: int, admin_notes: Optional[str] = None, now: Optional[datetime] = None,
) -> models.WithdrawalRequest:
    now = as_utc(now) if now else utc_now()
    request = _transition(db, request_id, WithdrawalStatus.approved)
    request.status = WithdrawalStatus.approved.value
    request.processed_at = now
    if admin_notes is not None:
        request.admin_notes = admin_notes
    db.commit()
    db.refresh(request)
    return request


def reject_withdrawal(
    db: Session, request_id: int, admin_notes: Optional[str] = None, now: Optional[datetime] = None,
) -> models.WithdrawalRequest:
    """Releases the claimed earnings; they can be requested again."""
    now = as_utc(now) if now else utc_now()
    request = _transition(db, request_id, WithdrawalStatus.rejected)
    for earning in _claimed_earnings(db, request.id):
        earning.withdrawal_request_id = None
    request.status = WithdrawalStatus.rejected.value
    request.processed_at = now
    if admin_notes is not None:
        request.admin_notes = admin_notes
    db.commit()
    db.refresh(request)
    logger.info("Withdrawal %s rejected", request.id)
    return request


def pay_withdrawal(
    db: Session,
    request_id: int,
    admin_notes: Optional[str] = None,
    payment_proof: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.WithdrawalRequest:
    """
    Marks the request paid together with exactly the earnings it claimed.
    Refused when those earnings no longer add up to the requested amount
    (an order was edited in between); the request must then be rejected and
    made again.
    """
    now = as_utc(now) if now else utc_now()
    request = _transition(db, request_id, WithdrawalStatus.paid)

    settled = _claimed_earnings(db, request.id)
    settled_total = round_currency(sum(e.commission_amount for e in settled))
    if not settled or settled_total != round_currency(request.amount):
        logger.error(
            "Withdrawal %s refused: requested %s, claimed earnings total %s",
            request.id, format_currency(request.amount), format_currency(settled_total),
        )
        raise WithdrawalMismatchError(round_currency(request.amount), settled_total)

    for earning in settled:
        earning.status = EarningStatus.paid.value
        earning.paid_at = now

    request.status = WithdrawalStatus.paid.value
    request.paid_at = now
    request.processed_at = now
    if admin_notes is not None:
        request.admin_notes = admin_notes
    if payment_proof is not None:
        request.payment_proof = payment_proof
    db.commit()
    db.refresh(request)
    logger.info("Withdrawal %s paid; %s earning(s) settled", request.id, len(settled))
    return request


# ─────────────────────────── Audit ───────────────────────────

def commission_audit_report(db: Session, store_id: int) -> schemas.CommissionAuditReport:
    """
    Logs newest first plus their summary. Only recalculations that changed
    the commission are stored, so summary.neutral_count is always 0 here.
    """
    logs = (
        db.query(models.CommissionAuditLog)
        .filter(models.CommissionAuditLog.store_id == store_id)
        .order_by(models.CommissionAuditLog.recalculated_at.desc(), models.CommissionAuditLog.id.desc())
        .all()
    )
    return schemas.CommissionAuditReport(
        logs=[schemas.CommissionAuditLogResponse.model_validate(log) for log in logs],
        summary=summarize_audit_logs(log.commission_difference for log in logs),
    )
