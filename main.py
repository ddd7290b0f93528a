"""
main.py
=======
FastAPI application entry point.

Endpoints:
  POST   /stores                                  - Create a store
  GET    /stores/{id}                             - Get store
  PUT    /stores/{id}/maturity                    - Set commission maturity days (0-90)
  POST   /affiliates                              - Register an affiliate
  POST   /stores/{id}/affiliates                  - Link an affiliate to a store
  POST   /store-affiliates/{id}/commission-rules  - Create a commission rule
  GET    /store-affiliates/{id}/commission-rules  - List commission rules
  PUT    /commission-rules/{id}                   - Update a commission rule
  DELETE /commission-rules/{id}                   - Delete a commission rule
  POST   /stores/{id}/coupons                     - Create a coupon (with discount rules)
  GET    /stores/{id}/coupons                     - List coupons
  GET    /coupons/{id}                            - Get coupon by ID
  PUT    /coupons/{id}                            - Update coupon
  DELETE /coupons/{id}                            - Delete coupon
  POST   /coupons/{id}/discount-rules             - Add a discount rule
  DELETE /coupons/{id}/discount-rules/{rule_id}   - Remove a discount rule
  POST   /stores/{id}/apply-coupon                - Preview a coupon's allocation on a cart
  POST   /orders                                  - Place an order
  GET    /orders/{id}                             - Get order
  PUT    /orders/{id}                             - Edit an order (recalculates commission)
  POST   /orders/{id}/deliver                     - Mark delivered (starts maturation)
  POST   /orders/{id}/recalculate                 - Recalculate commission
  GET    /affiliates/{id}/earnings                - List earnings with derived status
  GET    /earnings/{id}/items                     - Item-level commission breakdown
  POST   /earnings/{id}/pay                       - Mark a matured earning as paid
  GET    /affiliates/{id}/balance                 - Available / maturing / paid totals
  POST   /withdrawals                             - Request a withdrawal
  GET    /withdrawals                             - List withdrawal requests
  POST   /withdrawals/{id}/approve|reject|pay     - Merchant actions
  GET    /stores/{id}/commission-audit            - Recalculation audit report
"""

import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import schemas
import services
from config import settings
from database import engine, get_db
from exceptions import (
    CouponInapplicableError, InvalidTransitionError, MissingReferenceError,
    NoAvailableBalanceError, NotFoundError, WithdrawalConflictError, WithdrawalMismatchError,
)
from maturation import as_utc

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Create DB tables on startup
models.Base.metadata.create_all(bind=engine)

FIXED_POLICY = schemas.FixedDiscountPolicy(settings.FIXED_DISCOUNT_POLICY)

app = FastAPI(
    title=settings.APP_NAME,
    description="Coupon allocation, affiliate commissions, maturation and withdrawals for small stores.",
    version=settings.APP_VERSION,
)


def _get_or_404(db: Session, model, pk: int, label: str):
    row = db.get(model, pk)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} with id={pk} not found")
    return row


def _coupon_rejected(exc: CouponInapplicableError) -> HTTPException:
    reason = exc.allocation.reason.value if exc.allocation.reason else None
    return HTTPException(status_code=400, detail={"message": exc.message, "reason": reason})


# ═══════════════════════════════════════════════════
#  STORES & AFFILIATES
# ═══════════════════════════════════════════════════

@app.post(
    "/stores",
    response_model=schemas.StoreResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Stores"],
    summary="Create a store",
)
def create_store(store: schemas.StoreCreate, db: Session = Depends(get_db)):
    maturity = store.affiliate_commission_maturity_days
    db_store = models.Store(
        name=store.name,
        affiliate_commission_maturity_days=settings.DEFAULT_MATURITY_DAYS if maturity is None else maturity,
    )
    db.add(db_store)
    db.commit()
    db.refresh(db_store)
    return db_store


@app.get("/stores/{store_id}", response_model=schemas.StoreResponse, tags=["Stores"], summary="Get a store")
def get_store(store_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, models.Store, store_id, "Store")


@app.put(
    "/stores/{store_id}/maturity",
    response_model=schemas.StoreResponse,
    tags=["Stores"],
    summary="Set the commission maturity period",
)
def update_store_maturity(store_id: int, update_data: schemas.StoreMaturityUpdate, db: Session = Depends(get_db)):
    """
    Commissions become withdrawable this many days after delivery (0-90).
    Orders delivered before the change keep their stamped date.
    """
    store = _get_or_404(db, models.Store, store_id, "Store")
    store.affiliate_commission_maturity_days = update_data.affiliate_commission_maturity_days
    db.commit()
    db.refresh(store)
    return store


@app.post(
    "/affiliates",
    response_model=schemas.AffiliateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Affiliates"],
    summary="Register an affiliate",
)
def create_affiliate(affiliate: schemas.AffiliateCreate, db: Session = Depends(get_db)):
    db_affiliate = models.Affiliate(**affiliate.model_dump())
    db.add(db_affiliate)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="An affiliate with this email already exists")
    db.refresh(db_affiliate)
    return db_affiliate


@app.post(
    "/stores/{store_id}/affiliates",
    response_model=schemas.StoreAffiliateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Affiliates"],
    summary="Link an affiliate to a store",
)
def link_affiliate(store_id: int, link: schemas.StoreAffiliateCreate, db: Session = Depends(get_db)):
    _get_or_404(db, models.Store, store_id, "Store")
    _get_or_404(db, models.Affiliate, link.affiliate_id, "Affiliate")
    db_link = models.StoreAffiliate(
        store_id=store_id,
        affiliate_id=link.affiliate_id,
        use_default_commission=link.use_default_commission,
        default_commission_type=link.default_commission_type.value,
        default_commission_value=link.default_commission_value,
    )
    db.add(db_link)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Affiliate is already linked to this store")
    db.refresh(db_link)
    return db_link


# ═══════════════════════════════════════════════════
#  COMMISSION RULES
# ═══════════════════════════════════════════════════

@app.post(
    "/store-affiliates/{link_id}/commission-rules",
    response_model=schemas.CommissionRule,
    status_code=status.HTTP_201_CREATED,
    tags=["Commission Rules"],
    summary="Create a commission rule",
)
def create_commission_rule(link_id: int, rule: schemas.CommissionRuleCreate, db: Session = Depends(get_db)):
    """
    - **product**: applies to one product id (highest precedence).
    - **category**: applies to every product in a category.
    - **default**: applies when nothing more specific matches (one per link).
    """
    _get_or_404(db, models.StoreAffiliate, link_id, "Store-affiliate link")
    if rule.applies_to == schemas.CommissionAppliesTo.default:
        existing = (
            db.query(models.CommissionRule)
            .filter(models.CommissionRule.store_affiliate_id == link_id)
            .filter(models.CommissionRule.applies_to == schemas.CommissionAppliesTo.default.value)
            .first()
        )
        if existing:
            raise HTTPException(status_code=409, detail="This affiliate already has a default commission rule")

    db_rule = models.CommissionRule(
        store_affiliate_id=link_id,
        applies_to=rule.applies_to.value,
        product_id=rule.product_id,
        category_name=rule.category_name,
        commission_type=rule.commission_type.value,
        commission_value=rule.commission_value,
        is_active=rule.is_active,
    )
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)
    return db_rule


@app.get(
    "/store-affiliates/{link_id}/commission-rules",
    response_model=List[schemas.CommissionRule],
    tags=["Commission Rules"],
    summary="List commission rules",
)
def list_commission_rules(link_id: int, db: Session = Depends(get_db)):
    link = _get_or_404(db, models.StoreAffiliate, link_id, "Store-affiliate link")
    return link.commission_rules


@app.put(
    "/commission-rules/{rule_id}",
    response_model=schemas.CommissionRule,
    tags=["Commission Rules"],
    summary="Update a commission rule",
)
def update_commission_rule(rule_id: int, update_data: schemas.CommissionRuleUpdate, db: Session = Depends(get_db)):
    """Only provided fields are updated. Existing earnings change only when recalculated."""
    rule = _get_or_404(db, models.CommissionRule, rule_id, "Commission rule")

    if update_data.commission_type is not None:
        rule.commission_type = update_data.commission_type.value
    if update_data.commission_value is not None:
        if update_data.commission_value < 0:
            raise HTTPException(status_code=422, detail="Commission value must not be negative")
        rule.commission_value = update_data.commission_value
    if update_data.is_active is not None:
        rule.is_active = update_data.is_active
    if rule.commission_type == schemas.CommissionBasis.percentage.value and rule.commission_value > 100:
        db.rollback()
        raise HTTPException(status_code=422, detail="Commission percentage cannot exceed 100")

    db.commit()
    db.refresh(rule)
    return rule


@app.delete(
    "/commission-rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Commission Rules"],
    summary="Delete a commission rule",
)
def delete_commission_rule(rule_id: int, db: Session = Depends(get_db)):
    rule = _get_or_404(db, models.CommissionRule, rule_id, "Commission rule")
    db.delete(rule)
    db.commit()
    return None


# ═══════════════════════════════════════════════════
#  COUPON CRUD
# ═══════════════════════════════════════════════════

@app.post(
    "/stores/{store_id}/coupons",
    response_model=schemas.CouponResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Create a new coupon",
)
def create_coupon(store_id: int, coupon: schemas.CouponCreate, db: Session = Depends(get_db)):
    """
    Create a coupon. Supports:
    - **percentage** or **fixed** discounts.
    - scope **all**, or restricted to **product** ids / **category** names.
    - optional discount rules overriding the discount for a product or category.
    """
    _get_or_404(db, models.Store, store_id, "Store")
    data = coupon.model_dump(exclude={"discount_rules"})
    data["discount_type"] = coupon.discount_type.value
    data["applies_to"] = coupon.applies_to.value
    for field in ("valid_from", "expires_at"):
        if data[field] is not None:
            data[field] = as_utc(data[field])

    db_coupon = models.Coupon(store_id=store_id, **data)
    db_coupon.discount_rules = [
        models.CouponDiscountRule(
            rule_type=rule.rule_type.value,
            product_id=rule.product_id,
            category_name=rule.category_name,
            discount_type=rule.discount_type.value,
            discount_value=rule.discount_value,
        )
        for rule in coupon.discount_rules
    ]
    db.add(db_coupon)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Coupon code '{coupon.code}' already exists in this store")
    db.refresh(db_coupon)
    return db_coupon


@app.get(
    "/stores/{store_id}/coupons",
    response_model=List[schemas.CouponResponse],
    tags=["Coupons"],
    summary="Get all coupons of a store",
)
def get_store_coupons(store_id: int, db: Session = Depends(get_db)):
    """Retrieve all coupons (both active and inactive)."""
    return db.query(models.Coupon).filter(models.Coupon.store_id == store_id).all()


@app.get(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Get a coupon by ID",
)
def get_coupon(coupon_id: int, db: Session = Depends(get_db)):
    """Retrieve a specific coupon by its ID."""
    return _get_or_404(db, models.Coupon, coupon_id, "Coupon")


@app.put(
    "/coupons/{coupon_id}",
    response_model=schemas.CouponResponse,
    tags=["Coupons"],
    summary="Update a coupon",
)
def update_coupon(coupon_id: int, update_data: schemas.CouponUpdate, db: Session = Depends(get_db)):
    """
    Update a specific coupon. All fields are optional; only provided fields are updated.
    Sending null for min_order_value, max_uses, valid_from or expires_at clears it.
    """
    coupon = _get_or_404(db, models.Coupon, coupon_id, "Coupon")

    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is None and field not in ("min_order_value", "max_uses", "valid_from", "expires_at"):
            continue
        if isinstance(value, (schemas.DiscountType, schemas.CouponScope)):
            value = value.value
        elif field in ("valid_from", "expires_at") and value is not None:
            value = as_utc(value)
        setattr(coupon, field, value)

    if coupon.discount_value <= 0:
        db.rollback()
        raise HTTPException(status_code=422, detail="Discount value must be positive")
    if coupon.discount_type == schemas.DiscountType.percentage.value and coupon.discount_value > 100:
        db.rollback()
        raise HTTPException(status_code=422, detail="Discount percentage cannot exceed 100")

    db.commit()
    db.refresh(coupon)
    return coupon


@app.delete(
    "/coupons/{coupon_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Coupons"],
    summary="Delete a coupon",
)
def delete_coupon(coupon_id: int, db: Session = Depends(get_db)):
    """Delete a specific coupon by its ID."""
    coupon = _get_or_404(db, models.Coupon, coupon_id, "Coupon")
    db.delete(coupon)
    db.commit()
    return None


@app.post(
    "/coupons/{coupon_id}/discount-rules",
    response_model=schemas.DiscountRule,
    status_code=status.HTTP_201_CREATED,
    tags=["Coupons"],
    summary="Add a discount rule to a coupon",
)
def add_discount_rule(coupon_id: int, rule: schemas.DiscountRuleCreate, db: Session = Depends(get_db)):
    _get_or_404(db, models.Coupon, coupon_id, "Coupon")
    db_rule = models.CouponDiscountRule(
        coupon_id=coupon_id,
        rule_type=rule.rule_type.value,
        product_id=rule.product_id,
        category_name=rule.category_name,
        discount_type=rule.discount_type.value,
        discount_value=rule.discount_value,
    )
    db.add(db_rule)
    db.commit()
    db.refresh(db_rule)
    return db_rule


@app.delete(
    "/coupons/{coupon_id}/discount-rules/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Coupons"],
    summary="Remove a discount rule",
)
def delete_discount_rule(coupon_id: int, rule_id: int, db: Session = Depends(get_db)):
    rule = _get_or_404(db, models.CouponDiscountRule, rule_id, "Discount rule")
    if rule.coupon_id != coupon_id:
        raise HTTPException(status_code=404, detail=f"Discount rule with id={rule_id} not found")
    db.delete(rule)
    db.commit()
    return None


# ═══════════════════════════════════════════════════
#  APPLY COUPON
# ═══════════════════════════════════════════════════

@app.post(
    "/stores/{store_id}/apply-coupon",
    response_model=schemas.CouponAllocation,
    tags=["Apply Coupons"],
    summary="Preview a coupon on a cart",
)
def apply_coupon(store_id: int, request: schemas.CartRequest, db: Session = Depends(get_db)):
    """
    Returns how the coupon's discount would be split across the cart items.

    An unusable coupon still answers 200 with `valid=false` and a `reason`
    (inactive, expired, below minimum order value, out of scope, ...) so
    checkout can explain why.
    """
    try:
        return services.evaluate_coupon(db, store_id, request.items, request.coupon_code, fixed_policy=FIXED_POLICY)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


# ═══════════════════════════════════════════════════
#  ORDERS
# ═══════════════════════════════════════════════════

@app.post(
    "/orders",
    response_model=schemas.OrderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Orders"],
    summary="Place an order",
)
def place_order(order: schemas.OrderCreate, db: Session = Depends(get_db)):
    """
    Stores the order and, when `store_affiliate_id` is given, the affiliate's
    earning and its per-item breakdown.
    """
    try:
        return services.place_order(db, order, fixed_policy=FIXED_POLICY)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except CouponInapplicableError as e:
        raise _coupon_rejected(e)
    except MissingReferenceError as e:
        raise HTTPException(status_code=422, detail=e.message)


@app.get("/orders/{order_id}", response_model=schemas.OrderResponse, tags=["Orders"], summary="Get an order")
def get_order(order_id: int, db: Session = Depends(get_db)):
    return _get_or_404(db, models.Order, order_id, "Order")


@app.put(
    "/orders/{order_id}",
    response_model=schemas.OrderEditResponse,
    tags=["Orders"],
    summary="Edit an order",
)
def edit_order(order_id: int, update_data: schemas.OrderUpdate, db: Session = Depends(get_db)):
    """
    Replace items and/or the coupon. The affiliate earning is rebuilt and an
    audit log entry is written when the commission changes.
    """
    try:
        order, result = services.edit_order(db, order_id, update_data, fixed_policy=FIXED_POLICY)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except CouponInapplicableError as e:
        raise _coupon_rejected(e)
    except MissingReferenceError as e:
        raise HTTPException(status_code=409, detail=f"Recalculation aborted: {e.message}")
    return schemas.OrderEditResponse(order=schemas.OrderResponse.model_validate(order), recalculation=result)


@app.post(
    "/orders/{order_id}/deliver",
    response_model=schemas.OrderResponse,
    tags=["Orders"],
    summary="Mark an order as delivered",
)
def deliver_order(order_id: int, db: Session = Depends(get_db)):
    try:
        return services.mark_order_delivered(db, order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@app.post(
    "/orders/{order_id}/recalculate",
    response_model=Optional[schemas.RecalculationResult],
    tags=["Orders"],
    summary="Recalculate an order's commission",
)
def recalculate_order(order_id: int, request: schemas.RecalculateRequest, db: Session = Depends(get_db)):
    """Returns null when the order has no affiliate earning."""
    try:
        return services.recalculate_order(
            db, order_id, request.reason, request.recalculated_by, fixed_policy=FIXED_POLICY,
        )
    except MissingReferenceError as e:
        status_code = 404 if db.get(models.Order, order_id) is None else 409
        raise HTTPException(status_code=status_code, detail=f"Recalculation aborted: {e.message}")


# ═══════════════════════════════════════════════════
#  EARNINGS
# ═══════════════════════════════════════════════════

@app.get(
    "/affiliates/{affiliate_id}/earnings",
    response_model=List[schemas.AffiliateEarningResponse],
    tags=["Earnings"],
    summary="List an affiliate's earnings",
)
def list_earnings(affiliate_id: int, store_id: Optional[int] = None, db: Session = Depends(get_db)):
    """Status is derived at read time: pending until matured, then available, then paid."""
    _get_or_404(db, models.Affiliate, affiliate_id, "Affiliate")
    query = db.query(models.AffiliateEarning).filter(models.AffiliateEarning.affiliate_id == affiliate_id)
    if store_id is not None:
        query = query.filter(models.AffiliateEarning.store_id == store_id)
    earnings = query.order_by(models.AffiliateEarning.id.desc()).all()
    return [services.earning_response(e) for e in earnings]


@app.get(
    "/earnings/{earning_id}/items",
    response_model=List[schemas.ItemEarningResponse],
    tags=["Earnings"],
    summary="Item-level commission breakdown",
)
def list_item_earnings(earning_id: int, db: Session = Depends(get_db)):
    earning = _get_or_404(db, models.AffiliateEarning, earning_id, "Earning")
    return [schemas.ItemEarningResponse.model_validate(item, from_attributes=True) for item in earning.items]


@app.post(
    "/earnings/{earning_id}/pay",
    response_model=schemas.AffiliateEarningResponse,
    tags=["Earnings"],
    summary="Mark a matured earning as paid",
)
def pay_earning(earning_id: int, db: Session = Depends(get_db)):
    try:
        return services.earning_response(services.mark_earning_paid(db, earning_id))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.get(
    "/affiliates/{affiliate_id}/balance",
    response_model=schemas.BalanceResponse,
    tags=["Earnings"],
    summary="Commission balance for one store",
)
def get_balance(affiliate_id: int, store_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, models.Affiliate, affiliate_id, "Affiliate")
    return services.balance(db, affiliate_id, store_id)


# ═══════════════════════════════════════════════════
#  WITHDRAWALS
# ═══════════════════════════════════════════════════

@app.post(
    "/withdrawals",
    response_model=schemas.WithdrawalResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Withdrawals"],
    summary="Request a withdrawal",
)
def create_withdrawal(request: schemas.WithdrawalCreate, db: Session = Depends(get_db)):
    """
    Requests the whole matured balance for the store, paid out via PIX.
    The claimed earnings stay reserved until the request is paid or rejected.
    """
    try:
        return services.create_withdrawal_request(db, request)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except WithdrawalConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except NoAvailableBalanceError as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.get(
    "/withdrawals",
    response_model=List[schemas.WithdrawalResponse],
    tags=["Withdrawals"],
    summary="List withdrawal requests",
)
def list_withdrawals(
    store_id: Optional[int] = None,
    affiliate_id: Optional[int] = None,
    status_filter: Optional[schemas.WithdrawalStatus] = None,
    db: Session = Depends(get_db),
):
    query = db.query(models.WithdrawalRequest)
    if store_id is not None:
        query = query.filter(models.WithdrawalRequest.store_id == store_id)
    if affiliate_id is not None:
        query = query.filter(models.WithdrawalRequest.affiliate_id == affiliate_id)
    if status_filter is not None:
        query = query.filter(models.WithdrawalRequest.status == status_filter.value)
    return query.order_by(models.WithdrawalRequest.requested_at.desc()).all()


def _withdrawal_action(action, db: Session, request_id: int, **kwargs):
    try:
        return action(db, request_id, **kwargs)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except WithdrawalMismatchError as e:
        raise HTTPException(status_code=409, detail=e.message)


@app.post(
    "/withdrawals/{request_id}/approve",
    response_model=schemas.WithdrawalResponse,
    tags=["Withdrawals"],
    summary="Approve a withdrawal request",
)
def approve_withdrawal(request_id: int, action: schemas.WithdrawalAction, db: Session = Depends(get_db)):
    return _withdrawal_action(services.approve_withdrawal, db, request_id, admin_notes=action.admin_notes)


@app.post(
    "/withdrawals/{request_id}/reject",
    response_model=schemas.WithdrawalResponse,
    tags=["Withdrawals"],
    summary="Reject a withdrawal request",
)
def reject_withdrawal(request_id: int, action: schemas.WithdrawalAction, db: Session = Depends(get_db)):
    return _withdrawal_action(services.reject_withdrawal, db, request_id, admin_notes=action.admin_notes)


@app.post(
    "/withdrawals/{request_id}/pay",
    response_model=schemas.WithdrawalResponse,
    tags=["Withdrawals"],
    summary="Mark a withdrawal request as paid",
)
def pay_withdrawal(request_id: int, action: schemas.WithdrawalAction, db: Session = Depends(get_db)):
    return _withdrawal_action(
        services.pay_withdrawal, db, request_id,
        admin_notes=action.admin_notes, payment_proof=action.payment_proof,
    )


# ═══════════════════════════════════════════════════
#  AUDIT
# ═══════════════════════════════════════════════════

@app.get(
    "/stores/{store_id}/commission-audit",
    response_model=schemas.CommissionAuditReport,
    tags=["Audit"],
    summary="Commission recalculation audit report",
)
def commission_audit(store_id: int, db: Session = Depends(get_db)):
    _get_or_404(db, models.Store, store_id, "Store")
    return services.commission_audit_report(db, store_id)


# ═══════════════════════════════════════════════════
#  HEALTH CHECK
# ═══════════════════════════════════════════════════

@app.get("/", tags=["Health"], summary="Health check")
def root():
    return {"status": "ok", "message": f"{settings.APP_NAME} is running"}
