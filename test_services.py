"""
test_services.py
================
Workflow tests against an in-memory SQLite session.

Covers:
- Order placement with coupon and affiliate earning breakdown
- Delivery and maturation-driven balances
- Recalculation on edit, audit logging and idempotence
- Withdrawal requests, one open per affiliate/store, payout of the claimed earnings
- Paid earnings left untouched by recalculation
- Aborted recalculation when a referenced row disappeared
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
import schemas
import services
from database import Base
from exceptions import (
    CouponInapplicableError, InvalidTransitionError, MissingReferenceError,
    NoAvailableBalanceError, NotFoundError, WithdrawalConflictError, WithdrawalMismatchError,
)

NOW = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seeded(db):
    store = models.Store(name="Loja Teste", affiliate_commission_maturity_days=7)
    affiliate = models.Affiliate(name="Joao Silva", email="joao@test.com", pix_key="12345678901")
    db.add_all([store, affiliate])
    db.flush()

    link = models.StoreAffiliate(
        store_id=store.id, affiliate_id=affiliate.id, use_default_commission=False,
        default_commission_type="percentage", default_commission_value=0,
    )
    db.add(link)
    db.flush()
    db.add_all([
        models.CommissionRule(store_affiliate_id=link.id, applies_to="product", product_id="prod-1",
                              commission_type="percentage", commission_value=20, is_active=True),
        models.CommissionRule(store_affiliate_id=link.id, applies_to="category", category_name="categoria1",
                              commission_type="percentage", commission_value=15, is_active=True),
        models.CommissionRule(store_affiliate_id=link.id, applies_to="default",
                              commission_type="percentage", commission_value=10, is_active=True),
        models.Coupon(store_id=store.id, code="TEST10", discount_type="percentage", discount_value=10,
                      applies_to="all", product_ids=[], category_names=[], is_active=True, uses_count=0),
    ])
    db.commit()
    return {"store_id": store.id, "affiliate_id": affiliate.id, "link_id": link.id}


def make_cart():
    return [
        schemas.CartItem(product_id="prod-1", product_name="Produto A", price=100, quantity=2, category="categoria1"),
        schemas.CartItem(
            product_id="prod-2", product_name="Produto B", price=50, quantity=1, category="categoria2",
            addons=[{"name": "Extra", "price": 10, "quantity": 1}],
        ),
        schemas.CartItem(
            product_id="prod-3", product_name="Produto C", price=200, promotional_price=150, quantity=1,
            category="categoria1",
        ),
    ]


def place(db, seeded, coupon_code="test10", items=None):
    payload = schemas.OrderCreate(
        store_id=seeded["store_id"],
        items=items or make_cart(),
        coupon_code=coupon_code,
        store_affiliate_id=seeded["link_id"],
    )
    return services.place_order(db, payload, now=NOW)


def earning_of(db, order):
    return services.order_earnings(db, order.id)[0]


def audit_logs(db):
    return db.query(models.CommissionAuditLog).all()


# ══════════════════════════════════════════════
#  Orders
# ══════════════════════════════════════════════

class TestPlaceOrder:

    def test_order_totals(self, db, seeded):
        order = place(db, seeded)
        assert order.subtotal == 410.0
        assert order.coupon_discount == 41.0
        assert order.total == 369.0
        assert order.coupon_code == "TEST10"
        assert len(order.items) == 3

    def test_earning_and_items(self, db, seeded):
        order = place(db, seeded)
        earning = earning_of(db, order)
        assert earning.commission_amount == 61.65
        assert earning.affiliate_id == seeded["affiliate_id"]
        assert earning.status == "pending"
        assert earning.commission_available_at is None
        assert [i.commission_amount for i in earning.items] == [36.0, 5.4, 20.25]
        assert [i.commission_source for i in earning.items] == [
            "specific_product", "default", "specific_category",
        ]
        assert sum(i.commission_amount for i in earning.items) == pytest.approx(earning.commission_amount)

    def test_coupon_usage_incremented(self, db, seeded):
        place(db, seeded)
        assert services.find_coupon(db, seeded["store_id"], "TEST10").uses_count == 1

    def test_without_affiliate(self, db, seeded):
        payload = schemas.OrderCreate(store_id=seeded["store_id"], items=make_cart())
        order = services.place_order(db, payload, now=NOW)
        assert order.total == 410.0
        assert services.order_earnings(db, order.id) == []

    def test_inactive_link_earns_nothing(self, db, seeded):
        db.get(models.StoreAffiliate, seeded["link_id"]).is_active = False
        db.commit()
        order = place(db, seeded)
        assert services.order_earnings(db, order.id) == []

    def test_rejected_coupon_writes_nothing(self, db, seeded):
        coupon = services.find_coupon(db, seeded["store_id"], "TEST10")
        coupon.min_order_value = 1000
        db.commit()
        with pytest.raises(CouponInapplicableError) as exc:
            place(db, seeded)
        assert exc.value.allocation.reason == schemas.CouponRejection.below_min_order_value
        assert db.query(models.Order).count() == 0
        assert coupon.uses_count == 0

    def test_unknown_coupon(self, db, seeded):
        with pytest.raises(NotFoundError):
            place(db, seeded, coupon_code="NOPE")

    def test_unknown_link(self, db, seeded):
        payload = schemas.OrderCreate(store_id=seeded["store_id"], items=make_cart(), store_affiliate_id=999)
        with pytest.raises(MissingReferenceError):
            services.place_order(db, payload, now=NOW)
        assert db.query(models.Order).count() == 0


class TestDelivery:

    def test_stamps_available_at(self, db, seeded):
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)
        earning = earning_of(db, order)
        assert order.status == "delivered"
        assert services.earning_response(earning, NOW).status == schemas.EarningStatus.pending
        assert services.earning_response(earning, NOW + timedelta(days=7)).status == schemas.EarningStatus.available

    def test_second_delivery_keeps_first_timestamp(self, db, seeded):
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)
        services.mark_order_delivered(db, order.id, now=NOW + timedelta(days=3))
        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=7))
        assert balance.available == 61.65

    def test_balance_follows_the_clock(self, db, seeded):
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)

        early = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=6, hours=23))
        assert (early.available, early.maturing) == (0.0, 61.65)

        late = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=7))
        assert (late.available, late.maturing) == (61.65, 0.0)
        assert late.formatted_available == "R$ 61,65"

    def test_zero_day_maturity(self, db, seeded):
        db.get(models.Store, seeded["store_id"]).affiliate_commission_maturity_days = 0
        db.commit()
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)
        assert services.available_balance(db, seeded["affiliate_id"], seeded["store_id"], NOW) == 61.65


# ══════════════════════════════════════════════
#  Recalculation
# ══════════════════════════════════════════════

class TestRecalculation:

    def test_unchanged_order_writes_no_log(self, db, seeded):
        order = place(db, seeded)
        first = services.recalculate_order(db, order.id, "manual", now=NOW)
        second = services.recalculate_order(db, order.id, "manual", now=NOW)
        assert first.logged is False and second.logged is False
        assert earning_of(db, order).commission_amount == 61.65
        assert audit_logs(db) == []

    def test_item_removed(self, db, seeded):
        order = place(db, seeded)
        payload = schemas.OrderUpdate(items=make_cart()[:2], reason="item_removed", recalculated_by="admin")
        order, result = services.edit_order(db, order.id, payload, now=NOW)

        assert result.commission_difference == -20.25
        assert result.after.items_count == 2
        assert order.total == 234.0
        earning = earning_of(db, order)
        assert earning.commission_amount == 41.4
        assert len(earning.items) == 2

        [log] = audit_logs(db)
        assert log.reason == "item_removed"
        assert log.recalculated_by == "admin"
        assert log.commission_amount_before == 61.65
        assert log.commission_amount_after == 41.4
        assert log.items_count_before == 3
        assert log.coupon_discount_before == 41.0
        assert log.coupon_discount_after == 26.0

    def test_coupon_removed(self, db, seeded):
        order = place(db, seeded)
        order, result = services.edit_order(
            db, order.id, schemas.OrderUpdate(remove_coupon=True, reason="coupon_removed"), now=NOW,
        )
        assert order.coupon_code is None
        assert order.coupon_discount == 0.0
        assert result.after.commission_amount == 68.5
        assert result.commission_difference == 6.85

    def test_rule_change_then_recalculate(self, db, seeded):
        order = place(db, seeded)
        rule = db.query(models.CommissionRule).filter_by(applies_to="default").one()
        rule.commission_value = 20
        db.commit()
        result = services.recalculate_order(db, order.id, "rule_changed", now=NOW)
        assert result.commission_difference == 5.4
        assert len(audit_logs(db)) == 1

    def test_missing_affiliate_aborts(self, db, seeded):
        order = place(db, seeded)
        db.delete(db.get(models.Affiliate, seeded["affiliate_id"]))
        db.commit()

        with pytest.raises(MissingReferenceError):
            services.recalculate_order(db, order.id, "manual", now=NOW)
        assert earning_of(db, order).commission_amount == 61.65
        assert audit_logs(db) == []

    def test_missing_order(self, db, seeded):
        with pytest.raises(MissingReferenceError):
            services.recalculate_order(db, 999, "manual", now=NOW)

    def test_failed_edit_leaves_order_untouched(self, db, seeded):
        order = place(db, seeded)
        with pytest.raises(NotFoundError):
            services.edit_order(
                db, order.id, schemas.OrderUpdate(items=make_cart()[:1], coupon_code="NOPE"), now=NOW,
            )
        db.expire_all()
        assert len(db.get(models.Order, order.id).items) == 3

    def test_audit_report(self, db, seeded):
        order = place(db, seeded)
        services.edit_order(db, order.id, schemas.OrderUpdate(items=make_cart()[:2]), now=NOW)
        services.edit_order(db, order.id, schemas.OrderUpdate(remove_coupon=True), now=NOW + timedelta(hours=1))

        report = services.commission_audit_report(db, seeded["store_id"])
        assert [log.commission_difference for log in report.logs] == [4.6, -20.25]
        assert report.summary.total_recalculations == 2
        assert report.summary.positive_count == 1
        assert report.summary.negative_count == 1
        assert report.summary.total_negative_variation == 20.25

    def test_audit_report_has_no_neutral_entries(self, db, seeded):
        order = place(db, seeded)
        services.recalculate_order(db, order.id, "manual", now=NOW)
        services.edit_order(db, order.id, schemas.OrderUpdate(items=make_cart()[:2]), now=NOW)

        summary = services.commission_audit_report(db, seeded["store_id"]).summary
        assert summary.total_recalculations == 1
        assert summary.neutral_count == 0

    def test_paid_earning_keeps_its_amount(self, db, seeded):
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)
        services.mark_earning_paid(db, earning_of(db, order).id, now=NOW + timedelta(days=7))

        payload = schemas.OrderUpdate(items=make_cart()[:1], reason="item_removed")
        order, result = services.edit_order(db, order.id, payload, now=NOW + timedelta(days=8))

        assert order.total == 180.0
        assert result.after.commission_amount == 36.0
        earning = earning_of(db, order)
        assert earning.status == "paid"
        assert earning.commission_amount == 61.65
        assert len(earning.items) == 3

        [log] = audit_logs(db)
        assert log.applied is False
        assert log.commission_amount_before == 61.65
        assert log.commission_amount_after == 36.0
        assert log.commission_difference == -25.65
        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=8))
        assert balance.paid == 61.65


# ══════════════════════════════════════════════
#  Earnings & withdrawals
# ══════════════════════════════════════════════

class TestWithdrawals:

    def deliver(self, db, seeded):
        order = place(db, seeded)
        services.mark_order_delivered(db, order.id, now=NOW)
        return order

    def request(self, db, seeded, when):
        payload = schemas.WithdrawalCreate(
            affiliate_id=seeded["affiliate_id"], store_id=seeded["store_id"], pix_key="12345678901",
        )
        return services.create_withdrawal_request(db, payload, now=when)

    def test_request_takes_available_balance(self, db, seeded):
        self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        assert request.amount == 61.65
        assert request.status == "pending"
        assert request.store_affiliate_id == seeded["link_id"]

    def test_nothing_matured(self, db, seeded):
        self.deliver(db, seeded)
        with pytest.raises(NoAvailableBalanceError):
            self.request(db, seeded, NOW + timedelta(days=1))

    def test_one_pending_request_per_store(self, db, seeded):
        self.deliver(db, seeded)
        self.request(db, seeded, NOW + timedelta(days=8))
        with pytest.raises(WithdrawalConflictError):
            self.request(db, seeded, NOW + timedelta(days=8))

    def test_pending_index_enforced_by_database(self, db, seeded):
        for _ in range(2):
            db.add(models.WithdrawalRequest(
                affiliate_id=seeded["affiliate_id"], store_id=seeded["store_id"],
                amount=10, status="pending", requested_at=NOW,
            ))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()

    def test_rejected_request_can_be_retried(self, db, seeded):
        self.deliver(db, seeded)
        first = self.request(db, seeded, NOW + timedelta(days=8))
        services.reject_withdrawal(db, first.id, admin_notes="wrong key", now=NOW + timedelta(days=8))
        second = self.request(db, seeded, NOW + timedelta(days=9))
        assert second.amount == 61.65

    def test_pay_settles_earnings(self, db, seeded):
        order = self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        services.approve_withdrawal(db, request.id, now=NOW + timedelta(days=8))
        paid = services.pay_withdrawal(db, request.id, payment_proof="proof.png", now=NOW + timedelta(days=9))

        assert paid.status == "paid"
        assert paid.payment_proof == "proof.png"
        assert earning_of(db, order).status == "paid"
        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=9))
        assert (balance.available, balance.paid) == (0.0, 61.65)

    def test_approved_request_blocks_a_new_one(self, db, seeded):
        order = self.deliver(db, seeded)
        first = self.request(db, seeded, NOW + timedelta(days=8))
        services.approve_withdrawal(db, first.id, now=NOW + timedelta(days=8))
        with pytest.raises(WithdrawalConflictError):
            self.request(db, seeded, NOW + timedelta(days=8, hours=1))

        services.pay_withdrawal(db, first.id, now=NOW + timedelta(days=9))
        settled = db.query(models.AffiliateEarning).filter_by(withdrawal_request_id=first.id).all()
        assert [e.status for e in settled] == ["paid"]
        assert sum(e.commission_amount for e in settled) == first.amount
        assert earning_of(db, order).status == "paid"
        with pytest.raises(NoAvailableBalanceError):
            self.request(db, seeded, NOW + timedelta(days=9, hours=1))

    def test_claimed_earnings_leave_available_balance(self, db, seeded):
        order = self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        earning = earning_of(db, order)
        assert earning.withdrawal_request_id == request.id

        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=8))
        assert (balance.available, balance.requested, balance.paid) == (0.0, 61.65, 0.0)
        with pytest.raises(InvalidTransitionError):
            services.mark_earning_paid(db, earning.id, now=NOW + timedelta(days=8))

    def test_reject_releases_claimed_earnings(self, db, seeded):
        order = self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        services.reject_withdrawal(db, request.id, now=NOW + timedelta(days=8))
        assert earning_of(db, order).withdrawal_request_id is None
        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=8))
        assert (balance.available, balance.requested) == (61.65, 0.0)

    def test_pay_settles_only_claimed_earnings(self, db, seeded):
        first = self.deliver(db, seeded)
        second = place(db, seeded)
        services.mark_order_delivered(db, second.id, now=NOW + timedelta(days=5))
        request = self.request(db, seeded, NOW + timedelta(days=8))
        assert request.amount == 61.65

        services.pay_withdrawal(db, request.id, now=NOW + timedelta(days=13))
        assert earning_of(db, first).status == "paid"
        assert earning_of(db, second).status == "pending"
        balance = services.balance(db, seeded["affiliate_id"], seeded["store_id"], NOW + timedelta(days=13))
        assert (balance.available, balance.paid) == (61.65, 61.65)

    def test_pay_refused_when_claimed_earning_changed(self, db, seeded):
        order = self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        services.edit_order(db, order.id, schemas.OrderUpdate(items=make_cart()[:2]), now=NOW + timedelta(days=8))

        with pytest.raises(WithdrawalMismatchError):
            services.pay_withdrawal(db, request.id, now=NOW + timedelta(days=9))
        db.expire_all()
        assert db.get(models.WithdrawalRequest, request.id).status == "pending"
        assert earning_of(db, order).status == "pending"

        services.reject_withdrawal(db, request.id, now=NOW + timedelta(days=9))
        assert self.request(db, seeded, NOW + timedelta(days=9)).amount == 41.4

    def test_invalid_transition(self, db, seeded):
        self.deliver(db, seeded)
        request = self.request(db, seeded, NOW + timedelta(days=8))
        services.pay_withdrawal(db, request.id, now=NOW + timedelta(days=8))
        with pytest.raises(InvalidTransitionError):
            services.reject_withdrawal(db, request.id, now=NOW + timedelta(days=8))

    def test_earning_paid_only_when_matured(self, db, seeded):
        order = self.deliver(db, seeded)
        earning = earning_of(db, order)
        with pytest.raises(InvalidTransitionError):
            services.mark_earning_paid(db, earning.id, now=NOW + timedelta(days=1))
        paid = services.mark_earning_paid(db, earning.id, now=NOW + timedelta(days=7))
        assert paid.status == "paid"
