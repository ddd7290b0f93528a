from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, Numeric, String, Text,
    UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


def _money(**kwargs):
    return Column(Numeric(12, 2, asdecimal=False), **kwargs)


class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    affiliate_commission_maturity_days = Column(Integer, nullable=False, default=7)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Affiliate(Base):
    __tablename__ = "affiliates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    pix_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StoreAffiliate(Base):
    """
    Link between one affiliate and one store, with the store's commission
    configuration for that affiliate.

    use_default_commission: when true and no explicit "default" rule exists,
        default_commission_type/value apply to items no specific rule covers.
    """
    __tablename__ = "store_affiliates"
    __table_args__ = (UniqueConstraint("store_id", "affiliate_id", name="uq_store_affiliate"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False)
    use_default_commission = Column(Boolean, default=True, nullable=False)
    default_commission_type = Column(String, default="percentage", nullable=False)
    default_commission_value = _money(default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    store = relationship("Store")
    affiliate = relationship("Affiliate")
    commission_rules = relationship(
        "CommissionRule", back_populates="store_affiliate", cascade="all, delete-orphan",
        order_by="CommissionRule.id",
    )


class CommissionRule(Base):
    """
    applies_to: 'product' | 'category' | 'default'
    commission_type: 'percentage' | 'fixed'
    """
    __tablename__ = "affiliate_commission_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    store_affiliate_id = Column(Integer, ForeignKey("store_affiliates.id"), nullable=False, index=True)
    applies_to = Column(String, nullable=False)
    product_id = Column(String, nullable=True)
    category_name = Column(String, nullable=True)
    commission_type = Column(String, nullable=False)
    commission_value = _money(nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    store_affiliate = relationship("StoreAffiliate", back_populates="commission_rules")


class Coupon(Base):
    """
    discount_type: 'percentage' | 'fixed'
    applies_to: 'all' | 'product' | 'category'
    product_ids / category_names: JSON lists restricting the scope.
    """
    __tablename__ = "coupons"
    __table_args__ = (UniqueConstraint("store_id", "code", name="uq_coupon_code_per_store"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    code = Column(String, nullable=False)
    discount_type = Column(String, nullable=False)
    discount_value = _money(nullable=False)
    applies_to = Column(String, default="all", nullable=False)
    product_ids = Column(JSON, default=list, nullable=False)
    category_names = Column(JSON, default=list, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    min_order_value = _money(nullable=True)
    max_uses = Column(Integer, nullable=True)
    uses_count = Column(Integer, default=0, nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    discount_rules = relationship(
        "CouponDiscountRule", back_populates="coupon", cascade="all, delete-orphan",
        order_by="CouponDiscountRule.id",
    )


class CouponDiscountRule(Base):
    """rule_type: 'product' | 'category'; exactly one of product_id / category_name is set."""
    __tablename__ = "coupon_discount_rules"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False, index=True)
    rule_type = Column(String, nullable=False)
    product_id = Column(String, nullable=True)
    category_name = Column(String, nullable=True)
    discount_type = Column(String, nullable=False)
    discount_value = _money(nullable=False)

    coupon = relationship("Coupon", back_populates="discount_rules")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    store_affiliate_id = Column(Integer, ForeignKey("store_affiliates.id"), nullable=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=True)
    coupon_code = Column(String, nullable=True)
    status = Column(String, default="pending", nullable=False)
    subtotal = _money(default=0, nullable=False)
    coupon_discount = _money(default=0, nullable=False)
    total = _money(default=0, nullable=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    coupon = relationship("Coupon")
    store = relationship("Store")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    product_name = Column(String, default="", nullable=False)
    category = Column(String, nullable=True)
    price = _money(nullable=False)
    promotional_price = _money(nullable=True)
    quantity = Column(Integer, nullable=False)
    addons = Column(JSON, default=list, nullable=False)
    flavors = Column(JSON, default=list, nullable=False)
    selected_size = Column(JSON, nullable=True)
    selected_color = Column(JSON, nullable=True)

    order = relationship("Order", back_populates="items")


class AffiliateEarning(Base):
    """
    One per (order, affiliate).

    status: 'pending' | 'paid' as stored. 'available' is derived at read time
    from commission_available_at and never written.

    withdrawal_request_id: set while an open (pending or approved) withdrawal
    request claims this earning; cleared again if that request is rejected.
    """
    __tablename__ = "affiliate_earnings"
    __table_args__ = (UniqueConstraint("order_id", "affiliate_id", name="uq_earning_per_order_affiliate"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    store_affiliate_id = Column(Integer, ForeignKey("store_affiliates.id"), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    commission_amount = _money(default=0, nullable=False)
    commission_type = Column(String, nullable=False)
    commission_value = _money(default=0, nullable=False)
    order_total = _money(default=0, nullable=False)
    status = Column(String, default="pending", nullable=False)
    commission_available_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    withdrawal_request_id = Column(
        Integer, ForeignKey("affiliate_withdrawal_requests.id"), nullable=True, index=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship(
        "ItemEarning", back_populates="earning", cascade="all, delete-orphan", order_by="ItemEarning.id"
    )


class ItemEarning(Base):
    __tablename__ = "affiliate_item_earnings"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    earning_id = Column(Integer, ForeignKey("affiliate_earnings.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    product_name = Column(String, default="", nullable=False)
    product_category = Column(String, nullable=True)
    item_subtotal = _money(nullable=False)
    item_discount = _money(default=0, nullable=False)
    item_value_with_discount = _money(nullable=False)
    commission_type = Column(String, nullable=False)
    commission_value = _money(default=0, nullable=False)
    commission_amount = _money(default=0, nullable=False)
    commission_source = Column(String, nullable=False)
    is_coupon_eligible = Column(Boolean, default=False, nullable=False)
    coupon_scope = Column(String, nullable=True)

    earning = relationship("AffiliateEarning", back_populates="items")


class CommissionAuditLog(Base):
    """
    Append-only record of a recalculation that changed the commission.

    applied: false when the earning was already paid and kept its amount; the
    row then only records the difference for reconciliation.
    """
    __tablename__ = "affiliate_commission_recalc_log"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    earning_id = Column(Integer, nullable=True)
    affiliate_id = Column(Integer, nullable=True)
    store_affiliate_id = Column(Integer, nullable=True)
    store_id = Column(Integer, nullable=True, index=True)
    order_total_before = _money(default=0, nullable=False)
    coupon_discount_before = _money(default=0, nullable=False)
    commission_amount_before = _money(default=0, nullable=False)
    items_count_before = Column(Integer, default=0, nullable=False)
    order_total_after = _money(default=0, nullable=False)
    coupon_discount_after = _money(default=0, nullable=False)
    commission_amount_after = _money(default=0, nullable=False)
    items_count_after = Column(Integer, default=0, nullable=False)
    commission_difference = _money(default=0, nullable=False)
    reason = Column(String, nullable=False)
    recalculated_by = Column(String, nullable=True)
    applied = Column(Boolean, default=True, nullable=False)
    recalculated_at = Column(DateTime(timezone=True), nullable=False)


class WithdrawalRequest(Base):
    """
    status: 'pending' | 'approved' | 'paid' | 'rejected'

    At most one open (pending or approved) request per (affiliate, store).
    The pending half is also enforced by the partial unique index below.
    """
    __tablename__ = "affiliate_withdrawal_requests"
    __table_args__ = (
        Index(
            "uq_pending_withdrawal_per_store",
            "affiliate_id",
            "store_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    store_affiliate_id = Column(Integer, ForeignKey("store_affiliates.id"), nullable=True)
    amount = _money(nullable=False)
    status = Column(String, default="pending", nullable=False)
    pix_key = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)
    payment_proof = Column(String, nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
