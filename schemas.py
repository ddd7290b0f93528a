from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum


# ─────────────── Enums ───────────────

class DiscountType(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class CommissionBasis(str, Enum):
    percentage = "percentage"
    fixed = "fixed"


class CouponScope(str, Enum):
    all = "all"
    product = "product"
    category = "category"


class DiscountRuleType(str, Enum):
    product = "product"
    category = "category"


class CommissionAppliesTo(str, Enum):
    product = "product"
    category = "category"
    default = "default"


class CommissionSource(str, Enum):
    specific_product = "specific_product"
    specific_category = "specific_category"
    default = "default"
    none = "none"


class FixedDiscountPolicy(str, Enum):
    proportional = "proportional"  # one fixed amount shared by the matching items
    per_item = "per_item"          # each matching item gets the fixed amount, capped


class CouponRejection(str, Enum):
    inactive = "inactive"
    not_started = "not_started"
    expired = "expired"
    usage_limit_reached = "usage_limit_reached"
    below_min_order_value = "below_min_order_value"
    out_of_scope = "out_of_scope"


class EarningStatus(str, Enum):
    pending = "pending"
    available = "available"
    paid = "paid"


class WithdrawalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    paid = "paid"
    rejected = "rejected"


def _non_negative(v: float) -> float:
    if v < 0:
        raise ValueError("Must not be negative")
    return v


# ─────────────── Cart schemas ───────────────

class Addon(BaseModel):
    name: str
    price: float
    quantity: int = 1

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Addon quantity must be positive")
        return v

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: float) -> float:
        return _non_negative(v)


class Variant(BaseModel):
    """Selected size, colour or flavour. Kept for display, not priced."""
    name: str
    price: float = 0.0


class CartItem(BaseModel):
    product_id: str
    product_name: str = ""
    price: float  # Price per unit
    promotional_price: Optional[float] = None
    quantity: int
    category: Optional[str] = None
    addons: List[Addon] = []
    flavors: List[Variant] = []
    selected_size: Optional[Variant] = None
    selected_color: Optional[Variant] = None

    @field_validator("quantity")
    @classmethod
    def qty_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Quantity must be positive")
        return v

    @field_validator("price")
    @classmethod
    def price_non_negative(cls, v: float) -> float:
        return _non_negative(v)

    @property
    def effective_price(self) -> float:
        if self.promotional_price is not None and 0 < self.promotional_price < self.price:
            return self.promotional_price
        return self.price


# ─────────────── Coupon schemas ───────────────

class DiscountRuleBase(BaseModel):
    rule_type: DiscountRuleType
    product_id: Optional[str] = None
    category_name: Optional[str] = None
    discount_type: DiscountType
    discount_value: float

    @field_validator("discount_value")
    @classmethod
    def value_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Discount value must be positive")
        return v

    @model_validator(mode="after")
    def one_target(self) -> "DiscountRuleBase":
        if self.rule_type == DiscountRuleType.product:
            if not self.product_id or self.category_name:
                raise ValueError("Product rules reference exactly one product_id")
        elif not self.category_name or self.product_id:
            raise ValueError("Category rules reference exactly one category_name")
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("Discount percentage cannot exceed 100")
        return self


class DiscountRuleCreate(DiscountRuleBase):
    pass


class DiscountRule(DiscountRuleBase):
    id: Optional[int] = None
    coupon_id: Optional[int] = None

    model_config = {"from_attributes": True}


class CouponBase(BaseModel):
    code: str
    discount_type: DiscountType
    discount_value: float
    applies_to: CouponScope = CouponScope.all
    product_ids: List[str] = []
    category_names: List[str] = []
    is_active: bool = True
    min_order_value: Optional[float] = None
    max_uses: Optional[int] = None
    valid_from: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("discount_value")
    @classmethod
    def value_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Discount value must be positive")
        return v

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Coupon code cannot be empty")
        return v

    @model_validator(mode="after")
    def percentage_max_100(self) -> "CouponBase":
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("Discount percentage cannot exceed 100")
        return self


class CouponCreate(CouponBase):
    discount_rules: List[DiscountRuleCreate] = []


class CouponUpdate(BaseModel):
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = None
    applies_to: Optional[CouponScope] = None
    product_ids: Optional[List[str]] = None
    category_names: Optional[List[str]] = None
    is_active: Optional[bool] = None
    min_order_value: Optional[float] = None
    max_uses: Optional[int] = None
    valid_from: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class Coupon(CouponBase):
    id: Optional[int] = None
    store_id: Optional[int] = None
    uses_count: int = 0

    model_config = {"from_attributes": True}


class CouponResponse(Coupon):
    discount_rules: List[DiscountRule] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ─────────────── Coupon allocation (engine output) ───────────────

class ItemDiscount(BaseModel):
    index: int
    product_id: str
    item_subtotal: float
    is_coupon_eligible: bool
    discount: float
    rule_id: Optional[int] = None
    coupon_scope: Optional[CouponScope] = None


class CouponAllocation(BaseModel):
    valid: bool
    reason: Optional[CouponRejection] = None
    message: Optional[str] = None
    order_subtotal: float = 0.0
    eligible_subtotal: float = 0.0
    total_discount: float = 0.0
    items: List[ItemDiscount] = []


class CartRequest(BaseModel):
    items: List[CartItem]
    coupon_code: str


# ─────────────── Commission rules ───────────────

class CommissionRuleBase(BaseModel):
    applies_to: CommissionAppliesTo
    product_id: Optional[str] = None
    category_name: Optional[str] = None
    commission_type: CommissionBasis
    commission_value: float
    is_active: bool = True

    @field_validator("commission_value")
    @classmethod
    def value_non_negative(cls, v: float) -> float:
        return _non_negative(v)

    @model_validator(mode="after")
    def matching_target(self) -> "CommissionRuleBase":
        if self.applies_to == CommissionAppliesTo.product and not self.product_id:
            raise ValueError("Product rules need a product_id")
        if self.applies_to == CommissionAppliesTo.category and not self.category_name:
            raise ValueError("Category rules need a category_name")
        if self.commission_type == CommissionBasis.percentage and self.commission_value > 100:
            raise ValueError("Commission percentage cannot exceed 100")
        return self


class CommissionRuleCreate(CommissionRuleBase):
    pass


class CommissionRuleUpdate(BaseModel):
    commission_type: Optional[CommissionBasis] = None
    commission_value: Optional[float] = None
    is_active: Optional[bool] = None


class CommissionRule(CommissionRuleBase):
    id: Optional[int] = None
    store_affiliate_id: Optional[int] = None

    model_config = {"from_attributes": True}


class ResolvedCommission(BaseModel):
    source: CommissionSource
    commission_type: CommissionBasis
    commission_value: float
    rule_id: Optional[int] = None


# ─────────────── Earnings (engine output) ───────────────

class ItemEarningData(BaseModel):
    product_id: str
    product_name: str = ""
    product_category: Optional[str] = None
    item_subtotal: float
    item_discount: float
    item_value_with_discount: float
    commission_type: CommissionBasis
    commission_value: float
    commission_amount: float
    commission_source: CommissionSource
    is_coupon_eligible: bool
    coupon_scope: Optional[CouponScope] = None

    model_config = {"from_attributes": True}


class OrderCommission(BaseModel):
    order_subtotal: float
    coupon_discount: float
    order_total: float
    commission_type: CommissionBasis
    commission_value: float
    commission_amount: float
    items: List[ItemEarningData]


class EarningSnapshot(BaseModel):
    """The figures a recalculation compares before and after."""
    order_total: float = 0.0
    coupon_discount: float = 0.0
    commission_amount: float = 0.0
    items_count: int = 0


class RecalculationResult(BaseModel):
    before: EarningSnapshot
    after: EarningSnapshot
    commission_difference: float
    logged: bool


class AuditSummary(BaseModel):
    """neutral_count: zero differences in the input; stored audit logs never have one."""
    total_recalculations: int = 0
    total_positive_variation: float = 0.0
    total_negative_variation: float = 0.0
    positive_count: int = 0
    negative_count: int = 0
    neutral_count: int = 0
    average_variation: float = 0.0


# ─────────────── Stores / affiliates ───────────────

class StoreCreate(BaseModel):
    name: str
    affiliate_commission_maturity_days: Optional[int] = Field(default=None, ge=0, le=90)


class StoreMaturityUpdate(BaseModel):
    affiliate_commission_maturity_days: int = Field(ge=0, le=90)


class StoreResponse(BaseModel):
    id: int
    name: str
    affiliate_commission_maturity_days: int

    model_config = {"from_attributes": True}


class AffiliateCreate(BaseModel):
    name: str
    email: str
    pix_key: Optional[str] = None


class AffiliateResponse(AffiliateCreate):
    id: int

    model_config = {"from_attributes": True}


class StoreAffiliateCreate(BaseModel):
    affiliate_id: int
    use_default_commission: bool = True
    default_commission_type: CommissionBasis = CommissionBasis.percentage
    default_commission_value: float = 0.0

    @field_validator("default_commission_value")
    @classmethod
    def value_non_negative(cls, v: float) -> float:
        return _non_negative(v)


class StoreAffiliateResponse(StoreAffiliateCreate):
    id: int
    store_id: int
    is_active: bool

    model_config = {"from_attributes": True}


# ─────────────── Orders ───────────────

class OrderCreate(BaseModel):
    store_id: int
    items: List[CartItem]
    coupon_code: Optional[str] = None
    store_affiliate_id: Optional[int] = None

    @field_validator("items")
    @classmethod
    def not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("An order needs at least one item")
        return v


class OrderUpdate(BaseModel):
    items: Optional[List[CartItem]] = None
    coupon_code: Optional[str] = None
    remove_coupon: bool = False
    reason: str = "order_edited"
    recalculated_by: Optional[str] = None

    @field_validator("items")
    @classmethod
    def not_empty(cls, v: Optional[list]) -> Optional[list]:
        if v is not None and not v:
            raise ValueError("An order needs at least one item")
        return v


class RecalculateRequest(BaseModel):
    reason: str = "manual_recalculation"
    recalculated_by: Optional[str] = None


class OrderItemResponse(CartItem):
    id: int

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    store_id: int
    store_affiliate_id: Optional[int] = None
    status: str
    subtotal: float
    coupon_code: Optional[str] = None
    coupon_discount: float
    total: float
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []

    model_config = {"from_attributes": True}


class OrderEditResponse(BaseModel):
    order: OrderResponse
    recalculation: Optional[RecalculationResult] = None


# ─────────────── Earnings API ───────────────

class TimeRemaining(BaseModel):
    days: int
    hours: int
    minutes: int
    is_available: bool


class ItemEarningResponse(ItemEarningData):
    id: int
    earning_id: int


class AffiliateEarningResponse(BaseModel):
    id: int
    order_id: int
    affiliate_id: int
    store_affiliate_id: int
    store_id: int
    commission_amount: float
    commission_type: CommissionBasis
    commission_value: float
    order_total: float
    status: EarningStatus
    commission_available_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    withdrawal_request_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    remaining: Optional[TimeRemaining] = None
    countdown: Optional[str] = None


class BalanceResponse(BaseModel):
    affiliate_id: int
    store_id: int
    available: float
    requested: float = 0.0  # matured, claimed by an open withdrawal request
    maturing: float
    paid: float
    formatted_available: str


# ─────────────── Withdrawals ───────────────

class WithdrawalCreate(BaseModel):
    affiliate_id: int
    store_id: int
    pix_key: str
    notes: Optional[str] = None

    @field_validator("pix_key")
    @classmethod
    def pix_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("A PIX key is required")
        return v


class WithdrawalAction(BaseModel):
    admin_notes: Optional[str] = None
    payment_proof: Optional[str] = None


class WithdrawalResponse(BaseModel):
    id: int
    affiliate_id: int
    store_id: int
    store_affiliate_id: Optional[int] = None
    amount: float
    status: WithdrawalStatus
    pix_key: Optional[str] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    payment_proof: Optional[str] = None
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ─────────────── Audit ───────────────

class CommissionAuditLogResponse(BaseModel):
    id: int
    order_id: int
    earning_id: Optional[int] = None
    affiliate_id: Optional[int] = None
    store_affiliate_id: Optional[int] = None
    store_id: Optional[int] = None
    order_total_before: float
    coupon_discount_before: float
    commission_amount_before: float
    items_count_before: int
    order_total_after: float
    coupon_discount_after: float
    commission_amount_after: float
    items_count_after: int
    commission_difference: float
    reason: str
    recalculated_by: Optional[str] = None
    applied: bool = True
    recalculated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CommissionAuditReport(BaseModel):
    logs: List[CommissionAuditLogResponse]
    summary: AuditSummary
