from coupon_engine.db.base import Base  # noqa: F401
from coupon_engine.models.user import User, UserRole  # noqa: F401
from coupon_engine.models.coupons import (  # noqa: F401
    AssignmentMethod,
    CouponTemplate,
    CouponUsageLog,
    CouponUsageType,
    DiscountType,
    IssuedCoupon,
    IssuedCouponStatus,
    RedemptionMethod,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "AssignmentMethod",
    "CouponTemplate",
    "CouponUsageLog",
    "CouponUsageType",
    "DiscountType",
    "IssuedCoupon",
    "IssuedCouponStatus",
    "RedemptionMethod",
]
