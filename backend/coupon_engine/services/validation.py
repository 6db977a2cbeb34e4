from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from coupon_engine.models.coupons import MERCHANT_PIN_RE, IssuedCoupon, IssuedCouponStatus, RedemptionMethod
from coupon_engine.services.timeutil import as_utc, utcnow

REASON_EXPIRED = "Coupon has expired"
REASON_FULLY_USED = "Coupon has been fully used"
REASON_USAGE_LIMIT = "Coupon usage limit reached"

REASON_PIN_UNSUPPORTED = "Coupon does not support PIN redemption"
REASON_PIN_REQUIRED = "PIN is required for PIN redemption"
REASON_PIN_NOT_CONFIGURED = "Coupon PIN is not configured"
REASON_PIN_INVALID = "Invalid merchant PIN"


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    reasons: list[str] = field(default_factory=list)

    @classmethod
    def from_reasons(cls, reasons: list[str]) -> "ValidationOutcome":
        return cls(valid=not reasons, reasons=list(reasons))


def is_expired(coupon: IssuedCoupon, now: datetime | None = None) -> bool:
    if coupon.status == IssuedCouponStatus.expired:
        return True
    expires_at = as_utc(coupon.expires_at)
    return expires_at is not None and expires_at < (now or utcnow())


def validate_for_redemption(coupon: IssuedCoupon, *, now: datetime | None = None) -> ValidationOutcome:
    """Collect every reason the instance cannot be redeemed right now.

    Expiry is derived from `expires_at` here; nothing ever writes `expired` ahead of time.
    Status and counters are checked independently so callers see both when they disagree.
    """
    reasons: list[str] = []
    if is_expired(coupon, now):
        reasons.append(REASON_EXPIRED)
    if coupon.status == IssuedCouponStatus.fully_used:
        reasons.append(REASON_FULLY_USED)
    if int(coupon.times_used or 0) >= int(coupon.times_can_be_used or 0):
        reasons.append(REASON_USAGE_LIMIT)
    return ValidationOutcome.from_reasons(reasons)


def validate_pin(coupon: IssuedCoupon, supplied_pin: str | None) -> ValidationOutcome:
    template = coupon.template
    if template is None or not template.supports(RedemptionMethod.pin):
        return ValidationOutcome.from_reasons([REASON_PIN_UNSUPPORTED])

    pin = (supplied_pin or "").strip()
    if not pin:
        return ValidationOutcome.from_reasons([REASON_PIN_REQUIRED])

    if not template.merchant_pin:
        return ValidationOutcome.from_reasons([REASON_PIN_NOT_CONFIGURED])

    if not MERCHANT_PIN_RE.match(pin) or pin != template.merchant_pin:
        return ValidationOutcome.from_reasons([REASON_PIN_INVALID])
    return ValidationOutcome(valid=True)
