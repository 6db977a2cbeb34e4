from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.models.coupons import TERMINAL_STATUSES, CouponUsageLog, IssuedCoupon, IssuedCouponStatus
from coupon_engine.services.errors import UsageLimitConflict
from coupon_engine.services.timeutil import utcnow
from coupon_engine.services.validation import REASON_USAGE_LIMIT


@dataclass(frozen=True)
class UsageRecord:
    coupon: IssuedCoupon
    log_entry: CouponUsageLog


async def record_usage(
    session: AsyncSession,
    coupon: IssuedCoupon,
    *,
    location: str | None = None,
    details: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> UsageRecord:
    """Consume one use of `coupon` and append its usage log entry.

    The increment is a conditional UPDATE so a use can never be recorded past
    `times_can_be_used`, whatever state the in-memory object is in. The caller owns the
    transaction and must commit or roll back.
    """
    now = now or utcnow()
    next_status = case(
        (IssuedCoupon.times_used + 1 >= IssuedCoupon.times_can_be_used, IssuedCouponStatus.fully_used.value),
        else_=IssuedCouponStatus.active.value,
    )
    result = await session.execute(
        update(IssuedCoupon)
        .where(
            IssuedCoupon.id == coupon.id,
            IssuedCoupon.times_used < IssuedCoupon.times_can_be_used,
            IssuedCoupon.status.not_in(list(TERMINAL_STATUSES)),
        )
        .values(times_used=IssuedCoupon.times_used + 1, status=next_status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if int(getattr(result, "rowcount", 0) or 0) != 1:
        raise UsageLimitConflict(REASON_USAGE_LIMIT)

    await session.refresh(coupon, attribute_names=["times_used", "status", "updated_at"])

    entry = CouponUsageLog(
        issued_coupon_id=coupon.id,
        redeemed_by_user_id=coupon.user_id,
        used_at=now,
        location=location,
        details=details,
    )
    session.add(entry)
    await session.flush()
    return UsageRecord(coupon=coupon, log_entry=entry)
