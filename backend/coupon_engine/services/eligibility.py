from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.models.coupons import CouponTemplate, CouponUsageType, IssuedCoupon
from coupon_engine.models.user import User
from coupon_engine.services.errors import TemplateNotFound, UserNotFound
from coupon_engine.services.timeutil import as_utc, utcnow

REASON_NOT_YET_VALID = "Coupon is not yet valid"
REASON_TEMPLATE_EXPIRED = "Coupon has expired"
REASON_ISSUANCE_LIMIT = "Maximum issuance limit reached"
REASON_ALREADY_HAS_SINGLE_USE = "User already has this single-use coupon"


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str | None = None


def template_window_reason(template: CouponTemplate, now: datetime) -> str | None:
    valid_from = as_utc(template.valid_from)
    if valid_from is not None and now < valid_from:
        return REASON_NOT_YET_VALID
    expires_at = as_utc(template.expires_at)
    if expires_at is not None and expires_at < now:
        return REASON_TEMPLATE_EXPIRED
    return None


async def count_issued(session: AsyncSession, *, template_id: UUID) -> int:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(IssuedCoupon.quantity), 0)).where(IssuedCoupon.template_id == template_id)
        )
    ).scalar_one()
    return int(total or 0)


async def user_holds_template(session: AsyncSession, *, template_id: UUID, user_id: UUID) -> bool:
    count = (
        await session.execute(
            select(func.count())
            .select_from(IssuedCoupon)
            .where(IssuedCoupon.template_id == template_id, IssuedCoupon.user_id == user_id)
        )
    ).scalar_one()
    return int(count or 0) > 0


async def check_eligibility(
    session: AsyncSession,
    *,
    template: CouponTemplate,
    user_id: UUID,
    now: datetime | None = None,
) -> Eligibility:
    """Decide whether `template` may be issued to the user right now; the first failing rule wins."""
    now = now or utcnow()

    reason = template_window_reason(template, now)
    if reason:
        return Eligibility(eligible=False, reason=reason)

    if template.max_issuance is not None:
        if await count_issued(session, template_id=template.id) >= int(template.max_issuance):
            return Eligibility(eligible=False, reason=REASON_ISSUANCE_LIMIT)

    # Multi-use templates may be handed to the same user repeatedly (e.g. weekly rewards).
    if template.usage_type == CouponUsageType.single_use:
        if await user_holds_template(session, template_id=template.id, user_id=user_id):
            return Eligibility(eligible=False, reason=REASON_ALREADY_HAS_SINGLE_USE)

    return Eligibility(eligible=True)


async def check_eligibility_for(
    session: AsyncSession,
    *,
    template_id: UUID,
    user_id: UUID,
    now: datetime | None = None,
) -> Eligibility:
    """Id-based variant of `check_eligibility`; unknown ids raise instead of reading as eligible."""
    template = await session.get(CouponTemplate, template_id)
    if template is None:
        raise TemplateNotFound(template_id)
    if await session.get(User, user_id) is None:
        raise UserNotFound(user_id)
    return await check_eligibility(session, template=template, user_id=user_id, now=now)
