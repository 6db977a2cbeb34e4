from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import ColumnElement, and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.models.coupons import CouponTemplate, CouponUsageLog, IssuedCoupon, IssuedCouponStatus
from coupon_engine.services.errors import TemplateNotFound
from coupon_engine.services.timeutil import utcnow


@dataclass(frozen=True)
class TemplateStats:
    template_id: UUID
    total_issued: int
    total_redeemed: int
    total_redemptions: int
    available_coupons: int
    active_coupons: int
    expired_coupons: int
    fully_used_coupons: int


def _count_where(*criteria: ColumnElement[bool]) -> ColumnElement[int]:
    return func.coalesce(func.sum(case((and_(*criteria), 1), else_=0)), 0)


async def get_user_coupons(session: AsyncSession, *, user_id: UUID, active_only: bool = False) -> list[IssuedCoupon]:
    stmt = select(IssuedCoupon).where(IssuedCoupon.user_id == user_id).order_by(IssuedCoupon.issued_at.desc())
    if active_only:
        stmt = stmt.where(
            IssuedCoupon.status.in_([IssuedCouponStatus.available, IssuedCouponStatus.active]),
            or_(IssuedCoupon.expires_at.is_(None), IssuedCoupon.expires_at > utcnow()),
        )
    return list((await session.execute(stmt)).scalars().all())


async def template_statistics(session: AsyncSession, *, template_id: UUID) -> TemplateStats:
    if await session.get(CouponTemplate, template_id) is None:
        raise TemplateNotFound(template_id)

    now = utcnow()
    # Expiry is lazy, so a past expires_at counts as expired unless the coupon was used up first.
    lapsed = and_(IssuedCoupon.expires_at.is_not(None), IssuedCoupon.expires_at < now)
    expired = or_(
        IssuedCoupon.status == IssuedCouponStatus.expired,
        and_(lapsed, IssuedCoupon.status != IssuedCouponStatus.fully_used),
    )

    row = (
        await session.execute(
            select(
                func.coalesce(func.sum(IssuedCoupon.quantity), 0),
                _count_where(IssuedCoupon.times_used > 0),
                _count_where(IssuedCoupon.status == IssuedCouponStatus.available, ~lapsed),
                _count_where(IssuedCoupon.status == IssuedCouponStatus.active, ~lapsed),
                _count_where(expired),
                _count_where(IssuedCoupon.status == IssuedCouponStatus.fully_used),
            ).where(IssuedCoupon.template_id == template_id)
        )
    ).one()
    redemptions = (
        await session.execute(
            select(func.count(CouponUsageLog.id))
            .join(IssuedCoupon, CouponUsageLog.issued_coupon_id == IssuedCoupon.id)
            .where(IssuedCoupon.template_id == template_id)
        )
    ).scalar_one()

    issued, redeemed, available, active, expired_count, fully_used = (int(value or 0) for value in row)
    return TemplateStats(
        template_id=template_id,
        total_issued=issued,
        total_redeemed=redeemed,
        total_redemptions=int(redemptions or 0),
        available_coupons=available,
        active_coupons=active,
        expired_coupons=expired_count,
        fully_used_coupons=fully_used,
    )


async def is_template_code_available(session: AsyncSession, code: str, *, exclude_id: UUID | None = None) -> bool:
    stmt = select(func.count()).select_from(CouponTemplate).where(CouponTemplate.code == code)
    if exclude_id is not None:
        stmt = stmt.where(CouponTemplate.id != exclude_id)
    return int((await session.execute(stmt)).scalar_one() or 0) == 0
