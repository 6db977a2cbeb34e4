from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core import metrics
from coupon_engine.core.config import settings
from coupon_engine.models.coupons import (
    AssignmentMethod,
    CouponTemplate,
    CouponUsageType,
    IssuedCoupon,
    IssuedCouponStatus,
)
from coupon_engine.models.user import User
from coupon_engine.services.codes import generate_unique_code
from coupon_engine.services.eligibility import check_eligibility, count_issued
from coupon_engine.services.errors import (
    CodeGenerationExhausted,
    CouponIssuanceRejected,
    InvalidCouponRequest,
    TemplateNotFound,
    UserNotFound,
)
from coupon_engine.services.timeutil import utcnow

logger = logging.getLogger(__name__)

REASON_MULTIPLE_SINGLE_USE = "Cannot issue multiple single-use coupons to same user"
REASON_BULK_EXCEEDS_LIMIT = "Bulk issuance would exceed maximum limit"


async def lock_template(session: AsyncSession, template_id: UUID) -> CouponTemplate:
    """Load the template under a row lock so count-check-and-insert is serialized per template."""
    template = (
        (await session.execute(select(CouponTemplate).where(CouponTemplate.id == template_id).with_for_update()))
        .scalars()
        .first()
    )
    if not template:
        raise TemplateNotFound(template_id)
    return template


async def require_user(session: AsyncSession, user_id: UUID) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise UserNotFound(user_id)
    return user


def is_code_collision(exc: IntegrityError) -> bool:
    return "unique_code" in str(getattr(exc, "orig", exc))


async def commit_with_code_retry(
    session: AsyncSession,
    build: Callable[[], Awaitable[list[IssuedCoupon]]],
    *,
    on_conflict: Callable[[], Awaitable[None]] | None = None,
) -> list[IssuedCoupon]:
    """Run `build` and commit; a unique-code race at commit re-runs the whole unit with fresh codes.

    `on_conflict` runs after the rollback of any other integrity failure and may raise a
    business error in its place.
    """
    attempts = max(1, int(settings.coupon_code_max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            coupons = await build()
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            if not is_code_collision(exc):
                if on_conflict is not None:
                    await on_conflict()
                raise
            logger.warning("coupon_code_collision", extra={"attempt": attempt})
            continue
        except Exception:
            await session.rollback()
            raise
        for coupon in coupons:
            await session.refresh(coupon)
        return coupons
    raise CodeGenerationExhausted(attempts)


def _check_positive(name: str, value: int) -> int:
    if int(value) < 1:
        raise InvalidCouponRequest(f"{name} must be at least 1")
    return int(value)


def _new_auto_coupon(template: CouponTemplate, *, user_id: UUID, code: str, times_can_be_used: int) -> IssuedCoupon:
    return IssuedCoupon(
        template=template,
        template_id=template.id,
        user_id=user_id,
        unique_code=code,
        status=IssuedCouponStatus.active,
        times_can_be_used=times_can_be_used,
        times_used=0,
        expires_at=template.expires_at,
        issued_at=utcnow(),
        assignment_method=AssignmentMethod.auto,
        quantity=1,
    )


async def issue_one(
    session: AsyncSession,
    *,
    template_id: UUID,
    user_id: UUID,
    times_can_be_used: int = 1,
) -> IssuedCoupon:
    times_can_be_used = _check_positive("times_can_be_used", times_can_be_used)

    async def build() -> list[IssuedCoupon]:
        template = await lock_template(session, template_id)
        await require_user(session, user_id)
        eligibility = await check_eligibility(session, template=template, user_id=user_id)
        if not eligibility.eligible:
            raise CouponIssuanceRejected(eligibility.reason or "Coupon cannot be issued")
        code = await generate_unique_code(session)
        coupon = _new_auto_coupon(template, user_id=user_id, code=code, times_can_be_used=times_can_be_used)
        session.add(coupon)
        return [coupon]

    (coupon,) = await commit_with_code_retry(session, build)
    metrics.record_coupons_issued(1)
    logger.info(
        "coupon_issued",
        extra={"template_id": str(template_id), "user_id": str(user_id), "issued_coupon_id": str(coupon.id)},
    )
    return coupon


async def issue_many(
    session: AsyncSession,
    *,
    template_id: UUID,
    user_id: UUID,
    times_can_be_used: int = 1,
    quantity: int,
) -> list[IssuedCoupon]:
    times_can_be_used = _check_positive("times_can_be_used", times_can_be_used)
    quantity = _check_positive("quantity", quantity)

    async def build() -> list[IssuedCoupon]:
        template = await lock_template(session, template_id)
        await require_user(session, user_id)
        eligibility = await check_eligibility(session, template=template, user_id=user_id)
        if not eligibility.eligible:
            raise CouponIssuanceRejected(eligibility.reason or "Coupon cannot be issued")
        if template.usage_type == CouponUsageType.single_use and quantity > 1:
            raise CouponIssuanceRejected(REASON_MULTIPLE_SINGLE_USE)
        if template.max_issuance is not None:
            # Counted again under the template lock; a cap overshoot rejects the whole batch.
            if await count_issued(session, template_id=template.id) + quantity > int(template.max_issuance):
                raise CouponIssuanceRejected(REASON_BULK_EXCEEDS_LIMIT)

        reserved: set[str] = set()
        coupons: list[IssuedCoupon] = []
        for _ in range(quantity):
            code = await generate_unique_code(session, reserved=reserved)
            coupons.append(_new_auto_coupon(template, user_id=user_id, code=code, times_can_be_used=times_can_be_used))
        session.add_all(coupons)
        return coupons

    coupons = await commit_with_code_retry(session, build)
    metrics.record_coupons_issued(len(coupons))
    logger.info(
        "coupons_issued_bulk",
        extra={"template_id": str(template_id), "user_id": str(user_id), "quantity": len(coupons)},
    )
    return coupons


async def issue_coupons(
    session: AsyncSession,
    *,
    template_id: UUID,
    user_id: UUID,
    times_can_be_used: int = 1,
    quantity: int | None = None,
) -> list[IssuedCoupon]:
    """Single entry point for automatic issuance regardless of volume."""
    if quantity is None or int(quantity) == 1:
        return [await issue_one(session, template_id=template_id, user_id=user_id, times_can_be_used=times_can_be_used)]
    return await issue_many(
        session, template_id=template_id, user_id=user_id, times_can_be_used=times_can_be_used, quantity=int(quantity)
    )
