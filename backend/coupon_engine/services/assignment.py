from __future__ import annotations

import logging
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core import metrics
from coupon_engine.models.coupons import AssignmentMethod, IssuedCoupon, IssuedCouponStatus
from coupon_engine.models.user import UserRole
from coupon_engine.schemas.coupons import ManualAssignment
from coupon_engine.services.codes import generate_unique_code
from coupon_engine.services.eligibility import REASON_NOT_YET_VALID, count_issued, template_window_reason
from coupon_engine.services.errors import CouponAssignmentRejected, InvalidCouponRequest
from coupon_engine.services.issuance import commit_with_code_retry, lock_template, require_user
from coupon_engine.services.timeutil import utcnow

logger = logging.getLogger(__name__)

REASON_DUPLICATE_ASSIGNMENT = "This coupon has already been assigned to this user by the same admin."
REASON_NOT_ADMIN = "Only administrators can assign coupons."


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid assignment request"
    first = errors[0]
    message = str(first.get("msg") or "Invalid assignment request")
    prefix = "Value error, "
    if message.startswith(prefix):
        return message[len(prefix):]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {message}" if field else message


async def _assignment_exists(session: AsyncSession, data: ManualAssignment) -> bool:
    count = (
        await session.execute(
            select(func.count())
            .select_from(IssuedCoupon)
            .where(
                IssuedCoupon.template_id == data.template_id,
                IssuedCoupon.user_id == data.target_user_id,
                IssuedCoupon.assigned_by == data.assigned_by,
            )
        )
    ).scalar_one()
    return int(count or 0) > 0


async def assign_coupon(
    session: AsyncSession,
    *,
    template_id: UUID,
    target_user_id: UUID,
    assigned_by: UUID,
    reason: str,
    notes: str | None = None,
    times_can_be_used: int = 1,
    quantity: int = 1,
) -> IssuedCoupon:
    """Grant a coupon on an administrator's behalf, independent of the automatic issuance rules.

    Duplicates are keyed on (template, user, admin), so two admins may each assign the
    same template to one user. The new instance starts out `available`.
    """
    try:
        data = ManualAssignment(
            template_id=template_id,
            target_user_id=target_user_id,
            assigned_by=assigned_by,
            reason=reason,
            notes=notes,
            times_can_be_used=times_can_be_used,
            quantity=quantity,
        )
    except ValidationError as exc:
        raise InvalidCouponRequest(_validation_message(exc)) from exc

    async def build() -> list[IssuedCoupon]:
        template = await lock_template(session, data.template_id)
        await require_user(session, data.target_user_id)
        admin = await require_user(session, data.assigned_by)
        if admin.role != UserRole.admin:
            raise CouponAssignmentRejected(REASON_NOT_ADMIN)

        if not template.is_active:
            raise CouponAssignmentRejected(f"The coupon '{template.code}' is not active and cannot be assigned.")
        window = template_window_reason(template, utcnow())
        if window == REASON_NOT_YET_VALID:
            raise CouponAssignmentRejected(f"The coupon '{template.code}' is not yet valid and cannot be assigned.")
        if window:
            raise CouponAssignmentRejected(f"The coupon '{template.code}' has expired and cannot be assigned.")

        if template.max_issuance is not None:
            issued = await count_issued(session, template_id=template.id)
            if issued + data.quantity > int(template.max_issuance):
                remaining = max(0, int(template.max_issuance) - issued)
                raise CouponAssignmentRejected(
                    f"Cannot assign {data.quantity} coupon(s). Only {remaining} copies remaining before "
                    f"reaching the maximum issuance limit of {template.max_issuance}."
                )

        if await _assignment_exists(session, data):
            raise CouponAssignmentRejected(REASON_DUPLICATE_ASSIGNMENT)

        coupon = IssuedCoupon(
            template=template,
            template_id=template.id,
            user_id=data.target_user_id,
            unique_code=await generate_unique_code(session),
            status=IssuedCouponStatus.available,
            times_can_be_used=data.times_can_be_used,
            times_used=0,
            expires_at=template.expires_at,
            issued_at=utcnow(),
            assigned_by=data.assigned_by,
            assignment_method=AssignmentMethod.manual,
            assignment_reason=data.reason,
            assignment_notes=data.notes,
            quantity=data.quantity,
        )
        session.add(coupon)
        return [coupon]

    async def on_conflict() -> None:
        # Lost a race against the same admin assigning concurrently.
        if await _assignment_exists(session, data):
            raise CouponAssignmentRejected(REASON_DUPLICATE_ASSIGNMENT)

    (coupon,) = await commit_with_code_retry(session, build, on_conflict=on_conflict)
    metrics.record_coupon_assigned()
    logger.info(
        "coupon_assigned",
        extra={
            "template_id": str(data.template_id),
            "user_id": str(data.target_user_id),
            "assigned_by": str(data.assigned_by),
            "issued_coupon_id": str(coupon.id),
        },
    )
    return coupon
