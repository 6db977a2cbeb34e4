from datetime import datetime, timedelta, timezone

import pytest

from coupon_engine.core import metrics
from coupon_engine.models.coupons import AssignmentMethod, CouponUsageType, IssuedCouponStatus
from coupon_engine.models.user import UserRole
from coupon_engine.services import assignment as assignment_service
from coupon_engine.services import issuance as issuance_service
from coupon_engine.services.errors import CouponAssignmentRejected, InvalidCouponRequest


@pytest.mark.anyio
async def test_manual_assignment_creates_available_coupon(seed, session_factory) -> None:
    template = await seed.template(max_issuance=10)
    admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        coupon = await assignment_service.assign_coupon(
            session,
            template_id=template.id,
            target_user_id=user.id,
            assigned_by=admin.id,
            reason="  Customer service goodwill  ",
            notes="   ",
            times_can_be_used=2,
            quantity=3,
        )

    assert coupon.status == IssuedCouponStatus.available
    assert coupon.assignment_method == AssignmentMethod.manual
    assert coupon.assigned_by == admin.id
    assert coupon.assignment_reason == "Customer service goodwill"
    assert coupon.assignment_notes is None
    assert coupon.times_can_be_used == 2
    assert coupon.quantity == 3
    assert metrics.snapshot()["coupons_assigned"] == 1


@pytest.mark.anyio
async def test_assignment_input_validation(seed, session_factory) -> None:
    template = await seed.template()
    admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        with pytest.raises(InvalidCouponRequest, match="Cannot assign coupon to yourself."):
            await assignment_service.assign_coupon(
                session, template_id=template.id, target_user_id=admin.id, assigned_by=admin.id, reason="Testing"
            )
        with pytest.raises(InvalidCouponRequest, match="Assignment reason cannot be empty or just whitespace."):
            await assignment_service.assign_coupon(
                session, template_id=template.id, target_user_id=user.id, assigned_by=admin.id, reason="   "
            )
        with pytest.raises(InvalidCouponRequest, match="reason"):
            await assignment_service.assign_coupon(
                session, template_id=template.id, target_user_id=user.id, assigned_by=admin.id, reason="ok"
            )


@pytest.mark.anyio
async def test_only_admins_can_assign(seed, session_factory) -> None:
    template = await seed.template()
    customer = await seed.user()
    user = await seed.user()

    async with session_factory() as session:
        with pytest.raises(CouponAssignmentRejected, match="Only administrators can assign coupons."):
            await assignment_service.assign_coupon(
                session, template_id=template.id, target_user_id=user.id, assigned_by=customer.id, reason="Promo"
            )


@pytest.mark.anyio
async def test_duplicate_is_keyed_on_assigning_admin(seed, session_factory) -> None:
    template = await seed.template()
    first_admin = await seed.user(role=UserRole.admin)
    second_admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        await assignment_service.assign_coupon(
            session, template_id=template.id, target_user_id=user.id, assigned_by=first_admin.id, reason="Promo"
        )
        with pytest.raises(
            CouponAssignmentRejected, match="This coupon has already been assigned to this user by the same admin."
        ):
            await assignment_service.assign_coupon(
                session, template_id=template.id, target_user_id=user.id, assigned_by=first_admin.id, reason="Again"
            )
        other = await assignment_service.assign_coupon(
            session, template_id=template.id, target_user_id=user.id, assigned_by=second_admin.id, reason="Promo"
        )

    assert other.assigned_by == second_admin.id


@pytest.mark.anyio
async def test_assignment_rejects_inactive_or_lapsed_templates(seed, session_factory) -> None:
    now = datetime.now(timezone.utc)
    inactive = await seed.template(code="INACTIVE", is_active=False)
    expired = await seed.template(code="OLDPROMO", valid_from=now - timedelta(days=5), expires_at=now - timedelta(days=1))
    admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        with pytest.raises(CouponAssignmentRejected, match="The coupon 'INACTIVE' is not active and cannot be assigned."):
            await assignment_service.assign_coupon(
                session, template_id=inactive.id, target_user_id=user.id, assigned_by=admin.id, reason="Promo"
            )
        with pytest.raises(CouponAssignmentRejected, match="The coupon 'OLDPROMO' has expired and cannot be assigned."):
            await assignment_service.assign_coupon(
                session, template_id=expired.id, target_user_id=user.id, assigned_by=admin.id, reason="Promo"
            )


@pytest.mark.anyio
async def test_assignment_quantity_counts_against_cap(seed, session_factory) -> None:
    template = await seed.template(max_issuance=2)
    admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        with pytest.raises(CouponAssignmentRejected) as excinfo:
            await assignment_service.assign_coupon(
                session,
                template_id=template.id,
                target_user_id=user.id,
                assigned_by=admin.id,
                reason="Bulk gift",
                quantity=3,
            )

    assert excinfo.value.reason == (
        "Cannot assign 3 coupon(s). Only 2 copies remaining before reaching the maximum issuance limit of 2."
    )


@pytest.mark.anyio
async def test_manual_assignment_ignores_single_use_holding(seed, session_factory) -> None:
    template = await seed.template(usage_type=CouponUsageType.single_use)
    admin = await seed.user(role=UserRole.admin)
    user = await seed.user()

    async with session_factory() as session:
        await issuance_service.issue_one(session, template_id=template.id, user_id=user.id)
        coupon = await assignment_service.assign_coupon(
            session, template_id=template.id, target_user_id=user.id, assigned_by=admin.id, reason="Replacement"
        )

    assert coupon.status == IssuedCouponStatus.available
