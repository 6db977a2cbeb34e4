from datetime import datetime, timedelta, timezone

import pytest

from coupon_engine.models.coupons import IssuedCouponStatus
from coupon_engine.services import redemption as redemption_service
from coupon_engine.services import reporting as reporting_service
from coupon_engine.services.errors import TemplateNotFound


@pytest.mark.anyio
async def test_template_statistics_and_user_listing(seed, session_factory) -> None:
    past = datetime.now(timezone.utc) - timedelta(days=1)
    template = await seed.template()
    user = await seed.user()

    await seed.coupon(template, user)
    await seed.coupon(template, user, status=IssuedCouponStatus.available)
    single = await seed.coupon(template, user, times_can_be_used=1)
    await seed.coupon(template, user, expires_at=past)
    await seed.coupon(template, user, status=IssuedCouponStatus.expired)
    multi = await seed.coupon(template, user, times_can_be_used=3)

    async with session_factory() as session:
        assert isinstance(await redemption_service.redeem(session, single.unique_code), redemption_service.Success)
        assert isinstance(await redemption_service.redeem(session, multi.unique_code), redemption_service.Success)

    async with session_factory() as session:
        stats = await reporting_service.template_statistics(session, template_id=template.id)
        everything = await reporting_service.get_user_coupons(session, user_id=user.id)
        usable = await reporting_service.get_user_coupons(session, user_id=user.id, active_only=True)

    assert stats == reporting_service.TemplateStats(
        template_id=template.id,
        total_issued=6,
        total_redeemed=2,
        total_redemptions=2,
        available_coupons=1,
        active_coupons=2,
        expired_coupons=2,
        fully_used_coupons=1,
    )
    assert len(everything) == 6
    assert len(usable) == 3
    assert all(coupon.status in {IssuedCouponStatus.available, IssuedCouponStatus.active} for coupon in usable)


@pytest.mark.anyio
async def test_statistics_for_unknown_template(seed, session_factory) -> None:
    user = await seed.user()
    async with session_factory() as session:
        with pytest.raises(TemplateNotFound):
            await reporting_service.template_statistics(session, template_id=user.id)


@pytest.mark.anyio
async def test_template_code_availability(seed, session_factory) -> None:
    template = await seed.template(code="SUMMER")

    async with session_factory() as session:
        assert await reporting_service.is_template_code_available(session, "SUMMER") is False
        assert await reporting_service.is_template_code_available(session, "SUMMER", exclude_id=template.id) is True
        assert await reporting_service.is_template_code_available(session, "WINTER") is True
