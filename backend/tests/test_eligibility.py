import uuid
from datetime import datetime, timedelta, timezone

import pytest

from coupon_engine.models.coupons import CouponTemplate, CouponUsageType
from coupon_engine.services import eligibility as eligibility_service
from coupon_engine.services.errors import TemplateNotFound, UserNotFound


@pytest.mark.anyio
async def test_eligible_template_for_new_user(seed, session_factory) -> None:
    template = await seed.template(usage_type=CouponUsageType.single_use, max_issuance=5)
    user = await seed.user()

    async with session_factory() as session:
        stored = await session.get(CouponTemplate, template.id)
        result = await eligibility_service.check_eligibility(session, template=stored, user_id=user.id)

    assert result.eligible is True
    assert result.reason is None


@pytest.mark.anyio
async def test_window_reasons(seed, session_factory) -> None:
    now = datetime.now(timezone.utc)
    future = await seed.template(valid_from=now + timedelta(days=2))
    past = await seed.template(valid_from=now - timedelta(days=10), expires_at=now - timedelta(days=1))
    user = await seed.user()

    async with session_factory() as session:
        not_yet = await eligibility_service.check_eligibility(
            session, template=await session.get(CouponTemplate, future.id), user_id=user.id
        )
        expired = await eligibility_service.check_eligibility(
            session, template=await session.get(CouponTemplate, past.id), user_id=user.id
        )

    assert not_yet == eligibility_service.Eligibility(eligible=False, reason="Coupon is not yet valid")
    assert expired == eligibility_service.Eligibility(eligible=False, reason="Coupon has expired")


@pytest.mark.anyio
async def test_issuance_limit_counts_quantity(seed, session_factory) -> None:
    template = await seed.template(max_issuance=3)
    holder = await seed.user()
    newcomer = await seed.user()
    await seed.coupon(template, holder, quantity=3)

    async with session_factory() as session:
        assert await eligibility_service.count_issued(session, template_id=template.id) == 3
        result = await eligibility_service.check_eligibility(
            session, template=await session.get(CouponTemplate, template.id), user_id=newcomer.id
        )

    assert result.eligible is False
    assert result.reason == "Maximum issuance limit reached"


@pytest.mark.anyio
async def test_single_use_template_is_held_once_per_user(seed, session_factory) -> None:
    single = await seed.template(usage_type=CouponUsageType.single_use)
    multi = await seed.template(usage_type=CouponUsageType.multi_use)
    user = await seed.user()
    await seed.coupon(single, user)
    await seed.coupon(multi, user)

    async with session_factory() as session:
        single_result = await eligibility_service.check_eligibility(
            session, template=await session.get(CouponTemplate, single.id), user_id=user.id
        )
        multi_result = await eligibility_service.check_eligibility(
            session, template=await session.get(CouponTemplate, multi.id), user_id=user.id
        )

    assert single_result.reason == "User already has this single-use coupon"
    assert multi_result.eligible is True


def test_template_window_reason_accepts_naive_datetimes() -> None:
    now = datetime.now(timezone.utc)
    template = CouponTemplate(
        code="NAIVE",
        name="Naive",
        valid_from=(now - timedelta(days=1)).replace(tzinfo=None),
        expires_at=(now + timedelta(days=1)).replace(tzinfo=None),
    )
    assert eligibility_service.template_window_reason(template, now) is None


@pytest.mark.anyio
async def test_eligibility_by_id_rejects_unknown_ids(seed, session_factory) -> None:
    template = await seed.template()
    user = await seed.user()

    async with session_factory() as session:
        with pytest.raises(UserNotFound):
            await eligibility_service.check_eligibility_for(session, template_id=template.id, user_id=uuid.uuid4())
        with pytest.raises(TemplateNotFound):
            await eligibility_service.check_eligibility_for(session, template_id=uuid.uuid4(), user_id=user.id)
        result = await eligibility_service.check_eligibility_for(session, template_id=template.id, user_id=user.id)

    assert result.eligible is True
