from __future__ import annotations

import secrets
from collections.abc import Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.config import settings
from coupon_engine.models.coupons import IssuedCoupon
from coupon_engine.services.errors import CodeGenerationExhausted

# Uppercase letters and digits without the look-alikes 0/O and 1/I.
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def random_code(length: int | None = None) -> str:
    size = int(length or settings.coupon_code_length)
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(size))


async def code_exists(session: AsyncSession, code: str) -> bool:
    count = (
        await session.execute(select(func.count()).select_from(IssuedCoupon).where(IssuedCoupon.unique_code == code))
    ).scalar_one()
    return int(count or 0) > 0


async def generate_unique_code(
    session: AsyncSession,
    *,
    reserved: set[str] | None = None,
    max_attempts: int | None = None,
    candidate_factory: Callable[[], str] = random_code,
) -> str:
    """Return a code not yet present in the store.

    `reserved` holds codes already handed out within the caller's unit of work but not
    flushed yet; the returned code is added to it.
    """
    attempts = int(max_attempts or settings.coupon_code_max_attempts)
    for _ in range(attempts):
        candidate = candidate_factory()
        if reserved is not None and candidate in reserved:
            continue
        if await code_exists(session, candidate):
            continue
        if reserved is not None:
            reserved.add(candidate)
        return candidate
    raise CodeGenerationExhausted(attempts)
