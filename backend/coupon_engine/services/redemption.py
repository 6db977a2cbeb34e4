from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core import metrics
from coupon_engine.core.config import settings
from coupon_engine.models.coupons import CouponUsageLog, IssuedCoupon
from coupon_engine.services.errors import UsageLimitConflict
from coupon_engine.services.ledger import record_usage
from coupon_engine.services.validation import REASON_USAGE_LIMIT, validate_for_redemption, validate_pin

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "Coupon not found"
REASON_BUSY = "Coupon is busy, please retry"


@dataclass(frozen=True)
class NotFound:
    code: str


@dataclass(frozen=True)
class ValidationFailed:
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Success:
    coupon: IssuedCoupon
    log_entry: CouponUsageLog


RedemptionResult = NotFound | ValidationFailed | Success


@dataclass(frozen=True)
class RedemptionPreview:
    valid: bool
    reasons: list[str]
    coupon: IssuedCoupon | None = None


async def find_by_code(session: AsyncSession, code: str | None, *, for_update: bool = False) -> IssuedCoupon | None:
    """Exact, case-sensitive lookup; blank input never reaches the store."""
    if not code or not code.strip():
        return None
    stmt = select(IssuedCoupon).where(IssuedCoupon.unique_code == code)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalars().first()


def _collect_reasons(coupon: IssuedCoupon, pin: str | None) -> list[str]:
    reasons: list[str] = []
    if pin is not None:
        reasons.extend(validate_pin(coupon, pin).reasons)
    reasons.extend(validate_for_redemption(coupon).reasons)
    return reasons


def _rejected(code: str, reasons: list[str]) -> ValidationFailed:
    metrics.record_redemption_rejected()
    logger.info("coupon_redemption_rejected", extra={"code": code, "reasons": reasons})
    return ValidationFailed(reasons=reasons)


async def _reasons_after_conflict(session: AsyncSession, code: str) -> list[str]:
    coupon = await find_by_code(session, code, for_update=True)
    reasons = validate_for_redemption(coupon).reasons if coupon else []
    await session.rollback()
    return reasons or [REASON_USAGE_LIMIT]


async def _redeem_once(
    session: AsyncSession,
    code: str,
    *,
    location: str | None,
    details: dict[str, Any] | None,
    pin: str | None,
) -> RedemptionResult:
    coupon = await find_by_code(session, code, for_update=True)
    if coupon is None:
        await session.rollback()
        return NotFound(code=code)

    reasons = _collect_reasons(coupon, pin)
    if reasons:
        await session.rollback()
        return _rejected(code, reasons)

    try:
        record = await record_usage(session, coupon, location=location, details=details)
    except UsageLimitConflict:
        await session.rollback()
        return _rejected(code, await _reasons_after_conflict(session, code))

    await session.commit()
    metrics.record_redemption()
    logger.info(
        "coupon_redeemed",
        extra={
            "issued_coupon_id": str(record.coupon.id),
            "times_used": record.coupon.times_used,
            "status": record.coupon.status.value,
            "via_pin": pin is not None,
        },
    )
    return Success(coupon=record.coupon, log_entry=record.log_entry)


async def redeem(
    session: AsyncSession,
    code: str | None,
    *,
    location: str | None = None,
    details: dict[str, Any] | None = None,
    pin: str | None = None,
) -> RedemptionResult:
    """Look up, validate and consume one use of an issued coupon as a single unit of work."""
    if not code or not code.strip():
        return NotFound(code=code or "")

    attempts = 1 + max(0, int(settings.redemption_lock_retries))
    for attempt in range(1, attempts + 1):
        try:
            return await _redeem_once(session, code, location=location, details=details, pin=pin)
        except OperationalError as exc:
            await session.rollback()
            logger.warning("coupon_redemption_lock_conflict", extra={"code": code, "attempt": attempt, "error": str(exc)})
        except Exception:
            await session.rollback()
            raise
    return _rejected(code, [REASON_BUSY])


async def preview_redemption(session: AsyncSession, code: str | None, *, pin: str | None = None) -> RedemptionPreview:
    """Validate a code for a scanner without consuming a use."""
    coupon = await find_by_code(session, code)
    if coupon is None:
        return RedemptionPreview(valid=False, reasons=[REASON_NOT_FOUND])
    reasons = _collect_reasons(coupon, pin)
    return RedemptionPreview(valid=not reasons, reasons=reasons, coupon=coupon if not reasons else None)
