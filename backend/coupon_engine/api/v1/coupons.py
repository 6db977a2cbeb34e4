from __future__ import annotations

from dataclasses import asdict
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from coupon_engine.core.dependencies import get_current_user, require_admin
from coupon_engine.db.session import get_session
from coupon_engine.models.user import User
from coupon_engine.schemas.coupons import (
    AssignCouponRequest,
    CodeAvailabilityResponse,
    EligibilityResponse,
    IssueCouponsRequest,
    IssuedCouponRead,
    RedeemCouponRequest,
    RedemptionFailureResponse,
    RedemptionSuccessResponse,
    ScanResponse,
    TemplateStatistics,
    UsageLogRead,
)
from coupon_engine.services import assignment as assignment_service
from coupon_engine.services import issuance as issuance_service
from coupon_engine.services import redemption as redemption_service
from coupon_engine.services import reporting as reporting_service
from coupon_engine.services.eligibility import check_eligibility_for

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/issue", response_model=list[IssuedCouponRead], status_code=status.HTTP_201_CREATED)
async def issue_coupons(
    payload: IssueCouponsRequest,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> list[IssuedCouponRead]:
    coupons = await issuance_service.issue_coupons(
        session,
        template_id=payload.template_id,
        user_id=payload.user_id,
        times_can_be_used=payload.times_can_be_used,
        quantity=payload.quantity,
    )
    return [IssuedCouponRead.model_validate(coupon) for coupon in coupons]


@router.post("/admin/assign", response_model=IssuedCouponRead, status_code=status.HTTP_201_CREATED)
async def assign_coupon(
    payload: AssignCouponRequest,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
) -> IssuedCouponRead:
    coupon = await assignment_service.assign_coupon(
        session,
        template_id=payload.template_id,
        target_user_id=payload.user_id,
        assigned_by=admin.id,
        reason=payload.reason,
        notes=payload.notes,
        times_can_be_used=payload.times_can_be_used,
        quantity=payload.quantity,
    )
    return IssuedCouponRead.model_validate(coupon)


@router.post(
    "/redeem",
    response_model=RedemptionSuccessResponse,
    responses={
        status.HTTP_404_NOT_FOUND: {"model": RedemptionFailureResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": RedemptionFailureResponse},
    },
)
async def redeem_coupon(
    payload: RedeemCouponRequest,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(get_current_user),
):
    result = await redemption_service.redeem(
        session,
        payload.code,
        location=payload.location,
        details=payload.details,
        pin=payload.pin,
    )
    if isinstance(result, redemption_service.NotFound):
        body = RedemptionFailureResponse(status="not_found", reasons=[redemption_service.REASON_NOT_FOUND])
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=body.model_dump())
    if isinstance(result, redemption_service.ValidationFailed):
        body = RedemptionFailureResponse(status="validation_failed", reasons=list(result.reasons))
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body.model_dump())
    return RedemptionSuccessResponse(
        coupon=IssuedCouponRead.model_validate(result.coupon),
        log_entry=UsageLogRead.model_validate(result.log_entry),
    )


@router.get("/eligibility", response_model=EligibilityResponse)
async def coupon_eligibility(
    template_id: UUID,
    user_id: UUID,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(get_current_user),
) -> EligibilityResponse:
    result = await check_eligibility_for(session, template_id=template_id, user_id=user_id)
    return EligibilityResponse(template_id=template_id, user_id=user_id, eligible=result.eligible, reason=result.reason)


@router.get("/scan/{code}", response_model=ScanResponse)
async def scan_coupon(
    code: str,
    pin: Annotated[str | None, Query(max_length=32)] = None,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(get_current_user),
) -> ScanResponse:
    preview = await redemption_service.preview_redemption(session, code, pin=pin)
    coupon = IssuedCouponRead.model_validate(preview.coupon) if preview.coupon is not None else None
    return ScanResponse(valid=preview.valid, reasons=preview.reasons, coupon=coupon)


@router.get("/me", response_model=list[IssuedCouponRead])
async def my_coupons(
    active_only: bool = False,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
) -> list[IssuedCouponRead]:
    coupons = await reporting_service.get_user_coupons(session, user_id=current_user.id, active_only=active_only)
    return [IssuedCouponRead.model_validate(coupon) for coupon in coupons]


@router.get("/admin/templates/{template_id}/stats", response_model=TemplateStatistics)
async def template_stats(
    template_id: UUID,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> TemplateStatistics:
    stats = await reporting_service.template_statistics(session, template_id=template_id)
    return TemplateStatistics(**asdict(stats))


@router.get("/admin/templates/code-available", response_model=CodeAvailabilityResponse)
async def template_code_available(
    code: Annotated[str, Query(min_length=1, max_length=64)],
    exclude_id: UUID | None = None,
    session: AsyncSession = Depends(get_session),
    _: User = Depends(require_admin),
) -> CodeAvailabilityResponse:
    cleaned = code.strip()
    available = await reporting_service.is_template_code_available(session, cleaned, exclude_id=exclude_id)
    return CodeAvailabilityResponse(code=cleaned, available=available)
