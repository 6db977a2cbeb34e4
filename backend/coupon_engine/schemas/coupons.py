from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from coupon_engine.models.coupons import (
    AssignmentMethod,
    CouponUsageType,
    DiscountType,
    IssuedCouponStatus,
)


class CouponTemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: int
    usage_type: CouponUsageType
    max_issuance: int | None = None
    valid_from: datetime | None = None
    expires_at: datetime | None = None
    redemption_methods: list[str] = Field(default_factory=list)
    is_active: bool


class IssuedCouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    unique_code: str
    template_id: UUID
    user_id: UUID
    status: IssuedCouponStatus
    times_can_be_used: int
    times_used: int
    expires_at: datetime | None = None
    issued_at: datetime
    assigned_by: UUID | None = None
    assignment_method: AssignmentMethod
    assignment_reason: str | None = None
    assignment_notes: str | None = None
    quantity: int
    template: CouponTemplateRead | None = None


class UsageLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    issued_coupon_id: UUID
    redeemed_by_user_id: UUID
    used_at: datetime
    location: str | None = None
    details: dict[str, Any] | None = None


class IssueCouponsRequest(BaseModel):
    template_id: UUID
    user_id: UUID
    times_can_be_used: int = Field(default=1, ge=1)
    quantity: int | None = Field(default=None, ge=1, le=500)


class ManualAssignment(BaseModel):
    """Validated input for an administrator-driven assignment."""

    template_id: UUID
    target_user_id: UUID
    assigned_by: UUID
    reason: str = Field(min_length=3, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)
    times_can_be_used: int = Field(default=1, ge=1)
    quantity: int = Field(default=1, ge=1)

    @field_validator("reason", mode="before")
    @classmethod
    def _strip_reason(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("Assignment reason cannot be empty or just whitespace.")
        return value

    @field_validator("notes", mode="before")
    @classmethod
    def _strip_notes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @model_validator(mode="after")
    def _reject_self_assignment(self) -> "ManualAssignment":
        if self.target_user_id == self.assigned_by:
            raise ValueError("Cannot assign coupon to yourself.")
        return self


class AssignCouponRequest(BaseModel):
    template_id: UUID
    user_id: UUID
    reason: str = Field(min_length=1, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)
    times_can_be_used: int = Field(default=1, ge=1)
    quantity: int = Field(default=1, ge=1)


class RedeemCouponRequest(BaseModel):
    code: str = Field(max_length=64)
    location: str | None = Field(default=None, max_length=255)
    details: dict[str, Any] | None = None
    pin: str | None = Field(default=None, max_length=32)


class RedemptionSuccessResponse(BaseModel):
    status: Literal["success"] = "success"
    coupon: IssuedCouponRead
    log_entry: UsageLogRead


class RedemptionFailureResponse(BaseModel):
    status: Literal["not_found", "validation_failed"]
    reasons: list[str] = Field(default_factory=list)


class EligibilityResponse(BaseModel):
    template_id: UUID
    user_id: UUID
    eligible: bool
    reason: str | None = None


class ScanResponse(BaseModel):
    valid: bool
    reasons: list[str] = Field(default_factory=list)
    coupon: IssuedCouponRead | None = None


class TemplateStatistics(BaseModel):
    template_id: UUID
    total_issued: int
    total_redeemed: int
    total_redemptions: int
    available_coupons: int
    active_coupons: int
    expired_coupons: int
    fully_used_coupons: int


class CodeAvailabilityResponse(BaseModel):
    code: str
    available: bool
