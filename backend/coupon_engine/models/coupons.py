import enum
import re
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from coupon_engine.db.base import Base
from coupon_engine.models.user import User

MERCHANT_PIN_RE = re.compile(r"^[0-9]{6}$")


class DiscountType(str, enum.Enum):
    fixed = "fixed"
    percentage = "percentage"


class CouponUsageType(str, enum.Enum):
    single_use = "single_use"
    multi_use = "multi_use"


class RedemptionMethod(str, enum.Enum):
    qr = "qr"
    pin = "pin"


class IssuedCouponStatus(str, enum.Enum):
    available = "available"
    active = "active"
    fully_used = "fully_used"
    expired = "expired"


class AssignmentMethod(str, enum.Enum):
    auto = "auto"
    manual = "manual"


TERMINAL_STATUSES = frozenset({IssuedCouponStatus.fully_used, IssuedCouponStatus.expired})


class CouponTemplate(Base):
    __tablename__ = "coupon_templates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, native_enum=False), nullable=False, default=DiscountType.fixed
    )
    # Cents for fixed discounts, whole percent otherwise.
    discount_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    usage_type: Mapped[CouponUsageType] = mapped_column(
        Enum(CouponUsageType, native_enum=False), nullable=False, default=CouponUsageType.single_use
    )
    max_issuance: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    redemption_methods: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=lambda: [RedemptionMethod.qr.value])
    merchant_pin: Mapped[str | None] = mapped_column(String(6), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @validates("merchant_pin")
    def _validate_merchant_pin(self, _key: str, value: str | None) -> str | None:
        if value is not None and not MERCHANT_PIN_RE.match(value):
            raise ValueError("merchant_pin must be a 6-digit numeric string")
        return value

    @validates("redemption_methods")
    def _validate_redemption_methods(self, _key: str, value: Any) -> list[str]:
        return sorted({RedemptionMethod(item).value for item in (value or [])})

    @property
    def methods(self) -> frozenset[RedemptionMethod]:
        return frozenset(RedemptionMethod(item) for item in (self.redemption_methods or []))

    def supports(self, method: RedemptionMethod) -> bool:
        return method in self.methods


class IssuedCoupon(Base):
    __tablename__ = "issued_coupons"
    __table_args__ = (
        UniqueConstraint("template_id", "user_id", "assigned_by", name="uq_issued_coupons_template_user_assigner"),
        CheckConstraint("times_used >= 0 AND times_used <= times_can_be_used", name="ck_issued_coupons_times_used"),
        Index("ix_issued_coupons_user_status", "user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    unique_code: Mapped[str] = mapped_column(String(12), unique=True, nullable=False, index=True)
    template_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("coupon_templates.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    status: Mapped[IssuedCouponStatus] = mapped_column(
        Enum(IssuedCouponStatus, native_enum=False), nullable=False, default=IssuedCouponStatus.active
    )
    times_can_be_used: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    assignment_method: Mapped[AssignmentMethod] = mapped_column(
        Enum(AssignmentMethod, native_enum=False), nullable=False, default=AssignmentMethod.auto
    )
    assignment_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    assignment_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    template: Mapped[CouponTemplate] = relationship("CouponTemplate", lazy="selectin")
    user: Mapped[User] = relationship("User", foreign_keys=[user_id], lazy="selectin")
    usage_logs: Mapped[list["CouponUsageLog"]] = relationship(
        "CouponUsageLog", back_populates="issued_coupon", order_by="CouponUsageLog.used_at", lazy="raise"
    )

    @property
    def remaining_uses(self) -> int:
        return max(0, int(self.times_can_be_used or 0) - int(self.times_used or 0))


class CouponUsageLog(Base):
    __tablename__ = "coupon_usage_logs"
    __table_args__ = (Index("ix_coupon_usage_logs_coupon_used_at", "issued_coupon_id", "used_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    issued_coupon_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("issued_coupons.id"), nullable=False
    )
    redeemed_by_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    issued_coupon: Mapped[IssuedCoupon] = relationship("IssuedCoupon", back_populates="usage_logs")
