from __future__ import annotations

from uuid import UUID


class CouponEngineError(Exception):
    """Base class for failures raised by the coupon services."""

    code = "coupon_error"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class TemplateNotFound(CouponEngineError):
    code = "template_not_found"

    def __init__(self, template_id: UUID) -> None:
        super().__init__("Coupon template not found")
        self.template_id = template_id


class UserNotFound(CouponEngineError):
    code = "user_not_found"

    def __init__(self, user_id: UUID) -> None:
        super().__init__("User not found")
        self.user_id = user_id


class InvalidCouponRequest(CouponEngineError):
    code = "invalid_request"


class CouponIssuanceRejected(CouponEngineError):
    code = "issuance_rejected"


class CouponAssignmentRejected(CouponEngineError):
    code = "assignment_rejected"


class CodeGenerationExhausted(CouponEngineError):
    code = "code_generation_exhausted"

    def __init__(self, attempts: int) -> None:
        super().__init__("Unable to generate unique code after maximum attempts")
        self.attempts = attempts


class UsageLimitConflict(CouponEngineError):
    """The conditional counter update matched no row; another redemption got there first."""

    code = "usage_limit_conflict"
