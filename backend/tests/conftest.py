import os
import uuid
from collections.abc import AsyncIterator, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""

from coupon_engine.core import metrics
from coupon_engine.db.base import Base
from coupon_engine.db.session import enable_sqlite_write_locks
from coupon_engine.models.coupons import (
    AssignmentMethod,
    CouponTemplate,
    CouponUsageType,
    DiscountType,
    IssuedCoupon,
    IssuedCouponStatus,
)
from coupon_engine.models.user import User, UserRole


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    metrics.reset()
    yield
    metrics.reset()


class Seeder:
    """Writes fixture rows through short-lived sessions, the way operators would."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def _save(self, obj: Any) -> Any:
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
            return obj

    async def user(self, *, role: UserRole = UserRole.customer, email: str | None = None) -> User:
        email = email or f"{role.value}-{uuid.uuid4().hex[:8]}@example.com"
        return await self._save(User(email=email, name="Test User", role=role))

    async def template(self, **overrides: Any) -> CouponTemplate:
        now = datetime.now(timezone.utc)
        fields: dict[str, Any] = {
            "code": f"TPL-{uuid.uuid4().hex[:8].upper()}",
            "name": "Test coupon",
            "discount_type": DiscountType.fixed,
            "discount_value": 500,
            "usage_type": CouponUsageType.multi_use,
            "max_issuance": None,
            "valid_from": now - timedelta(days=1),
            "expires_at": now + timedelta(days=30),
            "redemption_methods": ["qr"],
            "is_active": True,
        }
        fields.update(overrides)
        return await self._save(CouponTemplate(**fields))

    async def coupon(self, template: CouponTemplate, user: User, **overrides: Any) -> IssuedCoupon:
        fields: dict[str, Any] = {
            "template_id": template.id,
            "user_id": user.id,
            "unique_code": uuid.uuid4().hex[:12].upper(),
            "status": IssuedCouponStatus.active,
            "times_can_be_used": 1,
            "times_used": 0,
            "expires_at": template.expires_at,
            "issued_at": datetime.now(timezone.utc),
            "assignment_method": AssignmentMethod.auto,
            "quantity": 1,
        }
        fields.update(overrides)
        return await self._save(IssuedCoupon(**fields))


@pytest.fixture
async def session_factory(tmp_path) -> AsyncIterator[async_sessionmaker]:
    # A file database gives every session its own connection, so concurrent sessions stay isolated.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coupons.db'}", future=True)
    enable_sqlite_write_locks(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    finally:
        await engine.dispose()


@pytest.fixture
def seed(session_factory: async_sessionmaker) -> Seeder:
    return Seeder(session_factory)
