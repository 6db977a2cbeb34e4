import asyncio
import json
import uuid

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from coupon_engine import cli
from coupon_engine.db.base import Base
from coupon_engine.db.session import enable_sqlite_write_locks
from coupon_engine.models.coupons import CouponTemplate, CouponUsageType
from coupon_engine.models.user import User, UserRole


def _setup(tmp_path) -> tuple[async_sessionmaker, dict[str, str]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}", future=True, poolclass=NullPool)
    enable_sqlite_write_locks(engine)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def _seed() -> dict[str, str]:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionLocal() as session:
            admin = User(email="admin@example.com", role=UserRole.admin)
            customer = User(email="customer@example.com", role=UserRole.customer)
            template = CouponTemplate(code="CLI", name="CLI coupon", usage_type=CouponUsageType.multi_use)
            session.add_all([admin, customer, template])
            await session.commit()
            return {"admin": str(admin.id), "customer": str(customer.id), "template": str(template.id)}

    return SessionLocal, asyncio.run(_seed())


def test_cli_issue_redeem_and_stats(tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    SessionLocal, ids = _setup(tmp_path)
    monkeypatch.setattr(cli, "SessionLocal", SessionLocal)

    assert cli.main(["issue", "--template-id", ids["template"], "--user-id", ids["customer"], "--times-can-be-used", "2"]) == 0
    (issued,) = json.loads(capsys.readouterr().out)
    assert issued["times_can_be_used"] == 2

    assert cli.main(["redeem", issued["unique_code"], "--location", "Kiosk"]) == 0
    redeemed = json.loads(capsys.readouterr().out)
    assert redeemed["status"] == "success"
    assert redeemed["log_entry"]["location"] == "Kiosk"

    assert cli.main(["redeem", "UNKNOWN23456"]) == 1
    assert json.loads(capsys.readouterr().out)["status"] == "not_found"

    assert cli.main(["stats", "--template-id", ids["template"]]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total_issued"] == 1
    assert stats["total_redemptions"] == 1


def test_cli_assign_and_errors(tmp_path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    SessionLocal, ids = _setup(tmp_path)
    monkeypatch.setattr(cli, "SessionLocal", SessionLocal)

    args = [
        "assign",
        "--template-id",
        ids["template"],
        "--user-id",
        ids["customer"],
        "--admin-id",
        ids["admin"],
        "--reason",
        "Support ticket",
    ]
    assert cli.main(args) == 0
    assigned = json.loads(capsys.readouterr().out)
    assert assigned["status"] == "available"
    assert assigned["assigned_by"] == ids["admin"]

    with pytest.raises(SystemExit, match="assignment_rejected"):
        cli.main(args)

    with pytest.raises(SystemExit, match="template_not_found"):
        cli.main(["stats", "--template-id", str(uuid.uuid4())])


def test_cli_without_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()
