import argparse
import asyncio
import json
import uuid
from dataclasses import asdict
from typing import Any

from coupon_engine.db.session import SessionLocal
from coupon_engine.schemas.coupons import IssuedCouponRead, UsageLogRead
from coupon_engine.services import assignment as assignment_service
from coupon_engine.services import issuance as issuance_service
from coupon_engine.services import redemption as redemption_service
from coupon_engine.services import reporting as reporting_service
from coupon_engine.services.errors import CouponEngineError


def _parse_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid UUID: {raw}")


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _coupon_json(coupon) -> dict[str, Any]:
    return IssuedCouponRead.model_validate(coupon).model_dump(mode="json", exclude={"template"})


async def issue(template_id: uuid.UUID, user_id: uuid.UUID, times_can_be_used: int, quantity: int | None) -> None:
    async with SessionLocal() as session:
        coupons = await issuance_service.issue_coupons(
            session,
            template_id=template_id,
            user_id=user_id,
            times_can_be_used=times_can_be_used,
            quantity=quantity,
        )
        _emit([_coupon_json(coupon) for coupon in coupons])


async def assign(
    template_id: uuid.UUID,
    user_id: uuid.UUID,
    admin_id: uuid.UUID,
    reason: str,
    notes: str | None,
    times_can_be_used: int,
    quantity: int,
) -> None:
    async with SessionLocal() as session:
        coupon = await assignment_service.assign_coupon(
            session,
            template_id=template_id,
            target_user_id=user_id,
            assigned_by=admin_id,
            reason=reason,
            notes=notes,
            times_can_be_used=times_can_be_used,
            quantity=quantity,
        )
        _emit(_coupon_json(coupon))


async def redeem(code: str, location: str | None, pin: str | None) -> int:
    async with SessionLocal() as session:
        result = await redemption_service.redeem(session, code, location=location, pin=pin)
        if isinstance(result, redemption_service.NotFound):
            _emit({"status": "not_found", "reasons": [redemption_service.REASON_NOT_FOUND]})
            return 1
        if isinstance(result, redemption_service.ValidationFailed):
            _emit({"status": "validation_failed", "reasons": list(result.reasons)})
            return 1
        _emit(
            {
                "status": "success",
                "coupon": _coupon_json(result.coupon),
                "log_entry": UsageLogRead.model_validate(result.log_entry).model_dump(mode="json"),
            }
        )
        return 0


async def stats(template_id: uuid.UUID) -> None:
    async with SessionLocal() as session:
        _emit(asdict(await reporting_service.template_statistics(session, template_id=template_id)))


def _add_issue_commands(subparsers) -> None:
    issue_cmd = subparsers.add_parser("issue", help="Issue coupons from a template to a user")
    issue_cmd.add_argument("--template-id", required=True, type=_parse_uuid, help="Template id")
    issue_cmd.add_argument("--user-id", required=True, type=_parse_uuid, help="Recipient user id")
    issue_cmd.add_argument("--times-can-be-used", type=int, default=1, help="Uses per issued coupon")
    issue_cmd.add_argument("--quantity", type=int, help="Issue this many coupons in one batch")

    assign_cmd = subparsers.add_parser("assign", help="Manually assign a coupon on an administrator's behalf")
    assign_cmd.add_argument("--template-id", required=True, type=_parse_uuid, help="Template id")
    assign_cmd.add_argument("--user-id", required=True, type=_parse_uuid, help="Recipient user id")
    assign_cmd.add_argument("--admin-id", required=True, type=_parse_uuid, help="Assigning administrator id")
    assign_cmd.add_argument("--reason", required=True, help="Assignment reason (3-500 characters)")
    assign_cmd.add_argument("--notes", help="Internal notes (optional)")
    assign_cmd.add_argument("--times-can-be-used", type=int, default=1, help="Uses for the assigned coupon")
    assign_cmd.add_argument("--quantity", type=int, default=1, help="Copies counted against the issuance cap")


def _add_redeem_commands(subparsers) -> None:
    redeem_cmd = subparsers.add_parser("redeem", help="Redeem one use of an issued coupon")
    redeem_cmd.add_argument("code", help="Issued coupon code")
    redeem_cmd.add_argument("--location", help="Where the coupon was redeemed")
    redeem_cmd.add_argument("--pin", help="Merchant PIN for PIN redemption")

    stats_cmd = subparsers.add_parser("stats", help="Show issuance and redemption statistics for a template")
    stats_cmd.add_argument("--template-id", required=True, type=_parse_uuid, help="Template id")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Coupon engine operator utilities")
    subparsers = parser.add_subparsers(dest="command")
    _add_issue_commands(subparsers)
    _add_redeem_commands(subparsers)
    return parser


def _run_cli_command(args: argparse.Namespace) -> int | None:
    if args.command == "issue":
        asyncio.run(issue(args.template_id, args.user_id, args.times_can_be_used, args.quantity))
        return 0

    if args.command == "assign":
        asyncio.run(
            assign(
                args.template_id,
                args.user_id,
                args.admin_id,
                reason=args.reason,
                notes=args.notes,
                times_can_be_used=args.times_can_be_used,
                quantity=args.quantity,
            )
        )
        return 0

    if args.command == "redeem":
        return asyncio.run(redeem(args.code, location=args.location, pin=args.pin))

    if args.command == "stats":
        asyncio.run(stats(args.template_id))
        return 0

    return None


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        exit_code = _run_cli_command(args)
    except CouponEngineError as exc:
        raise SystemExit(f"{exc.code}: {exc.reason}")
    if exit_code is None:
        parser.print_help()
        return 0
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
