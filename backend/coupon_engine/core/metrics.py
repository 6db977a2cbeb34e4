from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_coupons_issued(count: int) -> None:
    _inc("coupons_issued", count)


def record_coupon_assigned() -> None:
    _inc("coupons_assigned")


def record_redemption() -> None:
    _inc("coupon_redemptions")


def record_redemption_rejected() -> None:
    _inc("coupon_redemption_rejections")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
