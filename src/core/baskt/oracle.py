"""
Oracle price checks for basket NAVs.

The engine never fetches prices. The imperative shell publishes a NAV per basket
(``OraclePrice``); this module decides whether a submitted trade price is usable
against it.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import BasktError, ErrorCode
from .math import BPS_DIVISOR, within_bps
from .types import OraclePrice, Order, OrderType


def is_fresh(oracle: OraclePrice, now: int) -> bool:
    """True when the published price is not from the future and not older than its max age."""
    if oracle.published_at > now:
        return False
    return (now - oracle.published_at) <= oracle.max_price_age


def publish_price(oracle: OraclePrice, price: int, now: int) -> OraclePrice:
    if price <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, f"price={price}")
    if now < oracle.published_at:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, "publication time moves backwards")
    return replace(oracle, price=price, published_at=now)


def validate_trade_price(
    oracle: OraclePrice, price: int, now: int, max_deviation_bps: int
) -> None:
    """Reject a trade price that is non-positive, stale, or too far from the oracle NAV."""
    if price <= 0 or oracle.price <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, f"price={price}")
    if not is_fresh(oracle, now):
        raise BasktError(
            ErrorCode.STALE_ORACLE_PRICE,
            f"published_at={oracle.published_at} now={now} max_age={oracle.max_price_age}",
        )
    if not within_bps(price, oracle.price, max_deviation_bps):
        raise BasktError(
            ErrorCode.PRICE_OUT_OF_BOUNDS, f"price={price} oracle={oracle.price}"
        )


def validate_limit_price(order: Order, price: int) -> None:
    """Limit orders fill only within ``limit * (1 +/- slippage)``."""
    if order.order_type is not OrderType.LIMIT:
        return
    band = (order.limit_price * order.max_slippage_bps) // BPS_DIVISOR
    if not (order.limit_price - band <= price <= order.limit_price + band):
        raise BasktError(
            ErrorCode.PRICE_OUT_OF_BOUNDS, f"price={price} limit={order.limit_price}"
        )
