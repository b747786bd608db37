"""Liquidity pool: LP deposits, withdrawals and pool balance changes.

The pool is the counterparty to every position. LP shares are minted 1:1 on the
first deposit and pro rata afterwards; withdrawals redeem shares pro rata.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import BasktError, ErrorCode
from .math import bps_of
from .types import LiquidityPool, PoolParams


def init_pool(params: PoolParams) -> LiquidityPool:
    return LiquidityPool(
        deposit_fee_bps=params.deposit_fee_bps,
        withdrawal_fee_bps=params.withdrawal_fee_bps,
        min_deposit=params.min_deposit,
    )


def shares_to_mint(pool: LiquidityPool, net_deposit: int) -> int:
    if pool.total_shares == 0:
        return net_deposit
    return (net_deposit * pool.total_shares) // pool.total_liquidity


def withdrawal_amount(pool: LiquidityPool, lp_amount: int) -> int:
    if pool.total_shares == 0:
        raise BasktError(ErrorCode.INSUFFICIENT_LIQUIDITY, "pool has no shares")
    return (lp_amount * pool.total_liquidity) // pool.total_shares


def add_liquidity(
    pool: LiquidityPool,
    provider: str,
    amount: int,
    min_shares_out: int,
    min_liquidity: int,
    now: int,
) -> tuple[LiquidityPool, int, int]:
    """Deposit *amount*; returns ``(pool, shares_minted, fee)``. The fee goes to the treasury."""
    if amount < max(pool.min_deposit, min_liquidity, 1):
        raise BasktError(
            ErrorCode.BELOW_MINIMUM_DEPOSIT,
            f"amount={amount} min={max(pool.min_deposit, min_liquidity)}",
        )
    if pool.total_shares > 0 and pool.total_liquidity == 0:
        # Settlements drained the pool; outstanding shares have no price.
        raise BasktError(
            ErrorCode.INSUFFICIENT_LIQUIDITY,
            f"pool empty with {pool.total_shares} shares outstanding",
        )
    fee = bps_of(amount, pool.deposit_fee_bps)
    net = amount - fee
    minted = shares_to_mint(pool, net)
    if minted <= 0 or minted < min_shares_out:
        raise BasktError(
            ErrorCode.INVALID_LP_TOKEN_AMOUNT, f"minted={minted} min_out={min_shares_out}"
        )
    balances = dict(pool.lp_balances)
    balances[provider] = balances.get(provider, 0) + minted
    return (
        replace(
            pool,
            total_liquidity=pool.total_liquidity + net,
            total_shares=pool.total_shares + minted,
            lp_balances=balances,
            last_update_timestamp=now,
        ),
        minted,
        fee,
    )


def remove_liquidity(
    pool: LiquidityPool, provider: str, lp_amount: int, now: int
) -> tuple[LiquidityPool, int, int]:
    """Redeem *lp_amount* shares; returns ``(pool, net_to_provider, fee)``."""
    held = pool.lp_balances.get(provider, 0)
    if lp_amount <= 0 or lp_amount > held:
        raise BasktError(ErrorCode.INSUFFICIENT_FUNDS, f"lp_amount={lp_amount} held={held}")
    gross = withdrawal_amount(pool, lp_amount)
    if gross <= 0:
        raise BasktError(ErrorCode.INVALID_LP_TOKEN_AMOUNT, f"lp_amount={lp_amount} redeems 0")
    fee = bps_of(gross, pool.withdrawal_fee_bps)
    balances = dict(pool.lp_balances)
    if held == lp_amount:
        del balances[provider]
    else:
        balances[provider] = held - lp_amount
    return (
        replace(
            decrease_liquidity(pool, gross, now),
            total_shares=pool.total_shares - lp_amount,
            lp_balances=balances,
        ),
        gross - fee,
        fee,
    )


def increase_liquidity(pool: LiquidityPool, amount: int, now: int) -> LiquidityPool:
    return replace(pool, total_liquidity=pool.total_liquidity + amount, last_update_timestamp=now)


def decrease_liquidity(pool: LiquidityPool, amount: int, now: int) -> LiquidityPool:
    if pool.total_liquidity < amount:
        raise BasktError(
            ErrorCode.INSUFFICIENT_LIQUIDITY,
            f"needed={amount} available={pool.total_liquidity}",
        )
    return replace(pool, total_liquidity=pool.total_liquidity - amount, last_update_timestamp=now)


def apply_pool_delta(pool: LiquidityPool, delta: int, now: int) -> LiquidityPool:
    """Apply a signed net settlement delta to pool liquidity."""
    if delta >= 0:
        return increase_liquidity(pool, delta, now)
    return decrease_liquidity(pool, -delta, now)
