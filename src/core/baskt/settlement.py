"""Settlement engine: close, partial close, liquidation and force-close.

``settle()`` turns one close request into exact transfer instructions between
the position escrow, the user, the liquidity pool and the treasury. The order of
computation is fixed:

1. accrue funding/borrow into the position at the current indices,
2. ``size_pct = size_to_close * 10000 / size``,
3. scale the position down once by ``size_pct`` (``scale_down``),
4. PnL, exit notional, closing (or liquidation) fee,
5. rebalance fee since the last stamped index, charged in full even on a
   partial close,
6. ``equity = collateral_share - fees + pnl + funding - borrow``,
7. route value: bad debt (equity < 0) sends the whole collateral share to the
   pool; liquidation pays the user nothing; otherwise fees split between
   treasury and pool and gains/losses move between pool and user.

Every branch disposes of exactly ``collateral_share`` out of escrow.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import BasktError, ErrorCode
from .indices import accrue_position
from .math import (
    BPS_DIVISOR,
    bps_of,
    div_trunc,
    is_liquidatable,
    notional_value,
    pnl,
    rebalance_fee,
    size_pct_bps,
    split_fee,
)
from .types import (
    AccountClass,
    MarketIndices,
    Position,
    PositionStatus,
    SettlementClass,
    SettlementResult,
    Transfer,
)

ESCROW = AccountClass.ESCROW
POOL = AccountClass.POOL
TREASURY = AccountClass.TREASURY
USER = AccountClass.USER


def scale_down(
    position: Position, size_to_close: int, size_pct: int
) -> tuple[Position, int, int, int]:
    """Shrink size, collateral and accumulators for a close of *size_pct* bps.

    Returns ``(remaining_position, collateral_share, funding_share, borrow_share)``.
    The shares are what leaves the position; the remainder stays on it. A full
    close (``size_pct == 10000``) releases every amount exactly.
    """
    collateral_share = (position.collateral * size_pct) // BPS_DIVISOR
    funding_share = div_trunc(position.funding_accumulated * size_pct, BPS_DIVISOR)
    borrow_share = div_trunc(position.borrow_accumulated * size_pct, BPS_DIVISOR)
    remaining = replace(
        position,
        size=position.size - size_to_close,
        collateral=position.collateral - collateral_share,
        funding_accumulated=position.funding_accumulated - funding_share,
        borrow_accumulated=position.borrow_accumulated - borrow_share,
    )
    return remaining, collateral_share, funding_share, borrow_share


def position_equity(position: Position, price: int, indices: MarketIndices) -> int:
    """Collateral plus unrealized PnL plus accrued funding, minus accrued borrow."""
    accrued = accrue_position(position, indices)
    return (
        accrued.collateral
        + pnl(accrued.entry_price, price, accrued.size, accrued.is_long)
        + accrued.funding_accumulated
        - accrued.borrow_accumulated
    )


def check_liquidatable(
    position: Position, price: int, indices: MarketIndices, liquidation_threshold_bps: int
) -> None:
    equity = position_equity(position, price, indices)
    notional = notional_value(position.size, price)
    if not is_liquidatable(equity, notional, liquidation_threshold_bps):
        raise BasktError(
            ErrorCode.POSITION_NOT_LIQUIDATABLE,
            f"equity={equity} notional={notional} threshold={liquidation_threshold_bps}",
        )


def _transfers(legs: list[tuple[int, AccountClass, AccountClass]]) -> tuple[Transfer, ...]:
    return tuple(Transfer(amount, src, dst) for amount, src, dst in legs if amount > 0)


def settle(
    position: Position,
    size_to_close: int,
    exit_price: int,
    settlement_class: SettlementClass,
    fee_bps: int,
    treasury_cut_bps: int,
    indices: MarketIndices,
    rebalance_index: int,
    now: int,
) -> SettlementResult:
    """Compute the settlement of *size_to_close* contracts at *exit_price*.

    *fee_bps* is the closing fee for NORMAL / FORCE_CLOSE and the liquidation fee
    for LIQUIDATION. *rebalance_index* is the basket's current cumulative
    rebalance fee index.
    """
    if position.status is not PositionStatus.OPEN:
        raise BasktError(ErrorCode.INVALID_POSITION_SIZE, f"position {position.position_id} closed")
    if not 0 < size_to_close <= position.size:
        raise BasktError(
            ErrorCode.INVALID_POSITION_SIZE, f"size_to_close={size_to_close} size={position.size}"
        )
    if exit_price <= 0:
        raise BasktError(ErrorCode.INVALID_ORACLE_PRICE, f"exit_price={exit_price}")

    accrued = accrue_position(position, indices)
    size_pct = size_pct_bps(size_to_close, accrued.size)
    remaining, collateral_share, funding_share, borrow_share = scale_down(
        accrued, size_to_close, size_pct
    )

    trade_pnl = pnl(accrued.entry_price, exit_price, size_to_close, accrued.is_long)
    exit_notional = notional_value(size_to_close, exit_price)
    closing_fee = bps_of(exit_notional, fee_bps)
    rb_fee = rebalance_fee(rebalance_index, accrued.last_rebalance_fee_index, exit_notional)
    total_fees = closing_fee + rb_fee
    net_collateral = collateral_share - total_fees
    holding = funding_share - borrow_share
    equity = net_collateral + trade_pnl + holding

    escrow_to_user = escrow_to_pool = escrow_to_treasury = 0
    pool_to_user = pool_to_treasury = 0
    bad_debt = equity < 0

    if bad_debt:
        escrow_to_pool = collateral_share
    elif settlement_class is SettlementClass.LIQUIDATION:
        treasury_fee, _ = split_fee(total_fees, treasury_cut_bps)
        escrow_to_treasury = min(treasury_fee, collateral_share)
        escrow_to_pool = collateral_share - escrow_to_treasury
    else:
        treasury_fee, pool_fee = split_fee(total_fees, treasury_cut_bps)
        gains = max(holding, 0) + max(trade_pnl, 0)
        losses = max(-holding, 0) + max(-trade_pnl, 0)
        escrow_to_treasury = treasury_fee
        escrow_to_pool = losses + pool_fee
        pool_to_user = gains
        escrow_to_user = collateral_share - escrow_to_treasury - escrow_to_pool
        if escrow_to_user < 0:
            # Escrow cannot fund the gross legs; net the pool's side instead.
            shortfall = -escrow_to_user
            netted = min(shortfall, escrow_to_pool)
            escrow_to_pool -= netted
            pool_to_user -= netted
            shortfall -= netted
            escrow_to_treasury -= shortfall
            pool_to_treasury = shortfall
            pool_to_user -= shortfall
            escrow_to_user = 0

    user_payout = escrow_to_user + pool_to_user
    treasury_total = escrow_to_treasury + pool_to_treasury
    pool_net = escrow_to_pool - pool_to_user - pool_to_treasury

    remaining = replace(remaining, last_rebalance_fee_index=rebalance_index)
    if remaining.size == 0:
        remaining = replace(
            remaining, status=PositionStatus.CLOSED, exit_price=exit_price, closed_at=now
        )

    return SettlementResult(
        settlement_class=settlement_class,
        size_closed=size_to_close,
        size_pct_bps=size_pct,
        exit_price=exit_price,
        pnl=trade_pnl,
        funding_share=funding_share,
        borrow_share=borrow_share,
        exit_notional=exit_notional,
        closing_fee=closing_fee,
        rebalance_fee=rb_fee,
        total_fees=total_fees,
        collateral_share=collateral_share,
        net_collateral=net_collateral,
        user_equity=equity,
        user_payout=user_payout,
        treasury_fee=treasury_total,
        pool_net_delta=pool_net,
        is_bad_debt=bad_debt,
        bad_debt_amount=-equity if bad_debt else 0,
        transfers=_transfers([
            (escrow_to_treasury, ESCROW, TREASURY),
            (escrow_to_pool, ESCROW, POOL),
            (escrow_to_user, ESCROW, USER),
            (pool_to_treasury, POOL, TREASURY),
            (pool_to_user, POOL, USER),
        ]),
        position=remaining,
    )


def verify_conservation(result: SettlementResult) -> bool:
    """Escrow releases exactly the collateral share; nothing is created or lost."""
    from_escrow = sum(t.amount for t in result.transfers if t.source is ESCROW)
    if from_escrow != result.collateral_share:
        return False
    if result.user_payout + result.treasury_fee + result.pool_net_delta != result.collateral_share:
        return False
    if result.is_bad_debt or result.settlement_class is SettlementClass.LIQUIDATION:
        return result.user_payout == 0
    return result.user_payout == result.user_equity
