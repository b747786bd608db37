"""Funding/borrow index engine and rebalance fee index.

Lag model: the rate being replaced, not the new one, is what accrued over the
elapsed interval. The first rate set after a zero rate therefore never moves the
cumulative index; only later updates reflect the previously active rate.
"""

from __future__ import annotations

from dataclasses import replace

from .errors import BasktError, ErrorCode
from .math import abs_val, funding_to_user, index_accrual, index_increment
from .types import Basket, MarketIndices, Position, RebalanceFeeIndex


def advance_indices(
    indices: MarketIndices, new_funding_rate_bps: int, new_borrow_rate_bps: int, now: int
) -> MarketIndices:
    """Accrue the previous rates over ``now - last_update`` and install the new ones."""
    elapsed = now - indices.last_update_timestamp
    if elapsed <= 0:
        return replace(
            indices,
            current_funding_rate=new_funding_rate_bps,
            current_borrow_rate=new_borrow_rate_bps,
        )
    funding = indices.cumulative_funding_index
    borrow = indices.cumulative_borrow_index
    return MarketIndices(
        current_funding_rate=new_funding_rate_bps,
        current_borrow_rate=new_borrow_rate_bps,
        cumulative_funding_index=funding
        + index_increment(funding, indices.current_funding_rate, elapsed),
        cumulative_borrow_index=borrow
        + index_increment(borrow, indices.current_borrow_rate, elapsed),
        last_update_timestamp=now,
    )


def update_market_indices(
    basket: Basket,
    new_funding_rate_bps: int,
    new_borrow_rate_bps: int,
    now: int,
    max_funding_rate_bps: int,
) -> Basket:
    if not basket.is_trading:
        raise BasktError(ErrorCode.INVALID_BASKT_STATE, "indices update only while Active")
    if abs_val(new_funding_rate_bps) > max_funding_rate_bps:
        raise BasktError(
            ErrorCode.FUNDING_RATE_EXCEEDS_MAXIMUM,
            f"rate={new_funding_rate_bps} max={max_funding_rate_bps}",
        )
    return replace(
        basket,
        indices=advance_indices(basket.indices, new_funding_rate_bps, new_borrow_rate_bps, now),
    )


def bump_rebalance_fee_index(
    index: RebalanceFeeIndex, fee_per_unit: int, now: int
) -> RebalanceFeeIndex:
    """Add *fee_per_unit* to the cumulative index (repeated bumps accumulate)."""
    if fee_per_unit < 0:
        raise BasktError(ErrorCode.INVALID_REBALANCE_FEE, f"fee_per_unit={fee_per_unit}")
    return RebalanceFeeIndex(
        cumulative_index=index.cumulative_index + fee_per_unit,
        last_rebalance_time=now,
    )


def accrue_position(position: Position, indices: MarketIndices) -> Position:
    """Fold funding/borrow accrued since the last stamp into the accumulators."""
    funding = funding_to_user(
        position.size,
        indices.cumulative_funding_index,
        position.last_funding_index,
        position.is_long,
    )
    borrow = index_accrual(
        position.size, indices.cumulative_borrow_index, position.last_borrow_index
    )
    return replace(
        position,
        funding_accumulated=position.funding_accumulated + funding,
        borrow_accumulated=position.borrow_accumulated + borrow,
        last_funding_index=indices.cumulative_funding_index,
        last_borrow_index=indices.cumulative_borrow_index,
    )
