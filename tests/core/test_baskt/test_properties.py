"""Property tests for the baskt engine: conservation, index lag, weight validation."""

from __future__ import annotations

import importlib.util

import pytest

if importlib.util.find_spec("hypothesis") is None:  # pragma: no cover
    pytest.skip("hypothesis not installed", allow_module_level=True)

import hypothesis.strategies as st
from hypothesis import assume, given, settings

from src.core.baskt.indices import advance_indices
from src.core.baskt.lifecycle import validate_basket_assets
from src.core.baskt.math import BPS_DIVISOR, INDEX_PRECISION
from src.core.baskt.settlement import settle, verify_conservation
from src.core.baskt.types import (
    AssetConfig,
    BasketAsset,
    Direction,
    MarketIndices,
    Position,
    PositionStatus,
    SettlementClass,
)

prices = st.integers(min_value=1, max_value=10_000_000)
sizes = st.integers(min_value=1, max_value=10**12)


@st.composite
def positions(draw):
    size = draw(sizes)
    return Position(
        position_id="p",
        owner="u",
        basket_id="b",
        direction=draw(st.sampled_from(list(Direction))),
        size=size,
        collateral=draw(st.integers(min_value=0, max_value=10**13)),
        entry_price=draw(prices),
        funding_accumulated=draw(st.integers(min_value=-10**10, max_value=10**10)),
        borrow_accumulated=draw(st.integers(min_value=0, max_value=10**10)),
        last_rebalance_fee_index=0,
    )


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

@settings(max_examples=300, deadline=None)
@given(
    position=positions(),
    close_bps=st.integers(min_value=1, max_value=BPS_DIVISOR),
    exit_price=prices,
    settlement_class=st.sampled_from(list(SettlementClass)),
    fee_bps=st.integers(min_value=0, max_value=500),
    treasury_cut_bps=st.integers(min_value=0, max_value=5_000),
    funding_delta=st.integers(min_value=-INDEX_PRECISION // 10, max_value=INDEX_PRECISION // 10),
    borrow_delta=st.integers(min_value=0, max_value=INDEX_PRECISION // 10),
    rebalance_index=st.integers(min_value=0, max_value=100),
)
def test_settlement_conserves_escrow(
    position, close_bps, exit_price, settlement_class, fee_bps, treasury_cut_bps,
    funding_delta, borrow_delta, rebalance_index,
):
    size_to_close = max(1, position.size * close_bps // BPS_DIVISOR)
    indices = MarketIndices(
        cumulative_funding_index=INDEX_PRECISION + funding_delta,
        cumulative_borrow_index=INDEX_PRECISION + borrow_delta,
    )
    r = settle(
        position, size_to_close, exit_price, settlement_class, fee_bps, treasury_cut_bps,
        indices, rebalance_index, now=1,
    )
    assert verify_conservation(r)
    assert r.user_payout >= 0
    assert r.treasury_fee >= 0
    assert r.position.collateral + r.collateral_share == position.collateral
    assert r.is_bad_debt == (r.user_equity < 0)
    assert r.fully_closed == (size_to_close == position.size)


@settings(max_examples=200, deadline=None)
@given(position=positions(), split_bps=st.integers(min_value=1, max_value=BPS_DIVISOR - 1))
def test_split_close_releases_all_collateral(position, split_bps):
    first_size = position.size * split_bps // BPS_DIVISOR
    assume(0 < first_size < position.size)
    args = (SettlementClass.NORMAL, 10, 1_000, MarketIndices(), 0)
    first = settle(position, first_size, position.entry_price, *args, now=1)
    assert first.position.status is PositionStatus.OPEN
    second = settle(first.position, first.position.size, position.entry_price, *args, now=2)
    assert first.collateral_share + second.collateral_share == position.collateral
    assert second.fully_closed


# ---------------------------------------------------------------------------
# Indices
# ---------------------------------------------------------------------------

@settings(max_examples=200, deadline=None)
@given(
    rates=st.lists(
        st.tuples(st.integers(min_value=0, max_value=100), st.integers(min_value=1, max_value=86_400)),
        min_size=1,
        max_size=20,
    )
)
def test_non_negative_rates_never_decrease_index(rates):
    idx = MarketIndices()
    now = 0
    for rate, dt in rates:
        now += dt
        prev = idx.cumulative_funding_index
        idx = advance_indices(idx, rate, rate, now)
        assert idx.cumulative_funding_index >= prev
        assert idx.cumulative_borrow_index >= INDEX_PRECISION


@settings(max_examples=100, deadline=None)
@given(rate=st.integers(min_value=-100, max_value=100), dt=st.integers(min_value=1, max_value=10**6))
def test_new_rate_does_not_accrue_over_its_own_interval(rate, dt):
    idx = advance_indices(MarketIndices(), rate, rate, dt)
    assert idx.cumulative_funding_index == INDEX_PRECISION
    assert idx.cumulative_borrow_index == INDEX_PRECISION


# ---------------------------------------------------------------------------
# Basket weights
# ---------------------------------------------------------------------------

@st.composite
def weight_splits(draw):
    n = draw(st.integers(min_value=1, max_value=8))
    cuts = sorted(draw(st.lists(
        st.integers(min_value=1, max_value=BPS_DIVISOR - 1), min_size=n - 1, max_size=n - 1, unique=True,
    )))
    bounds = [0, *cuts, BPS_DIVISOR]
    return [b - a for a, b in zip(bounds, bounds[1:])]


@settings(max_examples=200, deadline=None)
@given(weights=weight_splits())
def test_any_positive_split_of_10000_validates(weights):
    registry = {f"A{i}": AssetConfig(f"A{i}") for i in range(len(weights))}
    assets = [BasketAsset(f"A{i}", w) for i, w in enumerate(weights)]
    validate_basket_assets(registry, assets)
