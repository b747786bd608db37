"""Tests for src/core/baskt/liquidity.py: LP shares and pool balance changes."""

import pytest

from src.core.baskt.errors import BasktError, ErrorCode
from src.core.baskt.liquidity import (
    add_liquidity,
    apply_pool_delta,
    init_pool,
    remove_liquidity,
)
from src.core.baskt.types import LiquidityPool, PoolParams

MIN_LIQUIDITY = 1_000_000


def _make_pool(deposit_fee_bps=0, withdrawal_fee_bps=0, min_deposit=1_000_000):
    return init_pool(PoolParams(deposit_fee_bps, withdrawal_fee_bps, min_deposit))


def _deposit(pool, provider, amount, min_out=0):
    return add_liquidity(pool, provider, amount, min_out, MIN_LIQUIDITY, now=5)


# ---------------------------------------------------------------------------
# Deposits
# ---------------------------------------------------------------------------

class TestAddLiquidity:
    def test_first_deposit_mints_one_to_one(self):
        pool, minted, fee = _deposit(_make_pool(), "a", 10_000_000)
        assert minted == 10_000_000
        assert fee == 0
        assert pool.total_liquidity == 10_000_000
        assert pool.total_shares == 10_000_000
        assert pool.lp_balances == {"a": 10_000_000}
        assert pool.last_update_timestamp == 5

    def test_pro_rata_after_pool_gain(self):
        pool, _, _ = _deposit(_make_pool(), "a", 10_000_000)
        pool = apply_pool_delta(pool, 5_000_000, 6)
        pool, minted, _ = _deposit(pool, "b", 3_000_000)
        assert minted == 2_000_000
        assert pool.total_shares == 12_000_000

    def test_deposit_fee(self):
        pool, minted, fee = _deposit(_make_pool(deposit_fee_bps=100), "a", 10_000_000)
        assert fee == 100_000
        assert minted == 9_900_000
        assert pool.total_liquidity == 9_900_000

    def test_below_minimum(self):
        with pytest.raises(BasktError) as exc:
            _deposit(_make_pool(), "a", 999_999)
        assert exc.value.code is ErrorCode.BELOW_MINIMUM_DEPOSIT

    def test_slippage_guard(self):
        with pytest.raises(BasktError) as exc:
            _deposit(_make_pool(), "a", 10_000_000, min_out=10_000_001)
        assert exc.value.code is ErrorCode.INVALID_LP_TOKEN_AMOUNT

    def test_empty_pool_with_outstanding_shares(self):
        pool = LiquidityPool(total_liquidity=0, total_shares=100, lp_balances={"a": 100})
        with pytest.raises(BasktError) as exc:
            _deposit(pool, "b", 5_000_000)
        assert exc.value.code is ErrorCode.INSUFFICIENT_LIQUIDITY


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------

class TestRemoveLiquidity:
    def _two_providers(self):
        pool, _, _ = _deposit(_make_pool(), "a", 10_000_000)
        pool = apply_pool_delta(pool, 5_000_000, 6)
        pool, _, _ = _deposit(pool, "b", 3_000_000)
        return pool

    def test_redeems_pro_rata(self):
        pool, net, fee = remove_liquidity(self._two_providers(), "b", 2_000_000, 7)
        assert net == 3_000_000
        assert fee == 0
        assert "b" not in pool.lp_balances
        assert pool.total_liquidity == 15_000_000
        assert pool.total_shares == 10_000_000

    def test_withdrawal_fee(self):
        pool, _, _ = _deposit(_make_pool(withdrawal_fee_bps=100), "a", 10_000_000)
        pool, net, fee = remove_liquidity(pool, "a", 3_000_000, 7)
        assert fee == 30_000
        assert net == 2_970_000
        assert pool.lp_balances == {"a": 7_000_000}
        assert pool.total_liquidity == 7_000_000

    @pytest.mark.parametrize("amount", [0, 2_000_001])
    def test_more_than_held(self, amount):
        with pytest.raises(BasktError) as exc:
            remove_liquidity(self._two_providers(), "b", amount, 7)
        assert exc.value.code is ErrorCode.INSUFFICIENT_FUNDS

    def test_unknown_provider(self):
        with pytest.raises(BasktError) as exc:
            remove_liquidity(self._two_providers(), "c", 1, 7)
        assert exc.value.code is ErrorCode.INSUFFICIENT_FUNDS


# ---------------------------------------------------------------------------
# Settlement deltas
# ---------------------------------------------------------------------------

class TestPoolDelta:
    def test_gain(self):
        pool = apply_pool_delta(_make_pool(), 100, 9)
        assert pool.total_liquidity == 100
        assert pool.last_update_timestamp == 9

    def test_loss(self):
        pool, _, _ = _deposit(_make_pool(), "a", 10_000_000)
        assert apply_pool_delta(pool, -490_550, 9).total_liquidity == 9_509_450

    def test_loss_beyond_liquidity(self):
        pool, _, _ = _deposit(_make_pool(), "a", 1_000_000)
        with pytest.raises(BasktError) as exc:
            apply_pool_delta(pool, -1_000_001, 9)
        assert exc.value.code is ErrorCode.INSUFFICIENT_LIQUIDITY
