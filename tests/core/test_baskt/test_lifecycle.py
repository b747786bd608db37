"""Tests for src/core/baskt/lifecycle.py: asset registry and basket state machine."""

from dataclasses import replace

import pytest

from src.core.baskt.errors import BasktError, ErrorCode
from src.core.baskt.indices import update_market_indices
from src.core.baskt.lifecycle import (
    activate_basket,
    close_basket,
    create_basket,
    decommission_basket,
    rebalance_basket,
    register_asset,
    set_basket_overrides,
    settle_basket,
    update_asset,
    update_oracle_price,
)
from src.core.baskt.math import INDEX_PRECISION, PRICE_PRECISION
from src.core.baskt.types import (
    Active,
    AssetConfig,
    AssetParams,
    BasketAsset,
    BasketRiskOverrides,
    Closed,
    Decommissioning,
    Direction,
    FeatureFlags,
    Pending,
    ProtocolConfig,
    Settled,
)

REGISTRY = {
    "BTC": AssetConfig("BTC"),
    "ETH": AssetConfig("ETH"),
    "SOL": AssetConfig("SOL", allow_shorts=False),
    "DOGE": AssetConfig("DOGE", allow_longs=False),
    "OLD": AssetConfig("OLD", is_active=False),
}

ASSETS = (BasketAsset("BTC", 6_000), BasketAsset("ETH", 4_000))
GRACE = 86_400


def _make_basket(assets=ASSETS, is_public=True):
    return create_basket(REGISTRY, "b1", "creator", assets, is_public, now=1)


def _make_active(now: int = 10):
    return activate_basket(_make_basket(), (50_000, 3_000), 60, FeatureFlags(), now)


def _expect(code: ErrorCode, fn, *args):
    with pytest.raises(BasktError) as exc:
        fn(*args)
    assert exc.value.code is code


# ---------------------------------------------------------------------------
# Asset registry
# ---------------------------------------------------------------------------

class TestAssetRegistry:
    def test_register(self):
        reg = register_asset({}, AssetParams("BTC", allow_shorts=False))
        assert reg["BTC"] == AssetConfig("BTC", allow_longs=True, allow_shorts=False)

    def test_register_does_not_mutate_input(self):
        base: dict = {}
        register_asset(base, AssetParams("BTC"))
        assert base == {}

    def test_duplicate(self):
        _expect(ErrorCode.RECORD_ALREADY_EXISTS, register_asset, REGISTRY, AssetParams("BTC"))

    def test_empty_id(self):
        _expect(ErrorCode.INVALID_BASKT_CONFIG, register_asset, {}, AssetParams(""))

    def test_update(self):
        reg = update_asset(REGISTRY, AssetParams("BTC", is_active=False))
        assert not reg["BTC"].is_active
        assert REGISTRY["BTC"].is_active

    def test_update_unknown(self):
        _expect(ErrorCode.RECORD_NOT_FOUND, update_asset, REGISTRY, AssetParams("XRP"))


# ---------------------------------------------------------------------------
# create_basket
# ---------------------------------------------------------------------------

class TestCreateBasket:
    def test_pending(self):
        b = _make_basket()
        assert isinstance(b.status, Pending)
        assert b.creator == "creator"
        assert b.open_positions == 0
        assert b.indices.cumulative_funding_index == INDEX_PRECISION

    def test_mixed_directions(self):
        b = _make_basket(assets=(
            BasketAsset("BTC", 5_000, Direction.LONG),
            BasketAsset("SOL", 2_500, Direction.LONG),
            BasketAsset("DOGE", 2_500, Direction.SHORT),
        ))
        assert len(b.assets) == 3

    @pytest.mark.parametrize(
        "assets,code",
        [
            ((), ErrorCode.INVALID_BASKT_CONFIG),
            ((BasketAsset("BTC", 6_000), BasketAsset("ETH", 3_000)), ErrorCode.INVALID_ASSET_WEIGHTS),
            ((BasketAsset("BTC", 10_000), BasketAsset("ETH", 0)), ErrorCode.INVALID_ASSET_WEIGHTS),
            ((BasketAsset("BTC", 12_000), BasketAsset("ETH", -2_000)), ErrorCode.INVALID_ASSET_WEIGHTS),
            ((BasketAsset("BTC", 5_000), BasketAsset("BTC", 5_000)), ErrorCode.INVALID_BASKT_CONFIG),
            ((BasketAsset("XRP", 10_000),), ErrorCode.INVALID_BASKT_CONFIG),
            ((BasketAsset("OLD", 10_000),), ErrorCode.INACTIVE_ASSET),
            ((BasketAsset("SOL", 10_000, Direction.SHORT),), ErrorCode.SHORT_POSITIONS_DISABLED),
            ((BasketAsset("DOGE", 10_000, Direction.LONG),), ErrorCode.LONG_POSITIONS_DISABLED),
        ],
    )
    def test_invalid_assets(self, assets, code):
        _expect(code, create_basket, REGISTRY, "b1", "creator", assets, True, 1)

    def test_empty_id(self):
        _expect(ErrorCode.INVALID_BASKT_CONFIG, create_basket, REGISTRY, "", "c", ASSETS, True, 1)


# ---------------------------------------------------------------------------
# activate_basket
# ---------------------------------------------------------------------------

class TestActivateBasket:
    def test_activate(self):
        b = _make_active(now=10)
        assert b.status == Active(activated_at=10)
        assert b.baseline_nav == PRICE_PRECISION
        assert b.oracle.price == PRICE_PRECISION
        assert b.oracle.published_at == 10
        assert b.oracle.max_price_age == 60
        assert [a.baseline_price for a in b.assets] == [50_000, 3_000]

    def test_twice_rejected(self):
        _expect(
            ErrorCode.INVALID_BASKT_STATE,
            activate_basket, _make_active(), (1, 1), 60, FeatureFlags(), 11,
        )

    def test_price_count_mismatch(self):
        _expect(
            ErrorCode.INVALID_BASKT_CONFIG,
            activate_basket, _make_basket(), (1,), 60, FeatureFlags(), 10,
        )

    def test_non_positive_price(self):
        _expect(
            ErrorCode.INVALID_BASKT_CONFIG,
            activate_basket, _make_basket(), (1, 0), 60, FeatureFlags(), 10,
        )

    def test_bad_price_age(self):
        _expect(
            ErrorCode.INVALID_ORACLE_PARAMETER,
            activate_basket, _make_basket(), (1, 1), 0, FeatureFlags(), 10,
        )

    def test_creation_disabled(self):
        _expect(
            ErrorCode.FEATURE_DISABLED,
            activate_basket, _make_basket(), (1, 1), 60,
            FeatureFlags(allow_basket_creation=False), 10,
        )


# ---------------------------------------------------------------------------
# Full lifecycle: Pending -> Active -> Decommissioning -> Settled -> Closed
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_happy_path(self):
        b = _make_active(now=10)
        b = update_market_indices(b, 10, 0, 20, 100)
        b = update_oracle_price(b, 1_020_000, 30)
        b = decommission_basket(b, GRACE, 100)
        assert b.status == Decommissioning(initiated_at=100, grace_period_end=100 + GRACE)

        _expect(ErrorCode.GRACE_PERIOD_NOT_OVER, settle_basket, b, 100 + GRACE - 1)
        b = settle_basket(b, 100 + GRACE)
        assert b.status == Settled(
            settlement_price=1_020_000,
            settlement_funding_index=INDEX_PRECISION,
            settled_at=100 + GRACE,
        )

        b = close_basket(b, 100 + GRACE + 5)
        assert b.status == Closed(final_nav=1_020_000, closed_at=100 + GRACE + 5)

    def test_settle_requires_funding_update(self):
        b = decommission_basket(_make_active(), GRACE, 100)
        _expect(ErrorCode.FUNDING_NOT_UP_TO_DATE, settle_basket, b, 100 + GRACE)

    def test_close_with_open_positions(self):
        b = update_market_indices(_make_active(), 0, 0, 20, 100)
        b = settle_basket(decommission_basket(b, GRACE, 100), 100 + GRACE)
        b = replace(b, open_positions=1)
        _expect(ErrorCode.POSITIONS_STILL_OPEN, close_basket, b, 100 + GRACE + 1)

    def test_out_of_order_transitions(self):
        pending = _make_basket()
        _expect(ErrorCode.INVALID_BASKT_STATE, decommission_basket, pending, GRACE, 5)
        _expect(ErrorCode.INVALID_BASKT_STATE, settle_basket, _make_active(), 5)
        _expect(ErrorCode.INVALID_BASKT_STATE, close_basket, _make_active(), 5)

    def test_oracle_update_while_unwinding(self):
        b = decommission_basket(_make_active(), GRACE, 100)
        b = update_oracle_price(b, 990_000, 200)
        assert b.oracle.price == 990_000

    def test_oracle_update_rejected_when_pending(self):
        _expect(ErrorCode.INVALID_BASKT_STATE, update_oracle_price, _make_basket(), 1_000_000, 5)

    def test_oracle_price_must_be_positive(self):
        _expect(ErrorCode.INVALID_ORACLE_PRICE, update_oracle_price, _make_active(), 0, 20)


# ---------------------------------------------------------------------------
# rebalance_basket
# ---------------------------------------------------------------------------

class TestRebalance:
    NEW = (BasketAsset("BTC", 7_000, baseline_price=51_000), BasketAsset("ETH", 3_000, baseline_price=2_900))

    def test_rebalance(self):
        b = rebalance_basket(_make_active(), REGISTRY, self.NEW, 1_010_000, 15, FeatureFlags(), 50)
        assert [a.weight_bps for a in b.assets] == [7_000, 3_000]
        assert b.baseline_nav == 1_010_000
        assert b.rebalance_index.cumulative_index == 15
        assert b.rebalance_index.last_rebalance_time == 50

    def test_zero_fee_keeps_index(self):
        b = rebalance_basket(_make_active(), REGISTRY, self.NEW, 1_000_000, 0, FeatureFlags(), 50)
        assert b.rebalance_index.cumulative_index == 0

    def test_not_active(self):
        _expect(
            ErrorCode.INVALID_BASKT_STATE,
            rebalance_basket, _make_basket(), REGISTRY, self.NEW, 1_000_000, 0, FeatureFlags(), 50,
        )

    def test_changed_asset_list(self):
        new = (BasketAsset("BTC", 10_000, baseline_price=1),)
        _expect(
            ErrorCode.INVALID_BASKT_CONFIG,
            rebalance_basket, _make_active(), REGISTRY, new, 1_000_000, 0, FeatureFlags(), 50,
        )

    def test_weights_revalidated(self):
        new = (BasketAsset("BTC", 7_000, baseline_price=1), BasketAsset("ETH", 2_000, baseline_price=1))
        _expect(
            ErrorCode.INVALID_ASSET_WEIGHTS,
            rebalance_basket, _make_active(), REGISTRY, new, 1_000_000, 0, FeatureFlags(), 50,
        )

    def test_missing_baseline_price(self):
        new = (BasketAsset("BTC", 7_000), BasketAsset("ETH", 3_000))
        _expect(
            ErrorCode.INVALID_BASKT_CONFIG,
            rebalance_basket, _make_active(), REGISTRY, new, 1_000_000, 0, FeatureFlags(), 50,
        )

    def test_negative_fee(self):
        _expect(
            ErrorCode.INVALID_REBALANCE_FEE,
            rebalance_basket, _make_active(), REGISTRY, self.NEW, 1_000_000, -1, FeatureFlags(), 50,
        )

    def test_update_disabled(self):
        _expect(
            ErrorCode.FEATURE_DISABLED,
            rebalance_basket, _make_active(), REGISTRY, self.NEW, 1_000_000, 0,
            FeatureFlags(allow_basket_update=False), 50,
        )


# ---------------------------------------------------------------------------
# set_basket_overrides
# ---------------------------------------------------------------------------

class TestOverrides:
    def test_set(self):
        ov = BasketRiskOverrides(closing_fee_bps=25)
        b = set_basket_overrides(_make_active(), ProtocolConfig(), ov)
        assert b.overrides == ov

    def test_closed_rejected(self):
        b = replace(_make_active(), status=Closed(final_nav=1, closed_at=1))
        _expect(
            ErrorCode.INVALID_BASKT_STATE,
            set_basket_overrides, b, ProtocolConfig(), BasketRiskOverrides(),
        )
