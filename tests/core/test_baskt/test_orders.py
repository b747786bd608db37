"""Tests for src/core/baskt/orders.py: order creation and cancellation."""

import pytest

from src.core.baskt.errors import BasktError, ErrorCode
from src.core.baskt.orders import cancel_order, create_order
from src.core.baskt.types import (
    Active,
    Basket,
    BasketAsset,
    CreateOrderParams,
    Decommissioning,
    Direction,
    FeatureFlags,
    OrderAction,
    OrderType,
    Pending,
    Position,
    ProtocolConfig,
    Settled,
)


def _make_basket(status=None, is_public=True) -> Basket:
    return Basket(
        basket_id="b1",
        creator="creator",
        assets=(BasketAsset("BTC", 10_000, baseline_price=1),),
        is_public=is_public,
        status=status or Active(activated_at=1),
        baseline_nav=1_000_000,
    )


def _open_params(**kwargs) -> CreateOrderParams:
    base = dict(
        order_id="o1",
        basket_id="b1",
        action=OrderAction.OPEN,
        direction=Direction.LONG,
        notional=10_000_000,
        collateral=12_000_000,
    )
    base.update(kwargs)
    return CreateOrderParams(**base)


def _close_params(**kwargs) -> CreateOrderParams:
    base = dict(
        order_id="o2",
        basket_id="b1",
        action=OrderAction.CLOSE,
        target_position="p1",
        size=5_000_000,
    )
    base.update(kwargs)
    return CreateOrderParams(**base)


POSITIONS = {
    "p1": Position(
        position_id="p1",
        owner="alice",
        basket_id="b1",
        direction=Direction.LONG,
        size=10_000_000,
        collateral=11_990_000,
        entry_price=1_000_000,
    )
}


def _create(params, owner="alice", basket=None, config=None, orders=None):
    return create_order(
        params, owner, basket or _make_basket(), config or ProtocolConfig(), POSITIONS,
        orders or {}, 7,
    )


def _expect(code, params, **kwargs):
    with pytest.raises(BasktError) as exc:
        _create(params, **kwargs)
    assert exc.value.code is code


# ---------------------------------------------------------------------------
# Open orders
# ---------------------------------------------------------------------------

class TestOpenOrder:
    def test_create(self):
        o = _create(_open_params())
        assert o.owner == "alice"
        assert o.action is OrderAction.OPEN
        assert o.notional == 10_000_000
        assert o.created_at == 7

    def test_exact_minimum_collateral(self):
        # 100% ratio plus the 10 bps opening fee
        _create(_open_params(collateral=10_010_000))

    def test_insufficient_collateral(self):
        _expect(ErrorCode.INSUFFICIENT_COLLATERAL, _open_params(collateral=10_009_999))

    @pytest.mark.parametrize("notional,collateral", [(0, 1), (1, 0), (-5, 10)])
    def test_invalid_amounts(self, notional, collateral):
        _expect(ErrorCode.INVALID_AMOUNT, _open_params(notional=notional, collateral=collateral))

    def test_basket_not_active(self):
        _expect(ErrorCode.INVALID_BASKT_STATE, _open_params(), basket=_make_basket(Pending()))

    def test_no_opens_while_decommissioning(self):
        b = _make_basket(Decommissioning(initiated_at=1, grace_period_end=10))
        _expect(ErrorCode.INVALID_BASKT_STATE, _open_params(), basket=b)

    def test_trading_disabled(self):
        config = ProtocolConfig(flags=FeatureFlags(allow_trading=False))
        _expect(ErrorCode.FEATURE_DISABLED, _open_params(), config=config)

    def test_private_basket_for_creator_only(self):
        b = _make_basket(is_public=False)
        _expect(ErrorCode.UNAUTHORIZED, _open_params(), basket=b)
        assert _create(_open_params(), owner="creator", basket=b).owner == "creator"

    def test_limit_requires_price(self):
        _expect(ErrorCode.INVALID_ORACLE_PRICE, _open_params(order_type=OrderType.LIMIT))

    def test_duplicate_id(self):
        existing = _create(_open_params())
        _expect(ErrorCode.RECORD_ALREADY_EXISTS, _open_params(), orders={"o1": existing})


# ---------------------------------------------------------------------------
# Close orders
# ---------------------------------------------------------------------------

class TestCloseOrder:
    def test_create(self):
        o = _create(_close_params())
        assert o.target_position == "p1"
        assert o.size == 5_000_000

    def test_allowed_while_decommissioning(self):
        b = _make_basket(Decommissioning(initiated_at=1, grace_period_end=10))
        assert _create(_close_params(), basket=b).action is OrderAction.CLOSE

    def test_rejected_once_settled(self):
        b = _make_basket(Settled(settlement_price=1, settlement_funding_index=1, settled_at=1))
        _expect(ErrorCode.INVALID_BASKT_STATE, _close_params(), basket=b)

    def test_unknown_target(self):
        _expect(ErrorCode.INVALID_TARGET_POSITION, _close_params(target_position="nope"))

    def test_foreign_target(self):
        _expect(ErrorCode.INVALID_TARGET_POSITION, _close_params(), owner="bob")

    @pytest.mark.parametrize("size", [0, 10_000_001])
    def test_bad_size(self, size):
        _expect(ErrorCode.INVALID_POSITION_SIZE, _close_params(size=size))


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class TestCancelOrder:
    def test_owner_may_cancel(self):
        cancel_order(_create(_open_params()), "alice")

    def test_other_rejected(self):
        with pytest.raises(BasktError) as exc:
            cancel_order(_create(_open_params()), "bob")
        assert exc.value.code is ErrorCode.UNAUTHORIZED
