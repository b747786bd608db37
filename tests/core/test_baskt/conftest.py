"""Shared fixtures for the baskt engine tests.

``ledger`` is a BasktLedger with two registered assets, one Active basket
(``b1``, NAV 1.0 published at t=3, max age 3600s), a funded liquidity pool and
one account per operational role.
"""

from __future__ import annotations

import pytest

from src.core.baskt import (
    Action,
    BasketAsset,
    BasktLedger,
    Command,
    Direction,
    OrderAction,
    Role,
)
from src.core.baskt.types import (
    ActivateBasketParams,
    AddLiquidityParams,
    AssetParams,
    CreateBasketParams,
    CreateOrderParams,
    OpenPositionParams,
    RoleParams,
)

OWNER = "owner"
CREATOR = "creator"
MATCHER = "matcher"
KEEPER = "keeper"
ORACLE = "oracle"
FUNDING = "funding"
LP = "lp"
ALICE = "alice"

POOL_SEED = 100_000_000


def submit(ledger: BasktLedger, action: Action, actor: str, now: int, params):
    return ledger.submit(Command(action=action, actor=actor, now=now, params=params))


def open_position(
    ledger: BasktLedger,
    position_id: str = "p1",
    owner: str = ALICE,
    notional: int = 10_000_000,
    collateral: int = 12_000_000,
    price: int = 1_000_000,
    now: int = 10,
    direction: Direction = Direction.LONG,
    basket_id: str = "b1",
):
    order_id = f"open-{position_id}"
    submit(
        ledger,
        Action.CREATE_ORDER,
        owner,
        now,
        CreateOrderParams(
            order_id=order_id,
            basket_id=basket_id,
            action=OrderAction.OPEN,
            direction=direction,
            notional=notional,
            collateral=collateral,
        ),
    )
    return submit(
        ledger,
        Action.OPEN_POSITION,
        MATCHER,
        now,
        OpenPositionParams(order_id=order_id, position_id=position_id, entry_price=price),
    )


@pytest.fixture
def ledger() -> BasktLedger:
    lg = BasktLedger.create(OWNER)
    for account, role in (
        (MATCHER, Role.MATCHER),
        (KEEPER, Role.LIQUIDATOR),
        (ORACLE, Role.ORACLE_MANAGER),
        (FUNDING, Role.FUNDING_MANAGER),
    ):
        submit(lg, Action.ADD_ROLE, OWNER, 1, RoleParams(account=account, role=role))
    submit(lg, Action.REGISTER_ASSET, OWNER, 1, AssetParams(asset_id="BTC"))
    submit(lg, Action.REGISTER_ASSET, OWNER, 1, AssetParams(asset_id="ETH"))
    submit(
        lg,
        Action.CREATE_BASKET,
        CREATOR,
        2,
        CreateBasketParams(
            basket_id="b1",
            assets=(BasketAsset("BTC", 6_000), BasketAsset("ETH", 4_000)),
        ),
    )
    submit(
        lg,
        Action.ACTIVATE_BASKET,
        CREATOR,
        3,
        ActivateBasketParams(
            basket_id="b1", prices=(50_000_000_000, 3_000_000_000), max_price_age=3_600
        ),
    )
    submit(lg, Action.ADD_LIQUIDITY, LP, 4, AddLiquidityParams(amount=POOL_SEED))
    return lg
