"""Position lifecycle: open, add collateral, close, liquidate, force-close.

These functions validate the basket state, feature flags and trade price, then
delegate the numbers to ``settlement.settle``. They never touch balances; the
engine applies the returned transfers.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .config import effective_config
from .errors import BasktError, ErrorCode
from .math import bps_of, position_size, required_collateral, split_fee
from .oracle import validate_limit_price, validate_trade_price
from .settlement import check_liquidatable, settle
from .types import (
    AccountClass,
    Basket,
    Closed,
    Decommissioning,
    FeatureFlags,
    Order,
    OrderAction,
    Pending,
    Position,
    ProtocolConfig,
    SettlementClass,
    SettlementResult,
    Settled,
    Transfer,
)


@dataclass(frozen=True)
class OpenOutcome:
    position: Position
    opening_fee: int
    treasury_fee: int
    pool_fee: int
    transfers: tuple[Transfer, ...]


def _require_trading_flags(flags: FeatureFlags, specific: bool, name: str) -> None:
    if not (flags.allow_trading and specific):
        raise BasktError(ErrorCode.POSITION_OPERATIONS_DISABLED, name)


def open_position(
    order: Order,
    position_id: str,
    entry_price: int,
    basket: Basket,
    config: ProtocolConfig,
    now: int,
) -> OpenOutcome:
    _require_trading_flags(config.flags, config.flags.allow_open_position, "allow_open_position")
    if not basket.is_trading:
        raise BasktError(ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} not Active")
    if order.action is not OrderAction.OPEN:
        raise BasktError(ErrorCode.INVALID_ORDER_ACTION, order.order_id)
    validate_trade_price(basket.oracle, entry_price, now, config.max_price_deviation_bps)
    validate_limit_price(order, entry_price)

    eff = effective_config(config, basket.overrides)
    size = position_size(order.notional, entry_price)
    if size == 0:
        raise BasktError(
            ErrorCode.ZERO_SIZED_POSITION, f"notional={order.notional} price={entry_price}"
        )
    opening_fee = bps_of(order.notional, eff.opening_fee_bps)
    net_collateral = order.collateral - opening_fee
    if net_collateral < required_collateral(order.notional, eff.min_collateral_ratio_bps):
        raise BasktError(
            ErrorCode.INSUFFICIENT_COLLATERAL,
            f"net_collateral={net_collateral} notional={order.notional}",
        )
    treasury_fee, pool_fee = split_fee(opening_fee, config.treasury_cut_bps)

    indices = basket.indices
    position = Position(
        position_id=position_id,
        owner=order.owner,
        basket_id=basket.basket_id,
        direction=order.direction,
        size=size,
        collateral=net_collateral,
        entry_price=entry_price,
        entry_funding_index=indices.cumulative_funding_index,
        last_funding_index=indices.cumulative_funding_index,
        entry_borrow_index=indices.cumulative_borrow_index,
        last_borrow_index=indices.cumulative_borrow_index,
        last_rebalance_fee_index=basket.rebalance_index.cumulative_index,
        opened_at=now,
    )
    transfers = tuple(
        Transfer(amount, src, dst)
        for amount, src, dst in (
            (order.collateral, AccountClass.USER, AccountClass.ESCROW),
            (treasury_fee, AccountClass.ESCROW, AccountClass.TREASURY),
            (pool_fee, AccountClass.ESCROW, AccountClass.POOL),
        )
        if amount > 0
    )
    return OpenOutcome(position, opening_fee, treasury_fee, pool_fee, transfers)


def add_collateral(position: Position, actor: str, amount: int, flags: FeatureFlags) -> Position:
    if not flags.allow_add_collateral:
        raise BasktError(ErrorCode.POSITION_OPERATIONS_DISABLED, "allow_add_collateral")
    if position.owner != actor:
        raise BasktError(ErrorCode.UNAUTHORIZED, f"{actor} does not own {position.position_id}")
    if amount <= 0:
        raise BasktError(ErrorCode.INVALID_AMOUNT, f"amount={amount}")
    return replace(position, collateral=position.collateral + amount)


def close_position(
    order: Order,
    position: Position,
    exit_price: int,
    basket: Basket,
    config: ProtocolConfig,
    now: int,
) -> SettlementResult:
    _require_trading_flags(config.flags, config.flags.allow_close_position, "allow_close_position")
    if not (basket.is_trading or basket.is_unwinding):
        raise BasktError(
            ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} not trading or unwinding"
        )
    if order.action is not OrderAction.CLOSE:
        raise BasktError(ErrorCode.INVALID_ORDER_ACTION, order.order_id)
    if order.target_position != position.position_id:
        raise BasktError(ErrorCode.INVALID_TARGET_POSITION, str(order.target_position))
    if position.owner != order.owner:
        raise BasktError(ErrorCode.UNAUTHORIZED, f"order owner does not own {position.position_id}")
    validate_trade_price(basket.oracle, exit_price, now, config.max_price_deviation_bps)
    validate_limit_price(order, exit_price)

    eff = effective_config(config, basket.overrides)
    return settle(
        position,
        order.size,
        exit_price,
        SettlementClass.NORMAL,
        eff.closing_fee_bps,
        config.treasury_cut_bps,
        basket.indices,
        basket.rebalance_index.cumulative_index,
        now,
    )


def liquidate_position(
    position: Position,
    exit_price: int,
    basket: Basket,
    config: ProtocolConfig,
    now: int,
) -> SettlementResult:
    if not config.flags.allow_liquidations:
        raise BasktError(ErrorCode.POSITION_OPERATIONS_DISABLED, "allow_liquidations")
    if not (basket.is_trading or basket.is_unwinding):
        raise BasktError(
            ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} not trading or unwinding"
        )
    validate_trade_price(basket.oracle, exit_price, now, config.liquidation_price_deviation_bps)

    eff = effective_config(config, basket.overrides)
    check_liquidatable(position, exit_price, basket.indices, eff.liquidation_threshold_bps)
    return settle(
        position,
        position.size,
        exit_price,
        SettlementClass.LIQUIDATION,
        eff.liquidation_fee_bps,
        config.treasury_cut_bps,
        basket.indices,
        basket.rebalance_index.cumulative_index,
        now,
    )


def force_close_position(
    position: Position,
    exit_price: int,
    basket: Basket,
    config: ProtocolConfig,
    now: int,
) -> SettlementResult:
    """Close a position on a winding-down basket; trading flags do not apply.

    Once the basket is Settled the exit price is always the settlement price.
    """
    status = basket.status
    if basket.is_trading:
        raise BasktError(ErrorCode.POSITIONS_STILL_OPEN, f"basket {basket.basket_id} still Active")
    if isinstance(status, (Pending, Closed)):
        raise BasktError(
            ErrorCode.INVALID_BASKT_STATE, f"basket {basket.basket_id} is {type(status).__name__}"
        )
    if isinstance(status, Settled):
        exit_price = status.settlement_price
    elif isinstance(status, Decommissioning):
        validate_trade_price(basket.oracle, exit_price, now, config.max_price_deviation_bps)

    eff = effective_config(config, basket.overrides)
    return settle(
        position,
        position.size,
        exit_price,
        SettlementClass.FORCE_CLOSE,
        eff.closing_fee_bps,
        config.treasury_cut_bps,
        basket.indices,
        basket.rebalance_index.cumulative_index,
        now,
    )
