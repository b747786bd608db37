"""Dispatch-table engine for the baskt ledger.

``step(state, command)`` is the single entry point. It:

1. Checks the parameter type and parameter domains of the command.
2. Authorizes the actor against the role map.
3. Dispatches to the handler, which validates and builds the post-state.
4. Checks all ledger invariants on the post-state.
5. Returns a ``StepResult`` (accepted with an ``Effect``, or rejected with a reason).

Nothing is partially applied: a rejected command leaves the input state as the
current state.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Callable, Mapping, TypeVar

from . import config as cfg
from . import lifecycle, liquidity, orders, positions, roles
from .errors import BasktError, BasktInvariantError, BasktParamError, ErrorCode
from .indices import update_market_indices
from .invariants import check_all
from .types import (
    AccountClass,
    Action,
    ActivateBasketParams,
    AddCollateralParams,
    AddLiquidityParams,
    AssetParams,
    Basket,
    BasketAsset,
    BasketOverridesParams,
    BasketParams,
    BasketRiskOverrides,
    ClosePositionParams,
    Command,
    CreateBasketParams,
    CreateOrderParams,
    Direction,
    Effect,
    Event,
    FeatureFlags,
    FeatureFlagsParams,
    ForceCloseParams,
    LiquidateParams,
    MarketIndicesParams,
    OpenPositionParams,
    OraclePriceParams,
    OrderAction,
    OrderParams,
    OrderType,
    ProtocolState,
    RebalanceParams,
    RemoveLiquidityParams,
    Role,
    RoleParams,
    SetConfigParams,
    SettlementResult,
    StepResult,
    Transfer,
    TreasuryParams,
)

logger = logging.getLogger(__name__)

HandlerResult = tuple[ProtocolState, dict[str, Any], tuple[Transfer, ...]]
Handler = Callable[[ProtocolState, Command], HandlerResult]

V = TypeVar("V")


# -- Record helpers --------------------------------------------------------------

def _get(records: Mapping[str, V], key: str, what: str) -> V:
    try:
        return records[key]
    except KeyError:
        raise BasktError(ErrorCode.RECORD_NOT_FOUND, f"{what} {key!r}") from None


def _put(records: Mapping[str, V], key: str, value: V) -> dict[str, V]:
    out = dict(records)
    out[key] = value
    return out


def _drop(records: Mapping[str, V], key: str) -> dict[str, V]:
    out = dict(records)
    del out[key]
    return out


def _with_basket(state: ProtocolState, basket: Basket) -> ProtocolState:
    return replace(state, baskets=_put(state.baskets, basket.basket_id, basket))


def _status_payload(basket: Basket) -> dict[str, Any]:
    return {"basket_id": basket.basket_id, "status": lifecycle.status_name(basket.status)}


# -- Protocol administration ------------------------------------------------------

def _apply_add_role(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: RoleParams = cmd.params
    new_roles = roles.add_role(state.roles, p.account, p.role)
    return replace(state, roles=new_roles), {"account": p.account, "role": p.role.value}, ()


def _apply_remove_role(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: RoleParams = cmd.params
    new_roles = roles.remove_role(state.roles, p.account, p.role)
    return replace(state, roles=new_roles), {"account": p.account, "role": p.role.value}, ()


def _apply_update_feature_flags(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: FeatureFlagsParams = cmd.params
    config = cfg.update_feature_flags(state.config, p.flags, cmd.actor, cmd.now)
    return replace(state, config=config), {"changed": config is not state.config}, ()


def _apply_update_treasury(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: TreasuryParams = cmd.params
    config = cfg.update_treasury(state.config, p.treasury, cmd.actor, cmd.now)
    return replace(state, config=config), {"treasury": p.treasury}, ()


def _apply_set_config(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: SetConfigParams = cmd.params
    old = getattr(state.config, p.name, None)
    config = cfg.set_config_value(state.config, p.name, p.value, cmd.actor, cmd.now)
    payload = {"field": p.name, "old": old, "new": p.value, "changed": config is not state.config}
    return replace(state, config=config), payload, ()


# -- Assets and basket lifecycle --------------------------------------------------

def _apply_register_asset(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: AssetParams = cmd.params
    return replace(state, assets=lifecycle.register_asset(state.assets, p)), {"asset_id": p.asset_id}, ()


def _apply_update_asset(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: AssetParams = cmd.params
    return replace(state, assets=lifecycle.update_asset(state.assets, p)), {"asset_id": p.asset_id}, ()


def _apply_create_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: CreateBasketParams = cmd.params
    if p.basket_id in state.baskets:
        raise BasktError(ErrorCode.RECORD_ALREADY_EXISTS, f"basket {p.basket_id!r}")
    basket = lifecycle.create_basket(
        state.assets, p.basket_id, cmd.actor, p.assets, p.is_public, cmd.now
    )
    return _with_basket(state, basket), _status_payload(basket), ()


def _apply_activate_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: ActivateBasketParams = cmd.params
    basket = _get(state.baskets, p.basket_id, "basket")
    basket = lifecycle.activate_basket(basket, p.prices, p.max_price_age, state.config.flags, cmd.now)
    payload = {**_status_payload(basket), "baseline_nav": basket.baseline_nav}
    return _with_basket(state, basket), payload, ()


def _apply_update_oracle_price(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: OraclePriceParams = cmd.params
    basket = lifecycle.update_oracle_price(_get(state.baskets, p.basket_id, "basket"), p.price, cmd.now)
    return _with_basket(state, basket), {"basket_id": p.basket_id, "price": p.price}, ()


def _apply_update_market_indices(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: MarketIndicesParams = cmd.params
    basket = update_market_indices(
        _get(state.baskets, p.basket_id, "basket"),
        p.new_funding_rate_bps,
        p.new_borrow_rate_bps,
        cmd.now,
        state.config.max_funding_rate_bps,
    )
    idx = basket.indices
    payload = {
        "basket_id": p.basket_id,
        "cumulative_funding_index": idx.cumulative_funding_index,
        "cumulative_borrow_index": idx.cumulative_borrow_index,
        "funding_rate": idx.current_funding_rate,
        "borrow_rate": idx.current_borrow_rate,
    }
    return _with_basket(state, basket), payload, ()


def _apply_rebalance_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: RebalanceParams = cmd.params
    basket = _get(state.baskets, p.basket_id, "basket")
    roles.authorize_creator_or_role(
        state.roles, state.owner, cmd.actor, basket.creator, Action.REBALANCE_BASKET
    )
    basket = lifecycle.rebalance_basket(
        basket, state.assets, p.assets, p.new_nav, p.fee_per_unit, state.config.flags, cmd.now
    )
    payload = {
        "basket_id": p.basket_id,
        "new_nav": p.new_nav,
        "rebalance_fee_index": basket.rebalance_index.cumulative_index,
    }
    return _with_basket(state, basket), payload, ()


def _apply_set_basket_overrides(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: BasketOverridesParams = cmd.params
    basket = lifecycle.set_basket_overrides(
        _get(state.baskets, p.basket_id, "basket"), state.config, p.overrides
    )
    return _with_basket(state, basket), {"basket_id": p.basket_id}, ()


def _apply_decommission_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: BasketParams = cmd.params
    basket = lifecycle.decommission_basket(
        _get(state.baskets, p.basket_id, "basket"), state.config.decommission_grace_period, cmd.now
    )
    payload = {**_status_payload(basket), "grace_period_end": basket.status.grace_period_end}
    return _with_basket(state, basket), payload, ()


def _apply_settle_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: BasketParams = cmd.params
    basket = lifecycle.settle_basket(_get(state.baskets, p.basket_id, "basket"), cmd.now)
    payload = {**_status_payload(basket), "settlement_price": basket.status.settlement_price}
    return _with_basket(state, basket), payload, ()


def _apply_close_basket(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: BasketParams = cmd.params
    basket = lifecycle.close_basket(_get(state.baskets, p.basket_id, "basket"), cmd.now)
    payload = {**_status_payload(basket), "final_nav": basket.status.final_nav}
    return _with_basket(state, basket), payload, ()


# -- Orders and positions ---------------------------------------------------------

def _apply_create_order(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: CreateOrderParams = cmd.params
    basket = _get(state.baskets, p.basket_id, "basket")
    order = orders.create_order(
        p, cmd.actor, basket, state.config, state.positions, state.orders, cmd.now
    )
    payload = {"order_id": order.order_id, "action": order.action.value, "basket_id": basket.basket_id}
    return replace(state, orders=_put(state.orders, order.order_id, order)), payload, ()


def _apply_cancel_order(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: OrderParams = cmd.params
    order = _get(state.orders, p.order_id, "order")
    orders.cancel_order(order, cmd.actor)
    return replace(state, orders=_drop(state.orders, p.order_id)), {"order_id": p.order_id}, ()


def _apply_open_position(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: OpenPositionParams = cmd.params
    order = _get(state.orders, p.order_id, "order")
    if not p.position_id or p.position_id in state.positions:
        raise BasktError(ErrorCode.RECORD_ALREADY_EXISTS, f"position {p.position_id!r}")
    basket = _get(state.baskets, order.basket_id, "basket")
    outcome = positions.open_position(order, p.position_id, p.entry_price, basket, state.config, cmd.now)
    position = outcome.position

    new_state = replace(
        state,
        orders=_drop(state.orders, order.order_id),
        positions=_put(state.positions, position.position_id, position),
        escrows=_put(state.escrows, position.position_id, position.collateral),
        baskets=_put(
            state.baskets, basket.basket_id, replace(basket, open_positions=basket.open_positions + 1)
        ),
        pool=liquidity.increase_liquidity(state.pool, outcome.pool_fee, cmd.now),
        treasury_balance=state.treasury_balance + outcome.treasury_fee,
    )
    payload = {
        "position_id": position.position_id,
        "owner": position.owner,
        "size": position.size,
        "collateral": position.collateral,
        "entry_price": position.entry_price,
        "opening_fee": outcome.opening_fee,
    }
    return new_state, payload, outcome.transfers


def _apply_add_collateral(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: AddCollateralParams = cmd.params
    position = positions.add_collateral(
        _get(state.positions, p.position_id, "position"), cmd.actor, p.amount, state.config.flags
    )
    new_state = replace(
        state,
        positions=_put(state.positions, p.position_id, position),
        escrows=_put(state.escrows, p.position_id, state.escrows[p.position_id] + p.amount),
    )
    payload = {"position_id": p.position_id, "amount": p.amount, "collateral": position.collateral}
    return new_state, payload, (Transfer(p.amount, AccountClass.USER, AccountClass.ESCROW),)


def _apply_settlement(state: ProtocolState, result: SettlementResult, now: int) -> ProtocolState:
    """Write a settlement back: escrow, position, basket counter, pool, treasury."""
    position = result.position
    pid = position.position_id
    basket = state.baskets[position.basket_id]
    escrow_left = state.escrows[pid] - result.collateral_share
    if result.fully_closed:
        new_positions = _drop(state.positions, pid)
        new_escrows = _drop(state.escrows, pid)
        basket = replace(basket, open_positions=basket.open_positions - 1)
    else:
        new_positions = _put(state.positions, pid, position)
        new_escrows = _put(state.escrows, pid, escrow_left)
    return replace(
        state,
        positions=new_positions,
        escrows=new_escrows,
        baskets=_put(state.baskets, basket.basket_id, basket),
        pool=liquidity.apply_pool_delta(state.pool, result.pool_net_delta, now),
        treasury_balance=state.treasury_balance + result.treasury_fee,
    )


def _settlement_payload(result: SettlementResult) -> dict[str, Any]:
    return {
        "position_id": result.position.position_id,
        "settlement_class": result.settlement_class.value,
        "size_closed": result.size_closed,
        "exit_price": result.exit_price,
        "pnl": result.pnl,
        "closing_fee": result.closing_fee,
        "rebalance_fee": result.rebalance_fee,
        "user_payout": result.user_payout,
        "treasury_fee": result.treasury_fee,
        "pool_net_delta": result.pool_net_delta,
        "is_bad_debt": result.is_bad_debt,
        "bad_debt_amount": result.bad_debt_amount,
        "fully_closed": result.fully_closed,
    }


def _apply_close_position(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: ClosePositionParams = cmd.params
    order = _get(state.orders, p.order_id, "order")
    position = _get(state.positions, order.target_position or "", "position")
    basket = _get(state.baskets, position.basket_id, "basket")
    result = positions.close_position(order, position, p.exit_price, basket, state.config, cmd.now)
    new_state = _apply_settlement(state, result, cmd.now)
    new_state = replace(new_state, orders=_drop(new_state.orders, order.order_id))
    return new_state, _settlement_payload(result), result.transfers


def _apply_liquidate_position(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: LiquidateParams = cmd.params
    position = _get(state.positions, p.position_id, "position")
    basket = _get(state.baskets, position.basket_id, "basket")
    result = positions.liquidate_position(position, p.exit_price, basket, state.config, cmd.now)
    return _apply_settlement(state, result, cmd.now), _settlement_payload(result), result.transfers


def _apply_force_close_position(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: ForceCloseParams = cmd.params
    position = _get(state.positions, p.position_id, "position")
    basket = _get(state.baskets, position.basket_id, "basket")
    result = positions.force_close_position(position, p.exit_price, basket, state.config, cmd.now)
    return _apply_settlement(state, result, cmd.now), _settlement_payload(result), result.transfers


# -- Liquidity --------------------------------------------------------------------

def _apply_add_liquidity(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: AddLiquidityParams = cmd.params
    if not state.config.flags.allow_add_liquidity:
        raise BasktError(ErrorCode.LIQUIDITY_OPERATIONS_DISABLED, "allow_add_liquidity")
    pool, minted, fee = liquidity.add_liquidity(
        state.pool, cmd.actor, p.amount, p.min_shares_out, state.config.min_liquidity, cmd.now
    )
    transfers = tuple(
        Transfer(amount, AccountClass.USER, dst)
        for amount, dst in ((p.amount - fee, AccountClass.POOL), (fee, AccountClass.TREASURY))
        if amount > 0
    )
    payload = {"provider": cmd.actor, "amount": p.amount, "fee": fee, "shares_minted": minted}
    return replace(state, pool=pool, treasury_balance=state.treasury_balance + fee), payload, transfers


def _apply_remove_liquidity(state: ProtocolState, cmd: Command) -> HandlerResult:
    p: RemoveLiquidityParams = cmd.params
    if not state.config.flags.allow_remove_liquidity:
        raise BasktError(ErrorCode.LIQUIDITY_OPERATIONS_DISABLED, "allow_remove_liquidity")
    pool, net, fee = liquidity.remove_liquidity(state.pool, cmd.actor, p.lp_amount, cmd.now)
    transfers = tuple(
        Transfer(amount, AccountClass.POOL, dst)
        for amount, dst in ((net, AccountClass.USER), (fee, AccountClass.TREASURY))
        if amount > 0
    )
    payload = {"provider": cmd.actor, "lp_amount": p.lp_amount, "fee": fee, "amount_out": net}
    return replace(state, pool=pool, treasury_balance=state.treasury_balance + fee), payload, transfers


# -- Dispatch ---------------------------------------------------------------------

_DISPATCH: dict[Action, tuple[type, Handler, Event]] = {
    Action.ADD_ROLE: (RoleParams, _apply_add_role, Event.ROLE_ADDED),
    Action.REMOVE_ROLE: (RoleParams, _apply_remove_role, Event.ROLE_REMOVED),
    Action.UPDATE_FEATURE_FLAGS: (
        FeatureFlagsParams, _apply_update_feature_flags, Event.FEATURE_FLAGS_UPDATED,
    ),
    Action.UPDATE_TREASURY: (TreasuryParams, _apply_update_treasury, Event.TREASURY_UPDATED),
    Action.SET_CONFIG: (SetConfigParams, _apply_set_config, Event.CONFIG_UPDATED),
    Action.REGISTER_ASSET: (AssetParams, _apply_register_asset, Event.ASSET_REGISTERED),
    Action.UPDATE_ASSET: (AssetParams, _apply_update_asset, Event.ASSET_UPDATED),
    Action.CREATE_BASKET: (CreateBasketParams, _apply_create_basket, Event.BASKET_CREATED),
    Action.ACTIVATE_BASKET: (ActivateBasketParams, _apply_activate_basket, Event.BASKET_ACTIVATED),
    Action.UPDATE_ORACLE_PRICE: (
        OraclePriceParams, _apply_update_oracle_price, Event.ORACLE_PRICE_UPDATED,
    ),
    Action.UPDATE_MARKET_INDICES: (
        MarketIndicesParams, _apply_update_market_indices, Event.MARKET_INDICES_UPDATED,
    ),
    Action.REBALANCE_BASKET: (RebalanceParams, _apply_rebalance_basket, Event.BASKET_REBALANCED),
    Action.SET_BASKET_OVERRIDES: (
        BasketOverridesParams, _apply_set_basket_overrides, Event.BASKET_OVERRIDES_UPDATED,
    ),
    Action.DECOMMISSION_BASKET: (
        BasketParams, _apply_decommission_basket, Event.BASKET_DECOMMISSIONED,
    ),
    Action.SETTLE_BASKET: (BasketParams, _apply_settle_basket, Event.BASKET_SETTLED),
    Action.CLOSE_BASKET: (BasketParams, _apply_close_basket, Event.BASKET_CLOSED),
    Action.CREATE_ORDER: (CreateOrderParams, _apply_create_order, Event.ORDER_CREATED),
    Action.CANCEL_ORDER: (OrderParams, _apply_cancel_order, Event.ORDER_CANCELLED),
    Action.OPEN_POSITION: (OpenPositionParams, _apply_open_position, Event.POSITION_OPENED),
    Action.ADD_COLLATERAL: (AddCollateralParams, _apply_add_collateral, Event.COLLATERAL_ADDED),
    Action.CLOSE_POSITION: (ClosePositionParams, _apply_close_position, Event.POSITION_CLOSED),
    Action.LIQUIDATE_POSITION: (
        LiquidateParams, _apply_liquidate_position, Event.POSITION_LIQUIDATED,
    ),
    Action.FORCE_CLOSE_POSITION: (
        ForceCloseParams, _apply_force_close_position, Event.POSITION_FORCE_CLOSED,
    ),
    Action.ADD_LIQUIDITY: (AddLiquidityParams, _apply_add_liquidity, Event.LIQUIDITY_ADDED),
    Action.REMOVE_LIQUIDITY: (
        RemoveLiquidityParams, _apply_remove_liquidity, Event.LIQUIDITY_REMOVED,
    ),
}

# -- Parameter domain bounds --------------------------------------------------------

MAX_AMOUNT: int = 10**18
MAX_PRICE: int = 10**15
MAX_RATE_BPS: int = 10_000

# Per-action bounds: list of (field_name, min_val, max_val).
_PARAM_BOUNDS: dict[Action, list[tuple[str, int, int]]] = {
    Action.SET_CONFIG: [("value", 0, MAX_AMOUNT)],
    Action.ACTIVATE_BASKET: [("max_price_age", -MAX_AMOUNT, MAX_AMOUNT)],
    Action.UPDATE_ORACLE_PRICE: [("price", -MAX_PRICE, MAX_PRICE)],
    Action.UPDATE_MARKET_INDICES: [
        ("new_funding_rate_bps", -MAX_RATE_BPS, MAX_RATE_BPS),
        ("new_borrow_rate_bps", -MAX_RATE_BPS, MAX_RATE_BPS),
    ],
    Action.REBALANCE_BASKET: [
        ("new_nav", -MAX_PRICE, MAX_PRICE),
        ("fee_per_unit", -MAX_RATE_BPS, MAX_RATE_BPS),
    ],
    Action.CREATE_ORDER: [
        ("notional", -MAX_AMOUNT, MAX_AMOUNT),
        ("collateral", -MAX_AMOUNT, MAX_AMOUNT),
        ("limit_price", 0, MAX_PRICE),
        ("max_slippage_bps", 0, MAX_RATE_BPS),
        ("size", -MAX_AMOUNT, MAX_AMOUNT),
    ],
    Action.OPEN_POSITION: [("entry_price", -MAX_PRICE, MAX_PRICE)],
    Action.ADD_COLLATERAL: [("amount", -MAX_AMOUNT, MAX_AMOUNT)],
    Action.CLOSE_POSITION: [("exit_price", -MAX_PRICE, MAX_PRICE)],
    Action.LIQUIDATE_POSITION: [("exit_price", -MAX_PRICE, MAX_PRICE)],
    Action.FORCE_CLOSE_POSITION: [("exit_price", 0, MAX_PRICE)],
    Action.ADD_LIQUIDITY: [("amount", 0, MAX_AMOUNT), ("min_shares_out", 0, MAX_AMOUNT)],
    Action.REMOVE_LIQUIDITY: [("lp_amount", 0, MAX_AMOUNT)],
}


# Field types checked before any handler runs: list of (field_name, accepted types).
_FIELD_TYPES: dict[type, list[tuple[str, type | tuple[type, ...]]]] = {
    RoleParams: [("account", str), ("role", Role)],
    FeatureFlagsParams: [("flags", FeatureFlags)],
    TreasuryParams: [("treasury", str)],
    SetConfigParams: [("name", str)],
    AssetParams: [
        ("asset_id", str), ("allow_longs", bool), ("allow_shorts", bool), ("is_active", bool),
    ],
    CreateBasketParams: [("basket_id", str), ("assets", (tuple, list)), ("is_public", bool)],
    ActivateBasketParams: [("basket_id", str), ("prices", (tuple, list))],
    OraclePriceParams: [("basket_id", str)],
    MarketIndicesParams: [("basket_id", str)],
    RebalanceParams: [("basket_id", str), ("assets", (tuple, list))],
    BasketOverridesParams: [("basket_id", str), ("overrides", BasketRiskOverrides)],
    BasketParams: [("basket_id", str)],
    CreateOrderParams: [
        ("order_id", str),
        ("basket_id", str),
        ("action", OrderAction),
        ("direction", Direction),
        ("order_type", OrderType),
        ("target_position", (str, type(None))),
    ],
    OrderParams: [("order_id", str)],
    OpenPositionParams: [("order_id", str), ("position_id", str)],
    AddCollateralParams: [("position_id", str)],
    ClosePositionParams: [("order_id", str)],
    LiquidateParams: [("position_id", str)],
    ForceCloseParams: [("position_id", str)],
}


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _nested_type_error(params: Any) -> str | None:
    """Name of the first field whose type (or element types) is wrong, else None."""
    for field, types in _FIELD_TYPES.get(type(params), []):
        if not isinstance(getattr(params, field), types):
            return field
    if isinstance(params, (CreateBasketParams, RebalanceParams)):
        if not all(
            isinstance(a, BasketAsset) and isinstance(a.direction, Direction) for a in params.assets
        ):
            return "assets"
    elif isinstance(params, ActivateBasketParams):
        if not all(_is_int(p) for p in params.prices):
            return "prices"
    elif isinstance(params, BasketOverridesParams):
        values = [getattr(params.overrides, f.name) for f in fields(BasketRiskOverrides)]
        if not all(v is None or _is_int(v) for v in values):
            return "overrides"
    elif isinstance(params, FeatureFlagsParams):
        if not all(isinstance(getattr(params.flags, f.name), bool) for f in fields(FeatureFlags)):
            return "flags"
    return None


def _validate_params(state: ProtocolState, cmd: Command, params_type: type) -> str | None:
    """Check parameter type and domain bounds. Returns rejection reason or None."""
    if not isinstance(cmd.params, params_type):
        return "param_type"
    if not _is_int(cmd.now) or cmd.now < state.last_timestamp:
        return "param_domain:now"
    if not isinstance(cmd.actor, str) or not cmd.actor:
        return "param_domain:actor"
    bad_field = _nested_type_error(cmd.params)
    if bad_field is not None:
        return f"param_type:{bad_field}"
    for field, lo, hi in _PARAM_BOUNDS.get(cmd.action, []):
        val = getattr(cmd.params, field)
        if not _is_int(val) or val < lo or val > hi:
            return f"param_domain:{field}"
    return None


def step(state: ProtocolState, cmd: Command) -> StepResult:
    """Execute one command against the given state.

    Returns ``StepResult`` with ``accepted=True`` on success,
    or ``accepted=False`` with a ``rejection`` reason string.
    """
    entry = _DISPATCH.get(cmd.action)
    if entry is None:
        return StepResult(accepted=False, rejection=f"unknown_action:{cmd.action}")
    params_type, handler, event = entry

    domain_err = _validate_params(state, cmd, params_type)
    if domain_err is not None:
        logger.debug("rejected %s from %s: %s", cmd.action.value, cmd.actor, domain_err)
        return StepResult(accepted=False, rejection=domain_err)

    try:
        roles.authorize(state.roles, state.owner, cmd.actor, cmd.action)
        new_state, payload, transfers = handler(state, cmd)
    except BasktError as exc:
        logger.debug("rejected %s from %s: %s", cmd.action.value, cmd.actor, exc)
        return StepResult(accepted=False, rejection=exc.code.value)

    new_state = replace(new_state, last_timestamp=cmd.now)
    violations = check_all(new_state)
    if violations:
        logger.debug("rejected %s: invariants %s", cmd.action.value, violations)
        return StepResult(
            accepted=False,
            rejection=f"invariant:{','.join(violations)}",
        )

    effect = Effect(event=event, payload=payload, transfers=transfers)
    return StepResult(accepted=True, state=new_state, effect=effect)


def step_or_raise(state: ProtocolState, cmd: Command) -> StepResult:
    """Like ``step()`` but raises on rejection instead of returning a result.

    Raises:
        BasktParamError: Parameter of the wrong type or outside its domain.
        BasktError: A precondition failed (carries the ``ErrorCode``).
        BasktInvariantError: Post-state violates one or more invariants.
    """
    result = step(state, cmd)
    if result.accepted:
        return result

    reason = result.rejection or ""
    if reason.startswith(("param_domain:", "param_type", "unknown_action:")):
        raise BasktParamError(reason)
    if reason.startswith("invariant:"):
        violations = reason.removeprefix("invariant:").split(",")
        raise BasktInvariantError(violations)
    raise BasktError(ErrorCode(reason))
