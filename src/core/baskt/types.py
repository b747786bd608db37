"""Data types for the baskt engine.

All types are frozen dataclasses (immutable); updates go through
``dataclasses.replace``.

Units/conventions:
- prices and NAVs are scaled by ``PRICE_PRECISION`` (1e6),
- ``*_bps`` values are basis points (1/10_000),
- ``size`` is in contracts scaled by ``PRICE_PRECISION``,
- amounts (collateral, fees, liquidity) are integer collateral-token units,
- indices are scaled by ``INDEX_PRECISION`` (1e10),
- timestamps are unix seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Mapping, Union

from .math import INDEX_PRECISION


def _check_int(name: str, v: Any, minimum: int | None = None) -> None:
    if not isinstance(v, int) or isinstance(v, bool):
        raise TypeError(f"{name} must be an int")
    if minimum is not None and v < minimum:
        raise ValueError(f"{name} must be >= {minimum}: {v}")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

@unique
class Action(Enum):
    """One member per engine command."""
    ADD_ROLE = "add_role"
    REMOVE_ROLE = "remove_role"
    UPDATE_FEATURE_FLAGS = "update_feature_flags"
    UPDATE_TREASURY = "update_treasury"
    SET_CONFIG = "set_config"
    REGISTER_ASSET = "register_asset"
    UPDATE_ASSET = "update_asset"
    CREATE_BASKET = "create_basket"
    ACTIVATE_BASKET = "activate_basket"
    UPDATE_ORACLE_PRICE = "update_oracle_price"
    UPDATE_MARKET_INDICES = "update_market_indices"
    REBALANCE_BASKET = "rebalance_basket"
    SET_BASKET_OVERRIDES = "set_basket_overrides"
    DECOMMISSION_BASKET = "decommission_basket"
    SETTLE_BASKET = "settle_basket"
    CLOSE_BASKET = "close_basket"
    CREATE_ORDER = "create_order"
    CANCEL_ORDER = "cancel_order"
    OPEN_POSITION = "open_position"
    ADD_COLLATERAL = "add_collateral"
    CLOSE_POSITION = "close_position"
    LIQUIDATE_POSITION = "liquidate_position"
    FORCE_CLOSE_POSITION = "force_close_position"
    ADD_LIQUIDITY = "add_liquidity"
    REMOVE_LIQUIDITY = "remove_liquidity"


@unique
class Event(Enum):
    """One member per emitted effect."""
    ROLE_ADDED = "RoleAdded"
    ROLE_REMOVED = "RoleRemoved"
    FEATURE_FLAGS_UPDATED = "FeatureFlagsUpdated"
    TREASURY_UPDATED = "TreasuryUpdated"
    CONFIG_UPDATED = "ConfigUpdated"
    ASSET_REGISTERED = "AssetRegistered"
    ASSET_UPDATED = "AssetUpdated"
    BASKET_CREATED = "BasktCreated"
    BASKET_ACTIVATED = "BasktActivated"
    ORACLE_PRICE_UPDATED = "OraclePriceUpdated"
    MARKET_INDICES_UPDATED = "MarketIndicesUpdated"
    BASKET_REBALANCED = "BasktRebalanced"
    BASKET_OVERRIDES_UPDATED = "BasktOverridesUpdated"
    BASKET_DECOMMISSIONED = "BasktDecommissioned"
    BASKET_SETTLED = "BasktSettled"
    BASKET_CLOSED = "BasktClosed"
    ORDER_CREATED = "OrderCreated"
    ORDER_CANCELLED = "OrderCancelled"
    POSITION_OPENED = "PositionOpened"
    COLLATERAL_ADDED = "CollateralAdded"
    POSITION_CLOSED = "PositionClosed"
    POSITION_LIQUIDATED = "PositionLiquidated"
    POSITION_FORCE_CLOSED = "PositionForceClosed"
    LIQUIDITY_ADDED = "LiquidityAdded"
    LIQUIDITY_REMOVED = "LiquidityRemoved"


@unique
class Role(Enum):
    """Named protocol roles.

    ``TREASURY`` is carried for role administration only; no command checks it,
    since fees are credited to the configured treasury account directly.
    """

    OWNER = "Owner"
    ASSET_MANAGER = "AssetManager"
    BASKET_MANAGER = "BasktManager"
    ORACLE_MANAGER = "OracleManager"
    REBALANCER = "Rebalancer"
    MATCHER = "Matcher"
    LIQUIDATOR = "Liquidator"
    FUNDING_MANAGER = "FundingManager"
    CONFIG_MANAGER = "ConfigManager"
    TREASURY = "Treasury"


@unique
class Direction(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def is_long(self) -> bool:
        return self is Direction.LONG


@unique
class OrderAction(Enum):
    OPEN = "open"
    CLOSE = "close"


@unique
class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"


@unique
class PositionStatus(Enum):
    OPEN = "open"
    CLOSED = "closed"


@unique
class SettlementClass(Enum):
    NORMAL = "normal"
    LIQUIDATION = "liquidation"
    FORCE_CLOSE = "force_close"


@unique
class AccountClass(Enum):
    """Account classes named in transfer instructions."""
    USER = "user"
    ESCROW = "escrow"
    POOL = "pool"
    TREASURY = "treasury"


# ---------------------------------------------------------------------------
# Protocol configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeatureFlags:
    """Operation gates.

    ``allow_pnl_withdrawal`` and ``allow_collateral_withdrawal`` are stored and
    serialized but gate nothing: payouts happen at settlement and collateral is
    never withdrawn from an open position.
    """

    allow_open_position: bool = True
    allow_close_position: bool = True
    allow_trading: bool = True
    allow_liquidations: bool = True
    allow_basket_creation: bool = True
    allow_basket_update: bool = True
    allow_add_collateral: bool = True
    allow_add_liquidity: bool = True
    allow_remove_liquidity: bool = True
    allow_pnl_withdrawal: bool = True
    allow_collateral_withdrawal: bool = True


@dataclass(frozen=True)
class ProtocolConfig:
    """Global fee / ratio / time parameters."""

    # Fees
    opening_fee_bps: int = 10
    closing_fee_bps: int = 10
    liquidation_fee_bps: int = 50
    treasury_cut_bps: int = 1000

    # Risk
    min_collateral_ratio_bps: int = 10_000
    liquidation_threshold_bps: int = 500

    # Oracle
    max_price_age_sec: int = 60
    max_price_deviation_bps: int = 100
    liquidation_price_deviation_bps: int = 2000

    # Lifecycle / funding
    decommission_grace_period: int = 86_400
    max_funding_rate_bps: int = 100

    # Liquidity
    min_liquidity: int = 1_000_000

    flags: FeatureFlags = field(default_factory=FeatureFlags)
    treasury: str = ""
    last_updated: int = 0
    last_updated_by: str = ""


@dataclass(frozen=True)
class PoolParams:
    """Initial liquidity-pool parameters."""

    deposit_fee_bps: int = 0
    withdrawal_fee_bps: int = 0
    min_deposit: int = 0


# ---------------------------------------------------------------------------
# Assets and baskets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AssetConfig:
    """Registry entry for a tradable asset."""

    asset_id: str
    allow_longs: bool = True
    allow_shorts: bool = True
    is_active: bool = True


@dataclass(frozen=True)
class BasketAsset:
    asset_id: str
    weight_bps: int
    direction: Direction = Direction.LONG
    baseline_price: int = 0

    def __post_init__(self) -> None:
        _check_int("weight_bps", self.weight_bps)
        _check_int("baseline_price", self.baseline_price, 0)


@dataclass(frozen=True)
class MarketIndices:
    current_funding_rate: int = 0
    current_borrow_rate: int = 0
    cumulative_funding_index: int = INDEX_PRECISION
    cumulative_borrow_index: int = INDEX_PRECISION
    last_update_timestamp: int = 0


@dataclass(frozen=True)
class RebalanceFeeIndex:
    cumulative_index: int = 0
    last_rebalance_time: int = 0


@dataclass(frozen=True)
class BasketRiskOverrides:
    """Per-basket overrides; ``None`` falls back to the protocol value."""

    opening_fee_bps: int | None = None
    closing_fee_bps: int | None = None
    liquidation_fee_bps: int | None = None
    min_collateral_ratio_bps: int | None = None
    liquidation_threshold_bps: int | None = None


@dataclass(frozen=True)
class OraclePrice:
    price: int = 0
    published_at: int = 0
    max_price_age: int = 0


# Lifecycle variants. Each carries only the fields valid in that state.

@dataclass(frozen=True)
class Pending:
    pass


@dataclass(frozen=True)
class Active:
    activated_at: int = 0


@dataclass(frozen=True)
class Decommissioning:
    initiated_at: int
    grace_period_end: int


@dataclass(frozen=True)
class Settled:
    settlement_price: int
    settlement_funding_index: int
    settled_at: int


@dataclass(frozen=True)
class Closed:
    final_nav: int
    closed_at: int


BasketStatus = Union[Pending, Active, Decommissioning, Settled, Closed]


@dataclass(frozen=True)
class Basket:
    basket_id: str
    creator: str
    assets: tuple[BasketAsset, ...]
    is_public: bool = True
    status: BasketStatus = field(default_factory=Pending)
    baseline_nav: int = 0
    indices: MarketIndices = field(default_factory=MarketIndices)
    rebalance_index: RebalanceFeeIndex = field(default_factory=RebalanceFeeIndex)
    oracle: OraclePrice = field(default_factory=OraclePrice)
    overrides: BasketRiskOverrides = field(default_factory=BasketRiskOverrides)
    open_positions: int = 0
    created_at: int = 0

    @property
    def is_trading(self) -> bool:
        return isinstance(self.status, Active)

    @property
    def is_unwinding(self) -> bool:
        return isinstance(self.status, Decommissioning)


# ---------------------------------------------------------------------------
# Orders, positions, pool
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Order:
    order_id: str
    owner: str
    basket_id: str
    action: OrderAction
    direction: Direction = Direction.LONG
    notional: int = 0
    collateral: int = 0
    order_type: OrderType = OrderType.MARKET
    limit_price: int = 0
    max_slippage_bps: int = 0
    target_position: str | None = None
    size: int = 0                 # close orders: contracts to close
    created_at: int = 0


@dataclass(frozen=True)
class Position:
    position_id: str
    owner: str
    basket_id: str
    direction: Direction
    size: int
    collateral: int
    entry_price: int
    entry_funding_index: int = INDEX_PRECISION
    last_funding_index: int = INDEX_PRECISION
    entry_borrow_index: int = INDEX_PRECISION
    last_borrow_index: int = INDEX_PRECISION
    funding_accumulated: int = 0  # positive = credit to the user
    borrow_accumulated: int = 0   # positive = owed by the user
    last_rebalance_fee_index: int = 0
    status: PositionStatus = PositionStatus.OPEN
    exit_price: int = 0
    opened_at: int = 0
    closed_at: int = 0

    def __post_init__(self) -> None:
        _check_int("size", self.size, 0)
        _check_int("collateral", self.collateral, 0)
        _check_int("entry_price", self.entry_price, 1)

    @property
    def is_long(self) -> bool:
        return self.direction.is_long


@dataclass(frozen=True)
class LiquidityPool:
    total_liquidity: int = 0
    total_shares: int = 0
    deposit_fee_bps: int = 0
    withdrawal_fee_bps: int = 0
    min_deposit: int = 0
    lp_balances: Mapping[str, int] = field(default_factory=dict)
    last_update_timestamp: int = 0

    def __post_init__(self) -> None:
        _check_int("total_liquidity", self.total_liquidity, 0)
        _check_int("total_shares", self.total_shares, 0)


@dataclass(frozen=True)
class ProtocolState:
    """Complete ledger state: configuration plus every live record.

    Mapping fields are never mutated in place; updates build new dicts.
    """

    owner: str
    config: ProtocolConfig = field(default_factory=ProtocolConfig)
    roles: Mapping[str, frozenset[Role]] = field(default_factory=dict)
    assets: Mapping[str, AssetConfig] = field(default_factory=dict)
    baskets: Mapping[str, Basket] = field(default_factory=dict)
    orders: Mapping[str, Order] = field(default_factory=dict)
    positions: Mapping[str, Position] = field(default_factory=dict)
    escrows: Mapping[str, int] = field(default_factory=dict)
    pool: LiquidityPool = field(default_factory=LiquidityPool)
    treasury_balance: int = 0
    last_timestamp: int = 0


# ---------------------------------------------------------------------------
# Transfers and settlement results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Transfer:
    """Instruction for the token-transfer collaborator."""

    amount: int
    source: AccountClass
    destination: AccountClass

    def __post_init__(self) -> None:
        _check_int("amount", self.amount, 1)
        if self.source is self.destination:
            raise ValueError("transfer source and destination must differ")


@dataclass(frozen=True)
class SettlementResult:
    settlement_class: SettlementClass
    size_closed: int
    size_pct_bps: int
    exit_price: int
    pnl: int
    funding_share: int
    borrow_share: int
    exit_notional: int
    closing_fee: int
    rebalance_fee: int
    total_fees: int
    collateral_share: int
    net_collateral: int
    user_equity: int
    user_payout: int
    treasury_fee: int
    pool_net_delta: int           # positive = pool balance grows
    is_bad_debt: bool
    bad_debt_amount: int
    transfers: tuple[Transfer, ...]
    position: Position            # post-settlement (status CLOSED when fully closed)

    @property
    def fully_closed(self) -> bool:
        return self.position.status is PositionStatus.CLOSED


# ---------------------------------------------------------------------------
# Command parameters
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RoleParams:
    account: str
    role: Role


@dataclass(frozen=True)
class FeatureFlagsParams:
    flags: FeatureFlags


@dataclass(frozen=True)
class TreasuryParams:
    treasury: str


@dataclass(frozen=True)
class SetConfigParams:
    name: str
    value: int


@dataclass(frozen=True)
class AssetParams:
    asset_id: str
    allow_longs: bool = True
    allow_shorts: bool = True
    is_active: bool = True


@dataclass(frozen=True)
class CreateBasketParams:
    basket_id: str
    assets: tuple[BasketAsset, ...]
    is_public: bool = True


@dataclass(frozen=True)
class ActivateBasketParams:
    basket_id: str
    prices: tuple[int, ...]
    max_price_age: int


@dataclass(frozen=True)
class OraclePriceParams:
    basket_id: str
    price: int


@dataclass(frozen=True)
class MarketIndicesParams:
    basket_id: str
    new_funding_rate_bps: int
    new_borrow_rate_bps: int = 0


@dataclass(frozen=True)
class RebalanceParams:
    basket_id: str
    assets: tuple[BasketAsset, ...]
    new_nav: int
    fee_per_unit: int = 0


@dataclass(frozen=True)
class BasketOverridesParams:
    basket_id: str
    overrides: BasketRiskOverrides


@dataclass(frozen=True)
class BasketParams:
    """Lifecycle transitions that only name the basket."""
    basket_id: str


@dataclass(frozen=True)
class CreateOrderParams:
    order_id: str
    basket_id: str
    action: OrderAction
    direction: Direction = Direction.LONG
    notional: int = 0
    collateral: int = 0
    order_type: OrderType = OrderType.MARKET
    limit_price: int = 0
    max_slippage_bps: int = 0
    target_position: str | None = None
    size: int = 0


@dataclass(frozen=True)
class OrderParams:
    order_id: str


@dataclass(frozen=True)
class OpenPositionParams:
    order_id: str
    position_id: str
    entry_price: int


@dataclass(frozen=True)
class AddCollateralParams:
    position_id: str
    amount: int


@dataclass(frozen=True)
class ClosePositionParams:
    order_id: str
    exit_price: int


@dataclass(frozen=True)
class LiquidateParams:
    position_id: str
    exit_price: int


@dataclass(frozen=True)
class ForceCloseParams:
    position_id: str
    exit_price: int = 0           # ignored once the basket is Settled


@dataclass(frozen=True)
class AddLiquidityParams:
    amount: int
    min_shares_out: int = 0


@dataclass(frozen=True)
class RemoveLiquidityParams:
    lp_amount: int


@dataclass(frozen=True)
class Command:
    """One engine command: who, when, what."""

    action: Action
    actor: str
    now: int
    params: Any


@dataclass(frozen=True)
class Effect:
    event: Event
    payload: Mapping[str, Any] = field(default_factory=dict)
    transfers: tuple[Transfer, ...] = ()


@dataclass(frozen=True)
class StepResult:
    accepted: bool
    state: ProtocolState | None = None
    effect: Effect | None = None
    rejection: str | None = None
