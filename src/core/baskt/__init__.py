"""
baskt: accounting and settlement engine for leveraged trading on synthetic baskets.

Pure functional core (``step``) plus a thin serialized shell (``BasktLedger``).
Baskets move Pending -> Active -> Decommissioning -> Settled -> Closed; positions
are opened against the basket NAV and every close is settled into exact transfer
instructions between escrow, user, liquidity pool and treasury.
"""

from .engine import step, step_or_raise
from .errors import BasktError, BasktInvariantError, BasktParamError, ErrorCode
from .invariants import INVARIANT_REGISTRY, check_all
from .ledger import BasktLedger
from .settlement import settle, verify_conservation
from .state import initial_state, state_to_dict
from .types import (
    AccountClass,
    Action,
    Active,
    Basket,
    BasketAsset,
    BasketRiskOverrides,
    Closed,
    Command,
    Decommissioning,
    Direction,
    Effect,
    Event,
    FeatureFlags,
    Order,
    OrderAction,
    OrderType,
    Pending,
    Position,
    ProtocolConfig,
    ProtocolState,
    Role,
    Settled,
    SettlementClass,
    SettlementResult,
    StepResult,
    Transfer,
)

__all__ = [
    "step",
    "step_or_raise",
    "BasktError",
    "BasktInvariantError",
    "BasktParamError",
    "ErrorCode",
    "INVARIANT_REGISTRY",
    "check_all",
    "BasktLedger",
    "settle",
    "verify_conservation",
    "initial_state",
    "state_to_dict",
    "AccountClass",
    "Action",
    "Active",
    "Basket",
    "BasketAsset",
    "BasketRiskOverrides",
    "Closed",
    "Command",
    "Decommissioning",
    "Direction",
    "Effect",
    "Event",
    "FeatureFlags",
    "Order",
    "OrderAction",
    "OrderType",
    "Pending",
    "Position",
    "ProtocolConfig",
    "ProtocolState",
    "Role",
    "Settled",
    "SettlementClass",
    "SettlementResult",
    "StepResult",
    "Transfer",
]
