"""Ledger-wide invariant checkers.

Each function returns True when the invariant holds, and ``check_all()``
returns the list of violated invariant IDs (empty = all pass). The engine runs
``check_all()`` on every post-state before accepting a command.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable

from .math import BPS_DIVISOR
from .types import Closed, Pending, PositionStatus, ProtocolState


def inv_escrow_ids_match_positions(s: ProtocolState) -> bool:
    return set(s.escrows) == set(s.positions)


def inv_escrow_matches_collateral(s: ProtocolState) -> bool:
    return all(s.escrows.get(pid) == p.collateral for pid, p in s.positions.items())


def inv_positions_open_and_sized(s: ProtocolState) -> bool:
    return all(p.size > 0 and p.status is PositionStatus.OPEN for p in s.positions.values())


def inv_positions_reference_baskets(s: ProtocolState) -> bool:
    return all(p.basket_id in s.baskets for p in s.positions.values())


def inv_open_position_counts(s: ProtocolState) -> bool:
    counts = Counter(p.basket_id for p in s.positions.values())
    return all(b.open_positions == counts.get(bid, 0) for bid, b in s.baskets.items())


def inv_closed_baskets_empty(s: ProtocolState) -> bool:
    return all(
        b.open_positions == 0 for b in s.baskets.values() if isinstance(b.status, Closed)
    )


def inv_basket_weights(s: ProtocolState) -> bool:
    return all(
        sum(a.weight_bps for a in b.assets) == BPS_DIVISOR for b in s.baskets.values()
    )


def inv_active_baskets_priced(s: ProtocolState) -> bool:
    return all(
        b.baseline_nav > 0 and b.oracle.price > 0
        for b in s.baskets.values()
        if not isinstance(b.status, Pending)
    )


def inv_orders_reference_baskets(s: ProtocolState) -> bool:
    return all(o.basket_id in s.baskets for o in s.orders.values())


def inv_balances_non_negative(s: ProtocolState) -> bool:
    return (
        s.treasury_balance >= 0
        and s.pool.total_liquidity >= 0
        and all(v >= 0 for v in s.escrows.values())
    )


def inv_lp_shares_consistent(s: ProtocolState) -> bool:
    balances = s.pool.lp_balances
    return all(v > 0 for v in balances.values()) and sum(balances.values()) == s.pool.total_shares


def inv_risk_params_ordered(s: ProtocolState) -> bool:
    return 0 < s.config.liquidation_threshold_bps < s.config.min_collateral_ratio_bps


INVARIANT_REGISTRY: dict[str, Callable[[ProtocolState], bool]] = {
    "escrow_ids_match_positions": inv_escrow_ids_match_positions,
    "escrow_matches_collateral": inv_escrow_matches_collateral,
    "positions_open_and_sized": inv_positions_open_and_sized,
    "positions_reference_baskets": inv_positions_reference_baskets,
    "open_position_counts": inv_open_position_counts,
    "closed_baskets_empty": inv_closed_baskets_empty,
    "basket_weights": inv_basket_weights,
    "active_baskets_priced": inv_active_baskets_priced,
    "orders_reference_baskets": inv_orders_reference_baskets,
    "balances_non_negative": inv_balances_non_negative,
    "lp_shares_consistent": inv_lp_shares_consistent,
    "risk_params_ordered": inv_risk_params_ordered,
}


def check_all(state: ProtocolState) -> list[str]:
    """Return IDs of all violated invariants (empty list = all pass)."""
    return [name for name, fn in INVARIANT_REGISTRY.items() if not fn(state)]
