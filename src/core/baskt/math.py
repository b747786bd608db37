"""Pure arithmetic for the baskt engine.

Every function is stateless and operates on plain Python ints.

Rounding is explicit. Signed quantities (PnL, funding, index increments) use
``div_trunc`` which rounds toward zero, matching the ledger's integer division.
Unsigned quantities (fees, sizes, notionals, shares) use ``//`` directly; for
non-negative operands the two agree.
"""

from __future__ import annotations

# Fixed-point scales
PRICE_PRECISION: int = 1_000_000  # 6 decimals
BPS_DIVISOR: int = 10_000
INDEX_PRECISION: int = 10_000_000_000  # 1.0 for funding/borrow indices
SECONDS_PER_HOUR: int = 3600
BASE_NAV: int = 1

# Configuration bounds
MAX_FEE_BPS: int = 500
MAX_TREASURY_CUT_BPS: int = 5_000
MIN_COLLATERAL_RATIO_BPS: int = 1_000
MAX_COLLATERAL_RATIO_BPS: int = 100_000
MIN_GRACE_PERIOD: int = 1
MAX_GRACE_PERIOD: int = 604_800
MAX_PRICE_DEVIATION_BPS: int = 2_500
MAX_FUNDING_RATE_CAP_BPS: int = 10_000


# -- Basic helpers -----------------------------------------------------------

def abs_val(x: int) -> int:
    """Absolute value of *x*."""
    return x if x >= 0 else -x


def div_trunc(a: int, b: int) -> int:
    """Integer division rounding toward zero (``b`` must be non-zero)."""
    q = abs_val(a) // abs_val(b)
    return q if (a >= 0) == (b >= 0) else -q


def mul_div(a: int, b: int, denom: int) -> int:
    """``a * b / denom`` with truncation toward zero."""
    return div_trunc(a * b, denom)


def bps_of(amount: int, bps: int) -> int:
    """``amount * bps / 10000`` for non-negative inputs."""
    return (amount * bps) // BPS_DIVISOR


def split_fee(fee: int, treasury_cut_bps: int) -> tuple[int, int]:
    """Split *fee* into ``(treasury, pool)``; the pool keeps the rounding remainder."""
    treasury = bps_of(fee, treasury_cut_bps)
    return treasury, fee - treasury


# -- Price / position helpers ------------------------------------------------

def position_size(notional: int, price: int) -> int:
    """Contracts bought by *notional* at *price*: ``notional * 1e6 / price``."""
    return (notional * PRICE_PRECISION) // price


def notional_value(size: int, price: int) -> int:
    """Notional of *size* contracts at *price*: ``size * price / 1e6``."""
    return (size * price) // PRICE_PRECISION


def pnl(entry_price: int, exit_price: int, size: int, is_long: bool) -> int:
    """Signed PnL of *size* contracts between entry and exit prices."""
    delta = exit_price - entry_price if is_long else entry_price - exit_price
    return mul_div(delta, size, PRICE_PRECISION)


def size_pct_bps(size_to_close: int, size: int) -> int:
    """Share of the position being closed, in bps (floor)."""
    return (size_to_close * BPS_DIVISOR) // size


def within_bps(price: int, reference: int, max_deviation_bps: int) -> bool:
    """True when ``|price - reference| <= reference * max_deviation_bps / 10000``.

    Uses cross-multiplication to avoid division.
    """
    return abs_val(price - reference) * BPS_DIVISOR <= max_deviation_bps * reference


# -- Index helpers -------------------------------------------------------------

def index_increment(index: int, rate_bps: int, elapsed: int) -> int:
    """Compounding increment of a cumulative index held at *rate_bps* per hour."""
    return div_trunc(index * rate_bps * elapsed, BPS_DIVISOR * SECONDS_PER_HOUR)


def index_accrual(size: int, current_index: int, last_index: int) -> int:
    """Amount accrued on *size* between two index snapshots (signed)."""
    return mul_div(size, current_index - last_index, INDEX_PRECISION)


def funding_to_user(size: int, current_index: int, last_index: int, is_long: bool) -> int:
    """Funding credited to the user (negative = user pays).

    Longs pay when the funding index rises; shorts receive.
    """
    accrued = index_accrual(size, current_index, last_index)
    return -accrued if is_long else accrued


def rebalance_fee(current_index: int, last_index: int, exit_notional: int) -> int:
    """Rebalance fee owed on *exit_notional* since *last_index* (bps per unit)."""
    return ((current_index - last_index) * exit_notional) // BPS_DIVISOR


# -- Risk helpers --------------------------------------------------------------

def required_collateral(notional: int, min_collateral_ratio_bps: int) -> int:
    """Minimum collateral backing *notional*."""
    return bps_of(notional, min_collateral_ratio_bps)


def is_liquidatable(equity: int, notional: int, liquidation_threshold_bps: int) -> bool:
    """True when ``equity / notional <= threshold`` (cross-multiplied)."""
    return equity * BPS_DIVISOR <= liquidation_threshold_bps * notional
