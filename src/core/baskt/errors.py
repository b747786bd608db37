"""Error taxonomy for the baskt engine.

Every business rejection maps to exactly one ``ErrorCode``. Component functions
raise ``BasktError``; ``step()`` in ``engine.py`` turns it into a rejection
string, and ``step_or_raise()`` turns the string back into an exception.
"""

from __future__ import annotations

from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """Closed set of named failure conditions."""

    # Configuration bounds
    INVALID_FEE_BPS = "InvalidFeeBps"
    INVALID_COLLATERAL_RATIO = "InvalidCollateralRatio"
    INVALID_ORACLE_PARAMETER = "InvalidOracleParameter"
    INVALID_GRACE_PERIOD = "InvalidGracePeriod"

    # State machine
    INVALID_BASKT_STATE = "InvalidBasktState"
    GRACE_PERIOD_NOT_OVER = "GracePeriodNotOver"
    POSITIONS_STILL_OPEN = "PositionsStillOpen"
    FUNDING_NOT_UP_TO_DATE = "FundingNotUpToDate"

    # Authorization
    UNAUTHORIZED = "Unauthorized"
    UNAUTHORIZED_ROLE = "UnauthorizedRole"

    # Feature flags
    FEATURE_DISABLED = "FeatureDisabled"
    POSITION_OPERATIONS_DISABLED = "PositionOperationsDisabled"
    LIQUIDITY_OPERATIONS_DISABLED = "LiquidityOperationsDisabled"

    # Market data
    INVALID_ORACLE_PRICE = "InvalidOraclePrice"
    STALE_ORACLE_PRICE = "StaleOraclePrice"
    PRICE_OUT_OF_BOUNDS = "PriceOutOfBounds"
    FUNDING_RATE_EXCEEDS_MAXIMUM = "FundingRateExceedsMaximum"

    # Position economics
    INSUFFICIENT_COLLATERAL = "InsufficientCollateral"
    ZERO_SIZED_POSITION = "ZeroSizedPosition"
    POSITION_NOT_LIQUIDATABLE = "PositionNotLiquidatable"
    INVALID_POSITION_SIZE = "InvalidPositionSize"
    INVALID_AMOUNT = "InvalidAmount"

    # Basket configuration
    INVALID_BASKT_CONFIG = "InvalidBasktConfig"
    INVALID_ASSET_WEIGHTS = "InvalidAssetWeights"
    LONG_POSITIONS_DISABLED = "LongPositionsDisabled"
    SHORT_POSITIONS_DISABLED = "ShortPositionsDisabled"
    INACTIVE_ASSET = "InactiveAsset"
    INVALID_REBALANCE_FEE = "InvalidRebalanceFee"

    # Orders
    INVALID_ORDER_ACTION = "InvalidOrderAction"
    INVALID_TARGET_POSITION = "InvalidTargetPosition"

    # Liquidity pool
    BELOW_MINIMUM_DEPOSIT = "BelowMinimumDeposit"
    INVALID_LP_TOKEN_AMOUNT = "InvalidLpTokenAmount"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    INSUFFICIENT_LIQUIDITY = "InsufficientLiquidity"

    # Records
    RECORD_NOT_FOUND = "RecordNotFound"
    RECORD_ALREADY_EXISTS = "RecordAlreadyExists"


class BasktError(Exception):
    """Raised when an operation's precondition is not satisfied."""

    def __init__(self, code: ErrorCode, detail: str = "") -> None:
        self.code = code
        self.detail = detail
        msg = code.value if not detail else f"{code.value}: {detail}"
        super().__init__(msg)


class BasktInvariantError(Exception):
    """Raised when a post-state violates one or more ledger invariants."""

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")


class BasktParamError(Exception):
    """Raised when command parameters have the wrong type or leave their domain."""
