"""Role-based authorization.

``PERMISSIONS`` maps each action to the roles allowed to run it. Actions absent
from the map are open to any actor; their record-level checks (order owner,
basket creator, position owner) live with the operation itself. The protocol
owner holds every role.
"""

from __future__ import annotations

from typing import Mapping

from .errors import BasktError, ErrorCode
from .types import Action, Role

PERMISSIONS: dict[Action, frozenset[Role]] = {
    Action.ADD_ROLE: frozenset({Role.OWNER}),
    Action.REMOVE_ROLE: frozenset({Role.OWNER}),
    Action.UPDATE_FEATURE_FLAGS: frozenset({Role.OWNER}),
    Action.UPDATE_TREASURY: frozenset({Role.OWNER}),
    Action.SET_CONFIG: frozenset({Role.CONFIG_MANAGER}),
    Action.REGISTER_ASSET: frozenset({Role.ASSET_MANAGER}),
    Action.UPDATE_ASSET: frozenset({Role.ASSET_MANAGER}),
    Action.UPDATE_ORACLE_PRICE: frozenset({Role.ORACLE_MANAGER}),
    Action.UPDATE_MARKET_INDICES: frozenset({Role.FUNDING_MANAGER}),
    Action.SET_BASKET_OVERRIDES: frozenset({Role.BASKET_MANAGER, Role.CONFIG_MANAGER}),
    Action.DECOMMISSION_BASKET: frozenset({Role.BASKET_MANAGER, Role.ORACLE_MANAGER}),
    Action.SETTLE_BASKET: frozenset({Role.ORACLE_MANAGER}),
    Action.CLOSE_BASKET: frozenset({Role.ORACLE_MANAGER}),
    Action.OPEN_POSITION: frozenset({Role.MATCHER}),
    Action.CLOSE_POSITION: frozenset({Role.MATCHER}),
    Action.LIQUIDATE_POSITION: frozenset({Role.LIQUIDATOR}),
    Action.FORCE_CLOSE_POSITION: frozenset({Role.MATCHER}),
}

# Creator-or-role actions: the basket creator passes without the role.
CREATOR_OR_ROLE: dict[Action, frozenset[Role]] = {
    Action.REBALANCE_BASKET: frozenset({Role.REBALANCER}),
}


def has_role(roles: Mapping[str, frozenset[Role]], owner: str, actor: str, role: Role) -> bool:
    if actor == owner:
        return True
    return role in roles.get(actor, frozenset())


def is_allowed(
    roles: Mapping[str, frozenset[Role]], owner: str, actor: str, action: Action
) -> bool:
    """True when *actor* holds one of the roles *action* requires (or none are required)."""
    required = PERMISSIONS.get(action)
    if required is None:
        return True
    return any(has_role(roles, owner, actor, r) for r in required)


def authorize(
    roles: Mapping[str, frozenset[Role]], owner: str, actor: str, action: Action
) -> None:
    if not is_allowed(roles, owner, actor, action):
        raise BasktError(ErrorCode.UNAUTHORIZED_ROLE, f"{actor} may not {action.value}")


def authorize_creator_or_role(
    roles: Mapping[str, frozenset[Role]], owner: str, actor: str, creator: str, action: Action
) -> None:
    if actor == creator:
        return
    required = CREATOR_OR_ROLE.get(action, frozenset())
    if not any(has_role(roles, owner, actor, r) for r in required):
        raise BasktError(ErrorCode.UNAUTHORIZED, f"{actor} is not the creator of this basket")


def add_role(
    roles: Mapping[str, frozenset[Role]], account: str, role: Role
) -> dict[str, frozenset[Role]]:
    if role is Role.OWNER:
        raise BasktError(ErrorCode.UNAUTHORIZED_ROLE, "owner role cannot be granted")
    out = dict(roles)
    out[account] = roles.get(account, frozenset()) | {role}
    return out


def remove_role(
    roles: Mapping[str, frozenset[Role]], account: str, role: Role
) -> dict[str, frozenset[Role]]:
    current = roles.get(account, frozenset())
    if role not in current:
        raise BasktError(ErrorCode.RECORD_NOT_FOUND, f"{account} does not hold {role.value}")
    out = dict(roles)
    remaining = current - {role}
    if remaining:
        out[account] = remaining
    else:
        del out[account]
    return out
