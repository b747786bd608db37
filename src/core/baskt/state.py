"""State construction and serialization for the baskt engine.

``initial_state()`` builds an empty ledger from the packaged YAML defaults (or an
explicit config). ``state_to_dict()`` produces a plain, JSON-friendly snapshot.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass, replace
from enum import Enum
from typing import Any, Mapping

from .config import load_protocol_defaults
from .liquidity import init_pool
from .types import PoolParams, ProtocolConfig, ProtocolState

# Auto-derived from ProtocolState field definitions (single source of truth).
STATE_VAR_NAMES: tuple[str, ...] = tuple(ProtocolState.__dataclass_fields__)


def initial_state(
    owner: str,
    treasury: str | None = None,
    config: ProtocolConfig | None = None,
    pool_params: PoolParams | None = None,
    now: int = 0,
) -> ProtocolState:
    """Return an empty ledger owned by *owner*.

    Missing *config* / *pool_params* come from ``defaults.yaml``. The treasury
    defaults to the owner.
    """
    if not owner:
        raise ValueError("owner must be non-empty")
    if config is None or pool_params is None:
        default_config, default_pool = load_protocol_defaults()
        config = config if config is not None else default_config
        pool_params = pool_params if pool_params is not None else default_pool
    config = replace(config, treasury=treasury or owner, last_updated=now, last_updated_by=owner)
    return ProtocolState(
        owner=owner,
        config=config,
        pool=init_pool(pool_params),
        last_timestamp=now,
    )


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (frozenset, set)):
        return sorted(_plain(v) for v in value)
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    return value


def state_to_dict(state: ProtocolState) -> dict[str, Any]:
    """Serialize a ProtocolState to nested plain dicts/lists.

    Basket statuses are written as ``{"kind": <variant>, ...fields}``.
    """
    out = {name: _plain(getattr(state, name)) for name in STATE_VAR_NAMES}
    for bid, basket in state.baskets.items():
        out["baskets"][bid]["status"] = {
            "kind": type(basket.status).__name__,
            **_plain(basket.status),
        }
    return out
