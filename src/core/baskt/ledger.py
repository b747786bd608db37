"""Stateful wrapper around the pure ``step()`` engine.

``BasktLedger`` holds the current ``ProtocolState`` and applies commands one at a
time under a lock, so the shell can share one ledger between threads. Each
command is all-or-nothing: on rejection the held state is unchanged and the
error is re-raised to the caller.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Optional

from .engine import step_or_raise
from .errors import BasktError, BasktInvariantError, BasktParamError
from .state import initial_state, state_to_dict
from .types import Action, Command, Effect, ProtocolConfig, ProtocolState

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10_000

_LIFECYCLE_ACTIONS = frozenset({
    Action.CREATE_BASKET,
    Action.ACTIVATE_BASKET,
    Action.REBALANCE_BASKET,
    Action.DECOMMISSION_BASKET,
    Action.SETTLE_BASKET,
    Action.CLOSE_BASKET,
})


class BasktLedger:
    """Serialized holder of the protocol state.

    Only the most recent *history_limit* effects are kept; pass ``None`` to keep
    every effect for the life of the ledger.
    """

    def __init__(
        self, state: ProtocolState, history_limit: Optional[int] = DEFAULT_HISTORY_LIMIT
    ) -> None:
        self._state = state
        self._lock = threading.RLock()
        self._history: deque[Effect] = deque(maxlen=history_limit)

    @classmethod
    def create(
        cls,
        owner: str,
        treasury: Optional[str] = None,
        config: Optional[ProtocolConfig] = None,
        now: int = 0,
    ) -> "BasktLedger":
        return cls(initial_state(owner, treasury=treasury, config=config, now=now))

    @property
    def state(self) -> ProtocolState:
        with self._lock:
            return self._state

    @property
    def history(self) -> tuple[Effect, ...]:
        with self._lock:
            return tuple(self._history)

    def submit(self, command: Command) -> Effect:
        """Apply *command*; return its effect or raise the rejection."""
        with self._lock:
            try:
                result = step_or_raise(self._state, command)
            except (BasktError, BasktParamError, BasktInvariantError) as exc:
                action = getattr(command.action, "value", command.action)
                logger.info("%s by %s rejected: %s", action, command.actor, exc)
                raise
            if result.state is None or result.effect is None:
                raise RuntimeError(f"accepted {command.action.value} without state or effect")
            self._state = result.state
            self._history.append(result.effect)
            self._log_effect(command, result.effect)
            return result.effect

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return state_to_dict(self._state)

    @staticmethod
    def _log_effect(command: Command, effect: Effect) -> None:
        payload = effect.payload
        if payload.get("is_bad_debt"):
            logger.warning(
                "bad debt on %s: %s",
                payload.get("position_id"),
                payload.get("bad_debt_amount"),
            )
        if command.action is Action.LIQUIDATE_POSITION:
            logger.info(
                "liquidated %s at %s (payout=%s)",
                payload.get("position_id"),
                payload.get("exit_price"),
                payload.get("user_payout"),
            )
        elif command.action in _LIFECYCLE_ACTIONS:
            logger.info("%s %s", effect.event.value, payload.get("basket_id"))
        else:
            logger.debug("%s %s", effect.event.value, dict(payload))
