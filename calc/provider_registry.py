from __future__ import annotations

from threading import Lock

from .ledger_state import InMemoryStateQuerier, build_state_querier_from_config
from .store import get_store


_STATE_QUERIER_LOCK = Lock()
_STATE_QUERIER: InMemoryStateQuerier | None = None


def get_shared_state_querier() -> InMemoryStateQuerier:
    global _STATE_QUERIER
    with _STATE_QUERIER_LOCK:
        querier = _STATE_QUERIER
        if querier is None:
            querier = build_state_querier_from_config(registry=get_store())
            _STATE_QUERIER = querier
        return querier


def reset_shared_state_querier() -> None:
    global _STATE_QUERIER
    with _STATE_QUERIER_LOCK:
        _STATE_QUERIER = None
