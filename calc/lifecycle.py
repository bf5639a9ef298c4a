from __future__ import annotations

from .errors import InvalidStatusTransitionError
from .events import DomainEvent, StrategyArchived, StrategyPaused, StrategyResumed
from .models import StrategyStatus

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "ACTIVE": frozenset({"PAUSED", "ARCHIVED"}),
    "PAUSED": frozenset({"ACTIVE", "ARCHIVED"}),
    "ARCHIVED": frozenset(),
}


def validate_status_transition(current: StrategyStatus, target: StrategyStatus) -> None:
    if target not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransitionError(current, target)


def transition_event(
    contract_address: str,
    current: StrategyStatus,
    target: StrategyStatus,
    *,
    reason: str | None = None,
) -> DomainEvent:
    validate_status_transition(current, target)
    if target == "PAUSED":
        return StrategyPaused(contract_address=contract_address, reason=reason or "paused by sender")
    if target == "ARCHIVED":
        return StrategyArchived(contract_address=contract_address)
    return StrategyResumed(contract_address=contract_address)
