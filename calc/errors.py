from __future__ import annotations

from typing import Any


class CalcError(RuntimeError):
    pass


class StateQueryError(CalcError):
    """A read against ledger state failed or returned malformed data."""


class UnresolvableAssetError(CalcError):
    def __init__(self, denom: str, cause: str) -> None:
        super().__init__(f"denom ({denom}) is not a secured asset, error: {cause}")
        self.denom = denom
        self.cause = cause


class ConditionNotMetError(CalcError):
    def __init__(self, condition: Any) -> None:
        super().__init__(f"condition not met: {condition!r}")
        self.condition = condition


class ExecutionNotImplementedError(CalcError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"{detail} not implemented")
        self.detail = detail


class InvalidStatusTransitionError(CalcError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"invalid strategy status transition {current} -> {target}")
        self.current = current
        self.target = target


class UnauthorizedError(CalcError):
    def __init__(self, sender: str, action: str) -> None:
        super().__init__(f"unauthorized: sender={sender} action={action}")
        self.sender = sender
        self.action = action


class StrategyNotFoundError(CalcError):
    def __init__(self, contract_address: str) -> None:
        super().__init__(f"strategy {contract_address} not found")
        self.contract_address = contract_address


class TriggerNotFoundError(CalcError):
    def __init__(self, trigger_id: int) -> None:
        super().__init__(f"trigger {trigger_id} not found")
        self.trigger_id = trigger_id


class ConditionTooComplexError(CalcError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"condition size {size} exceeds limit {limit}")
        self.size = size
        self.limit = limit


class StrategyAlreadyExistsError(CalcError):
    def __init__(self, contract_address: str) -> None:
        super().__init__(f"strategy {contract_address} already registered")
        self.contract_address = contract_address


class StrategyArchivedError(CalcError):
    def __init__(self, contract_address: str) -> None:
        super().__init__(f"strategy {contract_address} is archived")
        self.contract_address = contract_address


class StrategyNotActiveError(CalcError):
    def __init__(self, contract_address: str, status: str) -> None:
        super().__init__(f"strategy {contract_address} is {status}, not ACTIVE")
        self.contract_address = contract_address
        self.status = status
