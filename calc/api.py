from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field, ValidationError, field_validator

from .conditions import Condition, condition_id, condition_size, ensure_condition_size, evaluate_condition
from .config import load_app_config
from .ledger_state import EvaluationContext
from .models import (
    BlockEnvIn,
    ContractCall,
    ControlResponse,
    EventLogItem,
    FundsIn,
    StrategyConfigUpdateIn,
    StrategyHandle,
    StrategyStatus,
    StrategyStatusUpdateIn,
    normalize_address,
)
from .provider_registry import get_shared_state_querier
from .store import get_store, utcnow
from .strategies import StrategyCreateIn, StrategyExecutionOut
from .triggers import BlockEnv, ConditionFilter, Trigger, TriggerIn, can_execute

router = APIRouter(prefix="/v1", tags=["calc"])


class ConditionIdentityIn(BaseModel):
    condition: Condition
    owner: str

    @field_validator("owner")
    @classmethod
    def validate_owner(cls, value: str) -> str:
        return normalize_address(value)


class ConditionIdentityOut(BaseModel):
    condition_id: int
    size: int


class ConditionEvaluateIn(ConditionIdentityIn):
    block_time: datetime | None = None
    block_height: int = Field(ge=0)
    contract_address: str | None = None


class ConditionEvaluateOut(ConditionIdentityOut):
    satisfied: bool


class ConditionSizeIn(BaseModel):
    condition: Condition


class ConditionSizeOut(BaseModel):
    size: int


class CanExecuteOut(BaseModel):
    trigger_id: int
    can_execute: bool


class ManagerConfigOut(BaseModel):
    address: str
    admin: str
    fee_collector: str
    strategy_code_id: int
    max_condition_size: int


def _block_env(payload: BlockEnvIn) -> BlockEnv:
    return BlockEnv(block_time=payload.block_time or utcnow(), block_height=payload.block_height)


def _evaluation_context(payload: BlockEnvIn, contract_address: str) -> EvaluationContext:
    return EvaluationContext(
        block_time=payload.block_time or utcnow(),
        block_height=payload.block_height,
        contract_address=contract_address.strip(),
        querier=get_shared_state_querier(),
    )


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/config", response_model=ManagerConfigOut)
def manager_config() -> ManagerConfigOut:
    cfg = load_app_config()
    return ManagerConfigOut(
        address=cfg.manager.address,
        admin=cfg.manager.admin,
        fee_collector=cfg.manager.fee_collector,
        strategy_code_id=cfg.manager.strategy_code_id,
        max_condition_size=cfg.engine.max_condition_size,
    )


@router.post("/strategies", response_model=StrategyHandle)
def instantiate_strategy(payload: StrategyCreateIn) -> StrategyHandle:
    return get_store().instantiate_strategy(payload)


@router.get("/strategies", response_model=list[StrategyHandle])
def list_strategies(
    owner: str | None = Query(default=None),
    status: StrategyStatus | None = Query(default=None),
    start_after: int | None = Query(default=None, ge=0),
    limit: int | None = Query(default=None, ge=1),
) -> list[StrategyHandle]:
    return get_store().list_strategies(owner=owner, status=status, start_after=start_after, limit=limit)


@router.get("/strategies/{contract_address}", response_model=StrategyHandle)
def get_strategy(contract_address: str) -> StrategyHandle:
    return get_store().get_strategy(contract_address)


@router.post("/strategies/{contract_address}/status", response_model=ControlResponse)
def update_strategy_status(contract_address: str, payload: StrategyStatusUpdateIn) -> ControlResponse:
    return get_store().update_strategy_status(contract_address, payload)


@router.put("/strategies/{contract_address}/config", response_model=StrategyHandle)
def update_strategy_config(contract_address: str, payload: StrategyConfigUpdateIn) -> StrategyHandle:
    return get_store().update_strategy(contract_address, payload)


@router.post("/strategies/{contract_address}/deposit", response_model=list[EventLogItem])
def deposit(contract_address: str, payload: FundsIn) -> list[EventLogItem]:
    store = get_store()
    store.record_deposit(contract_address, payload.sender, payload.funds)
    return store.strategy_events(contract_address)


@router.post("/strategies/{contract_address}/withdraw", response_model=list[EventLogItem])
def withdraw(contract_address: str, payload: FundsIn) -> list[EventLogItem]:
    store = get_store()
    store.record_withdrawal(contract_address, payload.sender, payload.funds)
    return store.strategy_events(contract_address)


@router.post("/strategies/{contract_address}/execute", response_model=StrategyExecutionOut)
def execute_strategy(contract_address: str, payload: BlockEnvIn) -> StrategyExecutionOut:
    return get_store().execute_strategy(contract_address, _evaluation_context(payload, contract_address))


@router.get("/strategies/{contract_address}/events", response_model=list[EventLogItem])
def strategy_events(contract_address: str) -> list[EventLogItem]:
    return get_store().strategy_events(contract_address)


@router.post("/conditions/id", response_model=ConditionIdentityOut)
def identify_condition(payload: ConditionIdentityIn) -> ConditionIdentityOut:
    return ConditionIdentityOut(
        condition_id=condition_id(payload.condition, payload.owner),
        size=condition_size(payload.condition),
    )


@router.post("/conditions/size", response_model=ConditionSizeOut)
def size_condition(payload: ConditionSizeIn) -> ConditionSizeOut:
    return ConditionSizeOut(size=condition_size(payload.condition))


@router.post("/conditions/evaluate", response_model=ConditionEvaluateOut)
def evaluate(payload: ConditionEvaluateIn) -> ConditionEvaluateOut:
    size = ensure_condition_size(payload.condition)
    env = BlockEnvIn(block_time=payload.block_time, block_height=payload.block_height)
    ctx = _evaluation_context(env, payload.contract_address or load_app_config().engine.contract_address)
    satisfied = evaluate_condition(payload.condition, payload.owner, ctx)
    return ConditionEvaluateOut(
        condition_id=condition_id(payload.condition, payload.owner),
        size=size,
        satisfied=satisfied,
    )


@router.post("/triggers", response_model=Trigger)
def create_trigger(payload: TriggerIn) -> Trigger:
    return get_store().create_trigger(payload)


@router.get("/triggers", response_model=list[Trigger])
def list_triggers(
    filter_type: str | None = Query(default=None, alias="type"),
    address: str | None = Query(default=None),
    start: str | None = Query(default=None),
    end: str | None = Query(default=None),
    start_after: int | None = Query(default=None, ge=0),
    limit: int | None = Query(default=None, ge=1),
) -> list[Trigger]:
    condition_filter: ConditionFilter | None = None
    if filter_type is not None:
        try:
            condition_filter = ConditionFilter.model_validate(
                {"type": filter_type, "address": address, "start": start, "end": end}
            )
        except ValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
    return get_store().list_triggers(condition_filter, start_after=start_after, limit=limit)


@router.get("/triggers/{trigger_id}", response_model=Trigger)
def get_trigger(trigger_id: int) -> Trigger:
    return get_store().get_trigger(trigger_id)


@router.post("/triggers/{trigger_id}/can-execute", response_model=CanExecuteOut)
def trigger_can_execute(trigger_id: int, payload: BlockEnvIn) -> CanExecuteOut:
    trigger = get_store().get_trigger(trigger_id)
    return CanExecuteOut(trigger_id=trigger_id, can_execute=can_execute(trigger, _block_env(payload)))


@router.post("/triggers/{trigger_id}/execute", response_model=ContractCall)
def execute_trigger(trigger_id: int, payload: BlockEnvIn) -> ContractCall:
    return get_store().execute_trigger(trigger_id, _block_env(payload))
