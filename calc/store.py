from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Iterator

from .conditions import (
    CONDITION_ADAPTER,
    condition_id,
    ensure_condition_size,
    evaluate_condition,
    parse_condition,
)
from .config import load_app_config, resolve_page_limit
from .db import get_connection, init_db, resolve_db_path
from .errors import (
    CalcError,
    ConditionNotMetError,
    ExecutionNotImplementedError,
    StateQueryError,
    StrategyAlreadyExistsError,
    StrategyArchivedError,
    StrategyNotActiveError,
    StrategyNotFoundError,
    TriggerNotFoundError,
    UnauthorizedError,
    UnresolvableAssetError,
)
from .events import (
    DOMAIN_EVENT_ADAPTER,
    DomainEvent,
    ExecutionFailed,
    ExecutionSkipped,
    ExecutionSucceeded,
    FundsDeposited,
    FundsWithdrawn,
    SchedulingFailed,
    SchedulingSkipped,
    SchedulingSucceeded,
    StrategyInstantiated,
    StrategyUpdated,
    to_event_log_item,
)
from .ledger_state import EvaluationContext
from .lifecycle import transition_event
from .models import (
    Coin,
    ContractCall,
    ControlResponse,
    EventLogItem,
    StrategyConfigUpdateIn,
    StrategyHandle,
    StrategyStatus,
    StrategyStatusUpdateIn,
)
from .strategies import ExecutionOutcome, StrategyCreateIn, StrategyExecutionOut
from .triggers import (
    BlockEnv,
    ConditionFilter,
    Trigger,
    TriggerIn,
    condition_sort_key,
    execute,
    filter_key_range,
)

_LOGGER = logging.getLogger("calc.store")
_AUDIT_LOGGER = logging.getLogger("calc.audit")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


def dumps_json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _row_to_handle(row: sqlite3.Row) -> StrategyHandle:
    return StrategyHandle(
        id=int(row["id"]),
        owner=row["owner"],
        contract_address=row["contract_address"],
        created_at=parse_iso(row["created_at"]),
        updated_at=parse_iso(row["updated_at"]),
        label=row["label"],
        status=row["status"],
        affiliates=json.loads(row["affiliates_json"] or "[]"),
        condition=json.loads(row["condition_json"]) if row["condition_json"] else None,
    )


def _row_to_trigger(row: sqlite3.Row) -> Trigger:
    return Trigger.model_validate(
        {
            "id": int(row["id"]),
            "owner": row["owner"],
            "condition": json.loads(row["condition_json"]),
            "msg": row["msg"],
            "to": row["to_address"],
            "execution_rebate": json.loads(row["execution_rebate_json"] or "[]"),
        }
    )


class SQLiteStore:
    """Strategy registry, event log and trigger book on a single sqlite file."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._lock = Lock()
        self._db_path = resolve_db_path(db_path)
        init_db(self._db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = get_connection(self._db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _get_strategy_row(self, conn: sqlite3.Connection, contract_address: str) -> sqlite3.Row:
        row = conn.execute(
            "SELECT * FROM strategies WHERE contract_address = ?",
            (contract_address,),
        ).fetchone()
        if row is None:
            raise StrategyNotFoundError(contract_address)
        return row

    def _is_registered(self, conn: sqlite3.Connection, contract_address: str) -> bool:
        hit = conn.execute(
            "SELECT 1 FROM strategies WHERE contract_address = ?",
            (contract_address,),
        ).fetchone()
        return hit is not None

    def _append_event(
        self,
        conn: sqlite3.Connection,
        event: DomainEvent,
        ts: datetime | None = None,
    ) -> None:
        conn.execute(
            """
            INSERT INTO strategy_events (contract_address, timestamp, event_type, payload_json)
            VALUES (?, ?, ?, ?)
            """,
            (event.contract_address, to_iso(ts or utcnow()), event.type, event.model_dump_json()),
        )
        _AUDIT_LOGGER.info(
            "event contract_address=%s type=%s attributes=%s",
            event.contract_address,
            event.event_name,
            dumps_json(event.attributes()),
        )

    def instantiate_strategy(self, payload: StrategyCreateIn) -> StrategyHandle:
        now = utcnow()
        condition_json: str | None = None
        if payload.condition is not None:
            ensure_condition_size(payload.condition)
            condition_json = CONDITION_ADAPTER.dump_json(payload.condition).decode("utf-8")
        with self._lock, self._conn() as conn:
            if self._is_registered(conn, payload.contract_address):
                raise StrategyAlreadyExistsError(payload.contract_address)
            conn.execute(
                """
                INSERT INTO strategies (
                  owner, contract_address, label, status, affiliates_json, config_json,
                  condition_json, created_at, updated_at
                )
                VALUES (?, ?, ?, 'ACTIVE', ?, ?, ?, ?, ?)
                """,
                (
                    payload.owner,
                    payload.contract_address,
                    payload.label,
                    dumps_json([item.model_dump(mode="json") for item in payload.affiliates]),
                    dumps_json(payload.config),
                    condition_json,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            self._append_event(
                conn,
                StrategyInstantiated(contract_address=payload.contract_address, config=payload.config),
                now,
            )
            conn.commit()
            row = self._get_strategy_row(conn, payload.contract_address)
        _LOGGER.info(
            "strategy instantiated contract_address=%s owner=%s label=%s",
            payload.contract_address,
            payload.owner,
            payload.label,
        )
        return _row_to_handle(row)

    def get_strategy(self, contract_address: str) -> StrategyHandle:
        with self._conn() as conn:
            return _row_to_handle(self._get_strategy_row(conn, contract_address))

    def get_strategy_config(self, contract_address: str) -> dict[str, Any]:
        with self._conn() as conn:
            row = self._get_strategy_row(conn, contract_address)
            return json.loads(row["config_json"] or "{}")

    def list_strategies(
        self,
        *,
        owner: str | None = None,
        status: StrategyStatus | None = None,
        start_after: int | None = None,
        limit: int | None = None,
    ) -> list[StrategyHandle]:
        clauses: list[str] = []
        params: list[Any] = []
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner.strip())
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if start_after is not None:
            clauses.append("id > ?")
            params.append(int(start_after))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(resolve_page_limit(limit))
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM strategies {where} ORDER BY id ASC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_handle(row) for row in rows]

    def update_strategy_status(
        self,
        contract_address: str,
        payload: StrategyStatusUpdateIn,
    ) -> ControlResponse:
        admin = load_app_config().manager.admin
        now = utcnow()
        with self._lock, self._conn() as conn:
            row = self._get_strategy_row(conn, contract_address)
            sender = payload.sender.strip()
            if sender not in {row["owner"], admin}:
                raise UnauthorizedError(sender, f"update_status:{contract_address}")
            current: StrategyStatus = row["status"]
            event = transition_event(contract_address, current, payload.status, reason=payload.reason)
            conn.execute(
                "UPDATE strategies SET status = ?, updated_at = ? WHERE contract_address = ?",
                (payload.status, to_iso(now), contract_address),
            )
            self._append_event(conn, event, now)
            conn.commit()
        _LOGGER.info(
            "strategy status updated contract_address=%s sender=%s from=%s to=%s",
            contract_address,
            sender,
            current,
            payload.status,
        )
        return ControlResponse(
            contract_address=contract_address,
            status=payload.status,
            message=event.event_name,
            updated_at=now,
        )

    def update_strategy(self, contract_address: str, payload: StrategyConfigUpdateIn) -> StrategyHandle:
        now = utcnow()
        with self._lock, self._conn() as conn:
            row = self._get_strategy_row(conn, contract_address)
            sender = payload.sender.strip()
            if sender != row["owner"]:
                raise UnauthorizedError(sender, f"update:{contract_address}")
            if row["status"] == "ARCHIVED":
                raise StrategyArchivedError(contract_address)
            old_config = json.loads(row["config_json"] or "{}")
            conn.execute(
                "UPDATE strategies SET config_json = ?, updated_at = ? WHERE contract_address = ?",
                (dumps_json(payload.config), to_iso(now), contract_address),
            )
            self._append_event(
                conn,
                StrategyUpdated(
                    contract_address=contract_address,
                    old_config=old_config,
                    new_config=payload.config,
                ),
                now,
            )
            conn.commit()
            row = self._get_strategy_row(conn, contract_address)
        _LOGGER.info("strategy config updated contract_address=%s sender=%s", contract_address, sender)
        return _row_to_handle(row)

    def record_deposit(self, contract_address: str, sender: str, funds: list[Coin]) -> None:
        with self._lock, self._conn() as conn:
            self._get_strategy_row(conn, contract_address)
            self._append_event(
                conn,
                FundsDeposited(contract_address=contract_address, sender=sender.strip(), funds=funds),
            )
            conn.commit()

    def record_withdrawal(self, contract_address: str, sender: str, funds: list[Coin]) -> None:
        with self._lock, self._conn() as conn:
            row = self._get_strategy_row(conn, contract_address)
            sender = sender.strip()
            if sender != row["owner"]:
                raise UnauthorizedError(sender, f"withdraw:{contract_address}")
            if row["status"] == "ARCHIVED":
                raise StrategyArchivedError(contract_address)
            self._append_event(
                conn,
                FundsWithdrawn(contract_address=contract_address, recipient=row["owner"], funds=funds),
            )
            conn.commit()

    def record_event(self, event: DomainEvent, ts: datetime | None = None) -> None:
        with self._lock, self._conn() as conn:
            self._get_strategy_row(conn, event.contract_address)
            self._append_event(conn, event, ts)
            conn.commit()

    def strategy_events(self, contract_address: str) -> list[EventLogItem]:
        with self._conn() as conn:
            self._get_strategy_row(conn, contract_address)
            rows = conn.execute(
                """
                SELECT timestamp, payload_json
                FROM strategy_events
                WHERE contract_address = ?
                ORDER BY id ASC
                """,
                (contract_address,),
            ).fetchall()
        return [
            to_event_log_item(
                DOMAIN_EVENT_ADAPTER.validate_json(row["payload_json"]),
                parse_iso(row["timestamp"]),
            )
            for row in rows
        ]

    def create_trigger(self, payload: TriggerIn) -> Trigger:
        """Store a trigger and record the scheduling outcome for its owner.

        Owners that are registered strategies must be ACTIVE: a PAUSED owner
        records ``SchedulingSkipped`` and an ARCHIVED owner ``SchedulingFailed``,
        and the trigger is not stored.
        """
        now = utcnow()
        rejection: CalcError | None = None
        with self._lock, self._conn() as conn:
            owner_row = conn.execute(
                "SELECT status FROM strategies WHERE contract_address = ?",
                (payload.owner,),
            ).fetchone()
            owner_status: StrategyStatus | None = None if owner_row is None else owner_row["status"]
            if owner_status == "PAUSED":
                rejection = StrategyNotActiveError(payload.owner, owner_status)
                event: DomainEvent = SchedulingSkipped(contract_address=payload.owner, reason=str(rejection))
            elif owner_status == "ARCHIVED":
                rejection = StrategyArchivedError(payload.owner)
                event = SchedulingFailed(contract_address=payload.owner, reason=str(rejection))
            else:
                cursor = conn.execute(
                    """
                    INSERT INTO triggers (
                      owner, condition_type, condition_json, condition_key, msg, to_address,
                      execution_rebate_json, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        payload.owner,
                        payload.condition.type,
                        payload.condition.model_dump_json(),
                        condition_sort_key(payload.condition),
                        payload.msg,
                        payload.to,
                        dumps_json([coin.model_dump(mode="json") for coin in payload.execution_rebate]),
                        to_iso(now),
                    ),
                )
                trigger_id = int(cursor.lastrowid)
                event = SchedulingSucceeded(contract_address=payload.owner, conditions=[payload.condition])
            if owner_status is not None:
                self._append_event(conn, event, now)
            conn.commit()
        if rejection is not None:
            _LOGGER.warning(
                "trigger rejected owner=%s condition=%s error=%s",
                payload.owner,
                payload.condition.type,
                rejection,
            )
            raise rejection
        _LOGGER.info(
            "trigger created trigger_id=%s owner=%s condition=%s",
            trigger_id,
            payload.owner,
            payload.condition.type,
        )
        return Trigger(id=trigger_id, **payload.model_dump())

    def get_trigger(self, trigger_id: int) -> Trigger:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM triggers WHERE id = ?", (trigger_id,)).fetchone()
        if row is None:
            raise TriggerNotFoundError(trigger_id)
        return _row_to_trigger(row)

    def list_triggers(
        self,
        condition_filter: ConditionFilter | None = None,
        *,
        start_after: int | None = None,
        limit: int | None = None,
    ) -> list[Trigger]:
        clauses: list[str] = []
        params: list[Any] = []
        if condition_filter is not None:
            if condition_filter.type == "owner":
                clauses.append("owner = ?")
                params.append((condition_filter.address or "").strip())
            else:
                clauses.append("condition_type = ?")
                params.append(condition_filter.type)
                start_key, end_key = filter_key_range(condition_filter)
                if start_key is not None:
                    clauses.append("condition_key >= ?")
                    params.append(start_key)
                if end_key is not None:
                    clauses.append("condition_key <= ?")
                    params.append(end_key)
        if start_after is not None:
            clauses.append("id > ?")
            params.append(int(start_after))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(resolve_page_limit(limit))
        with self._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM triggers {where} ORDER BY id ASC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_trigger(row) for row in rows]

    def execute_trigger(self, trigger_id: int, env: BlockEnv) -> ContractCall:
        """Run a stored trigger and consume it when its call is produced.

        Failures leave the trigger in place. When the owner is a registered
        strategy, the outcome is appended to that strategy's event log.
        """
        with self._lock, self._conn() as conn:
            row = conn.execute("SELECT * FROM triggers WHERE id = ?", (trigger_id,)).fetchone()
            if row is None:
                raise TriggerNotFoundError(trigger_id)
            trigger = _row_to_trigger(row)
            strategy_owned = self._is_registered(conn, trigger.owner)
            failure: CalcError | None = None
            try:
                call = execute(trigger, env)
            except ConditionNotMetError as exc:
                failure = exc
                event: DomainEvent = ExecutionSkipped(contract_address=trigger.owner, reason=str(exc))
            except ExecutionNotImplementedError as exc:
                failure = exc
                event = ExecutionFailed(contract_address=trigger.owner, reason=str(exc))
            else:
                conn.execute("DELETE FROM triggers WHERE id = ?", (trigger_id,))
                event = ExecutionSucceeded(contract_address=trigger.owner)
            if strategy_owned:
                self._append_event(conn, event)
            conn.commit()
        if failure is not None:
            _LOGGER.warning(
                "trigger execute failed trigger_id=%s owner=%s error=%s",
                trigger_id,
                trigger.owner,
                failure,
            )
            raise failure
        return call

    def execute_strategy(self, contract_address: str, ctx: EvaluationContext) -> StrategyExecutionOut:
        """Gate one run of a strategy on its stored condition.

        Only ACTIVE strategies run. A satisfied or absent condition records
        ``ExecutionSucceeded``, an unsatisfied one ``ExecutionSkipped``. Failed
        ledger reads record ``ExecutionFailed`` and are re-raised after commit.
        """
        handle = self.get_strategy(contract_address)
        if handle.status != "ACTIVE":
            raise StrategyNotActiveError(contract_address, handle.status)
        ctx = replace(ctx, contract_address=contract_address)
        condition = None if handle.condition is None else parse_condition(handle.condition)
        cid = None if condition is None else condition_id(condition, handle.owner)
        now = utcnow()
        failure: CalcError | None = None
        satisfied = False
        try:
            satisfied = condition is None or evaluate_condition(condition, handle.owner, ctx)
        except (StateQueryError, UnresolvableAssetError) as exc:
            failure = exc
            outcome: ExecutionOutcome = "FAILED"
            event: DomainEvent = ExecutionFailed(contract_address=contract_address, reason=str(exc))
        else:
            if satisfied:
                outcome = "SUCCEEDED"
                event = ExecutionSucceeded(contract_address=contract_address)
            else:
                outcome = "SKIPPED"
                event = ExecutionSkipped(
                    contract_address=contract_address,
                    reason=f"condition not met: condition_id={cid}",
                )
        with self._lock, self._conn() as conn:
            self._get_strategy_row(conn, contract_address)
            self._append_event(conn, event, now)
            conn.commit()
        _LOGGER.info(
            "strategy execute contract_address=%s condition_id=%s block_height=%s outcome=%s",
            contract_address,
            cid,
            ctx.block_height,
            outcome,
        )
        if failure is not None:
            raise failure
        return StrategyExecutionOut(
            contract_address=contract_address,
            status=handle.status,
            outcome=outcome,
            satisfied=satisfied,
            condition_id=cid,
            block_height=ctx.block_height,
            executed_at=now,
        )


_STORE: SQLiteStore | None = None
_STORE_LOCK = Lock()


def get_store() -> SQLiteStore:
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            _STORE = SQLiteStore()
        return _STORE


def reset_store() -> None:
    global _STORE
    with _STORE_LOCK:
        _STORE = None
