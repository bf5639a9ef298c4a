from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from calc.db import get_connection, init_db


def test_init_db_creates_core_tables(tmp_path: Path) -> None:
    db_path = tmp_path / "calc_test.sqlite3"
    init_db(db_path=db_path)

    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        names = {r[0] for r in rows}

    assert {"strategies", "strategy_events", "triggers"}.issubset(names)


def test_init_db_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "calc_test.sqlite3"
    assert init_db(db_path=db_path) == db_path
    assert init_db(db_path=db_path) == db_path


def test_strategy_status_is_checked(tmp_path: Path) -> None:
    db_path = tmp_path / "calc_test.sqlite3"
    init_db(db_path=db_path)

    with get_connection(db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                """
                INSERT INTO strategies (owner, contract_address, label, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                ("o", "calc-s1", "l", "RUNNING", "2025-03-01T00:00:00Z", "2025-03-01T00:00:00Z"),
            )


def test_contract_address_is_unique(tmp_path: Path) -> None:
    db_path = tmp_path / "calc_test.sqlite3"
    init_db(db_path=db_path)

    insert = """
        INSERT INTO strategies (owner, contract_address, label, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?)
    """
    with get_connection(db_path) as conn:
        conn.execute(insert, ("o", "calc-s1", "l", "2025-03-01T00:00:00Z", "2025-03-01T00:00:00Z"))
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(insert, ("o2", "calc-s1", "l2", "2025-03-01T00:00:00Z", "2025-03-01T00:00:00Z"))


def test_trigger_json_columns_are_validated(tmp_path: Path) -> None:
    db_path = tmp_path / "calc_test.sqlite3"
    init_db(db_path=db_path)

    with get_connection(db_path) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                """
                INSERT INTO triggers (owner, condition_type, condition_json, msg, to_address, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                ("o", "block_height", "not-json", "e30=", "t", "2025-03-01T00:00:00Z"),
            )
