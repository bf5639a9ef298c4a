#!/usr/bin/env python3
"""Evaluate a JSON condition against a ledger-state fixture."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pydantic import ValidationError

from calc.conditions import condition_id, condition_size, evaluate_condition, parse_condition
from calc.config import load_app_config
from calc.errors import CalcError
from calc.ledger_state import EvaluationContext, FixtureStateQuerier
from calc.runtime_paths import resolve_ledger_fixture_path


def _parse_block_time(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_args() -> argparse.Namespace:
    cfg = load_app_config()
    parser = argparse.ArgumentParser(description="Evaluate a CALC condition tree against ledger state")
    parser.add_argument("condition", help="Path to a JSON file holding one condition")
    parser.add_argument("--owner", required=True, help="Owner address used for the condition id")
    parser.add_argument("--fixture", default=None, help="Ledger-state fixture JSON path")
    parser.add_argument("--block-height", type=int, default=0)
    parser.add_argument("--block-time", default=None, help="ISO-8601 block time (defaults to now)")
    parser.add_argument(
        "--contract-address",
        default=cfg.engine.contract_address,
        help="Strategy address used by strategy_balance_available",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    try:
        raw = json.loads(Path(args.condition).read_text(encoding="utf-8"))
        condition = parse_condition(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"[ERROR] Invalid condition file {args.condition}: {exc}", file=sys.stderr)
        return 2

    try:
        querier = FixtureStateQuerier(fixture_path=args.fixture or resolve_ledger_fixture_path())
        ctx = EvaluationContext(
            block_time=_parse_block_time(args.block_time),
            block_height=args.block_height,
            contract_address=args.contract_address,
            querier=querier,
        )
        satisfied = evaluate_condition(condition, args.owner, ctx)
    except (CalcError, ValueError) as exc:
        print(f"[ERROR] Evaluation failed: {exc}", file=sys.stderr)
        return 1

    print(
        json.dumps(
            {
                "condition_id": condition_id(condition, args.owner),
                "size": condition_size(condition),
                "satisfied": satisfied,
            },
            ensure_ascii=False,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
