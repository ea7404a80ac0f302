#!/usr/bin/env python3
"""
EscrowStake simulation runner — replays a scenario against a pool and/or
serves the pool over HTTP.

Usage:
    python run_sim.py --scenario scenarios/basic.json
    python run_sim.py --config escrowstake.toml --db data/sim.db --serve

Scenario file (JSON):

    {
      "start_time": 1700000000,
      "pool_funding": "1000000",
      "accounts": {"alice": "50000", "bob": "2000"},
      "actions": [
        {"day": 0,  "op": "stake",   "account": "alice", "amount": "1000", "days": 30},
        {"day": 10, "op": "claim",   "account": "alice", "stake_id": 1},
        {"day": 12, "op": "distribute", "percentage_bps": 100},
        {"day": 40, "op": "unstake", "account": "alice", "stake_id": 1}
      ]
    }

Account names are turned into deterministic Ethereum addresses; a name
that already is an address is used as-is.  Each action may also give
``"seconds"`` (added to ``day``) and ``"expect"`` (an error code the
action should fail with).  The JSON report is written to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from typing import Any, Optional

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from escrowstake_core.accounts import SimAccount, is_valid_address, to_checksum_address  # noqa: E402
from escrowstake_core.api import APIServer, _json_dumps  # noqa: E402
from escrowstake_core.config import EscrowStakeConfig, load_config  # noqa: E402
from escrowstake_core.errors import StakingError  # noqa: E402
from escrowstake_core.logging_config import setup_logging  # noqa: E402
from escrowstake_core.precision import SECONDS_PER_DAY, tokens  # noqa: E402
from escrowstake_core.staking import StakingPool  # noqa: E402
from escrowstake_core.storage import StakeStore  # noqa: E402
from escrowstake_core.token import CappedToken  # noqa: E402

logger = logging.getLogger("escrowstake.sim")


# ===================================================================
#  Scenario replay
# ===================================================================

def resolve_account(name: str) -> str:
    if is_valid_address(name):
        return to_checksum_address(name)
    return SimAccount.from_seed(name).address


def _apply(pool: StakingPool, action: dict, now: int) -> dict[str, Any]:
    op = action["op"]
    account = resolve_account(action["account"]) if "account" in action else None
    caller = action.get("caller", pool.owner)

    if op == "stake":
        stake = pool.stake(account, tokens(action["amount"]), int(action["days"]), now)
        return {"stake_id": stake.stake_id, "end_time": stake.end_time}
    if op == "unstake":
        if "stake_id" in action:
            result = pool.unstake(account, int(action["stake_id"]), now)
        else:
            result = pool.unstake_specific(account, int(action["index"]), now)
        return result.to_dict()
    if op == "claim":
        return {"claimed": pool.claim_rewards(account, int(action["stake_id"]), now)}
    if op == "distribute":
        payouts = pool.distribute_daily_rewards(now, action.get("percentage_bps"))
        return {"total": sum(payouts.values()), "recipients": len(payouts)}
    if op == "pending":
        return {"pending": pool.pending_reward(account, now, action.get("stake_id"))}
    if op == "pause":
        pool.pause(caller=caller)
        return {}
    if op == "unpause":
        pool.unpause(caller=caller)
        return {}
    if op == "set_limits":
        pool.set_limits(
            tokens(action["min_amount"]), tokens(action["max_amount"]),
            int(action["min_days"]), int(action["max_days"]), caller=caller,
        )
        return {}
    raise ValueError(f"Unknown scenario op: {op!r}")


def replay(
    scenario: dict, pool: StakingPool, token: CappedToken, *, fund: bool = True,
) -> dict[str, Any]:
    """Run every action of *scenario* in order and return the report.

    With *fund* false the scenario's pool and account funding is skipped,
    as when balances were restored from a database.
    """
    start = int(scenario.get("start_time", 0))
    if fund:
        if "pool_funding" in scenario:
            token.mint(pool.address, tokens(scenario["pool_funding"]))
        for name, amount in scenario.get("accounts", {}).items():
            token.mint(resolve_account(name), tokens(amount))

    steps: list[dict[str, Any]] = []
    failures = 0
    now = start
    for i, action in enumerate(scenario.get("actions", [])):
        now = start + int(action.get("day", 0)) * SECONDS_PER_DAY + int(action.get("seconds", 0))
        expect = action.get("expect")
        step: dict[str, Any] = {"step": i, "op": action.get("op"), "now": now}
        try:
            step["result"] = _apply(pool, action, now)
            step["ok"] = expect is None
        except StakingError as exc:
            step["error"] = exc.code
            step["ok"] = exc.code == expect
        if not step["ok"]:
            failures += 1
            logger.warning(f"Step {i} ({step['op']}) did not go as expected: {step}")
        steps.append(step)

    return {
        "steps": steps,
        "failures": failures,
        "stats": pool.get_staking_stats(now),
        "token": token.to_dict(),
        "balances": {
            name: token.balance_of(resolve_account(name))
            for name in scenario.get("accounts", {})
        },
    }


def build_pool(cfg: EscrowStakeConfig) -> tuple[StakingPool, CappedToken]:
    token = CappedToken()
    return StakingPool.from_config(cfg, token), token


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args(argv: Optional[list[str]] = None):
    p = argparse.ArgumentParser(description="EscrowStake simulation runner")
    p.add_argument("--config", default=None, help="Path to escrowstake.toml config file")
    p.add_argument("--scenario", default=None, help="JSON scenario file to replay")
    p.add_argument("--db", default=os.environ.get("ESCROWSTAKE_DB_PATH", ""),
                   help="SQLite file to resume from and save to")
    p.add_argument("--serve", action="store_true", help="Serve the pool over HTTP")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--log-level", default=None, help="Override logging level")
    return p.parse_args(argv)


async def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(
        level=args.log_level or cfg.logging.level,
        fmt=cfg.logging.format,
        log_file=cfg.logging.file,
    )

    pool, token = build_pool(cfg)

    db_path = args.db or (cfg.storage.path if cfg.storage.enabled else "")
    store: StakeStore | None = None
    resumed = False
    if db_path:
        store = StakeStore(db_path)
        resumed = store.load_pool(pool, token)

    exit_code = 0
    try:
        if args.scenario:
            with open(args.scenario, encoding="utf-8") as f:
                scenario = json.load(f)
            report = replay(scenario, pool, token, fund=not resumed)
            print(json.dumps(json.loads(_json_dumps(report)), indent=2))
            if report["failures"]:
                exit_code = 1
            if store is not None:
                store.save_pool(pool, token)

        if args.serve:
            api = APIServer(
                pool,
                host=args.host or cfg.api.host,
                port=args.port or cfg.api.port,
                api_config=cfg.api,
                store=store,
            )
            await api.start()
            try:
                while True:
                    await asyncio.sleep(3600)
            except asyncio.CancelledError:
                pass
            finally:
                await api.stop()
    finally:
        if store is not None:
            store.close()
    return exit_code


def main_sync():
    """Synchronous entry point for console_scripts."""
    code = 0
    with contextlib.suppress(KeyboardInterrupt):
        code = asyncio.run(main())
    sys.exit(code)


if __name__ == "__main__":
    main_sync()
