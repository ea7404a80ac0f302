"""
Tests for the simulation runner (run_sim.py).

Covers:
  - Account name resolution
  - Scenario replay: expected failures, unexpected failures, report shape
  - Resuming from a database without re-funding the scenario
  - The async main() entry point with a config, a scenario and a database
"""

import json
import logging
import os

import pytest

from conftest import T0

from escrowstake_core.accounts import SimAccount
from escrowstake_core.config import EscrowStakeConfig
from escrowstake_core.precision import SECONDS_PER_DAY, tokens
from escrowstake_core.storage import StakeStore
from run_sim import build_pool, main, parse_args, replay, resolve_account

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
RATE = 10 ** 15


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in root.handlers:
        h.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def sim():
    cfg = EscrowStakeConfig()
    cfg.rewards.reward_rate = RATE
    return build_pool(cfg)


def _scenario(*actions, **extra):
    scenario = {
        "start_time": T0,
        "pool_funding": "1000000",
        "accounts": {"alice": "50000", "bob": "50000"},
        "actions": list(actions),
    }
    scenario.update(extra)
    return scenario


class TestResolveAccount:
    def test_name(self):
        assert resolve_account("alice") == SimAccount.from_seed("alice").address

    def test_address_passthrough(self):
        addr = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        assert resolve_account(addr.lower()) == addr


class TestReplay:
    def test_happy_path(self, sim):
        pool, token = sim
        report = replay(_scenario(
            {"day": 0, "op": "stake", "account": "alice", "amount": "1000", "days": 30},
            {"day": 10, "op": "claim", "account": "alice", "stake_id": 1},
            {"day": 30, "op": "unstake", "account": "alice", "stake_id": 1},
        ), pool, token)
        assert report["failures"] == 0
        assert [s["ok"] for s in report["steps"]] == [True, True, True]
        assert report["steps"][1]["result"]["claimed"] == 10 * SECONDS_PER_DAY * RATE
        assert report["steps"][2]["result"]["timing"] == "on_time"
        assert report["balances"]["alice"] == tokens(50000) + 30 * SECONDS_PER_DAY * RATE
        assert report["stats"]["total_staked"] == 0

    def test_expected_error_is_ok(self, sim):
        pool, token = sim
        report = replay(_scenario(
            {"op": "stake", "account": "alice", "amount": "10", "days": 30, "expect": "InvalidAmount"},
        ), pool, token)
        assert report["failures"] == 0
        assert report["steps"][0]["error"] == "InvalidAmount"

    def test_unexpected_error_counts(self, sim):
        pool, token = sim
        report = replay(_scenario(
            {"op": "unstake", "account": "alice", "stake_id": 5},
            {"op": "stake", "account": "alice", "amount": "1000", "days": 30, "expect": "StakingPaused"},
        ), pool, token)
        assert report["failures"] == 2
        assert report["steps"][0]["error"] == "StakeNotFound"
        assert "error" not in report["steps"][1]

    def test_seconds_offset(self, sim):
        pool, token = sim
        report = replay(_scenario(
            {"day": 1, "seconds": 30, "op": "pending", "account": "alice"},
        ), pool, token)
        assert report["steps"][0]["now"] == T0 + SECONDS_PER_DAY + 30

    def test_admin_ops(self, sim):
        pool, token = sim
        report = replay(_scenario(
            {"op": "pause"},
            {"op": "stake", "account": "alice", "amount": "1000", "days": 30, "expect": "StakingPaused"},
            {"op": "unpause"},
            {"op": "set_limits", "min_amount": "1", "max_amount": "10", "min_days": 1, "max_days": 5},
            {"op": "stake", "account": "bob", "amount": "5", "days": 5},
            {"op": "distribute"},
        ), pool, token)
        assert report["failures"] == 0
        assert report["steps"][-1]["result"]["recipients"] == 1

    def test_unknown_op(self, sim):
        pool, token = sim
        with pytest.raises(ValueError):
            replay(_scenario({"op": "teleport"}), pool, token)

    def test_unfunded_replay_mints_nothing(self, sim):
        pool, token = sim
        report = replay(_scenario(), pool, token, fund=False)
        assert report["balances"] == {"alice": 0, "bob": 0}
        assert token.balance_of(pool.address) == 0
        assert token.total_supply == 0


class TestMain:
    def test_parse_args(self):
        args = parse_args(["--scenario", "s.json", "--port", "9000"])
        assert args.scenario == "s.json"
        assert args.port == 9000
        assert not args.serve

    @pytest.mark.asyncio
    async def test_bundled_scenario(self, restore_root, capsys):
        code = await main(["--scenario", os.path.join(ROOT, "scenarios", "basic.json")])
        report = json.loads(capsys.readouterr().out)
        assert code == 0
        assert report["failures"] == 0
        assert report["stats"]["open_stakes"] == 0

    @pytest.mark.asyncio
    async def test_config_and_db(self, restore_root, capsys, tmp_path):
        cfg_path = tmp_path / "sim.toml"
        cfg_path.write_text(f"[rewards]\nreward_rate = {RATE}\n\n[logging]\nlevel = \"WARNING\"\n")
        scenario_path = tmp_path / "s.json"
        scenario_path.write_text(json.dumps(_scenario(
            {"op": "stake", "account": "alice", "amount": "1000", "days": 30},
        )))
        db_path = str(tmp_path / "sim.db")

        code = await main([
            "--config", str(cfg_path), "--scenario", str(scenario_path), "--db", db_path,
        ])
        report = json.loads(capsys.readouterr().out)
        assert code == 0
        assert report["stats"]["reward_rate"] == RATE
        assert report["stats"]["total_staked"] == str(tokens(1000))

        cfg = EscrowStakeConfig()
        cfg.rewards.reward_rate = RATE
        pool, token = build_pool(cfg)
        with StakeStore(db_path) as store:
            assert store.load_pool(pool, token)
        assert pool.total_staked == tokens(1000)
        assert token.balance_of(resolve_account("alice")) == tokens(49000)

    @pytest.mark.asyncio
    async def test_failures_set_exit_code(self, restore_root, capsys, tmp_path):
        scenario_path = tmp_path / "s.json"
        scenario_path.write_text(json.dumps(_scenario(
            {"op": "claim", "account": "alice", "stake_id": 1},
        )))
        code = await main(["--scenario", str(scenario_path)])
        capsys.readouterr()
        assert code == 1

    @pytest.mark.asyncio
    async def test_resume_does_not_refund(self, restore_root, capsys, tmp_path):
        cfg_path = tmp_path / "sim.toml"
        cfg_path.write_text(f"[rewards]\nreward_rate = {RATE}\n")
        scenario_path = tmp_path / "s.json"
        scenario_path.write_text(json.dumps(_scenario(
            {"op": "stake", "account": "alice", "amount": "1000", "days": 30},
        )))
        argv = ["--config", str(cfg_path), "--scenario", str(scenario_path),
                "--db", str(tmp_path / "sim.db")]

        assert await main(argv) == 0
        first = json.loads(capsys.readouterr().out)
        assert await main(argv) == 0
        second = json.loads(capsys.readouterr().out)

        assert first["balances"]["alice"] == str(tokens(49000))
        assert second["balances"]["alice"] == str(tokens(48000))
        assert int(second["token"]["total_supply"]) == int(first["token"]["total_supply"]) - tokens(1000)
        assert second["stats"]["total_staked"] == str(tokens(2000))
