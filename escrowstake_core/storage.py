"""
SQLite-based persistence for EscrowStake pool state.

Stores open stakes, the active-user order, pool totals / settings and
(optionally) token balances so a simulation can be resumed later.

SQLite integers are 64-bit, so every base-unit amount is stored as a
decimal TEXT column and converted back with ``int()``.

Usage:
    store = StakeStore("data/escrowstake.db")
    store.save_pool(pool, token)
    ...
    store.load_pool(fresh_pool, token)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Optional

from escrowstake_core.token import CappedToken

logger = logging.getLogger("escrowstake.storage")


class StakeStore:
    """Thin SQLite wrapper for persisting a ``StakingPool``."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/escrowstake.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Storage opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS stakes (
                stake_id          INTEGER PRIMARY KEY,
                position          INTEGER NOT NULL,
                account           TEXT NOT NULL,
                principal         TEXT NOT NULL,
                start_time        INTEGER NOT NULL,
                end_time          INTEGER NOT NULL,
                days_committed    INTEGER NOT NULL,
                last_accrual_time INTEGER NOT NULL,
                accrued_reward    TEXT NOT NULL DEFAULT '0'
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS active_users (
                position INTEGER PRIMARY KEY,
                account  TEXT NOT NULL UNIQUE
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS pool_meta (
                key   TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS token_balances (
                address TEXT PRIMARY KEY,
                balance TEXT NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)

    def _ensure_schema_version(self) -> None:
        """Check / set schema version; run migrations when needed."""
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            return
        db_ver = row["version"]
        if db_ver < self.CURRENT_SCHEMA_VERSION:
            self._migrate(db_ver, self.CURRENT_SCHEMA_VERSION)
        elif db_ver > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{db_ver} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade EscrowStake."
            )

    def _migrate(self, from_ver: int, to_ver: int) -> None:
        logger.info(f"Migrating database schema v{from_ver} → v{to_ver}")
        self._conn.execute(
            "UPDATE schema_version SET version = ? WHERE id = 1", (to_ver,)
        )

    @property
    def schema_version(self) -> int:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        return row["version"]

    # ── snapshot ─────────────────────────────────────────────────

    def save_pool(self, pool: Any, token: Optional[CappedToken] = None) -> None:
        """Replace the stored snapshot with *pool*'s state, atomically."""
        state = pool.to_state()
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")
            c.execute("DELETE FROM stakes")
            c.execute("DELETE FROM active_users")
            c.execute("DELETE FROM pool_meta")
            c.executemany(
                """INSERT INTO stakes
                   (stake_id, position, account, principal, start_time, end_time,
                    days_committed, last_accrual_time, accrued_reward)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (s["stake_id"], pos, s["account"], str(s["principal"]),
                     s["start_time"], s["end_time"], s["days_committed"],
                     s["last_accrual_time"], str(s["accrued_reward"]))
                    for pos, s in enumerate(state["stakes"])
                ],
            )
            c.executemany(
                "INSERT INTO active_users (position, account) VALUES (?, ?)",
                list(enumerate(state["active_users"])),
            )
            meta = {k: v for k, v in state.items() if k not in ("stakes", "active_users")}
            c.executemany(
                "INSERT INTO pool_meta (key, value) VALUES (?, ?)",
                [(k, json.dumps(v)) for k, v in meta.items()],
            )
            if token is not None:
                c.execute("DELETE FROM token_balances")
                c.executemany(
                    "INSERT INTO token_balances (address, balance) VALUES (?, ?)",
                    [(addr, str(bal)) for addr, bal in token.balances.items()],
                )
                c.execute(
                    "INSERT INTO pool_meta (key, value) VALUES (?, ?)",
                    ("token", json.dumps({
                        "total_supply": token.total_supply,
                        "total_burned": token.total_burned,
                    })),
                )
            c.execute("COMMIT")
        except Exception:
            c.execute("ROLLBACK")
            raise
        logger.debug(f"Saved {len(state['stakes'])} stakes to {self.db_path}")

    def has_snapshot(self) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM pool_meta WHERE key = 'total_staked'"
        ).fetchone()
        return row is not None

    def load_pool(self, pool: Any, token: Optional[CappedToken] = None) -> bool:
        """Restore *pool* (and *token*) from the stored snapshot.

        Returns False when the database holds no snapshot yet.
        """
        if not self.has_snapshot():
            return False
        meta = {
            r["key"]: json.loads(r["value"])
            for r in self._conn.execute("SELECT key, value FROM pool_meta")
        }
        stakes = [
            {
                "stake_id": r["stake_id"],
                "account": r["account"],
                "principal": int(r["principal"]),
                "start_time": r["start_time"],
                "end_time": r["end_time"],
                "days_committed": r["days_committed"],
                "last_accrual_time": r["last_accrual_time"],
                "accrued_reward": int(r["accrued_reward"]),
            }
            for r in self._conn.execute("SELECT * FROM stakes ORDER BY position")
        ]
        users = [
            r["account"]
            for r in self._conn.execute("SELECT account FROM active_users ORDER BY position")
        ]
        token_meta = meta.pop("token", None)
        pool.restore_state({**meta, "stakes": stakes, "active_users": users})

        if token is not None and token_meta is not None:
            token.balances = {
                r["address"]: int(r["balance"])
                for r in self._conn.execute("SELECT address, balance FROM token_balances")
            }
            token.total_supply = token_meta["total_supply"]
            token.total_burned = token_meta["total_burned"]
        logger.info(f"Restored {len(stakes)} stakes from {self.db_path}")
        return True

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
