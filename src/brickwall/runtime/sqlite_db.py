# src/brickwall/runtime/sqlite_db.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    raw = str(os.environ.get(name, "")).strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for the wall database.

    Tables:
      - meta(key, value): schema version
      - wall_bricks: one row per canvas cell, UNIQUE(x, y)
      - edit_bricks: consumed payment transaction hashes, UNIQUE(transaction_hash)
      - auth_challenges: consumed signed-challenge nonces, UNIQUE(address, nonce)

    Connections are opened per call and never shared, so callers may run
    queries from worker threads (asyncio.to_thread).

    SQLite allows only one writer at a time; write_tx() retries
    BEGIN IMMEDIATE with bounded backoff when the writer lock is busy.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """PRAGMA synchronous: FULL in prod, NORMAL elsewhere.

        Override with BRICKWALL_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("BRICKWALL_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("BRICKWALL_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("BRICKWALL_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # BEGIN/COMMIT managed by write_tx()
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        allow_non_wal = (os.environ.get("BRICKWALL_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        if mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        wal_ckpt = max(1, _env_int("BRICKWALL_SQLITE_WAL_AUTOCHECKPOINT", 1000))
        con.execute(f"PRAGMA wal_autocheckpoint={wal_ckpt};")

        busy_ms = max(0, _env_int("BRICKWALL_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS wall_bricks (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  x INTEGER NOT NULL,
                  y INTEGER NOT NULL,
                  asset_id TEXT NOT NULL,
                  purchased INTEGER NOT NULL DEFAULT 0,
                  image_location TEXT,
                  CONSTRAINT unique_coordinates UNIQUE(x, y)
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_wall_bricks_asset_id ON wall_bricks(asset_id);")

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS edit_bricks (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  username TEXT NOT NULL,
                  transaction_hash TEXT NOT NULL UNIQUE,
                  created_ts_ms INTEGER NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_challenges (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  address TEXT NOT NULL,
                  nonce TEXT NOT NULL,
                  created_ts_ms INTEGER NOT NULL,
                  CONSTRAINT unique_challenge UNIQUE(address, nonce)
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            elif str(row["value"]) != str(self.SCHEMA_VERSION):
                raise RuntimeError(
                    f"sqlite schema_version mismatch: have={row['value']} want={self.SCHEMA_VERSION}. "
                    "Refuse to start to avoid corrupting data."
                )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return "database is locked" in msg or "database is busy" in msg

    def _retry_locked(self, con: sqlite3.Connection, stmt: str, deadline_ts: int) -> None:
        base_sleep = max(0.001, float(_env_int("BRICKWALL_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("BRICKWALL_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)
        attempt = 0
        while True:
            try:
                con.execute(stmt)
                return
            except sqlite3.OperationalError as e:
                if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                    raise
                sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                time.sleep(sleep_s * (0.5 + random.random()))
                attempt += 1

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention."""
        deadline_ms = max(250, _env_int("BRICKWALL_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        with self.connection() as con:
            self._retry_locked(con, "BEGIN IMMEDIATE;", deadline_ts)
            try:
                yield con
                self._retry_locked(con, "COMMIT;", deadline_ts)
            except BaseException:
                con.execute("ROLLBACK;")
                raise
