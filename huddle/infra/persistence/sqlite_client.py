# =============================================================================
# File: huddle/infra/persistence/sqlite_client.py
# Description: Async facade over a single sqlite3 connection.
#              Blocking calls run in asyncio.to_thread under a threading lock;
#              lock/busy errors surface as StorageBusyError and are retried
#              through the resilience layer with the storage policy.
# =============================================================================

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterable, List, Optional, Sequence

from huddle.common.exceptions.exceptions import StorageBusyError
from huddle.config.logging_config import get_logger
from huddle.config.reliability_config import RetryConfig
from huddle.config.storage_config import StorageConfig

log = get_logger("huddle.infra.sqlite")

_BUSY_MARKERS = ("locked", "busy", "disk i/o")
SLOW_QUERY_THRESHOLD_MS = 500


def supports_vacuum_into() -> bool:
    """VACUUM INTO needs SQLite 3.27+."""
    return sqlite3.sqlite_version_info >= (3, 27, 0)


class SQLiteClient:
    """
    Owns the connection to the bot database.

    All public methods are coroutines. When a resilience layer is supplied
    every statement runs through it with the storage policy, so transient
    lock errors are retried with the busy backoff.
    """

    def __init__(
            self,
            config: StorageConfig,
            resilience: Optional[Any] = None,
            retry_policy: Optional[RetryConfig] = None,
    ):
        self.config = config
        self.database_path = config.database_path
        self._resilience = resilience
        self._retry_policy = retry_policy
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def _open_connection(self) -> sqlite3.Connection:
        if self.database_path != ":memory:":
            Path(self.database_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.database_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=self.config.busy_timeout_ms / 1000,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)}")
        if self.database_path != ":memory:":
            conn.execute(f"PRAGMA journal_mode = {self.config.journal_mode}")
        if self.config.foreign_keys:
            conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def connect(self) -> None:
        if self._conn is not None:
            return
        self._conn = await asyncio.to_thread(self._open_connection)
        log.info(f"SQLite connection opened: {self.database_path}")

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        await asyncio.to_thread(conn.close)
        log.info(f"SQLite connection closed: {self.database_path}")

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # =========================================================================
    # Core execution
    # =========================================================================

    def _run_locked(self, label: str, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        if self._conn is None:
            raise RuntimeError("SQLite client is not connected")
        with self._lock:
            started = time.monotonic()
            try:
                return fn(self._conn)
            except sqlite3.OperationalError as e:
                message = str(e).lower()
                if any(marker in message for marker in _BUSY_MARKERS):
                    raise StorageBusyError(f"{label}: {e}") from e
                raise
            finally:
                elapsed_ms = (time.monotonic() - started) * 1000
                if elapsed_ms > SLOW_QUERY_THRESHOLD_MS:
                    log.warning(f"[SLOW QUERY] {label} took {elapsed_ms:.1f}ms")

    async def _run(self, label: str, fn: Callable[[sqlite3.Connection], Any], guarded: bool = True) -> Any:
        """
        Run `fn` on the worker thread. Unguarded calls skip the resilience
        layer: a timed-out attempt cannot cancel its worker, so long-running
        primitives get exactly one attempt with no deadline.
        """
        async def _operation():
            return await asyncio.to_thread(self._run_locked, label, fn)

        if self._resilience is None or not guarded:
            return await _operation()
        return await self._resilience.execute(_operation, policy=self._retry_policy)

    async def fetch(self, query: str, *args: Any) -> List[sqlite3.Row]:
        """Execute the query and return all rows."""
        return await self._run(query[:50], lambda conn: conn.execute(query, args).fetchall())

    async def fetchrow(self, query: str, *args: Any) -> Optional[sqlite3.Row]:
        """Execute the query and return the first row."""
        return await self._run(query[:50], lambda conn: conn.execute(query, args).fetchone())

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute the query and return the first column of the first row."""
        row = await self.fetchrow(query, *args)
        return row[0] if row is not None else None

    async def execute(self, query: str, *args: Any) -> int:
        """Execute one statement, returning the number of affected rows."""
        return await self._run(query[:50], lambda conn: conn.execute(query, args).rowcount)

    async def executemany(self, query: str, rows: Iterable[Sequence[Any]]) -> int:
        rows = list(rows)
        return await self._run(query[:50], lambda conn: conn.executemany(query, rows).rowcount)

    async def executescript(self, script: str) -> None:
        await self._run("executescript", lambda conn: conn.executescript(script))

    async def transaction(self, statements: Sequence[tuple]) -> None:
        """Run (query, args) pairs atomically."""
        def _apply(conn: sqlite3.Connection) -> None:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for query, args in statements:
                    conn.execute(query, args)
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

        await self._run("transaction", _apply)

    # =========================================================================
    # Snapshot primitives
    # =========================================================================

    async def export_snapshot(self, destination: str) -> None:
        """Write a transactionally consistent copy of the database (VACUUM INTO)."""
        if not supports_vacuum_into():
            raise NotImplementedError(
                f"VACUUM INTO requires SQLite 3.27+, running {sqlite3.sqlite_version}"
            )
        await self._run(
            "VACUUM INTO", lambda conn: conn.execute("VACUUM INTO ?", (destination,)), guarded=False
        )

    async def restore_from(self, source: str) -> None:
        """Replace the live database contents with `source` (online backup API)."""
        def _restore(conn: sqlite3.Connection) -> None:
            src = sqlite3.connect(f"file:{source}?mode=ro&immutable=1", uri=True)
            try:
                src.backup(conn)
            finally:
                src.close()

        await self._run("restore", _restore, guarded=False)

    async def health_check(self) -> dict:
        try:
            value = await self.fetchval("SELECT 1")
            return {"healthy": value == 1, "database": self.database_path}
        except Exception as e:
            log.error(f"SQLite health check failed: {e}")
            return {"healthy": False, "database": self.database_path, "error": str(e)}
