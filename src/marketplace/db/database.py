# manages connection to db, provides helper methods internal to db package
import asyncio
import os
from contextlib import asynccontextmanager
from pathlib import Path
from sqlite3 import Row
from typing import AsyncIterator

import aiosqlite

from marketplace.utils.config import settings
from marketplace.utils.errors import StorageUnavailable, TransactionConflict
from marketplace.utils.logger import get_logger

_logger = get_logger(__name__)

DB_PATH = settings.db_path
BUSY_TIMEOUT = settings.busy_timeout
SEED = settings.seed

_SQL_DIR = Path(__file__).resolve().parent
SCHEMA_SCRIPT = _SQL_DIR / "schema.sql"
SEED_SCRIPT = _SQL_DIR / "seed.sql"

_initialized = False
_init_lock = asyncio.Lock()


async def _init_db(conn: aiosqlite.Connection) -> None:
    scripts = [SCHEMA_SCRIPT]
    if SEED:
        scripts.append(SEED_SCRIPT)
    for script in scripts:
        if not script.exists() or script.stat().st_size == 0:
            continue
        _logger.info(f"Initializing database with script {script.name}...")
        await conn.executescript(script.read_text())
    await conn.commit()


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


def is_lock_error(exc: BaseException) -> bool:
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


@asynccontextmanager
async def connect() -> AsyncIterator[aiosqlite.Connection]:
    """Async context manager yielding an aiosqlite connection with FK enabled.

    Connections run in autocommit mode: single statements are durable as soon
    as they return, and multi-statement work goes through ``transaction``.
    Ensures the database is initialized (tables and seed data) on first use.
    """
    global _initialized
    parent = os.path.dirname(DB_PATH)
    if parent:
        os.makedirs(parent, exist_ok=True)
    try:
        conn = await aiosqlite.connect(
            DB_PATH, timeout=BUSY_TIMEOUT, isolation_level=None
        )
    except aiosqlite.Error as exc:
        _logger.error(f"Cannot open database {DB_PATH}: {exc}")
        raise StorageUnavailable() from exc
    conn.row_factory = Row
    try:
        await conn.execute("PRAGMA foreign_keys = ON;")

        if not _initialized:
            async with _init_lock:
                if not _initialized:
                    if not await _table_exists(conn, "products"):
                        _logger.info("Initializing database...")
                        await _init_db(conn)
                    await conn.execute("PRAGMA journal_mode = WAL;")
                    _initialized = True
        yield conn
    finally:
        await conn.close()


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed statements as one all-or-nothing unit.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so two
    checkouts never interleave their writes. Lock contention surfaces as
    TransactionConflict, any other sqlite failure as StorageUnavailable.
    Errors raised by the body (including business errors) roll back and
    propagate unchanged.
    """
    try:
        await conn.execute("BEGIN IMMEDIATE;")
    except aiosqlite.OperationalError as exc:
        if is_lock_error(exc):
            raise TransactionConflict() from exc
        raise StorageUnavailable() from exc
    except aiosqlite.Error as exc:
        raise StorageUnavailable() from exc

    try:
        yield conn
    except BaseException as exc:
        await _rollback(conn)
        if isinstance(exc, aiosqlite.OperationalError) and is_lock_error(exc):
            raise TransactionConflict() from exc
        if isinstance(exc, aiosqlite.Error):
            _logger.error(f"Storage error, transaction rolled back: {exc}")
            raise StorageUnavailable() from exc
        raise

    try:
        await conn.execute("COMMIT;")
    except aiosqlite.Error as exc:
        await _rollback(conn)
        if isinstance(exc, aiosqlite.OperationalError) and is_lock_error(exc):
            raise TransactionConflict() from exc
        raise StorageUnavailable() from exc


async def _rollback(conn: aiosqlite.Connection) -> None:
    if not conn.in_transaction:
        return
    try:
        await conn.execute("ROLLBACK;")
    except aiosqlite.Error as exc:
        # closing the connection discards the transaction anyway
        _logger.warning(f"Rollback failed: {exc}")
