"""
Database interface for digest persistence.

Provides the executor abstraction used by every repository, a
DatabaseInterface owning the SQLite connection, schema and transaction
helper, a Repository base class enforcing per-repository table access
through READS/WRITES sets, and the database error hierarchy.

Executors come in exactly two flavours: :class:`ConnectionExecutor` runs
each statement on the ambient autocommit connection, and
:class:`TransactionExecutor` runs statements inside an open transaction
and refuses to run once that transaction has ended.
"""
import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Iterator, Protocol

from digest_citations.logger import get_logger

SCHEMA_PATH = Path(__file__).resolve().parent / "database_schema.sql"

EXPECTED_TABLES = frozenset([
    "articles", "themes", "digests", "digest_articles", "digest_themes", "citations",
])

logger = get_logger(__name__)

# --- DATABASE ERRORS

class DBError(Exception):
    """Base exception for database operations."""


class DBConstraintError(DBError):
    """Raised when a database constraint is violated."""


class DBSchemaError(DBError):
    """Raised when schema validation fails."""


class DBDeterminismError(DBError):
    """Raised when deterministic ID verification fails."""


class RepositoryAccessError(DBError):
    """Raised when a repository attempts unauthorized table access."""


def _serialize_json(value: dict | list | None) -> str | None:
    """Serialize a value to canonical JSON text."""
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _parse_json(text: str | None) -> dict | list | None:
    """Parse JSON text to Python object."""
    if text is None:
        return None
    return json.loads(text)


def _serialize_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None

# EXECUTORS

class Executor(Protocol):
    """Anything that can run a parameterized statement and return rows."""

    in_transaction: bool

    def execute(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Cursor:
        ...

    def fetchone(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Row | None:
        ...

    def fetchall(self, sql: str, params: tuple | dict | None = None) -> list[sqlite3.Row]:
        ...


class _SQLiteExecutor:
    """Shared statement handling for both executors."""

    in_transaction: bool = False

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params or ())
        except sqlite3.IntegrityError as e:
            raise DBConstraintError(str(e)) from e
        except OverflowError as e:
            raise DBConstraintError(f"Value out of SQLite integer range: {e}") from e

    def fetchone(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple | dict | None = None) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()


class ConnectionExecutor(_SQLiteExecutor):
    """Runs every statement on the ambient autocommit connection."""

    in_transaction = False


class TransactionExecutor(_SQLiteExecutor):
    """Runs statements inside one open transaction."""

    in_transaction = True

    def __init__(self, conn: sqlite3.Connection) -> None:
        super().__init__(conn)
        self._active = True

    def execute(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Cursor:
        if not self._active:
            raise DBError("Transaction is no longer active")
        return super().execute(sql, params)

    def _finish(self) -> None:
        self._active = False

# DATABASE INTERFACE

class DatabaseInterface:
    """
    Owns the SQLite connection for digest persistence.

    Opens the connection in autocommit mode so that transactions are only
    ever started explicitly through :meth:`transaction`. One instance should
    be used per thread; concurrent writers in different threads or processes
    are serialised by SQLite's write lock (``BEGIN IMMEDIATE``).
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 30000) -> None:
        """Initialize the database adapter."""
        self._db_path = Path(db_path)
        self._busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None
        self._tx_executor: TransactionExecutor | None = None
        self._lock = threading.RLock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def open(self) -> None:
        """Open the database connection and ensure schema."""
        in_memory = str(self._db_path) == ":memory:"
        parent_dir = os.path.dirname(str(self._db_path))
        if not in_memory and parent_dir and not os.path.exists(parent_dir):
            os.makedirs(parent_dir, exist_ok=True)
        try:
            self._conn = sqlite3.connect(
                str(self._db_path),
                timeout=self._busy_timeout_ms / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
            if not in_memory:
                self._conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            self.close()
            raise DBError(f"Could not open database {self._db_path}: {e}") from e
        try:
            self._validate_sqlite_features()
            if self._is_fresh_db():
                self.create_schema()
                logger.info(f"Created digest schema in {self._db_path}")
            else:
                self._validate_schema()
                logger.info(f"Connected to existing database: {self._db_path}")
        except DBError:
            self.close()
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "DatabaseInterface":
        """Enter context manager."""
        self.open()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit context manager."""
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise DBError("Database is not open")
        return self._conn

    def _validate_sqlite_features(self) -> None:
        try:
            self._connection().execute("SELECT json_valid('[]')")
        except sqlite3.OperationalError as e:
            raise DBSchemaError(f"JSON1 extension not available: {e}") from e

    def _is_fresh_db(self) -> bool:
        result = self._connection().execute(
            "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ).fetchone()
        return result[0] == 0

    def create_schema(self) -> None:
        """Create all tables and indexes; safe to run on an existing database."""
        schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
        self._connection().executescript(schema_sql)

    def _validate_schema(self) -> None:
        existing = {
            row[0] for row in self._connection().execute(
                "SELECT name FROM sqlite_master WHERE type IN ('table', 'view')"
            )
        }
        missing = EXPECTED_TABLES - existing
        if missing:
            raise DBSchemaError(
                f"Schema validation failed for {self._db_path}. Missing tables: {sorted(missing)}."
            )

    @property
    def executor(self) -> Executor:
        """The open transaction's executor, or an autocommit executor outside transactions."""
        if self._tx_executor is not None:
            return self._tx_executor
        return ConnectionExecutor(self._connection())

    @contextmanager
    def transaction(self, immediate: bool = True) -> Iterator[TransactionExecutor]:
        """
        Context manager for a database transaction.

        Commits when the block exits normally and rolls back on any exception.
        A nested call joins the outer transaction.
        """
        conn = self._connection()
        with self._lock:
            if self._tx_executor is not None:
                yield self._tx_executor
                return
            begin_stmt = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            conn.execute(begin_stmt)
            tx = TransactionExecutor(conn)
            self._tx_executor = tx
            try:
                yield tx
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                tx._finish()
                self._tx_executor = None


class Repository:
    """
    Base class for table repositories.

    A repository is bound to one executor for its lifetime and may only
    touch the tables listed in its READS/WRITES sets.
    """

    READS: ClassVar[set[str]] = set()
    WRITES: ClassVar[set[str]] = set()

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def _check_read_access(self, table: str) -> None:
        if table not in self.READS and table not in self.WRITES:
            raise RepositoryAccessError(
                f"{type(self).__name__} cannot READ from '{table}'."
            )

    def _check_write_access(self, table: str) -> None:
        if table not in self.WRITES:
            raise RepositoryAccessError(
                f"{type(self).__name__} cannot WRITE to '{table}'."
            )

    def _execute(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Cursor:
        return self._executor.execute(sql, params)

    def _fetchone(self, sql: str, params: tuple | dict | None = None) -> sqlite3.Row | None:
        return self._executor.fetchone(sql, params)

    def _fetchall(self, sql: str, params: tuple | dict | None = None) -> list[sqlite3.Row]:
        return self._executor.fetchall(sql, params)
