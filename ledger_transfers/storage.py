"""
Ledger Store Module

Provides the abstract transactional store the transfer pipeline runs against,
with implementations for in-memory (testing), SQLite (single node persistence)
and PostgreSQL. One row per account: (account_id, balance). Balances are
Decimal end to end; SQLite persists them as decimal strings and PostgreSQL as
NUMERIC.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Iterator, Optional, Type, Union
from pathlib import Path
import logging
import sqlite3
import threading

from .errors import StoreError


logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(driver_error: Type[BaseException]) -> Iterator[None]:
    """Re-raise driver errors as StoreError, keeping the driver's message verbatim"""
    try:
        yield
    except driver_error as e:
        raise StoreError(str(e) or type(e).__name__) from e


class LedgerTransaction(ABC):
    """
    A single transactional scope against the store.

    Writes become visible to other readers only on ``commit()``. ``rollback()``
    is idempotent and a no-op once the transaction has committed, so it can be
    called unconditionally on every exit path. Used as a context manager the
    transaction rolls back on exit unless it was committed.
    """

    def __init__(self):
        self._active = True
        self.committed = False

    @property
    def is_active(self) -> bool:
        return self._active

    @abstractmethod
    def read_balance(self, account_id: int) -> Optional[Decimal]:
        """Read and lock an account row for the rest of the transaction"""
        pass

    @abstractmethod
    def update_balance(self, account_id: int, new_balance: Decimal) -> int:
        """Set an account balance; returns the number of rows affected"""
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass

    def _release(self) -> None:
        """Return locks or connections held by the transaction"""
        pass

    def commit(self) -> None:
        """Commit the transaction; on failure the transaction stays open for rollback"""
        if not self._active:
            raise StoreError("transaction is no longer active")
        self._commit()
        self._active = False
        self.committed = True
        self._release()

    def rollback(self) -> None:
        """Roll back the transaction (no-op if already finished)"""
        if not self._active:
            return
        self._active = False
        try:
            self._rollback()
        finally:
            self._release()

    def __enter__(self) -> "LedgerTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self.rollback()
            return False

        # Keep the original failure; a rollback error must not mask it
        try:
            self.rollback()
        except Exception:
            logger.exception("Rollback failed while handling %s", exc_type.__name__)
        return False


class LedgerStore(ABC):
    """Abstract interface for ledger store backends"""

    @abstractmethod
    def begin_transaction(self) -> LedgerTransaction:
        """
        Open a transactional scope

        Raises:
            StoreError: If the store cannot start a transaction
        """
        pass

    @abstractmethod
    def query_balance(self, account_id: int) -> Optional[Decimal]:
        """Committed balance of an account, or None if the row does not exist"""
        pass

    @abstractmethod
    def create_account(self, account_id: int, balance: Decimal) -> None:
        """Insert a new account row; a duplicate id surfaces as StoreError"""
        pass

    def ensure_schema(self) -> None:
        """Create the accounts table if needed (default no-op)"""
        pass

    def close(self) -> None:
        """Release store resources (default no-op)"""
        pass

    @contextmanager
    def transaction(self) -> Iterator[LedgerTransaction]:
        """
        Context manager for a transactional scope.

        The caller must commit explicitly; every other exit path, including
        exceptions and interpreter-level interrupts, rolls back.
        """
        txn = self.begin_transaction()
        with txn:
            yield txn


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory store implementation for testing

    Transactions are serialized through a store-wide lock held from begin to
    commit/rollback; uncommitted writes live in a per-transaction overlay.
    """

    def __init__(self, lock_timeout: float = 30.0):
        self._balances: Dict[int, Decimal] = {}
        self._lock = threading.RLock()
        self.lock_timeout = lock_timeout

    def begin_transaction(self) -> LedgerTransaction:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise StoreError("timed out waiting for ledger lock")
        return InMemoryLedgerTransaction(self)

    def query_balance(self, account_id: int) -> Optional[Decimal]:
        with self._lock:
            return self._balances.get(account_id)

    def create_account(self, account_id: int, balance: Decimal) -> None:
        with self._lock:
            if account_id in self._balances:
                raise StoreError(f"duplicate key value violates unique constraint: account_id={account_id}")
            self._balances[account_id] = balance

    def snapshot(self) -> Dict[int, Decimal]:
        """Copy of all committed balances for debugging/inspection"""
        with self._lock:
            return dict(self._balances)


class InMemoryLedgerTransaction(LedgerTransaction):
    """Transaction over an InMemoryLedgerStore; the store lock is already held"""

    def __init__(self, store: InMemoryLedgerStore):
        super().__init__()
        self._store = store
        self._pending: Dict[int, Decimal] = {}

    def read_balance(self, account_id: int) -> Optional[Decimal]:
        if account_id in self._pending:
            return self._pending[account_id]
        return self._store._balances.get(account_id)

    def update_balance(self, account_id: int, new_balance: Decimal) -> int:
        if account_id not in self._store._balances:
            return 0
        self._pending[account_id] = new_balance
        return 1

    def _commit(self) -> None:
        self._store._balances.update(self._pending)
        self._pending = {}

    def _rollback(self) -> None:
        self._pending = {}

    def _release(self) -> None:
        self._store._lock.release()


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite store implementation for single node persistence

    The connection runs in autocommit mode and transactions are opened with
    ``BEGIN IMMEDIATE``, which takes the database write lock up front so reads
    inside the transaction cannot go stale before the update.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        self.timeout = timeout
        with translate_errors(sqlite3.Error):
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout, check_same_thread=False, isolation_level=None
            )
        self._lock = threading.RLock()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock, translate_errors(sqlite3.Error):
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def ensure_schema(self) -> None:
        with self._lock, translate_errors(sqlite3.Error):
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id INTEGER PRIMARY KEY,
                    balance TEXT NOT NULL
                )
            """)

    def begin_transaction(self) -> LedgerTransaction:
        if not self._lock.acquire(timeout=self.timeout):
            raise StoreError("timed out waiting for ledger connection")
        try:
            with translate_errors(sqlite3.Error):
                self._connection.execute("BEGIN IMMEDIATE")
        except StoreError:
            self._lock.release()
            raise
        return SQLiteLedgerTransaction(self)

    def query_balance(self, account_id: int) -> Optional[Decimal]:
        with self._lock, translate_errors(sqlite3.Error):
            row = self._connection.execute(
                "SELECT balance FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
        if row is None:
            return None
        return Decimal(row[0])

    def create_account(self, account_id: int, balance: Decimal) -> None:
        with self._lock, translate_errors(sqlite3.Error):
            self._connection.execute(
                "INSERT INTO accounts (account_id, balance) VALUES (?, ?)",
                (account_id, str(balance)),
            )

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class SQLiteLedgerTransaction(LedgerTransaction):
    """Transaction on the shared SQLite connection; the store lock is already held"""

    def __init__(self, store: SQLiteLedgerStore):
        super().__init__()
        self._store = store
        self._connection = store._connection

    def read_balance(self, account_id: int) -> Optional[Decimal]:
        with translate_errors(sqlite3.Error):
            row = self._connection.execute(
                "SELECT balance FROM accounts WHERE account_id = ?", (account_id,)
            ).fetchone()
        if row is None:
            return None
        return Decimal(row[0])

    def update_balance(self, account_id: int, new_balance: Decimal) -> int:
        with translate_errors(sqlite3.Error):
            cursor = self._connection.execute(
                "UPDATE accounts SET balance = ? WHERE account_id = ?",
                (str(new_balance), account_id),
            )
        return cursor.rowcount

    def _commit(self) -> None:
        with translate_errors(sqlite3.Error):
            self._connection.execute("COMMIT")

    def _rollback(self) -> None:
        with translate_errors(sqlite3.Error):
            if self._connection.in_transaction:
                self._connection.execute("ROLLBACK")

    def _release(self) -> None:
        self._store._lock.release()


class PostgreSQLLedgerStore(LedgerStore):
    """
    PostgreSQL store backend using a psycopg2 connection pool

    ``pool`` stands in for the ThreadedConnectionPool otherwise built from
    connection_string; it must offer getconn, putconn and closeall.
    """

    def __init__(self, connection_string: str, min_connections: int = 1, max_connections: int = 10,
                 timeout: float = 30.0, pool=None):
        try:
            import psycopg2
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.timeout = timeout
        # ThreadedConnectionPool raises PoolError rather than waiting once
        # max_connections are out, so checkouts queue on these slots first
        self._slots = threading.BoundedSemaphore(max_connections)

        if pool is not None:
            self._pool = pool
        else:
            with translate_errors(psycopg2.Error):
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    min_connections, max_connections, connection_string
                )

    def _acquire(self):
        """Check out a connection, waiting up to ``timeout`` for a free slot"""
        if not self._slots.acquire(timeout=self.timeout):
            raise StoreError(f"timed out waiting for a database connection after {self.timeout}s")
        try:
            with translate_errors(self.psycopg2.Error):
                connection = self._pool.getconn()
                connection.autocommit = False
        except Exception:
            self._slots.release()
            raise
        return connection

    def _return(self, connection) -> None:
        try:
            self._pool.putconn(connection, close=bool(connection.closed))
        finally:
            self._slots.release()

    @contextmanager
    def _connection(self):
        """Borrow a pooled connection for a single statement outside a transfer"""
        connection = self._acquire()
        try:
            with translate_errors(self.psycopg2.Error):
                try:
                    yield connection
                    connection.commit()
                except Exception:
                    if not connection.closed:
                        connection.rollback()
                    raise
        finally:
            self._return(connection)

    def ensure_schema(self) -> None:
        with self._connection() as connection, connection.cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id BIGINT PRIMARY KEY,
                    balance NUMERIC NOT NULL
                )
            """)

    def begin_transaction(self) -> LedgerTransaction:
        # psycopg2 opens the transaction implicitly on the first statement
        return PostgreSQLLedgerTransaction(self, self._acquire())

    def query_balance(self, account_id: int) -> Optional[Decimal]:
        with self._connection() as connection, connection.cursor() as cursor:
            cursor.execute("SELECT balance FROM accounts WHERE account_id = %s", (account_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return Decimal(row[0])

    def create_account(self, account_id: int, balance: Decimal) -> None:
        with self._connection() as connection, connection.cursor() as cursor:
            cursor.execute(
                "INSERT INTO accounts (account_id, balance) VALUES (%s, %s)",
                (account_id, balance),
            )

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()
            self._pool = None


class PostgreSQLLedgerTransaction(LedgerTransaction):
    """Transaction on a pooled PostgreSQL connection; rows are locked with FOR UPDATE"""

    def __init__(self, store: PostgreSQLLedgerStore, connection):
        super().__init__()
        self._store = store
        self._connection = connection
        self._errors = store.psycopg2.Error

    def read_balance(self, account_id: int) -> Optional[Decimal]:
        with translate_errors(self._errors), self._connection.cursor() as cursor:
            cursor.execute(
                "SELECT balance FROM accounts WHERE account_id = %s FOR UPDATE", (account_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return None
        return Decimal(row[0])

    def update_balance(self, account_id: int, new_balance: Decimal) -> int:
        with translate_errors(self._errors), self._connection.cursor() as cursor:
            cursor.execute(
                "UPDATE accounts SET balance = %s WHERE account_id = %s",
                (new_balance, account_id),
            )
            return cursor.rowcount

    def _commit(self) -> None:
        with translate_errors(self._errors):
            self._connection.commit()

    def _rollback(self) -> None:
        with translate_errors(self._errors):
            if not self._connection.closed:
                self._connection.rollback()

    def _release(self) -> None:
        self._store._return(self._connection)


def create_store(database_url: str, pool_min: int = 1, pool_max: int = 10, timeout: float = 30.0) -> LedgerStore:
    """
    Build a store from a database URL

    Supported URLs:
        memory://                   in-memory store
        sqlite://                   in-memory SQLite database
        sqlite:///path/to/file.db   SQLite database file
        postgresql://...            PostgreSQL (also postgres://)
    """
    if database_url.startswith("memory://"):
        return InMemoryLedgerStore(lock_timeout=timeout)

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteLedgerStore(path or ":memory:", timeout=timeout)

    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLLedgerStore(
            database_url, min_connections=pool_min, max_connections=pool_max, timeout=timeout
        )

    raise ValueError(f"Unsupported database URL: {database_url}")
