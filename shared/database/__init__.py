"""
Database Connection and Operations

Relational store shared by the audit and reconciliation pipelines.

A Store is created once at startup with Store.open(), passed explicitly to
every component and closed at shutdown. If the database cannot be
initialized the Store is still returned, in an unavailable state: every data
operation then raises StorageUnavailable while liveness() keeps answering.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Union

import pandas as pd
import polars as pl
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine

from shared.logging import get_logger
from .schema import create_schema, seed_defaults


logger = get_logger(__name__)


class StorageUnavailable(RuntimeError):
    """Raised by any data operation when the store failed to initialize."""

    def __init__(self, reason: str | None = None):
        message = "Database not available. Check the server logs."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    # Driver-level transactions off; _begin_sqlite_transaction emits BEGIN so
    # SAVEPOINTs nest inside the outer transaction
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def _begin_sqlite_transaction(conn) -> None:
    conn.exec_driver_sql("BEGIN")


# =============================================================================
# STORE
# =============================================================================

class Store:
    """
    Handle on the relational store.

    Query helpers accept an optional `conn` so several statements can share
    one transaction opened with begin(); without it each call runs in its own
    transaction.
    """

    def __init__(self, engine: Optional[Engine], error: Optional[BaseException] = None):
        self._engine = engine
        self._error = error

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    @classmethod
    def open(cls, url: str, seed: bool = False) -> "Store":
        """
        Create the engine, ensure the schema exists and optionally seed it.

        Never raises: initialization failures produce an unavailable Store.

        Args:
            url: SQLAlchemy database URL (e.g. "sqlite:///audit_frete.db")
            seed: If True, insert the default tenant, carrier and rate table

        Returns:
            Store
        """
        try:
            engine = create_engine(url)
            if engine.dialect.name == "sqlite":
                event.listen(engine, "connect", _configure_sqlite_connection)
                event.listen(engine, "begin", _begin_sqlite_transaction)
            with engine.begin() as conn:
                create_schema(conn)
                if seed:
                    seed_defaults(conn)
        except Exception as e:
            logger.error("storage_unavailable", url=url, error=str(e))
            return cls(None, error=e)

        logger.info("storage_opened", url=url, seeded=seed)
        return cls(engine)

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def require(self) -> Engine:
        """Return the engine or raise StorageUnavailable."""
        if self._engine is None:
            raise StorageUnavailable(str(self._error) if self._error else None)
        return self._engine

    def close(self) -> None:
        """Dispose the engine's connection pool."""
        if self._engine is not None:
            self._engine.dispose()

    # -------------------------------------------------------------------------
    # TRANSACTIONS
    # -------------------------------------------------------------------------

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """
        Transaction scope: commits on exit, rolls back if the block raises.

        Example:
            with store.begin() as conn:
                store.insert("ctes", {...}, conn=conn)
                store.insert("audits", {...}, conn=conn)
        """
        with self.require().begin() as conn:
            yield conn

    @contextmanager
    def _connection(self, conn: Optional[Connection]) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.begin() as new_conn:
                yield new_conn

    # -------------------------------------------------------------------------
    # DATA OPERATIONS
    # -------------------------------------------------------------------------

    def pull_data(
        self,
        query: str,
        params: Optional[Mapping[str, Any]] = None,
        as_polars: bool = True,
        conn: Optional[Connection] = None,
    ) -> Union[pl.DataFrame, pd.DataFrame]:
        """
        Execute a SQL query and return results as a DataFrame.

        Args:
            query: SQL query with named binds (":name")
            params: Bind values
            as_polars: If True, return Polars DataFrame; if False, return Pandas DataFrame
            conn: Connection of an open transaction (optional)

        Returns:
            pl.DataFrame or pd.DataFrame: Query results

        Example:
            df = store.pull_data("SELECT * FROM audits WHERE status = :status", {"status": "open"})
        """
        with self._connection(conn) as c:
            result = c.execute(text(query), dict(params or {}))
            columns = list(result.keys())
            rows = [tuple(row) for row in result.fetchall()]

        if as_polars:
            return pl.DataFrame(rows, schema=columns, orient="row", infer_schema_length=None)
        return pd.DataFrame(rows, columns=columns)

    def fetch_one(
        self,
        query: str,
        params: Optional[Mapping[str, Any]] = None,
        conn: Optional[Connection] = None,
    ) -> Optional[dict]:
        """Execute a query and return the first row as a dict (None if empty)."""
        with self._connection(conn) as c:
            row = c.execute(text(query), dict(params or {})).mappings().first()
        return dict(row) if row is not None else None

    def fetch_value(
        self,
        query: str,
        params: Optional[Mapping[str, Any]] = None,
        conn: Optional[Connection] = None,
    ) -> Any:
        """Execute a query and return the first column of the first row."""
        with self._connection(conn) as c:
            return c.execute(text(query), dict(params or {})).scalar()

    def execute_query(
        self,
        query: str,
        params: Optional[Mapping[str, Any]] = None,
        conn: Optional[Connection] = None,
    ) -> int:
        """
        Execute a statement without returning results (UPDATE, DELETE, ...).

        Returns:
            int: Number of affected rows
        """
        with self._connection(conn) as c:
            return c.execute(text(query), dict(params or {})).rowcount

    def insert(
        self,
        table_name: str,
        values: Mapping[str, Any],
        conn: Optional[Connection] = None,
    ) -> int:
        """
        Insert one row and return its id.

        Args:
            table_name: Target table
            values: Column -> value mapping
            conn: Connection of an open transaction (optional)

        Returns:
            int: The new row id
        """
        if not values:
            raise ValueError(f"No values to insert into '{table_name}'")

        column_list = ", ".join(values)
        bind_list = ", ".join(f":{column}" for column in values)
        query = f"INSERT INTO {table_name} ({column_list}) VALUES ({bind_list})"

        with self._connection(conn) as c:
            return c.execute(text(query), dict(values)).lastrowid


# =============================================================================
# LIVENESS
# =============================================================================

def liveness(store: Store, environment: str | None = None) -> dict:
    """
    Basic health answer that never touches the database.

    Returns:
        dict with status, storage ("available" / "unavailable") and environment
    """
    return {
        "status": "ok",
        "storage": "available" if store.available else "unavailable",
        "environment": environment,
    }


def open_store(cfg) -> Store:
    """Open the store described by an AuditConfig."""
    return Store.open(cfg.database_url, seed=cfg.seed_defaults)


__all__ = [
    "Store",
    "StorageUnavailable",
    "liveness",
    "open_store",
]
