"""
Reconciliation Records

Queries and the waive action over imported calculation-memory rows and
their import batches.
"""

import polars as pl

from shared.database import Store
from shared.logging import get_logger
from .engine import ROW_WAIVED


logger = get_logger(__name__)


class RowNotFound(LookupError):
    def __init__(self, row_id: int):
        super().__init__(f"Calculation memory row {row_id} not found")
        self.row_id = row_id


def waive_row(store: Store, row_id: int) -> None:
    """
    Mark a reconciliation row as ABONADO, whatever its current status.

    Raises:
        RowNotFound: Unknown row id
    """
    updated = store.execute_query(
        "UPDATE memory_calculations SET status = :status WHERE id = :id",
        {"status": ROW_WAIVED, "id": row_id},
    )
    if not updated:
        raise RowNotFound(row_id)
    logger.info("row_waived", row_id=row_id)


def list_rows(store: Store) -> pl.DataFrame:
    """All reconciliation rows, newest first."""
    return store.pull_data("SELECT * FROM memory_calculations ORDER BY id DESC")


def clear_rows(store: Store) -> int:
    """Delete every reconciliation row. Returns the number deleted."""
    deleted = store.execute_query("DELETE FROM memory_calculations")
    logger.info("rows_cleared", deleted=deleted)
    return deleted


def list_imports(store: Store) -> pl.DataFrame:
    """Import batches, newest first."""
    return store.pull_data("SELECT * FROM table_imports ORDER BY import_date DESC, id DESC")


def list_import_errors(store: Store, import_id: int) -> pl.DataFrame:
    """Row errors of one import batch, in sheet order."""
    return store.pull_data(
        "SELECT * FROM import_errors WHERE import_id = :import_id ORDER BY row_number ASC, id ASC",
        {"import_id": import_id},
    )
