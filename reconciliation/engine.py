"""
Spreadsheet Reconciliation Engine

Imports calculation-memory spreadsheets and reconciles each row's all-in
freight against the sum of its cost components.

PER FILE
--------
    1. Create the import batch ("processing")            own transaction
    2. Read the first sheet into row dicts              header = row 1, data from row 2
    3. For each row: evaluate, then insert               one transaction for all rows
         - invalid row        -> import_errors (message + raw row JSON)
         - valid row          -> memory_calculations (CONCILIADO | ERRO DE CONCILIAÇÃO)
         - failed row insert  -> savepoint rolled back, import_errors ("Internal error: ...")
    4. Update batch counts and status                   same transaction as 3

A failure that escapes step 3 or 4 rolls back every row of the file and
leaves the batch in "processing" for inspection. Other files are unaffected.

RECONCILIATION
--------------
    calculated_total = icms + pedagios + seguro + frete_peso
    CONCILIADO            if |calculated_total - frete_all_in| <= 0.05
    ERRO DE CONCILIAÇÃO   otherwise
"""

import io
import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import pandas as pd
from sqlalchemy.engine import Connection

from shared.config import DEFAULT_IMPORT_USER, RECONCILIATION_TOLERANCE
from shared.database import Store
from shared.logging import get_logger
from shared.uploads import UploadedFile
from .columns import map_fields, to_number, to_text


logger = get_logger(__name__)


# =============================================================================
# STATUSES AND MESSAGES
# =============================================================================

RECONCILED = "CONCILIADO"
RECONCILIATION_ERROR = "ERRO DE CONCILIAÇÃO"
ROW_WAIVED = "ABONADO"

IMPORT_PROCESSING = "processing"
IMPORT_SUCCESS = "success"
IMPORT_WARNING = "warning"

FILE_SUCCESS = "success"
FILE_ERROR = "error"

MISSING_IDENTIFIERS = "CODIGO or SOLTRANSP missing or invalid"
MISSING_ROUTE = "ORIGEM or DESTINO missing or invalid"
MISSING_ALL_IN = "FRETE ALL IN missing or invalid, reconciliation impossible."

FIRST_DATA_ROW = 2


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class RowEvaluation:
    """A fully evaluated row: either insertable values or an error message."""

    values: Optional[dict] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


@dataclass
class FileImportResult:
    filename: str
    status: str
    import_id: Optional[int] = None
    imported: int = 0
    errors: int = 0
    total: int = 0
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "status": self.status,
            "import_id": self.import_id,
            "imported": self.imported,
            "errors": self.errors,
            "total": self.total,
            "message": self.message,
        }


@dataclass
class _RowTally:
    imported: int = 0
    errors: int = 0


# =============================================================================
# READING
# =============================================================================

def read_spreadsheet(content: bytes, filename: str) -> list[dict]:
    """
    Read the first sheet of a spreadsheet into row dicts.

    Cells keep the type they were read with (dtype=object); empty cells
    become None and fully empty rows are dropped.

    Args:
        content: Raw file bytes
        filename: Original name (".csv" selects the CSV reader)

    Returns:
        list of dicts keyed by the header row
    """
    if Path(filename).suffix.lower() == ".csv":
        text = content.decode("utf-8-sig")
        header = text.splitlines()[0] if text else ""
        separator = ";" if ";" in header else ","
        frame = pd.read_csv(io.StringIO(text), sep=separator, dtype=object, skip_blank_lines=True)
    else:
        frame = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=object)

    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.dropna(how="all")
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.to_dict(orient="records")


# =============================================================================
# ROW EVALUATION
# =============================================================================

def evaluate_row(row: Mapping[str, Any], tolerance: float = RECONCILIATION_TOLERANCE) -> RowEvaluation:
    """
    Validate and reconcile one spreadsheet row without touching the store.

    Args:
        row: Raw row keyed by spreadsheet header
        tolerance: Largest |calculated_total - frete_all_in| still reconciled

    Returns:
        RowEvaluation with the memory_calculations values or an error message
    """
    fields = map_fields(row)

    codigo = to_text(fields.get("codigo"))
    soltransp = to_text(fields.get("soltransp"))
    origem = to_text(fields.get("origem"))
    destino = to_text(fields.get("destino"))

    if not codigo or not soltransp:
        return RowEvaluation(error=MISSING_IDENTIFIERS)
    if not origem or not destino:
        return RowEvaluation(error=MISSING_ROUTE)

    frete_all_in = to_number(fields.get("frete_all_in"))
    if frete_all_in <= 0:
        return RowEvaluation(error=MISSING_ALL_IN)

    icms = to_number(fields.get("icms"))
    pedagios = to_number(fields.get("pedagios"))
    seguro = to_number(fields.get("seguro"))
    frete_peso = to_number(fields.get("frete_peso"))

    calculated_total = icms + pedagios + seguro + frete_peso
    diff = abs(calculated_total - frete_all_in)
    status = RECONCILED if diff <= tolerance else RECONCILIATION_ERROR

    return RowEvaluation(values={
        "codigo": codigo,
        "soltransp": soltransp,
        "origem": origem,
        "destino": destino,
        "peso": to_number(fields.get("peso")),
        "frete_valor": to_number(fields.get("frete_valor")),
        "obs": to_text(fields.get("obs")),
        "icms": icms,
        "pedagios": pedagios,
        "seguro": seguro,
        "frete_peso": frete_peso,
        "frete_all_in": frete_all_in,
        "calculated_total": calculated_total,
        "status": status,
    })


def _safe_evaluate(row: Any) -> RowEvaluation:
    try:
        return evaluate_row(row)
    except Exception as e:
        return RowEvaluation(error=f"Internal error: {e}")


def _raw_json(row: Any) -> str:
    """Raw row as JSON; non-string keys are stringified, anything else falls back to repr."""
    if isinstance(row, Mapping):
        row = {str(key): value for key, value in row.items()}
    try:
        return json.dumps(row, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(repr(row), ensure_ascii=False)


# =============================================================================
# IMPORT
# =============================================================================

def create_import(store: Store, filename: str, user: str = DEFAULT_IMPORT_USER) -> int:
    """Insert the import batch in "processing" state, committed on its own."""
    now = datetime.now().isoformat(sep=" ", timespec="seconds")
    return store.insert(
        "table_imports",
        {
            "filename": filename,
            "user": user,
            "import_date": now,
            "validation_date": now,
            "processing_date": now,
            "qty_imported": 0,
            "qty_errors": 0,
            "qty_total": 0,
            "status": IMPORT_PROCESSING,
        },
    )


def apply_rows(store: Store, import_id: int, filename: str, rows: Iterable[Any]) -> FileImportResult:
    """
    Evaluate and store every row of one file in a single transaction.

    Returns:
        FileImportResult ("error" when the transaction was rolled back)
    """
    try:
        with store.begin() as conn:
            tally = _RowTally()
            for row_number, row in enumerate(rows, start=FIRST_DATA_ROW):
                evaluation = _safe_evaluate(row)
                if evaluation.is_valid:
                    try:
                        with conn.begin_nested():
                            _insert_row(store, import_id, row_number, evaluation.values, conn)
                    except Exception as e:
                        evaluation = RowEvaluation(error=f"Internal error: {e}")
                    else:
                        tally.imported += 1
                        continue

                _insert_row_error(store, import_id, row_number, evaluation.error, row, conn)
                tally.errors += 1
                logger.warning("import_row_error", import_id=import_id, row=row_number, error=evaluation.error)

            _finalize_import(store, import_id, tally.imported, tally.errors, conn)
    except Exception as e:
        logger.error("import_failed", import_id=import_id, filename=filename, error=str(e))
        return FileImportResult(filename=filename, status=FILE_ERROR, import_id=import_id, message=str(e))

    total = tally.imported + tally.errors
    logger.info(
        "import_finished",
        import_id=import_id,
        filename=filename,
        imported=tally.imported,
        errors=tally.errors,
    )
    return FileImportResult(
        filename=filename,
        status=FILE_SUCCESS,
        import_id=import_id,
        imported=tally.imported,
        errors=tally.errors,
        total=total,
    )


def import_spreadsheet(
    store: Store,
    filename: str,
    rows: Iterable[Any],
    user: str = DEFAULT_IMPORT_USER,
) -> FileImportResult:
    """
    Import rows already read from a spreadsheet.

    Args:
        store: Audit store
        filename: Name recorded on the import batch
        rows: Row dicts keyed by header, in sheet order
        user: Importing user

    Returns:
        FileImportResult

    Raises:
        StorageUnavailable: If the store is not available
    """
    import_id = create_import(store, filename, user)
    return apply_rows(store, import_id, filename, rows)


def import_upload(store: Store, upload: UploadedFile, user: str = DEFAULT_IMPORT_USER) -> FileImportResult:
    """Create the import batch, read the upload and import its rows."""
    import_id = create_import(store, upload.filename, user)
    try:
        rows = read_spreadsheet(upload.content, upload.filename)
    except Exception as e:
        logger.error("import_failed", import_id=import_id, filename=upload.filename, error=str(e))
        return FileImportResult(filename=upload.filename, status=FILE_ERROR, import_id=import_id, message=str(e))
    return apply_rows(store, import_id, upload.filename, rows)


def import_files(
    store: Store,
    files: Iterable[UploadedFile],
    user: str = DEFAULT_IMPORT_USER,
) -> list[FileImportResult]:
    """
    Import several spreadsheets; each file succeeds or fails on its own.

    Raises:
        ValueError: If no files were sent
        StorageUnavailable: If the store is not available
    """
    files = list(files)
    if not files:
        raise ValueError("No files sent.")

    store.require()
    return [import_upload(store, upload, user) for upload in files]


# =============================================================================
# WRITES
# =============================================================================

def _insert_row(store: Store, import_id: int, row_number: int, values: dict, conn: Connection) -> int:
    return store.insert(
        "memory_calculations",
        {"import_id": import_id, "row_number": row_number, **values},
        conn=conn,
    )


def _insert_row_error(
    store: Store,
    import_id: int,
    row_number: int,
    message: str,
    row: Any,
    conn: Connection,
) -> int:
    return store.insert(
        "import_errors",
        {
            "import_id": import_id,
            "row_number": row_number,
            "error_message": message,
            "raw_data": _raw_json(row),
        },
        conn=conn,
    )


def _finalize_import(store: Store, import_id: int, imported: int, errors: int, conn: Connection) -> None:
    status = IMPORT_WARNING if errors else IMPORT_SUCCESS
    store.execute_query(
        """
        UPDATE table_imports
        SET qty_imported = :imported, qty_errors = :errors, qty_total = :total, status = :status
        WHERE id = :id
        """,
        {"imported": imported, "errors": errors, "total": imported + errors, "status": status, "id": import_id},
        conn=conn,
    )
