"""
Spreadsheet Reconciliation

Calculation-memory spreadsheet import: validates each row, reconciles its
all-in freight against its cost components and records row errors per
import batch.
"""

from .columns import fold_header, map_fields, to_number, to_text
from .engine import (
    RECONCILED,
    RECONCILIATION_ERROR,
    ROW_WAIVED,
    FileImportResult,
    RowEvaluation,
    evaluate_row,
    import_files,
    import_spreadsheet,
    import_upload,
    read_spreadsheet,
)
from .records import RowNotFound, clear_rows, list_import_errors, list_imports, list_rows, waive_row

__all__ = [
    "fold_header",
    "map_fields",
    "to_number",
    "to_text",
    "RECONCILED",
    "RECONCILIATION_ERROR",
    "ROW_WAIVED",
    "FileImportResult",
    "RowEvaluation",
    "evaluate_row",
    "import_files",
    "import_spreadsheet",
    "import_upload",
    "read_spreadsheet",
    "RowNotFound",
    "clear_rows",
    "list_import_errors",
    "list_imports",
    "list_rows",
    "waive_row",
]
