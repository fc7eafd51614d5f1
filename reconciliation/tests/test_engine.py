"""
Tests for the Spreadsheet Reconciliation Engine

Spreadsheets are built in memory with pandas + openpyxl.

Run with: pytest reconciliation/tests/test_engine.py -v
"""

import io
import json

import pandas as pd
import pytest

from reconciliation import engine
from reconciliation.engine import (
    MISSING_ALL_IN,
    MISSING_IDENTIFIERS,
    MISSING_ROUTE,
    RECONCILED,
    RECONCILIATION_ERROR,
    evaluate_row,
    import_files,
    import_spreadsheet,
    read_spreadsheet,
)
from reconciliation.records import (
    RowNotFound,
    clear_rows,
    list_import_errors,
    list_imports,
    list_rows,
    waive_row,
)
from shared.database import StorageUnavailable
from shared.uploads import UploadedFile


# =============================================================================
# FIXTURES
# =============================================================================

def xlsx(rows: list[dict]) -> bytes:
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()


def valid_row(**overrides) -> dict:
    row = {
        "CÓDIGO": "MC-001",
        "SOLTRANSP": "4500012345",
        "ORIGEM": "SAO PAULO",
        "DESTINO": "RIO DE JANEIRO",
        "PESO": 1200,
        "FRETE": 850.0,
        "OBS": "",
        "ICMS": 120.0,
        "PEDÁGIOS": 30.0,
        "SEGURO": 15.0,
        "FRETE PESO": 835.0,
        "FRETE ALL IN": 1000.0,
    }
    row.update(overrides)
    return row


@pytest.fixture
def mixed_sheet():
    """Rows 2-6: reconciled, unreconciled, no codigo, no destino, no all-in."""
    return xlsx([
        valid_row(),
        valid_row(**{"CÓDIGO": "MC-002", "FRETE ALL IN": 1100.0}),
        valid_row(**{"CÓDIGO": None}),
        valid_row(**{"CÓDIGO": "MC-004", "DESTINO": "  "}),
        valid_row(**{"CÓDIGO": "MC-005", "FRETE ALL IN": 0}),
    ])


def count(store, table: str) -> int:
    return store.fetch_value(f"SELECT COUNT(*) FROM {table}")


# =============================================================================
# READING
# =============================================================================

class TestReadSpreadsheet:

    def test_xlsx_rows(self):
        rows = read_spreadsheet(xlsx([valid_row(), valid_row(**{"CÓDIGO": "MC-002"})]), "memoria.xlsx")
        assert len(rows) == 2
        assert rows[0]["CÓDIGO"] == "MC-001"
        assert rows[1]["CÓDIGO"] == "MC-002"
        assert rows[0]["FRETE ALL IN"] == pytest.approx(1000.0)

    def test_blank_rows_dropped(self):
        blank = {column: None for column in valid_row()}
        rows = read_spreadsheet(xlsx([valid_row(), blank, valid_row()]), "memoria.xlsx")
        assert len(rows) == 2

    def test_empty_cells_become_none(self):
        rows = read_spreadsheet(xlsx([valid_row(OBS=None)]), "memoria.xlsx")
        assert rows[0]["OBS"] is None

    def test_csv_with_semicolons(self):
        content = (
            "CODIGO;SOLTRANSP;ORIGEM;DESTINO;ICMS;PEDÁGIOS;SEGURO;FRETE PESO;FRETE ALL IN\n"
            "A1;900;SP;RJ;10,5;4,5;5;80;100,00\n"
        ).encode("utf-8")
        rows = read_spreadsheet(content, "memoria.csv")
        assert rows == [{
            "CODIGO": "A1", "SOLTRANSP": "900", "ORIGEM": "SP", "DESTINO": "RJ",
            "ICMS": "10,5", "PEDÁGIOS": "4,5", "SEGURO": "5", "FRETE PESO": "80", "FRETE ALL IN": "100,00",
        }]
        assert evaluate_row(rows[0]).values["status"] == RECONCILED


# =============================================================================
# ROW EVALUATION
# =============================================================================

class TestEvaluateRow:

    def test_reconciled(self):
        result = evaluate_row(valid_row())
        assert result.is_valid
        assert result.values["calculated_total"] == pytest.approx(1000.0)
        assert result.values["status"] == RECONCILED
        assert result.values["codigo"] == "MC-001"
        assert result.values["frete_valor"] == pytest.approx(850.0)
        assert result.values["pedagios"] == pytest.approx(30.0)

    def test_components_equal_all_in(self):
        """12 + 5 + 1.5 + 81.5 = 100 against an all-in of 100."""
        row = {
            "CODIGO": "MC-100", "SOLTRANSP": "4500000100", "ORIGEM": "SP", "DESTINO": "RJ",
            "ICMS": 12, "PEDAGIOS": 5, "SEGURO": 1.5, "FRETE PESO": 81.5, "FRETE ALL IN": 100,
        }
        result = evaluate_row(row)
        assert result.values["calculated_total"] == pytest.approx(100.0)
        assert result.values["status"] == RECONCILED

    def test_components_against_half_all_in(self):
        """The same components against an all-in of 50 differ by 50."""
        row = {
            "CODIGO": "MC-100", "SOLTRANSP": "4500000100", "ORIGEM": "SP", "DESTINO": "RJ",
            "ICMS": 12, "PEDAGIOS": 5, "SEGURO": 1.5, "FRETE PESO": 81.5, "FRETE ALL IN": 50,
        }
        values = evaluate_row(row).values
        assert values["status"] == RECONCILIATION_ERROR
        assert values["calculated_total"] - values["frete_all_in"] == pytest.approx(50.0)

    def test_within_five_cents(self):
        assert evaluate_row(valid_row(**{"FRETE ALL IN": 1000.04})).values["status"] == RECONCILED

    def test_above_five_cents(self):
        assert evaluate_row(valid_row(**{"FRETE ALL IN": 1000.10})).values["status"] == RECONCILIATION_ERROR

    def test_comma_decimals(self):
        row = valid_row(ICMS="120,00", **{"PEDÁGIOS": "30,0", "FRETE PESO": "835", "FRETE ALL IN": "1.000,00"})
        assert evaluate_row(row).values["status"] == RECONCILED

    @pytest.mark.parametrize("overrides,message", [
        ({"CÓDIGO": ""}, MISSING_IDENTIFIERS),
        ({"SOLTRANSP": None}, MISSING_IDENTIFIERS),
        ({"ORIGEM": " "}, MISSING_ROUTE),
        ({"DESTINO": None}, MISSING_ROUTE),
        ({"FRETE ALL IN": 0}, MISSING_ALL_IN),
        ({"FRETE ALL IN": "abc"}, MISSING_ALL_IN),
        ({"FRETE ALL IN": -10}, MISSING_ALL_IN),
    ])
    def test_row_errors(self, overrides, message):
        assert evaluate_row(valid_row(**overrides)).error == message

    def test_identifiers_checked_before_route(self):
        assert evaluate_row(valid_row(**{"CÓDIGO": "", "ORIGEM": ""})).error == MISSING_IDENTIFIERS

    def test_numeric_code(self):
        assert evaluate_row(valid_row(**{"CÓDIGO": 12345.0})).values["codigo"] == "12345"

    def test_unaccented_and_lowercase_headers(self):
        row = {
            "codigo": "X", "soltransp": "1", "origem": "A", "destino": "B",
            "icms": 1, "pedagios": 1, "seguro": 1, "frete_peso": 7, "frete_all_in": 10,
        }
        assert evaluate_row(row).values["status"] == RECONCILED


# =============================================================================
# IMPORT
# =============================================================================

class TestImport:

    def test_mixed_file(self, store, mixed_sheet):
        [result] = import_files(store, [UploadedFile("memoria.xlsx", mixed_sheet)])

        assert result.status == "success"
        assert (result.imported, result.errors, result.total) == (2, 3, 5)

        batch = store.fetch_one("SELECT * FROM table_imports WHERE id = :id", {"id": result.import_id})
        assert batch["status"] == "warning"
        assert (batch["qty_imported"], batch["qty_errors"], batch["qty_total"]) == (2, 3, 5)
        assert batch["user"] == "ADMIN_LOG"

        rows = list_rows(store)
        assert rows["codigo"].to_list() == ["MC-002", "MC-001"]
        assert rows["status"].to_list() == [RECONCILIATION_ERROR, RECONCILED]
        assert rows["row_number"].to_list() == [3, 2]

    def test_row_errors_recorded(self, store, mixed_sheet):
        [result] = import_files(store, [UploadedFile("memoria.xlsx", mixed_sheet)])
        errors = list_import_errors(store, result.import_id)

        assert errors["row_number"].to_list() == [4, 5, 6]
        assert errors["error_message"].to_list() == [MISSING_IDENTIFIERS, MISSING_ROUTE, MISSING_ALL_IN]

        raw = json.loads(errors["raw_data"][1])
        assert raw["CÓDIGO"] == "MC-004"
        assert raw["ORIGEM"] == "SAO PAULO"

    def test_clean_file_is_success(self, store):
        [result] = import_files(store, [UploadedFile("ok.xlsx", xlsx([valid_row()]))])
        assert store.fetch_value("SELECT status FROM table_imports WHERE id = :id", {"id": result.import_id}) == "success"

    def test_internal_row_error(self, store):
        """A row that cannot be evaluated is recorded, the rest is imported."""
        result = import_spreadsheet(store, "rows.xlsx", [None, valid_row()])

        assert (result.imported, result.errors) == (1, 1)
        errors = list_import_errors(store, result.import_id)
        assert errors["error_message"][0].startswith("Internal error:")
        assert errors["raw_data"][0] == "null"

    def test_row_with_non_string_keys(self, store):
        """A row whose raw data is not plain JSON is still recorded as a row error."""
        result = import_spreadsheet(store, "rows.xlsx", [
            valid_row(),
            {("CODIGO", 1): "X-1"},
            valid_row(**{"CÓDIGO": "MC-003"}),
        ])

        assert result.status == "success"
        assert (result.imported, result.errors) == (2, 1)

        errors = list_import_errors(store, result.import_id)
        assert errors["row_number"].to_list() == [3]
        assert errors["error_message"][0] == MISSING_IDENTIFIERS
        assert json.loads(errors["raw_data"][0]) == {"('CODIGO', 1)": "X-1"}

    def test_failed_row_insert_only_drops_that_row(self, store, monkeypatch):
        """A row whose insert fails halfway is undone and recorded; the other rows stay."""
        insert_row = engine._insert_row

        def failing_insert(store, import_id, row_number, values, conn):
            row_id = insert_row(store, import_id, row_number, values, conn)
            if values["codigo"] == "MC-002":
                raise RuntimeError("disk full")
            return row_id

        monkeypatch.setattr(engine, "_insert_row", failing_insert)

        result = import_spreadsheet(store, "rows.xlsx", [
            valid_row(),
            valid_row(**{"CÓDIGO": "MC-002"}),
            valid_row(**{"CÓDIGO": "MC-003"}),
        ])

        assert result.status == "success"
        assert (result.imported, result.errors, result.total) == (2, 1, 3)
        assert list_rows(store)["codigo"].to_list() == ["MC-003", "MC-001"]

        errors = list_import_errors(store, result.import_id)
        assert errors["row_number"].to_list() == [3]
        assert errors["error_message"][0] == "Internal error: disk full"
        assert json.loads(errors["raw_data"][0])["CÓDIGO"] == "MC-002"

        batch = store.fetch_one("SELECT * FROM table_imports WHERE id = :id", {"id": result.import_id})
        assert (batch["qty_imported"], batch["qty_errors"], batch["status"]) == (2, 1, "warning")

    def test_unreadable_file(self, store):
        results = import_files(store, [
            UploadedFile("quebrado.xlsx", b"not a spreadsheet"),
            UploadedFile("ok.xlsx", xlsx([valid_row()])),
        ])

        assert [r.status for r in results] == ["error", "success"]
        assert results[0].message
        batch = store.fetch_one("SELECT * FROM table_imports WHERE id = :id", {"id": results[0].import_id})
        assert batch["status"] == "processing"

    def test_failure_rolls_back_file(self, store, mixed_sheet, monkeypatch):
        """Only the failing file is rolled back; its batch stays processing."""
        finalize = engine._finalize_import
        calls = []

        def flaky(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise RuntimeError("connection lost")
            return finalize(*args, **kwargs)

        monkeypatch.setattr(engine, "_finalize_import", flaky)

        failed, ok = import_files(store, [
            UploadedFile("primeiro.xlsx", mixed_sheet),
            UploadedFile("segundo.xlsx", xlsx([valid_row(**{"CÓDIGO": "OK-1"})])),
        ])

        assert failed.status == "error"
        assert failed.message == "connection lost"
        assert ok.status == "success"

        batch = store.fetch_one("SELECT * FROM table_imports WHERE id = :id", {"id": failed.import_id})
        assert batch["status"] == "processing"
        assert batch["qty_total"] == 0
        assert list_import_errors(store, failed.import_id).is_empty()
        assert list_rows(store)["codigo"].to_list() == ["OK-1"]

    def test_no_files(self, store):
        with pytest.raises(ValueError):
            import_files(store, [])

    def test_unavailable_store(self, unavailable_store):
        with pytest.raises(StorageUnavailable):
            import_files(unavailable_store, [UploadedFile("ok.xlsx", xlsx([valid_row()]))])


# =============================================================================
# RECORDS
# =============================================================================

class TestRecords:

    @pytest.fixture
    def imported(self, store, mixed_sheet):
        import_files(store, [UploadedFile("memoria.xlsx", mixed_sheet)])
        return store

    def test_waive_row(self, imported):
        row_id = imported.fetch_value("SELECT id FROM memory_calculations WHERE codigo = 'MC-002'")
        waive_row(imported, row_id)
        assert imported.fetch_value("SELECT status FROM memory_calculations WHERE id = :id", {"id": row_id}) == "ABONADO"

    def test_waive_reconciled_row(self, imported):
        """Waiving does not check the current status."""
        row_id = imported.fetch_value("SELECT id FROM memory_calculations WHERE codigo = 'MC-001'")
        waive_row(imported, row_id)
        assert imported.fetch_value("SELECT status FROM memory_calculations WHERE id = :id", {"id": row_id}) == "ABONADO"

    def test_waive_unknown_row(self, store):
        with pytest.raises(RowNotFound):
            waive_row(store, 999)

    def test_clear_rows(self, imported):
        assert clear_rows(imported) == 2
        assert count(imported, "memory_calculations") == 0
        assert count(imported, "table_imports") == 1

    def test_list_imports_newest_first(self, imported):
        import_spreadsheet(imported, "segunda.xlsx", [valid_row()])
        assert list_imports(imported)["filename"].to_list() == ["segunda.xlsx", "memoria.xlsx"]
