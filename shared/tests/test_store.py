"""
Tests for Configuration, Storage and Logging

Run with: pytest shared/tests/test_store.py -v
"""

import logging

import pandas as pd
import polars as pl
import pytest
import structlog

from shared.config import (
    DEFAULT_DATABASE_URL,
    PRODUCTION_DATABASE_URL,
    AuditConfig,
    load_config,
)
from shared.database import Store, StorageUnavailable, liveness
from shared.logging import configure_logging, get_logger
from shared.uploads import UploadedFile


# =============================================================================
# CONFIGURATION
# =============================================================================

class TestConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "FRETE_DATABASE_URL", "FRETE_ENV", "FRETE_TENANT_ID", "FRETE_TABLE_POLICY",
            "FRETE_BAND_POLICY", "FRETE_SEED_DEFAULTS", "FRETE_LOG_LEVEL", "FRETE_JSON_LOGS",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        cfg = load_config()
        assert cfg.database_url == DEFAULT_DATABASE_URL
        assert cfg.environment == "development"
        assert cfg.tenant_id == 1
        assert (cfg.table_policy, cfg.band_policy) == ("first", "first")
        assert cfg.seed_defaults is True
        assert cfg.json_logs is False

    def test_production_database(self, monkeypatch):
        monkeypatch.setenv("FRETE_ENV", "production")
        assert load_config().database_url == PRODUCTION_DATABASE_URL

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("FRETE_DATABASE_URL", "sqlite://")
        monkeypatch.setenv("FRETE_TENANT_ID", "7")
        monkeypatch.setenv("FRETE_TABLE_POLICY", "latest")
        monkeypatch.setenv("FRETE_BAND_POLICY", "UPPER")
        monkeypatch.setenv("FRETE_SEED_DEFAULTS", "0")
        monkeypatch.setenv("FRETE_JSON_LOGS", "yes")

        cfg = load_config()
        assert cfg.database_url == "sqlite://"
        assert cfg.tenant_id == 7
        assert (cfg.table_policy, cfg.band_policy) == ("latest", "upper")
        assert cfg.seed_defaults is False
        assert cfg.json_logs is True

    def test_overrides_win_and_none_is_ignored(self, monkeypatch):
        monkeypatch.setenv("FRETE_TENANT_ID", "7")
        cfg = load_config(tenant_id=3, database_url=None)
        assert cfg.tenant_id == 3
        assert cfg.database_url == DEFAULT_DATABASE_URL

    def test_invalid_policy(self, monkeypatch):
        monkeypatch.setenv("FRETE_TABLE_POLICY", "random")
        with pytest.raises(ValueError):
            load_config()
        with pytest.raises(ValueError):
            AuditConfig(band_policy="middle")


# =============================================================================
# STORE
# =============================================================================

class TestStore:

    def test_schema_without_seed(self, empty_store):
        assert empty_store.available
        assert empty_store.fetch_value("SELECT COUNT(*) FROM carriers") == 0

    def test_seed_is_idempotent(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        Store.open(url, seed=True).close()
        store = Store.open(url, seed=True)
        assert store.fetch_value("SELECT COUNT(*) FROM weight_ranges") == 3
        store.close()

    def test_pull_data_polars(self, store):
        df = store.pull_data("SELECT id, name FROM carriers WHERE id = :id", {"id": 1})
        assert isinstance(df, pl.DataFrame)
        assert df.columns == ["id", "name"]

    def test_pull_data_pandas(self, store):
        df = store.pull_data("SELECT id, min_weight FROM weight_ranges ORDER BY id", as_polars=False)
        assert isinstance(df, pd.DataFrame)
        assert df["min_weight"].tolist() == [0.0, 1000.0, 10000.0]

    def test_empty_result(self, store):
        df = store.pull_data("SELECT * FROM ctes")
        assert df.is_empty()
        assert "xml_key" in df.columns

    def test_fetch_one_missing(self, store):
        assert store.fetch_one("SELECT * FROM audits WHERE id = 1") is None

    def test_transaction_rolls_back(self, store):
        with pytest.raises(RuntimeError):
            with store.begin() as conn:
                store.insert("carriers", {"tenant_id": 1, "name": "Temp", "cnpj": "1"}, conn=conn)
                raise RuntimeError("abort")
        assert store.fetch_value("SELECT COUNT(*) FROM carriers") == 1

    def test_insert_requires_values(self, store):
        with pytest.raises(ValueError):
            store.insert("carriers", {})


# =============================================================================
# UNAVAILABLE STORAGE
# =============================================================================

class TestUnavailableStore:

    def test_open_does_not_raise(self, unavailable_store):
        assert not unavailable_store.available
        assert unavailable_store.error is not None

    def test_operations_raise(self, unavailable_store):
        with pytest.raises(StorageUnavailable):
            unavailable_store.fetch_value("SELECT 1")
        with pytest.raises(StorageUnavailable):
            unavailable_store.pull_data("SELECT 1")

    def test_message(self, unavailable_store):
        with pytest.raises(StorageUnavailable, match="Database not available"):
            unavailable_store.require()

    def test_liveness_still_answers(self, unavailable_store, store):
        assert liveness(unavailable_store, "production") == {
            "status": "ok",
            "storage": "unavailable",
            "environment": "production",
        }
        assert liveness(store)["storage"] == "available"

    def test_close_is_safe(self, unavailable_store):
        unavailable_store.close()


# =============================================================================
# UPLOADS AND LOGGING
# =============================================================================

class TestUploads:

    @pytest.mark.parametrize("upload,is_zip,is_xml", [
        (UploadedFile("lote.ZIP", b""), True, False),
        (UploadedFile("lote", b"", "application/x-zip-compressed"), True, False),
        (UploadedFile("cte.xml", b""), False, True),
        (UploadedFile("cte", b"", "text/xml"), False, True),
        (UploadedFile("memoria.xlsx", b""), False, False),
    ])
    def test_kind(self, upload, is_zip, is_xml):
        assert upload.is_zip() == is_zip
        assert upload.is_xml() == is_xml

    def test_from_path(self, tmp_path):
        path = tmp_path / "cte.xml"
        path.write_bytes(b"<CTe/>")
        upload = UploadedFile.from_path(path)
        assert upload.filename == "cte.xml"
        assert upload.content == b"<CTe/>"
        assert upload.is_xml()


class TestLogging:

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        yield
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()

    def test_json_logs(self, capsys):
        configure_logging("INFO", json_logs=True)
        get_logger("tests").info("cte_imported", xml_key="123")
        err = capsys.readouterr().err
        assert '"event": "cte_imported"' in err
        assert '"xml_key": "123"' in err

    def test_level_filters(self, capsys):
        configure_logging("WARNING")
        get_logger("tests").info("hidden_event")
        assert "hidden_event" not in capsys.readouterr().err

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            configure_logging("LOUD")
