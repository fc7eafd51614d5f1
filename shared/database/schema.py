"""
Database Schema

DDL for the audit store and the optional default seed (tenant, carrier and
rate table with three weight bands).
"""

from sqlalchemy import text
from sqlalchemy.engine import Connection


# =============================================================================
# DDL
# =============================================================================

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS tenants (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        cnpj TEXT UNIQUE NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS carriers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        cnpj TEXT NOT NULL,
        FOREIGN KEY (tenant_id) REFERENCES tenants(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS freight_tables (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        carrier_id INTEGER NOT NULL,
        name TEXT NOT NULL,
        version TEXT NOT NULL,
        is_active INTEGER DEFAULT 1,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (tenant_id) REFERENCES tenants(id),
        FOREIGN KEY (carrier_id) REFERENCES carriers(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weight_ranges (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_id INTEGER NOT NULL,
        min_weight REAL NOT NULL,
        max_weight REAL NOT NULL,
        base_value REAL NOT NULL,
        kg_extra_value REAL DEFAULT 0,
        FOREIGN KEY (table_id) REFERENCES freight_tables(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ctes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tenant_id INTEGER NOT NULL,
        xml_key TEXT UNIQUE NOT NULL,
        carrier_cnpj TEXT NOT NULL,
        tomador_cnpj TEXT NOT NULL,
        total_value REAL NOT NULL,
        weight REAL NOT NULL,
        origin_zip TEXT,
        dest_zip TEXT,
        origin_city TEXT,
        dest_city TEXT,
        cfop TEXT,
        icms_value REAL,
        icms_base REAL,
        icms_rate REAL,
        status TEXT DEFAULT 'pending',
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (tenant_id) REFERENCES tenants(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cte_id INTEGER UNIQUE NOT NULL,
        calculated_value REAL NOT NULL,
        difference REAL NOT NULL,
        divergence_type TEXT,
        status TEXT DEFAULT 'open',
        contestation_reason TEXT,
        audit_date DATETIME DEFAULT CURRENT_TIMESTAMP,
        status_changed_at DATETIME,
        FOREIGN KEY (cte_id) REFERENCES ctes(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS table_imports (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        filename TEXT NOT NULL,
        user TEXT DEFAULT 'ADMIN_LOG',
        import_date DATETIME DEFAULT CURRENT_TIMESTAMP,
        validation_date DATETIME,
        processing_date DATETIME,
        qty_imported INTEGER DEFAULT 0,
        qty_errors INTEGER DEFAULT 0,
        qty_total INTEGER DEFAULT 0,
        status TEXT DEFAULT 'processing'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_calculations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        import_id INTEGER,
        row_number INTEGER,
        codigo TEXT,
        soltransp TEXT,
        origem TEXT,
        destino TEXT,
        peso REAL,
        frete_valor REAL,
        obs TEXT,
        icms REAL,
        pedagios REAL,
        seguro REAL,
        frete_peso REAL,
        frete_all_in REAL,
        calculated_total REAL,
        status TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (import_id) REFERENCES table_imports(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS import_errors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        import_id INTEGER NOT NULL,
        row_number INTEGER,
        error_message TEXT,
        raw_data TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (import_id) REFERENCES table_imports(id)
    )
    """,
]


# =============================================================================
# SEED DATA
# =============================================================================

DEFAULT_TENANT = {"id": 1, "name": "Empresa Exemplo S.A.", "cnpj": "12345678000190"}
DEFAULT_CARRIER = {"id": 1, "tenant_id": 1, "name": "R&R ISA'S TRANSPORTES LTDA", "cnpj": "35856333000100"}
DEFAULT_TABLE = {"id": 1, "tenant_id": 1, "carrier_id": 1, "name": "Tabela Padrão 2026", "version": "v1.0"}

# (id, min_weight, max_weight, base_value, kg_extra_value)
DEFAULT_BANDS = [
    (1, 0, 1000, 500.00, 0.50),
    (2, 1000, 10000, 2500.00, 0.35),
    (3, 10000, 50000, 5000.00, 0.25),
]


def create_schema(conn: Connection) -> None:
    """Create every table that does not exist yet."""
    for ddl in TABLES:
        conn.execute(text(ddl))


def seed_defaults(conn: Connection) -> None:
    """Insert the default tenant, carrier and rate table (idempotent)."""
    conn.execute(
        text("INSERT OR IGNORE INTO tenants (id, name, cnpj) VALUES (:id, :name, :cnpj)"),
        DEFAULT_TENANT,
    )
    conn.execute(
        text(
            "INSERT OR IGNORE INTO carriers (id, tenant_id, name, cnpj) "
            "VALUES (:id, :tenant_id, :name, :cnpj)"
        ),
        DEFAULT_CARRIER,
    )
    conn.execute(
        text(
            "INSERT OR IGNORE INTO freight_tables (id, tenant_id, carrier_id, name, version) "
            "VALUES (:id, :tenant_id, :carrier_id, :name, :version)"
        ),
        DEFAULT_TABLE,
    )
    for band_id, min_weight, max_weight, base_value, kg_extra_value in DEFAULT_BANDS:
        conn.execute(
            text(
                "INSERT OR IGNORE INTO weight_ranges "
                "(id, table_id, min_weight, max_weight, base_value, kg_extra_value) "
                "VALUES (:id, :table_id, :min_weight, :max_weight, :base_value, :kg_extra_value)"
            ),
            {
                "id": band_id,
                "table_id": DEFAULT_TABLE["id"],
                "min_weight": min_weight,
                "max_weight": max_weight,
                "base_value": base_value,
                "kg_extra_value": kg_extra_value,
            },
        )
