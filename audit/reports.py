"""
Audit Reports

Read-only projections over stored shipments, audits and reconciliation rows.
Every function returns a polars DataFrame (or a plain dict for single
records); nothing here writes to the store.

PROJECTIONS
-----------
    dashboard_stats        - headline counts and the 5 newest audits
    list_audits            - filtered audit list (date range, carrier, status)
    list_divergent_audits  - open audits with a non-zero difference
    pending_waivers        - divergent audits + unreconciled spreadsheet rows
    approved_waivers       - waived audits + waived spreadsheet rows
    get_shipment           - one CT-e with its carrier name
"""

from datetime import date
from typing import Optional, Union

import polars as pl

from shared.config import VALUE_TOLERANCE
from shared.database import Store
from reconciliation.engine import RECONCILIATION_ERROR, ROW_WAIVED
from .classify import OPEN, WAIVED


DIVERGENT_FILTER = "divergent"
RECONCILED_FILTER = "conciliado"

AUDIT_SOURCE = "audit"
MEMORY_SOURCE = "memory_calc"

# Carrier name by tax ID within the shipment's tenant (lowest carrier id wins)
CARRIER_NAME = """
    (SELECT car.name FROM carriers car
     WHERE car.cnpj = c.carrier_cnpj AND car.tenant_id = c.tenant_id
     ORDER BY car.id LIMIT 1)
"""

AUDIT_COLUMNS = f"""
    a.*,
    c.xml_key,
    c.total_value AS charged_value,
    c.weight,
    {CARRIER_NAME} AS carrier_name,
    c.origin_city,
    c.dest_city,
    c.cfop
"""


# =============================================================================
# DASHBOARD
# =============================================================================

def dashboard_stats(store: Store) -> dict:
    """
    Headline figures for the audit dashboard.

    Returns:
        dict with:
            total_audited      - CT-e records with status "audited"
            total_divergences  - audits with |difference| above one cent
            recovered_value    - sum of positive differences (overcharges)
            recent_audits      - DataFrame of the 5 newest audits
    """
    total_audited = store.fetch_value("SELECT COUNT(*) FROM ctes WHERE status = 'audited'")
    total_divergences = store.fetch_value(
        "SELECT COUNT(*) FROM audits WHERE difference > :tolerance OR difference < -:tolerance",
        {"tolerance": VALUE_TOLERANCE},
    )
    recovered_value = store.fetch_value("SELECT SUM(difference) FROM audits WHERE difference > 0")

    recent_audits = store.pull_data("""
        SELECT c.xml_key, c.total_value, a.calculated_value, a.difference, a.divergence_type
        FROM audits a
        JOIN ctes c ON a.cte_id = c.id
        ORDER BY a.audit_date DESC, a.id DESC
        LIMIT 5
    """)

    return {
        "total_audited": int(total_audited or 0),
        "total_divergences": int(total_divergences or 0),
        "recovered_value": float(recovered_value or 0.0),
        "recent_audits": recent_audits,
    }


# =============================================================================
# AUDIT LISTS
# =============================================================================

def list_audits(
    store: Store,
    start_date: Optional[Union[str, date]] = None,
    end_date: Optional[Union[str, date]] = None,
    carrier_cnpj: Optional[str] = None,
    status: Optional[str] = None,
) -> pl.DataFrame:
    """
    Audits joined with their CT-e, newest first.

    Args:
        store: Audit store
        start_date: Earliest audit date (inclusive, "YYYY-MM-DD")
        end_date: Latest audit date (inclusive, "YYYY-MM-DD")
        carrier_cnpj: Issuer tax ID as stored on the CT-e
        status: "divergent" (open with |difference| >= 0.01),
            "conciliado" (|difference| < 0.01) or an audit status
            ("open", "contested", "waived")

    Returns:
        pl.DataFrame
    """
    conditions = []
    params: dict = {}

    if start_date:
        conditions.append("date(a.audit_date) >= :start_date")
        params["start_date"] = str(start_date)
    if end_date:
        conditions.append("date(a.audit_date) <= :end_date")
        params["end_date"] = str(end_date)
    if carrier_cnpj:
        conditions.append("c.carrier_cnpj = :carrier_cnpj")
        params["carrier_cnpj"] = carrier_cnpj
    if status:
        if status == DIVERGENT_FILTER:
            conditions.append("a.status = :open AND ABS(a.difference) >= :tolerance")
            params.update(open=OPEN, tolerance=VALUE_TOLERANCE)
        elif status == RECONCILED_FILTER:
            conditions.append("ABS(a.difference) < :tolerance")
            params["tolerance"] = VALUE_TOLERANCE
        else:
            conditions.append("a.status = :status")
            params["status"] = status

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return store.pull_data(
        f"""
        SELECT {AUDIT_COLUMNS}
        FROM audits a
        JOIN ctes c ON a.cte_id = c.id
        {where}
        ORDER BY a.audit_date DESC, a.id DESC
        """,
        params,
    )


def list_divergent_audits(store: Store) -> pl.DataFrame:
    """Open audits whose difference is not exactly zero, newest first."""
    return store.pull_data(
        f"""
        SELECT {AUDIT_COLUMNS}
        FROM audits a
        JOIN ctes c ON a.cte_id = c.id
        WHERE a.status = :open AND a.difference != 0
        ORDER BY a.audit_date DESC, a.id DESC
        """,
        {"open": OPEN},
    )


def get_shipment(store: Store, cte_id: int) -> Optional[dict]:
    """A stored CT-e with its carrier name, or None."""
    return store.fetch_one(
        f"""
        SELECT c.*, {CARRIER_NAME} AS carrier_name
        FROM ctes c
        WHERE c.id = :id
        """,
        {"id": cte_id},
    )


# =============================================================================
# WAIVERS
# =============================================================================

def _waiver_query(audit_condition: str, memory_condition: str) -> str:
    return f"""
        SELECT
            a.id AS id,
            c.xml_key AS identifier,
            'Auditoria de CT-e' AS description,
            a.difference AS difference,
            '{AUDIT_SOURCE}' AS type,
            a.audit_date AS date,
            c.total_value AS charged_value,
            a.calculated_value AS calculated_value
        FROM audits a
        JOIN ctes c ON a.cte_id = c.id
        WHERE {audit_condition}

        UNION ALL

        SELECT
            m.id AS id,
            m.codigo AS identifier,
            'Memória de Cálculo' AS description,
            (m.frete_all_in - m.calculated_total) AS difference,
            '{MEMORY_SOURCE}' AS type,
            m.created_at AS date,
            m.frete_all_in AS charged_value,
            m.calculated_total AS calculated_value
        FROM memory_calculations m
        WHERE {memory_condition}

        ORDER BY date DESC, id DESC
    """


def pending_waivers(store: Store) -> pl.DataFrame:
    """
    Items awaiting a waive decision, newest first.

    Returns:
        DataFrame with columns: id, identifier, description, difference,
        type ("audit" | "memory_calc"), date, charged_value, calculated_value
    """
    return store.pull_data(
        _waiver_query(
            "a.status = :open AND ABS(a.difference) >= :tolerance",
            "m.status = :memory_error",
        ),
        {"open": OPEN, "tolerance": VALUE_TOLERANCE, "memory_error": RECONCILIATION_ERROR},
    )


def approved_waivers(store: Store) -> pl.DataFrame:
    """Waived audits and waived spreadsheet rows, newest first."""
    return store.pull_data(
        _waiver_query("a.status = :waived", "m.status = :memory_waived"),
        {"waived": WAIVED, "memory_waived": ROW_WAIVED},
    )
