"""
Per-Document Audit Pipeline

    extract -> duplicate guard -> store CT-e -> resolve rate -> calculate -> classify -> store audit

The CT-e row and its audit row are written in one transaction. A document
whose key is already stored is a recognized no-op: it returns an
unsuccessful, duplicate outcome instead of raising.

Structural extraction errors (audit.errors.DocumentError) propagate to the
caller; the batch orchestrator turns them into failed outcomes.
"""

from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.engine import Connection

from shared.config import DEFAULT_TENANT_ID
from shared.database import Store
from shared.logging import get_logger
from .classify import OPEN, AuditClassification, classify
from .extract import ShipmentRecord, extract_shipment
from .rates import RatePolicy, expected_charge, resolve_rate


logger = get_logger(__name__)

ALREADY_IMPORTED = "already imported"

SHIPMENT_AUDITED = "audited"


@dataclass(frozen=True)
class DocumentOutcome:
    """Result of one document in a batch."""

    success: bool
    xml_key: Optional[str] = None
    cte_id: Optional[int] = None
    message: Optional[str] = None
    filename: Optional[str] = None
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "xml_key": self.xml_key,
            "cte_id": self.cte_id,
            "message": self.message,
            "filename": self.filename,
            "duplicate": self.duplicate,
        }


# =============================================================================
# DUPLICATE GUARD
# =============================================================================

def find_shipment_id(store: Store, xml_key: str, conn: Optional[Connection] = None) -> Optional[int]:
    """Id of the stored CT-e with this key, if any."""
    return store.fetch_value(
        "SELECT id FROM ctes WHERE xml_key = :xml_key",
        {"xml_key": xml_key},
        conn=conn,
    )


# =============================================================================
# PIPELINE
# =============================================================================

def audit_shipment(
    store: Store,
    record: ShipmentRecord,
    tenant_id: int = DEFAULT_TENANT_ID,
    policy: Optional[RatePolicy] = None,
    filename: Optional[str] = None,
) -> DocumentOutcome:
    """
    Store and audit an extracted shipment.

    Args:
        store: Audit store
        record: Extracted CT-e
        tenant_id: Tenant scope
        policy: Rate table / band tie-break policies
        filename: Source name reported in the outcome

    Returns:
        DocumentOutcome (duplicate=True and success=False if the key exists)
    """
    with store.begin() as conn:
        if find_shipment_id(store, record.xml_key, conn=conn) is not None:
            logger.info("cte_duplicate", xml_key=record.xml_key)
            return DocumentOutcome(
                success=False,
                xml_key=record.xml_key,
                message=ALREADY_IMPORTED,
                filename=filename,
                duplicate=True,
            )

        cte_id = _insert_shipment(store, record, tenant_id, conn)

        resolution = resolve_rate(
            store,
            record.carrier_cnpj,
            record.weight,
            tenant_id=tenant_id,
            policy=policy,
            conn=conn,
        )
        calculated = expected_charge(record.total_value, record.weight, resolution)
        result = classify(record.total_value, calculated, resolution.divergence_type)

        _insert_audit(store, cte_id, result, conn)

    logger.info(
        "cte_imported",
        xml_key=record.xml_key,
        cte_id=cte_id,
        declared=record.total_value,
        calculated=result.calculated_value,
        divergence_type=result.divergence_type,
    )
    return DocumentOutcome(success=True, xml_key=record.xml_key, cte_id=cte_id, filename=filename)


def process_document(
    store: Store,
    tree: Any,
    tenant_id: int = DEFAULT_TENANT_ID,
    policy: Optional[RatePolicy] = None,
    filename: Optional[str] = None,
) -> DocumentOutcome:
    """
    Run the full pipeline on one parsed CT-e tree.

    Raises:
        DocumentError: If the document cannot be extracted
    """
    record = extract_shipment(tree)
    return audit_shipment(store, record, tenant_id=tenant_id, policy=policy, filename=filename)


def _insert_shipment(store: Store, record: ShipmentRecord, tenant_id: int, conn: Connection) -> int:
    return store.insert(
        "ctes",
        {
            "tenant_id": tenant_id,
            "xml_key": record.xml_key,
            "carrier_cnpj": record.carrier_cnpj,
            "tomador_cnpj": record.tomador_cnpj,
            "total_value": record.total_value,
            "weight": record.weight,
            "origin_zip": record.origin_zip,
            "dest_zip": record.dest_zip,
            "origin_city": record.origin_city,
            "dest_city": record.dest_city,
            "cfop": record.cfop,
            "icms_value": record.icms_value,
            "icms_base": record.icms_base,
            "icms_rate": record.icms_rate,
            "status": SHIPMENT_AUDITED,
        },
        conn=conn,
    )


def _insert_audit(store: Store, cte_id: int, result: AuditClassification, conn: Connection) -> int:
    return store.insert(
        "audits",
        {
            "cte_id": cte_id,
            "calculated_value": result.calculated_value,
            "difference": result.difference,
            "divergence_type": result.divergence_type,
            "status": OPEN,
        },
        conn=conn,
    )
