"""
CT-e Freight Audit

Extracts CT-e documents, prices them against the carrier's contracted rate
table and records an audit with its divergence classification.
"""

from .batch import BatchResult, process_batch
from .classify import CONTESTED, OPEN, VALUE_DIVERGENCE, WAIVED, classify
from .errors import (
    AuditNotFound,
    DocumentError,
    InvalidTransition,
    MalformedDocument,
    MissingCarrierId,
    MissingKey,
    MissingPayerId,
    MissingReason,
)
from .extract import ShipmentRecord, extract_shipment, parse_document
from .process import DocumentOutcome, process_document
from .rates import TABLE_ERROR, WEIGHT_ERROR, RatePolicy, calculate_charge, quote_charges, resolve_rate
from .workflow import contest_audit, waive_audit

__all__ = [
    "BatchResult",
    "process_batch",
    "CONTESTED",
    "OPEN",
    "VALUE_DIVERGENCE",
    "WAIVED",
    "classify",
    "AuditNotFound",
    "DocumentError",
    "InvalidTransition",
    "MalformedDocument",
    "MissingCarrierId",
    "MissingKey",
    "MissingPayerId",
    "MissingReason",
    "ShipmentRecord",
    "extract_shipment",
    "parse_document",
    "DocumentOutcome",
    "process_document",
    "TABLE_ERROR",
    "WEIGHT_ERROR",
    "RatePolicy",
    "calculate_charge",
    "quote_charges",
    "resolve_rate",
    "contest_audit",
    "waive_audit",
]
