"""
Divergence Classifier

Compares the declared CT-e value with the expected charge and builds the
audit record written for the shipment.

DIVERGENCE TYPES
----------------
    table_error       - no carrier or active rate table (set by the resolver)
    weight_error      - no weight band for the weight   (set by the resolver)
    value_divergence  - |declared - calculated| above the tolerance

A structural type set by the resolver is never replaced by value_divergence.
"""

from dataclasses import dataclass
from typing import Optional

from shared.config import VALUE_TOLERANCE


VALUE_DIVERGENCE = "value_divergence"

# Audit record lifecycle: open -> contested | waived
OPEN = "open"
CONTESTED = "contested"
WAIVED = "waived"


@dataclass(frozen=True)
class AuditClassification:
    calculated_value: float
    difference: float
    divergence_type: Optional[str]

    @property
    def is_divergent(self) -> bool:
        return self.divergence_type is not None


def classify(
    declared: float,
    calculated: float,
    divergence_type: Optional[str] = None,
    tolerance: float = VALUE_TOLERANCE,
) -> AuditClassification:
    """
    Classify a shipment.

    Args:
        declared: Value charged on the CT-e
        calculated: Expected charge (the declared value on a resolver fallback)
        divergence_type: Structural type from the resolver, if any
        tolerance: Largest |difference| still treated as a match

    Returns:
        AuditClassification with difference = declared - calculated
    """
    difference = declared - calculated
    if abs(difference) > tolerance and divergence_type is None:
        divergence_type = VALUE_DIVERGENCE

    return AuditClassification(
        calculated_value=calculated,
        difference=difference,
        divergence_type=divergence_type,
    )
