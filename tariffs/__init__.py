"""
Tariffs

Carrier registry and contracted rate tables (weight bands) used by the
CT-e audit.
"""

from .carriers import (
    CarrierInUse,
    CarrierNotFound,
    find_carrier,
    list_carriers,
    normalize_tax_id,
    register_carrier,
    update_carrier,
)
from .tables import WeightBand, create_rate_table, list_rate_tables, load_bands, set_table_active

__all__ = [
    "CarrierInUse",
    "CarrierNotFound",
    "find_carrier",
    "list_carriers",
    "normalize_tax_id",
    "register_carrier",
    "update_carrier",
    "WeightBand",
    "create_rate_table",
    "list_rate_tables",
    "load_bands",
    "set_table_active",
]
