"""
Rate Tables

A rate table belongs to one carrier and holds weight bands, each with a flat
base value and a marginal per-kg rate. Bands are expected not to overlap;
the audit does not enforce it (see audit.rates for the boundary policy).
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

import polars as pl

from shared.config import DEFAULT_TENANT_ID
from shared.database import Store
from .carriers import CarrierNotFound


@dataclass(frozen=True)
class WeightBand:
    """One weight band of a rate table."""

    id: Optional[int]
    min_weight: float
    max_weight: float
    base_value: float
    kg_extra_value: float = 0.0

    def contains(self, weight: float) -> bool:
        return self.min_weight <= weight <= self.max_weight


BandInput = Union[WeightBand, Mapping, tuple]


def _to_band(value: BandInput) -> WeightBand:
    if isinstance(value, WeightBand):
        band = value
    elif isinstance(value, Mapping):
        band = WeightBand(
            id=None,
            min_weight=float(value["min_weight"]),
            max_weight=float(value["max_weight"]),
            base_value=float(value["base_value"]),
            kg_extra_value=float(value.get("kg_extra_value", 0.0)),
        )
    else:
        # (min_weight, max_weight, base_value[, kg_extra_value])
        band = WeightBand(None, *(float(v) for v in value))

    if band.min_weight < 0 or band.max_weight < band.min_weight:
        raise ValueError(f"Invalid weight band range: {band.min_weight} - {band.max_weight}")
    if band.base_value < 0 or band.kg_extra_value < 0:
        raise ValueError("Weight band values cannot be negative")
    return band


def create_rate_table(
    store: Store,
    carrier_id: int,
    name: str,
    version: str,
    bands: Iterable[BandInput],
    active: bool = True,
    tenant_id: int = DEFAULT_TENANT_ID,
) -> int:
    """
    Create a rate table with its weight bands in one transaction.

    Args:
        store: Audit store
        carrier_id: Owning carrier
        name: Table name (e.g. "Tabela Padrão 2026")
        version: Table version (e.g. "v1.0")
        bands: WeightBand objects, dicts or (min, max, base[, per_kg]) tuples
        active: Whether the table is used by the audit
        tenant_id: Tenant scope

    Returns:
        int: The new table id

    Raises:
        CarrierNotFound: Unknown carrier for the tenant
        ValueError: Invalid band
    """
    parsed = [_to_band(band) for band in bands]

    with store.begin() as conn:
        exists = store.fetch_value(
            "SELECT COUNT(*) FROM carriers WHERE id = :id AND tenant_id = :tenant_id",
            {"id": carrier_id, "tenant_id": tenant_id},
            conn=conn,
        )
        if not exists:
            raise CarrierNotFound(carrier_id)

        table_id = store.insert(
            "freight_tables",
            {
                "tenant_id": tenant_id,
                "carrier_id": carrier_id,
                "name": name,
                "version": version,
                "is_active": 1 if active else 0,
            },
            conn=conn,
        )
        for band in parsed:
            store.insert(
                "weight_ranges",
                {
                    "table_id": table_id,
                    "min_weight": band.min_weight,
                    "max_weight": band.max_weight,
                    "base_value": band.base_value,
                    "kg_extra_value": band.kg_extra_value,
                },
                conn=conn,
            )

    return table_id


def set_table_active(store: Store, table_id: int, active: bool) -> bool:
    """Activate or deactivate a table. Returns False if the table does not exist."""
    updated = store.execute_query(
        "UPDATE freight_tables SET is_active = :active WHERE id = :id",
        {"active": 1 if active else 0, "id": table_id},
    )
    return updated > 0


def list_rate_tables(store: Store, tenant_id: int = DEFAULT_TENANT_ID) -> pl.DataFrame:
    """Rate tables of a tenant with their carrier name."""
    return store.pull_data(
        """
        SELECT ft.*, c.name AS carrier_name
        FROM freight_tables ft
        JOIN carriers c ON ft.carrier_id = c.id
        WHERE ft.tenant_id = :tenant_id
        ORDER BY ft.id
        """,
        {"tenant_id": tenant_id},
    )


def load_bands(store: Store, table_id: int, conn=None) -> pl.DataFrame:
    """
    Weight bands of a rate table.

    Returns:
        DataFrame with columns: id, min_weight, max_weight, base_value, kg_extra_value
    """
    return store.pull_data(
        """
        SELECT id, min_weight, max_weight, base_value, kg_extra_value
        FROM weight_ranges
        WHERE table_id = :table_id
        ORDER BY id
        """,
        {"table_id": table_id},
        conn=conn,
    )
