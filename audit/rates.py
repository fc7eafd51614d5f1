"""
Rate Resolution and Charge Calculation

Carrier tax ID + weight in, expected freight charge out.

RESOLUTION ORDER
----------------
    1. Carrier by tax ID within the tenant
    2. Active rate table for that carrier       (table_policy picks among several)
    3. Weight band with min <= weight <= max    (band_policy picks on a shared boundary)

If 1 or 2 fails the shipment is tagged table_error; if 3 fails it is tagged
weight_error. In both cases the expected charge falls back to the declared
value, so a missing configuration never produces a value divergence.

CHARGE FORMULA
--------------
    expected = base_value + kg_extra_value * (weight - min_weight)    if kg_extra_value > 0
    expected = base_value                                             otherwise

max_weight only selects the band; it does not cap the marginal charge.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

import polars as pl
from sqlalchemy.engine import Connection

from shared.config import BandPolicy, DEFAULT_TENANT_ID, TablePolicy, validate_policies
from shared.database import Store
from shared.logging import get_logger
from tariffs.carriers import find_carrier, normalize_tax_id
from tariffs.tables import WeightBand, load_bands


logger = get_logger(__name__)

TABLE_ERROR = "table_error"
WEIGHT_ERROR = "weight_error"


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class RatePolicy:
    """How ambiguous lookups are settled (see shared.config)."""

    table_policy: TablePolicy = "first"
    band_policy: BandPolicy = "first"

    def __post_init__(self) -> None:
        validate_policies(self.table_policy, self.band_policy)

    @classmethod
    def from_config(cls, cfg) -> "RatePolicy":
        return cls(table_policy=cfg.table_policy, band_policy=cfg.band_policy)


@dataclass(frozen=True)
class RateResolution:
    """Outcome of the lookup chain; divergence_type is set when it stopped early."""

    carrier_id: Optional[int] = None
    table_id: Optional[int] = None
    band: Optional[WeightBand] = None
    divergence_type: Optional[str] = None


# =============================================================================
# CHARGE CALCULATOR
# =============================================================================

def calculate_charge(band: WeightBand, weight: float) -> float:
    """Expected charge for a weight inside a band."""
    calculated = band.base_value
    if band.kg_extra_value > 0 and weight > band.min_weight:
        calculated += (weight - band.min_weight) * band.kg_extra_value
    return calculated


def expected_charge(declared: float, weight: float, resolution: RateResolution) -> float:
    """Band charge, or the declared value when no band was resolved."""
    if resolution.band is None:
        return declared
    return calculate_charge(resolution.band, weight)


# =============================================================================
# RATE RESOLVER
# =============================================================================

def find_active_table(
    store: Store,
    carrier_id: int,
    tenant_id: int = DEFAULT_TENANT_ID,
    table_policy: TablePolicy = "first",
    conn: Optional[Connection] = None,
) -> Optional[int]:
    """
    Id of the active rate table for a carrier.

    "first" returns the lowest id among active tables, "latest" the highest.
    """
    order = "ASC" if table_policy == "first" else "DESC"
    return store.fetch_value(
        f"""
        SELECT id FROM freight_tables
        WHERE tenant_id = :tenant_id AND carrier_id = :carrier_id AND is_active = 1
        ORDER BY id {order}
        LIMIT 1
        """,
        {"tenant_id": tenant_id, "carrier_id": carrier_id},
        conn=conn,
    )


def match_band(bands: pl.DataFrame, weight: float, band_policy: BandPolicy = "first") -> Optional[WeightBand]:
    """
    Pick the band whose inclusive range contains the weight.

    Adjacent bands sharing a boundary both match a weight on that boundary:
    "first" keeps the lowest band id, "upper" the band with the highest
    min_weight.
    """
    if bands.is_empty():
        return None

    matches = bands.filter(
        (pl.col("min_weight") <= weight) & (pl.col("max_weight") >= weight)
    )
    if matches.is_empty():
        return None

    if band_policy == "upper":
        matches = matches.sort(["min_weight", "id"], descending=[True, False])
    else:
        matches = matches.sort("id")

    row = matches.row(0, named=True)
    return WeightBand(
        id=row["id"],
        min_weight=float(row["min_weight"]),
        max_weight=float(row["max_weight"]),
        base_value=float(row["base_value"]),
        kg_extra_value=float(row["kg_extra_value"] or 0.0),
    )


def resolve_rate(
    store: Store,
    carrier_cnpj: str,
    weight: float,
    tenant_id: int = DEFAULT_TENANT_ID,
    policy: Optional[RatePolicy] = None,
    conn: Optional[Connection] = None,
) -> RateResolution:
    """
    Resolve carrier, active rate table and weight band for a shipment.

    Args:
        store: Audit store
        carrier_cnpj: Issuer tax ID from the CT-e
        weight: Gross weight (kg)
        tenant_id: Tenant scope for the carrier and table lookups
        policy: Tie-break policies (defaults to "first"/"first")
        conn: Connection of an open transaction (optional)

    Returns:
        RateResolution (divergence_type set on table_error / weight_error)
    """
    policy = policy or RatePolicy()

    carrier = find_carrier(store, carrier_cnpj, tenant_id=tenant_id, conn=conn)
    if carrier is None:
        logger.warning("rate_table_missing", carrier_cnpj=normalize_tax_id(carrier_cnpj), reason="carrier")
        return RateResolution(divergence_type=TABLE_ERROR)

    table_id = find_active_table(store, carrier["id"], tenant_id, policy.table_policy, conn=conn)
    if table_id is None:
        logger.warning("rate_table_missing", carrier_id=carrier["id"], reason="table")
        return RateResolution(carrier_id=carrier["id"], divergence_type=TABLE_ERROR)

    band = match_band(load_bands(store, table_id, conn=conn), weight, policy.band_policy)
    if band is None:
        logger.warning("weight_band_missing", table_id=table_id, weight=weight)
        return RateResolution(carrier_id=carrier["id"], table_id=table_id, divergence_type=WEIGHT_ERROR)

    return RateResolution(carrier_id=carrier["id"], table_id=table_id, band=band)


# =============================================================================
# QUOTE
# =============================================================================

def quote_charges(
    store: Store,
    carrier_cnpj: str,
    weights: Iterable[float],
    tenant_id: int = DEFAULT_TENANT_ID,
    policy: Optional[RatePolicy] = None,
) -> pl.DataFrame:
    """
    Expected charge for each weight under a carrier's active table.

    Weights that cannot be priced get a null expected_charge and the
    divergence type that stopped the lookup.

    Returns:
        DataFrame with columns: weight, table_id, band_id, min_weight,
        max_weight, base_value, kg_extra_value, expected_charge, divergence_type
    """
    rows = []
    for weight in weights:
        weight = float(weight)
        resolution = resolve_rate(store, carrier_cnpj, weight, tenant_id=tenant_id, policy=policy)
        band = resolution.band
        rows.append({
            "weight": weight,
            "table_id": resolution.table_id,
            "band_id": band.id if band else None,
            "min_weight": band.min_weight if band else None,
            "max_weight": band.max_weight if band else None,
            "base_value": band.base_value if band else None,
            "kg_extra_value": band.kg_extra_value if band else None,
            "expected_charge": calculate_charge(band, weight) if band else None,
            "divergence_type": resolution.divergence_type,
        })

    return pl.DataFrame(
        rows,
        schema={
            "weight": pl.Float64,
            "table_id": pl.Int64,
            "band_id": pl.Int64,
            "min_weight": pl.Float64,
            "max_weight": pl.Float64,
            "base_value": pl.Float64,
            "kg_extra_value": pl.Float64,
            "expected_charge": pl.Float64,
            "divergence_type": pl.Utf8,
        },
    )
