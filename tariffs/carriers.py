"""
Carrier Registry

Carriers are scoped to a tenant and identified by their CNPJ, stored as
digits only so formatted and raw tax IDs match.
"""

import re
from typing import Optional

import polars as pl
from sqlalchemy.engine import Connection

from shared.config import DEFAULT_TENANT_ID
from shared.database import Store


class CarrierNotFound(LookupError):
    def __init__(self, carrier_id: int):
        super().__init__(f"Carrier {carrier_id} not found")
        self.carrier_id = carrier_id


class CarrierInUse(ValueError):
    """The tax ID of a carrier referenced by a rate table cannot change."""

    def __init__(self, carrier_id: int):
        super().__init__(f"Carrier {carrier_id} is referenced by a rate table; its CNPJ cannot change")
        self.carrier_id = carrier_id


def normalize_tax_id(value: Optional[str]) -> str:
    """Keep digits only ("35.856.333/0001-00" -> "35856333000100")."""
    return re.sub(r"\D", "", value or "")


def register_carrier(store: Store, name: str, cnpj: str, tenant_id: int = DEFAULT_TENANT_ID) -> int:
    """
    Register a carrier for a tenant.

    Returns:
        int: The new carrier id

    Raises:
        ValueError: If name or CNPJ is blank
    """
    name = (name or "").strip()
    cnpj = normalize_tax_id(cnpj)
    if not name or not cnpj:
        raise ValueError("Carrier name and CNPJ are required")

    return store.insert("carriers", {"tenant_id": tenant_id, "name": name, "cnpj": cnpj})


def update_carrier(
    store: Store,
    carrier_id: int,
    name: str,
    cnpj: str,
    tenant_id: int = DEFAULT_TENANT_ID,
) -> None:
    """
    Update a carrier in place.

    Raises:
        CarrierNotFound: No such carrier for the tenant
        CarrierInUse: CNPJ change on a carrier referenced by a rate table
        ValueError: If name or CNPJ is blank
    """
    name = (name or "").strip()
    cnpj = normalize_tax_id(cnpj)
    if not name or not cnpj:
        raise ValueError("Carrier name and CNPJ are required")

    with store.begin() as conn:
        current = store.fetch_one(
            "SELECT id, cnpj FROM carriers WHERE id = :id AND tenant_id = :tenant_id",
            {"id": carrier_id, "tenant_id": tenant_id},
            conn=conn,
        )
        if current is None:
            raise CarrierNotFound(carrier_id)

        if current["cnpj"] != cnpj:
            referenced = store.fetch_value(
                "SELECT COUNT(*) FROM freight_tables WHERE carrier_id = :id",
                {"id": carrier_id},
                conn=conn,
            )
            if referenced:
                raise CarrierInUse(carrier_id)

        store.execute_query(
            "UPDATE carriers SET name = :name, cnpj = :cnpj WHERE id = :id AND tenant_id = :tenant_id",
            {"name": name, "cnpj": cnpj, "id": carrier_id, "tenant_id": tenant_id},
            conn=conn,
        )


def find_carrier(
    store: Store,
    cnpj: str,
    tenant_id: int = DEFAULT_TENANT_ID,
    conn: Optional[Connection] = None,
) -> Optional[dict]:
    """Carrier (id, name, cnpj) by tax ID within a tenant, lowest id first."""
    cnpj = normalize_tax_id(cnpj)
    if not cnpj:
        return None
    return store.fetch_one(
        """
        SELECT id, name, cnpj FROM carriers
        WHERE cnpj = :cnpj AND tenant_id = :tenant_id
        ORDER BY id
        LIMIT 1
        """,
        {"cnpj": cnpj, "tenant_id": tenant_id},
        conn=conn,
    )


def list_carriers(store: Store, tenant_id: int = DEFAULT_TENANT_ID) -> pl.DataFrame:
    return store.pull_data(
        "SELECT * FROM carriers WHERE tenant_id = :tenant_id ORDER BY id",
        {"tenant_id": tenant_id},
    )
