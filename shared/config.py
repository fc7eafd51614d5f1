"""
Configuration

Runtime settings for the audit and reconciliation pipelines. Module-level
constants hold the defaults; load_config() layers environment variables and
explicit overrides on top of them.
"""

import os
from dataclasses import dataclass, replace
from typing import Literal


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_DATABASE_URL = "sqlite:///audit_frete.db"
PRODUCTION_DATABASE_URL = "sqlite:////tmp/audit_frete.db"

DEFAULT_TENANT_ID = 1
DEFAULT_IMPORT_USER = "ADMIN_LOG"

# Declared vs calculated freight (one cent)
VALUE_TOLERANCE = 0.01

# All-in total vs sum of cost components
RECONCILIATION_TOLERANCE = 0.05

TablePolicy = Literal["first", "latest"]
BandPolicy = Literal["first", "upper"]

TABLE_POLICIES = ("first", "latest")
BAND_POLICIES = ("first", "upper")


# =============================================================================
# CONFIG OBJECT
# =============================================================================

@dataclass(frozen=True)
class AuditConfig:
    """
    Settings shared by every entry point.

    Attributes:
        database_url    - SQLAlchemy URL of the relational store
        environment     - "development" or "production"
        tenant_id       - Tenant whose carriers and tables are used
        table_policy    - Which active rate table wins when several exist
                          ("first" = lowest id, "latest" = highest id)
        band_policy     - Which weight band wins on a shared boundary
                          ("first" = lowest id, "upper" = highest min_weight)
        seed_defaults   - Seed the default tenant, carrier and rate table
        log_level       - Minimum log level
        json_logs       - Render logs as JSON instead of key/value
    """

    database_url: str = DEFAULT_DATABASE_URL
    environment: str = "development"
    tenant_id: int = DEFAULT_TENANT_ID
    table_policy: TablePolicy = "first"
    band_policy: BandPolicy = "first"
    seed_defaults: bool = True
    log_level: str = "INFO"
    json_logs: bool = False

    def __post_init__(self) -> None:
        validate_policies(self.table_policy, self.band_policy)


def validate_policies(table_policy: str, band_policy: str) -> None:
    """Raise ValueError for unknown resolution policy names."""
    if table_policy not in TABLE_POLICIES:
        raise ValueError(
            f"table_policy must be one of {TABLE_POLICIES}, got '{table_policy}'"
        )
    if band_policy not in BAND_POLICIES:
        raise ValueError(
            f"band_policy must be one of {BAND_POLICIES}, got '{band_policy}'"
        )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(**overrides) -> AuditConfig:
    """
    Build the configuration from environment variables.

    Args:
        **overrides: Field values that take precedence over the environment
            (None values are ignored, so argparse defaults can be passed as-is)

    Returns:
        AuditConfig

    Raises:
        ValueError: If a policy name or tenant id is invalid
    """
    environment = os.getenv("FRETE_ENV", "development").strip().lower()
    default_url = (
        PRODUCTION_DATABASE_URL if environment == "production" else DEFAULT_DATABASE_URL
    )

    cfg = AuditConfig(
        database_url=os.getenv("FRETE_DATABASE_URL", default_url),
        environment=environment,
        tenant_id=int(os.getenv("FRETE_TENANT_ID", str(DEFAULT_TENANT_ID))),
        table_policy=os.getenv("FRETE_TABLE_POLICY", "first").strip().lower(),
        band_policy=os.getenv("FRETE_BAND_POLICY", "first").strip().lower(),
        seed_defaults=_env_flag("FRETE_SEED_DEFAULTS", True),
        log_level=os.getenv("FRETE_LOG_LEVEL", "INFO").strip().upper(),
        json_logs=_env_flag("FRETE_JSON_LOGS", False),
    )

    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides:
        cfg = replace(cfg, **overrides)
    return cfg
