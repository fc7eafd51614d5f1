"""
Command Line Helpers

Options and startup shared by the `python -m ...scripts...` entry points.
"""

import argparse

from shared.config import AuditConfig, load_config
from shared.database import Store, open_store
from shared.logging import configure_logging


def add_store_arguments(parser: argparse.ArgumentParser) -> None:
    """Add --database-url and --tenant (both default to the environment)."""
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy database URL (default: FRETE_DATABASE_URL or sqlite:///audit_frete.db)"
    )
    parser.add_argument(
        "--tenant",
        type=int,
        help="Tenant id (default: FRETE_TENANT_ID or 1)"
    )


def start(args: argparse.Namespace, **overrides) -> tuple[AuditConfig, Store]:
    """
    Load the configuration, configure logging and open the store.

    Returns:
        (config, store); the store may be unavailable, callers use
        store.require() or let the operation raise StorageUnavailable
    """
    cfg = load_config(
        database_url=args.database_url,
        tenant_id=args.tenant,
        **overrides,
    )
    configure_logging(cfg.log_level, cfg.json_logs)
    return cfg, open_store(cfg)
