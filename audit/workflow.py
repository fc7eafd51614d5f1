"""
Audit Workflow

Status transitions of an audit record:

    open -> contested    (reason required)
    open -> waived       (also accepted from any other status)

There is no way back to open.
"""

from datetime import datetime

from shared.database import Store
from shared.logging import get_logger
from .classify import CONTESTED, OPEN, WAIVED
from .errors import AuditNotFound, InvalidTransition, MissingReason


logger = get_logger(__name__)


def _now() -> str:
    return datetime.now().isoformat(sep=" ", timespec="seconds")


def contest_audit(store: Store, audit_id: int, reason: str) -> None:
    """
    Contest an open audit with a reason.

    Raises:
        MissingReason: Reason is blank
        AuditNotFound: Unknown audit id
        InvalidTransition: Audit is not open
    """
    reason = (reason or "").strip()
    if not reason:
        raise MissingReason()

    with store.begin() as conn:
        current = store.fetch_value(
            "SELECT status FROM audits WHERE id = :id",
            {"id": audit_id},
            conn=conn,
        )
        if current is None:
            raise AuditNotFound(audit_id)
        if current != OPEN:
            raise InvalidTransition(audit_id, current, CONTESTED)

        store.execute_query(
            """
            UPDATE audits
            SET status = :status, contestation_reason = :reason, status_changed_at = :changed_at
            WHERE id = :id
            """,
            {"status": CONTESTED, "reason": reason, "changed_at": _now(), "id": audit_id},
            conn=conn,
        )

    logger.info("audit_contested", audit_id=audit_id)


def waive_audit(store: Store, audit_id: int) -> None:
    """
    Waive (abonar) an audit. Unconditional.

    Raises:
        AuditNotFound: Unknown audit id
    """
    updated = store.execute_query(
        "UPDATE audits SET status = :status, status_changed_at = :changed_at WHERE id = :id",
        {"status": WAIVED, "changed_at": _now(), "id": audit_id},
    )
    if not updated:
        raise AuditNotFound(audit_id)

    logger.info("audit_waived", audit_id=audit_id)
