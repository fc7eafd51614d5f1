"""
Audit Errors

Structural document errors are fatal for one document only: the batch
orchestrator catches them and records a failed outcome. Workflow errors
propagate to the caller.
"""


# =============================================================================
# DOCUMENT EXTRACTION
# =============================================================================

class DocumentError(ValueError):
    """Base class for CT-e documents that cannot be audited."""


class MalformedDocument(DocumentError):
    def __init__(self):
        super().__init__("Invalid CT-e XML or unrecognized structure (infCte not found).")


class MissingKey(DocumentError):
    def __init__(self):
        super().__init__("CT-e key not found in the XML.")


class MissingCarrierId(DocumentError):
    def __init__(self):
        super().__init__("Carrier (issuer) CNPJ not found in the XML.")


class MissingPayerId(DocumentError):
    def __init__(self):
        super().__init__("Service payer (tomador) tax ID could not be determined from the XML.")


# =============================================================================
# AUDIT WORKFLOW
# =============================================================================

class AuditNotFound(LookupError):
    def __init__(self, audit_id: int):
        super().__init__(f"Audit {audit_id} not found")
        self.audit_id = audit_id


class MissingReason(ValueError):
    def __init__(self):
        super().__init__("A contestation reason is required")


class InvalidTransition(ValueError):
    def __init__(self, audit_id: int, current: str, target: str):
        super().__init__(f"Audit {audit_id} cannot move from '{current}' to '{target}'")
        self.audit_id = audit_id
        self.current = current
        self.target = target
