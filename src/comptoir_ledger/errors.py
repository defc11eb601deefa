"""Exception hierarchy raised by the ledger layers."""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every recoverable ledger failure."""


class ValidationError(LedgerError, ValueError):
    """Raised when caller input is invalid; no state is changed."""


class BusinessRuleViolation(LedgerError):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced document, client, warehouse or article is unknown."""


class AlreadyTransformed(BusinessRuleViolation):
    """Raised when a document already has a forward successor."""


class TerminalType(BusinessRuleViolation):
    """Raised when the document type has no forward edge."""


class ReturnNotAllowed(BusinessRuleViolation):
    """Raised when a return is requested from a non-returnable document type."""


class AlreadyReturned(BusinessRuleViolation):
    """Raised when a return document already exists for the source."""


class DocumentReferenced(BusinessRuleViolation):
    """Raised when deleting or editing a document another document points to."""


class DuplicateCode(BusinessRuleViolation):
    """Raised when a document code or identity is already present in the store."""


class InvalidState(BusinessRuleViolation):
    """Raised when an operation does not apply to the document's type or status."""


class InsufficientStock(LedgerError):
    """Raised by the availability precondition when on-hand stock is too low."""

    def __init__(self, warehouse_id: str, article_id: str, available: int, requested: int) -> None:
        super().__init__(
            f"Insufficient stock for article '{article_id}' in warehouse '{warehouse_id}': "
            f"available {available}, requested {requested}"
        )
        self.warehouse_id = warehouse_id
        self.article_id = article_id
        self.available = available
        self.requested = requested


class ConflictError(LedgerError):
    """Raised when a commit targets a snapshot revision that is no longer current."""


class ReplicationError(LedgerError):
    """Raised when the remote authority is unreachable or rejects a request."""


__all__ = [
    "LedgerError",
    "ValidationError",
    "BusinessRuleViolation",
    "MissingReferenceError",
    "AlreadyTransformed",
    "TerminalType",
    "ReturnNotAllowed",
    "AlreadyReturned",
    "DocumentReferenced",
    "DuplicateCode",
    "InvalidState",
    "InsufficientStock",
    "ConflictError",
    "ReplicationError",
]
