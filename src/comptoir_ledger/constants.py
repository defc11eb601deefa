"""Enumerations and fixed tables shared across the ledger modules.

Centralises domain constants so that the stock, document, payment and
persistence layers rely on a single source of truth for identifiers, the
document chain and the per-channel policies.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY = "MAD"

TAX_RATE = Decimal("0.20")
TAX_DIVISOR = Decimal("1") + TAX_RATE

CODE_DIGITS = 5
CLIENT_COUNTER_KEY = "clients"
CLIENT_CODE_PREFIX = "CL"


class Channel(str, Enum):
    """Enumerate the trading contexts a document belongs to."""

    SALES = "sales"
    PURCHASE = "purchase"
    INTERNAL = "internal"


class DocType(str, Enum):
    """Enumerate the five commercial document types."""

    QUOTE = "DV"
    ORDER = "BC"
    DELIVERY = "BL"
    RETURN = "BR"
    INVOICE = "FA"


class DocumentStatus(str, Enum):
    """Enumerate lifecycle statuses in progression order."""

    DRAFT = "draft"
    VALIDATED = "validated"
    ORDERED = "ordered"
    DELIVERED = "delivered"
    INVOICED = "invoiced"
    POSTED = "posted"


class PaymentStatus(str, Enum):
    """Derived settlement state of an invoice."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """Enumerate supported settlement mechanisms."""

    CASH = "cash"
    CHECK = "check"
    TRANSFER = "transfer"
    CARD = "card"
    OTHER = "other"


class AccountingInclusion(str, Enum):
    """Whether an invoice is declared in the accounting books."""

    INCLUDED = "included"
    EXCLUDED = "excluded"
    NOT_APPLICABLE = "not_applicable"


class ClientType(str, Enum):
    """Enumerate the kinds of registered clients."""

    COUNTER = "counter"
    WEB = "web"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    META = "Meta"
    CLIENTS = "Clients"
    WAREHOUSES = "Warehouses"
    ARTICLES = "Articles"
    STOCK = "Stock"
    DOCUMENTS = "Documents"
    DOCUMENT_LINES = "DocumentLines"
    PAYMENTS = "Payments"
    TRANSFERS = "Transfers"
    COUNTERS = "Counters"


# Forward edges of the document chain. BR and FA have no successor.
NEXT_TYPE: Mapping[DocType, DocType] = {
    DocType.QUOTE: DocType.ORDER,
    DocType.ORDER: DocType.DELIVERY,
    DocType.DELIVERY: DocType.INVOICE,
}

RETURNABLE_TYPES: frozenset[DocType] = frozenset({DocType.DELIVERY, DocType.INVOICE})

# Status given to a freshly transformed document and to its source.
TARGET_STATUS: Mapping[DocType, DocumentStatus] = {
    DocType.ORDER: DocumentStatus.ORDERED,
    DocType.DELIVERY: DocumentStatus.DELIVERED,
    DocType.INVOICE: DocumentStatus.INVOICED,
}


@dataclass(frozen=True)
class ChannelPolicy:
    """Per-channel rules consumed by the sequence, document and stock layers."""

    code_prefix: str
    delivery_sign: int
    invoice_accounting: AccountingInclusion
    include_tax: bool
    requires_client: bool
    requires_vendor: bool


CHANNEL_POLICIES: Mapping[Channel, ChannelPolicy] = {
    Channel.SALES: ChannelPolicy(
        code_prefix="V",
        delivery_sign=-1,
        invoice_accounting=AccountingInclusion.INCLUDED,
        include_tax=True,
        requires_client=True,
        requires_vendor=False,
    ),
    Channel.PURCHASE: ChannelPolicy(
        code_prefix="A",
        delivery_sign=1,
        invoice_accounting=AccountingInclusion.INCLUDED,
        include_tax=True,
        requires_client=False,
        requires_vendor=True,
    ),
    Channel.INTERNAL: ChannelPolicy(
        code_prefix="I",
        delivery_sign=-1,
        invoice_accounting=AccountingInclusion.EXCLUDED,
        include_tax=False,
        requires_client=False,
        requires_vendor=False,
    ),
}


def policy_for(channel: Channel) -> ChannelPolicy:
    """Return the policy row for ``channel``."""

    return CHANNEL_POLICIES[Channel(channel)]


def target_status(doc_type: DocType) -> DocumentStatus:
    """Status assigned when a document of ``doc_type`` is produced by a transformation."""

    return TARGET_STATUS.get(DocType(doc_type), DocumentStatus.VALIDATED)


def next_type(doc_type: DocType) -> Optional[DocType]:
    """Return the forward successor of ``doc_type`` or ``None`` when terminal."""

    return NEXT_TYPE.get(DocType(doc_type))


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY",
    "TAX_RATE",
    "TAX_DIVISOR",
    "CODE_DIGITS",
    "CLIENT_COUNTER_KEY",
    "CLIENT_CODE_PREFIX",
    "Channel",
    "DocType",
    "DocumentStatus",
    "PaymentStatus",
    "PaymentMethod",
    "AccountingInclusion",
    "ClientType",
    "SheetName",
    "NEXT_TYPE",
    "RETURNABLE_TYPES",
    "TARGET_STATUS",
    "ChannelPolicy",
    "CHANNEL_POLICIES",
    "policy_for",
    "target_status",
    "next_type",
]
