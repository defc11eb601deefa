"""In-memory records making up one ledger snapshot.

Every record is an immutable dataclass; changes go through
:func:`dataclasses.replace` so that a mutation unit can work on a copied
:class:`Snapshot` and discard it wholesale when an operation fails.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .constants import (
    DEFAULT_CURRENCY,
    AccountingInclusion,
    Channel,
    ClientType,
    DocType,
    DocumentStatus,
    PaymentMethod,
    PaymentStatus,
)


@dataclass(frozen=True)
class Company:
    """Operating company metadata."""

    name: str
    currency: str = DEFAULT_CURRENCY


@dataclass(frozen=True)
class Client:
    """A registered sales counterparty."""

    client_id: str
    code: str
    name: str
    client_type: ClientType = ClientType.COUNTER


@dataclass(frozen=True)
class Warehouse:
    """A stock location."""

    warehouse_id: str
    name: str


@dataclass(frozen=True)
class Article:
    """A catalogue article with its tax-inclusive list price."""

    article_id: str
    sku: str
    name: str
    unit: str
    price: Decimal


@dataclass(frozen=True)
class DocumentLine:
    """One article line on a document; amounts are tax-inclusive."""

    line_id: str
    article_id: str
    description: str
    quantity: int
    unit_price: Decimal
    discount: Decimal = Decimal("0")


@dataclass(frozen=True)
class Document:
    """A commercial document of one type in one channel."""

    document_id: str
    code: str
    doc_type: DocType
    channel: Channel
    issue_date: date
    status: DocumentStatus
    lines: Tuple[DocumentLine, ...] = ()
    warehouse_id: Optional[str] = None
    client_id: Optional[str] = None
    vendor_name: Optional[str] = None
    notes: Optional[str] = None
    source_id: Optional[str] = None
    include_tax: bool = False
    accounting: AccountingInclusion = AccountingInclusion.NOT_APPLICABLE
    total_paid: Decimal = Decimal("0")
    payment_status: PaymentStatus = PaymentStatus.UNPAID


@dataclass(frozen=True)
class Payment:
    """A settlement event against exactly one invoice."""

    payment_id: str
    document_id: str
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    check_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransferLine:
    """Quantity of one article moved by a transfer."""

    article_id: str
    quantity: int


@dataclass(frozen=True)
class TransferRecord:
    """History entry for a warehouse-to-warehouse stock transfer."""

    transfer_id: str
    transfer_date: date
    from_warehouse_id: str
    to_warehouse_id: str
    lines: Tuple[TransferLine, ...]


StockKey = Tuple[str, str]


@dataclass
class Snapshot:
    """The full mutable state the ledger components read and write."""

    company: Company = field(default_factory=lambda: Company(name=""))
    clients: List[Client] = field(default_factory=list)
    warehouses: List[Warehouse] = field(default_factory=list)
    articles: List[Article] = field(default_factory=list)
    stock: Dict[StockKey, int] = field(default_factory=dict)
    documents: List[Document] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    transfers: List[TransferRecord] = field(default_factory=list)
    counters: Dict[str, int] = field(default_factory=dict)
    seeded: bool = False
    revision: int = 0

    def copy(self) -> "Snapshot":
        """Return an independent working copy.

        Records are immutable, so copying the containers is enough.
        """

        return Snapshot(
            company=self.company,
            clients=list(self.clients),
            warehouses=list(self.warehouses),
            articles=list(self.articles),
            stock=dict(self.stock),
            documents=list(self.documents),
            payments=list(self.payments),
            transfers=list(self.transfers),
            counters=dict(self.counters),
            seeded=self.seeded,
            revision=self.revision,
        )

    def find_client(self, client_id: str) -> Optional[Client]:
        return next((client for client in self.clients if client.client_id == client_id), None)

    def find_warehouse(self, warehouse_id: str) -> Optional[Warehouse]:
        return next((depot for depot in self.warehouses if depot.warehouse_id == warehouse_id), None)

    def find_article(self, article_id: str) -> Optional[Article]:
        return next((article for article in self.articles if article.article_id == article_id), None)


__all__ = [
    "Company",
    "Client",
    "Warehouse",
    "Article",
    "DocumentLine",
    "Document",
    "Payment",
    "TransferLine",
    "TransferRecord",
    "StockKey",
    "Snapshot",
]
