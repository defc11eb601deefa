"""Business logic layer for Comptoir Ledger.

This module orchestrates the ledger components. Every write runs inside a
:func:`mutation` unit: the in-process lock is taken, the current snapshot is
copied, components mutate the copy, and the copy is committed through the
snapshot store in one durable write guarded by a revision check. A failing
operation leaves the committed snapshot untouched. Committed snapshots are
handed to the replicator, which never blocks or fails the caller.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import httpx

from . import data_manager, documents, log, payments, stock, transformations
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    Channel,
    ClientType,
    DocType,
    PaymentMethod,
)
from .documents import LineDraft
from .errors import DuplicateCode, MissingReferenceError, ReplicationError, ValidationError
from .models import Article, Client, Document, Payment, Snapshot, TransferLine, TransferRecord, Warehouse
from .persistence import SnapshotStore, WorkbookSnapshotStore
from .replication import NullReplicator, RemoteClient, ReplicationHealth, Replicator
from .sequence import next_client_code
from .tax import DocumentTotals, document_totals
from .wire import snapshot_from_wire, snapshot_to_wire


AnyReplicator = Union[Replicator, NullReplicator]


@dataclass
class RuntimeContext:
    """Configuration, store, current snapshot and replicator used by the BLL."""

    settings: data_manager.ConfigSettings
    store: SnapshotStore
    snapshot: Snapshot
    replicator: AnyReplicator = field(default_factory=NullReplicator)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)


@dataclass(frozen=True)
class RegisterClientCommand:
    """User intent for registering a sales client."""

    name: str
    client_type: ClientType = ClientType.COUNTER


@dataclass(frozen=True)
class RegisterWarehouseCommand:
    """User intent for registering a stock location."""

    name: str
    warehouse_id: Optional[str] = None


@dataclass(frozen=True)
class RegisterArticleCommand:
    """User intent for adding an article to the catalogue."""

    sku: str
    name: str
    price: Decimal
    unit: str = "u"


@dataclass(frozen=True)
class CreateDocumentCommand:
    """User intent for authoring a new draft document."""

    channel: Channel
    doc_type: DocType
    lines: Sequence[LineDraft]
    warehouse_id: Optional[str] = None
    client_id: Optional[str] = None
    vendor_name: Optional[str] = None
    notes: Optional[str] = None
    include_tax: Optional[bool] = None
    issue_date: Optional[date] = None


@dataclass(frozen=True)
class UpdateDocumentCommand:
    """User intent for editing a document nothing was created from yet."""

    document_id: str
    lines: Optional[Sequence[LineDraft]] = None
    warehouse_id: Optional[str] = None
    client_id: Optional[str] = None
    vendor_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for settling (part of) an invoice."""

    invoice_id: str
    amount: Decimal
    method: PaymentMethod
    payment_date: Optional[date] = None
    check_number: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class StockAdjustmentCommand:
    """User intent for a manual stock correction."""

    warehouse_id: str
    article_id: str
    delta: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class TransferCommand:
    """User intent for moving stock between two warehouses."""

    from_warehouse_id: str
    to_warehouse_id: str
    lines: Sequence[TransferLine]
    transfer_date: Optional[date] = None


def build_replicator(
    settings: data_manager.ConfigSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    autostart: bool = True,
) -> AnyReplicator:
    """Create the replicator described by ``[Sync]``; no remote means no-op."""

    if not settings.remote_url:
        log.info("No remote configured; running local-only")
        return NullReplicator()
    client = RemoteClient(settings.remote_url, timeout=settings.timeout, transport=transport)
    return Replicator(
        client,
        debounce=settings.debounce_seconds,
        max_attempts=settings.max_attempts,
        retry_interval=settings.retry_interval_seconds,
        autostart=autostart,
    )


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    autostart: bool = True,
) -> RuntimeContext:
    """Load configuration settings, the workbook store and the replicator.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        transport (httpx.BaseTransport | None): Optional httpx transport for
            the remote client.
        autostart (bool): Start the replication worker thread.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = WorkbookSnapshotStore(settings.data_file)
    snapshot = store.load()
    replicator = build_replicator(settings, transport=transport, autostart=autostart)
    log.info("Loaded runtime context for workbook '%s' (revision %d)", settings.data_file, snapshot.revision)
    return RuntimeContext(settings=settings, store=store, snapshot=snapshot, replicator=replicator)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate configuration and workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the configured or stored schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    for origin, version in (
        ("configuration", context.settings.schema_version),
        ("workbook", context.store.schema_version),
    ):
        if version != EXPECTED_SCHEMA_VERSION:
            log.error(
                "Schema mismatch in %s: expected %s, found %s",
                origin,
                EXPECTED_SCHEMA_VERSION,
                version,
            )
            raise RuntimeError(
                "Schema mismatch in %s: expected %s, found %s" % (origin, EXPECTED_SCHEMA_VERSION, version)
            )

    log.debug("Schema version '%s' validated", EXPECTED_SCHEMA_VERSION)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the committed snapshot from the store.

    Callers use this after a :class:`~comptoir_ledger.errors.ConflictError`
    before retrying their operation.
    """

    with context.lock:
        context.snapshot = context.store.load()
    log.info("Reloaded snapshot at revision %d", context.snapshot.revision)
    return context


def close_context(context: RuntimeContext) -> None:
    """Stop replication, pushing what is still pending, and release the client."""

    context.replicator.close(flush=True)
    if context.replicator.client is not None:
        context.replicator.client.close()


@contextmanager
def mutation(context: RuntimeContext) -> Iterator[Snapshot]:
    """Run one operation against a working copy and commit it atomically.

    Yields:
        Snapshot: The working copy to mutate.

    Raises:
        ConflictError: If the store moved past the context's revision; the
            working copy is discarded.
    """

    with context.lock:
        base_revision = context.snapshot.revision
        working = context.snapshot.copy()
        yield working
        committed = context.store.commit(working, expected_revision=base_revision)
        context.snapshot = committed
    context.replicator.schedule(committed)


def resolve_document_id(snapshot: Snapshot, reference: str) -> str:
    """Accept either a document identity or its human code."""

    if any(document.document_id == reference for document in snapshot.documents):
        return reference
    return documents.find_by_code(snapshot, reference).document_id


def _require_text(value: Optional[str], label: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def register_client(context: RuntimeContext, command: RegisterClientCommand) -> Client:
    name = _require_text(command.name, "Client name")
    with mutation(context) as snapshot:
        client = Client(
            client_id=uuid.uuid4().hex,
            code=next_client_code(snapshot),
            name=name,
            client_type=ClientType(command.client_type),
        )
        snapshot.clients.append(client)
    log.info("Registered client '%s' (%s)", client.name, client.code)
    return client


def register_warehouse(context: RuntimeContext, command: RegisterWarehouseCommand) -> Warehouse:
    name = _require_text(command.name, "Warehouse name")
    with mutation(context) as snapshot:
        warehouse_id = (command.warehouse_id or "").strip() or uuid.uuid4().hex
        if snapshot.find_warehouse(warehouse_id) is not None:
            log.error("Refusing duplicate warehouse id '%s'", warehouse_id)
            raise DuplicateCode(f"Warehouse id already exists: {warehouse_id}")
        warehouse = Warehouse(warehouse_id=warehouse_id, name=name)
        snapshot.warehouses.append(warehouse)
    log.info("Registered warehouse '%s' (%s)", warehouse.name, warehouse.warehouse_id)
    return warehouse


def register_article(context: RuntimeContext, command: RegisterArticleCommand) -> Article:
    sku = _require_text(command.sku, "SKU")
    name = _require_text(command.name, "Article name")
    price = Decimal(command.price)
    if price < 0:
        raise ValidationError("Article price must be zero or positive")
    with mutation(context) as snapshot:
        if any(article.sku == sku for article in snapshot.articles):
            log.error("Refusing duplicate SKU '%s'", sku)
            raise DuplicateCode(f"SKU already exists: {sku}")
        article = Article(
            article_id=uuid.uuid4().hex,
            sku=sku,
            name=name,
            unit=(command.unit or "u").strip() or "u",
            price=price,
        )
        snapshot.articles.append(article)
    log.info("Registered article '%s' (%s) at %s", article.name, article.sku, article.price)
    return article


def create_document(context: RuntimeContext, command: CreateDocumentCommand) -> Document:
    """Author a draft document, defaulting the warehouse from configuration."""

    warehouse_id = command.warehouse_id or context.settings.default_warehouse_id
    with mutation(context) as snapshot:
        return documents.new_document(
            snapshot,
            channel=command.channel,
            doc_type=command.doc_type,
            lines=command.lines,
            warehouse_id=warehouse_id,
            client_id=command.client_id,
            vendor_name=command.vendor_name,
            notes=command.notes,
            include_tax=command.include_tax,
            issue_date=command.issue_date,
        )


def update_document(context: RuntimeContext, command: UpdateDocumentCommand) -> Document:
    with mutation(context) as snapshot:
        return documents.update_content(
            snapshot,
            resolve_document_id(snapshot, command.document_id),
            lines=command.lines,
            warehouse_id=command.warehouse_id,
            client_id=command.client_id,
            vendor_name=command.vendor_name,
            notes=command.notes,
        )


def transform_document(
    context: RuntimeContext,
    reference: str,
    *,
    on: Optional[date] = None,
    check_stock: Optional[bool] = None,
) -> Document:
    """Advance a document one step along its chain.

    ``check_stock`` defaults to ``[Defaults] ValidateStock``.
    """

    if check_stock is None:
        check_stock = context.settings.validate_stock
    with mutation(context) as snapshot:
        return transformations.transform(
            snapshot,
            resolve_document_id(snapshot, reference),
            on=on,
            check_stock=check_stock,
        )


def create_return(context: RuntimeContext, reference: str, *, on: Optional[date] = None) -> Document:
    with mutation(context) as snapshot:
        return transformations.create_return(snapshot, resolve_document_id(snapshot, reference), on=on)


def delete_document(context: RuntimeContext, reference: str) -> Document:
    with mutation(context) as snapshot:
        return documents.delete(snapshot, resolve_document_id(snapshot, reference))


def record_payment(context: RuntimeContext, command: PaymentCommand) -> Payment:
    with mutation(context) as snapshot:
        return payments.record(
            snapshot,
            resolve_document_id(snapshot, command.invoice_id),
            command.amount,
            command.method,
            command.payment_date,
            check_number=command.check_number,
            notes=command.notes,
        )


def post_invoice(context: RuntimeContext, reference: str) -> Document:
    with mutation(context) as snapshot:
        return documents.post_invoice(snapshot, resolve_document_id(snapshot, reference))


def set_tax_inclusion(context: RuntimeContext, reference: str, include_tax: bool) -> Document:
    with mutation(context) as snapshot:
        return documents.set_tax_inclusion(snapshot, resolve_document_id(snapshot, reference), include_tax)


def set_accounting_inclusion(context: RuntimeContext, reference: str, included: bool) -> Document:
    with mutation(context) as snapshot:
        return documents.set_accounting_inclusion(snapshot, resolve_document_id(snapshot, reference), included)


def _require_stock_references(snapshot: Snapshot, warehouse_id: str, article_id: str) -> None:
    if snapshot.find_warehouse(warehouse_id) is None:
        raise MissingReferenceError(f"Unknown warehouse id: {warehouse_id}")
    if snapshot.find_article(article_id) is None:
        raise MissingReferenceError(f"Unknown article id: {article_id}")


def adjust_stock(context: RuntimeContext, command: StockAdjustmentCommand) -> int:
    """Apply a manual signed correction and return the new on-hand quantity."""

    if int(command.delta) != command.delta or command.delta == 0:
        raise ValidationError("Adjustment must be a non-zero integer")
    with mutation(context) as snapshot:
        _require_stock_references(snapshot, command.warehouse_id, command.article_id)
        quantity = stock.adjust(snapshot, command.warehouse_id, command.article_id, int(command.delta))
    log.info(
        "Manual stock adjustment %+d on %s/%s (%s)",
        command.delta,
        command.warehouse_id,
        command.article_id,
        command.reason or "no reason given",
    )
    return quantity


def remove_stock(context: RuntimeContext, warehouse_id: str, article_id: str) -> None:
    with mutation(context) as snapshot:
        stock.remove(snapshot, warehouse_id, article_id)


def transfer_stock(context: RuntimeContext, command: TransferCommand) -> TransferRecord:
    with mutation(context) as snapshot:
        return stock.transfer(
            snapshot,
            command.from_warehouse_id,
            command.to_warehouse_id,
            command.lines,
            on=command.transfer_date,
        )


def list_documents(
    context: RuntimeContext,
    *,
    channel: Optional[Channel] = None,
    doc_type: Optional[DocType] = None,
    order_by: Optional[str] = None,
    accounting_only: bool = False,
) -> List[Document]:
    """Return documents matching the filters.

    With ``accounting_only`` only invoices declared in the books are kept.
    """

    result = documents.list_documents(context.snapshot, channel=channel, doc_type=doc_type, order_by=order_by)
    if accounting_only:
        declared = {doc.document_id for doc in documents.iter_invoices(context.snapshot, accounting_only=True)}
        result = [doc for doc in result if doc.document_id in declared]
    return result


def get_document(context: RuntimeContext, reference: str) -> Document:
    return documents.get(context.snapshot, resolve_document_id(context.snapshot, reference))


def document_links(context: RuntimeContext, reference: str) -> tuple[Optional[Document], Optional[Document]]:
    """Return the forward successor and the return created from a document."""

    document_id = resolve_document_id(context.snapshot, reference)
    return (
        documents.successor_of(context.snapshot, document_id),
        documents.return_of(context.snapshot, document_id),
    )


def get_totals(context: RuntimeContext, reference: str) -> DocumentTotals:
    return document_totals(get_document(context, reference))


def list_payments(context: RuntimeContext, reference: str) -> List[Payment]:
    return payments.payments_for(context.snapshot, resolve_document_id(context.snapshot, reference))


def remaining_balance(context: RuntimeContext, reference: str) -> Decimal:
    return payments.remaining_balance(context.snapshot, resolve_document_id(context.snapshot, reference))


def stock_levels(context: RuntimeContext, warehouse_id: Optional[str] = None) -> List[tuple[str, str, int]]:
    return stock.entries_for(context.snapshot, warehouse_id)


def replication_health(context: RuntimeContext) -> ReplicationHealth:
    return context.replicator.health()


def remote_reachable(context: RuntimeContext) -> Optional[bool]:
    """Ask the remote health endpoint; ``None`` when no remote is configured."""

    client = context.replicator.client
    if client is None:
        return None
    return client.check_health()


def _require_remote(context: RuntimeContext) -> RemoteClient:
    client = context.replicator.client
    if client is None:
        log.error("Remote operation requested without [Sync] RemoteURL")
        raise ReplicationError("No remote configured")
    return client


def _adopt(context: RuntimeContext, snapshot: Snapshot) -> Snapshot:
    with context.lock:
        context.snapshot = context.store.replace(snapshot)
    return context.snapshot


def pull_remote(context: RuntimeContext) -> Snapshot:
    """Replace the local snapshot with the remote authority's copy.

    Raises:
        ReplicationError: If no remote is configured, it is unreachable, or it
            holds no snapshot yet.
    """

    remote = _require_remote(context).fetch_snapshot()
    if remote is None:
        raise ReplicationError("Remote holds no snapshot")
    adopted = _adopt(context, remote)
    log.info("Pulled remote snapshot (%d documents)", len(adopted.documents))
    return adopted


def backup_remote(context: RuntimeContext) -> Dict[str, Any]:
    """Download the remote backup document as raw JSON-compatible data."""

    return _require_remote(context).download_backup()


def local_backup(context: RuntimeContext) -> Dict[str, Any]:
    """Encode the committed local snapshot in the backup/wire shape."""

    return snapshot_to_wire(context.snapshot)


def restore_remote(context: RuntimeContext, payload: Dict[str, Any]) -> Snapshot:
    """Restore ``payload`` on the remote and adopt it locally.

    The payload is decoded first so that a malformed backup is rejected
    before anything is sent or written.
    """

    snapshot = snapshot_from_wire(payload)
    _require_remote(context).restore_backup(payload)
    adopted = _adopt(context, snapshot)
    log.info("Restored backup (%d documents)", len(adopted.documents))
    return adopted
