"""Document Store: the canonical document collection of a snapshot.

This module is the only place that inserts, replaces or removes documents,
and the only one that assigns identity, code and back-reference. Lookups,
filtering and the deletion guard live here as well, together with the
authoring helpers used to draft and edit documents before they progress.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from . import log, sequence
from .constants import (
    AccountingInclusion,
    Channel,
    DocType,
    DocumentStatus,
    policy_for,
)
from .errors import (
    DocumentReferenced,
    DuplicateCode,
    InvalidState,
    MissingReferenceError,
    ValidationError,
)
from .models import Document, DocumentLine, Snapshot

ORDERINGS = ("code", "issue_date")


@dataclass(frozen=True)
class LineDraft:
    """Caller intent for one document line before it is snapshotted."""

    article_id: str
    quantity: int
    unit_price: Optional[Decimal] = None
    discount: Decimal = Decimal("0")


def new_document_id() -> str:
    """Return a fresh opaque document identity."""

    return uuid.uuid4().hex


def create(snapshot: Snapshot, document: Document) -> Document:
    """Append ``document`` to the store.

    Raises:
        DuplicateCode: If the code or the identity is already stored.
    """

    for existing in snapshot.documents:
        if existing.code == document.code:
            log.error("Refusing duplicate document code '%s'", document.code)
            raise DuplicateCode(f"Document code already exists: {document.code}")
        if existing.document_id == document.document_id:
            log.error("Refusing duplicate document id '%s'", document.document_id)
            raise DuplicateCode(f"Document id already exists: {document.document_id}")
    snapshot.documents.append(document)
    return document


def get(snapshot: Snapshot, document_id: str) -> Document:
    """Resolve a document by identity.

    Raises:
        MissingReferenceError: If no stored document has ``document_id``.
    """

    for document in snapshot.documents:
        if document.document_id == document_id:
            return document
    log.warning("Document lookup failed for id '%s'", document_id)
    raise MissingReferenceError(f"Unknown document id: {document_id}")


def find_by_code(snapshot: Snapshot, code: str) -> Document:
    """Resolve a document by its human code."""

    for document in snapshot.documents:
        if document.code == code:
            return document
    log.warning("Document lookup failed for code '%s'", code)
    raise MissingReferenceError(f"Unknown document code: {code}")


def list_documents(
    snapshot: Snapshot,
    *,
    channel: Optional[Channel] = None,
    doc_type: Optional[DocType] = None,
    order_by: Optional[str] = None,
) -> List[Document]:
    """Return documents matching the optional filters.

    Results keep insertion order unless ``order_by`` names one of
    :data:`ORDERINGS`; the sort is stable either way.
    """

    if order_by is not None and order_by not in ORDERINGS:
        raise ValidationError(f"Unsupported ordering: {order_by}")
    channel = Channel(channel) if channel is not None else None
    doc_type = DocType(doc_type) if doc_type is not None else None
    result = [
        document
        for document in snapshot.documents
        if (channel is None or document.channel == channel)
        and (doc_type is None or document.doc_type == doc_type)
    ]
    if order_by is not None:
        result.sort(key=lambda document: getattr(document, order_by))
    return result


def referencing(snapshot: Snapshot, document_id: str) -> List[Document]:
    """Every document whose back-reference equals ``document_id``."""

    return [document for document in snapshot.documents if document.source_id == document_id]


def successor_of(snapshot: Snapshot, document_id: str) -> Optional[Document]:
    """The forward (non-return) document created from ``document_id``, if any."""

    return next(
        (doc for doc in referencing(snapshot, document_id) if doc.doc_type != DocType.RETURN),
        None,
    )


def return_of(snapshot: Snapshot, document_id: str) -> Optional[Document]:
    """The return document created from ``document_id``, if any."""

    return next(
        (doc for doc in referencing(snapshot, document_id) if doc.doc_type == DocType.RETURN),
        None,
    )


def replace_document(snapshot: Snapshot, document: Document) -> Document:
    """Swap the stored record that shares ``document``'s identity.

    Identity, code and back-reference are immutable; a replacement that tries
    to change them is refused.
    """

    for index, existing in enumerate(snapshot.documents):
        if existing.document_id != document.document_id:
            continue
        if existing.code != document.code or existing.source_id != document.source_id:
            log.error("Attempted to rewrite identity fields of '%s'", existing.code)
            raise InvalidState(f"Code and back-reference of {existing.code} are immutable")
        snapshot.documents[index] = document
        return document
    raise MissingReferenceError(f"Unknown document id: {document.document_id}")


def delete(snapshot: Snapshot, document_id: str) -> Document:
    """Hard-remove a document that nothing references.

    Raises:
        DocumentReferenced: If another document was created from it.
        InvalidState: If payments were recorded against the document.
        MissingReferenceError: If the document is unknown.
    """

    document = get(snapshot, document_id)
    dependants = referencing(snapshot, document_id)
    if dependants:
        log.warning(
            "Refusing to delete '%s': referenced by %s",
            document.code,
            ", ".join(dep.code for dep in dependants),
        )
        raise DocumentReferenced(f"Document {document.code} was already transformed; cannot delete")
    if any(payment.document_id == document_id for payment in snapshot.payments):
        log.warning("Refusing to delete '%s': payments recorded", document.code)
        raise InvalidState(f"Invoice {document.code} has recorded payments; cannot delete")
    snapshot.documents = [doc for doc in snapshot.documents if doc.document_id != document_id]
    log.info("Deleted document '%s'", document.code)
    return document


def build_lines(snapshot: Snapshot, drafts: Sequence[LineDraft]) -> tuple[DocumentLine, ...]:
    """Turn line drafts into stored lines, snapshotting article descriptions.

    A draft without a unit price takes the article's current list price.
    """

    if not drafts:
        raise ValidationError("A document needs at least one line")
    lines: List[DocumentLine] = []
    for draft in drafts:
        article = snapshot.find_article(draft.article_id)
        if article is None:
            raise MissingReferenceError(f"Unknown article id: {draft.article_id}")
        if int(draft.quantity) != draft.quantity or draft.quantity <= 0:
            raise ValidationError("Line quantity must be a positive integer")
        unit_price = Decimal(draft.unit_price) if draft.unit_price is not None else article.price
        discount = Decimal(draft.discount)
        if unit_price < 0:
            raise ValidationError("Unit price must be zero or positive")
        if discount < 0 or discount > unit_price:
            raise ValidationError("Discount must be between zero and the unit price")
        lines.append(
            DocumentLine(
                line_id=uuid.uuid4().hex,
                article_id=article.article_id,
                description=article.name,
                quantity=int(draft.quantity),
                unit_price=unit_price,
                discount=discount,
            )
        )
    return tuple(lines)


def _validate_counterparty(
    snapshot: Snapshot,
    channel: Channel,
    client_id: Optional[str],
    vendor_name: Optional[str],
) -> None:
    policy = policy_for(channel)
    if policy.requires_client and not client_id:
        raise ValidationError("Sales documents require a client")
    if client_id and snapshot.find_client(client_id) is None:
        raise MissingReferenceError(f"Unknown client id: {client_id}")
    if policy.requires_vendor and not (vendor_name or "").strip():
        raise ValidationError("Purchase documents require a vendor name")


def _validate_warehouse(snapshot: Snapshot, warehouse_id: Optional[str]) -> None:
    if warehouse_id and snapshot.find_warehouse(warehouse_id) is None:
        raise MissingReferenceError(f"Unknown warehouse id: {warehouse_id}")


def resolve_accounting(channel: Channel, doc_type: DocType) -> AccountingInclusion:
    """Accounting inclusion a new document starts with; only invoices carry one."""

    if DocType(doc_type) != DocType.INVOICE:
        return AccountingInclusion.NOT_APPLICABLE
    return policy_for(channel).invoice_accounting


def new_document(
    snapshot: Snapshot,
    *,
    channel: Channel,
    doc_type: DocType,
    lines: Sequence[LineDraft],
    warehouse_id: Optional[str] = None,
    client_id: Optional[str] = None,
    vendor_name: Optional[str] = None,
    notes: Optional[str] = None,
    include_tax: Optional[bool] = None,
    issue_date: Optional[date] = None,
) -> Document:
    """Author a draft document and store it.

    Args:
        snapshot (Snapshot): Working snapshot to mutate.
        channel (Channel): Trading channel.
        doc_type (DocType): Any type except ``BR``; returns are only created
            from an existing delivery or invoice.
        lines (Sequence[LineDraft]): At least one line.
        warehouse_id (str | None): Warehouse the document moves stock in.
        client_id (str | None): Registered client, required for sales.
        vendor_name (str | None): Free-text vendor, required for purchases.
        notes (str | None): Free-text notes.
        include_tax (bool | None): Tax flag; defaults to the channel policy.
        issue_date (date | None): Defaults to today (UTC).

    Returns:
        Document: The stored draft.
    """

    channel = Channel(channel)
    doc_type = DocType(doc_type)
    if doc_type == DocType.RETURN:
        raise ValidationError("Returns are created from a delivery or an invoice")
    _validate_counterparty(snapshot, channel, client_id, vendor_name)
    _validate_warehouse(snapshot, warehouse_id)
    built_lines = build_lines(snapshot, lines)
    issue_date = issue_date or datetime.now(UTC).date()

    document = Document(
        document_id=new_document_id(),
        code=sequence.next_document_code(snapshot, channel, doc_type),
        doc_type=doc_type,
        channel=channel,
        issue_date=issue_date,
        status=DocumentStatus.DRAFT,
        lines=built_lines,
        warehouse_id=warehouse_id,
        client_id=client_id,
        vendor_name=(vendor_name or "").strip() or None,
        notes=notes,
        include_tax=policy_for(channel).include_tax if include_tax is None else bool(include_tax),
        accounting=resolve_accounting(channel, doc_type),
    )
    create(snapshot, document)
    log.info("Created %s document '%s' with %d line(s)", channel.value, document.code, len(built_lines))
    return document


def _require_unreferenced(snapshot: Snapshot, document: Document) -> None:
    if referencing(snapshot, document.document_id):
        log.warning("Refusing to edit '%s': already transformed", document.code)
        raise DocumentReferenced(f"Document {document.code} was already transformed; cannot edit")


def _moved_stock(document: Document) -> bool:
    return document.doc_type in (DocType.DELIVERY, DocType.RETURN) or document.status == DocumentStatus.DELIVERED


def update_content(
    snapshot: Snapshot,
    document_id: str,
    *,
    lines: Optional[Sequence[LineDraft]] = None,
    warehouse_id: Optional[str] = None,
    client_id: Optional[str] = None,
    vendor_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> Document:
    """Edit lines or counterparty of a document nothing has been created from.

    Arguments left as ``None`` keep their stored value. Lines and warehouse
    of deliveries and returns are fixed, since their stock already moved.

    Raises:
        DocumentReferenced: Something was already created from the document.
        InvalidState: Payments exist, or a stock-moving document would
            change its lines or warehouse.
    """

    document = get(snapshot, document_id)
    _require_unreferenced(snapshot, document)
    if document.total_paid > 0:
        raise InvalidState(f"Invoice {document.code} already has payments; cannot edit")
    if (lines is not None or warehouse_id is not None) and _moved_stock(document):
        log.warning("Refusing to edit lines or warehouse of '%s': stock already moved", document.code)
        raise InvalidState(f"Document {document.code} already moved stock; create a return instead")

    changes: dict[str, object] = {}
    if lines is not None:
        changes["lines"] = build_lines(snapshot, lines)
    if warehouse_id is not None:
        _validate_warehouse(snapshot, warehouse_id)
        changes["warehouse_id"] = warehouse_id
    if client_id is not None or vendor_name is not None:
        new_client = client_id if client_id is not None else document.client_id
        new_vendor = vendor_name if vendor_name is not None else document.vendor_name
        _validate_counterparty(snapshot, document.channel, new_client, new_vendor)
        changes["client_id"] = new_client
        changes["vendor_name"] = (new_vendor or "").strip() or None
    if notes is not None:
        changes["notes"] = notes

    updated = replace_document(snapshot, replace(document, **changes))
    log.info("Updated document '%s' (%s)", document.code, ", ".join(sorted(changes)) or "no changes")
    return updated


def set_tax_inclusion(snapshot: Snapshot, document_id: str, include_tax: bool) -> Document:
    """Switch the tax flag of a document that has not progressed or been paid."""

    document = get(snapshot, document_id)
    _require_unreferenced(snapshot, document)
    if document.total_paid > 0:
        raise InvalidState(f"Invoice {document.code} already has payments; cannot change tax")
    updated = replace_document(snapshot, replace(document, include_tax=bool(include_tax)))
    log.info("Tax inclusion of '%s' set to %s", document.code, updated.include_tax)
    return updated


def set_accounting_inclusion(snapshot: Snapshot, document_id: str, included: bool) -> Document:
    """Declare or exclude an invoice from the accounting books."""

    document = get(snapshot, document_id)
    if document.doc_type != DocType.INVOICE:
        raise InvalidState(f"Only invoices carry an accounting flag, not {document.code}")
    accounting = AccountingInclusion.INCLUDED if included else AccountingInclusion.EXCLUDED
    updated = replace_document(snapshot, replace(document, accounting=accounting))
    log.info("Accounting inclusion of '%s' set to %s", document.code, accounting.value)
    return updated


def post_invoice(snapshot: Snapshot, document_id: str) -> Document:
    """Mark an invoiced ``FA`` as posted to the books."""

    document = get(snapshot, document_id)
    if document.doc_type != DocType.INVOICE:
        raise InvalidState(f"Only invoices can be posted, not {document.code}")
    if document.status == DocumentStatus.POSTED:
        raise InvalidState(f"Invoice {document.code} is already posted")
    updated = replace_document(snapshot, replace(document, status=DocumentStatus.POSTED))
    log.info("Posted invoice '%s'", document.code)
    return updated


def iter_invoices(snapshot: Snapshot, *, accounting_only: bool = False) -> Iterable[Document]:
    """Yield invoices, optionally only those declared in the books."""

    for document in snapshot.documents:
        if document.doc_type != DocType.INVOICE:
            continue
        if accounting_only and document.accounting != AccountingInclusion.INCLUDED:
            continue
        yield document
