"""Transformation Engine: moves documents along ``DV -> BC -> BL -> FA``.

One engine serves every channel; the differences between sales, purchase and
internal documents come from :data:`~comptoir_ledger.constants.CHANNEL_POLICIES`.
All rule checks run before the first mutation, and the caller commits the
new document, the source status and the stock deltas as one snapshot.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Optional

from . import documents, log, sequence, stock
from .constants import (
    RETURNABLE_TYPES,
    DocType,
    DocumentStatus,
    PaymentStatus,
    next_type,
    policy_for,
    target_status,
)
from .errors import AlreadyReturned, AlreadyTransformed, ReturnNotAllowed, TerminalType
from .models import Document, Snapshot


def _today() -> date:
    return datetime.now(UTC).date()


def _derive(source: Document, snapshot: Snapshot, doc_type: DocType, status: DocumentStatus, on: date) -> Document:
    """Copy ``source`` into a new document of ``doc_type`` pointing back at it."""

    return replace(
        source,
        document_id=documents.new_document_id(),
        code=sequence.next_document_code(snapshot, source.channel, doc_type),
        doc_type=doc_type,
        issue_date=on,
        status=status,
        source_id=source.document_id,
        accounting=documents.resolve_accounting(source.channel, doc_type),
        total_paid=Decimal("0"),
        payment_status=PaymentStatus.UNPAID,
    )


def _apply_movement(snapshot: Snapshot, document: Document, sign: int) -> None:
    if document.warehouse_id is None:
        log.warning("Document '%s' has no warehouse; stock left unchanged", document.code)
        return
    for line in document.lines:
        stock.adjust(snapshot, document.warehouse_id, line.article_id, sign * line.quantity)


def _require_outbound_stock(snapshot: Snapshot, document: Document) -> None:
    if document.warehouse_id is None:
        return
    needed: dict[str, int] = {}
    for line in document.lines:
        needed[line.article_id] = needed.get(line.article_id, 0) + line.quantity
    for article_id, quantity in needed.items():
        stock.require_available(snapshot, document.warehouse_id, article_id, quantity)


def transform(
    snapshot: Snapshot,
    source_id: str,
    *,
    on: Optional[date] = None,
    check_stock: bool = False,
) -> Document:
    """Advance ``source_id`` to the next document type of its chain.

    Args:
        snapshot (Snapshot): Working snapshot to mutate.
        source_id (str): Identity of the document to progress.
        on (date | None): Issue date of the new document, today by default.
        check_stock (bool): When the target is a delivery that ships goods
            out, verify availability first and refuse with
            :class:`~comptoir_ledger.errors.InsufficientStock`.

    Returns:
        Document: The newly created successor.

    Raises:
        AlreadyTransformed: Some document, successor or return, already
            references the source.
        TerminalType: The source type has no forward edge.
        MissingReferenceError: Unknown source.
    """

    source = documents.get(snapshot, source_id)
    existing = documents.referencing(snapshot, source_id)
    if existing:
        log.warning("Transformation refused: '%s' already referenced by '%s'", source.code, existing[0].code)
        raise AlreadyTransformed(f"Document {source.code} is already referenced by {existing[0].code}")
    target = next_type(source.doc_type)
    if target is None:
        log.warning("Transformation refused: '%s' is terminal", source.code)
        raise TerminalType(f"Document type {source.doc_type.value} cannot be transformed")

    policy = policy_for(source.channel)
    if target == DocType.DELIVERY and check_stock and policy.delivery_sign < 0:
        _require_outbound_stock(snapshot, source)

    status = target_status(target)
    successor = documents.create(snapshot, _derive(source, snapshot, target, status, on or _today()))
    documents.replace_document(snapshot, replace(source, status=status))

    if target == DocType.DELIVERY:
        _apply_movement(snapshot, successor, policy.delivery_sign)

    log.info("Transformed '%s' into '%s' (%s)", source.code, successor.code, status.value)
    return successor


def create_return(snapshot: Snapshot, source_id: str, *, on: Optional[date] = None) -> Document:
    """Create the ``BR`` sibling of a delivery or invoice and reverse its stock.

    A return is allowed from a delivery or an invoice in any status, as long
    as nothing references the source yet; a delivery that was already
    invoiced is returned through its invoice. Each line reverses the
    delivery movement: goods come back in for sales and internal documents
    and go back out for purchases.

    Raises:
        ReturnNotAllowed: The source is neither a delivery nor an invoice.
        AlreadyReturned: A return already exists for the source.
        AlreadyTransformed: The source already has a forward successor.
        MissingReferenceError: Unknown source.
    """

    source = documents.get(snapshot, source_id)
    if source.doc_type not in RETURNABLE_TYPES:
        log.warning("Return refused: '%s' is a %s", source.code, source.doc_type.value)
        raise ReturnNotAllowed(f"Returns can only be created from deliveries or invoices, not {source.code}")
    existing = documents.return_of(snapshot, source_id)
    if existing is not None:
        log.warning("Return refused: '%s' already returned by '%s'", source.code, existing.code)
        raise AlreadyReturned(f"Document {source.code} already has return {existing.code}")
    successor = documents.successor_of(snapshot, source_id)
    if successor is not None:
        log.warning("Return refused: '%s' already became '%s'", source.code, successor.code)
        raise AlreadyTransformed(
            f"Document {source.code} was already transformed into {successor.code}; return that document instead"
        )

    br = documents.create(
        snapshot,
        _derive(source, snapshot, DocType.RETURN, DocumentStatus.VALIDATED, on or _today()),
    )
    _apply_movement(snapshot, br, -policy_for(source.channel).delivery_sign)
    log.info("Created return '%s' for '%s'", br.code, source.code)
    return br
