"""Settlements against invoices and the derived payment status.

Payments are append-only. ``total_paid`` and ``payment_status`` on the
invoice are a cache recomputed from the payment list on every event and are
never edited directly.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import List, Optional

from . import documents, log
from .constants import DocType, PaymentMethod, PaymentStatus
from .errors import ValidationError
from .models import Payment, Snapshot
from .tax import amount_due


def derive_status(total_paid: Decimal, payable: Decimal) -> PaymentStatus:
    """Map an amount paid against a payable total onto a :class:`PaymentStatus`."""

    if total_paid <= 0:
        return PaymentStatus.UNPAID
    if total_paid >= payable:
        return PaymentStatus.PAID
    return PaymentStatus.PARTIAL


def payments_for(snapshot: Snapshot, invoice_id: str) -> List[Payment]:
    """Payments recorded against ``invoice_id`` in recording order."""

    return [payment for payment in snapshot.payments if payment.document_id == invoice_id]


def total_paid(snapshot: Snapshot, invoice_id: str) -> Decimal:
    return sum((payment.amount for payment in payments_for(snapshot, invoice_id)), Decimal("0"))


def remaining_balance(snapshot: Snapshot, invoice_id: str) -> Decimal:
    """Amount due on the invoice minus everything already paid."""

    invoice = documents.get(snapshot, invoice_id)
    return amount_due(invoice) - total_paid(snapshot, invoice_id)


def record(
    snapshot: Snapshot,
    invoice_id: str,
    amount: Decimal,
    method: PaymentMethod,
    payment_date: Optional[date] = None,
    *,
    check_number: Optional[str] = None,
    notes: Optional[str] = None,
) -> Payment:
    """Append a settlement to an invoice and refresh its payment status.

    Args:
        snapshot (Snapshot): Working snapshot to mutate.
        invoice_id (str): Identity of an ``FA`` document.
        amount (Decimal): Strictly positive amount, at most the remaining
            balance.
        method (PaymentMethod): Settlement mechanism.
        payment_date (date | None): Defaults to today (UTC).
        check_number (str | None): Required when ``method`` is a check.
        notes (str | None): Free-text note.

    Returns:
        Payment: The appended payment.

    Raises:
        ValidationError: Non-invoice target, non-positive amount, amount
            above the remaining balance, or a check without its number.
        MissingReferenceError: Unknown invoice.
    """

    invoice = documents.get(snapshot, invoice_id)
    if invoice.doc_type != DocType.INVOICE:
        log.error("Payment rejected: '%s' is not an invoice", invoice.code)
        raise ValidationError(f"Payments can only be recorded against invoices, not {invoice.code}")

    method = PaymentMethod(method)
    amount = Decimal(amount)
    if amount <= 0:
        log.error("Payment rejected for '%s': amount %s", invoice.code, amount)
        raise ValidationError("Payment amount must be greater than zero")

    due = amount_due(invoice)
    already_paid = total_paid(snapshot, invoice_id)
    remaining = due - already_paid
    if amount > remaining:
        log.error(
            "Payment rejected for '%s': amount %s exceeds remaining balance %s",
            invoice.code,
            amount,
            remaining,
        )
        raise ValidationError(f"Payment amount {amount} exceeds remaining balance {remaining}")

    check_number = (check_number or "").strip() or None
    if method == PaymentMethod.CHECK and check_number is None:
        log.error("Payment rejected for '%s': missing check number", invoice.code)
        raise ValidationError("A check number is required for check payments")

    payment = Payment(
        payment_id=uuid.uuid4().hex,
        document_id=invoice_id,
        amount=amount,
        method=method,
        payment_date=payment_date or datetime.now(UTC).date(),
        check_number=check_number if method == PaymentMethod.CHECK else None,
        notes=notes or None,
    )
    snapshot.payments.append(payment)

    paid = already_paid + amount
    documents.replace_document(
        snapshot,
        replace(invoice, total_paid=paid, payment_status=derive_status(paid, due)),
    )
    log.info(
        "Recorded %s payment of %s on '%s' (paid %s of %s)",
        method.value,
        amount,
        invoice.code,
        paid,
        due,
    )
    return payment
