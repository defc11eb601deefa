"""Tax-inclusive/exclusive conversions and document totals.

Unit prices and discounts are stored tax-inclusive. Totals are summed in
full :class:`~decimal.Decimal` precision; rounding happens only in
:func:`round_for_display`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from .constants import TAX_DIVISOR, TAX_RATE
from .models import Document, DocumentLine

CENT = Decimal("0.01")


@dataclass(frozen=True)
class DocumentTotals:
    """Aggregated amounts for one document."""

    gross_total: Decimal
    discount_total: Decimal
    exclusive_total: Decimal
    tax_amount: Decimal
    payable_total: Decimal


def to_exclusive(amount: Decimal) -> Decimal:
    """Strip the tax component from a tax-inclusive amount."""

    return Decimal(amount) / TAX_DIVISOR


def to_inclusive(amount: Decimal) -> Decimal:
    """Add the tax component to a tax-exclusive amount."""

    return Decimal(amount) * TAX_DIVISOR


def line_exclusive_total(line: DocumentLine, include_tax: bool) -> Decimal:
    """Return ``(unit price - discount) * quantity`` in exclusive terms.

    When ``include_tax`` is unset the stored amounts are already final and no
    division is applied.
    """

    unit_price = line.unit_price
    discount = line.discount
    if include_tax:
        unit_price = to_exclusive(unit_price)
        discount = to_exclusive(discount)
    return (unit_price - discount) * line.quantity


def document_totals(document: Document) -> DocumentTotals:
    """Aggregate the document's lines into a :class:`DocumentTotals`."""

    include_tax = document.include_tax
    gross = Decimal("0")
    discounts = Decimal("0")
    exclusive = Decimal("0")
    for line in document.lines:
        gross += line.unit_price * line.quantity
        discounts += line.discount * line.quantity
        exclusive += line_exclusive_total(line, include_tax)

    if include_tax:
        gross = to_exclusive(gross)
        discounts = to_exclusive(discounts)
        tax_amount = exclusive * TAX_RATE
    else:
        tax_amount = Decimal("0")

    return DocumentTotals(
        gross_total=gross,
        discount_total=discounts,
        exclusive_total=exclusive,
        tax_amount=tax_amount,
        payable_total=exclusive + tax_amount,
    )


def round_for_display(amount: Decimal) -> Decimal:
    """Quantize ``amount`` to cents using commercial rounding."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def amount_due(document: Document) -> Decimal:
    """Payable total at cent precision, the figure a customer is asked to settle."""

    return round_for_display(document_totals(document).payable_total)
