"""JSON-compatible encoding of a :class:`Snapshot` for the remote authority.

The remote stores the whole snapshot as one document keyed with camelCase
names. Decimals travel as strings so no precision is lost in transit;
decoding accepts strings or numbers and ignores keys it does not know.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

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
from .errors import ValidationError
from .models import (
    Article,
    Client,
    Company,
    Document,
    DocumentLine,
    Payment,
    Snapshot,
    TransferLine,
    TransferRecord,
    Warehouse,
)


def _money(value: Decimal) -> str:
    return str(value)


def _decimal(raw: Any) -> Decimal:
    if raw is None or raw == "":
        return Decimal("0")
    # floats go through str() so 0.1 decodes as Decimal("0.1")
    return Decimal(str(raw))


def _optional(raw: Any) -> Optional[str]:
    return str(raw) if raw not in (None, "") else None


def _line_to_wire(line: DocumentLine) -> Dict[str, Any]:
    return {
        "id": line.line_id,
        "productId": line.article_id,
        "description": line.description,
        "qty": line.quantity,
        "unitPrice": _money(line.unit_price),
        "discount": _money(line.discount),
    }


def _document_to_wire(document: Document) -> Dict[str, Any]:
    return {
        "id": document.document_id,
        "code": document.code,
        "type": document.doc_type.value,
        "channel": document.channel.value,
        "date": document.issue_date.isoformat(),
        "status": document.status.value,
        "depotId": document.warehouse_id,
        "clientId": document.client_id,
        "vendorName": document.vendor_name,
        "notes": document.notes,
        "sourceId": document.source_id,
        "includeTax": document.include_tax,
        "accounting": document.accounting.value,
        "totalPaid": _money(document.total_paid),
        "paymentStatus": document.payment_status.value,
        "lines": [_line_to_wire(line) for line in document.lines],
    }


def snapshot_to_wire(snapshot: Snapshot) -> Dict[str, Any]:
    """Encode ``snapshot`` into the remote's JSON shape."""

    return {
        "company": {"name": snapshot.company.name, "currency": snapshot.company.currency},
        "clients": [
            {"id": client.client_id, "code": client.code, "name": client.name, "type": client.client_type.value}
            for client in snapshot.clients
        ],
        "depots": [{"id": depot.warehouse_id, "name": depot.name} for depot in snapshot.warehouses],
        "products": [
            {
                "id": article.article_id,
                "sku": article.sku,
                "name": article.name,
                "unit": article.unit,
                "price": _money(article.price),
            }
            for article in snapshot.articles
        ],
        "stock": [
            {"productId": article_id, "depotId": warehouse_id, "qty": quantity}
            for (warehouse_id, article_id), quantity in snapshot.stock.items()
        ],
        "documents": [_document_to_wire(document) for document in snapshot.documents],
        "payments": [
            {
                "id": payment.payment_id,
                "documentId": payment.document_id,
                "amount": _money(payment.amount),
                "method": payment.method.value,
                "date": payment.payment_date.isoformat(),
                "checkNumber": payment.check_number,
                "notes": payment.notes,
            }
            for payment in snapshot.payments
        ],
        "transfers": [
            {
                "id": transfer.transfer_id,
                "date": transfer.transfer_date.isoformat(),
                "fromDepotId": transfer.from_warehouse_id,
                "toDepotId": transfer.to_warehouse_id,
                "lines": [{"productId": line.article_id, "qty": line.quantity} for line in transfer.lines],
            }
            for transfer in snapshot.transfers
        ],
        "counters": dict(snapshot.counters),
        "seeded": snapshot.seeded,
        "revision": snapshot.revision,
    }


def _document_from_wire(raw: Mapping[str, Any]) -> Document:
    return Document(
        document_id=str(raw["id"]),
        code=str(raw["code"]),
        doc_type=DocType(raw["type"]),
        channel=Channel(raw["channel"]),
        issue_date=date.fromisoformat(str(raw["date"])[:10]),
        status=DocumentStatus(raw["status"]),
        lines=tuple(
            DocumentLine(
                line_id=str(line["id"]),
                article_id=str(line["productId"]),
                description=str(line.get("description") or ""),
                quantity=int(line["qty"]),
                unit_price=_decimal(line.get("unitPrice")),
                discount=_decimal(line.get("discount")),
            )
            for line in raw.get("lines") or ()
        ),
        warehouse_id=_optional(raw.get("depotId")),
        client_id=_optional(raw.get("clientId")),
        vendor_name=_optional(raw.get("vendorName")),
        notes=_optional(raw.get("notes")),
        source_id=_optional(raw.get("sourceId")),
        include_tax=bool(raw.get("includeTax", False)),
        accounting=AccountingInclusion(raw.get("accounting") or AccountingInclusion.NOT_APPLICABLE.value),
        total_paid=_decimal(raw.get("totalPaid")),
        payment_status=PaymentStatus(raw.get("paymentStatus") or PaymentStatus.UNPAID.value),
    )


def snapshot_from_wire(payload: Mapping[str, Any]) -> Snapshot:
    """Decode the remote's JSON shape into a :class:`Snapshot`.

    Raises:
        ValidationError: If the payload is not an object or a required field
            is missing or malformed.
    """

    if not isinstance(payload, Mapping):
        raise ValidationError("Snapshot payload must be a JSON object")
    try:
        company = payload.get("company") or {}
        transfers: List[TransferRecord] = [
            TransferRecord(
                transfer_id=str(raw["id"]),
                transfer_date=date.fromisoformat(str(raw["date"])[:10]),
                from_warehouse_id=str(raw["fromDepotId"]),
                to_warehouse_id=str(raw["toDepotId"]),
                lines=tuple(
                    TransferLine(article_id=str(line["productId"]), quantity=int(line["qty"]))
                    for line in raw.get("lines") or ()
                ),
            )
            for raw in payload.get("transfers") or ()
        ]
        return Snapshot(
            company=Company(
                name=str(company.get("name") or ""),
                currency=str(company.get("currency") or DEFAULT_CURRENCY),
            ),
            clients=[
                Client(
                    client_id=str(raw["id"]),
                    code=str(raw.get("code") or ""),
                    name=str(raw["name"]),
                    client_type=ClientType(raw.get("type") or ClientType.COUNTER.value),
                )
                for raw in payload.get("clients") or ()
            ],
            warehouses=[
                Warehouse(warehouse_id=str(raw["id"]), name=str(raw["name"]))
                for raw in payload.get("depots") or ()
            ],
            articles=[
                Article(
                    article_id=str(raw["id"]),
                    sku=str(raw.get("sku") or ""),
                    name=str(raw["name"]),
                    unit=str(raw.get("unit") or "u"),
                    price=_decimal(raw.get("price")),
                )
                for raw in payload.get("products") or ()
            ],
            stock={
                (str(raw["depotId"]), str(raw["productId"])): int(raw.get("qty") or 0)
                for raw in payload.get("stock") or ()
            },
            documents=[_document_from_wire(raw) for raw in payload.get("documents") or ()],
            payments=[
                Payment(
                    payment_id=str(raw["id"]),
                    document_id=str(raw["documentId"]),
                    amount=_decimal(raw["amount"]),
                    method=PaymentMethod(raw["method"]),
                    payment_date=date.fromisoformat(str(raw["date"])[:10]),
                    check_number=_optional(raw.get("checkNumber")),
                    notes=_optional(raw.get("notes")),
                )
                for raw in payload.get("payments") or ()
            ],
            transfers=transfers,
            counters={str(key): int(value) for key, value in (payload.get("counters") or {}).items()},
            seeded=bool(payload.get("seeded", False)),
            revision=int(payload.get("revision") or 0),
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
        raise ValidationError(f"Malformed snapshot payload: {exc}") from exc
