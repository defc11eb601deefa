"""On-hand stock per ``(warehouse, article)`` pair.

The ledger is tolerant: :func:`adjust` accepts any signed delta and never
refuses a negative result. Workflows that must not oversell call
:func:`require_available` before issuing their deltas; it is the only place
the "insufficient stock" rule lives.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from typing import Iterable, List, Optional, Tuple

from . import log
from .errors import InsufficientStock, MissingReferenceError, ValidationError
from .models import Snapshot, TransferLine, TransferRecord


def quantity_of(snapshot: Snapshot, warehouse_id: str, article_id: str) -> int:
    """Return on-hand quantity; a missing entry counts as zero."""

    return snapshot.stock.get((warehouse_id, article_id), 0)


def adjust(snapshot: Snapshot, warehouse_id: str, article_id: str, delta: int) -> int:
    """Apply a signed ``delta`` to the entry, creating it when absent.

    Returns:
        int: The quantity after the adjustment.
    """

    key = (warehouse_id, article_id)
    quantity = snapshot.stock.get(key, 0) + int(delta)
    snapshot.stock[key] = quantity
    log.debug("Stock %s/%s adjusted by %+d -> %d", warehouse_id, article_id, delta, quantity)
    return quantity


def remove(snapshot: Snapshot, warehouse_id: str, article_id: str) -> None:
    """Delete the entry entirely; any remaining quantity is discarded."""

    discarded = snapshot.stock.pop((warehouse_id, article_id), None)
    if discarded:
        log.info(
            "Removed stock entry %s/%s discarding quantity %d",
            warehouse_id,
            article_id,
            discarded,
        )


def require_available(snapshot: Snapshot, warehouse_id: str, article_id: str, quantity: int) -> None:
    """Ensure at least ``quantity`` units are on hand before an outbound move.

    Raises:
        InsufficientStock: When the on-hand quantity is below ``quantity``.
    """

    available = quantity_of(snapshot, warehouse_id, article_id)
    if quantity > available:
        log.warning(
            "Insufficient stock for '%s' in '%s': available=%d requested=%d",
            article_id,
            warehouse_id,
            available,
            quantity,
        )
        raise InsufficientStock(warehouse_id, article_id, available, quantity)


def entries_for(snapshot: Snapshot, warehouse_id: Optional[str] = None) -> List[Tuple[str, str, int]]:
    """List ``(warehouse_id, article_id, quantity)`` rows sorted by key."""

    return [
        (depot, article, quantity)
        for (depot, article), quantity in sorted(snapshot.stock.items())
        if warehouse_id is None or depot == warehouse_id
    ]


def transfer(
    snapshot: Snapshot,
    from_warehouse_id: str,
    to_warehouse_id: str,
    lines: Iterable[TransferLine],
    *,
    on: Optional[date] = None,
) -> TransferRecord:
    """Move stock between two warehouses and record the transfer.

    Every line is checked against the source warehouse before the first
    delta is issued. Each line then becomes two independent adjustments, a
    negative one on the source and a positive one on the destination; they
    become durable together only because the caller commits the whole
    snapshot at once.

    Args:
        snapshot (Snapshot): Working snapshot to mutate.
        from_warehouse_id (str): Source warehouse.
        to_warehouse_id (str): Destination warehouse.
        lines (Iterable[TransferLine]): Articles and quantities to move. Lines
            for the same article are merged.
        on (date | None): Transfer date, defaulting to today (UTC).

    Returns:
        TransferRecord: History entry appended to ``snapshot.transfers``.

    Raises:
        ValidationError: Same source and destination, no lines, or a
            non-positive quantity.
        MissingReferenceError: Unknown warehouse or article.
        InsufficientStock: A line exceeds the source's on-hand quantity.
    """

    if from_warehouse_id == to_warehouse_id:
        raise ValidationError("Source and destination warehouses must differ")
    for warehouse_id in (from_warehouse_id, to_warehouse_id):
        if snapshot.find_warehouse(warehouse_id) is None:
            raise MissingReferenceError(f"Unknown warehouse id: {warehouse_id}")

    merged: dict[str, int] = {}
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError("Transfer quantities must be greater than zero")
        if snapshot.find_article(line.article_id) is None:
            raise MissingReferenceError(f"Unknown article id: {line.article_id}")
        merged[line.article_id] = merged.get(line.article_id, 0) + line.quantity
    if not merged:
        raise ValidationError("A transfer needs at least one line")

    for article_id, quantity in merged.items():
        require_available(snapshot, from_warehouse_id, article_id, quantity)

    for article_id, quantity in merged.items():
        adjust(snapshot, from_warehouse_id, article_id, -quantity)
        adjust(snapshot, to_warehouse_id, article_id, quantity)

    record = TransferRecord(
        transfer_id=uuid.uuid4().hex,
        transfer_date=on or datetime.now(UTC).date(),
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        lines=tuple(TransferLine(article_id, quantity) for article_id, quantity in merged.items()),
    )
    snapshot.transfers.append(record)
    log.info(
        "Transferred %d unit(s) across %d article(s) from '%s' to '%s'",
        sum(merged.values()),
        len(merged),
        from_warehouse_id,
        to_warehouse_id,
    )
    return record
