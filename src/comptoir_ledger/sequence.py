"""Human-readable code generation backed by the snapshot counters table."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from . import log
from .constants import CLIENT_CODE_PREFIX, CLIENT_COUNTER_KEY, CODE_DIGITS, Channel, DocType, policy_for
from .models import Snapshot


def document_counter_key(channel: Channel, doc_type: DocType, year: int) -> str:
    """Return the counters-table key for ``(channel, doc_type, year)``."""

    return f"{Channel(channel).value}-{DocType(doc_type).value}-{year:04d}"


def current_year() -> int:
    """Calendar year codes are allocated in, taken at call time (UTC)."""

    return datetime.now(UTC).year


def _increment(snapshot: Snapshot, key: str) -> int:
    value = snapshot.counters.get(key, 0) + 1
    snapshot.counters[key] = value
    return value


def next_document_code(
    snapshot: Snapshot,
    channel: Channel,
    doc_type: DocType,
    year: Optional[int] = None,
) -> str:
    """Allocate the next document code for ``(channel, doc_type, year)``.

    The counter is incremented on the snapshot before the code is formatted,
    so two calls against the same snapshot never observe the same value.
    Counters are never decremented, which keeps codes unique even after the
    document holding one is deleted.

    Args:
        snapshot (Snapshot): Working snapshot owning the counters table.
        channel (Channel): Trading channel; selects the ``V``/``A``/``I`` prefix.
        doc_type (DocType): Document type embedded in the code.
        year (int | None): Calendar year of the sequence. Defaults to
            :func:`current_year`, independent of any document date.

    Returns:
        str: Code shaped as ``{prefix}-{TYPE}{yy}-{NNNNN}``.
    """

    if year is None:
        year = current_year()
    doc_type = DocType(doc_type)
    value = _increment(snapshot, document_counter_key(channel, doc_type, year))
    code = f"{policy_for(channel).code_prefix}-{doc_type.value}{year % 100:02d}-{value:0{CODE_DIGITS}d}"
    log.debug("Allocated document code '%s'", code)
    return code


def next_client_code(snapshot: Snapshot) -> str:
    """Allocate the next ``CL-NNNNN`` client registration code."""

    value = _increment(snapshot, CLIENT_COUNTER_KEY)
    return f"{CLIENT_CODE_PREFIX}-{value:0{CODE_DIGITS}d}"
