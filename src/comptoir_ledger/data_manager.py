"""Data access layer for Comptoir Ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: creating, opening and atomically persisting the Excel
   file.
3. Snapshot codec: converting every sheet into the in-memory
   :class:`~comptoir_ledger.models.Snapshot` and back.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    EXPECTED_SCHEMA_VERSION,
    AccountingInclusion,
    Channel,
    ClientType,
    DocType,
    DocumentStatus,
    PaymentMethod,
    PaymentStatus,
    SheetName,
)
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


CONFIG_FILE_NAME = "config.ini"

SHEET_HEADERS: Mapping[SheetName, Tuple[str, ...]] = {
    SheetName.META: ("Key", "Value"),
    SheetName.CLIENTS: ("ClientID", "Code", "Name", "ClientType"),
    SheetName.WAREHOUSES: ("WarehouseID", "Name"),
    SheetName.ARTICLES: ("ArticleID", "SKU", "Name", "Unit", "Price"),
    SheetName.STOCK: ("WarehouseID", "ArticleID", "Quantity"),
    SheetName.DOCUMENTS: (
        "DocumentID",
        "Code",
        "DocType",
        "Channel",
        "IssueDate",
        "Status",
        "WarehouseID",
        "ClientID",
        "VendorName",
        "Notes",
        "SourceID",
        "IncludeTax",
        "Accounting",
        "TotalPaid",
        "PaymentStatus",
    ),
    SheetName.DOCUMENT_LINES: (
        "DocumentID",
        "LineID",
        "ArticleID",
        "Description",
        "Quantity",
        "UnitPrice",
        "Discount",
    ),
    SheetName.PAYMENTS: (
        "PaymentID",
        "DocumentID",
        "Amount",
        "Method",
        "PaymentDate",
        "CheckNumber",
        "Notes",
    ),
    SheetName.TRANSFERS: (
        "TransferID",
        "TransferDate",
        "FromWarehouseID",
        "ToWarehouseID",
        "ArticleID",
        "Quantity",
    ),
    SheetName.COUNTERS: ("Key", "Value"),
}

META_SCHEMA_VERSION = "SchemaVersion"
META_REVISION = "Revision"
META_SEEDED = "Seeded"
META_COMPANY_NAME = "CompanyName"
META_CURRENCY = "Currency"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    currency: str = DEFAULT_CURRENCY
    default_warehouse_id: Optional[str] = None
    validate_stock: bool = False
    remote_url: Optional[str] = None
    timeout: float = 10.0
    max_attempts: int = 3
    debounce_seconds: float = 1.0
    retry_interval_seconds: float = 30.0


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` and ``[Sync]`` are
    optional and fall back to the dataclass defaults; an empty ``RemoteURL``
    disables replication. Relative ``DataFile`` paths are expanded against
    ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Anchor for relative ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric or boolean option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    currency = parser.get("System", "Currency", fallback=DEFAULT_CURRENCY).strip() or DEFAULT_CURRENCY
    default_warehouse = parser.get("Defaults", "DefaultWarehouse", fallback="").strip() or None
    validate_stock = parser.getboolean("Defaults", "ValidateStock", fallback=False)
    remote_url = parser.get("Sync", "RemoteURL", fallback="").strip() or None
    timeout = parser.getfloat("Sync", "Timeout", fallback=10.0)
    max_attempts = parser.getint("Sync", "MaxAttempts", fallback=3)
    debounce = parser.getfloat("Sync", "DebounceSeconds", fallback=1.0)
    retry_interval = parser.getfloat("Sync", "RetryIntervalSeconds", fallback=30.0)
    if max_attempts < 1:
        raise ValueError("Sync.MaxAttempts must be at least 1")

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        currency=currency,
        default_warehouse_id=default_warehouse,
        validate_stock=validate_stock,
        remote_url=remote_url.rstrip("/") if remote_url else None,
        timeout=timeout,
        max_attempts=max_attempts,
        debounce_seconds=debounce,
        retry_interval_seconds=retry_interval,
    )


def new_workbook() -> Workbook:
    """Create an empty ledger workbook with every sheet and bold headers."""

    wb = openpyxl.Workbook()
    if "Sheet" in wb.sheetnames:
        del wb["Sheet"]

    bold_font = Font(bold=True)
    for sheet_name, columns in SHEET_HEADERS.items():
        ws = wb.create_sheet(title=sheet_name.value)
        for col_idx, column_name in enumerate(columns, 1):
            cell = ws.cell(row=1, column=col_idx)
            cell.value = column_name
            cell.font = bold_font
    return wb


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook in one atomic step.

    The workbook is written to a temporary file next to ``destination`` and
    then moved over it with :func:`os.replace`, so a reader never observes a
    half-written file. Parent directories are created on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=".xlsx", dir=dest.parent)
    os.close(fd)
    try:
        workbook.save(tmp_name)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _data_rows(workbook: Workbook, sheet: SheetName) -> Iterable[Sequence[object]]:
    width = len(SHEET_HEADERS[sheet])
    for raw in workbook[sheet.value].iter_rows(min_row=2, max_col=width, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


def _text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    value = str(raw)
    return value if value != "" else None


def _decimal(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0")


def _date(raw: object) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw))


def _bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "y"}
    return bool(raw)


def read_meta(workbook: Workbook) -> Dict[str, object]:
    """Return the ``Meta`` sheet as a key/value mapping."""

    return {str(key): value for key, value in _data_rows(workbook, SheetName.META)}


def read_schema_version(workbook: Workbook) -> Optional[str]:
    value = read_meta(workbook).get(META_SCHEMA_VERSION)
    return str(value) if value is not None else None


def serialize_client(record: Client) -> list[object]:
    return [record.client_id, record.code, record.name, record.client_type.value]


def deserialize_client(raw_row: Sequence[object]) -> Client:
    client_id, code, name, client_type = raw_row
    return Client(
        client_id=str(client_id),
        code=str(code),
        name=str(name),
        client_type=ClientType(client_type or ClientType.COUNTER.value),
    )


def serialize_warehouse(record: Warehouse) -> list[object]:
    return [record.warehouse_id, record.name]


def deserialize_warehouse(raw_row: Sequence[object]) -> Warehouse:
    warehouse_id, name = raw_row
    return Warehouse(warehouse_id=str(warehouse_id), name=str(name))


def serialize_article(record: Article) -> list[object]:
    return [record.article_id, record.sku, record.name, record.unit, record.price]


def deserialize_article(raw_row: Sequence[object]) -> Article:
    """Convert a raw ``Articles`` row, normalizing the price to ``Decimal``.

    Identifier and name fields are coerced to ``str`` so that SKUs Excel
    interpreted as numbers still round-trip as text.
    """

    article_id, sku, name, unit, price = raw_row
    return Article(
        article_id=str(article_id),
        sku=str(sku),
        name=str(name),
        unit=str(unit) if unit is not None else "u",
        price=_decimal(price),
    )


def serialize_document(record: Document) -> list[object]:
    """Convert a document header into the ``Documents`` column ordering.

    Lines are stored separately on ``DocumentLines``; monetary values stay
    :class:`~decimal.Decimal` and dates are written as ISO strings.
    """

    return [
        record.document_id,
        record.code,
        record.doc_type.value,
        record.channel.value,
        record.issue_date.isoformat(),
        record.status.value,
        record.warehouse_id,
        record.client_id,
        record.vendor_name,
        record.notes,
        record.source_id,
        record.include_tax,
        record.accounting.value,
        record.total_paid,
        record.payment_status.value,
    ]


def deserialize_document(raw_row: Sequence[object], lines: Sequence[DocumentLine] = ()) -> Document:
    (
        document_id,
        code,
        doc_type,
        channel,
        issue_date,
        status,
        warehouse_id,
        client_id,
        vendor_name,
        notes,
        source_id,
        include_tax,
        accounting,
        total_paid,
        payment_status,
    ) = raw_row
    return Document(
        document_id=str(document_id),
        code=str(code),
        doc_type=DocType(doc_type),
        channel=Channel(channel),
        issue_date=_date(issue_date),
        status=DocumentStatus(status),
        lines=tuple(lines),
        warehouse_id=_text(warehouse_id),
        client_id=_text(client_id),
        vendor_name=_text(vendor_name),
        notes=_text(notes),
        source_id=_text(source_id),
        include_tax=_bool(include_tax),
        accounting=AccountingInclusion(accounting or AccountingInclusion.NOT_APPLICABLE.value),
        total_paid=_decimal(total_paid),
        payment_status=PaymentStatus(payment_status or PaymentStatus.UNPAID.value),
    )


def serialize_line(document_id: str, record: DocumentLine) -> list[object]:
    return [
        document_id,
        record.line_id,
        record.article_id,
        record.description,
        record.quantity,
        record.unit_price,
        record.discount,
    ]


def deserialize_line(raw_row: Sequence[object]) -> Tuple[str, DocumentLine]:
    document_id, line_id, article_id, description, quantity, unit_price, discount = raw_row
    line = DocumentLine(
        line_id=str(line_id),
        article_id=str(article_id),
        description=str(description) if description is not None else "",
        quantity=int(quantity),
        unit_price=_decimal(unit_price),
        discount=_decimal(discount),
    )
    return str(document_id), line


def serialize_payment(record: Payment) -> list[object]:
    return [
        record.payment_id,
        record.document_id,
        record.amount,
        record.method.value,
        record.payment_date.isoformat(),
        record.check_number,
        record.notes,
    ]


def deserialize_payment(raw_row: Sequence[object]) -> Payment:
    payment_id, document_id, amount, method, payment_date, check_number, notes = raw_row
    return Payment(
        payment_id=str(payment_id),
        document_id=str(document_id),
        amount=_decimal(amount),
        method=PaymentMethod(method),
        payment_date=_date(payment_date),
        check_number=_text(check_number),
        notes=_text(notes),
    )


def serialize_transfer(record: TransferRecord) -> List[list[object]]:
    """One worksheet row per transferred article."""

    return [
        [
            record.transfer_id,
            record.transfer_date.isoformat(),
            record.from_warehouse_id,
            record.to_warehouse_id,
            line.article_id,
            line.quantity,
        ]
        for line in record.lines
    ]


def _deserialize_transfers(rows: Iterable[Sequence[object]]) -> List[TransferRecord]:
    headers: Dict[str, Tuple[date, str, str]] = {}
    lines: Dict[str, List[TransferLine]] = {}
    for transfer_id, transfer_date, from_id, to_id, article_id, quantity in rows:
        key = str(transfer_id)
        if key not in headers:
            headers[key] = (_date(transfer_date), str(from_id), str(to_id))
            lines[key] = []
        lines[key].append(TransferLine(article_id=str(article_id), quantity=int(quantity)))
    return [
        TransferRecord(
            transfer_id=key,
            transfer_date=transfer_date,
            from_warehouse_id=from_id,
            to_warehouse_id=to_id,
            lines=tuple(lines[key]),
        )
        for key, (transfer_date, from_id, to_id) in headers.items()
    ]


def read_snapshot(workbook: Workbook) -> Snapshot:
    """Decode every ledger sheet into a :class:`Snapshot`.

    Rows keep worksheet order, which preserves document insertion order and
    line order within each document.

    Raises:
        KeyError: If one of the ledger sheets is missing.
    """

    for sheet in SHEET_HEADERS:
        if sheet.value not in workbook.sheetnames:
            raise KeyError(f"Workbook is missing sheet: {sheet.value}")

    meta = read_meta(workbook)
    lines_by_document: Dict[str, List[DocumentLine]] = {}
    for raw in _data_rows(workbook, SheetName.DOCUMENT_LINES):
        document_id, line = deserialize_line(raw)
        lines_by_document.setdefault(document_id, []).append(line)

    snapshot = Snapshot(
        company=Company(
            name=str(meta.get(META_COMPANY_NAME) or ""),
            currency=str(meta.get(META_CURRENCY) or DEFAULT_CURRENCY),
        ),
        clients=[deserialize_client(raw) for raw in _data_rows(workbook, SheetName.CLIENTS)],
        warehouses=[deserialize_warehouse(raw) for raw in _data_rows(workbook, SheetName.WAREHOUSES)],
        articles=[deserialize_article(raw) for raw in _data_rows(workbook, SheetName.ARTICLES)],
        stock={
            (str(warehouse_id), str(article_id)): int(quantity or 0)
            for warehouse_id, article_id, quantity in _data_rows(workbook, SheetName.STOCK)
        },
        documents=[
            deserialize_document(raw, lines_by_document.get(str(raw[0]), ()))
            for raw in _data_rows(workbook, SheetName.DOCUMENTS)
        ],
        payments=[deserialize_payment(raw) for raw in _data_rows(workbook, SheetName.PAYMENTS)],
        transfers=_deserialize_transfers(_data_rows(workbook, SheetName.TRANSFERS)),
        counters={str(key): int(value or 0) for key, value in _data_rows(workbook, SheetName.COUNTERS)},
        seeded=_bool(meta.get(META_SEEDED)),
        revision=int(meta.get(META_REVISION) or 0),
    )
    log.debug(
        "Read snapshot revision %d (%d documents, %d payments)",
        snapshot.revision,
        len(snapshot.documents),
        len(snapshot.payments),
    )
    return snapshot


def _reset_sheet(workbook: Workbook, sheet: SheetName):
    if sheet.value not in workbook.sheetnames:
        ws = workbook.create_sheet(title=sheet.value)
        bold_font = Font(bold=True)
        for col_idx, column_name in enumerate(SHEET_HEADERS[sheet], 1):
            cell = ws.cell(row=1, column=col_idx)
            cell.value = column_name
            cell.font = bold_font
        return ws
    ws = workbook[sheet.value]
    if ws.max_row > 1:
        ws.delete_rows(2, ws.max_row - 1)
    return ws


def write_snapshot(
    workbook: Workbook,
    snapshot: Snapshot,
    *,
    schema_version: str = EXPECTED_SCHEMA_VERSION,
) -> None:
    """Replace the data rows of every ledger sheet with ``snapshot``.

    Header rows and their formatting are kept. Missing sheets are created.
    """

    ws = _reset_sheet(workbook, SheetName.META)
    for key, value in (
        (META_SCHEMA_VERSION, schema_version),
        (META_REVISION, snapshot.revision),
        (META_SEEDED, snapshot.seeded),
        (META_COMPANY_NAME, snapshot.company.name),
        (META_CURRENCY, snapshot.company.currency),
    ):
        ws.append([key, value])

    ws = _reset_sheet(workbook, SheetName.CLIENTS)
    for client in snapshot.clients:
        ws.append(serialize_client(client))

    ws = _reset_sheet(workbook, SheetName.WAREHOUSES)
    for warehouse in snapshot.warehouses:
        ws.append(serialize_warehouse(warehouse))

    ws = _reset_sheet(workbook, SheetName.ARTICLES)
    for article in snapshot.articles:
        ws.append(serialize_article(article))

    ws = _reset_sheet(workbook, SheetName.STOCK)
    for (warehouse_id, article_id), quantity in snapshot.stock.items():
        ws.append([warehouse_id, article_id, quantity])

    ws = _reset_sheet(workbook, SheetName.DOCUMENTS)
    lines_ws = _reset_sheet(workbook, SheetName.DOCUMENT_LINES)
    for document in snapshot.documents:
        ws.append(serialize_document(document))
        for line in document.lines:
            lines_ws.append(serialize_line(document.document_id, line))

    ws = _reset_sheet(workbook, SheetName.PAYMENTS)
    for payment in snapshot.payments:
        ws.append(serialize_payment(payment))

    ws = _reset_sheet(workbook, SheetName.TRANSFERS)
    for transfer in snapshot.transfers:
        for row in serialize_transfer(transfer):
            ws.append(row)

    ws = _reset_sheet(workbook, SheetName.COUNTERS)
    for key, value in snapshot.counters.items():
        ws.append([key, value])
