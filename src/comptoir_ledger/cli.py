"""Command-line entry points for the Comptoir Ledger toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Keeping the CLI thin ensures the same parser configuration can be
reused by tests, scripts, or any alternative front-end that wants to expose
the package capabilities.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import Channel, ClientType, DocType, PaymentMethod
from .documents import ORDERINGS, LineDraft
from .errors import BusinessRuleViolation, ConflictError, InsufficientStock, ValidationError
from .models import Document, TransferLine
from .tax import round_for_display


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="comptoir-cli",
        description="Command-line tools for the Comptoir Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as document creation and payments."""
    specs = {
        "add-client": register_add_client_command(subparsers),
        "add-warehouse": register_add_warehouse_command(subparsers),
        "add-article": register_add_article_command(subparsers),
        "create": register_create_command(subparsers),
        "transform": register_transform_command(subparsers),
        "return": register_return_command(subparsers),
        "delete": register_reference_command(
            "delete", "Delete a document nothing was created from.", run_delete
        ),
        "pay": register_pay_command(subparsers),
        "post": register_reference_command("post", "Post an invoice to the books.", run_post),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "remove-stock": register_remove_stock_command(subparsers),
        "transfer": register_transfer_command(subparsers),
        "toggle-tax": register_toggle_command(
            "toggle-tax", "Include or exclude tax on a document.", run_toggle_tax
        ),
        "set-accounting": register_toggle_command(
            "set-accounting", "Declare or exclude an invoice from the books.", run_set_accounting
        ),
        "pull": register_simple_command("pull", "Replace local data with the remote copy.", run_pull),
        "restore": register_restore_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and totals."""
    specs = {
        "documents": register_documents_command(subparsers),
        "show": register_reference_command("show", "Display one document with its lines.", run_show),
        "stock": register_stock_command(subparsers),
        "totals": register_reference_command("totals", "Display the totals of one document.", run_totals),
        "payments": register_reference_command(
            "payments", "Display payments recorded against an invoice.", run_payments
        ),
        "sync-status": register_simple_command(
            "sync-status", "Display replication health.", run_sync_status
        ),
        "backup": register_backup_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_simple_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a command that takes no arguments."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_reference_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register a command whose only argument is a document id or code."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("document", help="Document id or code.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_toggle_command(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Register an on/off switch applied to one document."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("document", help="Document id or code.")
        parser.add_argument("state", choices=["on", "off"])
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute)


def register_add_client_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-client``."""
    name = "add-client"
    help_text = "Register a new sales client."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument(
            "--type",
            dest="client_type",
            choices=[member.value for member in ClientType],
            default=ClientType.COUNTER.value,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_client)


def register_add_warehouse_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-warehouse``."""
    name = "add-warehouse"
    help_text = "Register a new warehouse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--warehouse-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_warehouse)


def register_add_article_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-article``."""
    name = "add-article"
    help_text = "Add an article to the catalogue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True, help="Tax-inclusive list price.")
        parser.add_argument("--unit", default="u")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_article)


def register_create_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create``."""
    name = "create"
    help_text = "Create a draft document."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--channel", choices=[member.value for member in Channel], required=True)
        parser.add_argument(
            "--type",
            dest="doc_type",
            choices=[member.value for member in DocType if member != DocType.RETURN],
            required=True,
        )
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            help="ARTICLE_ID:QTY[:UNIT_PRICE[:DISCOUNT]]; repeat for several lines.",
        )
        parser.add_argument("--warehouse-id", default=None)
        parser.add_argument("--client-id", default=None)
        parser.add_argument("--vendor-name", default=None)
        parser.add_argument("--notes", dest="notes", default=None)
        parser.add_argument("--date", dest="issue_date", default=None, help="ISO date (YYYY-MM-DD).")
        tax = parser.add_mutually_exclusive_group()
        tax.add_argument("--with-tax", dest="include_tax", action="store_const", const=True, default=None)
        tax.add_argument("--without-tax", dest="include_tax", action="store_const", const=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_create)


def register_transform_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transform``."""
    name = "transform"
    help_text = "Advance a document to the next type of its chain."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("document", help="Document id or code.")
        parser.add_argument("--date", dest="on", default=None, help="ISO date (YYYY-MM-DD).")
        check = parser.add_mutually_exclusive_group()
        check.add_argument("--check-stock", dest="check_stock", action="store_const", const=True, default=None)
        check.add_argument("--no-check-stock", dest="check_stock", action="store_const", const=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transform)


def register_return_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``return``."""
    name = "return"
    help_text = "Create a return for a delivery or invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("document", help="Document id or code.")
        parser.add_argument("--date", dest="on", default=None, help="ISO date (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_return)


def register_pay_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay``."""
    name = "pay"
    help_text = "Record a payment against an invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("document", help="Invoice id or code.")
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--method",
            choices=[member.value for member in PaymentMethod],
            default=PaymentMethod.CASH.value,
        )
        parser.add_argument("--check-number", default=None)
        parser.add_argument("--date", dest="payment_date", default=None, help="ISO date (YYYY-MM-DD).")
        parser.add_argument("--notes", dest="notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""
    name = "adjust-stock"
    help_text = "Apply a manual signed stock correction."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--article-id", required=True)
        parser.add_argument("--delta", type=int, required=True)
        parser.add_argument("--reason", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust_stock)


def register_remove_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-stock``."""
    name = "remove-stock"
    help_text = "Delete a stock entry, discarding its quantity."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--warehouse-id", required=True)
        parser.add_argument("--article-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_stock)


def register_transfer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transfer``."""
    name = "transfer"
    help_text = "Move stock between two warehouses."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="from_warehouse_id", required=True)
        parser.add_argument("--to", dest="to_warehouse_id", required=True)
        parser.add_argument(
            "--line",
            dest="lines",
            action="append",
            required=True,
            help="ARTICLE_ID:QTY; repeat for several articles.",
        )
        parser.add_argument("--date", dest="transfer_date", default=None, help="ISO date (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transfer)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Restore a JSON backup on the remote and locally."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--input", dest="input_path", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore)


def register_documents_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``documents``."""
    name = "documents"
    help_text = "List documents."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--channel", choices=[member.value for member in Channel], default=None)
        parser.add_argument("--type", dest="doc_type", choices=[member.value for member in DocType], default=None)
        parser.add_argument("--order-by", choices=list(ORDERINGS), default=None)
        parser.add_argument(
            "--accounting-only",
            action="store_true",
            help="Only invoices declared in the books.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_documents)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--warehouse-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Write a JSON backup of the ledger."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", dest="output_path", type=Path, default=None, help="Defaults to stdout.")
        parser.add_argument(
            "--local",
            action="store_true",
            help="Encode the local snapshot instead of downloading the remote backup.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, label: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"{label} must be a number, got {raw!r}") from exc


def parse_date(raw: Optional[str]) -> Optional[date]:
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Dates must be ISO formatted (YYYY-MM-DD), got {raw!r}") from exc


def parse_line_draft(raw: str) -> LineDraft:
    """Parse ``ARTICLE_ID:QTY[:UNIT_PRICE[:DISCOUNT]]`` into a :class:`LineDraft`."""
    parts = raw.split(":")
    if not 2 <= len(parts) <= 4:
        raise ValidationError(f"Malformed line {raw!r}; expected ARTICLE_ID:QTY[:UNIT_PRICE[:DISCOUNT]]")
    try:
        quantity = int(parts[1])
    except ValueError as exc:
        raise ValidationError(f"Line quantity must be an integer, got {parts[1]!r}") from exc
    unit_price = parse_decimal(parts[2], "Unit price") if len(parts) > 2 and parts[2] else None
    discount = parse_decimal(parts[3], "Discount") if len(parts) > 3 and parts[3] else Decimal("0")
    return LineDraft(article_id=parts[0], quantity=quantity, unit_price=unit_price, discount=discount)


def parse_transfer_line(raw: str) -> TransferLine:
    article_id, sep, quantity = raw.partition(":")
    if not sep:
        raise ValidationError(f"Malformed transfer line {raw!r}; expected ARTICLE_ID:QTY")
    try:
        return TransferLine(article_id=article_id, quantity=int(quantity))
    except ValueError as exc:
        raise ValidationError(f"Transfer quantity must be an integer, got {quantity!r}") from exc


def translate_add_client(args: argparse.Namespace) -> core_logic.RegisterClientCommand:
    """Translate CLI args into an add-client command object."""
    return core_logic.RegisterClientCommand(name=args.name, client_type=ClientType(args.client_type))


def translate_add_article(args: argparse.Namespace) -> core_logic.RegisterArticleCommand:
    """Translate CLI args into an add-article command object."""
    return core_logic.RegisterArticleCommand(
        sku=args.sku,
        name=args.name,
        price=parse_decimal(args.price, "Price"),
        unit=args.unit,
    )


def translate_create(args: argparse.Namespace) -> core_logic.CreateDocumentCommand:
    """Translate CLI args into a document creation command object."""
    return core_logic.CreateDocumentCommand(
        channel=Channel(args.channel),
        doc_type=DocType(args.doc_type),
        lines=[parse_line_draft(raw) for raw in args.lines],
        warehouse_id=args.warehouse_id,
        client_id=args.client_id,
        vendor_name=args.vendor_name,
        notes=args.notes,
        include_tax=args.include_tax,
        issue_date=parse_date(args.issue_date),
    )


def translate_pay(args: argparse.Namespace) -> core_logic.PaymentCommand:
    """Translate CLI args into a payment command object."""
    return core_logic.PaymentCommand(
        invoice_id=args.document,
        amount=parse_decimal(args.amount, "Amount"),
        method=PaymentMethod(args.method),
        payment_date=parse_date(args.payment_date),
        check_number=args.check_number,
        notes=args.notes,
    )


def translate_transfer(args: argparse.Namespace) -> core_logic.TransferCommand:
    """Translate CLI args into a transfer command object."""
    return core_logic.TransferCommand(
        from_warehouse_id=args.from_warehouse_id,
        to_warehouse_id=args.to_warehouse_id,
        lines=[parse_transfer_line(raw) for raw in args.lines],
        transfer_date=parse_date(args.transfer_date),
    )


def format_document(document: Document) -> str:
    counterparty = document.client_id or document.vendor_name or "-"
    return (
        f"{document.code}\t{document.doc_type.value}\t{document.channel.value}\t"
        f"{document.issue_date.isoformat()}\t{document.status.value}\t{counterparty}"
    )


def run_add_client(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-client workflow in the BLL."""
    client = core_logic.register_client(context, translate_add_client(args))
    print(f"{client.code}\t{client.client_id}\t{client.name}")
    return 0


def run_add_warehouse(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-warehouse workflow in the BLL."""
    command = core_logic.RegisterWarehouseCommand(name=args.name, warehouse_id=args.warehouse_id)
    warehouse = core_logic.register_warehouse(context, command)
    print(f"{warehouse.warehouse_id}\t{warehouse.name}")
    return 0


def run_add_article(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-article workflow in the BLL."""
    article = core_logic.register_article(context, translate_add_article(args))
    print(f"{article.article_id}\t{article.sku}\t{article.name}")
    return 0


def run_create(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the document creation workflow via the BLL."""
    document = core_logic.create_document(context, translate_create(args))
    print(format_document(document))
    return 0


def run_transform(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transformation workflow via the BLL."""
    document = core_logic.transform_document(
        context,
        args.document,
        on=parse_date(args.on),
        check_stock=args.check_stock,
    )
    print(format_document(document))
    return 0


def run_return(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the return workflow via the BLL."""
    document = core_logic.create_return(context, args.document, on=parse_date(args.on))
    print(format_document(document))
    return 0


def run_delete(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.delete_document(context, args.document)
    print(f"Deleted {document.code}")
    return 0


def run_pay(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the payment workflow via the BLL."""
    command = translate_pay(args)
    core_logic.record_payment(context, command)
    invoice = core_logic.get_document(context, command.invoice_id)
    remaining = core_logic.remaining_balance(context, invoice.document_id)
    print(f"{invoice.code}\t{invoice.payment_status.value}\tpaid {invoice.total_paid}\tremaining {remaining}")
    return 0


def run_post(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.post_invoice(context, args.document)
    print(format_document(document))
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    command = core_logic.StockAdjustmentCommand(
        warehouse_id=args.warehouse_id,
        article_id=args.article_id,
        delta=args.delta,
        reason=args.reason,
    )
    quantity = core_logic.adjust_stock(context, command)
    print(f"{args.warehouse_id}\t{args.article_id}\t{quantity}")
    return 0


def run_remove_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.remove_stock(context, args.warehouse_id, args.article_id)
    return 0


def run_transfer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock transfer workflow via the BLL."""
    record = core_logic.transfer_stock(context, translate_transfer(args))
    print(f"{record.transfer_id}\t{record.from_warehouse_id} -> {record.to_warehouse_id}")
    return 0


def run_toggle_tax(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.set_tax_inclusion(context, args.document, args.state == "on")
    print(f"{document.code}\ttax {'included' if document.include_tax else 'excluded'}")
    return 0


def run_set_accounting(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.set_accounting_inclusion(context, args.document, args.state == "on")
    print(f"{document.code}\t{document.accounting.value}")
    return 0


def run_pull(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    snapshot = core_logic.pull_remote(context)
    print(f"Pulled revision {snapshot.revision} ({len(snapshot.documents)} documents)")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restore workflow from a JSON backup file."""
    try:
        payload = json.loads(Path(args.input_path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Backup file is not valid JSON: {exc}") from exc
    snapshot = core_logic.restore_remote(context, payload)
    print(f"Restored {len(snapshot.documents)} documents")
    return 0


def run_documents(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the document listing workflow."""
    for document in core_logic.list_documents(
        context,
        channel=Channel(args.channel) if args.channel else None,
        doc_type=DocType(args.doc_type) if args.doc_type else None,
        order_by=args.order_by,
        accounting_only=args.accounting_only,
    ):
        print(format_document(document))
    return 0


def run_show(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    document = core_logic.get_document(context, args.document)
    print(format_document(document))
    for line in document.lines:
        print(f"  {line.article_id}\t{line.description}\t{line.quantity} x {line.unit_price} - {line.discount}")
    successor, returned = core_logic.document_links(context, document.document_id)
    if successor is not None:
        print(f"Next\t{successor.code}")
    if returned is not None:
        print(f"Return\t{returned.code}")
    return 0


def run_totals(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    totals = core_logic.get_totals(context, args.document)
    currency = context.snapshot.company.currency
    rows: List[tuple[str, Decimal]] = [
        ("Gross", totals.gross_total),
        ("Discounts", totals.discount_total),
        ("Excl. tax", totals.exclusive_total),
        ("Tax", totals.tax_amount),
        ("Payable", totals.payable_total),
    ]
    for label, amount in rows:
        print(f"{label}\t{round_for_display(amount)} {currency}")
    return 0


def run_payments(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for payment in core_logic.list_payments(context, args.document):
        print(
            f"{payment.payment_date.isoformat()}\t{payment.method.value}\t{payment.amount}\t"
            f"{payment.check_number or '-'}"
        )
    print(f"Remaining\t{core_logic.remaining_balance(context, args.document)}")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the stock reporting workflow."""
    for warehouse_id, article_id, quantity in core_logic.stock_levels(context, args.warehouse_id):
        print(f"{warehouse_id}\t{article_id}\t{quantity}")
    return 0


def run_sync_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    health = core_logic.replication_health(context)
    last_success = health.last_success_at.isoformat() if health.last_success_at else "never"
    reachable = core_logic.remote_reachable(context)
    remote = "none" if reachable is None else ("reachable" if reachable else "unreachable")
    print(
        f"pending={health.pending} failures={health.consecutive_failures} "
        f"last_success={last_success} remote={remote}"
    )
    if health.last_error:
        print(f"last_error={health.last_error}")
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the remote backup, or the local snapshot with ``--local``."""
    payload = core_logic.local_backup(context) if args.local else core_logic.backup_remote(context)
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.output_path is None:
        print(text)
    else:
        Path(args.output_path).write_text(text, encoding="utf-8")
        log.info("Backup written to '%s'", args.output_path)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, (ValidationError, BusinessRuleViolation, InsufficientStock)):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, ConflictError):
        log.error("%s; reload and retry", error)
        return 4
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None:
            core_logic.close_context(context)
            if core_logic.replication_health(context).pending:
                log.warning("Latest snapshot not replicated; the next successful push will include it")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
