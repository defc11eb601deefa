"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from comptoir_ledger import cli, core_logic, data_manager
from comptoir_ledger.constants import Channel, DocType, PaymentMethod
from comptoir_ledger.documents import LineDraft
from comptoir_ledger.errors import (
    AlreadyTransformed,
    ConflictError,
    InsufficientStock,
    ValidationError,
)
from comptoir_ledger.models import TransferLine


WRITE_COMMANDS = {
    "add-client",
    "add-warehouse",
    "add-article",
    "create",
    "transform",
    "return",
    "delete",
    "pay",
    "post",
    "adjust-stock",
    "remove-stock",
    "transfer",
    "toggle-tax",
    "set-accounting",
    "pull",
    "restore",
}

READ_COMMANDS = {
    "documents",
    "show",
    "stock",
    "totals",
    "payments",
    "sync-status",
    "backup",
}


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


@pytest.fixture
def subparsers_action(cli_parser) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    return cli_parser.add_subparsers(dest="command")


def _parse(*argv: str) -> argparse.Namespace:
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    return parser.parse_args(list(argv))


def _snapshot_at(path: Path):
    return data_manager.read_snapshot(data_manager.open_workbook(path))


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()

    assert parser.prog == "comptoir-cli"
    assert "Comptoir Ledger" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_write_commands_returns_command_specs(subparsers_action):
    specs = cli.register_write_commands(subparsers_action)

    assert set(specs) == WRITE_COMMANDS
    assert all(isinstance(spec, cli.CommandSpec) for spec in specs.values())
    assert WRITE_COMMANDS <= set(subparsers_action.choices)


def test_register_read_commands_returns_command_specs(subparsers_action):
    specs = cli.register_read_commands(subparsers_action)

    assert set(specs) == READ_COMMANDS
    assert READ_COMMANDS <= set(subparsers_action.choices)


def test_create_command_arguments():
    args = _parse(
        "create",
        "--channel",
        "purchase",
        "--type",
        "BC",
        "--line",
        "p1:2",
        "--line",
        "p2:1:400",
        "--vendor-name",
        "Fournisseur Bois",
        "--without-tax",
        "--date",
        "2025-03-14",
    )

    assert args.command == "create"
    assert args.lines == ["p1:2", "p2:1:400"]
    assert args.include_tax is False
    assert args.issue_date == "2025-03-14"


def test_create_command_refuses_return_type():
    with pytest.raises(SystemExit):
        _parse("create", "--channel", "sales", "--type", "BR", "--line", "p1:1")


def test_transform_check_stock_defaults_to_settings():
    assert _parse("transform", "V-DV25-00001").check_stock is None
    assert _parse("transform", "V-DV25-00001", "--check-stock").check_stock is True


def test_build_command_table_detects_duplicate_commands():
    specs = [
        cli.CommandSpec("alpha", "A", lambda s: s.add_parser("alpha"), lambda c, a: 0),
        cli.CommandSpec("alpha", "Duplicate", lambda s: s.add_parser("alpha"), lambda c, a: 0),
    ]

    with pytest.raises(ValueError):
        cli.build_command_table(specs)


def test_dispatch_command_handles_unknown_commands(context):
    with pytest.raises(KeyError):
        cli.dispatch_command(context, argparse.Namespace(command="unknown"), {})


def test_load_runtime_context_defaults_to_cwd(monkeypatch, tmp_path):
    seen = {}

    def fake_loader(path):
        seen["path"] = path
        return "context"

    monkeypatch.setattr(core_logic, "load_runtime_context", fake_loader)
    monkeypatch.chdir(tmp_path)

    assert cli.load_runtime_context() == "context"
    assert seen["path"] == tmp_path / "config.ini"


# ---------------------------------------------------------------------------
# Argument parsing helpers
# ---------------------------------------------------------------------------


def test_parse_line_draft_variants():
    assert cli.parse_line_draft("p1:3") == LineDraft("p1", 3)
    assert cli.parse_line_draft("p1:3:120.50") == LineDraft("p1", 3, Decimal("120.50"))
    assert cli.parse_line_draft("p1:1:100:10") == LineDraft("p1", 1, Decimal("100"), Decimal("10"))
    assert cli.parse_line_draft("p1:1::5") == LineDraft("p1", 1, None, Decimal("5"))


@pytest.mark.parametrize("raw", ["p1", "p1:x", "p1:1:abc", "p1:1:2:3:4"])
def test_parse_line_draft_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        cli.parse_line_draft(raw)


def test_parse_transfer_line():
    assert cli.parse_transfer_line("p3:12") == TransferLine("p3", 12)
    with pytest.raises(ValidationError):
        cli.parse_transfer_line("p3")


def test_parse_date():
    assert cli.parse_date(None) is None
    assert cli.parse_date("2025-03-14") == date(2025, 3, 14)
    with pytest.raises(ValidationError):
        cli.parse_date("14/03/2025")


def test_translate_pay_returns_payment_command():
    args = _parse("pay", "V-FA25-00001", "--amount", "150.00", "--method", "check", "--check-number", "881")

    command = cli.translate_pay(args)

    assert command == core_logic.PaymentCommand(
        invoice_id="V-FA25-00001",
        amount=Decimal("150.00"),
        method=PaymentMethod.CHECK,
        check_number="881",
    )


def test_translate_create_returns_document_command():
    args = _parse("create", "--channel", "sales", "--type", "DV", "--line", "p1:2", "--client-id", "c1")

    command = cli.translate_create(args)

    assert command.channel == Channel.SALES
    assert command.doc_type == DocType.QUOTE
    assert command.lines == [LineDraft("p1", 2)]
    assert command.include_tax is None


# ---------------------------------------------------------------------------
# Command execution helpers
# ---------------------------------------------------------------------------


def test_run_create_invokes_bll(context, monkeypatch, capsys):
    called = {}
    original = core_logic.create_document

    def fake_create(ctx, command):
        called["context"] = ctx
        called["command"] = command
        return original(ctx, command)

    monkeypatch.setattr(cli.core_logic, "create_document", fake_create)
    args = _parse("create", "--channel", "sales", "--type", "DV", "--line", "p1:2", "--client-id", "c1")

    assert cli.run_create(context, args) == 0

    assert called["context"] is context
    assert called["command"].lines == [LineDraft("p1", 2)]
    assert capsys.readouterr().out.startswith("V-DV")


def test_run_stock_report_prints_rows(context, capsys):
    assert cli.run_stock_report(context, _parse("stock", "--warehouse-id", "d2")) == 0

    assert capsys.readouterr().out.splitlines() == ["d2\tp1\t5"]


def test_run_totals_prints_rounded_amounts(context, capsys):
    document = core_logic.create_document(
        context,
        core_logic.CreateDocumentCommand(
            channel=Channel.SALES, doc_type=DocType.QUOTE, lines=[LineDraft("p3", 1, Decimal("100"))], client_id="c1"
        ),
    )

    cli.run_totals(context, _parse("totals", document.code))

    out = capsys.readouterr().out.splitlines()
    assert "Excl. tax\t83.33 MAD" in out
    assert "Payable\t100.00 MAD" in out


def test_run_sync_status_without_remote(context, capsys):
    cli.run_sync_status(context, _parse("sync-status"))

    assert capsys.readouterr().out.strip() == "pending=False failures=0 last_success=never remote=none"


def test_run_show_prints_lines_and_links(context, capsys):
    order = core_logic.create_document(
        context,
        core_logic.CreateDocumentCommand(
            channel=Channel.SALES, doc_type=DocType.ORDER, lines=[LineDraft("p2", 2)], client_id="c1"
        ),
    )
    delivery = core_logic.transform_document(context, order.code)
    capsys.readouterr()

    cli.run_show(context, _parse("show", order.code))

    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith(f"{order.code}\tBC\tsales")
    assert out[1].startswith("  p2\t")
    assert out[-1] == f"Next\t{delivery.code}"


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "error, expected",
    [
        (ValidationError("bad amount"), 2),
        (AlreadyTransformed("already transformed"), 2),
        (InsufficientStock("d1", "p1", 0, 3), 2),
        (FileNotFoundError("missing"), 3),
        (ConflictError("stale"), 4),
        (RuntimeError("schema"), 1),
    ],
)
def test_handle_cli_error_returns_exit_code(error, expected, caplog):
    caplog.set_level("ERROR")

    assert cli.handle_cli_error(error) == expected
    assert caplog.records


def test_handle_cli_error_logs_human_readable_message(caplog):
    caplog.set_level("ERROR")

    cli.handle_cli_error(AlreadyTransformed("Document V-DV25-00001 was already transformed"))

    assert any("V-DV25-00001" in record.getMessage() for record in caplog.records)


# ---------------------------------------------------------------------------
# Program entry point
# ---------------------------------------------------------------------------


def test_main_runs_document_chain_against_workbook(config_factory, capsys):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]

    assert cli.main([*config, "create", "--channel", "sales", "--type", "DV", "--line", "p1:2",
                     "--client-id", "c1", "--date", "2025-03-14"]) == 0
    assert capsys.readouterr().out.startswith("V-DV25-00001\tDV\tsales\t2025-03-14\tdraft\tc1")

    assert cli.main([*config, "transform", "V-DV25-00001", "--date", "2025-03-14"]) == 0
    assert cli.main([*config, "transform", "V-BC25-00001", "--date", "2025-03-14"]) == 0
    assert cli.main([*config, "transform", "V-BL25-00001", "--date", "2025-03-14"]) == 0

    snapshot = _snapshot_at(bundle.workbook_path)
    assert snapshot.stock[("d1", "p1")] == 18
    assert [doc.code for doc in snapshot.documents] == [
        "V-DV25-00001",
        "V-BC25-00001",
        "V-BL25-00001",
        "V-FA25-00001",
    ]
    assert snapshot.revision == 4


def test_main_reports_business_errors_with_exit_code(config_factory):
    bundle = config_factory()
    config = ["--config", str(bundle.config_path)]
    cli.main([*config, "create", "--channel", "sales", "--type", "DV", "--line", "p1:1", "--client-id", "c1"])
    code = _snapshot_at(bundle.workbook_path).documents[0].code

    assert cli.main([*config, "transform", code]) == 0
    assert cli.main([*config, "transform", code]) == 2
    assert _snapshot_at(bundle.workbook_path).revision == 2


def test_main_missing_config_returns_three(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_main_schema_mismatch_returns_one(config_factory):
    bundle = config_factory(schema_version="0.1.0")

    assert cli.main(["--config", str(bundle.config_path), "stock"]) == 1


def test_main_stock_report(config_factory, capsys):
    bundle = config_factory()

    assert cli.main(["--config", str(bundle.config_path), "stock", "--warehouse-id", "d1"]) == 0

    assert capsys.readouterr().out.splitlines() == ["d1\tp1\t20", "d1\tp2\t50", "d1\tp3\t200"]


def test_main_local_backup_to_file(config_factory, tmp_path):
    bundle = config_factory()
    output = tmp_path / "backup.json"

    assert cli.main(["--config", str(bundle.config_path), "backup", "--local", "--output", str(output)]) == 0

    payload = json.loads(output.read_text(encoding="utf-8"))
    assert [depot["id"] for depot in payload["depots"]] == ["d1", "d2"]
    assert payload["revision"] == 0


def test_main_remote_backup_without_remote_fails(config_factory):
    bundle = config_factory()

    assert cli.main(["--config", str(bundle.config_path), "backup"]) == 1


def test_main_restore_rejects_invalid_json(config_factory, tmp_path):
    bundle = config_factory()
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    assert cli.main(["--config", str(bundle.config_path), "restore", "--input", str(broken)]) == 2
