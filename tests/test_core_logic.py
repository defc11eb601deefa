"""Unit tests verifying the business logic layer over an in-memory store."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import httpx
import pytest

from comptoir_ledger import core_logic, stock
from comptoir_ledger.constants import (
    AccountingInclusion,
    Channel,
    ClientType,
    DocType,
    DocumentStatus,
    PaymentMethod,
    PaymentStatus,
)
from comptoir_ledger.documents import LineDraft
from comptoir_ledger.errors import (
    AlreadyTransformed,
    ConflictError,
    DuplicateCode,
    InsufficientStock,
    MissingReferenceError,
    ReplicationError,
    ValidationError,
)
from comptoir_ledger.models import TransferLine
from comptoir_ledger.persistence import InMemorySnapshotStore, WorkbookSnapshotStore
from comptoir_ledger.replication import NullReplicator, RemoteClient, Replicator
from comptoir_ledger.setup_workbook import seed_snapshot
from comptoir_ledger.wire import snapshot_to_wire

ISSUE_DATE = date(2025, 3, 14)


def _quote(**overrides) -> core_logic.CreateDocumentCommand:
    values = dict(
        channel=Channel.SALES,
        doc_type=DocType.QUOTE,
        lines=[LineDraft("p1", 2)],
        client_id="c1",
        issue_date=ISSUE_DATE,
    )
    values.update(overrides)
    return core_logic.CreateDocumentCommand(**values)


def _invoice(context, unit_price="200"):
    document = core_logic.create_document(
        context,
        _quote(doc_type=DocType.ORDER, lines=[LineDraft("p3", 1, Decimal(unit_price))], include_tax=False),
    )
    for _ in range(2):
        document = core_logic.transform_document(context, document.code, on=ISSUE_DATE)
    return document


class _RemoteStub:
    """MockTransport handler keeping one stored JSON document."""

    def __init__(self, stored=None) -> None:
        self.stored = stored
        self.paths = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.paths.append((request.method, request.url.path))
        if request.url.path == "/health":
            return httpx.Response(200, json={"ok": True})
        if request.method == "POST":
            self.stored = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(
            200,
            content=json.dumps(self.stored).encode("utf-8"),
            headers={"content-type": "application/json"},
        )


@pytest.fixture
def remote_context(context):
    """Attach a non-started replicator talking to a stub remote."""

    stub = _RemoteStub()
    client = RemoteClient("http://remote.test", transport=httpx.MockTransport(stub))
    context.replicator = Replicator(client, autostart=False)
    yield context, stub
    client.close()


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


def test_load_runtime_context_from_config(config_factory):
    bundle = config_factory()

    context = core_logic.load_runtime_context(bundle.config_path)

    assert isinstance(context.store, WorkbookSnapshotStore)
    assert isinstance(context.replicator, NullReplicator)
    assert context.settings.default_warehouse_id == "d1"
    assert context.snapshot.find_warehouse("d1") is not None
    core_logic.ensure_schema_version(context)


def test_load_runtime_context_with_remote_builds_replicator(config_factory):
    bundle = config_factory(remote_url="http://remote.test")
    stub = _RemoteStub()

    context = core_logic.load_runtime_context(
        bundle.config_path, transport=httpx.MockTransport(stub), autostart=False
    )
    try:
        assert isinstance(context.replicator, Replicator)
        assert context.replicator.client.base_url == "http://remote.test"
    finally:
        core_logic.close_context(context)


def test_load_runtime_context_missing_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        core_logic.load_runtime_context(tmp_path / "config.ini")


def test_ensure_schema_version_rejects_configuration_mismatch(context):
    context.settings = replace(context.settings, schema_version="0.0.1")

    with pytest.raises(RuntimeError, match="configuration"):
        core_logic.ensure_schema_version(context)


def test_ensure_schema_version_rejects_workbook_mismatch(context):
    context.store.schema_version = "0.0.1"

    with pytest.raises(RuntimeError, match="workbook"):
        core_logic.ensure_schema_version(context)


# ---------------------------------------------------------------------------
# Mutation unit
# ---------------------------------------------------------------------------


def test_successful_operation_commits_new_revision(context):
    document = core_logic.create_document(context, _quote())

    assert context.snapshot.revision == 1
    assert context.store.current_revision() == 1
    assert context.store.load().documents == [document]


def test_failed_operation_leaves_snapshot_and_store_untouched(context):
    quote = core_logic.create_document(context, _quote())
    core_logic.transform_document(context, quote.code)
    before = context.snapshot

    with pytest.raises(AlreadyTransformed):
        core_logic.transform_document(context, quote.code)

    assert context.snapshot is before
    assert context.store.current_revision() == 2
    assert len(context.store.load().documents) == 2


def test_out_of_band_commit_raises_conflict_until_refresh(context):
    other_writer = context.store.load()
    stock.adjust(other_writer, "d1", "p2", -5)
    context.store.commit(other_writer, expected_revision=0)

    with pytest.raises(ConflictError):
        core_logic.create_document(context, _quote())

    assert context.snapshot.documents == []
    core_logic.refresh_context(context)
    document = core_logic.create_document(context, _quote())

    assert context.snapshot.revision == 2
    assert stock.quantity_of(context.snapshot, "d1", "p2") == 45
    assert document.code == "V-DV25-00001"


def test_commits_are_scheduled_for_replication(context):
    context.replicator = Mock()

    core_logic.create_document(context, _quote())

    context.replicator.schedule.assert_called_once_with(context.snapshot)


def test_failed_operations_are_not_replicated(context):
    context.replicator = Mock()

    with pytest.raises(ValidationError):
        core_logic.create_document(context, _quote(client_id=None))

    context.replicator.schedule.assert_not_called()


def test_replication_failure_does_not_fail_the_caller(remote_context):
    context, stub = remote_context

    def down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    context.replicator.client = RemoteClient("http://remote.test", transport=httpx.MockTransport(down))
    context.replicator.max_attempts = 1

    document = core_logic.create_document(context, _quote())

    assert context.replicator.flush() is False
    health = core_logic.replication_health(context)
    assert health.pending is True
    assert health.last_error is not None
    assert context.snapshot.documents == [document]
    context.replicator.client.close()


# ---------------------------------------------------------------------------
# Registrations
# ---------------------------------------------------------------------------


def test_register_client_allocates_next_code(context):
    client = core_logic.register_client(context, core_logic.RegisterClientCommand("Menuiserie Nord", ClientType.WEB))

    assert client.code == "CL-00003"
    assert client.client_type == ClientType.WEB
    assert context.snapshot.find_client(client.client_id) == client


def test_register_client_requires_name(context):
    with pytest.raises(ValidationError):
        core_logic.register_client(context, core_logic.RegisterClientCommand("   "))

    assert context.snapshot.revision == 0


def test_register_warehouse_with_explicit_id(context):
    warehouse = core_logic.register_warehouse(context, core_logic.RegisterWarehouseCommand("Annexe", "d3"))

    assert warehouse.warehouse_id == "d3"
    with pytest.raises(DuplicateCode):
        core_logic.register_warehouse(context, core_logic.RegisterWarehouseCommand("Again", "d1"))


def test_register_article_rejects_duplicate_sku_and_negative_price(context):
    article = core_logic.register_article(
        context, core_logic.RegisterArticleCommand(sku="SR-004", name="Serrure 3 points", price=Decimal("380"))
    )
    assert article.unit == "u"

    with pytest.raises(DuplicateCode):
        core_logic.register_article(
            context, core_logic.RegisterArticleCommand(sku="DR-001", name="Copie", price=Decimal("1"))
        )
    with pytest.raises(ValidationError):
        core_logic.register_article(
            context, core_logic.RegisterArticleCommand(sku="XX-1", name="Négatif", price=Decimal("-1"))
        )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def test_create_document_defaults_warehouse_from_settings(context):
    document = core_logic.create_document(context, _quote())

    assert document.warehouse_id == "d1"


def test_create_document_explicit_warehouse_wins(context):
    assert core_logic.create_document(context, _quote(warehouse_id="d2")).warehouse_id == "d2"


def test_transform_by_code_moves_stock_at_delivery(context):
    quote = core_logic.create_document(context, _quote())

    order = core_logic.transform_document(context, quote.code)
    delivery = core_logic.transform_document(context, order.document_id)

    assert delivery.status == DocumentStatus.DELIVERED
    assert core_logic.stock_levels(context, "d1")[0] == ("d1", "p1", 18)


def test_transform_uses_configured_stock_validation(context):
    context.settings = replace(context.settings, validate_stock=True)
    order = core_logic.create_document(context, _quote(doc_type=DocType.ORDER, lines=[LineDraft("p1", 25)]))

    with pytest.raises(InsufficientStock):
        core_logic.transform_document(context, order.code)

    delivery = core_logic.transform_document(context, order.code, check_stock=False)
    assert stock.quantity_of(context.snapshot, "d1", "p1") == -5
    assert delivery.doc_type == DocType.DELIVERY


def test_update_document_by_code(context):
    quote = core_logic.create_document(context, _quote())

    updated = core_logic.update_document(
        context, core_logic.UpdateDocumentCommand(document_id=quote.code, lines=[LineDraft("p2", 1)])
    )

    assert updated.lines[0].article_id == "p2"


def test_delete_document_removes_it(context):
    quote = core_logic.create_document(context, _quote())

    core_logic.delete_document(context, quote.code)

    assert core_logic.list_documents(context) == []
    with pytest.raises(MissingReferenceError):
        core_logic.get_document(context, quote.code)


def test_create_return_by_code(context):
    order = core_logic.create_document(context, _quote(doc_type=DocType.ORDER))
    delivery = core_logic.transform_document(context, order.code)

    br = core_logic.create_return(context, delivery.code)

    assert br.code.startswith("V-BR")
    assert stock.quantity_of(context.snapshot, "d1", "p1") == 20


def test_document_links_follow_back_references(context):
    order = core_logic.create_document(context, _quote(doc_type=DocType.ORDER))
    delivery = core_logic.transform_document(context, order.code)
    br = core_logic.create_return(context, delivery.code)

    assert core_logic.document_links(context, order.code) == (delivery, None)
    assert core_logic.document_links(context, delivery.document_id) == (None, br)
    with pytest.raises(MissingReferenceError):
        core_logic.document_links(context, "V-BL25-09999")


def test_tax_and_accounting_toggles(context):
    quote = core_logic.create_document(context, _quote())
    assert core_logic.set_tax_inclusion(context, quote.code, False).include_tax is False

    invoice = core_logic.create_document(context, _quote(doc_type=DocType.INVOICE))
    excluded = core_logic.set_accounting_inclusion(context, invoice.code, False)
    assert excluded.accounting == AccountingInclusion.EXCLUDED
    assert core_logic.list_documents(context, accounting_only=True) == []

    core_logic.set_accounting_inclusion(context, invoice.code, True)
    assert [doc.code for doc in core_logic.list_documents(context, accounting_only=True)] == [invoice.code]


def test_post_invoice(context):
    invoice = _invoice(context)

    assert core_logic.post_invoice(context, invoice.code).status == DocumentStatus.POSTED


def test_list_documents_filters(context):
    core_logic.create_document(context, _quote())
    core_logic.create_document(
        context, _quote(channel=Channel.PURCHASE, client_id=None, vendor_name="Fournisseur Bois")
    )

    assert len(core_logic.list_documents(context)) == 2
    assert [doc.channel for doc in core_logic.list_documents(context, channel=Channel.PURCHASE)] == [
        Channel.PURCHASE
    ]


def test_get_totals(context):
    quote = core_logic.create_document(context, _quote())

    totals = core_logic.get_totals(context, quote.code)

    assert totals.payable_total == Decimal("3000")


# ---------------------------------------------------------------------------
# Payments and stock
# ---------------------------------------------------------------------------


def test_record_payment_by_invoice_code(context):
    invoice = _invoice(context)

    core_logic.record_payment(
        context,
        core_logic.PaymentCommand(invoice_id=invoice.code, amount=Decimal("150"), method=PaymentMethod.CASH),
    )

    assert core_logic.get_document(context, invoice.code).payment_status == PaymentStatus.PARTIAL
    assert core_logic.remaining_balance(context, invoice.code) == Decimal("50")
    assert len(core_logic.list_payments(context, invoice.code)) == 1


def test_adjust_stock_validations(context):
    with pytest.raises(ValidationError):
        core_logic.adjust_stock(context, core_logic.StockAdjustmentCommand("d1", "p1", 0))
    with pytest.raises(MissingReferenceError):
        core_logic.adjust_stock(context, core_logic.StockAdjustmentCommand("nowhere", "p1", 1))
    with pytest.raises(MissingReferenceError):
        core_logic.adjust_stock(context, core_logic.StockAdjustmentCommand("d1", "ghost", 1))

    quantity = core_logic.adjust_stock(context, core_logic.StockAdjustmentCommand("d1", "p1", -3, "casse"))

    assert quantity == 17
    assert context.snapshot.revision == 1


def test_remove_stock(context):
    core_logic.remove_stock(context, "d2", "p1")

    assert core_logic.stock_levels(context, "d2") == []


def test_transfer_stock_commits_both_sides(context):
    record = core_logic.transfer_stock(
        context,
        core_logic.TransferCommand("d1", "d2", [TransferLine("p3", 50)], transfer_date=ISSUE_DATE),
    )

    assert context.store.load().transfers == [record]
    assert stock.quantity_of(context.snapshot, "d1", "p3") == 150
    assert stock.quantity_of(context.snapshot, "d2", "p3") == 50


def test_insufficient_transfer_commits_nothing(context):
    with pytest.raises(InsufficientStock):
        core_logic.transfer_stock(context, core_logic.TransferCommand("d2", "d1", [TransferLine("p1", 6)]))

    assert context.store.current_revision() == 0
    assert context.snapshot.transfers == []


# ---------------------------------------------------------------------------
# Remote operations
# ---------------------------------------------------------------------------


def test_remote_operations_need_a_remote(context):
    with pytest.raises(ReplicationError, match="No remote configured"):
        core_logic.pull_remote(context)
    with pytest.raises(ReplicationError):
        core_logic.backup_remote(context)


def test_pull_remote_adopts_remote_snapshot(remote_context):
    context, stub = remote_context
    remote = seed_snapshot(company_name="Siège Casablanca")
    remote.revision = 9
    stub.stored = snapshot_to_wire(remote)

    adopted = core_logic.pull_remote(context)

    assert adopted.company.name == "Siège Casablanca"
    assert adopted.revision == 9
    assert context.store.load().company.name == "Siège Casablanca"


def test_pull_remote_without_data_raises(remote_context):
    context, _ = remote_context

    with pytest.raises(ReplicationError, match="no snapshot"):
        core_logic.pull_remote(context)


def test_backup_remote_returns_raw_payload(remote_context):
    context, stub = remote_context
    stub.stored = {"company": {"name": "Atlas"}}

    assert core_logic.backup_remote(context) == {"company": {"name": "Atlas"}}


def test_local_backup_encodes_committed_snapshot(context):
    core_logic.create_document(context, _quote())

    payload = core_logic.local_backup(context)

    assert payload["revision"] == 1
    assert payload["documents"][0]["code"] == "V-DV25-00001"


def test_restore_remote_posts_and_adopts(remote_context):
    context, stub = remote_context
    backup = seed_snapshot(company_name="Restauré")
    payload = snapshot_to_wire(backup)

    adopted = core_logic.restore_remote(context, payload)

    assert ("POST", "/api/restore") in stub.paths
    assert adopted.company.name == "Restauré"
    assert context.snapshot.revision == 1


def test_restore_rejects_malformed_payload_before_sending(remote_context):
    context, stub = remote_context

    with pytest.raises(ValidationError):
        core_logic.restore_remote(context, {"documents": [{"id": "x"}]})

    assert stub.paths == []
    assert context.snapshot.revision == 0


def test_mutations_replicate_through_flush(remote_context):
    context, stub = remote_context

    core_logic.create_document(context, _quote())
    core_logic.close_context(context)

    assert stub.stored["revision"] == 1
    assert stub.stored["documents"][0]["code"] == "V-DV25-00001"


def test_in_memory_context_starts_from_seed(settings):
    store = InMemorySnapshotStore(seed_snapshot())
    context = core_logic.RuntimeContext(settings=settings, store=store, snapshot=store.load())

    assert core_logic.replication_health(context).pending is False
    assert len(core_logic.stock_levels(context)) == 4


def test_remote_reachable_reports_health(remote_context):
    context, stub = remote_context

    assert core_logic.remote_reachable(context) is True
    assert stub.paths[-1] == ("GET", "/health")


def test_remote_reachable_without_remote_is_none(context):
    assert core_logic.remote_reachable(context) is None


def test_remote_reachable_false_when_remote_is_down(context):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = RemoteClient("http://remote.test", transport=httpx.MockTransport(refuse))
    context.replicator = Replicator(client, autostart=False)

    assert core_logic.remote_reachable(context) is False
    client.close()
