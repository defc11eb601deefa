"""Shared pytest fixtures and utilities for Comptoir Ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from comptoir_ledger import constants, core_logic, data_manager, sequence  # noqa: E402
from comptoir_ledger.constants import Channel, DocType  # noqa: E402
from comptoir_ledger.documents import LineDraft, new_document  # noqa: E402
from comptoir_ledger.models import Snapshot  # noqa: E402
from comptoir_ledger.persistence import InMemorySnapshotStore  # noqa: E402
from comptoir_ledger.setup_workbook import create_master_workbook, seed_snapshot  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ISSUE_DATE = date(2025, 3, 14)
CODE_YEAR = 2025
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n"
    "Currency = MAD\n\n"
    "[Defaults]\n"
    "DefaultWarehouse = {default_warehouse}\n"
    "ValidateStock = {validate_stock}\n\n"
    "[Sync]\n"
    "RemoteURL = {remote_url}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    company_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _pin_code_year(monkeypatch: pytest.MonkeyPatch) -> None:
    """Allocate document codes in a fixed year so expected codes stay stable."""

    monkeypatch.setattr(sequence, "current_year", lambda: CODE_YEAR)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed: bool = True,
        filename: str = "ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed=seed, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        company_name: str = "Test Company",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_warehouse: str = "d1",
        validate_stock: bool = False,
        remote_url: str = "",
        seed: bool = True,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", seed=seed)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                company_name=company_name,
                schema_version=schema_version,
                default_warehouse=default_warehouse,
                validate_stock="yes" if validate_stock else "no",
                remote_url=remote_url,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            company_name=company_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        company_name="Test Company",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_warehouse_id="d1",
    )


@pytest.fixture
def snapshot() -> Snapshot:
    """A seeded working snapshot: clients c1/c2, warehouses d1/d2, articles p1..p3."""

    return seed_snapshot()


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context over an in-memory store holding the seed data."""

    store = InMemorySnapshotStore(seed_snapshot())
    return core_logic.RuntimeContext(settings=settings, store=store, snapshot=store.load())


@pytest.fixture
def make_document(snapshot: Snapshot) -> Callable[..., object]:
    """Author a draft directly on the ``snapshot`` fixture."""

    def _make(
        channel: Channel = Channel.SALES,
        doc_type: DocType = DocType.QUOTE,
        *,
        lines: list[LineDraft] | None = None,
        warehouse_id: str | None = "d1",
        client_id: str | None = None,
        vendor_name: str | None = None,
        include_tax: bool | None = None,
    ):
        if client_id is None and channel == Channel.SALES:
            client_id = "c1"
        if vendor_name is None and channel == Channel.PURCHASE:
            vendor_name = "Fournisseur Bois"
        return new_document(
            snapshot,
            channel=channel,
            doc_type=doc_type,
            lines=lines or [LineDraft("p1", 2)],
            warehouse_id=warehouse_id,
            client_id=client_id,
            vendor_name=vendor_name,
            include_tax=include_tax,
            issue_date=ISSUE_DATE,
        )

    return _make
