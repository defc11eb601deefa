"""Utility for initializing the Comptoir Ledger workbook.

The module doubles as a script (``python -m comptoir_ledger.setup_workbook``)
and as a library used by tests or other tooling. Shared helpers keep the
workbook bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional, Sequence

from . import data_manager
from .constants import DEFAULT_CURRENCY, CLIENT_COUNTER_KEY, ClientType
from .models import Article, Client, Company, Snapshot, Warehouse

CONFIG_FILE = "config.ini"

DEFAULT_COMPANY_NAME = "Atlas Portes SARL"


def seed_snapshot(company_name: str = DEFAULT_COMPANY_NAME, currency: str = DEFAULT_CURRENCY) -> Snapshot:
    """Return the demo data a fresh installation starts with.

    Two clients, two warehouses, three articles and opening stock in both
    warehouses. The client counter is advanced past the seeded codes.
    """

    return Snapshot(
        company=Company(name=company_name, currency=currency),
        clients=[
            Client(client_id="c1", code="CL-00001", name="Client Comptoir", client_type=ClientType.COUNTER),
            Client(client_id="c2", code="CL-00002", name="Client Web", client_type=ClientType.WEB),
        ],
        warehouses=[
            Warehouse(warehouse_id="d1", name="Dépôt Central"),
            Warehouse(warehouse_id="d2", name="Showroom"),
        ],
        articles=[
            Article(article_id="p1", sku="DR-001", name="Porte Bois Chêne", unit="u", price=Decimal("1500")),
            Article(article_id="p2", sku="FR-002", name="Cadre Métal 90cm", unit="u", price=Decimal("450")),
            Article(article_id="p3", sku="AC-003", name="Poignée Inox", unit="u", price=Decimal("120")),
        ],
        stock={
            ("d1", "p1"): 20,
            ("d1", "p2"): 50,
            ("d1", "p3"): 200,
            ("d2", "p1"): 5,
        },
        counters={CLIENT_COUNTER_KEY: 2},
        seeded=True,
    )


def create_master_workbook(
    destination: Path,
    *,
    company_name: str = DEFAULT_COMPANY_NAME,
    currency: str = DEFAULT_CURRENCY,
    seed: bool = True,
    overwrite: bool = False,
) -> Path:
    """Create the ledger workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists. With ``seed`` unset the
    workbook only carries headers and company metadata.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing workbook: {destination}")

    if seed:
        snapshot = seed_snapshot(company_name, currency)
    else:
        snapshot = Snapshot(company=Company(name=company_name, currency=currency))

    workbook = data_manager.new_workbook()
    data_manager.write_snapshot(workbook, snapshot)
    data_manager.save_workbook(workbook, destination)
    return destination


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini``; relative paths resolve against its directory."""

    config_path = Path(config_path).expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def run_from_config(config_path: Path, *, overwrite: bool = False, seed: bool = True) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        company_name=settings.company_name,
        currency=settings.currency,
        seed=seed,
        overwrite=overwrite,
    )


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Comptoir Ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Create the sheets without the demo clients, warehouses and articles.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Comptoir Ledger Setup ---")
    print(f"Using configuration: {config_path}")
    try:
        output_path = run_from_config(config_path, overwrite=args.force, seed=not args.empty)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
