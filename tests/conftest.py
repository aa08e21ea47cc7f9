"""Shared fixtures: a small provider payload and a service wired to it.

Every test evaluates expiry against the fixed ``AS_OF`` instant so statuses do
not drift as real time passes.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest

from inventory_reports.cache import TransactionStore
from inventory_reports.canonicalizer import canonicalize, to_rows
from inventory_reports.config import AppConfig
from inventory_reports.models import TransactionKind
from inventory_reports.services import JsonFileProvider, ReportService

AS_OF = datetime(2025, 6, 1, 12, 0)


def import_payload() -> list[dict]:
    """Three imports: A has two lines, B one expired line, C no lines."""

    return [
        {
            "id": 101,
            "imp_date": "2025-05-10",
            "supplier": {"supplier": "Acme Pharma"},
            "staff": {"full_name": "Dana Reyes"},
            "total": "450.00",
            "import_details": [
                {
                    "pro_name": "Paracetamol",
                    "qty": 10,
                    "price": 15,
                    "amount": 150,
                    "batch_number": "B-001",
                    "expiration_date": "2026-12-31",
                    "category_name": "Analgesics",
                },
                {
                    "product": {"pro_name": "Amoxicillin", "category": {"name": "Antibiotics"}},
                    "quantity": "5",
                    "price": "60.00",
                    "amount": "300.00",
                    "batchNumber": "B-002",
                    "expirationDate": "2027-01-31",
                },
            ],
        },
        {
            "id": 102,
            "imp_date": "2025-05-15",
            "supplier": "Acme Pharma",
            "staff_name": "Import from",
            "importDetails": [
                {
                    "pro_name": "Ibuprofen",
                    "qty": 8,
                    "price": 9.375,
                    "amount": 75,
                    "batch": "B-003",
                    "expiry": "2025-01-15",
                },
            ],
        },
        {
            "id": 103,
            "imp_date": "2025-05-20",
            "supplier_name": "Beta Supplies",
            "staff_id": 7,
            "total_amount": 75,
        },
    ]


def order_payload() -> dict:
    """Two May orders and one April order, wrapped in a nested envelope."""

    return {
        "data": {
            "data": [
                {
                    "order_id": "S-1",
                    "ord_date": "2025-05-12",
                    "cus_name": "Alice",
                    "staff": {"name": "Sam"},
                    "payment_status": "Paid",
                    "order_details": [
                        {"pro_name": "Paracetamol", "qty": 4, "amount": 80, "category_name": "Analgesics"},
                        {
                            "product": {"name": "Vitamin C", "category": {"name": "Supplements"}},
                            "qty": 2,
                            "amount": 20,
                        },
                    ],
                },
                {
                    "order_id": "S-2",
                    "ord_date": "2025-05-20",
                    "customer": {"name": "Bob"},
                    "staff_name": "Lee",
                    "orderDetails": [
                        {"pro_name": "Paracetamol", "qty": 6, "amount": 120, "category_name": "Analgesics"},
                    ],
                },
                {
                    "order_id": "S-0",
                    "ord_date": "2025-04-20",
                    "cus_name": "Alice",
                    "staff_name": "Sam",
                    "payment_status": "Paid",
                    "order_details": [
                        {"pro_name": "Vitamin C", "qty": 10, "amount": 100, "category_name": "Supplements"},
                    ],
                },
            ]
        }
    }


@pytest.fixture
def import_records():
    return canonicalize(import_payload(), TransactionKind.IMPORT)


@pytest.fixture
def import_rows(import_records):
    return to_rows(import_records, as_of=AS_OF)


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "imports.json").write_text(json.dumps(import_payload()), encoding="utf-8")
    (directory / "orders.json").write_text(json.dumps(order_payload()), encoding="utf-8")
    return directory


@pytest.fixture
def config(tmp_path: Path, data_dir: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        data_dir=data_dir,
        export_dir=tmp_path / "exports",
        fetch_timeout=1.0,
        export_timeout=2.0,
        retry_delay=0.0,
        dual_export_pause=0.0,
        preview_page_size=2,
    )


@pytest.fixture
def service(config: AppConfig) -> ReportService:
    return ReportService(config, JsonFileProvider(config.data_dir), TransactionStore(), clock=lambda: AS_OF)
