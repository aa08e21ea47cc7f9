from __future__ import annotations

from datetime import date
from io import BytesIO, StringIO

import pandas as pd
import pytest
from openpyxl import load_workbook

from conftest import AS_OF
from inventory_reports import renderers
from inventory_reports.aggregator import aggregate
from inventory_reports.canonicalizer import canonicalize, to_rows
from inventory_reports.errors import InvalidExportRequestError, MissingDataError, RenderError
from inventory_reports.models import ExportFormat, TransactionKind
from inventory_reports.renderers import (
    IMPORT_COLUMNS,
    SALE_COLUMNS,
    paginate,
    render,
    resolve_columns,
    summary_block,
    table_frame,
    truncate,
)

GENERATED_ON = date(2025, 6, 1)
IMPORT_HEADER = [
    "ID",
    "Date",
    "Staff",
    "Supplier",
    "Product Name",
    "Qty",
    "Amount",
    "Batch Number",
    "Expiration Date",
    "Status",
]


@pytest.fixture
def summary(import_rows, import_records):
    return aggregate(import_rows, import_records, as_of=AS_OF)


def _render(rows, summary, fmt, **kwargs):
    return render(rows, summary, fmt, generated_on=GENERATED_ON, **kwargs)


def _read_csv(content: bytes) -> pd.DataFrame:
    return pd.read_csv(StringIO(content.decode("utf-8")), dtype=str, keep_default_na=False)


# ---- Columns -----------------------------------------------------------------


def test_recognised_column_labels():
    assert [column.label for column in IMPORT_COLUMNS] == IMPORT_HEADER
    assert [column.label for column in SALE_COLUMNS] == [
        "Order ID",
        "Date",
        "Customer",
        "Staff",
        "Product Name",
        "Qty",
        "Total Amount",
        "Payment Status",
        "Status",
    ]


def test_selected_columns_keep_recognised_order():
    columns = resolve_columns(TransactionKind.IMPORT, ["amount", "ID"])

    assert [column.label for column in columns] == ["ID", "Amount"]


def test_empty_column_selection_is_rejected():
    with pytest.raises(InvalidExportRequestError):
        resolve_columns(TransactionKind.IMPORT, [])


def test_unknown_column_is_rejected():
    with pytest.raises(InvalidExportRequestError, match="Customer"):
        resolve_columns(TransactionKind.IMPORT, ["Customer"])


# ---- Shared content ----------------------------------------------------------


def test_cells_are_formatted_once_for_every_format(import_rows):
    frame = table_frame(import_rows, IMPORT_COLUMNS)

    assert frame.iloc[0].tolist() == [
        "#101",
        "2025-05-10",
        "Dana Reyes",
        "Acme Pharma",
        "Paracetamol",
        "10",
        "$150.00",
        "B-001",
        "2026-12-31",
        "Completed",
    ]
    assert frame.iloc[3].tolist()[4:] == ["General Import", "0", "$75.00", "N/A", "N/A", "Draft"]
    assert frame.iloc[2]["Staff"] == "Unknown Staff"
    assert frame.iloc[2]["Status"] == "Expired"


@pytest.mark.parametrize(
    ("text", "width", "expected"),
    [
        ("Acme Pharmaceuticals", 12, "Acme Pharma…"),
        ("Short", 12, "Short"),
        ("ExactlyTwelv", 12, "ExactlyTwelv"),
        ("BATCH-123456", 8, "BATCH-1…"),
        ("anything", None, "anything"),
    ],
)
def test_truncate(text, width, expected):
    assert truncate(text, width) == expected


def test_constrained_table_truncates_long_cells():
    raw = [
        {
            "id": 1,
            "imp_date": "2025-05-10",
            "supplier_name": "Northwind Medical Wholesale",
            "staff_name": "Alexandra Konstantinopoulou",
            "import_details": [{"pro_name": "Extra Strength Paracetamol", "qty": 1, "amount": 5, "batch_number": "LONGBATCH-0001"}],
        }
    ]
    rows = to_rows(canonicalize(raw), as_of=AS_OF)

    first = table_frame(rows, IMPORT_COLUMNS, constrained=True).iloc[0]
    second = table_frame(rows, IMPORT_COLUMNS, constrained=True).iloc[0]

    assert first["Supplier"] == "Northwind M…"
    assert first["Staff"] == "Alexandra K…"
    assert first["Product Name"] == "Extra Strength…"
    assert len(first["Product Name"]) == 15
    assert first["Batch Number"] == "LONGBAT…"
    assert first.tolist() == second.tolist()


def test_summary_block_labels(summary):
    block = summary_block(summary, TransactionKind.IMPORT, GENERATED_ON)

    assert block == [
        ("Import Report", ""),
        ("Generated on:", "2025-06-01"),
        ("Total Imports:", "3"),
        ("Total Value:", "$600.00"),
        ("Total Quantity:", "23"),
    ]


def test_paginate_chunks_rows():
    chunks = list(paginate(list(range(60)), 25))

    assert [len(chunk) for chunk in chunks] == [25, 25, 10]
    assert chunks[2][0] == 50


def test_paginate_rejects_zero_page_size():
    with pytest.raises(InvalidExportRequestError):
        list(paginate([1], 0))


# ---- Formats -----------------------------------------------------------------


def test_csv_has_header_and_rows_only(import_rows, summary):
    artifact = _render(import_rows, summary, ExportFormat.CSV, filename="import_report.csv")
    frame = _read_csv(artifact.content)

    assert artifact.filename == "import_report.csv"
    assert list(frame.columns) == IMPORT_HEADER
    assert len(frame) == 4
    assert frame["ID"].tolist() == ["#101", "#101", "#102", "#103"]
    assert "Generated on:" not in artifact.content.decode("utf-8")


def test_xlsx_has_summary_table_footer_and_breakdown(import_rows, summary):
    artifact = _render(import_rows, summary, "excel")

    assert artifact.format is ExportFormat.XLSX
    assert artifact.filename.endswith(".xlsx")
    sheets = pd.read_excel(BytesIO(artifact.content), sheet_name=None, header=None, dtype=str)
    report = sheets["Report"].fillna("")
    first_column = report[0].tolist()

    assert first_column[0] == "Import Report"
    assert first_column.count("Generated on:") == 2
    assert first_column.count("Total Value:") == 2
    header_index = first_column.index("ID")
    assert report.iloc[header_index].tolist() == IMPORT_HEADER
    assert first_column[header_index + 1 : header_index + 5] == ["#101", "#101", "#102", "#103"]
    footer = report.iloc[header_index + 5 :]
    assert "23" in footer[1].tolist()

    breakdown = pd.read_excel(BytesIO(artifact.content), sheet_name="Breakdown")
    assert list(breakdown.columns) == ["Supplier", "Transactions", "Value", "Quantity", "Share"]
    assert breakdown["Supplier"].tolist() == ["Acme Pharma", "Beta Supplies"]


def test_xlsx_keeps_quantities_and_amounts_numeric(import_rows, summary):
    workbook = load_workbook(BytesIO(_render(import_rows, summary, ExportFormat.XLSX).content))
    report = [list(row) for row in workbook["Report"].iter_rows()]
    header = next(index for index, row in enumerate(report) if row[0].value == "ID")
    qty, amount = IMPORT_HEADER.index("Qty"), IMPORT_HEADER.index("Amount")
    body = report[header + 1 : header + 5]

    assert [row[qty].value for row in body] == [10, 5, 8, 0]
    assert [row[amount].value for row in body] == pytest.approx([150.0, 300.0, 75.0, 75.0])
    assert body[0][qty].number_format == "0"
    assert body[0][amount].number_format == '"$"#,##0.00'
    assert body[0][0].value == "#101"

    breakdown = workbook["Breakdown"]
    assert [cell.value for cell in breakdown[2]] == ["Acme Pharma", 2, 525, 23, 0.88]
    assert breakdown["C2"].number_format == '"$"#,##0.00'
    assert breakdown["E2"].number_format == "0%"


def test_html_is_self_contained_and_escaped(summary):
    raw = [{"id": 1, "imp_date": "2025-05-10", "supplier_name": "<Acme & Co>", "total": 5}]
    rows = to_rows(canonicalize(raw), as_of=AS_OF)

    document = _render(rows, aggregate(rows), ExportFormat.HTML).content.decode("utf-8")

    assert document.startswith("<!DOCTYPE html>")
    assert "<style>" in document
    assert "<script" not in document
    assert "<link" not in document
    assert "&lt;Acme &amp; Co&gt;" in document
    assert "<Acme & Co>" not in document
    assert document.count("Total Imports:") == 2


def test_word_alias_renders_html(import_rows, summary):
    assert _render(import_rows, summary, "word").format is ExportFormat.HTML


def test_pdf_is_a_pdf(import_rows, summary):
    artifact = _render(import_rows, summary, ExportFormat.PDF, rows_per_page=2)

    assert artifact.content.startswith(b"%PDF")
    assert artifact.byte_size > 0


@pytest.mark.parametrize("fmt", [ExportFormat.CSV, ExportFormat.HTML, ExportFormat.PDF])
def test_rendering_is_deterministic(import_rows, summary, fmt):
    first = _render(import_rows, summary, fmt)
    second = _render(import_rows, summary, fmt)

    assert first.content == second.content


def test_xlsx_content_is_deterministic(import_rows, summary):
    first = _render(import_rows, summary, ExportFormat.XLSX)
    second = _render(import_rows, summary, ExportFormat.XLSX)

    read = lambda artifact: pd.read_excel(BytesIO(artifact.content), sheet_name=None, header=None, dtype=str)
    first_sheets, second_sheets = read(first), read(second)
    for name, frame in first_sheets.items():
        pd.testing.assert_frame_equal(frame, second_sheets[name])


def test_formats_share_logical_content(import_rows, summary):
    csv_frame = _read_csv(_render(import_rows, summary, ExportFormat.CSV).content)
    document = _render(import_rows, summary, ExportFormat.HTML).content.decode("utf-8")

    for label in IMPORT_HEADER:
        assert f"<th>{label}</th>" in document
    for cell in csv_frame["Amount"].tolist() + csv_frame["Product Name"].tolist():
        assert f"<td>{cell}</td>" in document
    positions = [document.index(f"<td>{name}</td>") for name in ("Paracetamol", "Amoxicillin", "Ibuprofen")]
    assert positions == sorted(positions)


# ---- Failures ----------------------------------------------------------------


def test_zero_rows_raise_missing_data(summary):
    with pytest.raises(MissingDataError):
        _render([], summary, ExportFormat.CSV)


def test_writer_failures_become_render_errors(import_rows, summary, monkeypatch):
    def explode(*args):
        raise OSError("disk full")

    monkeypatch.setitem(renderers._WRITERS, ExportFormat.CSV, explode)

    with pytest.raises(RenderError, match="disk full"):
        _render(import_rows, summary, ExportFormat.CSV)


def test_unsupported_format_is_rejected(import_rows, summary):
    with pytest.raises(ValueError):
        _render(import_rows, summary, "docx")
