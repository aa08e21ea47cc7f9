"""Render canonical rows and a summary into downloadable documents.

Every format is built from the same string table (:func:`table_frame`) and the
same summary block (:func:`summary_block`), so header labels, row order and
totals are identical across containers:

* ``xlsx``: summary block, blank line, table, blank line, mirrored footer and
  a second ``Breakdown`` sheet (pandas with the openpyxl engine).
* ``csv``: header and rows only.
* ``html``: self-contained page with inline CSS.
* ``pdf``: reportlab document, ``rows_per_page`` rows per table page and the
  summary on a final page.  Cells are truncated to fit the page width.

``generated_on`` is the only time-dependent input.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import date
from io import BytesIO
from typing import Callable, Iterator, Optional, Sequence

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .aggregator import distribution, format_growth
from .errors import InvalidExportRequestError, MissingDataError, RenderError
from .models import Artifact, CanonicalRow, ExportFormat, SummaryReport, TransactionKind

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
DEFAULT_ROWS_PER_PAGE = 25


@dataclass(frozen=True, slots=True)
class Column:
    """A recognised report column.

    ``width`` is the character budget applied in width-constrained output.
    ``value`` gives the raw number for containers with typed cells, and
    ``money`` marks it for currency formatting there.
    """

    label: str
    format: Callable[[CanonicalRow, str], str]
    width: Optional[int] = None
    value: Optional[Callable[[CanonicalRow], float]] = None
    money: bool = False


def _id(row: CanonicalRow, _: str) -> str:
    return f"#{row.transaction_id}"


def _date(row: CanonicalRow, _: str) -> str:
    if row.date is not None:
        return row.date.isoformat()
    return row.raw_date or "N/A"


def _expiry(row: CanonicalRow, _: str) -> str:
    if row.expiration_date is not None:
        return row.expiration_date.isoformat()
    return row.raw_expiration or "N/A"


def _money(row: CanonicalRow, currency: str) -> str:
    return format_money(row.amount, currency)


def _text(attribute: str, default: str = "N/A") -> Callable[[CanonicalRow, str], str]:
    def render(row: CanonicalRow, _: str) -> str:
        value = getattr(row, attribute)
        return str(value) if value not in (None, "") else default

    return render


IMPORT_COLUMNS: tuple[Column, ...] = (
    Column("ID", _id),
    Column("Date", _date, 10),
    Column("Staff", _text("staff_name", "Unknown Staff"), 12),
    Column("Supplier", _text("counterparty_name"), 12),
    Column("Product Name", _text("product_name"), 15),
    Column("Qty", lambda row, _: str(row.quantity), value=lambda row: row.quantity),
    Column("Amount", _money, value=lambda row: row.amount, money=True),
    Column("Batch Number", _text("batch_number"), 8),
    Column("Expiration Date", _expiry, 10),
    Column("Status", lambda row, _: row.status.label),
)

SALE_COLUMNS: tuple[Column, ...] = (
    Column("Order ID", _id),
    Column("Date", _date, 10),
    Column("Customer", _text("counterparty_name"), 12),
    Column("Staff", _text("staff_name", "Unknown Staff"), 12),
    Column("Product Name", _text("product_name"), 15),
    Column("Qty", lambda row, _: str(row.quantity), value=lambda row: row.quantity),
    Column("Total Amount", _money, value=lambda row: row.amount, money=True),
    Column("Payment Status", _text("payment_status", "Unpaid")),
    Column("Status", lambda row, _: row.status.label),
)


def recognised_columns(kind: TransactionKind) -> tuple[Column, ...]:
    return IMPORT_COLUMNS if kind is TransactionKind.IMPORT else SALE_COLUMNS


def resolve_columns(kind: TransactionKind, selected: Optional[Sequence[str]] = None) -> list[Column]:
    """Return the columns to render, in recognised order.

    ``None`` selects every column.  An empty selection or an unknown label is
    rejected.
    """

    columns = recognised_columns(kind)
    if selected is None:
        return list(columns)
    if not selected:
        raise InvalidExportRequestError("At least one column must be selected")

    known = {column.label.casefold(): column for column in columns}
    wanted = set()
    for label in selected:
        key = str(label).strip().casefold()
        if key not in known:
            raise InvalidExportRequestError(
                f"Unknown column {label!r} for {kind.label.lower()} reports; "
                f"expected one of: {', '.join(column.label for column in columns)}"
            )
        wanted.add(key)
    return [column for column in columns if column.label.casefold() in wanted]


# ---------------------------------------------------------------------------
# Shared content
# ---------------------------------------------------------------------------

def format_money(value: float, currency: str = "$") -> str:
    return f"{currency}{value:,.2f}"


def truncate(text: str, width: Optional[int]) -> str:
    """Cut *text* to *width* characters, the last one being ``…``."""

    if width is None or len(text) <= width:
        return text
    return text[: width - 1] + ELLIPSIS


def table_frame(
    rows: Sequence[CanonicalRow],
    columns: Sequence[Column],
    currency: str = "$",
    constrained: bool = False,
) -> pd.DataFrame:
    """All cells as display strings, one line per row."""

    records = []
    for row in rows:
        cells = []
        for column in columns:
            value = column.format(row, currency)
            cells.append(truncate(value, column.width) if constrained else value)
        records.append(cells)
    return pd.DataFrame(records, columns=[column.label for column in columns], dtype=object)


def summary_block(
    summary: SummaryReport,
    kind: TransactionKind,
    generated_on: date,
    currency: str = "$",
) -> list[tuple[str, str]]:
    """Title line followed by label/value pairs shared by every container."""

    if kind is TransactionKind.IMPORT:
        count_label, value_label = "Total Imports:", "Total Value:"
    else:
        count_label, value_label = "Total Orders:", "Total Sales:"

    block = [
        (f"{kind.label} Report", ""),
        ("Generated on:", generated_on.isoformat()),
        (count_label, str(summary.record_count)),
        (value_label, format_money(summary.total_amount, currency)),
        ("Total Quantity:", str(summary.total_quantity)),
    ]
    if summary.growth_percent is not None:
        block.append(("Growth:", format_growth(summary.growth_percent)))
    if summary.profit is not None:
        block.append(("Profit:", format_money(summary.profit, currency)))
        block.append(("Margin:", f"{summary.margin_percent or 0.0:.1f}%"))
    return block


def breakdown_frame(summary: SummaryReport, kind: TransactionKind, currency: str = "$") -> pd.DataFrame:
    shares = distribution(summary.by_entity, "value")
    return pd.DataFrame(
        [
            [name, str(stats.count), format_money(stats.value, currency), str(stats.quantity), f"{shares[name]}%"]
            for name, stats in summary.by_entity.items()
        ],
        columns=[breakdown_label(summary.breakdown, kind), "Transactions", "Value", "Quantity", "Share"],
        dtype=object,
    )


def breakdown_values(summary: SummaryReport, kind: TransactionKind) -> pd.DataFrame:
    """The breakdown with numeric cells; ``Share`` is a fraction of the total value."""

    shares = distribution(summary.by_entity, "value")
    return pd.DataFrame(
        [
            [name, stats.count, stats.value, stats.quantity, shares[name] / 100]
            for name, stats in summary.by_entity.items()
        ],
        columns=[breakdown_label(summary.breakdown, kind), "Transactions", "Value", "Quantity", "Share"],
    )


def breakdown_label(breakdown: str, kind: TransactionKind) -> str:
    if breakdown == "counterparty":
        return "Supplier" if kind is TransactionKind.IMPORT else "Customer"
    return breakdown.capitalize()


def paginate(rows: Sequence, rows_per_page: int) -> Iterator[Sequence]:
    """Yield consecutive chunks of at most *rows_per_page* rows."""

    if rows_per_page < 1:
        raise InvalidExportRequestError("rows_per_page must be at least 1")
    for start in range(0, len(rows), rows_per_page):
        yield rows[start : start + rows_per_page]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def render(
    rows: Sequence[CanonicalRow],
    summary: SummaryReport,
    fmt: ExportFormat | str,
    *,
    kind: Optional[TransactionKind] = None,
    columns: Optional[Sequence[str]] = None,
    generated_on: Optional[date] = None,
    rows_per_page: int = DEFAULT_ROWS_PER_PAGE,
    currency: str = "$",
    filename: Optional[str] = None,
) -> Artifact:
    """Render *rows* and *summary* as an :class:`Artifact` in *fmt*."""

    fmt = ExportFormat.parse(fmt)
    if not rows:
        raise MissingDataError("No rows available for the requested scope or date range")
    kind = kind or summary.kind or rows[0].kind
    selected = resolve_columns(kind, columns)
    generated_on = generated_on or date.today()

    writer = _WRITERS[fmt]
    try:
        content = writer(rows, summary, kind, selected, generated_on, currency, rows_per_page)
    except (InvalidExportRequestError, MissingDataError):
        raise
    except Exception as exc:
        raise RenderError(f"Failed to render {fmt.value} {kind.label.lower()} report: {exc}") from exc

    name = filename or f"{kind.report_slug}_report.{fmt.extension}"
    logger.info("Rendered %s (%d rows, %d bytes)", name, len(rows), len(content))
    return Artifact(filename=name, content=content, format=fmt)


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def _render_xlsx(rows, summary, kind, columns, generated_on, currency, rows_per_page) -> bytes:
    width = len(columns)
    block = [_pad([label, value], width) for label, value in summary_block(summary, kind, generated_on, currency)]
    body = [
        _pad([column.value(row) if column.value else column.format(row, currency) for column in columns], width)
        for row in rows
    ]
    matrix = [
        *block,
        _pad([], width),
        _pad([column.label for column in columns], width),
        *body,
        _pad([], width),
        *block,
    ]
    money_format = f'"{currency}"#,##0.00'

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame(matrix).to_excel(writer, sheet_name="Report", header=False, index=False)
        sheet = writer.sheets["Report"]
        first_row = len(block) + 3
        for index, column in enumerate(columns, start=1):
            if column.value is None:
                continue
            for number in range(first_row, first_row + len(body)):
                sheet.cell(row=number, column=index).number_format = money_format if column.money else "0"

        breakdown = breakdown_values(summary, kind)
        breakdown.to_excel(writer, sheet_name="Breakdown", index=False)
        sheet = writer.sheets["Breakdown"]
        for number in range(2, len(breakdown) + 2):
            sheet.cell(row=number, column=3).number_format = money_format
            sheet.cell(row=number, column=5).number_format = "0%"
    return buffer.getvalue()


def _pad(values: list, width: int) -> list:
    width = max(width, 2)
    return (list(values) + [""] * width)[:width]


def _render_csv(rows, summary, kind, columns, generated_on, currency, rows_per_page) -> bytes:
    return table_frame(rows, columns, currency).to_csv(index=False).encode("utf-8")


_HTML_STYLE = """
body { font-family: Arial, Helvetica, sans-serif; margin: 24px; color: #222; }
h1 { font-size: 20px; margin-bottom: 8px; }
h2 { font-size: 16px; margin-top: 24px; }
table { border-collapse: collapse; margin: 12px 0; }
th, td { border: 1px solid #ccc; padding: 4px 8px; font-size: 12px; text-align: left; }
th { background: #f0f0f0; }
table.summary td { border: none; padding: 2px 8px; }
"""


def _summary_table(block: list[tuple[str, str]], css_class: str) -> str:
    lines = [f'<table class="{css_class}">']
    for label, value in block[1:]:
        lines.append(f"<tr><td>{html.escape(label)}</td><td>{html.escape(value)}</td></tr>")
    lines.append("</table>")
    return "\n".join(lines)


def _render_html(rows, summary, kind, columns, generated_on, currency, rows_per_page) -> bytes:
    block = summary_block(summary, kind, generated_on, currency)
    title = html.escape(block[0][0])
    table = table_frame(rows, columns, currency).to_html(index=False, escape=True, border=0, classes="report")
    breakdown = breakdown_frame(summary, kind, currency)
    document = "\n".join(
        [
            "<!DOCTYPE html>",
            '<html lang="en">',
            "<head>",
            '<meta charset="utf-8">',
            f"<title>{title}</title>",
            f"<style>{_HTML_STYLE}</style>",
            "</head>",
            "<body>",
            f"<h1>{title}</h1>",
            _summary_table(block, "summary"),
            table,
            _summary_table(block, "summary footer"),
            f"<h2>Breakdown by {html.escape(breakdown.columns[0].lower())}</h2>",
            breakdown.to_html(index=False, escape=True, border=0, classes="breakdown"),
            "</body>",
            "</html>",
        ]
    )
    return document.encode("utf-8")


_TABLE_STYLE = TableStyle(
    [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2f4050")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f5f5f5")]),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]
)


def _render_pdf(rows, summary, kind, columns, generated_on, currency, rows_per_page) -> bytes:
    styles = getSampleStyleSheet()
    block = summary_block(summary, kind, generated_on, currency)
    table = table_frame(rows, columns, currency, constrained=True)
    header = list(table.columns)
    body = [list(values) for values in table.itertuples(index=False, name=None)]

    story = [
        Paragraph(html.escape(block[0][0]), styles["Title"]),
        Paragraph(f"Generated on: {generated_on.isoformat()}", styles["Normal"]),
        Paragraph(f"Rows: {len(body)}", styles["Normal"]),
        Spacer(1, 6 * mm),
    ]
    chunks = list(paginate(body, rows_per_page))
    for index, chunk in enumerate(chunks):
        if index:
            story.append(PageBreak())
        page_table = Table([header, *chunk], repeatRows=1)
        page_table.setStyle(_TABLE_STYLE)
        story.append(page_table)

    story.append(PageBreak())
    story.append(Paragraph("Summary", styles["Heading2"]))
    summary_table = Table([[label, value] for label, value in block[1:]], hAlign="LEFT")
    summary_table.setStyle(TableStyle([("FONTSIZE", (0, 0), (-1, -1), 9)]))
    story.append(summary_table)

    breakdown = breakdown_frame(summary, kind, currency)
    if not breakdown.empty:
        story.append(Spacer(1, 6 * mm))
        story.append(Paragraph(f"Breakdown by {html.escape(breakdown.columns[0].lower())}", styles["Heading3"]))
        breakdown_table = Table(
            [list(breakdown.columns), *(list(values) for values in breakdown.itertuples(index=False, name=None))],
            repeatRows=1,
            hAlign="LEFT",
        )
        breakdown_table.setStyle(_TABLE_STYLE)
        story.append(breakdown_table)

    buffer = BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=12 * mm,
        rightMargin=12 * mm,
        topMargin=12 * mm,
        bottomMargin=12 * mm,
        title=block[0][0],
        author="inventory-dash",
        invariant=1,
    )
    document.build(story)
    return buffer.getvalue()


_WRITERS = {
    ExportFormat.XLSX: _render_xlsx,
    ExportFormat.CSV: _render_csv,
    ExportFormat.HTML: _render_html,
    ExportFormat.PDF: _render_pdf,
}


__all__ = [
    "Column",
    "IMPORT_COLUMNS",
    "SALE_COLUMNS",
    "recognised_columns",
    "resolve_columns",
    "format_money",
    "truncate",
    "table_frame",
    "summary_block",
    "breakdown_frame",
    "paginate",
    "render",
]
