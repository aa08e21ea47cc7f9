"""FastAPI application exposing the inventory_dash report and export service."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .cache import TransactionStore
from .config import load_config
from .errors import InvalidExportRequestError, MissingDataError, ReportError
from .models import CanonicalRow, DateRange, ExportFormat, ExportRequest, Scope, TransactionKind, TransactionRecord
from .services import JsonFileProvider, ReportService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    if getattr(app.state, "reports", None) is None:
        config = load_config()
        app.state.config = config
        app.state.reports = ReportService(config, JsonFileProvider(config.data_dir), TransactionStore())

    yield


app = FastAPI(lifespan=lifespan, title="inventory_dash reports", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


# Error mapping -------------------------------------------------------------

_UNPROCESSABLE = (MissingDataError, InvalidExportRequestError)


@app.exception_handler(ReportError)
async def report_error_handler(_: Request, exc: ReportError) -> JSONResponse:
    status_code = 422 if isinstance(exc, _UNPROCESSABLE) else 500
    if status_code == 500:
        logger.error("Request failed: %s", exc.message)
    return JSONResponse(status_code=status_code, content={"detail": {"category": exc.category, "message": exc.message}})


# Dependency injection ------------------------------------------------------

def get_report_service(request: Request) -> ReportService:
    service: ReportService = request.app.state.reports
    return service


def get_kind(kind: str) -> TransactionKind:
    try:
        return TransactionKind.parse(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown report kind {kind!r}") from None


def get_date_range(
    date_from: Annotated[Optional[date], Query(description="Inclusive ISO start date")] = None,
    date_to: Annotated[Optional[date], Query(description="Inclusive ISO end date")] = None,
) -> Optional[DateRange]:
    if date_from is None and date_to is None:
        return None
    if date_from is None or date_to is None:
        raise InvalidExportRequestError("date_from and date_to must be supplied together")
    try:
        return DateRange(date_from, date_to)
    except ValueError as exc:
        raise InvalidExportRequestError(str(exc)) from None


ServiceDep = Annotated[ReportService, Depends(get_report_service)]
KindDep = Annotated[TransactionKind, Depends(get_kind)]
RangeDep = Annotated[Optional[DateRange], Depends(get_date_range)]


def row_payload(row: CanonicalRow) -> dict[str, object]:
    return {
        "transaction_id": row.transaction_id,
        "kind": row.kind.value,
        "date": row.date.isoformat() if row.date else row.raw_date,
        "counterparty_name": row.counterparty_name,
        "staff_name": row.staff_name,
        "product_name": row.product_name,
        "quantity": row.quantity,
        "unit_amount": round(row.unit_amount, 2),
        "amount": round(row.amount, 2),
        "batch_number": row.batch_number,
        "expiration_date": row.expiration_date.isoformat() if row.expiration_date else row.raw_expiration,
        "category": row.category,
        "payment_status": row.payment_status,
        "status": row.status.value,
    }


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get("/imports")
def list_imports(service: ServiceDep, date_range: RangeDep) -> dict[str, Any]:
    records = service.load_records(TransactionKind.IMPORT, date_range)
    return {"data": [_record_payload(record) for record in records]}


@app.get("/orders")
def list_orders(service: ServiceDep, date_range: RangeDep) -> dict[str, Any]:
    records = service.load_records(TransactionKind.SALE, date_range)
    return {"data": [_record_payload(record) for record in records]}


@app.get("/reports/{kind}")
def report_summary(
    kind: KindDep,
    service: ServiceDep,
    date_range: RangeDep,
    breakdown: Annotated[str, Query(pattern="^(counterparty|staff|category|product)$")] = "counterparty",
    rank_by: Annotated[str, Query(pattern="^(quantity|revenue)$")] = "quantity",
    top_n: Annotated[Optional[int], Query(ge=1, le=100)] = 10,
) -> dict[str, object]:
    records = service.load_records(kind, date_range)
    request = ExportRequest(kind=kind, format=ExportFormat.CSV, date_range=date_range)
    rows = service.rows_for(request)
    summary = service.summarize(kind, rows, records, breakdown=breakdown, rank_by=rank_by, top_n=top_n)
    payload = summary.to_dict()
    payload["warnings"] = service.warnings_for(kind)
    return payload


@app.get("/reports/{kind}/rows")
def report_rows(
    kind: KindDep,
    service: ServiceDep,
    date_range: RangeDep,
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[Optional[int], Query(ge=1, le=1000)] = None,
    include_details: bool = True,
) -> dict[str, object]:
    page = service.preview(kind, date_range, offset=offset, limit=limit, include_details=include_details)
    return {
        "rows": [row_payload(row) for row in page.rows],
        "total": page.total,
        "offset": page.offset,
        "next_offset": page.next_offset,
        "has_more": page.has_more,
    }


@app.get("/reports/{kind}/export")
def export_report(
    kind: KindDep,
    service: ServiceDep,
    date_range: RangeDep,
    export_format: Annotated[str, Query(alias="format", description="xlsx, csv, pdf or html")] = "xlsx",
    scope: Annotated[Scope, Query()] = Scope.FILTERED,
    include_details: bool = True,
    columns: Annotated[Optional[list[str]], Query(description="Column labels to include")] = None,
    staff: Optional[str] = None,
    counterparty: Optional[str] = None,
) -> Response:
    """Render the requested report and return it as a file download."""

    try:
        fmt = ExportFormat.parse(export_format)
    except ValueError as exc:
        raise InvalidExportRequestError(str(exc)) from None

    filters = {name: value for name, value in (("staff", staff), ("counterparty", counterparty)) if value}
    request = ExportRequest(
        kind=kind,
        format=fmt,
        scope=scope,
        date_range=date_range,
        selected_columns=columns,
        include_details=include_details,
        filters=filters,
    )
    artifact = service.render_artifact(request)
    return Response(
        content=artifact.content,
        media_type=artifact.format.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )


@app.get("/analytics")
def analytics(
    service: ServiceDep,
    date_range: RangeDep,
    compare: bool = True,
    top_n: Annotated[int, Query(ge=1, le=50)] = 5,
) -> dict[str, object]:
    """Revenue and profit analytics, compared with the preceding window."""

    if date_range is None:
        raise InvalidExportRequestError("date_from and date_to are required for analytics")
    previous = date_range.preceding() if compare else None
    return service.analytics(date_range, previous, top_n=top_n)


def _record_payload(record: TransactionRecord) -> dict[str, object]:
    """Serialise *record* with the provider's own field names.

    Clients canonicalise this payload again, so it must round-trip through
    the same resolver tables as upstream data.
    """

    is_import = record.kind is TransactionKind.IMPORT
    payload: dict[str, object] = {
        "id": record.id,
        "imp_date" if is_import else "ord_date": record.date.isoformat() if record.date else record.raw_date,
        "supplier_name" if is_import else "cus_name": record.counterparty_name,
        "staff_name": record.staff_name,
        "total_amount": record.total_amount,
        "total_quantity": record.total_quantity,
        "import_details" if is_import else "order_details": [
            {
                "pro_name": item.product_name,
                "qty": item.quantity,
                "price": item.unit_amount,
                "amount": item.amount,
                "batch_number": item.batch_number,
                "expiration_date": item.expiration_date.isoformat() if item.expiration_date else item.raw_expiration,
                "category_name": item.category,
            }
            for item in record.line_items
        ],
    }
    if not is_import:
        payload["payment_status"] = record.payment_status
    return payload
