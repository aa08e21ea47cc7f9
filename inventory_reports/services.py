"""High-level application services orchestrating the reporting pipeline."""
from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from .aggregator import (
    aggregate,
    compare_periods,
    distribution,
    entity_breakdown,
    format_growth,
    group_by_period,
    profit_and_margin,
    rows_frame,
)
from .canonicalizer import Canonicalizer, filter_by_date, filter_by_fields, to_rows
from .cache import TransactionStore
from .client import ExportApiClient
from .config import AppConfig
from .errors import SchemaMismatchError
from .models import (
    Artifact,
    CanonicalRow,
    DateRange,
    ExportRequest,
    RowPage,
    Scope,
    SummaryReport,
    TransactionKind,
    TransactionRecord,
)
from .renderers import render

logger = logging.getLogger(__name__)


class TransactionProvider(Protocol):
    def fetch(self, kind: TransactionKind) -> Any:
        """Return the raw provider payload for *kind*."""


class JsonFileProvider:
    """Serve raw payloads from ``imports.json`` / ``orders.json`` in a directory."""

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)

    def fetch(self, kind: TransactionKind) -> Any:
        path = self._data_dir / f"{kind.collection}.json"
        if not path.exists():
            logger.warning("No %s data file at %s", kind.collection, path)
            return []
        try:
            with path.open(encoding="utf-8") as handle:
                return json.load(handle)
        except json.JSONDecodeError as exc:
            raise SchemaMismatchError(f"{path} is not valid JSON: {exc}") from exc


class HttpTransactionProvider:
    """Fetch raw payloads from the remote provider through :class:`ExportApiClient`."""

    def __init__(self, client: ExportApiClient) -> None:
        self._client = client

    def fetch(self, kind: TransactionKind) -> Any:
        return self._client.fetch_transactions(kind)


class ReportService:
    """Coordinates loading, canonicalisation, aggregation and rendering."""

    def __init__(
        self,
        config: AppConfig,
        provider: TransactionProvider,
        store: Optional[TransactionStore] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._config = config
        self._provider = provider
        self._store = store or TransactionStore()
        self._clock = clock
        self._warnings: dict[str, list[str]] = {}

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> TransactionStore:
        return self._store

    def warnings_for(self, kind: TransactionKind) -> list[str]:
        """Warnings recorded the last time *kind* was loaded from the provider."""

        return list(self._warnings.get(kind.collection, []))

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    def load_records(
        self,
        kind: TransactionKind,
        date_range: Optional[DateRange] = None,
        refresh: bool = False,
        filters: Optional[Mapping[str, str]] = None,
    ) -> list[TransactionRecord]:
        """Return canonical records for *kind*, read through the shared store."""

        records = self._store.read_through(kind.collection, lambda: self._canonicalize(kind), refresh=refresh)
        records = filter_by_date(records, date_range)
        if filters:
            records = filter_by_fields(records, filters)
        return records

    def _canonicalize(self, kind: TransactionKind) -> list[TransactionRecord]:
        canonicalizer = Canonicalizer()
        try:
            records = canonicalizer.canonicalize(self._provider.fetch(kind), kind)
        except SchemaMismatchError as exc:
            logger.warning(exc.message)
            canonicalizer.warnings.append(exc.message)
            records = []
        self._warnings[kind.collection] = canonicalizer.warnings
        logger.info("Loaded %d %s records", len(records), kind.collection)
        return records

    def records_for(self, request: ExportRequest, refresh: bool = False) -> list[TransactionRecord]:
        if request.scope is Scope.ALL:
            return self.load_records(request.kind, refresh=refresh)
        return self.load_records(request.kind, request.date_range, refresh=refresh, filters=request.filters)

    def rows_for(self, request: ExportRequest, refresh: bool = False) -> list[CanonicalRow]:
        records = self.records_for(request, refresh=refresh)
        return to_rows(records, include_details=request.include_details, as_of=self._clock())

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------
    def summarize(
        self,
        kind: TransactionKind,
        rows: Sequence[CanonicalRow],
        records: Optional[Sequence[TransactionRecord]] = None,
        **options,
    ) -> SummaryReport:
        return aggregate(rows, records, kind=kind, as_of=self._clock(), **options)

    def render_artifact(
        self,
        request: ExportRequest,
        rows: Optional[Sequence[CanonicalRow]] = None,
        records: Optional[Sequence[TransactionRecord]] = None,
        generated_on: Optional[date] = None,
    ) -> Artifact:
        """Render *request* locally, loading rows when none are supplied."""

        if rows is None:
            records = self.records_for(request)
            rows = to_rows(records, include_details=request.include_details, as_of=self._clock())
        summary = self.summarize(request.kind, rows, records)
        return render(
            rows,
            summary,
            request.format,
            kind=request.kind,
            columns=request.selected_columns,
            generated_on=generated_on or self._clock().date(),
            rows_per_page=self._config.rows_per_page,
            currency=self._config.currency,
            filename=request.filename,
        )

    def preview(
        self,
        kind: TransactionKind,
        date_range: Optional[DateRange] = None,
        offset: int = 0,
        limit: Optional[int] = None,
        include_details: bool = True,
    ) -> RowPage:
        """One "load more" page of rows; nothing beyond the page is dropped."""

        page_size = min(limit or self._config.preview_page_size, self._config.preview_page_size)
        rows = to_rows(self.load_records(kind, date_range), include_details=include_details, as_of=self._clock())
        offset = max(offset, 0)
        end = offset + page_size
        return RowPage(
            rows=rows[offset:end],
            total=len(rows),
            offset=offset,
            next_offset=end if end < len(rows) else None,
        )

    def analytics(self, current: DateRange, previous: Optional[DateRange] = None, top_n: int = 5) -> dict[str, Any]:
        """Revenue, cost, profit and breakdowns for the *current* window.

        Growth is only reported when the caller supplies the *previous* window.
        """

        as_of = self._clock()
        sales = self.load_records(TransactionKind.SALE, current)
        sales_rows = to_rows(sales, as_of=as_of)
        import_rows = to_rows(self.load_records(TransactionKind.IMPORT, current), as_of=as_of)
        cost = float(sum(row.amount for row in import_rows))

        options = dict(kind=TransactionKind.SALE, breakdown="staff", rank_by="quantity", top_n=top_n, cost=cost, as_of=as_of)
        if previous is not None:
            previous_rows = to_rows(self.load_records(TransactionKind.SALE, previous), as_of=as_of)
            summary = compare_periods(sales_rows, previous_rows, current, previous, **options)
        else:
            summary = aggregate(sales_rows, sales, **options)

        profit, margin = profit_and_margin(summary.total_amount, cost)
        categories = entity_breakdown(rows_frame(sales_rows), "category")
        staff_shares = distribution(summary.by_entity, "value")
        category_shares = distribution(categories, "count")
        return {
            "window": {"date_from": current.start.isoformat(), "date_to": current.end.isoformat()},
            "previous_window": (
                {"date_from": previous.start.isoformat(), "date_to": previous.end.isoformat()} if previous else None
            ),
            "revenue": round(summary.total_amount, 2),
            "cost": round(cost, 2),
            "profit": round(profit, 2),
            "margin_percent": round(margin, 2),
            "growth_percent": summary.growth_percent,
            "growth": format_growth(summary.growth_percent) if summary.growth_percent is not None else None,
            "order_count": summary.record_count,
            "average_order_value": round(summary.average_order_value, 2),
            "top_products": [
                {"rank": item.rank, "name": item.name, "quantity": item.quantity, "revenue": round(item.revenue, 2), "tier": item.tier}
                for item in summary.top_ranked
            ],
            "staff": [
                {"name": name, "orders": stats.count, "value": round(stats.value, 2), "share": staff_shares[name]}
                for name, stats in summary.by_entity.items()
            ],
            "categories": [
                {"name": name, "count": stats.count, "value": round(stats.value, 2), "share": category_shares[name]}
                for name, stats in categories.items()
            ],
            "trend": [
                {"period": bucket.period.isoformat(), "value": round(bucket.value, 2), "count": bucket.count}
                for bucket in group_by_period(sales_rows, "day")
            ],
        }
