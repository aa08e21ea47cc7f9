"""Domain models used by the reporting pipeline.

The classes defined here are intentionally lightweight data containers that do
not know anything about transport or rendering concerns.  Keeping the domain
model pure makes it easy to test the canonicalisation and aggregation logic in
isolation and lets the same records flow through the API, the export
transport and the local renderers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class TransactionKind(str, Enum):
    """The two transaction families the upstream provider serves."""

    IMPORT = "import"
    SALE = "sale"

    @property
    def label(self) -> str:
        return "Import" if self is TransactionKind.IMPORT else "Sales"

    @property
    def collection(self) -> str:
        """Key used by the provider and the shared cache."""

        return "imports" if self is TransactionKind.IMPORT else "orders"

    @property
    def report_slug(self) -> str:
        """Prefix used in artifact filenames (``import_report_...``)."""

        return "import" if self is TransactionKind.IMPORT else "sales"

    @property
    def general_product(self) -> str:
        return "General Import" if self is TransactionKind.IMPORT else "General Order"

    @classmethod
    def parse(cls, value: "TransactionKind | str") -> "TransactionKind":
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower()
        aliases = {
            "import": cls.IMPORT,
            "imports": cls.IMPORT,
            "sale": cls.SALE,
            "sales": cls.SALE,
            "order": cls.SALE,
            "orders": cls.SALE,
        }
        try:
            return aliases[normalised]
        except KeyError:
            raise ValueError(f"Unknown transaction kind: {value!r}") from None


class Status(str, Enum):
    """Derived lifecycle status.  Never stored, always recomputed."""

    DRAFT = "draft"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ExportFormat(str, Enum):
    XLSX = "xlsx"
    CSV = "csv"
    PDF = "pdf"
    HTML = "html"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]

    @classmethod
    def parse(cls, value: "ExportFormat | str") -> "ExportFormat":
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower()
        # The legacy UI offered "excel" and "word"; they map onto the
        # spreadsheet and styled-markup documents respectively.
        aliases = {"excel": cls.XLSX, "xls": cls.XLSX, "word": cls.HTML, "htm": cls.HTML}
        if normalised in aliases:
            return aliases[normalised]
        try:
            return cls(normalised)
        except ValueError:
            raise ValueError(f"Unsupported export format: {value!r}") from None


_MEDIA_TYPES = {
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ExportFormat.CSV: "text/csv; charset=utf-8",
    ExportFormat.PDF: "application/pdf",
    ExportFormat.HTML: "text/html; charset=utf-8",
}


class Scope(str, Enum):
    ALL = "all"
    FILTERED = "filtered"


@dataclass(slots=True)
class LineItem:
    """One product line within a transaction.

    ``amount`` is the line total as reported by the provider and
    ``unit_amount`` the per-unit price.  ``raw_expiration`` keeps the original
    text so an unparseable expiry still renders as the provider sent it.
    """

    product_name: str
    quantity: int = 0
    unit_amount: float = 0.0
    amount: float = 0.0
    batch_number: Optional[str] = None
    expiration_date: Optional[date] = None
    raw_expiration: Optional[str] = None
    category: str = "Unknown"


@dataclass(slots=True)
class TransactionRecord:
    """One import or one sale after canonicalisation.

    An empty :attr:`line_items` list marks an aggregate-only record: the
    provider reported a total without per-product detail.
    """

    id: str
    kind: TransactionKind
    date: Optional[date]
    counterparty_name: str
    staff_name: str
    total_amount: float
    line_items: list[LineItem] = field(default_factory=list)
    raw_date: Optional[str] = None
    total_quantity: Optional[int] = None
    payment_status: Optional[str] = None

    @property
    def is_aggregate_only(self) -> bool:
        return not self.line_items


@dataclass(slots=True)
class CanonicalRow:
    """Flattened, format-agnostic unit consumed by rendering and aggregation."""

    transaction_id: str
    kind: TransactionKind
    date: Optional[date]
    counterparty_name: str
    staff_name: str
    product_name: str
    quantity: int
    amount: float
    unit_amount: float = 0.0
    batch_number: Optional[str] = None
    expiration_date: Optional[date] = None
    raw_date: Optional[str] = None
    raw_expiration: Optional[str] = None
    category: str = "Unknown"
    payment_status: Optional[str] = None
    status: Status = Status.COMPLETED


@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive calendar-date window."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Date range ends before it starts: {self.start} > {self.end}")

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: Optional[date]) -> bool:
        """Return ``True`` when *value* falls in the window.

        Records whose date could not be parsed are never discarded by a date
        filter, so ``None`` is always contained.
        """

        if value is None:
            return True
        return self.start <= value <= self.end

    def overlaps(self, other: "DateRange") -> bool:
        return self.start <= other.end and other.start <= self.end

    def preceding(self) -> "DateRange":
        """The equal-length window that ends the day before this one starts."""

        end = self.start - timedelta(days=1)
        return DateRange(end - timedelta(days=self.days - 1), end)


@dataclass(frozen=True, slots=True)
class EntityStats:
    count: int
    value: float
    quantity: int


@dataclass(frozen=True, slots=True)
class RankedItem:
    rank: int
    name: str
    quantity: int
    revenue: float
    count: int
    tier: str


@dataclass(frozen=True, slots=True)
class PeriodBucket:
    """Trend bucket: the first day of a day, week or month and its totals."""

    period: date
    value: float
    count: int


@dataclass(frozen=True, slots=True)
class SummaryReport:
    """Aggregation result, created fresh per request and never mutated."""

    kind: Optional[TransactionKind]
    record_count: int
    total_amount: float
    total_quantity: int
    breakdown: str = "counterparty"
    by_entity: Mapping[str, EntityStats] = field(default_factory=lambda: MappingProxyType({}))
    top_ranked: tuple[RankedItem, ...] = ()
    growth_percent: Optional[float] = None
    profit: Optional[float] = None
    margin_percent: Optional[float] = None
    status_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    average_order_value: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value if self.kind else None,
            "record_count": self.record_count,
            "total_amount": round(self.total_amount, 2),
            "total_quantity": self.total_quantity,
            "breakdown": self.breakdown,
            "by_entity": {
                name: {"count": stats.count, "value": round(stats.value, 2), "quantity": stats.quantity}
                for name, stats in self.by_entity.items()
            },
            "top_ranked": [
                {
                    "rank": item.rank,
                    "name": item.name,
                    "quantity": item.quantity,
                    "revenue": round(item.revenue, 2),
                    "count": item.count,
                    "tier": item.tier,
                }
                for item in self.top_ranked
            ],
            "growth_percent": self.growth_percent,
            "profit": self.profit,
            "margin_percent": self.margin_percent,
            "status_counts": dict(self.status_counts),
            "average_order_value": round(self.average_order_value, 2),
        }


@dataclass(slots=True)
class ExportRequest:
    """Parameters of a single user export action.  Consumed once."""

    kind: TransactionKind
    format: ExportFormat
    scope: Scope = Scope.FILTERED
    date_range: Optional[DateRange] = None
    selected_columns: Optional[list[str]] = None
    include_details: bool = True
    filters: dict[str, str] = field(default_factory=dict)

    @property
    def filename(self) -> str:
        """``{kind}_report_{from}_to_{to}.{extension}``."""

        slug = self.kind.report_slug
        if self.date_range is None:
            return f"{slug}_report_all.{self.format.extension}"
        return (
            f"{slug}_report_{self.date_range.start.isoformat()}"
            f"_to_{self.date_range.end.isoformat()}.{self.format.extension}"
        )

    def to_params(self) -> dict[str, object]:
        """Query parameters understood by the remote export endpoint."""

        params: dict[str, object] = {
            "format": self.format.value,
            "scope": self.scope.value,
            "include_details": str(self.include_details).lower(),
        }
        if self.date_range is not None:
            params["date_from"] = self.date_range.start.isoformat()
            params["date_to"] = self.date_range.end.isoformat()
        if self.selected_columns:
            params["columns"] = list(self.selected_columns)
        params.update(self.filters)
        return params


@dataclass(slots=True)
class Artifact:
    """A rendered document ready to be handed to a sink."""

    filename: str
    content: bytes
    format: ExportFormat

    @property
    def byte_size(self) -> int:
        return len(self.content)


@dataclass(slots=True)
class ExportResult:
    success: bool
    filename: Optional[str] = None
    byte_size: int = 0
    error_category: Optional[str] = None
    message: Optional[str] = None
    source: Optional[str] = None
    attempts: int = 0
    remote_error: Optional[str] = None


@dataclass(slots=True)
class RowPage:
    """One "load more" page of preview rows."""

    rows: list[CanonicalRow]
    total: int
    offset: int
    next_offset: Optional[int]

    @property
    def has_more(self) -> bool:
        return self.next_offset is not None


__all__ = [
    "TransactionKind",
    "Status",
    "ExportFormat",
    "Scope",
    "LineItem",
    "TransactionRecord",
    "CanonicalRow",
    "DateRange",
    "EntityStats",
    "RankedItem",
    "PeriodBucket",
    "SummaryReport",
    "ExportRequest",
    "Artifact",
    "ExportResult",
    "RowPage",
]
